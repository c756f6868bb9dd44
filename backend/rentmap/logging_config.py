from __future__ import annotations

import logging

_NOISY = ("httpx", "apscheduler", "uvicorn", "uvicorn.error", "uvicorn.access")


def configure_logging(level: str | int = logging.INFO) -> None:
    # Root defaults
    logging.basicConfig(
        level=level,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
