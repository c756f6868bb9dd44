# rentmap/domain/errors.py
from __future__ import annotations


class RentmapError(Exception):
    pass


class ProviderError(RentmapError):
    """Transient upstream failure (network, 429/5xx, bad credentials)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ResponseParseError(RentmapError):
    """Provider answered but the payload is not a usable extraction."""
