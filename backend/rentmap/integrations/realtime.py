# rentmap/integrations/realtime.py
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable

from ..config import settings
from ..domain.parsing import to_str
from ..models import utcnow
from ..service_layer.subscriptions import SubscriptionFilter, SubscriptionRegistry

log = logging.getLogger(__name__)

Send = Callable[[dict[str, Any]], Awaitable[None]]

# error codes sent to clients
MAX_SUBSCRIPTIONS_REACHED = "MAX_SUBSCRIPTIONS_REACHED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
INVALID_SUBSCRIPTION = "INVALID_SUBSCRIPTION"
UNKNOWN_EVENT = "UNKNOWN_EVENT"


def event(name: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"event": name, "data": data or {}}


def error_event(code: str, message: str, details: Any | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return event("error", payload)


class RealtimeHub:
    """
    Push side of the subscription broadcaster: live connections, inbound
    protocol handling and fan-out of newly created listings.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        *,
        rate_limit: int = 100,
        rate_window_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.rate_limit = int(rate_limit)
        self.rate_window_s = float(rate_window_s)
        self._clock = clock
        self._senders: dict[str, Send] = {}
        self._recent: dict[str, deque[float]] = {}

    @classmethod
    def from_settings(cls, registry: SubscriptionRegistry) -> "RealtimeHub":
        return cls(
            registry,
            rate_limit=settings.WS_MESSAGE_RATE_LIMIT,
            rate_window_s=settings.WS_MESSAGE_RATE_WINDOW_S,
        )

    # -------------------------
    # Connections
    # -------------------------

    def connect(self, connection_id: str, send: Send) -> dict[str, Any]:
        self._senders[connection_id] = send
        self._recent[connection_id] = deque()
        log.info("client connected: %s", connection_id)
        return event(
            "connected",
            {
                "connectionId": connection_id,
                "maxSubscriptions": self.registry.max_per_connection,
                "timestamp": utcnow().isoformat(),
            },
        )

    def disconnect(self, connection_id: str) -> int:
        self._senders.pop(connection_id, None)
        self._recent.pop(connection_id, None)
        removed = self.registry.unsubscribe_all(connection_id)
        log.info("client disconnected: %s (dropped %s subscriptions)", connection_id, removed)
        return removed

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._senders

    def connection_count(self) -> int:
        return len(self._senders)

    def allow_message(self, connection_id: str) -> bool:
        """Sliding-window inbound rate limit per connection."""
        now = self._clock()
        q = self._recent.setdefault(connection_id, deque())
        while q and now - q[0] >= self.rate_window_s:
            q.popleft()
        if len(q) >= self.rate_limit:
            return False
        q.append(now)
        return True

    # -------------------------
    # Inbound protocol
    # -------------------------

    def handle_message(self, connection_id: str, message: Any) -> dict[str, Any] | None:
        """
        Apply one client message; returns the reply event (None for heartbeats).
        """
        if not self.allow_message(connection_id):
            return error_event(RATE_LIMIT_EXCEEDED, "Too many messages, slow down")

        if not isinstance(message, dict):
            return error_event(UNKNOWN_EVENT, "Message must be a JSON object")

        name = message.get("event")
        data = message.get("data") or {}
        if not isinstance(data, dict):
            return error_event(UNKNOWN_EVENT, "data must be an object")

        if name == "subscribe":
            return self._subscribe(connection_id, data)

        if name == "unsubscribe":
            sid = to_str(data.get("subscriptionId"))
            if not sid or not self.registry.unsubscribe(connection_id, sid):
                return error_event(SUBSCRIPTION_NOT_FOUND, "Subscription not found", {"subscriptionId": sid})
            return event("subscriptionRemoved", {"subscriptionId": sid})

        if name == "unsubscribeAll":
            count = self.registry.unsubscribe_all(connection_id)
            return event("allSubscriptionsRemoved", {"count": count})

        if name == "getSubscriptions":
            subs = self.registry.get_subscriptions(connection_id)
            return event("subscriptions", {"subscriptions": [s.to_dict() for s in subs]})

        if name == "pong":
            return None

        return error_event(UNKNOWN_EVENT, f"Unknown event: {name!r}")

    def _subscribe(self, connection_id: str, data: dict[str, Any]) -> dict[str, Any]:
        try:
            filters = SubscriptionFilter.from_dict(data)
        except ValueError as e:
            return error_event(INVALID_SUBSCRIPTION, str(e))

        sid = self.registry.subscribe(connection_id, filters, subscription_id=to_str(data.get("subscriptionId")))
        if sid is None:
            return error_event(
                MAX_SUBSCRIPTIONS_REACHED,
                f"Maximum {self.registry.max_per_connection} subscriptions per connection",
            )
        return event("subscriptionConfirmed", {"subscriptionId": sid, "filters": filters.to_dict()})

    # -------------------------
    # Outbound fan-out
    # -------------------------

    async def _send(self, connection_id: str, send: Send, payload: dict[str, Any]) -> bool:
        try:
            await send(payload)
            return True
        except Exception as e:
            log.warning("push to %s failed: %s", connection_id, e)
            return False

    async def broadcast_new_listing(self, listing: dict[str, Any]) -> int:
        """
        Push `listing` to every connection with a matching subscription.
        Returns the number of connections delivered to.
        """
        matched = self.registry.matching(listing)
        if not matched:
            return 0

        sends = []
        for conn, sub_ids in matched.items():
            send = self._senders.get(conn)
            if send is None:
                # subscriptions outlived their socket
                self.registry.unsubscribe_all(conn)
                continue
            payload = event(
                "newListing",
                {"listing": listing, "matchedSubscriptions": sub_ids, "timestamp": utcnow().isoformat()},
            )
            sends.append(self._send(conn, send, payload))

        results = await asyncio.gather(*sends)
        delivered = sum(1 for ok in results if ok)
        log.info("newListing %s delivered to %s/%s connections", listing.get("id"), delivered, len(matched))
        return delivered
