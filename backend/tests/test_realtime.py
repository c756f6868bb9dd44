# tests/test_realtime.py
from rentmap.integrations.realtime import (
    INVALID_SUBSCRIPTION,
    MAX_SUBSCRIPTIONS_REACHED,
    RATE_LIMIT_EXCEEDED,
    SUBSCRIPTION_NOT_FOUND,
    UNKNOWN_EVENT,
    RealtimeHub,
)
from rentmap.service_layer.subscriptions import SubscriptionFilter, SubscriptionRegistry


class Inbox:
    def __init__(self, fail=False):
        self.frames = []
        self.fail = fail

    async def __call__(self, payload):
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(payload)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


VAKE_LISTING = {"id": 7, "district": "Vake", "price": 800.0, "currency": "GEL", "bedrooms": 2}


def _hub(**kw):
    return RealtimeHub(SubscriptionRegistry(max_per_connection=kw.pop("max_subs", 10)), **kw)


def test_connect_greets_client():
    hub = _hub()
    hello = hub.connect("c1", Inbox())
    assert hello["event"] == "connected"
    assert hello["data"]["connectionId"] == "c1"
    assert hello["data"]["maxSubscriptions"] == 10
    assert hub.is_connected("c1")
    assert hub.connection_count() == 1


def test_subscribe_protocol():
    hub = _hub(max_subs=1)
    hub.connect("c1", Inbox())

    ok = hub.handle_message("c1", {"event": "subscribe", "data": {"district": "Vake", "priceMax": 900}})
    assert ok["event"] == "subscriptionConfirmed"
    sid = ok["data"]["subscriptionId"]
    assert ok["data"]["filters"] == {"district": "Vake", "priceMax": 900.0}

    full = hub.handle_message("c1", {"event": "subscribe", "data": {}})
    assert full["data"]["code"] == MAX_SUBSCRIPTIONS_REACHED

    listed = hub.handle_message("c1", {"event": "getSubscriptions"})
    assert [s["subscriptionId"] for s in listed["data"]["subscriptions"]] == [sid]

    removed = hub.handle_message("c1", {"event": "unsubscribe", "data": {"subscriptionId": sid}})
    assert removed == {"event": "subscriptionRemoved", "data": {"subscriptionId": sid}}

    missing = hub.handle_message("c1", {"event": "unsubscribe", "data": {"subscriptionId": sid}})
    assert missing["data"]["code"] == SUBSCRIPTION_NOT_FOUND


def test_numeric_client_subscription_id_can_be_removed():
    hub = _hub()
    hub.connect("c1", Inbox())

    ok = hub.handle_message("c1", {"event": "subscribe", "data": {"subscriptionId": 7}})
    assert ok["data"]["subscriptionId"] == "7"

    removed = hub.handle_message("c1", {"event": "unsubscribe", "data": {"subscriptionId": 7}})
    assert removed == {"event": "subscriptionRemoved", "data": {"subscriptionId": "7"}}
    assert hub.registry.get_subscriptions("c1") == []


def test_bad_messages():
    hub = _hub()
    hub.connect("c1", Inbox())
    bad = hub.handle_message("c1", {"event": "subscribe", "data": {"priceMin": 5, "priceMax": 1}})
    assert bad["data"]["code"] == INVALID_SUBSCRIPTION
    assert hub.handle_message("c1", {"event": "dance"})["data"]["code"] == UNKNOWN_EVENT
    assert hub.handle_message("c1", ["not", "an", "object"])["data"]["code"] == UNKNOWN_EVENT
    assert hub.handle_message("c1", {"event": "pong"}) is None


def test_unsubscribe_all():
    hub = _hub()
    hub.connect("c1", Inbox())
    for _ in range(3):
        hub.handle_message("c1", {"event": "subscribe", "data": {}})
    reply = hub.handle_message("c1", {"event": "unsubscribeAll"})
    assert reply == {"event": "allSubscriptionsRemoved", "data": {"count": 3}}


def test_rate_limit_sliding_window():
    clock = FakeClock()
    hub = _hub(rate_limit=3, rate_window_s=60, clock=clock)
    hub.connect("c1", Inbox())

    for _ in range(3):
        assert hub.handle_message("c1", {"event": "pong"}) is None
    limited = hub.handle_message("c1", {"event": "pong"})
    assert limited["data"]["code"] == RATE_LIMIT_EXCEEDED

    clock.now = 60.0
    assert hub.handle_message("c1", {"event": "pong"}) is None


async def test_broadcast_reaches_matching_connections_only():
    hub = _hub()
    vake, gldani = Inbox(), Inbox()
    hub.connect("vake", vake)
    hub.connect("gldani", gldani)
    sid = hub.handle_message("vake", {"event": "subscribe", "data": {"district": "Vake"}})["data"]["subscriptionId"]
    hub.handle_message("gldani", {"event": "subscribe", "data": {"district": "Gldani"}})

    delivered = await hub.broadcast_new_listing(VAKE_LISTING)
    assert delivered == 1
    assert gldani.frames == []
    (frame,) = vake.frames
    assert frame["event"] == "newListing"
    assert frame["data"]["listing"] == VAKE_LISTING
    assert frame["data"]["matchedSubscriptions"] == [sid]
    assert "timestamp" in frame["data"]


async def test_price_ceiling_blocks_broadcast():
    hub = _hub()
    inbox = Inbox()
    hub.connect("c1", inbox)
    hub.handle_message("c1", {"event": "subscribe", "data": {"district": "Vake", "priceMax": 700}})
    assert await hub.broadcast_new_listing(VAKE_LISTING) == 0
    assert inbox.frames == []


async def test_failed_send_is_not_counted():
    hub = _hub()
    hub.connect("ok", Inbox())
    hub.connect("broken", Inbox(fail=True))
    for conn in ("ok", "broken"):
        hub.handle_message(conn, {"event": "subscribe", "data": {}})
    assert await hub.broadcast_new_listing(VAKE_LISTING) == 1


async def test_disconnect_drops_subscriptions():
    hub = _hub()
    inbox = Inbox()
    hub.connect("c1", inbox)
    hub.handle_message("c1", {"event": "subscribe", "data": {}})
    hub.handle_message("c1", {"event": "subscribe", "data": {}})

    assert hub.disconnect("c1") == 2
    assert not hub.is_connected("c1")
    assert await hub.broadcast_new_listing(VAKE_LISTING) == 0

    # subscriptions registered for a socket the hub never saw are pruned on fan-out
    hub.registry.subscribe("ghost", SubscriptionFilter())
    assert await hub.broadcast_new_listing(VAKE_LISTING) == 0
    assert hub.registry.stats()["subscriptions"] == 0
