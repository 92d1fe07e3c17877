"""Tests for the subscription registry."""

from core.models import DeliveryMode, Registration
from core.registry import SubscriptionRegistry, as_channel_list


def _noop(channel, data):
    return None


def _reg(mode: DeliveryMode = DeliveryMode.BLOCKING) -> Registration:
    return Registration(listener=_noop, mode=mode)


# ── Subscribe / lookup ────────────────────────────────────────────────────────

def test_subscribe_single_channel():
    registry = SubscriptionRegistry()
    reg = _reg()
    registry.subscribe("open", reg)
    assert registry.lookup("open") == (reg,)
    assert registry.lookup("close") == ()


def test_subscribe_list_of_channels_attaches_to_each():
    registry = SubscriptionRegistry()
    reg = _reg()
    registry.subscribe(["open", "close"], reg)
    assert registry.lookup("open") == (reg,)
    assert registry.lookup("close") == (reg,)
    assert len(registry) == 2


def test_lookup_preserves_registration_order():
    registry = SubscriptionRegistry()
    regs = [_reg() for _ in range(5)]
    for reg in regs:
        registry.subscribe("event", reg)
    assert registry.lookup("event") == tuple(regs)


def test_same_listener_twice_gives_two_registrations():
    registry = SubscriptionRegistry()
    first, second = _reg(), _reg()
    registry.subscribe("event", first)
    registry.subscribe("event", second)
    assert first != second
    assert registry.counts() == {"event": 2}


def test_readding_same_registration_is_noop():
    registry = SubscriptionRegistry()
    reg = _reg()
    registry.subscribe("event", reg)
    registry.subscribe("event", reg)
    assert registry.lookup("event") == (reg,)


def test_wildcard_and_separator_channels_are_legal():
    registry = SubscriptionRegistry()
    registry.subscribe(["*", "changed:123"], _reg())
    assert "*" in registry
    assert "changed:123" in registry


# ── Unsubscribe ───────────────────────────────────────────────────────────────

def test_unsubscribe_removes_from_every_channel_and_prunes():
    registry = SubscriptionRegistry()
    unsubscribe = registry.subscribe(["open", "close"], _reg())
    unsubscribe()
    assert registry.channels() == []
    assert registry.counts() == {}
    assert len(registry) == 0


def test_unsubscribe_is_idempotent_and_isolated():
    registry = SubscriptionRegistry()
    keep = _reg()
    registry.subscribe("event", keep)
    unsubscribe = registry.subscribe("event", _reg())

    unsubscribe()
    unsubscribe()  # second call must not raise or touch others

    assert registry.lookup("event") == (keep,)


def test_unsubscribe_after_clear_is_noop():
    registry = SubscriptionRegistry()
    unsubscribe = registry.subscribe("event", _reg())
    registry.clear()
    unsubscribe()
    assert registry.channels() == []


def test_channel_kept_while_other_registrations_remain():
    registry = SubscriptionRegistry()
    unsub_a = registry.subscribe("event", _reg())
    registry.subscribe("event", _reg(DeliveryMode.NONBLOCKING))
    unsub_a()
    assert registry.counts() == {"event": 1}


def test_lookup_returns_snapshot():
    registry = SubscriptionRegistry()
    reg = _reg()
    unsubscribe = registry.subscribe("event", reg)
    snapshot = registry.lookup("event")
    unsubscribe()
    assert snapshot == (reg,)
    assert registry.lookup("event") == ()


# ── Clear / introspection ─────────────────────────────────────────────────────

def test_clear_resets_everything():
    registry = SubscriptionRegistry()
    registry.subscribe(["a", "b", "*"], _reg())
    registry.subscribe("a", _reg())
    registry.clear()
    assert len(registry) == 0
    assert registry.channels() == []


def test_churn_leaves_no_empty_channels():
    registry = SubscriptionRegistry()
    for i in range(100):
        registry.subscribe(f"changed:{i}", _reg())()
    assert registry.channels() == []


def test_as_channel_list():
    assert as_channel_list("open") == ["open"]
    assert as_channel_list(("open", "close")) == ["open", "close"]
