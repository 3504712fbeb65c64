"""Tests for event bus."""

from chainforge.core.events import EventBus, EventType


def test_subscribe_publish():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.NODE_CREATED, lambda **kw: received.append(kw))
    bus.publish(EventType.NODE_CREATED, node="shoulder")
    assert len(received) == 1
    assert received[0] == {"node": "shoulder"}


def test_unsubscribe():
    bus = EventBus()
    received = []
    handler = lambda **kw: received.append(kw)
    bus.subscribe(EventType.NODE_CREATED, handler)
    bus.unsubscribe(EventType.NODE_CREATED, handler)
    bus.publish(EventType.NODE_CREATED, node="shoulder")
    assert len(received) == 0


def test_unsubscribe_unknown_handler():
    bus = EventBus()
    # Should not raise
    bus.unsubscribe(EventType.NODE_DESTROYED, lambda **kw: None)


def test_multiple_subscribers():
    bus = EventBus()
    a, b = [], []
    bus.subscribe(EventType.IK_SOLVE_FINISHED, lambda **kw: a.append(1))
    bus.subscribe(EventType.IK_SOLVE_FINISHED, lambda **kw: b.append(1))
    bus.publish(EventType.IK_SOLVE_FINISHED, end_effector=None, result=None)
    assert len(a) == 1
    assert len(b) == 1


def test_handler_may_unsubscribe_itself():
    bus = EventBus()
    calls = []

    def once(**kw):
        calls.append(1)
        bus.unsubscribe(EventType.NODE_REPARENTED, once)

    bus.subscribe(EventType.NODE_REPARENTED, once)
    bus.publish(EventType.NODE_REPARENTED)
    bus.publish(EventType.NODE_REPARENTED)
    assert calls == [1]


def test_different_events_independent():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.NODE_CREATED, lambda **kw: received.append("created"))
    bus.publish(EventType.NODE_DESTROYED, node=None)
    assert len(received) == 0


def test_clear():
    bus = EventBus()
    bus.subscribe(EventType.NODE_CREATED, lambda **kw: None)
    bus.clear()
    # Should not raise
    bus.publish(EventType.NODE_CREATED)
