import json
import threading

from pm_autopilot.control_plane.automation.events import (
    AutomationEvent,
    EventBus,
    format_sse,
    stream_events,
)


def test_published_events_reach_every_subscriber() -> None:
    bus = EventBus()
    first = bus.subscribe()
    second = bus.subscribe()

    bus.publish("run_started", {"run_id": "r1"})

    for subscription in (first, second):
        event = subscription.get(timeout=1)
        assert event is not None
        assert event.type == "run_started"
        assert event.data == {"run_id": "r1"}
    assert bus.subscriber_count == 2


def test_close_is_idempotent_and_stops_delivery() -> None:
    bus = EventBus()
    subscription = bus.subscribe()

    subscription.close()
    subscription.close()
    bus.publish("run_started", {})

    assert bus.subscriber_count == 0
    assert subscription.closed is True
    assert subscription.get(timeout=0.01) is None


def test_full_subscriber_drops_events_without_blocking_publisher() -> None:
    bus = EventBus()
    slow = bus.subscribe(max_pending=2)
    fast = bus.subscribe()

    for index in range(3):
        bus.publish("action_proposed", {"index": index})

    assert slow.dropped == 1
    assert fast.dropped == 0
    assert [slow.get(timeout=0.1).data["index"] for _ in range(2)] == [0, 1]


def test_callback_subscription_is_served_off_the_publisher_thread() -> None:
    bus = EventBus()
    received: list[str] = []
    done = threading.Event()

    def on_event(event: AutomationEvent) -> None:
        if event.type == "run_failed":
            raise RuntimeError("subscriber bug")
        received.append(event.type)
        if event.type == "run_completed":
            done.set()

    with bus.subscribe(on_event):
        bus.publish("run_failed", {})
        bus.publish("run_started", {})
        bus.publish("run_completed", {})
        assert done.wait(timeout=2)

    assert received == ["run_started", "run_completed"]
    assert bus.subscriber_count == 0


def test_format_sse_frames_event_as_json() -> None:
    event = AutomationEvent(type="config_updated", data={"enabled": True}, timestamp="t0")

    frame = format_sse(event)

    assert frame.startswith("event: config_updated\ndata: ")
    assert frame.endswith("\n\n")
    body = json.loads(frame.split("data: ", 1)[1])
    assert body == {"type": "config_updated", "timestamp": "t0", "data": {"enabled": True}}


def test_stream_events_sends_heartbeats_while_idle() -> None:
    bus = EventBus()
    subscription = bus.subscribe()
    stream = stream_events(subscription, heartbeat_seconds=0.01)

    assert next(stream) == ":heartbeat\n\n"
    bus.publish("run_started", {"run_id": "r1"})
    assert next(stream).startswith("event: run_started\n")

    subscription.close()
    assert list(stream) == []
