import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from tokendash.live.broadcaster import DeliveryResult, Observer, QueueObserver, SessionBroadcaster
from tokendash.live.file_watcher import ChangeWatcher, WatchState
from tokendash.models import SessionSummary, StreamMessage


def _assistant_line(output_tokens: int) -> str:
    return json.dumps(
        {
            "type": "assistant",
            "message": {"role": "assistant", "model": "claude-sonnet", "usage": {"output_tokens": output_tokens}},
        }
    )


class _RecordingObserver(Observer):
    def __init__(self) -> None:
        self.messages: list[StreamMessage] = []

    def send(self, message: StreamMessage) -> DeliveryResult:
        self.messages.append(message)
        return DeliveryResult.OK


class _ExplodingObserver(Observer):
    def __init__(self) -> None:
        self.calls = 0

    def send(self, message: StreamMessage) -> DeliveryResult:
        self.calls += 1
        raise ConnectionResetError("client went away")


class _ClosedObserver(Observer):
    def send(self, message: StreamMessage) -> DeliveryResult:
        return DeliveryResult.CLOSED


class _FlakyObserver(Observer):
    """Accepts the first message, then fails: raises ``error`` or reports CLOSED."""

    def __init__(self, error: Exception | None) -> None:
        self.error = error
        self.calls = 0

    def send(self, message: StreamMessage) -> DeliveryResult:
        self.calls += 1
        if self.calls == 1:
            return DeliveryResult.OK
        if self.error is not None:
            raise self.error
        return DeliveryResult.CLOSED


class _FakeWatcher:
    def __init__(self, path, on_settled, on_closed) -> None:
        self.path = Path(path)
        self.on_settled = on_settled
        self.on_closed = on_closed
        self.state = WatchState.UNWATCHED
        self.stop_calls = 0

    def start(self) -> None:
        self.state = WatchState.WATCHING

    def stop(self) -> None:
        self.stop_calls += 1
        self.state = WatchState.CLOSED

    def settle(self) -> None:
        self.on_settled(self.path)

    def fail(self) -> None:
        self.state = WatchState.CLOSED
        self.on_closed(self)


class SessionBroadcasterTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.log_path = Path(tmpdir.name) / "session.jsonl"
        self.log_path.write_text(_assistant_line(5) + "\n", encoding="utf-8")

        self.watchers: list[_FakeWatcher] = []

        def factory(path, on_settled, on_closed):
            watcher = _FakeWatcher(path, on_settled, on_closed)
            self.watchers.append(watcher)
            return watcher

        self.broadcaster = SessionBroadcaster(watcher_factory=factory)
        self.addCleanup(self.broadcaster.close)

    def _append(self, line: str) -> None:
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def test_attach_sends_initial_summary_to_new_observer_only(self) -> None:
        first = _RecordingObserver()
        second = _RecordingObserver()

        self.assertEqual(self.broadcaster.attach(self.log_path, first), DeliveryResult.OK)
        self._append(_assistant_line(7))
        self.broadcaster.attach(self.log_path, second)

        self.assertEqual([m.type for m in first.messages], ["init"])
        self.assertEqual([m.type for m in second.messages], ["init"])
        self.assertEqual(len(first.messages[0].data.exchanges), 1)
        self.assertEqual(len(second.messages[0].data.exchanges), 2)

    def test_one_watcher_per_log_reference_counted(self) -> None:
        first = _RecordingObserver()
        second = _RecordingObserver()
        self.broadcaster.attach(self.log_path, first)
        self.broadcaster.attach(self.log_path, second)

        self.assertEqual(len(self.watchers), 1)
        self.assertEqual(self.watchers[0].state, WatchState.WATCHING)
        self.assertEqual(self.broadcaster.observer_count(self.log_path), 2)

        self.broadcaster.detach(self.log_path, first)
        self.assertEqual(self.watchers[0].stop_calls, 0)
        self.assertEqual(self.broadcaster.watched_logs, [str(self.log_path)])

        self.broadcaster.detach(self.log_path, second)
        self.assertEqual(self.watchers[0].stop_calls, 1)
        self.assertEqual(self.broadcaster.watched_logs, [])
        self.assertEqual(self.broadcaster.observer_count(), 0)

        self.broadcaster.detach(self.log_path, second)
        self.assertEqual(self.watchers[0].stop_calls, 1)

    def test_settled_change_publishes_fresh_summary(self) -> None:
        observer = _RecordingObserver()
        self.broadcaster.attach(self.log_path, observer)

        self._append(_assistant_line(11))
        self.watchers[0].settle()

        self.assertEqual([m.type for m in observer.messages], ["init", "update"])
        update = observer.messages[1].data
        self.assertEqual(len(update.exchanges), 2)
        self.assertEqual(update.totals.output, 16)
        self.assertIsNot(update, observer.messages[0].data)

    def test_attach_with_failing_first_delivery_detaches(self) -> None:
        exploding = _ExplodingObserver()
        self.broadcaster.attach(self.log_path, _RecordingObserver())

        self.assertEqual(self.broadcaster.attach(self.log_path, exploding), DeliveryResult.CLOSED)
        self.assertEqual(self.broadcaster.attach(self.log_path, _ClosedObserver()), DeliveryResult.CLOSED)
        self.assertEqual(self.broadcaster.observer_count(self.log_path), 1)
        self.assertEqual(self.watchers[0].stop_calls, 0)

    def test_publish_isolates_failing_observers(self) -> None:
        healthy = _RecordingObserver()
        flaky = _FlakyObserver(ConnectionResetError("client went away"))
        hung_up = _FlakyObserver(None)
        for observer in (flaky, healthy, hung_up):
            self.broadcaster.attach(self.log_path, observer)

        delivered = self.broadcaster.publish(self.log_path, SessionSummary(compactCount=3))

        self.assertEqual(delivered, 1)
        self.assertEqual(healthy.messages[-1].type, "update")
        self.assertEqual(healthy.messages[-1].data.compactCount, 3)
        self.assertEqual(self.broadcaster.observer_count(self.log_path), 1)

        self.broadcaster.publish(self.log_path, SessionSummary(compactCount=4))
        self.assertEqual(flaky.calls, 2)
        self.assertEqual(hung_up.calls, 2)
        self.assertEqual(healthy.messages[-1].data.compactCount, 4)

    def test_updates_reach_each_observer_in_order(self) -> None:
        observer = _RecordingObserver()
        self.broadcaster.attach(self.log_path, observer)

        for count in range(1, 4):
            self.broadcaster.publish(self.log_path, SessionSummary(compactCount=count))

        self.assertEqual([m.data.compactCount for m in observer.messages[1:]], [1, 2, 3])

    def test_publish_without_observers_is_a_no_op(self) -> None:
        self.assertEqual(self.broadcaster.publish(self.log_path, SessionSummary()), 0)

    def test_watcher_failure_removes_it_and_next_attach_recreates(self) -> None:
        first = _RecordingObserver()
        self.broadcaster.attach(self.log_path, first)
        self.watchers[0].fail()

        self.assertEqual(self.broadcaster.watched_logs, [])
        self.assertEqual(self.broadcaster.observer_count(self.log_path), 1)

        self.broadcaster.attach(self.log_path, _RecordingObserver())
        self.assertEqual(len(self.watchers), 2)
        self.assertIs(self.broadcaster.watcher_for(self.log_path), self.watchers[1])

        self.watchers[1].settle()
        self.assertEqual(first.messages[-1].type, "update")

    def test_unrelated_logs_are_independent(self) -> None:
        other_path = self.log_path.with_name("other.jsonl")
        other_path.write_text(_assistant_line(1), encoding="utf-8")
        mine = _RecordingObserver()
        theirs = _RecordingObserver()
        self.broadcaster.attach(self.log_path, mine)
        self.broadcaster.attach(other_path, theirs)

        self.watchers[0].fail()
        self.watchers[1].settle()

        self.assertEqual([m.type for m in mine.messages], ["init"])
        self.assertEqual([m.type for m in theirs.messages], ["init", "update"])

    def test_unreadable_log_is_marked_not_empty(self) -> None:
        observer = _RecordingObserver()
        missing = self.log_path.with_name("missing.jsonl")

        self.broadcaster.attach(missing, observer)

        self.assertTrue(observer.messages[0].data.readError)

    def test_close_stops_all_watchers(self) -> None:
        self.broadcaster.attach(self.log_path, _RecordingObserver())
        self.broadcaster.close()

        self.assertEqual(self.watchers[0].stop_calls, 1)
        self.assertEqual(self.broadcaster.observer_count(), 0)


class QueueObserverTests(unittest.IsolatedAsyncioTestCase):
    async def test_messages_are_received_in_order(self) -> None:
        observer = QueueObserver(maxsize=4)
        for count in range(3):
            self.assertEqual(observer.send(StreamMessage(type="update", data=SessionSummary(compactCount=count))), DeliveryResult.OK)

        received = [await observer.receive(timeout=0.1) for _ in range(3)]

        self.assertEqual([m.data.compactCount for m in received], [0, 1, 2])
        self.assertIsNone(await observer.receive(timeout=0.01))

    async def test_full_queue_closes_observer_instead_of_blocking(self) -> None:
        observer = QueueObserver(maxsize=1)
        message = StreamMessage(type="update", data=SessionSummary())

        self.assertEqual(observer.send(message), DeliveryResult.OK)
        self.assertEqual(observer.send(message), DeliveryResult.CLOSED)
        self.assertTrue(observer.closed)
        self.assertEqual(observer.send(message), DeliveryResult.CLOSED)

        self.assertIsNotNone(await observer.receive(timeout=0.1))
        self.assertIsNone(await observer.receive(timeout=5))


class BroadcasterWithWatcherTests(unittest.IsolatedAsyncioTestCase):
    async def test_burst_of_appends_reaches_observer_as_one_update(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        log_path = Path(tmpdir.name) / "session.jsonl"
        log_path.write_text("", encoding="utf-8")

        notifications: asyncio.Queue = asyncio.Queue()

        async def change_source(path, stop_event):
            while True:
                yield await notifications.get()

        broadcaster = SessionBroadcaster(
            watcher_factory=lambda path, on_settled, on_closed: ChangeWatcher(
                path, on_settled, on_closed=on_closed, debounce_seconds=0.1, change_source=change_source
            )
        )
        self.addCleanup(broadcaster.close)
        observer = QueueObserver()
        broadcaster.attach(log_path, observer)

        initial = await observer.receive(timeout=1)
        self.assertEqual(initial.type, "init")
        self.assertEqual(initial.data.exchanges, [])

        for tokens in (1, 2, 3):
            with log_path.open("a", encoding="utf-8") as handle:
                handle.write(_assistant_line(tokens) + "\n")
            notifications.put_nowait({"modified"})

        update = await observer.receive(timeout=2)
        self.assertEqual(update.type, "update")
        self.assertEqual(update.data.totals.output, 6)
        self.assertIsNone(await observer.receive(timeout=0.3))


if __name__ == "__main__":
    unittest.main()
