"""
Tests for the fuzzer host (fuzzterm/engine.py).

Covers the serial queue, event dispatch, timers and the Initialized and
Shutdown lifecycle.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock

from fuzzterm.config import FuzzerConfig
from fuzzterm.engine import Corpus, Fuzzer, FuzzerQueue, FuzzerStateError, Timers
from fuzzterm.events import FuzzerPhase, LogEvent, LogLevel, ShutdownReason
from fuzzterm.lifter import Program


class TestFuzzerQueue(unittest.TestCase):
    """Tests for the serial execution context."""

    def setUp(self):
        self.queue = FuzzerQueue(name="test-queue")

    def tearDown(self):
        self.queue.stop()
        self.queue.join(timeout=5)

    def test_sync_returns_result(self):
        self.assertEqual(self.queue.sync(lambda: 42), 42)

    def test_sync_runs_on_queue_thread(self):
        self.assertFalse(self.queue.is_current())
        self.assertTrue(self.queue.sync(self.queue.is_current))

    def test_sync_reraises_exception(self):
        def fail():
            raise ValueError("boom")

        with self.assertRaisesRegex(ValueError, "boom"):
            self.queue.sync(fail)

    def test_sync_inline_when_on_queue(self):
        """A nested sync runs inline instead of deadlocking."""
        result = self.queue.sync(lambda: self.queue.sync(lambda: "nested"))
        self.assertEqual(result, "nested")

    def test_async_tasks_run_in_order(self):
        seen = []
        for i in range(20):
            self.queue.async_do(lambda i=i: seen.append(i))
        self.queue.sync(lambda: None)
        self.assertEqual(seen, list(range(20)))

    def test_failing_task_does_not_stop_queue(self):
        def fail():
            raise RuntimeError("task failure")

        with self.assertLogs("fuzzterm.engine", level="ERROR") as logs:
            self.queue.async_do(fail)
            self.assertEqual(self.queue.sync(lambda: "still running"), "still running")
        self.assertIn("Unhandled exception", logs.output[0])

    def test_stopped_queue_rejects_work(self):
        self.queue.stop()
        self.assertTrue(self.queue.is_stopped)
        with self.assertRaises(FuzzerStateError):
            self.queue.async_do(lambda: None)
        with self.assertRaises(FuzzerStateError):
            self.queue.sync(lambda: None)

    def test_pending_tasks_run_after_stop(self):
        seen = []
        self.queue.async_do(lambda: seen.append("before"))
        self.queue.stop()
        self.queue.join(timeout=5)
        self.assertEqual(seen, ["before"])

    def test_reentrant_enqueue_on_same_thread(self):
        """A block enqueued while the enqueue lock is held on this thread is accepted."""
        seen = []
        with self.queue._lock:
            self.queue.async_do(lambda: seen.append(1))
        self.queue.sync(lambda: None)
        self.assertEqual(seen, [1])


class StopDuringEnqueueQueue(FuzzerQueue):
    """Calls stop() from another thread just before the first task is enqueued."""

    def __init__(self, name: str) -> None:
        self.stopper: threading.Thread | None = None
        super().__init__(name)

    def _enqueue(self, item):
        if item is not None and self.stopper is None:
            self.stopper = threading.Thread(target=self.stop)
            self.stopper.start()
            # Give stop() the chance to run between the check and the put.
            self.stopper.join(timeout=0.2)
        super()._enqueue(item)


class TestFuzzerQueueStopRace(unittest.TestCase):
    """Tests for stop() racing with an enqueue from another thread."""

    def test_sync_completes_when_stop_overlaps_enqueue(self):
        fuzzer_queue = StopDuringEnqueueQueue(name="race-queue")
        outcome = []

        def caller():
            try:
                outcome.append(fuzzer_queue.sync(lambda: 1))
            except FuzzerStateError as e:
                outcome.append(e)

        thread = threading.Thread(target=caller, daemon=True)
        thread.start()
        thread.join(timeout=5)

        self.assertFalse(thread.is_alive(), "sync() never returned")
        self.assertEqual(outcome, [1])
        fuzzer_queue.stopper.join(timeout=5)
        self.assertTrue(fuzzer_queue.is_stopped)
        fuzzer_queue.join(timeout=5)

    def test_enqueue_after_racing_stop_is_rejected(self):
        fuzzer_queue = StopDuringEnqueueQueue(name="race-queue")
        fuzzer_queue.async_do(lambda: None)
        fuzzer_queue.stopper.join(timeout=5)
        with self.assertRaises(FuzzerStateError):
            fuzzer_queue.async_do(lambda: None)
        fuzzer_queue.join(timeout=5)


class TestTimers(unittest.TestCase):
    """Tests for delayed and repeating tasks."""

    def setUp(self):
        self.queue = FuzzerQueue(name="timer-queue")
        self.timers = Timers(self.queue)

    def tearDown(self):
        self.queue.sync(self.timers.cancel_all)
        self.queue.stop()
        self.queue.join(timeout=5)

    def test_schedule_task_repeats_on_queue(self):
        fired = threading.Event()
        calls = []

        def action():
            calls.append(self.queue.is_current())
            if len(calls) >= 3:
                fired.set()

        self.queue.sync(lambda: self.timers.schedule_task(every=0.01, action=action))
        self.assertTrue(fired.wait(timeout=5))
        self.assertTrue(all(calls))

    def test_run_after_fires_once(self):
        fired = threading.Event()
        calls = []

        def action():
            calls.append(1)
            fired.set()

        self.queue.sync(lambda: self.timers.run_after(0.01, action))
        self.assertTrue(fired.wait(timeout=5))
        self.queue.sync(lambda: None)
        self.assertEqual(calls, [1])
        self.assertEqual(self.queue.sync(lambda: self.timers.pending_count), 0)

    def test_cancel_all_prevents_actions(self):
        action = MagicMock()
        self.queue.sync(lambda: self.timers.schedule_task(every=0.05, action=action))
        self.queue.sync(self.timers.cancel_all)
        self.assertEqual(self.queue.sync(lambda: self.timers.pending_count), 0)
        time.sleep(0.2)
        self.queue.sync(lambda: None)
        action.assert_not_called()

    def test_no_scheduling_after_cancel(self):
        self.queue.sync(self.timers.cancel_all)
        self.queue.sync(lambda: self.timers.run_after(0.01, MagicMock()))
        self.assertEqual(self.queue.sync(lambda: self.timers.pending_count), 0)

    def test_failing_action_keeps_repeating(self):
        fired = threading.Event()
        calls = []

        def action():
            calls.append(1)
            if len(calls) >= 2:
                fired.set()
            raise RuntimeError("periodic failure")

        with self.assertLogs("fuzzterm.engine", level="ERROR"):
            self.queue.sync(lambda: self.timers.schedule_task(every=0.01, action=action))
            self.assertTrue(fired.wait(timeout=5))


class TestFuzzerEvents(unittest.TestCase):
    """Tests for listener registration and dispatch."""

    def setUp(self):
        self.fuzzer = Fuzzer()

    def tearDown(self):
        self.fuzzer.shutdown(ShutdownReason.FINISHED)
        self.fuzzer.wait_for_shutdown(timeout=5)

    def test_register_off_queue_raises(self):
        with self.assertRaises(FuzzerStateError):
            self.fuzzer.register_event_listener(self.fuzzer.events.log, print)

    def test_dispatch_off_queue_raises(self):
        with self.assertRaises(FuzzerStateError):
            self.fuzzer.dispatch_event(self.fuzzer.events.initialized)

    def test_listeners_called_in_registration_order(self):
        seen = []
        events = self.fuzzer.events

        def setup():
            self.fuzzer.register_event_listener(events.log, lambda ev: seen.append(("a", ev)))
            self.fuzzer.register_event_listener(events.log, lambda ev: seen.append(("b", ev)))
            self.fuzzer.dispatch_event(events.log, "payload")

        self.fuzzer.sync(setup)
        self.assertEqual(seen, [("a", "payload"), ("b", "payload")])

    def test_failing_listener_does_not_block_delivery(self):
        seen = []
        events = self.fuzzer.events

        def fail(_):
            raise RuntimeError("listener failure")

        def setup():
            self.fuzzer.register_event_listener(events.crash_found, fail)
            self.fuzzer.register_event_listener(events.crash_found, seen.append)
            self.fuzzer.dispatch_event(events.crash_found, "first")
            self.fuzzer.dispatch_event(events.crash_found, "second")

        with self.assertLogs("fuzzterm.engine", level="ERROR") as logs:
            self.fuzzer.sync(setup)
        self.assertEqual(seen, ["first", "second"])
        self.assertIn("CrashFound", logs.output[0])

    def test_listener_registered_during_dispatch_sees_next_event(self):
        seen = []
        events = self.fuzzer.events

        def register_more(_):
            self.fuzzer.register_event_listener(events.log, seen.append)

        def setup():
            self.fuzzer.register_event_listener(events.initialized, register_more)
            self.fuzzer.dispatch_event(events.initialized)
            self.fuzzer.dispatch_event(events.log, "after")

        self.fuzzer.sync(setup)
        self.assertEqual(seen, ["after"])

    def test_logger_dispatches_log_events(self):
        seen = []
        self.fuzzer.sync(
            lambda: self.fuzzer.register_event_listener(self.fuzzer.events.log, seen.append)
        )
        log = self.fuzzer.make_logger("Test")
        log.warning("careful")
        self.fuzzer.sync(lambda: None)
        self.assertEqual(seen, [LogEvent(self.fuzzer.id, LogLevel.WARNING, "Test", "careful")])


class TestFuzzerLifecycle(unittest.TestCase):
    """Tests for start and shutdown."""

    def setUp(self):
        self.fuzzer = Fuzzer(FuzzerConfig(engine_name="TestEngine"))

    def tearDown(self):
        self.fuzzer.shutdown(ShutdownReason.FINISHED)
        self.fuzzer.wait_for_shutdown(timeout=5)

    def test_engine_name_comes_from_config(self):
        self.assertEqual(self.fuzzer.engine_name, "TestEngine")

    def test_start_initializes_modules_then_dispatches_initialized(self):
        order = []
        module = MagicMock()
        module.name = "Recorder"
        module.initialize.side_effect = lambda fuzzer: order.append("module")
        self.fuzzer.add_module(module)
        self.fuzzer.sync(
            lambda: self.fuzzer.register_event_listener(
                self.fuzzer.events.initialized, lambda _: order.append("initialized")
            )
        )
        self.fuzzer.start()
        self.assertTrue(self.fuzzer.is_initialized)
        self.assertEqual(order, ["module", "initialized"])
        module.initialize.assert_called_once_with(self.fuzzer)

    def test_start_twice_raises(self):
        self.fuzzer.start()
        with self.assertRaises(FuzzerStateError):
            self.fuzzer.start()

    def test_add_module_after_start_raises(self):
        self.fuzzer.start()
        module = MagicMock()
        module.name = "Late"
        with self.assertRaises(FuzzerStateError):
            self.fuzzer.add_module(module)

    def test_shutdown_dispatched_exactly_once(self):
        reasons = []
        self.fuzzer.sync(
            lambda: self.fuzzer.register_event_listener(self.fuzzer.events.shutdown, reasons.append)
        )
        self.fuzzer.start()
        self.fuzzer.shutdown(ShutdownReason.USER_INITIATED)
        self.fuzzer.shutdown(ShutdownReason.FINISHED)
        self.assertTrue(self.fuzzer.wait_for_shutdown(timeout=5))
        self.assertEqual(reasons, [ShutdownReason.USER_INITIATED])
        self.assertTrue(self.fuzzer.is_stopped)

    def test_shutdown_cancels_timers(self):
        self.fuzzer.timers = MagicMock()
        self.fuzzer.shutdown(ShutdownReason.FINISHED)
        self.fuzzer.wait_for_shutdown(timeout=5)
        self.fuzzer.timers.cancel_all.assert_called_once()

    def test_fatal_log_shuts_down(self):
        reasons = []
        self.fuzzer.sync(
            lambda: self.fuzzer.register_event_listener(self.fuzzer.events.shutdown, reasons.append)
        )
        self.fuzzer.make_logger("Test").fatal("unrecoverable")
        self.assertTrue(self.fuzzer.wait_for_shutdown(timeout=5))
        self.assertEqual(reasons, [ShutdownReason.FATAL_ERROR])

    def test_wait_for_shutdown_times_out(self):
        self.assertFalse(self.fuzzer.wait_for_shutdown(timeout=0.01))

    def test_set_phase_off_queue_raises(self):
        with self.assertRaises(FuzzerStateError):
            self.fuzzer.set_phase(FuzzerPhase.FUZZING)


class TestCorpus(unittest.TestCase):
    def test_size_tracks_added_programs(self):
        corpus = Corpus()
        self.assertEqual(corpus.size, 0)
        corpus.add(Program(code=("v0 = 1",)))
        corpus.add(Program(code=("v0 = 2",)))
        self.assertEqual(corpus.size, 2)


if __name__ == "__main__":
    unittest.main()
