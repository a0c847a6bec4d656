"""
The fuzzer host: execution context, event dispatch, timers and lifecycle.

All of the fuzzer's own work and every event dispatch happen on a single
worker thread, the fuzzer's queue. Code running elsewhere hands work to
the queue with `sync()` (blocking) or `async_do()` (fire and forget), so
state that is only touched on the queue needs no locking.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Any, Callable, TypeVar

from fuzzterm.config import FuzzerConfig
from fuzzterm.events import Event, Events, FuzzerPhase, LogEvent, LogLevel, ShutdownReason
from fuzzterm.lifter import Program, ProgramLifter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FuzzerError(Exception):
    """Base class for fuzzer errors."""


class FuzzerStateError(FuzzerError):
    """Raised when an operation is not valid in the fuzzer's current state."""


class FuzzerQueue:
    """A serial execution context backed by one worker thread.

    Tasks run one at a time in submission order. An exception escaping a
    task is logged and does not stop the queue.
    """

    def __init__(self, name: str = "fuzzer-queue") -> None:
        self.name = name
        self._tasks: queue.SimpleQueue[Callable[[], Any] | None] = queue.SimpleQueue()
        self._stopped = False
        # Held across the `_stopped` check and the put. Reentrant for signal handlers.
        self._lock = threading.RLock()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            task = self._tasks.get()
            if task is None:
                return
            try:
                task()
            except Exception:
                logger.exception(f"[!] Unhandled exception in task on {self.name}")

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def is_current(self) -> bool:
        """Return True if the caller is running on this queue."""
        return threading.current_thread() is self._thread

    def async_do(self, block: Callable[[], Any]) -> None:
        """Enqueue a block and return immediately."""
        with self._lock:
            if self._stopped:
                raise FuzzerStateError(f"{self.name} is stopped")
            self._enqueue(block)

    def sync(self, block: Callable[[], T]) -> T:
        """Run a block on the queue and wait for it to complete.

        Returns the block's result, or re-raises the exception it raised.
        When called from the queue itself the block runs inline.
        """
        if self.is_current():
            return block()

        done = threading.Event()
        outcome: dict[str, Any] = {}

        def task() -> None:
            try:
                outcome["result"] = block()
            except BaseException as e:
                outcome["error"] = e
            finally:
                done.set()

        self.async_do(task)
        done.wait()
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]

    def stop(self) -> None:
        """Stop accepting work. Tasks already enqueued still run."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._enqueue(None)

    def _enqueue(self, item: Callable[[], Any] | None) -> None:
        self._tasks.put(item)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the worker thread to drain and exit."""
        if not self.is_current():
            self._thread.join(timeout)


class Timers:
    """Delayed and repeating tasks that run on a fuzzer queue.

    Timer threads only hand the action over to the queue; bookkeeping and
    the action itself always run on the queue.
    """

    def __init__(self, fuzzer_queue: FuzzerQueue) -> None:
        self._queue = fuzzer_queue
        self._pending: set[threading.Timer] = set()
        self._cancelled = False

    def schedule_task(self, every: float, action: Callable[[], None]) -> None:
        """Run `action` every `every` seconds until the timers are cancelled."""

        def repeat() -> None:
            try:
                action()
            finally:
                self._arm(every, repeat)

        self._arm(every, repeat)

    def run_after(self, delay: float, action: Callable[[], None]) -> None:
        """Run `action` once, `delay` seconds from now."""
        self._arm(delay, action)

    def cancel_all(self) -> None:
        """Cancel every pending timer. No further actions will run."""
        self._cancelled = True
        for timer in self._pending:
            timer.cancel()
        self._pending.clear()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _arm(self, delay: float, action: Callable[[], None]) -> None:
        if self._cancelled:
            return

        def fire() -> None:
            self._pending.discard(timer)
            if not self._cancelled:
                action()

        def post() -> None:
            # Runs on the timer thread.
            try:
                self._queue.async_do(fire)
            except FuzzerStateError:
                return

        timer = threading.Timer(delay, post)
        timer.daemon = True
        self._pending.add(timer)
        timer.start()


class Corpus:
    """The programs the fuzzer keeps for further mutation."""

    def __init__(self) -> None:
        self.programs: list[Program] = []

    def add(self, program: Program) -> None:
        self.programs.append(program)

    @property
    def size(self) -> int:
        return len(self.programs)


class FuzzerLogger:
    """Publishes log messages as Log events on behalf of one component."""

    def __init__(self, fuzzer: Fuzzer, label: str) -> None:
        self.fuzzer = fuzzer
        self.label = label

    def log(self, level: LogLevel, message: str) -> None:
        event = LogEvent(origin=self.fuzzer.id, level=level, label=self.label, message=message)
        self.fuzzer.on_queue(lambda: self.fuzzer.dispatch_event(self.fuzzer.events.log, event))
        if level is LogLevel.FATAL:
            self.fuzzer.on_queue(lambda: self.fuzzer.shutdown(ShutdownReason.FATAL_ERROR))

    def verbose(self, message: str) -> None:
        self.log(LogLevel.VERBOSE, message)

    def info(self, message: str) -> None:
        self.log(LogLevel.INFO, message)

    def warning(self, message: str) -> None:
        self.log(LogLevel.WARNING, message)

    def error(self, message: str) -> None:
        self.log(LogLevel.ERROR, message)

    def fatal(self, message: str) -> None:
        self.log(LogLevel.FATAL, message)


class Fuzzer:
    """
    Host for a fuzzing session.

    Owns the queue, event channels, timers and modules, and drives the
    Initialized and Shutdown lifecycle events. Listener registration and
    event dispatch must happen on the fuzzer's queue.
    """

    def __init__(
        self,
        config: FuzzerConfig | None = None,
        lifter: ProgramLifter | None = None,
        fuzzer_id: uuid.UUID | None = None,
    ) -> None:
        self.id = fuzzer_id or uuid.uuid4()
        self.config = config or FuzzerConfig()
        self.lifter = lifter or ProgramLifter()
        self.queue = FuzzerQueue(name=f"fuzzer-{str(self.id).split('-')[0]}")
        self.events = Events()
        self.timers = Timers(self.queue)
        self.corpus = Corpus()
        self.phase = FuzzerPhase.CORPUS_IMPORT
        self.modules: dict[str, Any] = {}
        self.is_initialized = False
        self.is_stopped = False
        self._finished = threading.Event()

    @property
    def engine_name(self) -> str:
        return self.config.engine_name

    # --- Execution context ---------------------------------------------------

    def sync(self, block: Callable[[], T]) -> T:
        """Run a block on the fuzzer's queue and wait for it."""
        return self.queue.sync(block)

    def async_do(self, block: Callable[[], Any]) -> None:
        """Enqueue a block on the fuzzer's queue."""
        self.queue.async_do(block)

    def on_queue(self, block: Callable[[], Any]) -> None:
        """Run a block now if on the queue, otherwise enqueue it."""
        if self.queue.is_current():
            block()
        else:
            self.queue.async_do(block)

    def _assert_on_queue(self, operation: str) -> None:
        if not self.queue.is_current():
            raise FuzzerStateError(f"{operation} must be called on the fuzzer's queue")

    # --- Events ----------------------------------------------------------------

    def register_event_listener(self, event: Event[T], listener: Callable[[T], None]) -> None:
        """Add a listener to an event channel."""
        self._assert_on_queue("register_event_listener")
        event.listeners.append(listener)

    def dispatch_event(self, event: Event[T], payload: T = None) -> None:
        """Deliver a payload to every listener of an event, in registration order.

        A failing listener is logged and skipped; the remaining listeners
        still receive the event.
        """
        self._assert_on_queue("dispatch_event")
        # Listeners may register further listeners while being dispatched.
        for listener in list(event.listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"[!] Listener for {event.name} event failed")

    def make_logger(self, label: str) -> FuzzerLogger:
        return FuzzerLogger(self, label)

    # --- Modules ---------------------------------------------------------------

    def add_module(self, module: Any) -> None:
        """Install a module. Modules are initialized when the fuzzer starts."""
        if self.is_initialized:
            raise FuzzerStateError("Modules must be added before the fuzzer is started")
        self.modules[module.name] = module

    # --- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Initialize modules and dispatch the Initialized event on the queue."""
        self.sync(self._initialize)

    def _initialize(self) -> None:
        if self.is_initialized:
            raise FuzzerStateError("Fuzzer has already been initialized")
        for module in self.modules.values():
            module.initialize(self)
        self.is_initialized = True
        logger.debug(f"[+] Fuzzer {self.id} initialized with {len(self.modules)} module(s)")
        self.dispatch_event(self.events.initialized)

    def set_phase(self, phase: FuzzerPhase) -> None:
        self._assert_on_queue("set_phase")
        self.phase = phase

    def shutdown(self, reason: ShutdownReason) -> None:
        """Stop the fuzzer. The Shutdown event is dispatched exactly once."""
        if self.queue.is_current():
            self._shutdown(reason)
            return
        try:
            self.sync(lambda: self._shutdown(reason))
        except FuzzerStateError:
            # The queue was stopped by an earlier shutdown.
            return

    def _shutdown(self, reason: ShutdownReason) -> None:
        if self.is_stopped:
            return
        self.is_stopped = True
        logger.debug(f"[*] Fuzzer {self.id} shutting down: {reason.value}")
        self.dispatch_event(self.events.shutdown, reason)
        self.timers.cancel_all()
        self.queue.stop()
        self._finished.set()

    def wait_for_shutdown(self, timeout: float | None = None) -> bool:
        """Block until the fuzzer has shut down. Returns False on timeout."""
        if not self._finished.wait(timeout):
            return False
        self.queue.join()
        return True
