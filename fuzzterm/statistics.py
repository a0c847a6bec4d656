"""
Statistics module for the fuzzer.

Counts fuzzing events as they are dispatched and computes immutable
`StatisticsSnapshot` objects on demand. The module only keeps running
totals; all of its state is read and written on the fuzzer's queue.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from fuzzterm.events import (
    CrashEvent,
    ExecutionEvent,
    InterestingProgramEvent,
    TypeCollectionStatus,
)
from fuzzterm.lifter import Program

if TYPE_CHECKING:
    from fuzzterm.engine import Fuzzer


@dataclass(frozen=True)
class StatisticsSnapshot:
    """A point-in-time view of the fuzzer's aggregate statistics.

    Rates are fractions in [0, 1]. `avg_program_size` is in lines and
    `execs_per_second` is averaged over the whole run.
    """

    total_samples: int = 0
    valid_samples: int = 0
    interesting_samples: int = 0
    interesting_samples_with_types: int = 0
    timed_out_samples: int = 0
    crashing_samples: int = 0
    total_execs: int = 0
    avg_program_size: float = 0.0
    coverage: float = 0.0
    num_workers: int = 0
    execs_per_second: float = 0.0
    fuzzer_overhead: float = 0.0
    success_rate: float = 0.0
    timeout_rate: float = 0.0
    interesting_samples_with_types_rate: float = 0.0
    type_collection_timeout_rate: float = 0.0
    type_collection_failure_rate: float = 0.0
    collect_runtime_types: bool = False


def _ratio(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


class Statistics:
    """Fuzzer module that aggregates event counts into snapshots."""

    name = "Statistics"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.collect_runtime_types = False
        self.start_time: float | None = None

        self.total_samples = 0
        self.valid_samples = 0
        self.interesting_samples = 0
        self.interesting_samples_with_types = 0
        self.timed_out_samples = 0
        self.crashing_samples = 0
        self.total_execs = 0
        self.total_program_size = 0
        self.total_execution_time = 0.0
        self.coverage = 0.0
        self.type_collection_attempts = 0
        self.type_collection_timeouts = 0
        self.type_collection_failures = 0
        self.workers: set[uuid.UUID] = set()

    @classmethod
    def instance(cls, fuzzer: Fuzzer) -> Statistics | None:
        """Return the statistics module installed on a fuzzer, if any."""
        module = fuzzer.modules.get(cls.name)
        return module if isinstance(module, cls) else None

    def initialize(self, fuzzer: Fuzzer) -> None:
        """Register the module's listeners. Called on the fuzzer's queue."""
        self.collect_runtime_types = fuzzer.config.collect_runtime_types
        self.start_time = self.clock()

        events = fuzzer.events
        fuzzer.register_event_listener(events.program_generated, self._on_program_generated)
        fuzzer.register_event_listener(events.valid_program_found, self._on_valid_program)
        fuzzer.register_event_listener(
            events.interesting_program_found, self._on_interesting_program
        )
        fuzzer.register_event_listener(events.timeout_found, self._on_timeout)
        fuzzer.register_event_listener(events.crash_found, self._on_crash)
        fuzzer.register_event_listener(events.post_execute, self._on_post_execute)
        fuzzer.register_event_listener(events.worker_connected, self.workers.add)
        fuzzer.register_event_listener(events.worker_disconnected, self.workers.discard)

    def _on_program_generated(self, program: Program) -> None:
        self.total_samples += 1
        self.total_program_size += program.size

    def _on_valid_program(self, program: Program) -> None:
        self.valid_samples += 1

    def _on_interesting_program(self, event: InterestingProgramEvent) -> None:
        self.interesting_samples += 1
        self.coverage = max(self.coverage, event.coverage)
        if event.type_collection is TypeCollectionStatus.NOT_ATTEMPTED:
            return
        self.type_collection_attempts += 1
        if event.type_collection is TypeCollectionStatus.SUCCESS:
            self.interesting_samples_with_types += 1
        elif event.type_collection is TypeCollectionStatus.TIMEOUT:
            self.type_collection_timeouts += 1
        elif event.type_collection is TypeCollectionStatus.FAILURE:
            self.type_collection_failures += 1

    def _on_timeout(self, program: Program) -> None:
        self.timed_out_samples += 1

    def _on_crash(self, event: CrashEvent) -> None:
        self.crashing_samples += 1

    def _on_post_execute(self, event: ExecutionEvent) -> None:
        self.total_execs += 1
        self.total_execution_time += event.execution_time

    def compute(self) -> StatisticsSnapshot:
        """Return a snapshot of the current statistics."""
        elapsed = self.clock() - self.start_time if self.start_time is not None else 0.0
        if elapsed > 0:
            overhead = min(1.0, max(0.0, 1.0 - self.total_execution_time / elapsed))
        else:
            overhead = 0.0

        return StatisticsSnapshot(
            total_samples=self.total_samples,
            valid_samples=self.valid_samples,
            interesting_samples=self.interesting_samples,
            interesting_samples_with_types=self.interesting_samples_with_types,
            timed_out_samples=self.timed_out_samples,
            crashing_samples=self.crashing_samples,
            total_execs=self.total_execs,
            avg_program_size=_ratio(self.total_program_size, self.total_samples),
            coverage=self.coverage,
            num_workers=len(self.workers),
            execs_per_second=_ratio(self.total_execs, elapsed),
            fuzzer_overhead=overhead,
            success_rate=_ratio(self.valid_samples, self.total_samples),
            timeout_rate=_ratio(self.timed_out_samples, self.total_samples),
            interesting_samples_with_types_rate=_ratio(
                self.interesting_samples_with_types, self.interesting_samples
            ),
            type_collection_timeout_rate=_ratio(
                self.type_collection_timeouts, self.type_collection_attempts
            ),
            type_collection_failure_rate=_ratio(
                self.type_collection_failures, self.type_collection_attempts
            ),
            collect_runtime_types=self.collect_runtime_types,
        )
