"""
A basic terminal UI for a running fuzzer.

The UI subscribes to the fuzzer's events and prints log lines, unique
crashes, the occasional generated program and periodic statistics
reports. It owns no threads: every handler runs on the fuzzer's queue.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from fuzzterm.colors import color_for_level, colorize
from fuzzterm.engine import Fuzzer, FuzzerStateError
from fuzzterm.events import CrashEvent, LogEvent, ShutdownReason
from fuzzterm.lifter import LiftingOptions, Program
from fuzzterm.report import format_statistics
from fuzzterm.statistics import Statistics

logger = logging.getLogger(__name__)

SECONDS = 1.0
MINUTES = 60 * SECONDS

STATS_REPORT_INTERVAL = 1 * MINUTES

CRASH_BANNER = "########## Unique Crash Found ##########"
PROGRAM_BANNER = "--------- Generated Program -----------"
FINISHED_BANNER = "\n++++++++++ Fuzzer Finished ++++++++++\n"


def short_id(origin: object) -> str:
    """Return the first dash-separated segment of an instance id."""
    return str(origin).split("-")[0]


class TerminalUI:
    """
    Print a fuzzer's events to the terminal.

    Attributes:
        print_next_generated_program: If set, the next program generated by
            the fuzzer is printed and the flag is cleared. Only read or write
            it on the fuzzer's queue; use `request_program_dump()` elsewhere.
    """

    def __init__(self, fuzzer: Fuzzer, stream: TextIO | None = None) -> None:
        self.fuzzer = fuzzer
        self.stream = stream
        self.print_next_generated_program = False

        # Listeners have to be registered on the fuzzer's queue.
        fuzzer.sync(lambda: self._init_on_fuzzer_queue(fuzzer))

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream if self.stream is not None else sys.stdout, flush=True)

    def _init_on_fuzzer_queue(self, fuzzer: Fuzzer) -> None:
        # Register the log listener first so that messages emitted during
        # fuzzer initialization are printed too.
        fuzzer.register_event_listener(fuzzer.events.log, self._on_log)
        fuzzer.register_event_listener(fuzzer.events.crash_found, self._on_crash_found)
        fuzzer.register_event_listener(
            fuzzer.events.program_generated, self._on_program_generated
        )
        # Everything else happens once the fuzzer has finished initializing.
        fuzzer.register_event_listener(fuzzer.events.initialized, self._on_initialized)

    def _on_log(self, event: LogEvent) -> None:
        color = color_for_level(event.level)
        if event.origin == self.fuzzer.id:
            line = f"[{event.label}] {event.message}"
        else:
            # Mark messages from workers with the worker's id.
            line = f"[{short_id(event.origin)}:{event.label}] {event.message}"
        self._print(colorize(line, color))

    def _on_crash_found(self, event: CrashEvent) -> None:
        if not event.is_unique:
            return
        self._print(CRASH_BANNER)
        self._print(self.fuzzer.lifter.lift(event.program, LiftingOptions.INCLUDE_COMMENTS))

    def _on_program_generated(self, program: Program) -> None:
        if not self.print_next_generated_program:
            return
        self._print(PROGRAM_BANNER)
        self._print(self.fuzzer.lifter.lift(program, LiftingOptions.DUMP_TYPES))
        self.print_next_generated_program = False

    def _on_initialized(self, _: None) -> None:
        stats = Statistics.instance(self.fuzzer)
        if stats is None:
            logger.debug("[*] No statistics module installed; periodic reports disabled.")
            return

        def on_shutdown(reason: ShutdownReason) -> None:
            self._print(FINISHED_BANNER)
            self.print_stats(stats)

        def report() -> None:
            self.print_stats(stats)
            self._print()

        self.fuzzer.register_event_listener(self.fuzzer.events.shutdown, on_shutdown)
        self.fuzzer.timers.schedule_task(every=STATS_REPORT_INTERVAL, action=report)

    def print_stats(self, stats: Statistics) -> None:
        """Compute a fresh snapshot and print the statistics report."""
        snapshot = stats.compute()
        self._print(
            format_statistics(
                snapshot,
                phase=self.fuzzer.phase,
                engine_name=self.fuzzer.engine_name,
                corpus_size=self.fuzzer.corpus.size,
                show_types_rate=snapshot.collect_runtime_types,
                show_type_collection=snapshot.collect_runtime_types,
            )
        )

    def request_program_dump(self) -> None:
        """Ask for the next generated program to be printed.

        Safe to call from any thread, including signal handlers: the flag is
        set on the fuzzer's queue. Does nothing once the fuzzer has stopped.
        """

        def set_flag() -> None:
            self.print_next_generated_program = True

        try:
            self.fuzzer.async_do(set_flag)
        except FuzzerStateError:
            logger.debug("[*] Fuzzer has stopped; ignoring program dump request.")
