"""
A simulated fuzzing workload.

`SimulatedWorkload` drives a `Fuzzer` through its phases with randomly
generated programs and random execution outcomes, publishing the same
events a real engine would. It exists to exercise the terminal UI end to
end; no program is actually executed.
"""

from __future__ import annotations

import dataclasses
import random
import uuid
from typing import TYPE_CHECKING

from fuzzterm.events import (
    CrashEvent,
    ExecutionEvent,
    FuzzerPhase,
    InterestingProgramEvent,
    LogEvent,
    LogLevel,
    TypeCollectionStatus,
)
from fuzzterm.lifter import Program

if TYPE_CHECKING:
    from fuzzterm.engine import Fuzzer

# Seconds between two batches of iterations.
STEP_INTERVAL = 0.1

CRASH_PROBABILITY = 0.002
TIMEOUT_PROBABILITY = 0.01
VALID_PROBABILITY = 0.85
INTERESTING_PROBABILITY = 0.03
WORKER_LOG_PROBABILITY = 0.005

# (statement template, inferred type of the defined variable)
STATEMENT_TEMPLATES: list[tuple[str, str]] = [
    ("v{n} = {a} + {b}", "int"),
    ("v{n} = [{a}, {b}, {a}]", "list[int]"),
    ("v{n} = str({a})", "str"),
    ("v{n} = {{'key': {a}}}", "dict[str, int]"),
    ("v{n} = ({a}, {b})", "tuple[int, int]"),
    ("v{n} = {a} / ({b} or 1)", "float"),
    ("v{n} = bytes([{a} % 256])", "bytes"),
    ("v{n} = {a} > {b}", "bool"),
]

GENERATOR_COMMENTS = [
    "Generated by ArithmeticGenerator",
    "Mutated by OperationMutator",
    "Spliced from corpus",
    "Mutated by InputMutator",
]

WORKER_MESSAGES = [
    "Synchronized corpus with master",
    "Imported 3 programs from master",
    "Execution environment restarted",
]


class SimulatedWorkload:
    """Generate programs and outcomes on a fuzzer's queue."""

    def __init__(
        self,
        fuzzer: Fuzzer,
        rng: random.Random | None = None,
        iterations_per_second: int = 100,
        num_workers: int = 0,
        import_size: int = 5,
    ) -> None:
        self.fuzzer = fuzzer
        self.rng = rng or random.Random(fuzzer.config.seed)
        self.batch_size = max(1, round(iterations_per_second * STEP_INTERVAL))
        self.import_size = import_size
        self.workers = [
            uuid.UUID(int=self.rng.getrandbits(128), version=4) for _ in range(num_workers)
        ]
        self.log = fuzzer.make_logger("Fuzzer")
        self.coverage = 0.0
        self.seen_crashes: set[str] = set()
        self.iterations = 0

    def start(self) -> None:
        """Import the initial corpus and begin generating programs."""
        self.fuzzer.sync(self._start)

    def _start(self) -> None:
        for worker_id in self.workers:
            self.fuzzer.dispatch_event(self.fuzzer.events.worker_connected, worker_id)
            self.log.info(f"Worker {worker_id} connected")

        self.fuzzer.set_phase(FuzzerPhase.CORPUS_IMPORT)
        for _ in range(self.import_size):
            self.fuzzer.corpus.add(self.generate_program())
        self.log.info(f"Imported {self.import_size} programs into the corpus")

        self.fuzzer.set_phase(FuzzerPhase.INITIAL_CORPUS_GENERATION)
        self.log.info(
            f"Generating initial corpus of {self.fuzzer.config.min_corpus_size} programs "
            f"with {self.fuzzer.engine_name}"
        )
        self.fuzzer.timers.run_after(STEP_INTERVAL, self._step)

    def _step(self) -> None:
        if self.fuzzer.is_stopped:
            return
        for _ in range(self.batch_size):
            self.fuzz_one()

        if (
            self.fuzzer.phase is FuzzerPhase.INITIAL_CORPUS_GENERATION
            and self.fuzzer.corpus.size >= self.fuzzer.config.min_corpus_size
        ):
            self.fuzzer.set_phase(FuzzerPhase.FUZZING)
            self.log.info(f"Initial corpus generated, corpus size: {self.fuzzer.corpus.size}")

        self.fuzzer.timers.run_after(STEP_INTERVAL, self._step)

    def generate_program(self) -> Program:
        """Return a random straight-line program."""
        code: list[str] = []
        types: dict[int, str] = {}
        comments: dict[int, str] = {}
        for n in range(self.rng.randint(3, 12)):
            template, type_name = self.rng.choice(STATEMENT_TEMPLATES)
            # Reuse an earlier variable half of the time.
            if n and self.rng.random() < 0.5:
                a = f"v{self.rng.randrange(n)}"
            else:
                a = str(self.rng.randint(-8, 64))
            b = self.rng.randint(-8, 64)
            code.append(template.format(n=n, a=a, b=b))
            types[n] = type_name
            if self.rng.random() < 0.2:
                comments[n] = self.rng.choice(GENERATOR_COMMENTS)
        return Program(code=tuple(code), comments=comments, types=types)

    def fuzz_one(self) -> None:
        """Generate one program and publish the events for a random outcome."""
        fuzzer = self.fuzzer
        events = fuzzer.events
        self.iterations += 1

        program = self.generate_program()
        fuzzer.dispatch_event(events.program_generated, program)

        roll = self.rng.random()
        timed_out = CRASH_PROBABILITY <= roll < CRASH_PROBABILITY + TIMEOUT_PROBABILITY
        execution_time = (
            fuzzer.config.timeout if timed_out else self.rng.uniform(0.0005, 0.004)
        )
        fuzzer.dispatch_event(events.post_execute, ExecutionEvent(program, execution_time))

        if roll < CRASH_PROBABILITY:
            self._report_crash(program)
        elif timed_out:
            fuzzer.dispatch_event(events.timeout_found, program)
        elif self.rng.random() < VALID_PROBABILITY:
            fuzzer.dispatch_event(events.valid_program_found, program)
            if self.rng.random() < INTERESTING_PROBABILITY:
                self._report_interesting(program)

        if self.workers and self.rng.random() < WORKER_LOG_PROBABILITY:
            event = LogEvent(
                origin=self.rng.choice(self.workers),
                level=LogLevel.VERBOSE,
                label="Worker",
                message=self.rng.choice(WORKER_MESSAGES),
            )
            fuzzer.dispatch_event(events.log, event)

    def _report_crash(self, program: Program) -> None:
        # Crashes are deduplicated on the statement that triggered them.
        signature = program.code[-1].split(" = ", 1)[-1]
        is_unique = signature not in self.seen_crashes
        self.seen_crashes.add(signature)
        comments = dict(program.comments)
        comments[0] = f"CRASH INFO\nTERMSIG: 11\nSIGNATURE: {signature}"
        crashing = dataclasses.replace(program, comments=comments)
        if is_unique:
            self.log.warning(f"Crashing program found ({len(self.seen_crashes)} unique so far)")
        self.fuzzer.dispatch_event(self.fuzzer.events.crash_found, CrashEvent(crashing, is_unique))

    def _report_interesting(self, program: Program) -> None:
        self.coverage += (1.0 - self.coverage) * 0.01
        self.fuzzer.corpus.add(program)

        status = TypeCollectionStatus.NOT_ATTEMPTED
        if self.fuzzer.config.collect_runtime_types:
            roll = self.rng.random()
            if roll < 0.05:
                status = TypeCollectionStatus.TIMEOUT
            elif roll < 0.07:
                status = TypeCollectionStatus.FAILURE
            else:
                status = TypeCollectionStatus.SUCCESS

        self.fuzzer.dispatch_event(
            self.fuzzer.events.interesting_program_found,
            InterestingProgramEvent(program, coverage=self.coverage, type_collection=status),
        )
        self.log.verbose(f"Program added to corpus, coverage now {self.coverage:.2%}")
