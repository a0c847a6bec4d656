"""Event types published by the fuzzer.

Every event kind is a named channel (an `Event`) that carries one payload
type. Listeners are registered on, and invoked from, the fuzzer's queue.
The payloads are frozen dataclasses so that a listener can never mutate
what the next listener receives.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from fuzzterm.lifter import Program

T = TypeVar("T")


class LogLevel(Enum):
    """Severity of a log message."""

    VERBOSE = "verbose"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class FuzzerPhase(Enum):
    """The high-level operating mode of the fuzzer."""

    CORPUS_IMPORT = "corpus_import"
    INITIAL_CORPUS_GENERATION = "initial_corpus_generation"
    FUZZING = "fuzzing"


class ShutdownReason(Enum):
    """Why the fuzzer stopped."""

    USER_INITIATED = "user_initiated"
    FINISHED = "finished"
    FATAL_ERROR = "fatal_error"


class TypeCollectionStatus(Enum):
    """Outcome of collecting runtime type information for a sample."""

    NOT_ATTEMPTED = "not_attempted"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FAILURE = "failure"


@dataclass(frozen=True)
class LogEvent:
    """A log message, tagged with the id of the fuzzer instance that produced it."""

    origin: uuid.UUID
    level: LogLevel
    label: str
    message: str


@dataclass(frozen=True)
class CrashEvent:
    """A crashing program. `is_unique` is False for already-known crashes."""

    program: Program
    is_unique: bool


@dataclass(frozen=True)
class InterestingProgramEvent:
    """A program that triggered new coverage and was added to the corpus."""

    program: Program
    coverage: float
    type_collection: TypeCollectionStatus = TypeCollectionStatus.NOT_ATTEMPTED


@dataclass(frozen=True)
class ExecutionEvent:
    """Emitted after every execution of a generated program."""

    program: Program
    execution_time: float


class Event(Generic[T]):
    """A named event channel and its listeners, in registration order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.listeners: list[Callable[[T], None]] = []

    def __repr__(self) -> str:
        return f"Event({self.name!r}, listeners={len(self.listeners)})"


class Events:
    """The set of event channels a fuzzer exposes."""

    def __init__(self) -> None:
        # Consumed by the terminal UI.
        self.log: Event[LogEvent] = Event("Log")
        self.crash_found: Event[CrashEvent] = Event("CrashFound")
        self.program_generated: Event[Program] = Event("ProgramGenerated")
        self.initialized: Event[None] = Event("Initialized")
        self.shutdown: Event[ShutdownReason] = Event("Shutdown")

        # Consumed by the statistics module.
        self.valid_program_found: Event[Program] = Event("ValidProgramFound")
        self.interesting_program_found: Event[InterestingProgramEvent] = Event(
            "InterestingProgramFound"
        )
        self.timeout_found: Event[Program] = Event("TimeOutFound")
        self.post_execute: Event[ExecutionEvent] = Event("PostExecute")
        self.worker_connected: Event[uuid.UUID] = Event("WorkerConnected")
        self.worker_disconnected: Event[uuid.UUID] = Event("WorkerDisconnected")
