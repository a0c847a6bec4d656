"""Runtime configuration for a fuzzer instance."""

from dataclasses import dataclass

DEFAULT_ENGINE_NAME = "MutationEngine"


@dataclass(frozen=True)
class FuzzerConfig:
    """Settings that stay fixed for the lifetime of a fuzzer.

    Attributes:
        engine_name: Name of the active generation engine, shown in reports.
        collect_runtime_types: Whether runtime type information is collected
            for interesting samples. Enables the type-related report lines.
        min_corpus_size: The initial corpus generation phase lasts until the
            corpus holds at least this many programs.
        timeout: Execution timeout for a single program, in seconds.
        seed: Seed for the fuzzer's random number generator, if any.
    """

    engine_name: str = DEFAULT_ENGINE_NAME
    collect_runtime_types: bool = False
    min_corpus_size: int = 10
    timeout: float = 0.25
    seed: int | None = None
