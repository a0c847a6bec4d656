"""
Text formatting of fuzzer statistics reports.

The output layout is fixed: one labeled field per line with the labels
padded to a common column, rates shown as percentages with two decimals.
Identical inputs always produce identical text.
"""

from fuzzterm.events import FuzzerPhase
from fuzzterm.statistics import StatisticsSnapshot

LABEL_WIDTH = 30


def format_percent(rate: float) -> str:
    """Format a fraction in [0, 1] as a percentage with two decimals."""
    return f"{rate * 100:.2f}%"


def format_float(value: float) -> str:
    """Format a float with two decimals."""
    return f"{value:.2f}"


def format_field(label: str, value: object) -> str:
    """Return a report line with the label padded to LABEL_WIDTH columns."""
    return f"{label + ':':<{LABEL_WIDTH}}{value}"


def format_phase(phase: FuzzerPhase, engine_name: str) -> str:
    """Return the display label for a fuzzer phase."""
    if phase is FuzzerPhase.CORPUS_IMPORT:
        return "Corpus import"
    if phase is FuzzerPhase.INITIAL_CORPUS_GENERATION:
        return f"Initial corpus generation (with {engine_name})"
    if phase is FuzzerPhase.FUZZING:
        return f"Fuzzing (with {engine_name})"
    raise ValueError(f"Unknown fuzzer phase: {phase!r}")


def format_statistics(
    stats: StatisticsSnapshot,
    phase: FuzzerPhase,
    engine_name: str,
    corpus_size: int,
    show_types_rate: bool = False,
    show_type_collection: bool = False,
) -> str:
    """
    Generate the statistics report block.

    Args:
        stats: The snapshot to report.
        phase: The fuzzer's current phase.
        engine_name: Name of the active generation engine.
        corpus_size: Number of programs currently in the corpus.
        show_types_rate: Append the share of interesting samples that carry
            runtime type information to the "Interesting Samples Found" line.
        show_type_collection: Append the type collection timeout and failure
            rate lines.

    Returns:
        The report as a multi-line string without a trailing newline.
    """
    interesting = str(stats.interesting_samples)
    if show_types_rate:
        rate = format_percent(stats.interesting_samples_with_types_rate)
        interesting += f" ({rate} with runtime type information)"

    lines = [
        "Fuzzer Statistics",
        "-----------------",
        format_field("Fuzzer phase", format_phase(phase, engine_name)),
        format_field("Total Samples", stats.total_samples),
        format_field("Interesting Samples Found", interesting),
        format_field("Valid Samples Found", stats.valid_samples),
        format_field("Corpus Size", corpus_size),
        format_field("Correctness Rate", format_percent(stats.success_rate)),
        format_field("Timeout Rate", format_percent(stats.timeout_rate)),
        format_field("Crashes Found", stats.crashing_samples),
        format_field("Timeouts Hit", stats.timed_out_samples),
        format_field("Coverage", format_percent(stats.coverage)),
        format_field("Avg. program size", format_float(stats.avg_program_size)),
        format_field("Connected workers", stats.num_workers),
        format_field("Execs / Second", format_float(stats.execs_per_second)),
        format_field("Fuzzer Overhead", format_percent(stats.fuzzer_overhead)),
        format_field("Total Execs", stats.total_execs),
    ]

    if show_type_collection:
        lines.append(
            format_field(
                "Type collection timeout rate",
                format_percent(stats.type_collection_timeout_rate),
            )
        )
        lines.append(
            format_field(
                "Type collection failure rate",
                format_percent(stats.type_collection_failure_rate),
            )
        )

    return "\n".join(lines)
