"""
Command-line entry point for fuzzterm.

Starts a fuzzer running the simulated workload with the terminal UI
attached. Send SIGUSR1 to the process to print the next generated
program; press Ctrl+C to stop and print the final statistics.
"""

import argparse
import logging
import os
import platform
import signal
import sys
from datetime import datetime
from textwrap import dedent

import psutil

from fuzzterm.config import DEFAULT_ENGINE_NAME, FuzzerConfig
from fuzzterm.demo import SimulatedWorkload
from fuzzterm.engine import Fuzzer
from fuzzterm.events import ShutdownReason
from fuzzterm.statistics import Statistics
from fuzzterm.terminal_ui import TerminalUI

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="fuzzterm: a live terminal UI for a running fuzzer."
    )
    parser.add_argument(
        "--engine",
        type=str,
        default=DEFAULT_ENGINE_NAME,
        help=f"Name of the generation engine shown in reports. (Default: {DEFAULT_ENGINE_NAME})",
    )
    parser.add_argument(
        "--collect-runtime-types",
        action="store_true",
        help="Collect runtime type information for interesting samples.",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after N seconds. Runs until interrupted if omitted.",
    )
    parser.add_argument(
        "--iterations-per-second",
        type=int,
        default=100,
        help="Number of programs the simulated workload generates per second. (Default: 100)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Number of simulated remote workers. (Default: 0)",
    )
    parser.add_argument(
        "--min-corpus-size",
        type=int,
        default=10,
        help="Corpus size at which initial corpus generation ends. (Default: 10)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=0.25,
        help="Execution timeout in seconds for a single program. (Default: 0.25)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the random number generator.",
    )
    parser.add_argument(
        "--no-statistics",
        action="store_true",
        help="Do not install the statistics module (disables all reports).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show internal debug messages on stderr.",
    )
    return parser


def format_run_header(config: FuzzerConfig, fuzzer: Fuzzer, start_time: datetime) -> str:
    """Return the informative header printed at startup."""
    memory_gb = round(psutil.virtual_memory().total / (1024**3), 2)
    header = f"""
================================================================================
FUZZTERM RUN
================================================================================
- Fuzzer ID:         {fuzzer.id}
- Hostname:          {platform.node()}
- Platform:          {platform.platform()}
- Process ID:        {os.getpid()}
- Python Version:    {sys.version.replace(chr(10), " ")}
- CPU Cores:         {psutil.cpu_count(logical=False)} physical / {psutil.cpu_count(logical=True)} logical
- Total RAM:         {memory_gb} GB
- Start Time:        {start_time.isoformat()}
- Command:           {" ".join(sys.argv)}
- Engine:            {config.engine_name}
- Runtime Types:     {"collected" if config.collect_runtime_types else "not collected"}
================================================================================
"""
    return dedent(header)


def install_signal_handlers(ui: TerminalUI) -> None:
    """Bind SIGUSR1 to dumping the next generated program, where available."""
    if not hasattr(signal, "SIGUSR1"):
        logger.debug("[*] SIGUSR1 is not available on this platform.")
        return
    signal.signal(signal.SIGUSR1, lambda signum, frame: ui.request_program_dump())


def main(argv: list[str] | None = None) -> None:
    """Parse command-line arguments and run a fuzzer with the terminal UI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        stream=sys.stderr,
    )

    config = FuzzerConfig(
        engine_name=args.engine,
        collect_runtime_types=args.collect_runtime_types,
        min_corpus_size=args.min_corpus_size,
        timeout=args.timeout,
        seed=args.seed,
    )
    fuzzer = Fuzzer(config)
    if not args.no_statistics:
        fuzzer.add_module(Statistics())

    print(format_run_header(config, fuzzer, datetime.now()))

    # The UI must be attached before the fuzzer starts so that no event is missed.
    ui = TerminalUI(fuzzer)
    install_signal_handlers(ui)
    workload = SimulatedWorkload(
        fuzzer,
        iterations_per_second=args.iterations_per_second,
        num_workers=args.workers,
    )

    try:
        fuzzer.start()
        workload.start()
        if not fuzzer.wait_for_shutdown(timeout=args.duration):
            fuzzer.shutdown(ShutdownReason.FINISHED)
    except KeyboardInterrupt:
        print("\n[!] Fuzzing stopped by user.")
        fuzzer.shutdown(ShutdownReason.USER_INITIATED)
    fuzzer.wait_for_shutdown()
    print("[+] Fuzzing session finished.")


if __name__ == "__main__":
    main()
