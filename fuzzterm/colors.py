"""
ANSI color handling for the fuzzterm terminal UI.

Maps log levels to the terminal color used when printing log lines.
"""

from enum import IntEnum

from fuzzterm.events import LogLevel

ESCAPE = "\u001b"


class Color(IntEnum):
    """ANSI SGR foreground color codes."""

    RESET = 0
    BLACK = 30
    RED = 31
    GREEN = 32
    YELLOW = 33
    BLUE = 34
    MAGENTA = 35
    CYAN = 36
    WHITE = 37


# The color with which to print log entries.
COLOR_FOR_LEVEL: dict[LogLevel, Color] = {
    LogLevel.VERBOSE: Color.CYAN,
    LogLevel.INFO: Color.WHITE,
    LogLevel.WARNING: Color.YELLOW,
    LogLevel.ERROR: Color.MAGENTA,
    LogLevel.FATAL: Color.RED,
}


def color_for_level(level: LogLevel) -> Color:
    """Return the color for a log level.

    The level set is closed, so a missing entry is a programming error and
    the KeyError is allowed to propagate.
    """
    return COLOR_FOR_LEVEL[level]


def colorize(text: str, color: Color) -> str:
    """Wrap text in the escape sequences for the given color."""
    return f"{ESCAPE}[0;{color.value}m{text}{ESCAPE}[0;{Color.RESET.value}m"
