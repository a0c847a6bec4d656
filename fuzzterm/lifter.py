"""
Programs and the lifter that renders them as text.

A `Program` is the fuzzer's internal representation of a generated test
case: its source lines plus optional per-line comments and inferred types.
The `ProgramLifter` turns a program back into readable source, optionally
annotated.
"""

import uuid
from dataclasses import dataclass, field
from enum import Flag, auto


class LiftingOptions(Flag):
    """Annotation modes for `ProgramLifter.lift`."""

    NONE = 0
    INCLUDE_COMMENTS = auto()
    DUMP_TYPES = auto()


@dataclass(frozen=True)
class Program:
    """A generated program.

    Attributes:
        code: The source lines of the program.
        comments: Maps a line index to a comment emitted above that line.
        types: Maps a line index to the inferred type of the value the line defines.
        id: Unique identifier of the program.
    """

    code: tuple[str, ...]
    comments: dict[int, str] = field(default_factory=dict, compare=False)
    types: dict[int, str] = field(default_factory=dict, compare=False)
    id: uuid.UUID = field(default_factory=uuid.uuid4, compare=False)

    @property
    def size(self) -> int:
        """Return the number of source lines."""
        return len(self.code)


class ProgramLifter:
    """Render programs as Python source."""

    def lift(self, program: Program, options: LiftingOptions = LiftingOptions.NONE) -> str:
        """Return the textual form of a program.

        With INCLUDE_COMMENTS, each comment is emitted on its own line(s) above
        the line it belongs to, at that line's indentation. With DUMP_TYPES,
        lines that define a value get a trailing `# type: ...` annotation.
        """
        lines: list[str] = []
        for index, line in enumerate(program.code):
            if LiftingOptions.INCLUDE_COMMENTS in options and index in program.comments:
                leading = line[: len(line) - len(line.lstrip())]
                for comment_line in program.comments[index].splitlines():
                    lines.append(f"{leading}# {comment_line}")
            if LiftingOptions.DUMP_TYPES in options and index in program.types:
                line = f"{line}  # type: {program.types[index]}"
            lines.append(line)
        return "\n".join(lines)
