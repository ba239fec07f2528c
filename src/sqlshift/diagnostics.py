"""Positioned diagnostics for failed migration scripts.

Drivers classify engine exceptions into an ``EngineDiagnostic``. The
``ErrorDiagnoser`` anchors that diagnostic to a line and column of the script
and renders the surrounding lines, so a failure reads like:

    ERROR 42703: column "nme" does not exist in line 3, column 8:

      1 | CREATE TABLE users (id int, name text);
      2 |
    > 3 | SELECT nme FROM users;
        |        ^
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlshift.errors import ScriptExecutionError

DEFAULT_CONTEXT_LINES = 5


@dataclass(frozen=True)
class EngineDiagnostic:
    """Engine-neutral description of a script failure.

    ``position`` is the engine's 1-based character position in the submitted
    script, or None when the engine reports none.
    """

    severity: str
    code: str
    message: str
    position: int | None = None


def line_column_from_offset(content: str, offset: int) -> tuple[int, int]:
    """Convert a 0-based character offset to a 1-based (line, column) pair.

    Raises:
        ValueError: If the offset lies outside the content.
    """
    if offset < 0 or offset > len(content):
        raise ValueError(f"Offset {offset} outside content of length {len(content)}")

    line = content.count("\n", 0, offset) + 1
    line_start = content.rfind("\n", 0, offset) + 1
    return line, offset - line_start + 1


def lines_before_and_after(
    content: str,
    line: int,
    before: int,
    after: int,
    line_numbers: bool = True,
    column: int | None = None,
) -> str:
    """Render lines ``line - before`` through ``line + after`` of ``content``.

    The window is clamped to the content. With ``line_numbers`` each line is
    prefixed by its number and the target line is marked with ``>``. When
    ``column`` is given a caret is drawn under it.
    """
    if not content:
        return ""

    # Only "\n" breaks lines, matching line_column_from_offset
    lines = content.split("\n")
    if lines[-1] == "" and line < len(lines):
        del lines[-1]

    first = max(1, line - before)
    last = min(len(lines), line + after)
    width = len(str(last))

    rendered = []
    for number in range(first, last + 1):
        text = lines[number - 1]
        if line_numbers:
            marker = ">" if number == line else " "
            prefix = f"{marker} {number:>{width}} | "
        else:
            prefix = ""
        rendered.append(f"{prefix}{text}".rstrip())

        if number == line and column is not None:
            # Keep tabs so the caret lines up with the offending character
            lead = "".join("\t" if ch == "\t" else " " for ch in text[: column - 1])
            gutter = f"  {' ' * width} | " if line_numbers else ""
            rendered.append(f"{gutter}{lead}^")

    return "\n".join(rendered)


class ErrorDiagnoser:
    """Turns engine diagnostics into messages anchored in the script text."""

    def __init__(self, context_lines: int = DEFAULT_CONTEXT_LINES) -> None:
        self.context_lines = context_lines

    def locate(self, content: str, diagnostic: EngineDiagnostic) -> tuple[int, int] | None:
        """Return the (line, column) of the failure, or None if unknown."""
        if diagnostic.position is None or diagnostic.position < 1:
            return None
        try:
            return line_column_from_offset(content, diagnostic.position - 1)
        except ValueError:
            return None

    def format(self, content: str, diagnostic: EngineDiagnostic) -> str:
        """Render the failure message, with an excerpt when positioned."""
        head = f"{diagnostic.severity} {diagnostic.code}: {diagnostic.message}"

        location = self.locate(content, diagnostic)
        if location is None:
            return head

        line, column = location
        excerpt = lines_before_and_after(
            content,
            line,
            self.context_lines,
            self.context_lines,
            line_numbers=True,
            column=column,
        )
        return f"{head} in line {line}, column {column}:\n\n{excerpt}"

    def diagnose(self, content: str, diagnostic: EngineDiagnostic) -> ScriptExecutionError:
        """Build the ``ScriptExecutionError`` reported for a failed script."""
        location = self.locate(content, diagnostic)
        line, column = location if location is not None else (None, None)
        return ScriptExecutionError(
            self.format(content, diagnostic),
            diagnostic=diagnostic,
            line=line,
            column=column,
        )
