"""
Description reflow — canonical text for <description> bodies.
"""

from __future__ import annotations

TAB_WIDTH = 8

_ASCII_WS = " \t\n\r\x0c"


def _indent_width(line: str) -> int | None:
    """Column of the first non-blank character, or None for a blank line."""
    width = 0
    for c in line:
        if c == " ":
            width += 1
        elif c == "\t":
            width = (width + TAB_WIDTH) // TAB_WIDTH * TAB_WIDTH
        else:
            return width
    return None


def _expand_tabs(line: str) -> str:
    out: list[str] = []
    column = 0
    for c in line:
        if c == "\t":
            pad = TAB_WIDTH - column % TAB_WIDTH
            out.append(" " * pad)
            column += pad
        else:
            out.append(c)
            column += 1
    return "".join(out)


def format_description(body: str) -> str:
    """Reflow a description body.

    Leading blank lines are dropped. The indentation of the first non-blank
    line (tabs advance to the next multiple of 8) is stripped from every
    line. Consecutive non-blank lines are joined with a single space, and a
    run of N blank lines between text becomes N newlines. Trailing
    whitespace on a line and trailing blank lines are dropped.
    """
    out: list[str] = []
    indent: int | None = None
    blank_lines = 0
    joined = False

    for line in body.split("\n"):
        line = line.removesuffix("\r")
        if indent is None:
            indent = _indent_width(line)
            if indent is None:
                continue

        if "\t" in line:
            line = _expand_tabs(line)
        leading = len(line) - len(line.lstrip(" "))
        line = line[min(leading, indent):]

        if not line.strip(_ASCII_WS):
            blank_lines += 1
            continue
        if blank_lines:
            out.append("\n" * blank_lines)
            blank_lines = 0
        elif joined:
            out.append(" ")
        out.append(line.rstrip(_ASCII_WS))
        joined = True

    return "".join(out)
