"""
Literal parsing for attribute values.

Stricter than int(): no surrounding whitespace, no digit separators, ASCII
digits only, and range-checked to the widths the schema stores.
"""

from __future__ import annotations

import re

U32_MAX = 2**32 - 1
I64_MAX = 2**63 - 1

_DECIMAL_RE = re.compile(r"\+?[0-9]+")
_HEX_RE = re.compile(r"\+?[0-9a-fA-F]+")


def parse_uint(text: str) -> int:
    """Parse an unsigned 32-bit decimal (versions and since markers)."""
    if not _DECIMAL_RE.fullmatch(text):
        raise ValueError(f"invalid digit in {text!r}")
    value = int(text, 10)
    if value > U32_MAX:
        raise ValueError(f"{text!r} is too large for an unsigned 32-bit integer")
    return value


def parse_bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(f"{text!r} is not 'true' or 'false'")


def parse_entry_value(text: str) -> int:
    """Parse an enum entry's literal as a signed 64-bit integer.

    A leading '-' negates the magnitude; the magnitude is hexadecimal when it
    starts with '0x', decimal otherwise. Without '-' the value is non-negative.
    """
    negative = False
    if text.startswith("-"):
        negative = True
        text = text[1:]
    if text.startswith("0x"):
        digits = text[2:]
        if not _HEX_RE.fullmatch(digits):
            raise ValueError(f"invalid hexadecimal digit in {text!r}")
        magnitude = int(digits, 16)
    else:
        if not _DECIMAL_RE.fullmatch(text):
            raise ValueError(f"invalid digit in {text!r}")
        magnitude = int(text, 10)
    if magnitude > I64_MAX:
        raise ValueError(f"{text!r} is too large for a signed 64-bit integer")
    return -magnitude if negative else magnitude
