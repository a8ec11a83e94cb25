"""
Parse error taxonomy.

One exception class per structural level. Each instance carries an ErrorKind
saying what went wrong at that level; failures of a nested element are raised
with kind NESTED and chained (``raise ... from ...``) to the child's error.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    MISSING_FIELD = "missing_field"
    UNKNOWN_VARIANT = "unknown_variant"
    INVALID_NUMBER = "invalid_number"  # also malformed booleans
    DECODE = "decode"
    NESTED = "nested"
    READ = "read"


def _article(word: str) -> str:
    return "an" if word[:1] in "aeiou" else "a"


class ParseError(Exception):
    """Base for every failure raised while parsing a document."""

    element = "document"

    def __init__(self, kind: ErrorKind, message: str,
                 field: Optional[str] = None, value: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field = field
        self.value = value

    @classmethod
    def missing(cls, field: str) -> "ParseError":
        return cls(ErrorKind.MISSING_FIELD, f"{cls.element} has no {field}", field=field)

    @classmethod
    def unknown(cls, field: str, value: str) -> "ParseError":
        return cls(ErrorKind.UNKNOWN_VARIANT, f"unknown {cls.element} {field} {value!r}",
                   field=field, value=value)

    @classmethod
    def invalid(cls, field: str, value: str) -> "ParseError":
        return cls(ErrorKind.INVALID_NUMBER, f"could not parse the {field} attribute {value!r}",
                   field=field, value=value)

    @classmethod
    def decode(cls, field: str = "body") -> "ParseError":
        return cls(ErrorKind.DECODE, f"could not decode the {field} as UTF-8", field=field)

    @classmethod
    def nested(cls, child: str) -> "ParseError":
        return cls(ErrorKind.NESTED, f"could not parse {_article(child)} {child} element",
                   field=child)

    @classmethod
    def read(cls) -> "ParseError":
        return cls(ErrorKind.READ, "could not read the next event")

    def to_dict(self) -> dict[str, Any]:
        return {
            "element": self.element,
            "kind": self.kind.value,
            "message": self.message,
            "field": self.field,
            "value": self.value,
        }


class DocumentError(ParseError):
    element = "document"


class ProtocolError(ParseError):
    element = "protocol"


class CopyrightError(ParseError):
    element = "copyright"


class DescriptionError(ParseError):
    element = "description"


class InterfaceError(ParseError):
    element = "interface"


class MessageError(ParseError):
    element = "message"


class ArgError(ParseError):
    element = "argument"


class EnumError(ParseError):
    element = "enum"


class EntryError(ParseError):
    element = "entry"


class AttributeDecodeError(ParseError):
    element = "attribute"


def iter_error_chain(exc: BaseException):
    """Yield exc and every exception it was raised from, outermost first."""
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def format_error_chain(exc: BaseException) -> str:
    """Render the full cause chain as ``outer: inner: root``."""
    return ": ".join(str(e) or type(e).__name__ for e in iter_error_chain(exc))

