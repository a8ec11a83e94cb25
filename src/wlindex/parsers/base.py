"""
Syntax-tree types for protocol documents.

One document yields one or more Protocol trees. Children keep document order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum as _Enum
from typing import Optional


class ArgType(_Enum):
    """Primitive argument kinds. Declaration order is the type registration order."""
    NEW_ID = "new_id"
    INT = "int"
    UINT = "uint"
    FIXED = "fixed"
    STRING = "string"
    OBJECT = "object"
    ARRAY = "array"
    FD = "fd"


class MessageType(_Enum):
    DESTRUCTOR = "destructor"


@dataclass
class Copyright:
    body: str = ""


@dataclass
class Description:
    """A <description> element: optional summary attribute plus raw text body."""
    summary: Optional[str] = None
    body: str = ""


@dataclass
class Arg:
    name: str
    type: ArgType
    summary: Optional[str] = None
    description: Optional[Description] = None
    interface: Optional[str] = None  # target interface, object/new_id only
    allow_null: bool = False
    enum: Optional[str] = None  # "enum" or "interface.enum"


@dataclass
class Message:
    """A request or event. `number` counts per direction within the interface."""
    name: str
    number: int
    is_request: bool
    type: Optional[MessageType] = None
    since: Optional[int] = None
    deprecated_since: Optional[int] = None
    description: Optional[Description] = None
    args: list[Arg] = field(default_factory=list)

    @property
    def is_destructor(self) -> bool:
        return self.type is MessageType.DESTRUCTOR


@dataclass
class Entry:
    name: str
    value: str  # literal text as written
    value_i64: int
    summary: Optional[str] = None
    since: Optional[int] = None
    deprecated_since: Optional[int] = None
    description: Optional[Description] = None


@dataclass
class Enum:
    name: str
    since: Optional[int] = None
    bitfield: bool = False
    description: Optional[Description] = None
    entries: list[Entry] = field(default_factory=list)


@dataclass
class Interface:
    name: str
    version: int
    description: Optional[Description] = None
    messages: list[Message] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)

    @property
    def requests(self) -> list[Message]:
        return [m for m in self.messages if m.is_request]

    @property
    def events(self) -> list[Message]:
        return [m for m in self.messages if not m.is_request]


@dataclass
class Protocol:
    name: str
    path: str
    copyright: Optional[Copyright] = None
    description: Optional[Description] = None
    interfaces: list[Interface] = field(default_factory=list)
