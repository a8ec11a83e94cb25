"""
Domain models for the protocol index.

Pure dataclasses — no external dependencies. Each *Row maps to a SQLite table
and its first field is the row's identifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Iterator, Optional, Type, TypeVar


@dataclass
class TypeRow:
    """A primitive argument type (new_id, int, uint, ...)."""
    type_id: int = 0
    name: str = ""


@dataclass
class RepoRow:
    """A source repository that contributed at least one protocol."""
    repo_id: int = 0
    name: str = ""
    url: str = ""


@dataclass
class DescriptionRow:
    description_id: int = 0
    summary: Optional[str] = None
    body: str = ""  # reflowed


@dataclass
class ProtocolRow:
    protocol_id: int = 0
    repo_id: int = 0
    name: str = ""
    path: str = ""  # repo-relative document path
    copyright: Optional[str] = None
    description_id: Optional[int] = None


@dataclass
class InterfaceRow:
    interface_id: int = 0
    protocol_id: int = 0
    name: str = ""
    version: int = 0
    description_id: Optional[int] = None


@dataclass
class EnumRow:
    enum_id: int = 0
    interface_id: int = 0
    name: str = ""
    since: Optional[int] = None
    is_bitfield: bool = False
    description_id: Optional[int] = None


@dataclass
class EntryRow:
    entry_id: int = 0
    enum_id: int = 0
    name: str = ""
    value_str: str = ""  # literal as written
    value: int = 0
    summary: Optional[str] = None
    since: Optional[int] = None
    deprecated_since: Optional[int] = None
    description_id: Optional[int] = None


@dataclass
class MessageRow:
    """A request or event. `number` is the per-direction opcode."""
    message_id: int = 0
    interface_id: int = 0
    number: int = 0
    name: str = ""
    is_request: bool = True
    is_destructor: bool = False
    since: Optional[int] = None
    deprecated_since: Optional[int] = None
    description_id: Optional[int] = None


@dataclass
class ArgRow:
    arg_id: int = 0
    message_id: int = 0
    position: int = 0
    name: str = ""
    type_id: int = 0
    summary: Optional[str] = None
    description_id: Optional[int] = None
    interface_name: Optional[str] = None  # raw target name, resolved via rel_arg_interface
    allow_null: bool = False
    enum_name: Optional[str] = None  # raw target name, resolved via rel_arg_enum


Row = Any
R = TypeVar("R")


def record_id(row: Row) -> int:
    """Identifier of any *Row (its first field)."""
    return getattr(row, fields(row)[0].name)


@dataclass
class Model:
    """The fully linked corpus: rows in allocation order plus both relations."""
    records: list[Row] = field(default_factory=list)
    arg_interfaces: set[tuple[int, int]] = field(default_factory=set)  # (arg_id, interface_id)
    arg_enums: set[tuple[int, int]] = field(default_factory=set)  # (arg_id, enum_id)

    def rows(self, kind: Type[R]) -> list[R]:
        return [r for r in self.records if isinstance(r, kind)]

    def __iter__(self) -> Iterator[Row]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class IndexStats:
    """Summary statistics for the index."""
    total_repos: int = 0
    total_protocols: int = 0
    total_interfaces: int = 0
    total_enums: int = 0
    total_entries: int = 0
    total_messages: int = 0
    total_requests: int = 0
    total_events: int = 0
    total_args: int = 0
    total_descriptions: int = 0
    arg_interface_links: int = 0
    arg_enum_links: int = 0
    unresolved_interface_refs: int = 0
    unresolved_enum_refs: int = 0
    skipped_documents: int = 0
