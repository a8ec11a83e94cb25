"""
Entity graph builder — turn parsed protocols into identified, linked rows.

Identifiers come from one counter shared by every entity kind, allocated in a
fixed pre-order walk: types at startup, then per repo the repo row, then per
protocol its description and row, then every interface with its enums and
entries, and only after all interfaces of the protocol are registered, the
messages and their arguments. A description's id always precedes its owner's.

Argument references are resolved against the protocol's own interfaces when
possible; everything else is deferred to the CrossReferenceIndex and linked
by finish().
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from ..parsers import base as ast
from ..parsers.errors import ParseError, format_error_chain
from ..parsers.wayland import parse
from ..store.models import (
    ArgRow, DescriptionRow, EntryRow, EnumRow, InterfaceRow, MessageRow,
    Model, ProtocolRow, RepoRow, TypeRow,
)
from .description import format_description
from .logging import get_logger
from .resolver import CrossReferenceIndex, Resolution

log = get_logger("wlindex.builder")


class IdAllocator:
    """Monotonic identifiers, never reused."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def __call__(self) -> int:
        return next(self._counter)


@dataclass
class _LocalInterface:
    interface_id: int
    interface: ast.Interface
    enums: dict[str, int] = field(default_factory=dict)


class GraphBuilder:
    """Accumulates rows for a whole corpus; call finish() once at the end."""

    def __init__(self, index: Optional[CrossReferenceIndex] = None):
        self.index = index if index is not None else CrossReferenceIndex()
        self.model = Model()
        self.resolution: Optional[Resolution] = None
        self._next_id = IdAllocator()
        self.type_ids: dict[ast.ArgType, int] = {}
        for arg_type in ast.ArgType:
            type_id = self._next_id()
            self.type_ids[arg_type] = type_id
            self._emit(TypeRow(type_id=type_id, name=arg_type.value))

    def _emit(self, row) -> None:
        self.model.records.append(row)

    def _description(self, description: Optional[ast.Description]) -> Optional[int]:
        if description is None:
            return None
        description_id = self._next_id()
        self._emit(DescriptionRow(
            description_id=description_id,
            summary=description.summary,
            body=format_description(description.body),
        ))
        return description_id

    def add_repo(self, name: str, url: str) -> int:
        repo_id = self._next_id()
        self._emit(RepoRow(repo_id=repo_id, name=name, url=url.strip()))
        return repo_id

    def add_protocol(self, repo_id: int, protocol: ast.Protocol) -> int:
        description_id = self._description(protocol.description)
        protocol_id = self._next_id()
        self._emit(ProtocolRow(
            protocol_id=protocol_id,
            repo_id=repo_id,
            name=protocol.name,
            path=protocol.path,
            copyright=protocol.copyright.body if protocol.copyright else None,
            description_id=description_id,
        ))
        interfaces = self._add_interfaces(protocol_id, protocol)
        # later duplicates shadow earlier ones for local lookups only
        lookup = {local.interface.name: local for local in interfaces}
        self._add_messages(interfaces, lookup)
        return protocol_id

    # ── Pass 1: interfaces, enums, entries ──

    def _add_interfaces(self, protocol_id: int, protocol: ast.Protocol) -> list[_LocalInterface]:
        interfaces: list[_LocalInterface] = []
        for interface in protocol.interfaces:
            description_id = self._description(interface.description)
            interface_id = self._next_id()
            self.index.register_interface(interface.name, interface_id)
            local = _LocalInterface(interface_id=interface_id, interface=interface)
            interfaces.append(local)
            self._emit(InterfaceRow(
                interface_id=interface_id,
                protocol_id=protocol_id,
                name=interface.name,
                version=interface.version,
                description_id=description_id,
            ))
            for enum in interface.enums:
                self._add_enum(local, enum)
        return interfaces

    def _add_enum(self, local: _LocalInterface, enum: ast.Enum) -> None:
        description_id = self._description(enum.description)
        enum_id = self._next_id()
        self.index.register_enum(local.interface.name, enum.name, enum_id)
        local.enums[enum.name] = enum_id
        self._emit(EnumRow(
            enum_id=enum_id,
            interface_id=local.interface_id,
            name=enum.name,
            since=enum.since,
            is_bitfield=enum.bitfield,
            description_id=description_id,
        ))
        for entry in enum.entries:
            description_id = self._description(entry.description)
            self._emit(EntryRow(
                entry_id=self._next_id(),
                enum_id=enum_id,
                name=entry.name,
                value_str=entry.value,
                value=entry.value_i64,
                summary=entry.summary,
                since=entry.since,
                deprecated_since=entry.deprecated_since,
                description_id=description_id,
            ))

    # ── Pass 2: messages, args, references ──

    def _add_messages(self, interfaces: list[_LocalInterface],
                      lookup: dict[str, _LocalInterface]) -> None:
        for local in interfaces:
            for message in local.interface.messages:
                description_id = self._description(message.description)
                message_id = self._next_id()
                self._emit(MessageRow(
                    message_id=message_id,
                    interface_id=local.interface_id,
                    number=message.number,
                    name=message.name,
                    is_request=message.is_request,
                    is_destructor=message.is_destructor,
                    since=message.since,
                    deprecated_since=message.deprecated_since,
                    description_id=description_id,
                ))
                for position, arg in enumerate(message.args):
                    self._add_arg(message_id, position, arg, local, lookup)

    def _add_arg(self, message_id: int, position: int, arg: ast.Arg,
                 owner: _LocalInterface, lookup: dict[str, _LocalInterface]) -> None:
        description_id = self._description(arg.description)
        arg_id = self._next_id()
        self._emit(ArgRow(
            arg_id=arg_id,
            message_id=message_id,
            position=position,
            name=arg.name,
            type_id=self.type_ids[arg.type],
            summary=arg.summary,
            description_id=description_id,
            interface_name=arg.interface,
            allow_null=arg.allow_null,
            enum_name=arg.enum,
        ))

        if arg.interface is not None:
            target = lookup.get(arg.interface)
            if target is not None:
                self.model.arg_interfaces.add((arg_id, target.interface_id))
            else:
                self.index.defer_interface(arg_id, arg.interface)

        if arg.enum is not None:
            interface_name, enum_name = split_enum_reference(arg.enum, owner.interface.name)
            target = lookup.get(interface_name)
            enum_id = target.enums.get(enum_name) if target is not None else None
            if enum_id is not None:
                self.model.arg_enums.add((arg_id, enum_id))
            else:
                self.index.defer_enum(arg_id, interface_name, enum_name)

    def finish(self) -> Model:
        """Resolve every deferred reference and return the complete model."""
        self.resolution = self.index.finalize()
        self.model.arg_interfaces |= self.resolution.arg_interfaces
        self.model.arg_enums |= self.resolution.arg_enums
        return self.model


def split_enum_reference(reference: str, owner_interface: str) -> tuple[str, str]:
    """'iface.enum' -> (iface, enum); a bare 'enum' is scoped to the owner interface."""
    interface_name, sep, enum_name = reference.partition(".")
    if not sep:
        return owner_interface, reference
    return interface_name, enum_name


# ── Corpus entry point ──

@dataclass
class Document:
    """One candidate document: display path plus its bytes (or where to read them)."""
    path: str
    content: Optional[bytes] = None
    source: Optional[Path] = None

    def read(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.source is None:
            raise FileNotFoundError(f"no content or source for {self.path}")
        return self.source.read_bytes()


@dataclass
class RepoDocuments:
    name: str
    url: str
    documents: list[Document] = field(default_factory=list)


@dataclass
class DocumentFailure:
    repo: str
    path: str
    stage: str  # read, parse
    error: Exception

    def to_dict(self) -> dict[str, str]:
        return {
            "repo": self.repo,
            "path": self.path,
            "stage": self.stage,
            "error": format_error_chain(self.error),
        }


@dataclass
class BuildResult:
    model: Model
    resolution: Resolution
    failures: list[DocumentFailure] = field(default_factory=list)


def _parse_repo(repo: RepoDocuments, failures: list[DocumentFailure]) -> list[ast.Protocol]:
    protocols: list[ast.Protocol] = []
    for document in repo.documents:
        try:
            content = document.read()
        except OSError as e:
            log.warning("document_read_failed", repo=repo.name, path=document.path,
                        error=format_error_chain(e))
            failures.append(DocumentFailure(repo.name, document.path, "read", e))
            continue
        try:
            protocols.extend(parse(document.path, content))
        except ParseError as e:
            log.warning("document_parse_failed", repo=repo.name, path=document.path,
                        error=format_error_chain(e))
            failures.append(DocumentFailure(repo.name, document.path, "parse", e))
    protocols.sort(key=lambda p: p.name)
    return protocols


def build_model(repos: Iterable[RepoDocuments]) -> BuildResult:
    """Parse, identify and link a whole corpus.

    Unreadable or unparseable documents are skipped and reported in
    BuildResult.failures; they never abort the run.
    """
    builder = GraphBuilder()
    failures: list[DocumentFailure] = []
    for repo in repos:
        protocols = _parse_repo(repo, failures)
        if not protocols:
            log.info("repo_empty", repo=repo.name)
            continue
        repo_id = builder.add_repo(repo.name, repo.url)
        for protocol in protocols:
            builder.add_protocol(repo_id, protocol)

    model = builder.finish()
    log.info(
        "corpus_built",
        records=len(model),
        arg_interface_links=len(model.arg_interfaces),
        arg_enum_links=len(model.arg_enums),
        failures=len(failures),
    )
    return BuildResult(model=model, resolution=builder.resolution, failures=failures)
