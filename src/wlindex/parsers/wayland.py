"""
Protocol document parser.

expat turns the bytes into a flat start/text/end event stream; a
recursive-descent reader over that stream builds the syntax tree. Unknown
elements are skipped with their whole subtree, unknown attributes are
ignored. Namespace processing is off, so prefixed names are plain unknown
names.

Documents are always read as UTF-8. Bytes that are not valid UTF-8 are
replaced by a marker before expat sees them, and only the attribute values
and text the parser keeps are checked for it: a bad byte in a comment, in an
unknown attribute or inside a skipped element is never reported.
"""

from __future__ import annotations

import xml.parsers.expat as expat
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Type

from .base import (
    Arg, ArgType, Copyright, Description, Entry, Enum, Interface, Message,
    MessageType, Protocol,
)
from .errors import (
    ArgError, AttributeDecodeError, CopyrightError, DescriptionError,
    DocumentError, EntryError, EnumError, InterfaceError, MessageError,
    ParseError, ProtocolError,
)
from .literals import parse_bool, parse_entry_value, parse_uint

# U+FDD0 is a noncharacter: legal in XML text and attribute values, never in names
INVALID_MARKER = "\ufdd0"
_ESCAPED_BYTES = {cp: INVALID_MARKER for cp in range(0xDC80, 0xDD00)}

MESSAGE_ATTRIBUTES = ("name", "type", "since", "deprecated-since")
ARG_ATTRIBUTES = ("name", "type", "summary", "interface", "allow-null", "enum")
ENTRY_ATTRIBUTES = ("name", "value", "summary", "since", "deprecated-since")


# ── Event stream ──

@dataclass
class _Event:
    kind: str  # start, end, text, error
    tag: str = ""
    attrib: dict[str, str] = field(default_factory=dict)
    text: str = ""
    cause: Optional[Exception] = None


class _EventRecorder:
    """expat handlers that record events instead of building a tree."""

    def __init__(self):
        self.events: list[_Event] = []

    def start(self, tag, attrib):
        self.events.append(_Event("start", tag, attrib))

    def end(self, tag):
        self.events.append(_Event("end", tag))

    def data(self, text):
        self.events.append(_Event("text", text=text))

    def fail(self, cause: Exception):
        self.events.append(_Event("error", cause=cause))


def _first_invalid_utf8(content: bytes) -> Optional[UnicodeDecodeError]:
    try:
        content.decode("utf-8")
    except UnicodeDecodeError as e:
        return e
    return None


def _read_events(content: bytes) -> list[_Event]:
    if _first_invalid_utf8(content) is not None:
        text = content.decode("utf-8", errors="surrogateescape")
        content = text.translate(_ESCAPED_BYTES).encode("utf-8")

    recorder = _EventRecorder()
    parser = expat.ParserCreate("utf-8")
    parser.buffer_text = True
    parser.StartElementHandler = recorder.start
    parser.EndElementHandler = recorder.end
    parser.CharacterDataHandler = recorder.data
    try:
        parser.Parse(content, True)
    except expat.ExpatError as e:
        recorder.fail(e)
    return recorder.events


class _Reader:
    """Pull reader over the recorded events."""

    def __init__(self, events: list[_Event], invalid: Optional[UnicodeDecodeError] = None):
        self._events = events
        self._pos = 0
        self.invalid = invalid  # first undecodable byte of the document

    def next(self) -> Optional[_Event]:
        if self._pos >= len(self._events):
            return None
        event = self._events[self._pos]
        self._pos += 1
        return event

    def children(self, error_cls: Type[ParseError]) -> Iterator[_Event]:
        """Yield each child start event until the current element closes.

        The consumer must either parse the child or call skip() on it.
        """
        while True:
            event = self.next()
            if event is None:
                raise error_cls.read()
            if event.kind == "end":
                return
            if event.kind == "error":
                raise error_cls.read() from event.cause
            if event.kind == "start":
                yield event

    def skip(self, start: _Event, error_cls: Type[ParseError]) -> None:
        """Consume the subtree of an element we do not know."""
        depth = 0
        while True:
            event = self.next()
            if event is None:
                raise error_cls.read()
            if event.kind == "error":
                raise error_cls.read() from event.cause
            if event.kind == "start":
                depth += 1
            elif event.kind == "end":
                if depth == 0:
                    return
                depth -= 1

    def text(self, error_cls: Type[ParseError]) -> str:
        """Accumulate all text up to the current element's end tag."""
        parts: list[str] = []
        depth = 0
        while True:
            event = self.next()
            if event is None:
                raise error_cls.read()
            if event.kind == "text":
                if INVALID_MARKER in event.text:
                    raise error_cls.decode("body") from self.invalid
                parts.append(event.text)
            elif event.kind == "error":
                raise error_cls.read() from event.cause
            elif event.kind == "start":
                depth += 1
            elif event.kind == "end":
                if depth == 0:
                    return "".join(parts)
                depth -= 1


def _attributes(reader: _Reader, start: _Event, error_cls: Type[ParseError],
                names: tuple[str, ...]) -> dict[str, str]:
    """The known attributes of a start tag, in document order."""
    known = {}
    for key, value in start.attrib.items():
        if key not in names:
            continue
        if INVALID_MARKER in value:
            inner = AttributeDecodeError.decode("value")
            inner.__cause__ = reader.invalid
            raise error_cls.nested("attribute") from inner
        known[key] = value
    return known


@contextmanager
def _nesting(error_cls: Type[ParseError], child: str, child_cls: Type[ParseError]):
    """Wrap a nested element's failure in the enclosing level's error."""
    try:
        yield
    except child_cls as e:
        raise error_cls.nested(child) from e


# ── Public API ──

def parse(path: str | Path, content: bytes) -> list[Protocol]:
    """Parse one document into its protocol trees, in document order.

    `path` is only recorded on each Protocol; nothing is read from disk.
    Raises DocumentError (with the full cause chain) on any failure.
    """
    reader = _Reader(_read_events(content), _first_invalid_utf8(content))
    display_path = str(path)
    protocols: list[Protocol] = []
    while True:
        event = reader.next()
        if event is None:
            break
        if event.kind == "error":
            raise DocumentError.read() from event.cause
        if event.kind != "start" or event.tag != "protocol":
            continue
        with _nesting(DocumentError, "protocol", ProtocolError):
            protocols.append(_parse_protocol(reader, event, display_path))
    return protocols


# ── Element parsers ──

def _parse_protocol(reader: _Reader, start: _Event, path: str) -> Protocol:
    name = None
    for key, value in _attributes(reader, start, ProtocolError, ("name",)).items():
        if key == "name":
            name = value

    copyright = None
    description = None
    interfaces: list[Interface] = []
    for child in reader.children(ProtocolError):
        if child.tag == "copyright":
            with _nesting(ProtocolError, "copyright", CopyrightError):
                copyright = _parse_copyright(reader, child)
        elif child.tag == "description":
            with _nesting(ProtocolError, "description", DescriptionError):
                description = _parse_description(reader, child)
        elif child.tag == "interface":
            with _nesting(ProtocolError, "interface", InterfaceError):
                interfaces.append(_parse_interface(reader, child))
        else:
            reader.skip(child, ProtocolError)

    if name is None:
        raise ProtocolError.missing("name")
    return Protocol(
        name=name,
        path=path,
        copyright=copyright,
        description=description,
        interfaces=interfaces,
    )


def _parse_copyright(reader: _Reader, start: _Event) -> Copyright:
    return Copyright(body=reader.text(CopyrightError))


def _parse_description(reader: _Reader, start: _Event) -> Description:
    summary = None
    for key, value in _attributes(reader, start, DescriptionError, ("summary",)).items():
        if key == "summary":
            summary = value
    return Description(summary=summary, body=reader.text(DescriptionError))


def _parse_interface(reader: _Reader, start: _Event) -> Interface:
    name = None
    version = None
    for key, value in _attributes(reader, start, InterfaceError, ("name", "version")).items():
        if key == "name":
            name = value
        elif key == "version":
            try:
                version = parse_uint(value)
            except ValueError as e:
                raise InterfaceError.invalid("version", value) from e

    description = None
    messages: list[Message] = []
    enums: list[Enum] = []
    num_requests = 0
    num_events = 0
    for child in reader.children(InterfaceError):
        if child.tag == "description":
            with _nesting(InterfaceError, "description", DescriptionError):
                description = _parse_description(reader, child)
        elif child.tag == "request":
            with _nesting(InterfaceError, "request", MessageError):
                messages.append(_parse_message(reader, child, num_requests, True))
            num_requests += 1
        elif child.tag == "event":
            with _nesting(InterfaceError, "event", MessageError):
                messages.append(_parse_message(reader, child, num_events, False))
            num_events += 1
        elif child.tag == "enum":
            with _nesting(InterfaceError, "enum", EnumError):
                enums.append(_parse_enum(reader, child))
        else:
            reader.skip(child, InterfaceError)

    if name is None:
        raise InterfaceError.missing("name")
    if version is None:
        raise InterfaceError.missing("version")
    return Interface(
        name=name,
        version=version,
        description=description,
        messages=messages,
        enums=enums,
    )


def _parse_message(reader: _Reader, start: _Event, number: int, is_request: bool) -> Message:
    name = None
    msg_type = None
    since = None
    deprecated_since = None
    for key, value in _attributes(reader, start, MessageError, MESSAGE_ATTRIBUTES).items():
        if key == "name":
            name = value
        elif key == "type":
            if value != MessageType.DESTRUCTOR.value:
                raise MessageError.unknown("type", value)
            msg_type = MessageType.DESTRUCTOR
        elif key == "since":
            try:
                since = parse_uint(value)
            except ValueError as e:
                raise MessageError.invalid("since", value) from e
        elif key == "deprecated-since":
            try:
                deprecated_since = parse_uint(value)
            except ValueError as e:
                raise MessageError.invalid("deprecated-since", value) from e

    description = None
    args: list[Arg] = []
    for child in reader.children(MessageError):
        if child.tag == "description":
            with _nesting(MessageError, "description", DescriptionError):
                description = _parse_description(reader, child)
        elif child.tag == "arg":
            with _nesting(MessageError, "arg", ArgError):
                args.append(_parse_arg(reader, child))
        else:
            reader.skip(child, MessageError)

    if name is None:
        raise MessageError.missing("name")
    return Message(
        name=name,
        number=number,
        is_request=is_request,
        type=msg_type,
        since=since,
        deprecated_since=deprecated_since,
        description=description,
        args=args,
    )


def _parse_arg(reader: _Reader, start: _Event) -> Arg:
    name = None
    arg_type = None
    summary = None
    interface = None
    allow_null = None
    enum = None
    for key, value in _attributes(reader, start, ArgError, ARG_ATTRIBUTES).items():
        if key == "name":
            name = value
        elif key == "type":
            try:
                arg_type = ArgType(value)
            except ValueError:
                raise ArgError.unknown("type", value) from None
        elif key == "summary":
            summary = value
        elif key == "interface":
            interface = value
        elif key == "allow-null":
            try:
                allow_null = parse_bool(value)
            except ValueError as e:
                raise ArgError.invalid("allow-null", value) from e
        elif key == "enum":
            enum = value

    description = None
    for child in reader.children(ArgError):
        if child.tag == "description":
            with _nesting(ArgError, "description", DescriptionError):
                description = _parse_description(reader, child)
        else:
            reader.skip(child, ArgError)

    if name is None:
        raise ArgError.missing("name")
    if arg_type is None:
        raise ArgError.missing("type")
    return Arg(
        name=name,
        type=arg_type,
        summary=summary,
        description=description,
        interface=interface,
        allow_null=bool(allow_null),
        enum=enum,
    )


def _parse_enum(reader: _Reader, start: _Event) -> Enum:
    name = None
    since = None
    bitfield = None
    for key, value in _attributes(reader, start, EnumError, ("name", "since", "bitfield")).items():
        if key == "name":
            name = value
        elif key == "since":
            try:
                since = parse_uint(value)
            except ValueError as e:
                raise EnumError.invalid("since", value) from e
        elif key == "bitfield":
            try:
                bitfield = parse_bool(value)
            except ValueError as e:
                raise EnumError.invalid("bitfield", value) from e

    description = None
    entries: list[Entry] = []
    for child in reader.children(EnumError):
        if child.tag == "description":
            with _nesting(EnumError, "description", DescriptionError):
                description = _parse_description(reader, child)
        elif child.tag == "entry":
            with _nesting(EnumError, "entry", EntryError):
                entries.append(_parse_entry(reader, child))
        else:
            reader.skip(child, EnumError)

    if name is None:
        raise EnumError.missing("name")
    return Enum(
        name=name,
        since=since,
        bitfield=bool(bitfield),
        description=description,
        entries=entries,
    )


def _parse_entry(reader: _Reader, start: _Event) -> Entry:
    name = None
    value = None
    summary = None
    since = None
    deprecated_since = None
    for key, attr in _attributes(reader, start, EntryError, ENTRY_ATTRIBUTES).items():
        if key == "name":
            name = attr
        elif key == "value":
            value = attr
        elif key == "summary":
            summary = attr
        elif key == "since":
            try:
                since = parse_uint(attr)
            except ValueError as e:
                raise EntryError.invalid("since", attr) from e
        elif key == "deprecated-since":
            try:
                deprecated_since = parse_uint(attr)
            except ValueError as e:
                raise EntryError.invalid("deprecated-since", attr) from e

    description = None
    for child in reader.children(EntryError):
        if child.tag == "description":
            with _nesting(EntryError, "description", DescriptionError):
                description = _parse_description(reader, child)
        else:
            reader.skip(child, EntryError)

    if value is None:
        raise EntryError.missing("value")
    try:
        value_i64 = parse_entry_value(value)
    except ValueError as e:
        raise EntryError.invalid("value", value) from e
    if name is None:
        raise EntryError.missing("name")
    return Entry(
        name=name,
        value=value,
        value_i64=value_i64,
        summary=summary,
        since=since,
        deprecated_since=deprecated_since,
        description=description,
    )
