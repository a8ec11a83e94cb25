"""
Tests for the wlindex package.

Uses fixture_corpus/ as a known corpus: two repositories whose protocols
reference each other, one document that fails to parse, one excluded path.
"""

import io
import importlib
import json
import logging
import random
import shutil
from pathlib import Path

import pytest
import structlog

from wlindex.cli.commands import run_cli
from wlindex.config import ConfigError, CorpusConfig, DEFAULT_REPOS
from wlindex.core.builder import (
    Document, GraphBuilder, IdAllocator, RepoDocuments, build_model,
    split_enum_reference,
)
from wlindex.core.description import format_description
from wlindex.core.indexer import Indexer
from wlindex.core.logging import configure_logging
from wlindex.core.query import QueryEngine
from wlindex.core.resolver import CrossReferenceIndex
from wlindex.parsers.base import ArgType, MessageType
from wlindex.parsers.errors import (
    ArgError, AttributeDecodeError, DescriptionError, DocumentError,
    EntryError, ErrorKind, InterfaceError, MessageError, ParseError,
    format_error_chain, iter_error_chain,
)
from wlindex.parsers.literals import parse_bool, parse_entry_value, parse_uint
from wlindex.parsers.wayland import parse
from wlindex.store.db import Database
from wlindex.store.models import (
    ArgRow, DescriptionRow, EntryRow, EnumRow, InterfaceRow, MessageRow,
    ProtocolRow, RepoRow, TypeRow, record_id,
)

FIXTURE_DIR = Path(__file__).parent / "fixture_corpus"
REPOS_DIR = FIXTURE_DIR / "repos"
CORE_XML = REPOS_DIR / "core-protocols" / "protocol" / "core.xml"
BROKEN_XML = REPOS_DIR / "core-protocols" / "protocol" / "broken.xml"
OUTPUT_XML = REPOS_DIR / "extra-protocols" / "stable" / "output" / "output.xml"


@pytest.fixture
def db(tmp_path):
    """Create a fresh database."""
    db_path = tmp_path / "test.db"
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def indexed_db(db):
    """Database with the fixture corpus fully indexed."""
    indexer = Indexer(db, FIXTURE_DIR)
    indexer.full_rebuild()
    return db


def _innermost(exc: BaseException) -> ParseError:
    return [e for e in iter_error_chain(exc) if isinstance(e, ParseError)][-1]


def _fixture_repos() -> list[RepoDocuments]:
    return [
        RepoDocuments("core-protocols", "https://example.org/core.git", [
            Document("protocol/broken.xml", BROKEN_XML.read_bytes()),
            Document("protocol/core.xml", CORE_XML.read_bytes()),
        ]),
        RepoDocuments("extra-protocols", "https://example.org/extra.git", [
            Document("stable/output/output.xml", OUTPUT_XML.read_bytes()),
        ]),
    ]


def _qualified_links(model) -> tuple[set, set]:
    """Relations keyed by names instead of identifiers."""
    repos = {r.repo_id: r.name for r in model.rows(RepoRow)}
    protocols = {r.protocol_id: r for r in model.rows(ProtocolRow)}
    interfaces = {r.interface_id: r for r in model.rows(InterfaceRow)}
    enums = {r.enum_id: r for r in model.rows(EnumRow)}
    messages = {r.message_id: r for r in model.rows(MessageRow)}
    args = {r.arg_id: r for r in model.rows(ArgRow)}

    def interface_key(interface_id):
        iface = interfaces[interface_id]
        protocol = protocols[iface.protocol_id]
        return (repos[protocol.repo_id], protocol.path, iface.name)

    def arg_key(arg_id):
        arg = args[arg_id]
        message = messages[arg.message_id]
        return interface_key(message.interface_id) + (message.is_request, message.name, arg.name)

    def enum_key(enum_id):
        enum = enums[enum_id]
        return interface_key(enum.interface_id) + (enum.name,)

    return (
        {(arg_key(a), interface_key(i)) for a, i in model.arg_interfaces},
        {(arg_key(a), enum_key(e)) for a, e in model.arg_enums},
    )


# ── Literal tests ──

class TestLiterals:
    def test_entry_values(self):
        assert parse_entry_value("4") == 4
        assert parse_entry_value("0x10") == 16
        assert parse_entry_value("-3") == -3
        assert parse_entry_value("-0x10") == -16
        assert parse_entry_value("+5") == 5
        assert parse_entry_value("0") == 0

    def test_entry_value_rejects_malformed(self):
        for text in ("", "0X10", "0x", " 4", "4 ", "1_000", "abc", "--1", "0xZZ"):
            with pytest.raises(ValueError):
                parse_entry_value(text)

    def test_entry_value_range(self):
        assert parse_entry_value("9223372036854775807") == 2**63 - 1
        with pytest.raises(ValueError):
            parse_entry_value("9223372036854775808")

    def test_uint(self):
        assert parse_uint("7") == 7
        assert parse_uint("4294967295") == 2**32 - 1
        for text in ("4294967296", "-1", "1.0", "", "0x1"):
            with pytest.raises(ValueError):
                parse_uint(text)

    def test_bool(self):
        assert parse_bool("true") is True
        assert parse_bool("false") is False
        for text in ("True", "1", "yes", ""):
            with pytest.raises(ValueError):
                parse_bool(text)


# ── Description tests ──

class TestFormatDescription:
    def test_reflow_paragraphs(self):
        body = (
            "\n      A compositor.  This object\n"
            "      continues here.\n"
            "\n"
            "      Second.\n    "
        )
        assert format_description(body) == "A compositor.  This object continues here.\nSecond."

    def test_blank_run_becomes_newlines(self):
        assert format_description("a\n\n\nb") == "a\n\nb"

    def test_indented_block_with_two_blank_lines(self):
        text = format_description("    first line\n    continues\n\n\n    second")
        assert text == "first line continues\n\nsecond"
        assert text.count("\n") == 2

    def test_deeper_indent_kept(self):
        assert format_description("\n  a\n    b\n") == "a   b"

    def test_shallower_line_stripped_to_margin(self):
        assert format_description("    a\n  b") == "a b"

    def test_tabs_expand_to_eight(self):
        assert format_description("\n\tfoo\n\tbar\n") == "foo bar"
        assert format_description("\tfoo\n        bar") == "foo bar"

    def test_trailing_whitespace_and_crlf(self):
        assert format_description("a  \r\nb\t\r\n") == "a b"

    def test_empty(self):
        assert format_description("") == ""
        assert format_description("\n   \n") == ""


# ── Parser tests ──

class TestParser:
    def test_parse_fixture_document(self):
        protocols = parse("core.xml", CORE_XML.read_bytes())
        assert [p.name for p in protocols] == ["core"]
        core = protocols[0]
        assert core.path == "core.xml"
        assert "Fixture Authors" in core.copyright.body
        assert core.description.summary == "core fixture protocol"
        assert [i.name for i in core.interfaces] == ["wl_compositor", "wl_surface"]

        surface = core.interfaces[1]
        assert surface.version == 5
        assert [(m.name, m.number) for m in surface.requests] == [
            ("destroy", 0), ("attach", 1), ("set_buffer_transform", 2), ("set_flags", 3),
        ]
        assert [(m.name, m.number) for m in surface.events] == [("enter", 0), ("leave", 1)]
        assert surface.requests[0].type is MessageType.DESTRUCTOR
        assert surface.requests[0].is_destructor
        assert surface.requests[2].since == 2

        buffer_arg = surface.requests[1].args[0]
        assert buffer_arg.type is ArgType.OBJECT
        assert buffer_arg.interface == "wl_buffer"
        assert buffer_arg.allow_null is True
        assert surface.requests[1].args[1].allow_null is False

        flags = surface.enums[1]
        assert flags.bitfield is True
        assert [(e.value, e.value_i64) for e in flags.entries] == [
            ("4", 4), ("0x10", 16), ("-3", -3),
        ]

    def test_message_numbering_per_direction(self):
        doc = b"""<protocol name="p">
          <interface name="i" version="1">
            <request name="a"/><event name="e"/><request name="b"/><event name="f"/>
          </interface>
        </protocol>"""
        iface = parse("p.xml", doc)[0].interfaces[0]
        assert [(m.name, m.is_request, m.number) for m in iface.messages] == [
            ("a", True, 0), ("e", False, 0), ("b", True, 1), ("f", False, 1),
        ]

    def test_unknown_elements_skipped_with_subtree(self):
        doc = b"""<protocol name="p">
          <extension><interface name="hidden" version="1"/></extension>
          <interface name="i" version="1" future="yes">
            <note><request name="hidden"/></note>
            <request name="r"/>
          </interface>
        </protocol>"""
        protocol = parse("p.xml", doc)[0]
        assert [i.name for i in protocol.interfaces] == ["i"]
        assert [m.name for m in protocol.interfaces[0].messages] == ["r"]

    def test_invalid_utf8_in_comment_ignored(self):
        doc = b'<protocol name="p"><!-- caf\xe9 --><interface name="i" version="1"/></protocol>'
        assert [i.name for i in parse("p.xml", doc)[0].interfaces] == ["i"]

    def test_invalid_utf8_in_skipped_element_ignored(self):
        doc = b'<protocol name="p"><ext note="caf\xe9">caf\xe9</ext><interface name="i" version="1"/></protocol>'
        assert [i.name for i in parse("p.xml", doc)[0].interfaces] == ["i"]

    def test_invalid_utf8_in_unknown_attribute_ignored(self):
        doc = b'<protocol name="p"><interface name="i" version="1" note="caf\xe9"/></protocol>'
        assert [i.name for i in parse("p.xml", doc)[0].interfaces] == ["i"]

    def test_prefixed_names_are_unknown(self):
        doc = (
            b'<protocol name="p" ext:hint="x">'
            b'<x:interface name="hidden" version="1"/>'
            b'<interface name="i" version="1"/>'
            b'</protocol>'
        )
        protocol = parse("p.xml", doc)[0]
        assert protocol.name == "p"
        assert [i.name for i in protocol.interfaces] == ["i"]

    def test_protocols_found_at_any_depth(self):
        doc = b'<bundle><protocol name="a"/><group><protocol name="b"/></group></bundle>'
        assert [p.name for p in parse("b.xml", doc)] == ["a", "b"]

    def test_no_protocol(self):
        assert parse("empty.xml", b"<other/>") == []

    def test_description_text_unescaped_and_accumulated(self):
        doc = b"""<protocol name="p"><description summary="s">a &amp; b <b>bold</b> <![CDATA[<raw>]]></description></protocol>"""
        description = parse("p.xml", doc)[0].description
        assert description.summary == "s"
        assert description.body == "a & b bold <raw>"

    def test_missing_interface_name(self):
        with pytest.raises(DocumentError) as exc_info:
            parse("broken.xml", BROKEN_XML.read_bytes())
        assert exc_info.value.kind is ErrorKind.NESTED
        inner = _innermost(exc_info.value)
        assert isinstance(inner, InterfaceError)
        assert inner.kind is ErrorKind.MISSING_FIELD
        assert inner.field == "name"
        assert format_error_chain(exc_info.value) == (
            "could not parse a protocol element: "
            "could not parse an interface element: "
            "interface has no name"
        )

    def test_missing_version(self):
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", b'<protocol name="p"><interface name="i"/></protocol>')
        inner = _innermost(exc_info.value)
        assert inner.kind is ErrorKind.MISSING_FIELD
        assert inner.field == "version"

    def test_missing_protocol_name(self):
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", b"<protocol/>")
        assert _innermost(exc_info.value).field == "name"

    def test_unknown_message_type(self):
        doc = b'<protocol name="p"><interface name="i" version="1"><request name="r" type="weird"/></interface></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        inner = _innermost(exc_info.value)
        assert isinstance(inner, MessageError)
        assert inner.kind is ErrorKind.UNKNOWN_VARIANT
        assert inner.value == "weird"
        assert "could not parse a request element" in format_error_chain(exc_info.value)

    def test_unknown_arg_type(self):
        doc = b'<protocol name="p"><interface name="i" version="1"><event name="e"><arg name="a" type="double"/></event></interface></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        inner = _innermost(exc_info.value)
        assert isinstance(inner, ArgError)
        assert inner.kind is ErrorKind.UNKNOWN_VARIANT
        assert "could not parse an event element" in format_error_chain(exc_info.value)

    def test_invalid_numbers_and_booleans(self):
        cases = [
            (b'<protocol name="p"><interface name="i" version="1.0"/></protocol>', InterfaceError, "version"),
            (b'<protocol name="p"><interface name="i" version="1"><request name="r" since="x"/></interface></protocol>', MessageError, "since"),
            (b'<protocol name="p"><interface name="i" version="1"><request name="r"><arg name="a" type="int" allow-null="yes"/></request></interface></protocol>', ArgError, "allow-null"),
            (b'<protocol name="p"><interface name="i" version="1"><enum name="e"><entry name="x" value="0xZZ"/></enum></interface></protocol>', EntryError, "value"),
        ]
        for doc, error_cls, field in cases:
            with pytest.raises(DocumentError) as exc_info:
                parse("p.xml", doc)
            inner = _innermost(exc_info.value)
            assert isinstance(inner, error_cls)
            assert inner.kind is ErrorKind.INVALID_NUMBER
            assert inner.field == field

    def test_entry_missing_value_reported_before_name(self):
        doc = b'<protocol name="p"><interface name="i" version="1"><enum name="e"><entry/></enum></interface></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        inner = _innermost(exc_info.value)
        assert isinstance(inner, EntryError)
        assert inner.field == "value"

    def test_invalid_utf8_in_text(self):
        doc = b'<protocol name="p"><description summary="s">bad \xff text</description></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        inner = _innermost(exc_info.value)
        assert isinstance(inner, DescriptionError)
        assert inner.kind is ErrorKind.DECODE

    def test_invalid_utf8_in_attribute(self):
        doc = b'<protocol name="p"><interface name="\xff" version="1"/></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        chain = list(iter_error_chain(exc_info.value))
        attribute_errors = [e for e in chain if isinstance(e, AttributeDecodeError)]
        assert len(attribute_errors) == 1
        assert attribute_errors[0].kind is ErrorKind.DECODE
        assert isinstance(chain[-1], UnicodeDecodeError)
        assert any(isinstance(e, InterfaceError) and e.field == "attribute" for e in chain)

    def test_malformed_markup(self):
        doc = b'<protocol name="p"><interface name="i" version="1"></protocol>'
        with pytest.raises(DocumentError) as exc_info:
            parse("p.xml", doc)
        assert any(
            isinstance(e, ParseError) and e.kind is ErrorKind.READ
            for e in iter_error_chain(exc_info.value)
        )

    def test_truncated_document(self):
        with pytest.raises(DocumentError):
            parse("p.xml", b'<protocol name="p"><interface name="i" version="1">')

    def test_error_to_dict(self):
        error = MessageError.unknown("type", "weird")
        assert error.to_dict() == {
            "element": "message",
            "kind": "unknown_variant",
            "message": "unknown message type 'weird'",
            "field": "type",
            "value": "weird",
        }


# ── Resolver tests ──

class TestCrossReferenceIndex:
    def test_cross_join_by_name(self):
        index = CrossReferenceIndex()
        index.defer_interface(5, "wl_output")
        index.register_interface("wl_output", 10)
        index.register_interface("wl_output", 20)
        result = index.finalize()
        assert result.arg_interfaces == {(5, 10), (5, 20)}
        assert result.unresolved_interface_refs == 0

    def test_unresolved_interface(self):
        index = CrossReferenceIndex()
        index.defer_interface(6, "nowhere")
        result = index.finalize()
        assert result.arg_interfaces == set()
        assert result.unresolved_interface_refs == 1

    def test_enum_resolution(self):
        index = CrossReferenceIndex()
        index.register_enum("wl_output", "transform", 30)
        index.defer_enum(7, "wl_output", "transform")
        index.defer_enum(8, "wl_output", "missing")
        index.defer_enum(9, "wl_seat", "capability")
        result = index.finalize()
        assert result.arg_enums == {(7, 30)}
        assert result.unresolved_enum_refs == 2
        # enum registration does not make the interface name resolvable
        index.defer_interface(11, "wl_output")
        assert index.finalize().unresolved_interface_refs == 1

    def test_finalize_is_repeatable(self):
        index = CrossReferenceIndex()
        index.register_interface("a", 1)
        index.defer_interface(2, "a")
        index.defer_enum(3, "a", "e")
        assert index.pending_count == 2
        assert index.finalize() == index.finalize()


# ── Builder tests ──

class TestGraphBuilder:
    def test_type_ids(self):
        builder = GraphBuilder()
        assert [builder.type_ids[t] for t in ArgType] == list(range(1, 9))
        assert [r.name for r in builder.model.rows(TypeRow)] == [
            "new_id", "int", "uint", "fixed", "string", "object", "array", "fd",
        ]

    def test_id_allocator(self):
        next_id = IdAllocator()
        assert [next_id(), next_id(), next_id()] == [1, 2, 3]

    def test_ids_unique_and_ascending(self):
        model = build_model(_fixture_repos()).model
        ids = [record_id(r) for r in model]
        assert ids == list(range(1, len(ids) + 1))

    def test_description_precedes_owner(self):
        model = build_model(_fixture_repos()).model
        description_ids = {r.description_id for r in model.rows(DescriptionRow)}
        owners = [r for r in model if getattr(r, "description_id", None) is not None
                  and not isinstance(r, DescriptionRow)]
        assert owners
        for row in owners:
            assert row.description_id in description_ids
            assert row.description_id < record_id(row)
        # every description has exactly one owner
        assert sorted(r.description_id for r in owners) == sorted(description_ids)

    def test_repo_url_trimmed(self):
        builder = GraphBuilder()
        builder.add_repo("wayland", "  https://example.org/wayland.git\n")
        assert builder.model.rows(RepoRow)[0].url == "https://example.org/wayland.git"

    def test_descriptions_reflowed(self):
        model = build_model(_fixture_repos()).model
        bodies = [r.body for r in model.rows(DescriptionRow)]
        assert (
            "A compositor.  This object is a singleton global.  The compositor is in "
            "charge of combining the contents of multiple surfaces into one displayable "
            "output.\nSecond paragraph."
        ) in bodies

    def test_entry_values(self):
        model = build_model(_fixture_repos()).model
        values = {r.name: (r.value_str, r.value) for r in model.rows(EntryRow)}
        assert values["four"] == ("4", 4)
        assert values["sixteen"] == ("0x10", 16)
        assert values["negative"] == ("-3", -3)

    def test_split_enum_reference(self):
        assert split_enum_reference("wl_output.transform", "wl_surface") == ("wl_output", "transform")
        assert split_enum_reference("flags", "wl_surface") == ("wl_surface", "flags")

    def test_shadowed_interface(self):
        doc = b"""<protocol name="p">
          <interface name="dup" version="1"><request name="first"/></interface>
          <interface name="dup" version="2"><request name="second"/></interface>
          <interface name="user" version="1">
            <request name="use"><arg name="d" type="object" interface="dup"/></request>
          </interface>
        </protocol>"""
        model = build_model([RepoDocuments("r", "u", [Document("p.xml", doc)])]).model
        assert {m.name for m in model.rows(MessageRow)} == {"first", "second", "use"}
        later = [i for i in model.rows(InterfaceRow) if i.name == "dup" and i.version == 2][0]
        arg = model.rows(ArgRow)[0]
        assert model.arg_interfaces == {(arg.arg_id, later.interface_id)}


class TestBuildModel:
    def test_failed_document_skipped(self):
        result = build_model(_fixture_repos())
        assert [p.name for p in result.model.rows(ProtocolRow)] == ["core", "output"]
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.path == "protocol/broken.xml"
        assert failure.stage == "parse"
        assert failure.to_dict()["error"].endswith("interface has no name")

    def test_unreadable_document(self, tmp_path):
        repo = RepoDocuments("r", "u", [Document("gone.xml", source=tmp_path / "gone.xml")])
        result = build_model([repo])
        assert result.failures[0].stage == "read"
        assert result.model.rows(RepoRow) == []

    def test_repo_without_protocols_skipped(self):
        result = build_model([
            RepoDocuments("empty", "u", [Document("x.xml", b"<other/>")]),
            RepoDocuments("full", "v", [Document("p.xml", b'<protocol name="p"/>')]),
        ])
        assert [r.name for r in result.model.rows(RepoRow)] == ["full"]

    def test_protocols_sorted_by_name(self):
        result = build_model([RepoDocuments("r", "u", [
            Document("z.xml", b'<protocol name="b"/>'),
            Document("a.xml", b'<protocol name="a"/>'),
        ])])
        assert [p.name for p in result.model.rows(ProtocolRow)] == ["a", "b"]

    def test_missing_protocol_name_fails_only_that_document(self):
        result = build_model([RepoDocuments("r", "u", [
            Document("bad.xml", b'<protocol><interface name="i" version="1"/></protocol>'),
            Document("good.xml", b'<protocol name="good"><interface name="g" version="1"/></protocol>'),
        ])])
        assert [f.path for f in result.failures] == ["bad.xml"]
        inner = _innermost(result.failures[0].error)
        assert inner.kind is ErrorKind.MISSING_FIELD
        assert inner.field == "name"
        assert [p.name for p in result.model.rows(ProtocolRow)] == ["good"]
        assert [i.name for i in result.model.rows(InterfaceRow)] == ["g"]

    def test_cross_repository_links(self):
        result = build_model(_fixture_repos())
        interfaces, enums = _qualified_links(result.model)
        core = ("core-protocols", "protocol/core.xml")
        extra = ("extra-protocols", "stable/output/output.xml")
        assert interfaces == {
            (core + ("wl_compositor", True, "create_surface", "id"), core + ("wl_surface",)),
            (core + ("wl_surface", True, "attach", "buffer"), extra + ("wl_buffer",)),
            (core + ("wl_surface", False, "enter", "output"), extra + ("wl_output",)),
            (core + ("wl_surface", False, "leave", "output"), extra + ("wl_output",)),
            (extra + ("wl_buffer", False, "attached_to", "surface"), core + ("wl_surface",)),
        }
        assert enums == {
            (core + ("wl_surface", True, "set_buffer_transform", "transform"), extra + ("wl_output", "transform")),
            (core + ("wl_surface", True, "set_flags", "flags"), core + ("wl_surface", "flags")),
            (extra + ("wl_output", False, "geometry", "transform"), extra + ("wl_output", "transform")),
        }

    def test_unresolved_interface_has_no_relation(self):
        result = build_model(_fixture_repos())
        model = result.model
        region_arg = [a for a in model.rows(ArgRow) if a.interface_name == "wl_region"][0]
        assert region_arg.arg_id not in {a for a, _ in model.arg_interfaces}
        assert result.resolution.unresolved_interface_refs == 1
        assert result.resolution.unresolved_enum_refs == 0

    def test_deterministic(self):
        first = build_model(_fixture_repos()).model
        second = build_model(_fixture_repos()).model
        assert first.records == second.records
        assert first.arg_interfaces == second.arg_interfaces
        assert first.arg_enums == second.arg_enums

    def test_order_independent(self):
        expected = _qualified_links(build_model(_fixture_repos()).model)
        rng = random.Random(7)
        for _ in range(5):
            repos = _fixture_repos()
            rng.shuffle(repos)
            for repo in repos:
                rng.shuffle(repo.documents)
            assert _qualified_links(build_model(repos).model) == expected


# ── Config tests ──

class TestConfig:
    def test_defaults(self, tmp_path):
        config = CorpusConfig.load(tmp_path)
        assert config.repos_dir == "repos"
        assert config.database == "wayland.db"
        assert [r.dir for r in config.repos] == [r.dir for r in DEFAULT_REPOS]
        assert len(config.repos) == 11
        wayland = [r for r in config.repos if r.dir == "wayland"][0]
        assert wayland.exclude_spec().match_file("tests/data/small.xml")
        assert wayland.exclude_spec().match_file("protocol/tests.xml")
        assert not wayland.exclude_spec().match_file("protocol/wayland.xml")

    def test_load_fixture(self):
        config = CorpusConfig.load(FIXTURE_DIR)
        assert [r.dir for r in config.repos] == ["core-protocols", "extra-protocols"]
        assert config.repos[1].exclude == ["/tests/"]
        assert config.database_path(FIXTURE_DIR) == FIXTURE_DIR / "wayland.db"

    def test_string_shorthand(self, tmp_path):
        (tmp_path / "wlindex.yml").write_text("repos:\n  - wayland\n  - dir: weston\n")
        config = CorpusConfig.load(tmp_path)
        assert [r.dir for r in config.repos] == ["wayland", "weston"]
        assert config.repos[0].exclude_spec() is None

    def test_round_trip_dict(self):
        config = CorpusConfig.load(FIXTURE_DIR)
        again = CorpusConfig._from_dict(config.to_dict())
        assert again == config

    @pytest.mark.parametrize("text", [
        "repos: [unclosed",
        "- just\n- a list\n",
        "repos: wayland\n",
        "repos:\n  - exclude: [x]\n",
        "database: 3\n",
    ])
    def test_malformed(self, tmp_path, text):
        (tmp_path / "wlindex.yaml").write_text(text)
        with pytest.raises(ConfigError):
            CorpusConfig.load(tmp_path)


# ── Indexer tests ──

class TestIndexer:
    def test_collect(self, db):
        indexer = Indexer(db, FIXTURE_DIR)
        repos = indexer.collect()
        assert [(r.name, r.url) for r in repos] == [
            ("core-protocols", "https://example.org/core-protocols.git"),
            ("extra-protocols", "https://example.org/extra-protocols.git"),
        ]
        assert [d.path for d in repos[0].documents] == [
            "protocol/broken.xml",
            "protocol/core.xml",
        ]
        # tests/ is excluded, README is not a document
        assert [d.path for d in repos[1].documents] == [
            "stable/output/output.xml",
        ]

    def test_full_rebuild(self, db):
        stats = Indexer(db, FIXTURE_DIR).full_rebuild()
        assert stats.total_repos == 2
        assert stats.total_protocols == 2
        assert stats.total_interfaces == 4
        assert stats.total_messages == 13
        assert stats.total_requests == 8
        assert stats.total_events == 5
        assert stats.total_args == 12
        assert stats.total_enums == 3
        assert stats.total_entries == 7
        assert stats.total_descriptions == 2
        assert stats.arg_interface_links == 5
        assert stats.arg_enum_links == 3
        assert stats.unresolved_interface_refs == 1
        assert stats.unresolved_enum_refs == 0
        assert stats.skipped_documents == 1

        meta = db.get_meta("last_rebuild")
        assert meta["protocols_indexed"] == 2
        assert meta["failures"][0]["path"] == "protocol/broken.xml"

    def test_rebuild_twice(self, db):
        indexer = Indexer(db, FIXTURE_DIR)
        first = indexer.full_rebuild()
        second = indexer.full_rebuild()
        assert first == second

    def test_url_lookup(self, db):
        config = CorpusConfig._from_dict({"repos": ["core-protocols", "extra-protocols"]})
        seen = []

        def lookup(repo_dir):
            seen.append(repo_dir.name)
            return None if repo_dir.name == "extra-protocols" else " git@example.org:core.git\n"

        repos = Indexer(db, FIXTURE_DIR, config=config, url_lookup=lookup).collect()
        assert seen == ["core-protocols", "extra-protocols"]
        assert [(r.name, r.url) for r in repos] == [("core-protocols", "git@example.org:core.git")]

    def test_missing_checkout_skipped(self, db):
        config = CorpusConfig._from_dict({"repos": [
            {"dir": "not-cloned", "url": "u"},
            {"dir": "core-protocols", "url": "u"},
        ]})
        repos = Indexer(db, FIXTURE_DIR, config=config).collect()
        assert [r.name for r in repos] == ["core-protocols"]

    def test_missing_repos_dir(self, db, tmp_path):
        config = CorpusConfig(repos_dir="nope")
        with pytest.raises(FileNotFoundError):
            Indexer(db, tmp_path, config=config).collect()


# ── Storage and query tests ──

class TestDatabase:
    def test_round_trip(self, db):
        model = build_model(_fixture_repos()).model
        with db.transaction():
            db.write_model(model)
        assert db.arg_interface_links() == model.arg_interfaces
        assert db.arg_enum_links() == model.arg_enums
        stats = db.get_stats()
        assert stats.total_interfaces == len(model.rows(InterfaceRow))
        assert stats.total_args == len(model.rows(ArgRow))

    def test_write_rolls_back(self, db):
        model = build_model(_fixture_repos()).model
        model.records.append(model.records[-1])
        with pytest.raises(Exception):
            with db.transaction():
                db.write_model(model)
        assert db.get_stats().total_protocols == 0

    def test_meta(self, db):
        assert db.get_meta("schema_version") == 1
        db.set_meta("k", {"a": [1, 2]})
        db.set_meta("k", {"a": [3]})
        assert db.get_meta("k") == {"a": [3]}
        assert db.get_meta("missing") is None


class TestQueryEngine:
    def test_get_interfaces(self, indexed_db):
        query = QueryEngine(indexed_db)
        [ctx] = query.get_interfaces("wl_surface")
        assert ctx.interface["repo"] == "core-protocols"
        assert ctx.interface["protocol"] == "core"
        assert [m["name"] for m in ctx.requests] == [
            "destroy", "attach", "set_buffer_transform", "set_flags",
        ]
        assert [m["name"] for m in ctx.events] == ["enter", "leave"]
        attach = ctx.requests[1]
        assert [(a["name"], a["type"]) for a in attach["args"]] == [
            ("buffer", "object"), ("x", "int"), ("y", "int"),
        ]
        assert attach["args"][0]["allow_null"] is True
        assert ctx.requests[0]["is_destructor"] is True
        flags = [e for e in ctx.enums if e["name"] == "flags"][0]
        assert flags["is_bitfield"] is True
        assert [x["value"] for x in flags["entries"]] == [4, 16, -3]

    def test_paths_relative_to_repo(self, indexed_db):
        [iface] = indexed_db.find_interfaces("wl_surface")
        assert iface["repo"] == "core-protocols"
        assert iface["path"] == "protocol/core.xml"
        [output] = indexed_db.find_interfaces("wl_output")
        assert output["path"] == "stable/output/output.xml"

    def test_unknown_interface(self, indexed_db):
        assert QueryEngine(indexed_db).get_interfaces("wl_nothing") == []

    def test_references(self, indexed_db):
        query = QueryEngine(indexed_db)
        refs = query.get_references("wl_output")
        assert [(r["interface"], r["message"], r["arg"]) for r in refs] == [
            ("wl_surface", "enter", "output"),
            ("wl_surface", "leave", "output"),
        ]
        refs = query.get_references("wl_surface")
        assert {(r["repo"], r["message"]) for r in refs} == {
            ("core-protocols", "create_surface"),
            ("extra-protocols", "attached_to"),
        }
        assert query.get_references("wl_region") == []

    def test_stats(self, indexed_db):
        stats = QueryEngine(indexed_db).get_stats()
        assert stats["total_protocols"] == 2
        assert stats["unresolved_interface_refs"] == 1
        assert stats["skipped_documents"] == 1


# ── Logging tests ──

class TestLogging:
    @pytest.fixture(autouse=True)
    def _reset_logging(self):
        yield
        logging.getLogger().handlers.clear()
        structlog.reset_defaults()

    def test_module_logger_follows_configuration(self):
        indexer_module = importlib.import_module("wlindex.core.indexer")
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream)
        indexer_module.log.warning("repo_missing", repo="r")
        [line] = [json.loads(x) for x in stream.getvalue().splitlines()]
        assert line["logger"] == "wlindex.indexer"
        assert line["repo"] == "r"

    def test_json_lines_carry_logger_name(self):
        stream = io.StringIO()
        configure_logging(json_format=True, stream=stream)
        build_model(_fixture_repos())
        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        [failed] = [x for x in lines if x["event"] == "document_parse_failed"]
        assert failed["logger"] == "wlindex.builder"
        assert failed["level"] == "warning"
        assert failed["path"] == "protocol/broken.xml"

    def test_level_filters(self):
        stream = io.StringIO()
        configure_logging(level="ERROR", json_format=True, stream=stream)
        build_model(_fixture_repos())
        assert stream.getvalue() == ""


# ── CLI tests ──

class TestCli:
    @pytest.fixture(autouse=True)
    def _reset_logging(self):
        yield
        logging.getLogger().handlers.clear()
        structlog.reset_defaults()

    @pytest.fixture
    def workspace(self, tmp_path):
        root = tmp_path / "corpus"
        shutil.copytree(FIXTURE_DIR, root)
        return root

    def test_build_and_stats(self, workspace, capsys):
        assert run_cli(["--root", str(workspace), "build"]) == 0
        assert (workspace / "wayland.db").exists()
        assert "Protocols:    2" in capsys.readouterr().out

        assert run_cli(["--root", str(workspace), "--json", "stats"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_interfaces"] == 4

    def test_interface(self, workspace, capsys):
        run_cli(["-r", str(workspace), "build"])
        capsys.readouterr()
        assert run_cli(["-r", str(workspace), "interface", "wl_output"]) == 0
        out = capsys.readouterr().out
        assert "interface wl_output v4" in out
        assert "Referenced by (2):" in out

        assert run_cli(["-r", str(workspace), "-j", "interface", "wl_buffer"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["interfaces"][0]["interface"]["repo"] == "extra-protocols"
        assert result["referenced_by"][0]["message"] == "attach"

        assert run_cli(["-r", str(workspace), "interface", "wl_missing"]) == 1

    def test_parse(self, capsys):
        assert run_cli(["parse", str(OUTPUT_XML)]) == 0
        out = capsys.readouterr().out
        assert "protocol output (2 interfaces)" in out
        assert "wl_buffer v1: 1 requests, 2 events, 0 enums" in out

        assert run_cli(["--json", "parse", str(CORE_XML)]) == 0
        [protocol] = json.loads(capsys.readouterr().out)
        assert protocol["interfaces"][1]["messages"][0]["type"] == "destructor"

    def test_parse_failure(self, capsys):
        assert run_cli(["parse", str(BROKEN_XML)]) == 1
        assert "interface has no name" in capsys.readouterr().err

    def test_bad_config(self, tmp_path, capsys):
        (tmp_path / "wlindex.yaml").write_text("repos: [unclosed")
        assert run_cli(["--root", str(tmp_path), "build"]) == 1
        assert "Failed to parse config" in capsys.readouterr().err

    def test_no_command(self, capsys):
        assert run_cli([]) == 0
        assert "usage" in capsys.readouterr().out
