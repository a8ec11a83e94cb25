"""
SQLite database layer for the protocol index.

WAL mode, foreign keys, transaction helpers, model writes in id order.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import astuple, fields
from pathlib import Path
from typing import Any

from .models import (
    ArgRow, DescriptionRow, EntryRow, EnumRow, IndexStats, InterfaceRow,
    MessageRow, Model, ProtocolRow, RepoRow, TypeRow,
)
from .schema import DROP_SQL, INIT_META_SQL, SCHEMA_SQL, SCHEMA_VERSION

_TABLES: dict[type, str] = {
    TypeRow: "types",
    RepoRow: "repos",
    DescriptionRow: "descriptions",
    ProtocolRow: "protocols",
    InterfaceRow: "interfaces",
    EnumRow: "enums",
    EntryRow: "entries",
    MessageRow: "messages",
    ArgRow: "args",
}


def _insert_sql(kind: type) -> str:
    columns = [f.name for f in fields(kind)]
    return (
        f"INSERT INTO {_TABLES[kind]} ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' * len(columns))})"
    )


_INSERT_SQL: dict[type, str] = {kind: _insert_sql(kind) for kind in _TABLES}


class Database:
    """SQLite protocol index database."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript(SCHEMA_SQL)
        self._conn.execute(INIT_META_SQL, (str(SCHEMA_VERSION),))

    @contextmanager
    def transaction(self):
        self._conn.execute("BEGIN")
        try:
            yield
            self._conn.execute("COMMIT")
        except Exception:
            self._conn.execute("ROLLBACK")
            raise

    def close(self):
        self._conn.close()

    def reset(self) -> None:
        """Drop every table and recreate an empty schema."""
        self._conn.executescript(DROP_SQL)
        self._init_schema()

    def optimize(self) -> None:
        self._conn.execute("PRAGMA optimize")

    # ── Model writes ──

    def write_model(self, model: Model) -> None:
        """Insert every row in allocation order, then both relations."""
        for row in model.records:
            self._conn.execute(_INSERT_SQL[type(row)], astuple(row))
        self._conn.executemany(
            "INSERT INTO rel_arg_interface (arg_id, interface_id) VALUES (?, ?)",
            sorted(model.arg_interfaces),
        )
        self._conn.executemany(
            "INSERT INTO rel_arg_enum (arg_id, enum_id) VALUES (?, ?)",
            sorted(model.arg_enums),
        )

    def arg_interface_links(self) -> set[tuple[int, int]]:
        rows = self._conn.execute("SELECT arg_id, interface_id FROM rel_arg_interface").fetchall()
        return {(r["arg_id"], r["interface_id"]) for r in rows}

    def arg_enum_links(self) -> set[tuple[int, int]]:
        rows = self._conn.execute("SELECT arg_id, enum_id FROM rel_arg_enum").fetchall()
        return {(r["arg_id"], r["enum_id"]) for r in rows}

    # ── Interface lookups ──

    def find_interfaces(self, name: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """SELECT i.*, p.name as protocol_name, p.path, r.name as repo_name,
                      d.summary, d.body
               FROM interfaces i
               JOIN protocols p ON i.protocol_id = p.protocol_id
               JOIN repos r ON p.repo_id = r.repo_id
               LEFT JOIN descriptions d ON i.description_id = d.description_id
               WHERE i.name = ?
               ORDER BY i.interface_id""",
            (name,),
        ).fetchall()
        return [{
            "interface_id": r["interface_id"],
            "name": r["name"],
            "version": r["version"],
            "protocol": r["protocol_name"],
            "path": r["path"],
            "repo": r["repo_name"],
            "summary": r["summary"],
            "description": r["body"],
        } for r in rows]

    def get_messages(self, interface_id: int) -> list[dict[str, Any]]:
        messages = self._conn.execute(
            """SELECT m.*, d.summary
               FROM messages m
               LEFT JOIN descriptions d ON m.description_id = d.description_id
               WHERE m.interface_id = ?
               ORDER BY m.is_request DESC, m.number""",
            (interface_id,),
        ).fetchall()
        result = []
        for m in messages:
            args = self._conn.execute(
                """SELECT a.*, t.name as type_name
                   FROM args a JOIN types t ON a.type_id = t.type_id
                   WHERE a.message_id = ?
                   ORDER BY a.position""",
                (m["message_id"],),
            ).fetchall()
            result.append({
                "message_id": m["message_id"],
                "name": m["name"],
                "number": m["number"],
                "is_request": bool(m["is_request"]),
                "is_destructor": bool(m["is_destructor"]),
                "since": m["since"],
                "summary": m["summary"],
                "args": [{
                    "name": a["name"],
                    "type": a["type_name"],
                    "interface": a["interface_name"],
                    "enum": a["enum_name"],
                    "allow_null": bool(a["allow_null"]),
                    "summary": a["summary"],
                } for a in args],
            })
        return result

    def get_enums(self, interface_id: int) -> list[dict[str, Any]]:
        enums = self._conn.execute(
            "SELECT * FROM enums WHERE interface_id = ? ORDER BY enum_id",
            (interface_id,),
        ).fetchall()
        result = []
        for e in enums:
            entries = self._conn.execute(
                "SELECT name, value_str, value, summary FROM entries WHERE enum_id = ? ORDER BY entry_id",
                (e["enum_id"],),
            ).fetchall()
            result.append({
                "enum_id": e["enum_id"],
                "name": e["name"],
                "since": e["since"],
                "is_bitfield": bool(e["is_bitfield"]),
                "entries": [dict(x) for x in entries],
            })
        return result

    def get_referencing_args(self, interface_name: str, limit: int = 200) -> list[dict[str, Any]]:
        """Arguments anywhere in the corpus linked to an interface of this name."""
        rows = self._conn.execute(
            """SELECT DISTINCT a.arg_id, a.position, a.name as arg_name, m.name as message_name,
                      m.is_request, i.name as interface_name, p.path, r.name as repo_name
               FROM rel_arg_interface rel
               JOIN interfaces target ON rel.interface_id = target.interface_id
               JOIN args a ON rel.arg_id = a.arg_id
               JOIN messages m ON a.message_id = m.message_id
               JOIN interfaces i ON m.interface_id = i.interface_id
               JOIN protocols p ON i.protocol_id = p.protocol_id
               JOIN repos r ON p.repo_id = r.repo_id
               WHERE target.name = ?
               ORDER BY r.name, p.path, i.name, m.name, a.position
               LIMIT ?""",
            (interface_name, limit),
        ).fetchall()
        return [{
            "arg": r["arg_name"],
            "message": r["message_name"],
            "is_request": bool(r["is_request"]),
            "interface": r["interface_name"],
            "path": r["path"],
            "repo": r["repo_name"],
        } for r in rows]

    # ── Metadata ──

    def set_meta(self, key: str, value: Any) -> None:
        self._conn.execute(
            """INSERT INTO meta (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
            (key, json.dumps(value)),
        )

    def get_meta(self, key: str) -> Any:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            # schema_version is stored as a bare string
            return row["value"]

    # ── Stats ──

    def get_stats(self) -> IndexStats:
        def _count(table: str, where: str = "") -> int:
            return self._conn.execute(f"SELECT COUNT(*) FROM {table} {where}").fetchone()[0]

        return IndexStats(
            total_repos=_count("repos"),
            total_protocols=_count("protocols"),
            total_interfaces=_count("interfaces"),
            total_enums=_count("enums"),
            total_entries=_count("entries"),
            total_messages=_count("messages"),
            total_requests=_count("messages", "WHERE is_request = 1"),
            total_events=_count("messages", "WHERE is_request = 0"),
            total_args=_count("args"),
            total_descriptions=_count("descriptions"),
            arg_interface_links=_count("rel_arg_interface"),
            arg_enum_links=_count("rel_arg_enum"),
        )
