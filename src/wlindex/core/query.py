"""
Query engine — assemble context for interfaces from the stored index.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..store.db import Database


@dataclass
class InterfaceContext:
    """One interface with its messages, enums and incoming references."""
    interface: dict[str, Any] = field(default_factory=dict)
    messages: list[dict[str, Any]] = field(default_factory=list)
    enums: list[dict[str, Any]] = field(default_factory=list)

    @property
    def requests(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["is_request"]]

    @property
    def events(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if not m["is_request"]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "interface": self.interface,
            "messages": self.messages,
            "enums": self.enums,
        }


class QueryEngine:
    """Read-side lookups over the index."""

    def __init__(self, db: Database):
        self.db = db

    def get_interfaces(self, name: str) -> list[InterfaceContext]:
        """Every interface with this exact name, in identifier order."""
        contexts = []
        for row in self.db.find_interfaces(name):
            iid = row["interface_id"]
            contexts.append(InterfaceContext(
                interface=row,
                messages=self.db.get_messages(iid),
                enums=self.db.get_enums(iid),
            ))
        return contexts

    def get_references(self, name: str, limit: int = 200) -> list[dict[str, Any]]:
        """Arguments whose resolved interface carries this name."""
        return self.db.get_referencing_args(name, limit=limit)

    def describe(self, name: str) -> dict[str, Any]:
        return {
            "name": name,
            "interfaces": [c.to_dict() for c in self.get_interfaces(name)],
            "referenced_by": self.get_references(name),
        }

    def get_stats(self) -> dict[str, Any]:
        stats = asdict(self.db.get_stats())
        last = self.db.get_meta("last_rebuild")
        if last:
            stats["unresolved_interface_refs"] = last.get("unresolved_interface_refs", 0)
            stats["unresolved_enum_refs"] = last.get("unresolved_enum_refs", 0)
            stats["skipped_documents"] = len(last.get("failures", []))
            stats["last_rebuild"] = last.get("timestamp")
        return stats
