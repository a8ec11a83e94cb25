"""
Human-readable output formatting for CLI.
"""

from __future__ import annotations

from dataclasses import asdict
from enum import Enum
from typing import Any

from ..parsers.base import Protocol


def format_stats(stats: Any) -> str:
    """Format index stats for display."""
    if hasattr(stats, "total_protocols"):
        stats = asdict(stats)
    lines = [
        f"Repos:        {stats['total_repos']}",
        f"Protocols:    {stats['total_protocols']}",
        f"Interfaces:   {stats['total_interfaces']}",
        f"Messages:     {stats['total_messages']} ({stats['total_requests']} requests, {stats['total_events']} events)",
        f"Arguments:    {stats['total_args']}",
        f"Enums:        {stats['total_enums']} ({stats['total_entries']} entries)",
        f"Descriptions: {stats['total_descriptions']}",
        f"Links:        {stats['arg_interface_links']} arg->interface, {stats['arg_enum_links']} arg->enum",
    ]
    unresolved = stats.get("unresolved_interface_refs", 0) + stats.get("unresolved_enum_refs", 0)
    if unresolved:
        lines.append(
            f"Unresolved:   {stats['unresolved_interface_refs']} interface refs, "
            f"{stats['unresolved_enum_refs']} enum refs"
        )
    if stats.get("skipped_documents"):
        lines.append(f"Skipped documents: {stats['skipped_documents']}")
    return "\n".join(lines)


def _plain(items: list[tuple[str, Any]]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}


def protocol_to_dict(protocol: Protocol) -> dict[str, Any]:
    return asdict(protocol, dict_factory=_plain)


def format_protocols(protocols: list[Protocol]) -> str:
    """Summary of freshly parsed protocol trees."""
    if not protocols:
        return "No protocols found."

    lines = []
    for p in protocols:
        lines.append(f"protocol {p.name} ({len(p.interfaces)} interfaces)")
        for iface in p.interfaces:
            lines.append(
                f"  {iface.name} v{iface.version}: {len(iface.requests)} requests, "
                f"{len(iface.events)} events, {len(iface.enums)} enums"
            )
    return "\n".join(lines)


def _format_arg(arg: dict) -> str:
    text = f"{arg['name']}: {arg['type']}"
    if arg.get("interface"):
        text += f"<{arg['interface']}>"
    if arg.get("enum"):
        text += f" enum={arg['enum']}"
    if arg.get("allow_null"):
        text += "?"
    return text


def format_interface(result: dict) -> str:
    """Format interface lookup results for display."""
    interfaces = result.get("interfaces", [])
    if not interfaces:
        return f"Interface not found: {result.get('name', '?')}"

    lines = []
    for ctx in interfaces:
        iface = ctx["interface"]
        lines.append(f"interface {iface['name']} v{iface['version']}")
        lines.append(f"  {iface['repo']}: {iface['path']} (protocol {iface['protocol']})")
        if iface.get("summary"):
            lines.append(f"  \"{iface['summary']}\"")

        for m in ctx.get("messages", []):
            kind = "request" if m["is_request"] else "event"
            args = ", ".join(_format_arg(a) for a in m["args"])
            marker = " [destructor]" if m["is_destructor"] else ""
            lines.append(f"  {kind} {m['number']} {m['name']}({args}){marker}")

        for e in ctx.get("enums", []):
            lines.append(f"  enum {e['name']} ({len(e['entries'])} entries)")
        lines.append("")

    refs = result.get("referenced_by", [])
    if refs:
        lines.append(f"Referenced by ({len(refs)}):")
        for r in refs:
            lines.append(f"  {r['interface']}.{r['message']}({r['arg']}) in {r['repo']}: {r['path']}")
    return "\n".join(lines).rstrip()
