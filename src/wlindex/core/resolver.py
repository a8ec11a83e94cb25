"""
Corpus-wide cross-reference index.

Arguments name their targets symbolically: an interface name, or an
(interface name, enum name) pair. References that cannot be satisfied inside
their own protocol are parked here, and every interface and enum seen anywhere
is registered here, so that a single finalize() after the whole corpus has
been walked can link them regardless of processing order.

Resolution is a plain join by name: a reference links to every interface (or
enum) registered under that name, across all repositories.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EnumTargets:
    enum_ids: list[int] = field(default_factory=list)
    pending_arg_ids: list[int] = field(default_factory=list)


@dataclass
class InterfaceTargets:
    """Everything known under one interface name."""
    interface_ids: list[int] = field(default_factory=list)
    enums: dict[str, EnumTargets] = field(default_factory=dict)
    pending_arg_ids: list[int] = field(default_factory=list)

    def enum(self, name: str) -> EnumTargets:
        targets = self.enums.get(name)
        if targets is None:
            targets = self.enums[name] = EnumTargets()
        return targets


@dataclass
class Resolution:
    arg_interfaces: set[tuple[int, int]] = field(default_factory=set)
    arg_enums: set[tuple[int, int]] = field(default_factory=set)
    unresolved_interface_refs: int = 0
    unresolved_enum_refs: int = 0


class CrossReferenceIndex:
    """Pending references and link targets, keyed by interface name."""

    def __init__(self):
        self._by_name: dict[str, InterfaceTargets] = {}

    def _targets(self, interface_name: str) -> InterfaceTargets:
        targets = self._by_name.get(interface_name)
        if targets is None:
            targets = self._by_name[interface_name] = InterfaceTargets()
        return targets

    # ── Registration ──

    def register_interface(self, name: str, interface_id: int) -> None:
        self._targets(name).interface_ids.append(interface_id)

    def register_enum(self, interface_name: str, enum_name: str, enum_id: int) -> None:
        self._targets(interface_name).enum(enum_name).enum_ids.append(enum_id)

    # ── Deferral ──

    def defer_interface(self, arg_id: int, interface_name: str) -> None:
        self._targets(interface_name).pending_arg_ids.append(arg_id)

    def defer_enum(self, arg_id: int, interface_name: str, enum_name: str) -> None:
        self._targets(interface_name).enum(enum_name).pending_arg_ids.append(arg_id)

    @property
    def pending_count(self) -> int:
        return sum(
            len(t.pending_arg_ids) + sum(len(e.pending_arg_ids) for e in t.enums.values())
            for t in self._by_name.values()
        )

    # ── Finalization ──

    def finalize(self) -> Resolution:
        """Cross-join every pending reference with every target of the same name.

        Run once, after every document has been registered. Pure with respect
        to the index: calling it again yields the same result.
        """
        result = Resolution()
        for targets in self._by_name.values():
            for arg_id in targets.pending_arg_ids:
                if not targets.interface_ids:
                    result.unresolved_interface_refs += 1
                for interface_id in targets.interface_ids:
                    result.arg_interfaces.add((arg_id, interface_id))
            for enum_targets in targets.enums.values():
                for arg_id in enum_targets.pending_arg_ids:
                    if not enum_targets.enum_ids:
                        result.unresolved_enum_refs += 1
                    for enum_id in enum_targets.enum_ids:
                        result.arg_enums.add((arg_id, enum_id))
        return result
