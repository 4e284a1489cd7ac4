"""
Permission code matching — pure functions, no I/O.

Codes are `module:action[:qualifier]`.  An effective permission set may
contain three shapes:

    equipment:read     literal
    equipment:*        module wildcard (every action of `equipment`)
    *:*  or  *         global wildcard

`has_permission` checks them in that order.  `resolve_permission_patterns`
turns the same shapes into concrete catalog entries for bulk role setup.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger("rbac")

GLOBAL_WILDCARDS = frozenset({"*", "*:*"})


class CatalogEntry(Protocol):
    """What the pattern resolver needs from a permission row."""

    id: Any
    code: str
    module: str
    is_active: bool


def module_of(code: str) -> str:
    return code.split(":", 1)[0]


def is_module_wildcard(code: str) -> bool:
    return code.endswith(":*") and code not in GLOBAL_WILDCARDS


def has_permission(effective: Iterable[str], required: str) -> bool:
    """True if `required` is covered by the effective permission set."""
    granted = effective if isinstance(effective, (set, frozenset)) else set(effective)
    if required in granted:
        return True
    if f"{module_of(required)}:*" in granted:
        return True
    return not GLOBAL_WILDCARDS.isdisjoint(granted)


def has_all_permissions(effective: Iterable[str], required: Iterable[str]) -> bool:
    granted = set(effective)
    return all(has_permission(granted, code) for code in required)


# ── Pattern resolution (bulk role setup) ────────────────────────────


@dataclass
class PatternResolution:
    permission_ids: list[Any] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched)


def resolve_permission_patterns(
    patterns: Sequence[str],
    catalog: Iterable[CatalogEntry],
) -> PatternResolution:
    """
    Expand patterns against the ACTIVE catalog.

    `*` / `*:*` → every active permission, `module:*` → every active
    permission of that module, anything else → exact code lookup.
    Unmatched patterns are reported back (and logged), not raised:
    seed data stays declarative, but typos are visible.
    """
    active = [p for p in catalog if p.is_active]
    by_code = {p.code: p for p in active}

    result = PatternResolution()
    seen: set[Any] = set()

    def _take(entries: Iterable[CatalogEntry]) -> None:
        for entry in entries:
            if entry.id not in seen:
                seen.add(entry.id)
                result.permission_ids.append(entry.id)

    for pattern in patterns:
        if pattern in GLOBAL_WILDCARDS:
            _take(active)
        elif is_module_wildcard(pattern):
            module = pattern[:-2]
            matches = [p for p in active if p.module == module]
            if not matches:
                result.unmatched.append(pattern)
            _take(matches)
        elif pattern in by_code:
            _take([by_code[pattern]])
        else:
            result.unmatched.append(pattern)

    if result.unmatched:
        logger.warning("Unmatched permission patterns: %s", result.unmatched)
    return result


# ── Denial vs wildcard ──────────────────────────────────────────────


def expand_denied_wildcards(
    codes: Iterable[str],
    denied: Iterable[str],
    catalog_codes: Iterable[str],
) -> set[str]:
    """
    Remove denied codes from `codes`, even when a wildcard covers them.

    A wildcard that covers a denied code is replaced by the concrete
    catalog codes it stands for, minus the denied ones, so the flat
    result stays correct under `has_permission`.
    """
    effective = set(codes)
    denied = set(denied)
    if not denied:
        return effective

    catalog = set(catalog_codes)
    effective -= denied

    if not GLOBAL_WILDCARDS.isdisjoint(effective):
        effective -= GLOBAL_WILDCARDS
        effective |= catalog - denied - GLOBAL_WILDCARDS

    for wildcard in [c for c in effective if is_module_wildcard(c)]:
        module = wildcard[:-2]
        if any(module_of(d) == module for d in denied):
            effective.discard(wildcard)
            effective |= {
                c for c in catalog
                if module_of(c) == module and c not in denied and not is_module_wildcard(c)
            }
    return effective
