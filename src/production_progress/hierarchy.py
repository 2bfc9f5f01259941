from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .unit_models import Branch, Leaf, WorkUnit, generate_id


@dataclass(frozen=True)
class UnitLocation:
    """Where a unit sits in a tree: its sibling list, position and number of Branch ancestors."""

    unit: WorkUnit
    siblings: list[WorkUnit]
    position: int
    depth: int


def normalize_count(value: Any, fallback: int = 1) -> int:
    """Coerce to a positive integer, falling back for non-positive or non-numeric values."""

    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(numeric) or numeric <= 0:
        return fallback
    floored = math.floor(numeric)
    return floored if floored > 0 else fallback


def create_hierarchy(counts: Sequence[Any]) -> list[WorkUnit]:
    """
    Build a uniform tree where level i has counts[i] children per parent.

    The last level is made of Leaves at stage 0. An empty count list yields
    an empty forest.
    """

    normalized = [normalize_count(count) for count in counts]
    if not normalized:
        return []
    return [_build_unit(index + 1, normalized[1:]) for index in range(normalized[0])]


def _build_unit(index: int, child_counts: Sequence[int]) -> WorkUnit:
    if not child_counts:
        return Leaf(id=generate_id(), index=index, stage_index=0)
    children = [_build_unit(pos + 1, child_counts[1:]) for pos in range(child_counts[0])]
    return Branch(id=generate_id(), index=index, children=children)


def iter_units(units: Iterable[WorkUnit]) -> Iterable[WorkUnit]:
    """Yield every unit in pre-order, left to right."""
    for unit in units:
        yield unit
        if isinstance(unit, Branch):
            yield from iter_units(unit.children)


def collect_leaves(units: Iterable[WorkUnit]) -> list[Leaf]:
    """Return every Leaf in depth-first, left-to-right order."""
    return [unit for unit in iter_units(units) if isinstance(unit, Leaf)]


def locate_unit(units: list[WorkUnit], unit_id: str) -> UnitLocation | None:
    """Depth-first search by id; returns None when the id is unknown."""

    def visit(siblings: list[WorkUnit], depth: int) -> UnitLocation | None:
        for position, unit in enumerate(siblings):
            if unit.id == unit_id:
                return UnitLocation(unit=unit, siblings=siblings, position=position, depth=depth)
            if isinstance(unit, Branch):
                found = visit(unit.children, depth + 1)
                if found:
                    return found
        return None

    return visit(units, 0)


def find_unit(units: list[WorkUnit], unit_id: str) -> WorkUnit | None:
    location = locate_unit(units, unit_id)
    return location.unit if location else None


def find_unit_by_path(units: list[WorkUnit], path: str) -> WorkUnit | None:
    """Resolve a dotted 1-based index path such as "2.3" to a unit."""

    siblings: list[WorkUnit] = units
    unit: WorkUnit | None = None
    for part in path.split("."):
        if not (part.isascii() and part.isdigit()) or len(part) > 9:
            return None
        position = int(part)
        if unit is not None:
            if not isinstance(unit, Branch):
                return None
            siblings = unit.children
        unit = next((candidate for candidate in siblings if candidate.index == position), None)
        if unit is None:
            return None
    return unit


def depth_of(units: list[WorkUnit], unit_id: str) -> int | None:
    """Number of Branch ancestors of the unit (0 = top level), or None if not found."""
    location = locate_unit(units, unit_id)
    return location.depth if location else None


def actual_depth(units: Iterable[WorkUnit]) -> int:
    """Deepest Leaf level counted from 1; 0 for a forest without leaves."""

    deepest = 0

    def visit(siblings: Iterable[WorkUnit], level: int) -> None:
        nonlocal deepest
        for unit in siblings:
            if isinstance(unit, Leaf):
                deepest = max(deepest, level)
            else:
                visit(unit.children, level + 1)

    visit(units, 1)
    return deepest


def recalculate_indices(units: list[WorkUnit]) -> None:
    """Renumber every unit's index to its 1-based position among its siblings."""
    for position, unit in enumerate(units):
        unit.index = position + 1
        if isinstance(unit, Branch):
            recalculate_indices(unit.children)


def add_root_unit(units: list[WorkUnit], child_counts: Sequence[Any]) -> WorkUnit:
    """
    Append a new top-level unit whose subtree is shaped by child_counts.

    Pass work.default_counts[1:] for a unit shaped like the rest of the work;
    an empty child_counts gives a bare Leaf, which has no structure-string form.
    """

    counts = [normalize_count(count) for count in child_counts]
    unit = _build_unit(len(units) + 1, counts)
    units.append(unit)
    recalculate_indices(units)
    return unit


def add_child(units: list[WorkUnit], parent_id: str, child_counts: Sequence[Any] = ()) -> WorkUnit | None:
    """Append a new child subtree to a Branch; no-op for Leaves and unknown ids."""

    parent = find_unit(units, parent_id)
    if not isinstance(parent, Branch):
        return None
    counts = [normalize_count(count) for count in child_counts]
    child = _build_unit(len(parent.children) + 1, counts)
    parent.children.append(child)
    recalculate_indices(parent.children)
    return child


def remove_unit(units: list[WorkUnit], unit_id: str) -> WorkUnit | None:
    """Detach a unit from wherever it sits and renumber its former siblings."""

    location = locate_unit(units, unit_id)
    if location is None:
        return None
    del location.siblings[location.position]
    recalculate_indices(location.siblings)
    return location.unit


def move_unit(units: list[WorkUnit], unit_id: str, after_id: str | None) -> bool:
    """
    Reorder a unit within its own sibling list.

    after_id=None moves the unit to the front; an after_id that is not one of
    its siblings moves it to the end.
    """

    location = locate_unit(units, unit_id)
    if location is None:
        return False

    siblings = location.siblings
    unit = siblings.pop(location.position)
    if after_id is None:
        siblings.insert(0, unit)
    else:
        after_position = next((pos for pos, entry in enumerate(siblings) if entry.id == after_id), None)
        if after_position is None:
            siblings.append(unit)
        else:
            siblings.insert(after_position + 1, unit)
    recalculate_indices(siblings)
    return True


def set_child_count(
    units: list[WorkUnit],
    unit_id: str,
    count: Any,
    child_counts: Sequence[Any] = (),
) -> bool:
    """
    Grow or truncate a Branch's children to exactly `count` entries.

    New children are Leaves at stage 0 unless child_counts describes the
    subtree each new child should carry. No-op for Leaves and unknown ids.
    """

    target = find_unit(units, unit_id)
    if not isinstance(target, Branch):
        return False

    current = len(target.children)
    wanted = normalize_count(count, fallback=current)
    if wanted > current:
        shape = [normalize_count(value) for value in child_counts]
        for position in range(current, wanted):
            target.children.append(_build_unit(position + 1, shape))
    elif wanted < current:
        del target.children[wanted:]

    recalculate_indices(target.children)
    return True


def advance_leaf_stage(units: list[WorkUnit], unit_id: str, stage_count: int) -> bool:
    """Move a Leaf to the next stage, wrapping back to 0 after the last one."""

    if stage_count <= 0:
        return False
    target = find_unit(units, unit_id)
    if not isinstance(target, Leaf):
        return False
    target.stage_index = (target.stage_index + 1) % stage_count
    return True
