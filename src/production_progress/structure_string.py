"""
Structure strings: a compact notation for a forest of work units.

    [1/2/3],[4/5]          two top-level units owning leaves directly (depth 2)
    [[1/2][3/4/5]],[[1]]   top-level units owning leaf groups (depth 3)

Each number is the 1-based stage a leaf has reached as typed by a user
(1 = not started); internally stages are 0-based. Commas separate top-level
units, brackets nest, slashes separate leaves.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from .hierarchy import actual_depth
from .unit_models import Branch, Leaf, WorkUnit, generate_id

logger = logging.getLogger(__name__)

_LEAF_LIST_RE = re.compile(r"^[0-9/\s]+$")
_TOKEN_RE = re.compile(r"^[0-9]{1,9}$")

# Nesting deeper than this is rejected before the recursive parser runs.
MAX_DEPTH = 64


@dataclass
class ParsedGroup:
    """
    One bracketed group of a structure string.

    A leaf group carries the stage numbers exactly as typed (1-based); any
    other group carries nested groups and no stages of its own.
    """

    stages: list[int] = field(default_factory=list)
    groups: list["ParsedGroup"] = field(default_factory=list)

    @property
    def is_leaf_group(self) -> bool:
        return not self.groups

    @property
    def depth(self) -> int:
        """Levels described by this group, counting the implicit leaf level."""
        if self.is_leaf_group:
            return 2
        return 1 + max(group.depth for group in self.groups)

    @property
    def all_stages(self) -> list[int]:
        """Every typed stage number below this group, left to right."""
        if self.is_leaf_group:
            return list(self.stages)
        result: list[int] = []
        for group in self.groups:
            result.extend(group.all_stages)
        return result

    @property
    def stage_indices(self) -> list[int]:
        """Every stage below this group converted to 0-based stage indices."""
        return [user_stage_to_index(stage) for stage in self.all_stages]

    @property
    def sub_units(self) -> list["ParsedGroup"]:
        """Leaf groups below this group (itself when it is one), left to right."""
        if self.is_leaf_group:
            return [self]
        result: list[ParsedGroup] = []
        for group in self.groups:
            result.extend(group.sub_units)
        return result

    @property
    def counts(self) -> list[int]:
        """Counts per level: [1, leaves] for a single leaf group, else [1, leaf groups]."""
        sub_units = self.sub_units
        if len(sub_units) == 1:
            return [1, len(self.all_stages)]
        return [1, len(sub_units)]


@dataclass
class ParsedStructure:
    top_level_units: list[ParsedGroup] = field(default_factory=list)


@dataclass
class WorkStructure:
    """Summary of a parsed structure used when creating or resizing a work."""

    top_level_units: int
    total_leaf_units: int
    leaf_units_per_group: list[int]
    stage_indices: list[int]


def user_stage_to_index(stage_number: int) -> int:
    """Convert a typed 1-based stage number into a 0-based stage index."""
    return max(0, stage_number - 1)


def index_to_user_stage(stage_index: int) -> int:
    """Convert a 0-based stage index into the 1-based number shown to users."""
    return max(1, stage_index + 1)


def _split_units(text: str) -> tuple[list[str], bool]:
    """Split on commas outside brackets; also report whether brackets balance."""

    units: list[str] = []
    depth = 0
    start = 0
    balanced = True
    for pos, char in enumerate(text):
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth < 0:
                balanced = False
        elif char == "," and depth == 0:
            unit = text[start:pos].strip()
            if unit:
                units.append(unit)
            start = pos + 1
    last = text[start:].strip()
    if last:
        units.append(last)
    return units, balanced and depth == 0


def split_top_level_units(text: str) -> list[str] | None:
    """Top-level units of a document, or None when its brackets do not balance."""
    units, balanced = _split_units(text)
    return units if balanced else None


def top_level_unit_depths(text: str) -> list[int]:
    """Depth of every top-level unit: its deepest bracket nesting plus the leaf level."""

    depths: list[int] = []
    for unit in _split_units(text)[0]:
        deepest = 0
        current = 0
        for char in unit:
            if char == "[":
                current += 1
                deepest = max(deepest, current)
            elif char == "]":
                current -= 1
        depths.append(deepest + 1)
    return depths


def _split_groups(body: str) -> list[str] | None:
    """Contents of consecutive balanced bracket groups; None on stray text or imbalance."""

    sections: list[str] = []
    depth = 0
    start = 0
    for pos, char in enumerate(body):
        if char == "[":
            if depth == 0:
                start = pos + 1
            depth += 1
        elif char == "]":
            depth -= 1
            if depth < 0:
                return None
            if depth == 0:
                sections.append(body[start:pos])
        elif depth == 0 and not char.isspace():
            return None
    if depth != 0 or not sections:
        return None
    return sections


def _parse_body(body: str) -> ParsedGroup | None:
    if _LEAF_LIST_RE.match(body):
        tokens = [token.strip() for token in body.split("/") if token.strip()]
        if not tokens:
            return None
        if not all(_TOKEN_RE.match(token) for token in tokens):
            return None
        return ParsedGroup(stages=[int(token) for token in tokens])

    sections = _split_groups(body)
    if sections is None:
        return None
    groups: list[ParsedGroup] = []
    for section in sections:
        parsed = _parse_body(section)
        if parsed is None:
            return None
        groups.append(parsed)
    return ParsedGroup(groups=groups)


def parse_structure_string(text: str, expected_depth: int | None = None) -> ParsedStructure | None:
    """
    Parse a structure string; return None for anything malformed.

    When expected_depth is given, every top-level unit must have exactly
    that depth.
    """

    if not text or not text.strip():
        return None

    depths = top_level_unit_depths(text)
    if any(depth > MAX_DEPTH for depth in depths):
        logger.warning("Structure string nests deeper than %s levels", MAX_DEPTH)
        return None

    if expected_depth is not None and any(depth != expected_depth for depth in depths):
        logger.warning("Structure depth mismatch: expected %s, found %s", expected_depth, depths)
        return None

    units = split_top_level_units(text)
    if units is None:
        logger.debug("Unbalanced brackets in structure string %r", text)
        return None

    parsed_units: list[ParsedGroup] = []
    for unit in units:
        if len(unit) < 2 or not (unit.startswith("[") and unit.endswith("]")):
            logger.debug("Top-level unit %r is not wrapped in brackets", unit)
            return None
        body = unit[1:-1]
        if not body.strip():
            return None
        parsed = _parse_body(body)
        if parsed is None:
            logger.debug("Could not parse top-level unit %r", unit)
            return None
        parsed_units.append(parsed)

    return ParsedStructure(top_level_units=parsed_units)


def validate_structure_string(text: str, expected_depth: int | None = None) -> str | None:
    """Return None when the string is valid, otherwise a message describing the problem."""

    if not text or not text.strip():
        return "Structure string is empty."

    depths = top_level_unit_depths(text)
    if any(depth > MAX_DEPTH for depth in depths):
        return f"Structure string is too deeply nested; at most {MAX_DEPTH} levels are supported."

    if expected_depth is not None:
        if any(depth != expected_depth for depth in depths):
            unique = sorted(set(depths))
            if len(unique) == 1:
                return (
                    "Structure depth does not match the granularity settings: "
                    f"expected {expected_depth} levels, found {unique[0]} levels {depths}."
                )
            return (
                "Structure depth does not match the granularity settings: "
                f"expected {expected_depth} levels, found inconsistent levels {depths}."
            )

    if parse_structure_string(text, expected_depth) is None:
        return "Structure string is malformed; expected units like [1/2/3] separated by commas."
    return None


def summarize_structure(parsed: ParsedStructure) -> WorkStructure:
    leaf_units_per_group: list[int] = []
    stage_indices: list[int] = []
    for unit in parsed.top_level_units:
        leaf_units_per_group.extend(len(group.stages) for group in unit.sub_units)
        stage_indices.extend(unit.stage_indices)
    return WorkStructure(
        top_level_units=len(parsed.top_level_units),
        total_leaf_units=len(stage_indices),
        leaf_units_per_group=leaf_units_per_group,
        stage_indices=stage_indices,
    )


def _build_branch(group: ParsedGroup, index: int) -> Branch:
    if group.is_leaf_group:
        children: list[WorkUnit] = [
            Leaf(id=generate_id(), index=pos + 1, stage_index=user_stage_to_index(stage))
            for pos, stage in enumerate(group.stages)
        ]
    else:
        children = [_build_branch(child, pos + 1) for pos, child in enumerate(group.groups)]
    return Branch(id=generate_id(), index=index, children=children)


def build_units(parsed: ParsedStructure) -> list[WorkUnit]:
    """Build a fresh work-unit forest that follows the parsed nesting."""
    return [_build_branch(unit, pos + 1) for pos, unit in enumerate(parsed.top_level_units)]


def _render(unit: WorkUnit) -> str | None:
    if isinstance(unit, Leaf) or not unit.children:
        return None
    if all(isinstance(child, Leaf) for child in unit.children):
        return "[" + "/".join(str(index_to_user_stage(child.stage_index)) for child in unit.children) + "]"
    if any(isinstance(child, Leaf) for child in unit.children):
        return None
    parts = [part for part in (_render(child) for child in unit.children) if part is not None]
    if not parts:
        return None
    return "[" + "".join(parts) + "]"


def structure_to_string(units: Iterable[WorkUnit], expected_depth: int | None = None) -> str:
    """
    Render a work-unit forest as a structure string.

    Top-level units that cannot be expressed in the notation (bare leaves,
    empty units, mixed leaf/branch children) are skipped, as are units whose
    depth differs from expected_depth when it is given.
    """

    parts: list[str] = []
    for unit in units:
        if expected_depth is not None and actual_depth([unit]) != expected_depth:
            logger.debug("Skipping unit %s: depth differs from %s", unit.id, expected_depth)
            continue
        rendered = _render(unit)
        if rendered is None:
            logger.debug("Skipping unit %s: shape has no structure string form", unit.id)
            continue
        parts.append(rendered)
    return ",".join(parts)
