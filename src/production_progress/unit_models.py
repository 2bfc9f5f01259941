from __future__ import annotations

import uuid
from dataclasses import dataclass, field


def generate_id() -> str:
    """Return a fresh opaque unit id."""
    return str(uuid.uuid4())


@dataclass
class Granularity:
    """Named unit of measure; a larger weight means a coarser unit."""

    id: str
    label: str
    weight: int
    default_count: int = 1


@dataclass
class Stage:
    """One production step; base_hours is the cost at the finest granularity (None = unset)."""

    id: int
    label: str
    color: str | None = None
    base_hours: float | None = None


@dataclass
class Leaf:
    """Finest work unit; carries the index of the stage it has reached."""

    id: str
    index: int
    stage_index: int = 0


@dataclass
class Branch:
    """Work unit that owns an ordered list of child units."""

    id: str
    index: int
    children: list["WorkUnit"] = field(default_factory=list)


WorkUnit = Leaf | Branch
"""Convenience alias for nodes that can appear in a work-unit tree."""


@dataclass
class StageCount:
    """Number of leaves that had reached a stage when a snapshot was taken."""

    stage_id: int | None
    count: int


@dataclass
class Work:
    """A single work with its unit tree and the configuration it was created with."""

    title: str
    units: list[WorkUnit] = field(default_factory=list)
    granularities: list[Granularity] = field(default_factory=list)
    stages: list[Stage] = field(default_factory=list)
    default_counts: list[int] = field(default_factory=list)
    primary_granularity_id: str | None = None

    @property
    def leaf_count(self) -> int:
        """Number of leaves, recomputed from the tree on every access."""
        count = 0
        stack: list[WorkUnit] = list(self.units)
        while stack:
            unit = stack.pop()
            if isinstance(unit, Leaf):
                count += 1
            else:
                stack.extend(unit.children)
        return count

    @property
    def depth(self) -> int:
        """Number of granularity levels a structure string for this work must have."""
        return len(self.granularities)

    @property
    def primary_granularity(self) -> Granularity | None:
        for granularity in self.granularities:
            if granularity.id == self.primary_granularity_id:
                return granularity
        return None


@dataclass
class FlatRenderRow:
    """
    Flattened view of a work-unit tree used by text renderers.

    Only the fields relevant to display are kept: positional order,
    indentation level, the 1-based index path and the stage reached by leaves.
    """

    order: int
    indent: int
    unit_id: str
    path: str
    granularity: str | None
    is_leaf: bool
    stage_number: int | None = None
    stage_label: str | None = None
    leaf_count: int = 0


DEFAULT_GRANULARITIES: tuple[Granularity, ...] = (
    Granularity(id="page", label="Page", weight=5, default_count=16),
    Granularity(id="panel", label="Panel", weight=1, default_count=5),
)

DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(id=1, label="Not started", color="#adb5bd", base_hours=0.0),
    Stage(id=2, label="Storyboard", color="#d9534f", base_hours=0.6),
    Stage(id=3, label="Pencils", color="#f0ad4e", base_hours=0.5),
    Stage(id=4, label="Inks", color="#5bc0de", base_hours=1.0),
    Stage(id=5, label="Finish", color="#5cb85c", base_hours=0.5),
)
