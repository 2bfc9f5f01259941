from __future__ import annotations

from typing import List, Sequence

from .hierarchy import collect_leaves
from .structure_string import index_to_user_stage
from .unit_models import Branch, FlatRenderRow, Granularity, Leaf, Stage, WorkUnit


def to_render_rows(
    units: Sequence[WorkUnit],
    granularities: Sequence[Granularity] = (),
    stages: Sequence[Stage] = (),
) -> list[FlatRenderRow]:
    """
    Convert a work-unit tree into a flat list of render rows with indentation.

    Branch rows precede their children; nested units increase indent by 1.
    Levels are labelled with the granularities from coarsest (largest
    weight) down to finest.
    """

    levels = sorted(granularities, key=lambda g: -g.weight)
    rows: List[FlatRenderRow] = []
    order = 0
    for unit in units:
        order = _append_unit(unit, rows, order, indent=0, parent_path="", granularities=levels, stages=stages)
    return rows


def _append_unit(
    unit: WorkUnit,
    rows: List[FlatRenderRow],
    order: int,
    indent: int,
    parent_path: str,
    granularities: Sequence[Granularity],
    stages: Sequence[Stage],
) -> int:
    """Append the given unit and its children (if any); return updated order counter."""

    path = f"{parent_path}.{unit.index}" if parent_path else str(unit.index)
    granularity = granularities[indent].label if indent < len(granularities) else None

    if isinstance(unit, Leaf):
        stage_label = stages[unit.stage_index].label if unit.stage_index < len(stages) else None
        rows.append(
            FlatRenderRow(
                order=order,
                indent=indent,
                unit_id=unit.id,
                path=path,
                granularity=granularity,
                is_leaf=True,
                stage_number=index_to_user_stage(unit.stage_index),
                stage_label=stage_label,
                leaf_count=1,
            )
        )
        return order + 1

    if isinstance(unit, Branch):
        rows.append(
            FlatRenderRow(
                order=order,
                indent=indent,
                unit_id=unit.id,
                path=path,
                granularity=granularity,
                is_leaf=False,
                leaf_count=len(collect_leaves(unit.children)),
            )
        )
        order += 1
        for child in unit.children:
            order = _append_unit(child, rows, order, indent + 1, path, granularities, stages)
        return order

    # Defensive: unreachable with current WorkUnit variants.
    raise TypeError(f"Unsupported work unit type: {type(unit)}")


def format_rows(rows: Sequence[FlatRenderRow]) -> str:
    """Plain-text rendering of rows, two spaces per indent level."""

    lines: list[str] = []
    for row in rows:
        name = f"{row.granularity or 'Unit'} {row.path}"
        if row.is_leaf:
            detail = f"stage {row.stage_number}"
            if row.stage_label:
                detail += f" ({row.stage_label})"
        else:
            detail = f"{row.leaf_count} leaves"
        lines.append(f"{'  ' * row.indent}{name}: {detail}  [{row.unit_id}]")
    return "\n".join(lines)
