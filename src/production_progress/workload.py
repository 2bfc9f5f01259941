from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .hierarchy import collect_leaves
from .unit_models import Granularity, Stage, StageCount, WorkUnit


@dataclass
class WorkloadSummary:
    """Every workload metric of one work, in hours at the finest granularity."""

    leaf_count: int
    cumulative_hours: list[float]
    total_hours_per_leaf: float
    total_estimated_hours: float
    completed_hours: float
    remaining_hours: float
    progress_percent: int
    stage_counts: list[StageCount] = field(default_factory=list)
    hours_per_unit: dict[str, float] = field(default_factory=dict)


def finest_granularity(granularities: Iterable[Granularity]) -> Granularity | None:
    """Granularity with the smallest positive weight; ties keep the first one."""

    finest: Granularity | None = None
    for granularity in granularities:
        if granularity.weight <= 0:
            continue
        if finest is None or granularity.weight < finest.weight:
            finest = granularity
    return finest


def weight_ratio(target: Granularity, granularities: Sequence[Granularity]) -> float:
    """target.weight / finest.weight, or 0 when either weight is unusable."""

    finest = finest_granularity(granularities)
    if finest is None or target.weight <= 0:
        return 0.0
    return target.weight / finest.weight


def hours_at(granularity: Granularity, base_hours: float | None, granularities: Sequence[Granularity]) -> float:
    """Convert hours at the finest granularity into hours per unit of `granularity`."""
    return _hours(base_hours) * weight_ratio(granularity, granularities)


def base_hours_from_entry(
    entered_hours: float | None,
    granularity: Granularity,
    granularities: Sequence[Granularity],
) -> float:
    """Derive finest-granularity hours from a value entered at any granularity."""

    ratio = weight_ratio(granularity, granularities)
    if ratio <= 0:
        return 0.0
    return _hours(entered_hours) / ratio


def granularity_hours(base_hours: float | None, granularities: Sequence[Granularity]) -> dict[str, float]:
    """Hours per unit at every granularity, all derived from the same base hours."""
    return {granularity.id: hours_at(granularity, base_hours, granularities) for granularity in granularities}


def set_stage_hours(
    stage: Stage,
    entered_hours: float | None,
    granularity: Granularity,
    granularities: Sequence[Granularity],
) -> Stage:
    """Return a copy of the stage whose base hours come from an entry at `granularity`."""

    if entered_hours is None:
        return dataclasses.replace(stage, base_hours=None)
    return dataclasses.replace(stage, base_hours=base_hours_from_entry(entered_hours, granularity, granularities))


def cumulative_stage_hours(stages: Sequence[Stage]) -> list[float]:
    """Running sum of stage costs; unset costs count as 0."""

    running = 0.0
    cumulative: list[float] = []
    for stage in stages:
        running += _hours(stage.base_hours)
        cumulative.append(running)
    return cumulative


def total_hours_per_leaf(stages: Sequence[Stage]) -> float:
    cumulative = cumulative_stage_hours(stages)
    return cumulative[-1] if cumulative else 0.0


def completed_hours_for_stage(stage_index: int, cumulative: Sequence[float]) -> float:
    """Hours a single leaf has completed once it reached `stage_index`."""

    if stage_index <= 0 or not cumulative:
        return 0.0
    if stage_index >= len(cumulative):
        return cumulative[-1]
    return cumulative[stage_index]


def total_estimated_hours(units: Sequence[WorkUnit], stages: Sequence[Stage]) -> float:
    return total_hours_per_leaf(stages) * len(collect_leaves(units))


def completed_hours(units: Sequence[WorkUnit], stages: Sequence[Stage]) -> float:
    cumulative = cumulative_stage_hours(stages)
    return sum(completed_hours_for_stage(leaf.stage_index, cumulative) for leaf in collect_leaves(units))


def remaining_hours(units: Sequence[WorkUnit], stages: Sequence[Stage]) -> float:
    return max(0.0, total_estimated_hours(units, stages) - completed_hours(units, stages))


def percent(part: float, whole: float) -> int:
    """Rounded percentage (half up) clamped to 0..100; 0 when whole is not positive."""

    if whole <= 0:
        return 0
    value = math.floor(100 * part / whole + 0.5)
    return max(0, min(100, value))


def progress_percent(units: Sequence[WorkUnit], stages: Sequence[Stage]) -> int:
    return percent(completed_hours(units, stages), total_estimated_hours(units, stages))


def stage_progress_percent(units: Sequence[WorkUnit], stage_index: int) -> int:
    """Share of leaves that have reached at least `stage_index`."""

    leaves = collect_leaves(units)
    reached = sum(1 for leaf in leaves if leaf.stage_index >= stage_index)
    return percent(reached, len(leaves))


def stage_slots(stages: Sequence[Stage]) -> dict[int, int]:
    """Map each stage id to its position in the stage table (first occurrence wins)."""

    slots: dict[int, int] = {}
    for position, stage in enumerate(stages):
        slots.setdefault(stage.id, position)
    return slots


def count_leaves_by_stage(units: Sequence[WorkUnit], stages: Sequence[Stage]) -> list[StageCount]:
    """
    Snapshot of how many leaves sit at each stage, in stage-table order.

    Leaves whose stage index is past the table are counted under
    stage_id=None, which is appended only when non-empty.
    """

    counts = [0] * len(stages)
    overflow = 0
    for leaf in collect_leaves(units):
        if 0 <= leaf.stage_index < len(stages):
            counts[leaf.stage_index] += 1
        else:
            overflow += 1
    result = [StageCount(stage_id=stage.id, count=count) for stage, count in zip(stages, counts)]
    if overflow:
        result.append(StageCount(stage_id=None, count=overflow))
    return result


def normalize_stage_counts(raw: Iterable[Any], stages: Sequence[Stage]) -> list[StageCount]:
    """
    Merge raw snapshot entries into one entry per stage, in stage-table order.

    Entries may be StageCount objects or mappings with stage_id/stageId and
    count keys. Non-positive or non-numeric counts are dropped; entries with
    no stage id are kept in a trailing stage_id=None bucket.
    """

    totals: dict[int | None, int] = {}
    for entry in raw or ():
        if isinstance(entry, StageCount):
            stage_id, count = entry.stage_id, entry.count
        elif isinstance(entry, dict):
            stage_id = entry.get("stage_id", entry.get("stageId"))
            count = entry.get("count")
        else:
            continue
        parsed_count = _positive_floor(count)
        if parsed_count <= 0:
            continue
        key = _stage_id(stage_id)
        totals[key] = totals.get(key, 0) + parsed_count

    result = [StageCount(stage_id=stage.id, count=totals.get(stage.id, 0)) for stage in stages]
    if totals.get(None, 0) > 0:
        result.append(StageCount(stage_id=None, count=totals[None]))
    return result


def completed_hours_from_stage_counts(counts: Iterable[StageCount], stages: Sequence[Stage]) -> float:
    """
    Completed hours recorded by a snapshot of per-stage leaf counts.

    A stage id that is not in the stage table counts as fully complete.
    """

    cumulative = cumulative_stage_hours(stages)
    slots = stage_slots(stages)
    per_leaf_total = cumulative[-1] if cumulative else 0.0
    total = 0.0
    for entry in counts:
        if entry.count <= 0:
            continue
        slot = slots.get(entry.stage_id) if entry.stage_id is not None else None
        if slot is None:
            total += per_leaf_total * entry.count
        else:
            total += completed_hours_for_stage(slot, cumulative) * entry.count
    return total


def required_daily_hours(remaining: float, available: float) -> float:
    """Hours per available hour still needed; math.inf means the deadline cannot be met."""

    if available <= 0:
        return math.inf if remaining > 0 else 0.0
    return round(remaining / available, 2)


def summarize_workload(
    units: Sequence[WorkUnit],
    stages: Sequence[Stage],
    granularities: Sequence[Granularity] = (),
) -> WorkloadSummary:
    cumulative = cumulative_stage_hours(stages)
    per_leaf = cumulative[-1] if cumulative else 0.0
    leaves = collect_leaves(units)
    total = per_leaf * len(leaves)
    done = sum(completed_hours_for_stage(leaf.stage_index, cumulative) for leaf in leaves)
    return WorkloadSummary(
        leaf_count=len(leaves),
        cumulative_hours=cumulative,
        total_hours_per_leaf=per_leaf,
        total_estimated_hours=total,
        completed_hours=done,
        remaining_hours=max(0.0, total - done),
        progress_percent=percent(done, total),
        stage_counts=count_leaves_by_stage(units, stages),
        hours_per_unit=granularity_hours(per_leaf, granularities),
    )


def _hours(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(numeric):
        return 0.0
    return numeric


def _positive_floor(value: Any) -> int:
    numeric = _hours(value)
    return math.floor(numeric) if numeric > 0 else 0


def _stage_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return math.floor(numeric)
