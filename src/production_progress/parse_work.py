from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Any

import yaml

from .hierarchy import create_hierarchy, recalculate_indices
from .structure_string import build_units, parse_structure_string, validate_structure_string
from .unit_models import (
    DEFAULT_GRANULARITIES,
    DEFAULT_STAGES,
    Branch,
    Granularity,
    Leaf,
    Stage,
    Work,
    WorkUnit,
    generate_id,
)

logger = logging.getLogger(__name__)


class WorkValidationError(Exception):
    """Raised when a work file is invalid (bad types, duplicate ids, bad structure)."""


@dataclass(frozen=True)
class _Path:
    """Helper to produce readable YAML path strings like stages[0].base_hours."""

    parts: tuple[str, ...] = ()

    def child(self, segment: str) -> "_Path":
        return _Path(self.parts + (segment,))

    def __str__(self) -> str:
        return ".".join(self.parts) if self.parts else "root"


def load_work(path: str) -> Work:
    """Load a Work from a YAML file at the given path."""

    with open(path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    return parse_work(raw)


def parse_work(data: Any) -> Work:
    """Build a Work from already-loaded YAML data."""
    return _parse_work(data, _Path())


def dump_work(work: Work, path: str) -> None:
    """Write a Work back to a YAML file that load_work accepts."""

    with open(path, "w", encoding="utf-8") as fh:
        yaml.safe_dump(work_to_data(work), fh, sort_keys=False, allow_unicode=True)


def work_to_data(work: Work) -> dict[str, Any]:
    header: dict[str, Any] = {"title": work.title}
    if work.primary_granularity_id is not None:
        header["primary_granularity"] = work.primary_granularity_id
    if work.default_counts:
        header["default_counts"] = list(work.default_counts)
    return {
        "work": header,
        "granularities": [
            {"id": g.id, "label": g.label, "weight": g.weight, "default_count": g.default_count}
            for g in work.granularities
        ],
        "stages": [
            {"id": s.id, "label": s.label, "color": s.color, "base_hours": s.base_hours} for s in work.stages
        ],
        "units": units_to_records(work.units),
    }


def _parse_work(data: Any, path: _Path) -> Work:
    if not isinstance(data, dict):
        raise WorkValidationError(f"{path}: expected mapping at top level")
    _assert_allowed_keys(data, {"work", "granularities", "stages", "structure", "units"}, path)

    header = data.get("work")
    if not isinstance(header, dict):
        raise WorkValidationError(f"{path}: missing required mapping 'work'")
    header_path = path.child("work")
    _assert_allowed_keys(header, {"title", "primary_granularity", "default_counts"}, header_path)
    title = _require_str(header, "title", header_path)

    if "granularities" in data:
        granularities = _parse_granularities(data["granularities"], path, "granularities")
    else:
        logger.debug("No granularities given, using defaults")
        granularities = [dataclasses.replace(g) for g in DEFAULT_GRANULARITIES]

    if "stages" in data:
        stages = _parse_stages(data["stages"], path, "stages")
    else:
        logger.debug("No stages given, using defaults")
        stages = [dataclasses.replace(s) for s in DEFAULT_STAGES]

    primary = header.get("primary_granularity")
    if primary is not None:
        if not isinstance(primary, str) or primary not in {g.id for g in granularities}:
            raise WorkValidationError(f"{header_path.child('primary_granularity')}: unknown granularity {primary!r}")

    default_counts = _parse_default_counts(header.get("default_counts"), granularities, header_path)

    if "structure" in data and "units" in data:
        raise WorkValidationError(f"{path}: choose either structure or units, not both")

    if "structure" in data:
        units = _parse_structure(data["structure"], len(granularities), path.child("structure"))
    elif "units" in data:
        records = data["units"]
        if not isinstance(records, list):
            raise WorkValidationError(f"{path.child('units')}: expected list")
        units = units_from_records(records)
    else:
        logger.debug("No structure or units given, building tree from counts %s", default_counts)
        units = create_hierarchy(default_counts)

    return Work(
        title=title,
        units=units,
        granularities=granularities,
        stages=stages,
        default_counts=default_counts,
        primary_granularity_id=primary,
    )


def _parse_granularities(value: Any, path: _Path, key: str) -> list[Granularity]:
    if not isinstance(value, list) or not value:
        raise WorkValidationError(f"{path.child(key)}: expected non-empty list")

    ids: set[str] = set()
    result: list[Granularity] = []
    for idx, raw in enumerate(value):
        item_path = path.child(f"{key}[{idx}]")
        if not isinstance(raw, dict):
            raise WorkValidationError(f"{item_path}: expected mapping for granularity")
        _assert_allowed_keys(raw, {"id", "label", "weight", "default_count"}, item_path)
        granularity_id = _require_str(raw, "id", item_path)
        if granularity_id in ids:
            raise WorkValidationError(f"{item_path.child('id')}: duplicate granularity '{granularity_id}'")
        ids.add(granularity_id)
        label = raw.get("label", granularity_id)
        if not isinstance(label, str):
            raise WorkValidationError(f"{item_path.child('label')}: expected string")
        weight = _require_value(raw, "weight", item_path)
        if not isinstance(weight, int) or isinstance(weight, bool) or weight <= 0:
            raise WorkValidationError(f"{item_path.child('weight')}: expected positive integer")
        default_count = raw.get("default_count", 1)
        if not isinstance(default_count, int) or isinstance(default_count, bool) or default_count <= 0:
            raise WorkValidationError(f"{item_path.child('default_count')}: expected positive integer")
        result.append(Granularity(id=granularity_id, label=label, weight=weight, default_count=default_count))
    return result


def _parse_stages(value: Any, path: _Path, key: str) -> list[Stage]:
    if not isinstance(value, list) or not value:
        raise WorkValidationError(f"{path.child(key)}: expected non-empty list")

    ids: set[int] = set()
    result: list[Stage] = []
    for idx, raw in enumerate(value):
        item_path = path.child(f"{key}[{idx}]")
        if not isinstance(raw, dict):
            raise WorkValidationError(f"{item_path}: expected mapping for stage")
        _assert_allowed_keys(raw, {"id", "label", "color", "base_hours"}, item_path)
        stage_id = _require_value(raw, "id", item_path)
        if not isinstance(stage_id, int) or isinstance(stage_id, bool) or stage_id <= 0:
            raise WorkValidationError(f"{item_path.child('id')}: expected positive integer")
        if stage_id in ids:
            raise WorkValidationError(f"{item_path.child('id')}: duplicate stage id {stage_id}")
        ids.add(stage_id)
        label = _require_str(raw, "label", item_path)
        color = raw.get("color")
        if color is not None and not isinstance(color, str):
            raise WorkValidationError(f"{item_path.child('color')}: expected string")
        base_hours = raw.get("base_hours")
        if base_hours is not None:
            if isinstance(base_hours, bool) or not isinstance(base_hours, (int, float)):
                raise WorkValidationError(f"{item_path.child('base_hours')}: expected number or null")
            if not math.isfinite(base_hours) or base_hours < 0:
                raise WorkValidationError(f"{item_path.child('base_hours')}: expected non-negative number")
            base_hours = float(base_hours)
        result.append(Stage(id=stage_id, label=label, color=color, base_hours=base_hours))
    return result


def _parse_default_counts(value: Any, granularities: list[Granularity], path: _Path) -> list[int]:
    if value is None:
        return [g.default_count for g in sorted(granularities, key=lambda g: -g.weight)]
    if not isinstance(value, list):
        raise WorkValidationError(f"{path.child('default_counts')}: expected list of integers")
    if len(value) != len(granularities):
        raise WorkValidationError(
            f"{path.child('default_counts')}: expected {len(granularities)} counts, one per granularity"
        )
    counts: list[int] = []
    for idx, count in enumerate(value):
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            raise WorkValidationError(f"{path.child(f'default_counts[{idx}]')}: expected positive integer")
        counts.append(count)
    return counts


def _parse_structure(value: Any, expected_depth: int, path: _Path) -> list[WorkUnit]:
    if not isinstance(value, str):
        raise WorkValidationError(f"{path}: expected structure string")
    message = validate_structure_string(value, expected_depth)
    if message is not None:
        raise WorkValidationError(f"{path}: {message}")
    parsed = parse_structure_string(value, expected_depth)
    if parsed is None:  # pragma: no cover - validation already rejected it
        raise WorkValidationError(f"{path}: malformed structure string")
    return build_units(parsed)


def units_from_records(records: list[Any]) -> list[WorkUnit]:
    """
    Normalize persisted unit records into a work-unit forest.

    A record with a stage index (stage_index or stageIndex) is a Leaf, any
    other mapping is a Branch. Records that are not mappings are dropped,
    missing ids are generated and every index is renumbered by position.
    """

    units = [unit for unit in (_unit_from_record(raw, pos + 1) for pos, raw in enumerate(records)) if unit]
    recalculate_indices(units)
    return units


def _unit_from_record(raw: Any, fallback_index: int) -> WorkUnit | None:
    if not isinstance(raw, dict):
        return None

    unit_id = raw.get("id")
    if not isinstance(unit_id, str) or not unit_id.strip():
        unit_id = generate_id()
    index = _record_int(raw.get("index"), minimum=1, fallback=fallback_index)

    stage_raw = raw.get("stage_index", raw.get("stageIndex"))
    if stage_raw is not None:
        return Leaf(id=unit_id, index=index, stage_index=_record_int(stage_raw, minimum=0, fallback=0))

    children_raw = raw.get("children")
    children: list[WorkUnit] = []
    if isinstance(children_raw, list):
        children = [
            child
            for child in (_unit_from_record(item, pos + 1) for pos, item in enumerate(children_raw))
            if child
        ]
    return Branch(id=unit_id, index=index, children=children)


def _record_int(value: Any, minimum: int, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(numeric) or numeric < minimum:
        return fallback
    return math.floor(numeric)


def units_to_records(units: list[WorkUnit]) -> list[dict[str, Any]]:
    """Inverse of units_from_records: nested mappings ready for YAML or JSON."""

    records: list[dict[str, Any]] = []
    for unit in units:
        if isinstance(unit, Leaf):
            records.append({"id": unit.id, "index": unit.index, "stage_index": unit.stage_index})
        else:
            records.append({"id": unit.id, "index": unit.index, "children": units_to_records(unit.children)})
    return records


def _assert_allowed_keys(data: dict[str, Any], allowed: set[str], path: _Path) -> None:
    extras = sorted(set(data.keys()) - allowed)
    if extras:
        raise WorkValidationError(f"{path}: unexpected fields {extras}")


def _require_str(data: dict[str, Any], key: str, path: _Path) -> str:
    value = _require_value(data, key, path)
    if not isinstance(value, str) or not value.strip():
        raise WorkValidationError(f"{path.child(key)}: expected non-empty string")
    return value


def _require_value(data: dict[str, Any], key: str, path: _Path) -> Any:
    if key not in data:
        raise WorkValidationError(f"{path}: missing required field '{key}'")
    return data[key]
