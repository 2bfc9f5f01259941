import textwrap

import pytest
import yaml

from production_progress.hierarchy import actual_depth, collect_leaves
from production_progress.parse_work import (
    WorkValidationError,
    dump_work,
    load_work,
    parse_work,
    units_from_records,
    units_to_records,
)
from production_progress.structure_string import structure_to_string
from production_progress.unit_models import Branch, Leaf

WORK_YAML = textwrap.dedent(
    """
    work:
      title: Chapter 12
      primary_granularity: page
    granularities:
      - {id: page, label: Page, weight: 5, default_count: 2}
      - {id: panel, label: Panel, weight: 1, default_count: 3}
    stages:
      - {id: 1, label: Storyboard, color: "#d9534f", base_hours: 3}
      - {id: 2, label: Pencils, base_hours: 1}
      - {id: 3, label: Inks, base_hours: null}
      - {id: 4, label: Finish, base_hours: 0.5}
    structure: "[1/2/3],[4/1]"
    """
)


def _write(tmp_path, text):
    path = tmp_path / "work.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_work_from_structure_string(tmp_path):
    work = load_work(str(_write(tmp_path, WORK_YAML)))

    assert work.title == "Chapter 12"
    assert work.primary_granularity.label == "Page"
    assert [stage.base_hours for stage in work.stages] == [3.0, 1.0, None, 0.5]
    assert work.leaf_count == 5
    assert structure_to_string(work.units, work.depth) == "[1/2/3],[4/1]"


def test_defaults_build_tree_from_counts():
    work = parse_work({"work": {"title": "Oneshot"}})

    assert [g.id for g in work.granularities] == ["page", "panel"]
    assert work.default_counts == [16, 5]
    assert work.leaf_count == 80
    assert actual_depth(work.units) == 2
    assert work.stages[0].label == "Not started"


def test_explicit_default_counts():
    work = parse_work({"work": {"title": "Short", "default_counts": [2, 4]}})

    assert len(work.units) == 2
    assert work.leaf_count == 8


def test_structure_depth_must_match_granularities():
    data = yaml.safe_load(WORK_YAML)
    data["structure"] = "[[1][2]]"

    with pytest.raises(WorkValidationError, match="expected 2 levels"):
        parse_work(data)


@pytest.mark.parametrize(
    "patch, message",
    [
        ({"extra": 1}, "unexpected fields"),
        ({"work": {"name": "x"}}, "unexpected fields"),
        ({"work": {"title": " "}}, "expected non-empty string"),
        ({"stages": [{"id": 1, "label": "A", "base_hours": "3"}]}, r"stages\[0\].base_hours: expected number or null"),
        ({"stages": [{"id": 1, "label": "A"}, {"id": 1, "label": "B"}]}, "duplicate stage id"),
        ({"granularities": [{"id": "p", "weight": 0}]}, "expected positive integer"),
        ({"granularities": [{"id": "p", "weight": 1}, {"id": "p", "weight": 2}]}, "duplicate granularity"),
        ({"granularities": []}, "expected non-empty list"),
        ({"structure": None, "units": {}}, "expected list"),
        ({"units": []}, "either structure or units"),
        ({"structure": 12}, "expected structure string"),
    ],
)
def test_invalid_work_files_raise(patch, message):
    data = yaml.safe_load(WORK_YAML)
    for key, value in patch.items():
        if value is None:
            data.pop(key)
        else:
            data[key] = value

    with pytest.raises(WorkValidationError, match=message):
        parse_work(data)


def test_top_level_must_be_a_mapping():
    with pytest.raises(WorkValidationError, match="expected mapping at top level"):
        parse_work(["not", "a", "mapping"])


def test_unknown_primary_granularity():
    data = yaml.safe_load(WORK_YAML)
    data["work"]["primary_granularity"] = "volume"

    with pytest.raises(WorkValidationError, match="unknown granularity"):
        parse_work(data)


def test_units_from_records_normalizes_input():
    records = [
        {"id": "p1", "index": 9, "children": [{"id": "a", "stageIndex": 2}, {"stage_index": -3}, "junk"]},
        {"index": "x", "children": [{"id": "b", "index": 1, "stage_index": 1.8}]},
        None,
    ]

    units = units_from_records(records)

    assert [unit.index for unit in units] == [1, 2]
    assert units[0].id == "p1"
    assert units[1].id
    first_page = units[0]
    assert isinstance(first_page, Branch)
    assert [(leaf.id, leaf.index, leaf.stage_index) for leaf in first_page.children][0] == ("a", 1, 2)
    assert first_page.children[1].stage_index == 0
    assert len(first_page.children) == 2
    assert collect_leaves(units)[-1].stage_index == 1


def test_records_round_trip():
    units = [Branch(id="p", index=1, children=[Leaf(id="a", index=1, stage_index=3), Branch(id="q", index=2)])]

    assert units_from_records(units_to_records(units)) == units


def test_dump_work_round_trips(tmp_path):
    work = load_work(str(_write(tmp_path, WORK_YAML)))
    out = tmp_path / "saved.yaml"

    dump_work(work, str(out))
    reloaded = load_work(str(out))

    assert reloaded.title == work.title
    assert reloaded.units == work.units
    assert reloaded.stages == work.stages
    assert reloaded.granularities == work.granularities
