import textwrap

from production_progress.__main__ import main
from production_progress.parse_work import dump_work, load_work
from production_progress.render_rows import format_rows, to_render_rows
from production_progress.structure_string import build_units, parse_structure_string
from production_progress.unit_models import DEFAULT_GRANULARITIES, DEFAULT_STAGES

WORK_YAML = textwrap.dedent(
    """
    work:
      title: Chapter 3
      primary_granularity: page
    stages:
      - {id: 1, label: Storyboard, base_hours: 3}
      - {id: 2, label: Pencils, base_hours: 1}
      - {id: 3, label: Inks}
      - {id: 4, label: Finish, base_hours: 0.5}
    structure: "[2/4]"
    """
)


def _work_file(tmp_path):
    path = tmp_path / "work.yaml"
    path.write_text(WORK_YAML, encoding="utf-8")
    return path


def test_summary_prints_totals(tmp_path, capsys):
    assert main(["summary", str(_work_file(tmp_path))]) == 0

    out = capsys.readouterr().out
    assert "Chapter 3" in out
    assert "estimated hours: 9.00" in out
    assert "completed hours: 8.50" in out
    assert "progress:        94%" in out
    assert "hours per page: 22.50" in out


def test_structure_command(tmp_path, capsys):
    assert main(["structure", str(_work_file(tmp_path))]) == 0
    assert capsys.readouterr().out.strip() == "[2/4]"


def test_show_lists_every_unit(tmp_path, capsys):
    assert main(["show", str(_work_file(tmp_path))]) == 0

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 3
    assert lines[0].startswith("Page 1: 2 leaves")
    assert lines[1].startswith("  Panel 1.1: stage 2 (Pencils)")


def test_validate_command(capsys):
    assert main(["validate", "[1/2],[3/4]", "--depth", "2"]) == 0
    assert main(["validate", "[1/2],[[1][2]]", "--depth", "2"]) == 2
    assert "expected 2 levels" in capsys.readouterr().err


def test_advance_writes_back(tmp_path, capsys):
    path = _work_file(tmp_path)
    work = load_work(str(path))
    leaf_id = work.units[0].children[0].id
    assert main(["advance", str(path), "missing"]) == 2

    # ids are generated when a structure string is loaded; persist them first
    dump_work(work, str(path))
    assert main(["advance", str(path), leaf_id, "--write"]) == 0
    assert capsys.readouterr().out.strip().endswith("[3/4]")
    assert load_work(str(path)).units[0].children[0].stage_index == 2


def test_missing_and_invalid_files(tmp_path, capsys):
    assert main(["summary", str(tmp_path / "nope.yaml")]) == 1

    bad = tmp_path / "bad.yaml"
    bad.write_text("work: {title: X}\nstructure: '[[1]]'\n", encoding="utf-8")
    assert main(["summary", str(bad)]) == 2
    assert "Error:" in capsys.readouterr().err


def test_render_rows_label_levels_by_weight():
    units = build_units(parse_structure_string("[1/5]"))
    granularities = list(reversed(DEFAULT_GRANULARITIES))

    rows = to_render_rows(units, granularities, DEFAULT_STAGES)

    assert [(row.indent, row.granularity, row.path) for row in rows] == [
        (0, "Page", "1"),
        (1, "Panel", "1.1"),
        (1, "Panel", "1.2"),
    ]
    assert rows[2].stage_label == "Finish"
    assert rows[0].leaf_count == 2
    assert "stage 5 (Finish)" in format_rows(rows)


def test_advance_by_index_path_on_structure_file(tmp_path, capsys):
    path = _work_file(tmp_path)

    assert main(["advance", str(path), "1.1", "--write"]) == 0
    assert capsys.readouterr().out.strip() == "[3/4]"
    assert load_work(str(path)).units[0].children[0].stage_index == 2

    assert main(["advance", str(path), "1"]) == 2
    assert main(["advance", str(path), "1.9"]) == 2
    assert "no leaf unit" in capsys.readouterr().err


def test_validate_rejects_deep_nesting(capsys):
    assert main(["validate", "[" * 1200 + "1" + "]" * 1200]) == 2
    assert "too deeply nested" in capsys.readouterr().err
