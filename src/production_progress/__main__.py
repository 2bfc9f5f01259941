from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml

from .hierarchy import advance_leaf_stage, find_unit, find_unit_by_path
from .parse_work import WorkValidationError, dump_work, load_work
from .render_rows import format_rows, to_render_rows
from .structure_string import structure_to_string, validate_structure_string
from .unit_models import Leaf, Work
from .workload import hours_at, summarize_workload


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Production progress for serialized works",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--verbose", action="store_true", help="Log parser and loader decisions")
    commands = parser.add_subparsers(dest="command", required=True)

    summary = commands.add_parser("summary", help="Print workload and progress totals")
    summary.add_argument("work", help="Path to work YAML")

    show = commands.add_parser("show", help="Print the work-unit tree")
    show.add_argument("work", help="Path to work YAML")

    structure = commands.add_parser("structure", help="Print the structure string of a work")
    structure.add_argument("work", help="Path to work YAML")

    validate = commands.add_parser("validate", help="Validate a structure string")
    validate.add_argument("structure", help="Structure string, e.g. '[1/2/3],[4/5]'")
    validate.add_argument("--depth", type=int, help="Expected number of levels")

    advance = commands.add_parser("advance", help="Advance one leaf to its next stage")
    advance.add_argument("work", help="Path to work YAML")
    advance.add_argument("unit", help="Id or index path (as printed by show, e.g. 1.2) of the leaf to advance")
    advance.add_argument("--write", action="store_true", help="Save the updated work back to its file")
    return parser


def _load(path: Path) -> Work | int:
    try:
        return load_work(str(path))
    except (yaml.YAMLError, WorkValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError:
        print(f"Error: work file not found: {path}", file=sys.stderr)
        return 1
    except Exception as exc:  # Unexpected
        print(f"Unexpected error while loading work: {exc}", file=sys.stderr)
        return 1


def _print_summary(work: Work) -> None:
    summary = summarize_workload(work.units, work.stages, work.granularities)
    print(f"{work.title}")
    print(f"  leaves:          {summary.leaf_count}")
    print(f"  hours per leaf:  {summary.total_hours_per_leaf:.2f}")
    print(f"  estimated hours: {summary.total_estimated_hours:.2f}")
    print(f"  completed hours: {summary.completed_hours:.2f}")
    print(f"  remaining hours: {summary.remaining_hours:.2f}")
    print(f"  progress:        {summary.progress_percent}%")
    primary = work.primary_granularity
    if primary is not None:
        per_unit = hours_at(primary, summary.total_hours_per_leaf, work.granularities)
        print(f"  hours per {primary.label.lower()}: {per_unit:.2f}")
    print("  stages:")
    labels = {stage.id: stage.label for stage in work.stages}
    for entry in summary.stage_counts:
        print(f"    {labels.get(entry.stage_id, 'past final stage')}: {entry.count}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "validate":
        message = validate_structure_string(args.structure, args.depth)
        if message is not None:
            print(f"Error: {message}", file=sys.stderr)
            return 2
        print("OK")
        return 0

    work_path = Path(args.work)
    loaded = _load(work_path)
    if isinstance(loaded, int):
        return loaded
    work = loaded

    if args.command == "summary":
        _print_summary(work)
    elif args.command == "show":
        print(format_rows(to_render_rows(work.units, work.granularities, work.stages)))
    elif args.command == "structure":
        print(structure_to_string(work.units, work.depth))
    elif args.command == "advance":
        leaf = find_unit(work.units, args.unit) or find_unit_by_path(work.units, args.unit)
        if not isinstance(leaf, Leaf):
            print(f"Error: no leaf unit '{args.unit}'", file=sys.stderr)
            return 2
        advance_leaf_stage(work.units, leaf.id, len(work.stages))
        print(structure_to_string(work.units, work.depth))
        if args.write:
            try:
                dump_work(work, str(work_path))
            except OSError as exc:
                print(f"Error: could not write {work_path}: {exc}", file=sys.stderr)
                return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
