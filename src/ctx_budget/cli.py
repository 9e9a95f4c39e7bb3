"""``ctx-budget`` command line: inspect and maintain a project's budget."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .aging import age_items
from .budget import ContentTier, ContentType, ContextBudget, add_content, create_budget
from .compaction import compact_budget
from .config import BudgetConfig
from .persistence import budget_store, load_budget, save_budget
from .report import get_saturation_report
from .telemetry import TelemetryConfig, configure_tracing
from .validation import repair_budget, validate_budget

logger = logging.getLogger(__name__)


def _load(project: Path, config: BudgetConfig) -> ContextBudget:
    # A project without a saved budget starts from the configured ceiling.
    if not budget_store(project).path.exists():
        return create_budget(config.max_tokens)
    return load_budget(project)


def _save(project: Path, budget: ContextBudget) -> int:
    if save_budget(project, budget):
        return 0
    print(f"error: could not write budget under {project}", file=sys.stderr)
    return 1


def _cmd_status(args: argparse.Namespace, config: BudgetConfig) -> int:
    budget = _load(args.project, config)
    report = get_saturation_report(budget, stale_after=config.stale_after)
    if args.json:
        print(json.dumps(report.model_dump(mode="python"), indent=2))
        return 0

    print(f"Saturation: {report.saturation:.1%} ({report.level})")
    print(f"Tokens:     {report.used_tokens} / {report.max_tokens:g}")
    for tier, usage in report.tier_breakdown.items():
        print(f"  {tier:<7} {usage.items:>4} items  {usage.tokens:>8} tokens")
    if report.potential_savings is not None:
        print(f"Potential savings from summarization: {report.potential_savings} tokens")
    for note in report.recommendations:
        print(f"  - {note}")
    return 0


def _cmd_add(args: argparse.Namespace, config: BudgetConfig) -> int:
    budget = _load(args.project, config)
    item = add_content(budget, args.text, args.type, tier=args.tier, priority=args.priority)
    print(f"Added {item.type} item {item.id} to {item.tier} ({item.tokens} tokens)")
    return _save(args.project, budget)


def _cmd_age(args: argparse.Namespace, config: BudgetConfig) -> int:
    budget = _load(args.project, config)
    result = age_items(
        budget,
        hot_max_age=config.hot_max_age,
        warm_max_age=config.warm_max_age,
        cold_max_age=config.cold_max_age,
    )
    moves = ", ".join(f"{count} to {tier}" for tier, count in result.moved_to.items() if count)
    print(f"Aged {result.aged} item(s)" + (f": {moves}" if moves else ""))
    return _save(args.project, budget)


def _cmd_compact(args: argparse.Namespace, config: BudgetConfig) -> int:
    budget = _load(args.project, config)
    target = config.target_saturation if args.target is None else args.target
    result = compact_budget(budget, target_saturation=target)
    print(
        f"Compacted: saved {result.tokens_saved} tokens "
        f"({result.items_compacted} summarized, {result.items_dropped} dropped), "
        f"now {result.tokens_after} tokens"
    )
    if not result.success:
        print(f"Target saturation {target:.0%} not reached")
    return _save(args.project, budget)


def _cmd_validate(args: argparse.Namespace, config: BudgetConfig) -> int:
    result = validate_budget(_load(args.project, config))
    if result.valid:
        print(f"Budget is consistent ({result.expected_tokens} tokens)")
        return 0
    print(
        f"Token drift: stored total is off by {result.discrepancy:+} "
        f"(expected {result.expected_tokens}); run 'ctx-budget repair'"
    )
    return 1


def _cmd_repair(args: argparse.Namespace, config: BudgetConfig) -> int:
    budget = _load(args.project, config)
    result = repair_budget(budget)
    print(
        f"Repaired {result.items_repaired} item(s); "
        f"used tokens {result.tokens_before} -> {result.tokens_after}"
    )
    return _save(args.project, budget)


def _cmd_clear(args: argparse.Namespace, config: BudgetConfig) -> int:
    status = _save(args.project, create_budget(config.max_tokens))
    if status == 0:
        print(f"Cleared budget under {args.project}")
    return status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctx-budget", description="Inspect and maintain a project's context budget"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project root holding .ctxbudget/ (default: current directory)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show saturation and recommendations")
    status.add_argument("--json", action="store_true", help="Print the report as JSON")
    status.set_defaults(handler=_cmd_status)

    add = sub.add_parser("add", help="Add a content item")
    add.add_argument("type", choices=[t.value for t in ContentType])
    add.add_argument("text")
    add.add_argument("--tier", choices=[t.value for t in ContentTier], default=ContentTier.HOT)
    add.add_argument("--priority", type=int, default=50)
    add.set_defaults(handler=_cmd_add)

    sub.add_parser("age", help="Demote idle items").set_defaults(handler=_cmd_age)

    compact = sub.add_parser("compact", help="Shrink the budget toward a target saturation")
    compact.add_argument("--target", type=float, default=None)
    compact.set_defaults(handler=_cmd_compact)

    sub.add_parser("validate", help="Check the token total").set_defaults(
        handler=_cmd_validate
    )
    sub.add_parser("repair", help="Re-estimate tokens and fix the total").set_defaults(
        handler=_cmd_repair
    )
    sub.add_parser("clear", help="Reset to an empty budget").set_defaults(handler=_cmd_clear)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``ctx-budget`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = BudgetConfig.from_env()
        telemetry_config = TelemetryConfig.from_env()
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Running %s on %s", args.command, args.project)
    if telemetry_config.exporter == "none":
        return args.handler(args, config)
    tracer = configure_tracing(telemetry_config)
    try:
        return args.handler(args, config)
    finally:
        tracer.shutdown()


if __name__ == "__main__":
    sys.exit(main())
