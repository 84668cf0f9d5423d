# catproc.py
# Command-line front end for the category engine.
# - Category suggestions for a transaction (suggest)
# - Accept/reject feedback (feedback) and CSV replay (train)
# - Rule induction (induce), accuracy evaluation (evaluate)
# - Corpus statistics (stats), rule listing (rules)
# - Database management (db --init/--check/--stats)
#
# Examples:
#   python catproc.py db --init
#   python catproc.py suggest "星巴克 拿鐵" --amount 150 --merchant 星巴克
#   python catproc.py feedback "午餐 便當" --amount 120 --category food --correct
#   python catproc.py train data/labelled.csv
#   python catproc.py induce
#   python catproc.py evaluate --test-size 50 --json

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import click

from categorizer.learning import load_feedback_csv
from categorizer.service import CategorizerService
from config.loader import REPO, EngineConfig, load_engine_config
from sce_core.models import CategoryRule, Feedback
from sce_utils.logging_setup import setup_logging
from storage.migrations import check_integrity, get_table_stats
from storage.schema import SCHEMA_VERSION
from storage.sqlite_store import SQLiteStore

log = logging.getLogger("catproc")


# ----------------------------- Helpers -----------------------------
def _load_cfg(config_path: Optional[str]) -> EngineConfig:
    path = Path(config_path) if config_path else REPO / "config.toml"
    try:
        return load_engine_config(path)
    except FileNotFoundError:
        log.info("No config at %s; using built-in defaults", path)
        return EngineConfig()


def _service(ctx: click.Context) -> CategorizerService:
    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        cfg: EngineConfig = obj["cfg"]
        obj["service"] = CategorizerService.from_config(cfg, obj.get("db_path"))
        ctx.call_on_close(obj["service"].close)
    return obj["service"]


def _rule_dict(rule: CategoryRule) -> Dict[str, Any]:
    d = asdict(rule)
    d["keywords"] = list(rule.keywords)
    d["merchant_patterns"] = list(rule.merchant_patterns)
    d["created_at"] = rule.created_at.isoformat() if rule.created_at else None
    d["last_used"] = rule.last_used.isoformat() if rule.last_used else None
    return d


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


# ----------------------------- CLI -----------------------------
@click.group()
@click.option(
    "--db",
    "db_path",
    default=None,
    help="Path to SQLite database file (overrides [storage].db_path).",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to config.toml. Defaults to the repository copy.",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.pass_context
def cli(
    ctx: click.Context,
    db_path: Optional[str],
    config_path: Optional[str],
    verbose: bool,
    quiet: bool,
) -> None:
    """Transaction category engine CLI."""
    cfg = _load_cfg(config_path)
    level = "DEBUG" if verbose else "ERROR" if quiet else cfg.log_level
    setup_logging(level, force=True)
    ctx.ensure_object(dict)
    ctx.obj["cfg"] = cfg
    ctx.obj["db_path"] = db_path or cfg.db_path


# ----------------------------- Suggest -----------------------------
@cli.command("suggest")
@click.argument("description")
@click.option("--amount", type=float, default=0.0, show_default=True, help="Transaction amount.")
@click.option("--merchant", default="", help="Merchant name, if known.")
@click.option("--max", "max_suggestions", type=int, default=None, help="Maximum suggestions.")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def suggest_cmd(
    ctx: click.Context,
    description: str,
    amount: float,
    merchant: str,
    max_suggestions: Optional[int],
    output_json: bool,
) -> None:
    """Suggest categories for a transaction description."""
    svc = _service(ctx)
    suggestions = svc.suggest_categories(description, amount, merchant, max_suggestions)

    if output_json:
        _echo_json(
            {
                "description": description,
                "suggestions": [
                    {**asdict(s), "source_type": s.source_type.value} for s in suggestions
                ],
            }
        )
        return

    if not suggestions:
        click.echo("[suggest] No suggestions.")
        return
    click.echo(f"[suggest] {description!r} ({amount:g})")
    for i, s in enumerate(suggestions, 1):
        click.echo(
            f"  {i}. {s.category_id:<14} {s.category_name:<6} {s.confidence:>5.0%}  "
            f"[{s.source_type.value}] {s.reason}"
        )


# ----------------------------- Feedback -----------------------------
@cli.command("feedback")
@click.argument("description")
@click.option("--category", "category_id", required=True, help="Category id the user chose.")
@click.option("--amount", type=float, default=0.0, show_default=True)
@click.option("--merchant", default="")
@click.option("--correct/--incorrect", "is_correct", default=True, show_default=True)
@click.option("--user", "user_id", default="", help="User id recorded with the example.")
@click.pass_context
def feedback_cmd(
    ctx: click.Context,
    description: str,
    category_id: str,
    amount: float,
    merchant: str,
    is_correct: bool,
    user_id: str,
) -> None:
    """Record accept/reject feedback for a suggestion."""
    svc = _service(ctx)
    outcome = svc.submit_feedback(
        Feedback(
            description=description,
            amount=amount,
            category_id=category_id,
            is_correct=is_correct,
            merchant=merchant,
            user_id=user_id,
        )
    )
    if outcome is None:
        click.echo("[feedback] Not recorded (see log).", err=True)
        raise SystemExit(1)
    click.echo(
        f"[feedback] recorded {outcome.example_id[:8]}: "
        f"reinforced={len(outcome.reinforced)}, decayed={len(outcome.decayed)}, "
        f"deactivated={len(outcome.deactivated)}, merchant={outcome.merchant_action}"
    )


@cli.command("train")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.pass_context
def train_cmd(ctx: click.Context, csv_path: str) -> None:
    """Replay a labelled CSV (description, amount, merchant, category_id) as feedback."""
    try:
        records = load_feedback_csv(csv_path)
    except ValueError as e:
        raise click.ClickException(str(e))

    svc = _service(ctx)
    stats = {"recorded": 0, "skipped": 0}
    with click.progressbar(records, label="[train] replaying feedback") as bar:
        for fb in bar:
            if svc.submit_feedback(fb) is None:
                stats["skipped"] += 1
            else:
                stats["recorded"] += 1
    click.echo(f"[train] recorded={stats['recorded']}, skipped={stats['skipped']}")


# ----------------------------- Learning -----------------------------
@cli.command("induce")
@click.pass_context
def induce_cmd(ctx: click.Context) -> None:
    """Generate new rules from accumulated correct feedback."""
    svc = _service(ctx)
    new_rules = svc.induce_rules()
    if not new_rules:
        click.echo("[induce] No new rules.")
        return
    click.echo(f"[induce] Created {len(new_rules)} rule(s):")
    for r in new_rules:
        click.echo(
            f"  - {r.name}: keywords={','.join(r.keywords)} "
            f"min_confidence={r.min_confidence} priority={r.priority}"
        )


@cli.command("evaluate")
@click.option(
    "--test-size",
    type=click.IntRange(1, 100),
    default=None,
    help="Number of most recent examples to score (max 100).",
)
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def evaluate_cmd(ctx: click.Context, test_size: Optional[int], output_json: bool) -> None:
    """Score the engine against the most recent feedback."""
    svc = _service(ctx)
    report = svc.evaluate_accuracy(test_size)

    if output_json:
        _echo_json(asdict(report))
        return

    click.echo(
        f"[evaluate] accuracy={report.overall_accuracy:.1%} "
        f"({report.correct_predictions}/{report.total_test_cases})"
    )
    for perf in report.detailed_performance:
        mistakes = f" mistakes={','.join(perf.common_mistakes)}" if perf.common_mistakes else ""
        click.echo(
            f"  - {perf.category_id} ({perf.category_name}): {perf.accuracy:.0%} "
            f"of {perf.total_cases}, avg confidence {perf.average_confidence:.2f}{mistakes}"
        )


@cli.command("stats")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def stats_cmd(ctx: click.Context, output_json: bool) -> None:
    """Show learning corpus statistics."""
    stats = _service(ctx).statistics()
    if output_json:
        _echo_json(asdict(stats))
        return
    click.echo(f"[stats] records={stats.total_records}, correct={stats.correct_records}")
    for category_id, count in stats.category_breakdown.items():
        click.echo(f"  - {category_id}: {count}")
    if stats.recent_activity:
        click.echo("  recent:")
        for item in stats.recent_activity:
            mark = "+" if item["is_correct"] else "-"
            click.echo(f"    {mark} {item['category_id']:<14} {item['description']}")


@cli.command("rules")
@click.option("--all", "include_inactive", is_flag=True, help="Include deactivated rules.")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def rules_cmd(ctx: click.Context, include_inactive: bool, output_json: bool) -> None:
    """List category rules, highest priority first."""
    rules = _service(ctx).list_rules(include_inactive=include_inactive)
    if output_json:
        _echo_json([_rule_dict(r) for r in rules])
        return
    if not rules:
        click.echo("[rules] No rules.")
        return
    for r in rules:
        state = "" if r.is_active else " (inactive)"
        click.echo(
            f"  [{r.priority}] {r.name} -> {r.category_id} "
            f"min_conf={r.min_confidence:.2f} used={r.usage_count}{state}"
        )


# ----------------------------- Database Management Commands -----------------------------
@cli.command("db")
@click.option("--init", "do_init", is_flag=True, help="Initialize schema and seed default rules.")
@click.option("--check", "do_check", is_flag=True, help="Run integrity checks and report database health.")
@click.option("--stats", "do_stats", is_flag=True, help="Show table row counts.")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON.")
@click.pass_context
def db_cmd(
    ctx: click.Context,
    do_init: bool,
    do_check: bool,
    do_stats: bool,
    output_json: bool,
) -> None:
    """
    Database management commands.

    Examples:

        catproc db --init --db data/categories.sqlite

        catproc db --check --json
    """
    if not any([do_init, do_check, do_stats]):
        click.echo("No action specified. Use --init, --check, or --stats.")
        click.echo("Run 'catproc db --help' for usage.")
        raise SystemExit(1)

    cfg: EngineConfig = ctx.obj["cfg"]
    db_path: str = ctx.obj["db_path"]
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    results: Dict[str, Any] = {"db_path": db_path, "actions": []}
    with SQLiteStore(db_path) as store:
        conn = store.conn

        # --init: Initialize/migrate schema
        if do_init:
            result = store.ensure_schema(cfg.seed_rules)
            results["init"] = result
            results["actions"].append("init")
            if not output_json:
                click.echo(f"[init] status={result['status']}, schema_version={SCHEMA_VERSION}")
                if result["status"] == "initialized":
                    click.echo(f"  - Created tables: {', '.join(result['tables_created'])}")
                    click.echo(f"  - Seeded {result['rules_seeded']} rules")
                    click.echo(f"  - Seeded {result['merchants_seeded']} merchants")
                elif result["status"] == "migrated" and result.get("tables_created"):
                    click.echo(f"  - Created tables: {', '.join(result['tables_created'])}")

        # --check: Run integrity checks
        if do_check:
            result = check_integrity(conn)
            results["check"] = result
            results["actions"].append("check")
            if not output_json:
                status_icon = (
                    "[OK]"
                    if result["status"] == "ok"
                    else "[WARN]" if result["status"] == "warning" else "[ERR]"
                )
                click.echo(
                    f"[check] {status_icon} status={result['status']}, version={result['version']}"
                )
                click.echo(f"  - integrity_check: {result['integrity_check']}")
                click.echo("  - tables:")
                for table, info in result["tables"].items():
                    exists = "[+]" if info.get("exists", True) else "[-]"
                    empty = " (empty)" if info.get("empty") else ""
                    click.echo(f"      {exists} {table}: {info.get('rows', 0)} rows{empty}")
                if result["issues"]:
                    click.echo("  - issues:")
                    for issue in result["issues"]:
                        click.echo(f"      ! {issue}")

            # Set exit code based on status
            if result["status"] == "error":
                results["exit_code"] = 3
            elif result["status"] == "warning":
                results["exit_code"] = 2

        # --stats: Show row counts
        if do_stats:
            stats = get_table_stats(conn)
            results["stats"] = stats
            results["actions"].append("stats")
            if not output_json:
                click.echo("[stats] Table row counts:")
                for table, count in stats.items():
                    if count >= 0:
                        click.echo(f"  - {table}: {count}")
                    else:
                        click.echo(f"  - {table}: (not found)")

    if output_json:
        _echo_json(results)

    exit_code = results.get("exit_code", 0)
    if exit_code != 0:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    cli()
