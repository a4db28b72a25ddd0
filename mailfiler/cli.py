"""CLI entry point for mailfiler.

Commands:
    mailfiler sweep         — file inbox mail that matches a rule
    mailfiler discover      — infer sender rules from existing folders
    mailfiler rules ...     — add / delete / list / consolidate sender rules
    mailfiler exclusions .. — senders and domains that are never filed
    mailfiler keywords ...  — subject keyword rules
    mailfiler filing-stats  — per-rule filing counters
    mailfiler backup ...    — export / import rule backups
    mailfiler triggers ...  — schedule sweeps and discovery
    mailfiler run-due       — run scheduled jobs that are due (for cron)
    mailfiler status        — quick overview
"""

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import click

from mailfiler.config import (
    AUTO_CONSOLIDATE,
    BACKUP_DIR,
    FILING_LOG_PATH,
    MAX_DISCOVERY_TIME_MS,
    RULES_PATH,
    STATE_DB_PATH,
    STATE_SCOPE,
    THREAD_LIMIT_PER_LABEL,
    load_account_config,
    missing_imap_settings,
)
from mailfiler.store.rule_store import RuleStore

logger = logging.getLogger("mailfiler")


@contextmanager
def _open_store() -> Iterator[RuleStore]:
    from mailfiler.store.kv_store import KeyValueStore

    with KeyValueStore(STATE_DB_PATH, scope=STATE_SCOPE) as kv:
        yield RuleStore(RULES_PATH, kv)


def _open_provider():
    from mailfiler.integrations.imap import ImapProvider

    return ImapProvider(load_account_config())


def _validate_config() -> None:
    """Fail loudly if required IMAP config is missing."""
    missing = missing_imap_settings()
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/mailfiler.env or the environment.", err=True)
        sys.exit(1)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """mailfiler — rule-based inbox filing."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# mailfiler sweep
# ------------------------------------------------------------------


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show what would be filed without moving anything.")
@click.option("--limit", "-n", default=0, show_default=True, help="Max inbox messages (0=all).")
def sweep(dry_run: bool, limit: int) -> None:
    """File every inbox message that matches a rule."""
    _validate_config()
    asyncio.run(_sweep_async(dry_run, limit))


async def _sweep_async(dry_run: bool, limit: int) -> None:
    from mailfiler.audit.filing_log import FilingLog
    from mailfiler.orchestrator.pipelines import run_sweep

    with _open_store() as store:
        async with _open_provider() as provider:
            records = await run_sweep(
                provider=provider,
                store=store,
                dry_run=dry_run,
                limit=limit,
                filing_log=FilingLog(FILING_LOG_PATH),
                on_progress=click.echo,
            )

    if dry_run:
        for record in records or []:
            click.echo(f"  {record.sender} → {record.label}  [{record.rule_key}]  {record.subject}")


# ------------------------------------------------------------------
# mailfiler discover
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--per-label",
    default=THREAD_LIMIT_PER_LABEL,
    show_default=True,
    help="Most recent messages to sample per folder.",
)
@click.option(
    "--time-budget-ms",
    default=MAX_DISCOVERY_TIME_MS,
    show_default=True,
    help="Stop (and save progress) after this much wall-clock time.",
)
def discover(per_label: int, time_budget_ms: int) -> None:
    """Infer sender rules from mail already filed in folders."""
    _validate_config()
    asyncio.run(_discover_async(per_label, time_budget_ms))


async def _discover_async(per_label: int, time_budget_ms: int) -> None:
    from mailfiler.orchestrator.pipelines import run_discovery

    with _open_store() as store:
        async with _open_provider() as provider:
            result = await run_discovery(
                provider=provider,
                store=store,
                per_label_limit=per_label,
                time_budget_ms=time_budget_ms,
                on_progress=click.echo,
            )
    click.echo(
        f"Folders scanned: {result.categories_scanned}, skipped: {result.categories_skipped}"
    )
    if result.timed_out:
        click.echo("Time budget exhausted; run discover again to continue.")


# ------------------------------------------------------------------
# mailfiler run-due
# ------------------------------------------------------------------


@cli.command("run-due")
def run_due() -> None:
    """Run every scheduled job whose interval has elapsed."""
    from datetime import UTC, datetime

    from mailfiler.triggers import DISCOVERY_HANDLER, SWEEP_HANDLER, KeyValueScheduler

    with _open_store() as store:
        scheduler = KeyValueScheduler(store.kv)
        due = scheduler.due(datetime.now(UTC))

    if not due:
        click.echo("No jobs due.")
        return

    _validate_config()
    for handler in due:
        if handler == SWEEP_HANDLER:
            asyncio.run(_sweep_async(False, 0))
        elif handler == DISCOVERY_HANDLER:
            asyncio.run(_discover_async(THREAD_LIMIT_PER_LABEL, MAX_DISCOVERY_TIME_MS))
        else:
            logger.warning("Unknown scheduled handler: %s", handler)
            continue
        with _open_store() as store:
            KeyValueScheduler(store.kv).mark_run(handler, datetime.now(UTC))
        click.echo(f"Ran {handler}.")


# ------------------------------------------------------------------
# mailfiler rules
# ------------------------------------------------------------------


@cli.group()
def rules() -> None:
    """Manage sender and domain rules."""


@rules.command("add")
@click.argument("pattern")
@click.argument("label")
@click.option("--no-file", is_flag=True, help="Save the rule without filing existing inbox mail.")
@click.option(
    "--auto-consolidate/--no-auto-consolidate",
    default=None,
    help="Run consolidation after adding (default from MAILFILER_AUTO_CONSOLIDATE).",
)
def rules_add(pattern: str, label: str, no_file: bool, auto_consolidate: bool | None) -> None:
    """Map PATTERN (address or @domain) to LABEL and file matching inbox mail."""
    if auto_consolidate is None:
        auto_consolidate = AUTO_CONSOLIDATE
    if not no_file:
        _validate_config()
    try:
        filed = asyncio.run(_rules_add_async(pattern, label, no_file, auto_consolidate))
    except ValueError as exc:
        _fail(str(exc))
        return

    click.echo(f"Rule saved: {pattern} → {label}")
    if filed:
        click.echo(f"Filed {filed} existing message(s).")


async def _rules_add_async(pattern: str, label: str, no_file: bool, auto_consolidate: bool) -> int:
    from mailfiler.audit.filing_log import FilingLog
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        mgr = RuleManager(store, filing_log=FilingLog(FILING_LOG_PATH))
        if no_file:
            return await mgr.add_rule(pattern, label, auto_consolidate=auto_consolidate)
        async with _open_provider() as provider:
            return await mgr.add_rule(
                pattern, label, provider=provider, auto_consolidate=auto_consolidate
            )


@rules.command("delete")
@click.argument("pattern")
def rules_delete(pattern: str) -> None:
    """Delete the rule for PATTERN."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        deleted = RuleManager(store).delete_rule(pattern)
    if deleted:
        click.echo(f"Rule deleted: {pattern}")
    else:
        _fail(f"No rule for {pattern}")


@rules.command("list")
@click.argument("term", required=False)
def rules_list(term: str | None) -> None:
    """List rules, optionally filtered by TERM."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        entries = RuleManager(store).search(term)
    if not entries:
        click.echo("No rules found.")
        return
    width = max(len(e.pattern) for e in entries)
    for entry in entries:
        click.echo(f"  {entry.pattern:<{width}}  → {entry.label}")


@rules.command("stats")
def rules_stats() -> None:
    """Show rule counts."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        stats = RuleManager(store).stats()
    click.echo(f"Rules: {stats.total} ({stats.exact} exact, {stats.domain} domains)")
    click.echo(f"Keyword rules: {stats.keywords}")
    click.echo(f"Exclusions: {stats.exclusions}")


@rules.command("consolidate")
@click.option("--yes", "-y", is_flag=True, help="Apply without asking.")
def rules_consolidate(yes: bool) -> None:
    """Find redundant or mergeable rules and apply the changes."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        mgr = RuleManager(store)
        opportunities = mgr.find_opportunities()
        if not opportunities:
            click.echo("No consolidation opportunities found.")
            return

        click.echo(f"Found {len(opportunities)} consolidation opportunit(ies):")
        for opp in opportunities:
            click.echo(f"  [{opp.kind.value}] {opp.label}: {opp.description}")

        if not yes and not click.confirm("Apply these changes?", default=False):
            click.echo("No changes made.")
            return

        removed = mgr.consolidate(opportunities)
    click.echo(f"Consolidation complete. {removed} rule(s) simplified.")


@rules.command("rename-label")
@click.argument("old_name")
@click.argument("new_name")
def rules_rename_label(old_name: str, new_name: str) -> None:
    """Repoint rules after renaming a folder by hand (moves no mail)."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        updated = RuleManager(store).rename_label(old_name, new_name)
    click.echo(f'{updated} rule(s) now point to "{new_name}".')


@rules.command("migrate-label")
@click.argument("old_name")
@click.argument("new_name")
def rules_migrate_label(old_name: str, new_name: str) -> None:
    """Move all mail from OLD_NAME to NEW_NAME, delete OLD_NAME, update rules."""
    _validate_config()
    asyncio.run(_migrate_async(old_name, new_name))


async def _migrate_async(old_name: str, new_name: str) -> None:
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        async with _open_provider() as provider:
            updated = await RuleManager(store).migrate_label(old_name, new_name, provider=provider)
    click.echo(f"Migrated {old_name} → {new_name}; {updated} rule(s) updated.")


# ------------------------------------------------------------------
# mailfiler exclusions
# ------------------------------------------------------------------


@cli.group()
def exclusions() -> None:
    """Senders and domains that are never filed."""


@exclusions.command("add")
@click.argument("pattern")
def exclusions_add(pattern: str) -> None:
    """Exclude an address or @domain."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        try:
            added = RuleManager(store).add_exclusion(pattern)
        except ValueError as exc:
            _fail(str(exc))
            return
    click.echo(f"Exclusion added: {pattern.strip().lower()}" if added else "Already excluded.")


@exclusions.command("remove")
@click.argument("pattern")
def exclusions_remove(pattern: str) -> None:
    """Lift an exclusion."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        removed = RuleManager(store).remove_exclusion(pattern)
    if removed:
        click.echo(f"Exclusion removed: {pattern.strip().lower()}")
    else:
        _fail(f"Not excluded: {pattern}")


@exclusions.command("list")
@click.argument("term", required=False)
def exclusions_list(term: str | None) -> None:
    """List exclusions, optionally filtered by TERM."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        patterns = RuleManager(store).list_exclusions(term)
    if not patterns:
        click.echo("No exclusions.")
        return
    for pattern in patterns:
        click.echo(f"  {pattern}")


# ------------------------------------------------------------------
# mailfiler keywords
# ------------------------------------------------------------------


@cli.group()
def keywords() -> None:
    """Subject-line keyword rules (lowest priority)."""


@keywords.command("add")
@click.argument("keyword")
@click.argument("label")
def keywords_add(keyword: str, label: str) -> None:
    """File mail whose subject contains KEYWORD to LABEL."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        try:
            RuleManager(store).add_keyword_rule(keyword, label)
        except ValueError as exc:
            _fail(str(exc))
            return
    click.echo(f'Keyword rule saved: "{keyword.strip()}" → {label}')


@keywords.command("delete")
@click.argument("keyword")
def keywords_delete(keyword: str) -> None:
    """Delete a keyword rule."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        deleted = RuleManager(store).delete_keyword_rule(keyword)
    if deleted:
        click.echo(f'Keyword rule deleted: "{keyword}"')
    else:
        _fail(f'No keyword rule for "{keyword}"')


@keywords.command("list")
@click.argument("term", required=False)
def keywords_list(term: str | None) -> None:
    """List keyword rules, optionally filtered by TERM."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        entries = RuleManager(store).list_keyword_rules(term)
    if not entries:
        click.echo("No keyword rules.")
        return
    for entry in entries:
        click.echo(f'  "{entry.keyword}" → {entry.label}')


# ------------------------------------------------------------------
# mailfiler filing-stats
# ------------------------------------------------------------------


@cli.group("filing-stats")
def filing_stats() -> None:
    """Lifetime filing counts per rule."""


@filing_stats.command("show")
def filing_stats_show() -> None:
    """Show how many messages each rule has filed."""
    from mailfiler.rules import RuleManager

    with _open_store() as store:
        stats = RuleManager(store).filing_stats()
    if not stats:
        click.echo("No filing stats yet.")
        return
    for rule_key, count in sorted(stats.items(), key=lambda kv: (-kv[1], kv[0])):
        click.echo(f"  {count:>6}  {rule_key}")


@filing_stats.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Reset without asking.")
def filing_stats_reset(yes: bool) -> None:
    """Zero all filing counters."""
    from mailfiler.rules import RuleManager

    if not yes and not click.confirm("Reset all filing stats?", default=False):
        click.echo("No changes made.")
        return
    with _open_store() as store:
        RuleManager(store).reset_filing_stats()
    click.echo("Filing stats reset.")


# ------------------------------------------------------------------
# mailfiler backup
# ------------------------------------------------------------------


@cli.group()
def backup() -> None:
    """Export and import rule backups."""


@backup.command("export")
def backup_export() -> None:
    """Write the rules to a timestamped backup file."""
    from mailfiler.backups import BackupFolder, export_rules

    with _open_store() as store:
        name = export_rules(store, BackupFolder(BACKUP_DIR))
    click.echo(f"Rules exported to: {name}")


@backup.command("import")
@click.argument("filename")
@click.option("--replace", is_flag=True, help="Replace all rules instead of merging.")
def backup_import(filename: str, replace: bool) -> None:
    """Import rules from FILENAME in the backup folder."""
    from mailfiler.backups import BackupFolder, import_rules

    with _open_store() as store:
        result = import_rules(store, BackupFolder(BACKUP_DIR), filename, replace_all=replace)
    if not result.success:
        _fail(result.message)
        return
    click.echo(result.message)


@backup.command("list")
def backup_list() -> None:
    """List available backups."""
    from mailfiler.backups import BackupFolder

    names = BackupFolder(BACKUP_DIR).list_names()
    if not names:
        click.echo("No backups.")
        return
    for name in names:
        click.echo(f"  {name}")


# ------------------------------------------------------------------
# mailfiler triggers
# ------------------------------------------------------------------

_TRIGGER_NAMES = click.Choice(["cleanup", "discovery"], case_sensitive=False)


@cli.group()
def triggers() -> None:
    """Schedule sweeps (hourly) and discovery (daily)."""


@triggers.command("status")
def triggers_status() -> None:
    """Show which triggers are enabled."""
    from mailfiler.triggers import KeyValueScheduler, TriggerManager

    with _open_store() as store:
        status = TriggerManager(KeyValueScheduler(store.kv)).status()
    click.echo(f"  Cleanup (hourly):   {'on' if status.cleanup else 'off'}")
    click.echo(f"  Discovery (daily):  {'on' if status.discovery else 'off'}")


@triggers.command("enable")
@click.argument("name", type=_TRIGGER_NAMES)
def triggers_enable(name: str) -> None:
    """Enable the cleanup or discovery trigger."""
    from mailfiler.triggers import KeyValueScheduler, TriggerManager

    with _open_store() as store:
        manager = TriggerManager(KeyValueScheduler(store.kv))
        if name.lower() == "cleanup":
            manager.enable_cleanup()
        else:
            manager.enable_discovery()
    click.echo(f"{name.capitalize()} trigger enabled.")


@triggers.command("disable")
@click.argument("name", type=_TRIGGER_NAMES)
def triggers_disable(name: str) -> None:
    """Disable the cleanup or discovery trigger."""
    from mailfiler.triggers import KeyValueScheduler, TriggerManager

    with _open_store() as store:
        manager = TriggerManager(KeyValueScheduler(store.kv))
        if name.lower() == "cleanup":
            manager.disable_cleanup()
        else:
            manager.disable_discovery()
    click.echo(f"{name.capitalize()} trigger disabled.")


# ------------------------------------------------------------------
# mailfiler status
# ------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Quick overview of rules, recent filing and triggers."""
    from datetime import UTC, datetime, timedelta

    from mailfiler.audit.filing_log import FilingLog
    from mailfiler.rules import RuleManager
    from mailfiler.triggers import KeyValueScheduler, TriggerManager

    with _open_store() as store:
        stats = RuleManager(store).stats()
        trigger_status = TriggerManager(KeyValueScheduler(store.kv)).status()

    since = datetime.now(UTC) - timedelta(hours=24)
    filed = len(FilingLog(FILING_LOG_PATH).read_entries(since=since))

    click.echo("mailfiler Status")
    click.echo(f"  Rules:              {stats.total} ({stats.exact} exact, {stats.domain} domains)")
    click.echo(f"  Keyword rules:      {stats.keywords}")
    click.echo(f"  Exclusions:         {stats.exclusions}")
    click.echo(f"  Filed (24h):        {filed}")
    click.echo(f"  Cleanup trigger:    {'on' if trigger_status.cleanup else 'off'}")
    click.echo(f"  Discovery trigger:  {'on' if trigger_status.discovery else 'off'}")
