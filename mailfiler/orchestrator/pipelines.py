"""Pipeline handlers for sweeping the inbox and discovering rules.

Each handler encapsulates a complete pipeline against a MailProvider and a
RuleStore. CLI commands and scheduled runs both call these handlers.
"""

import logging
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Sequence

from mailfiler.audit.filing_log import FilingLog
from mailfiler.integrations.ports import MailProvider
from mailfiler.router.matcher import Matcher, extract_email
from mailfiler.schemas.mail import MessageRef
from mailfiler.schemas.rules import DiscoveryResult, MatchRecord
from mailfiler.store.rule_store import RuleStore

logger = logging.getLogger(__name__)

CHECKPOINT_EVERY = 10


def plan_sweep(
    items: Sequence[MessageRef], matcher: Matcher
) -> list[tuple[MessageRef, MatchRecord]]:
    """Resolve every message; unmatched messages are left out.

    Both dry-run and live sweeps go through this, so they always agree on
    which message goes where.
    """
    planned: list[tuple[MessageRef, MatchRecord]] = []
    for item in items:
        sender = extract_email(item.sender_header)
        subject = item.subject or ""
        match = matcher.resolve(sender, subject)
        if match is None:
            continue
        planned.append(
            (
                item,
                MatchRecord(
                    sender=sender,
                    subject=subject,
                    label=match.label,
                    rule_key=match.rule_key,
                ),
            )
        )
    return planned


async def run_sweep(
    *,
    provider: MailProvider,
    store: RuleStore,
    dry_run: bool = False,
    limit: int = 0,
    filing_log: FilingLog | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> list[MatchRecord] | None:
    """Sweep the inbox and file every message that matches a rule.

    Flow:
    1. Load the Rule Set, exclusions and keyword rules once.
    2. Fetch the inbox and resolve each message.
    3. Dry run: return the match records, touching nothing.
    4. Live: file and archive per label, then flush filing stats in one write.

    A label whose filing fails is logged and skipped; the rest of the sweep
    continues and the failed messages are not counted.

    Args:
        provider: An open MailProvider.
        store: Rule persistence.
        dry_run: Compute matches without filing or counting anything.
        limit: Maximum inbox messages to examine (0 = all).
        filing_log: Optional audit log for filed messages.
        on_progress: Optional callback for progress messages.

    Returns:
        The match records in dry-run mode, otherwise None.
    """

    def _emit(msg: str) -> None:
        if on_progress:
            on_progress(msg)

    matcher = Matcher(store.load_rules(), store.load_exclusions(), store.load_keyword_rules())

    items = await provider.get_inbox(limit=limit)
    _emit(f"Examining {len(items)} inbox message(s)...")
    planned = plan_sweep(items, matcher)

    if dry_run:
        _emit(f"Dry run: {len(planned)} message(s) would be filed.")
        return [record for _item, record in planned]

    by_label: dict[str, list[tuple[MessageRef, MatchRecord]]] = defaultdict(list)
    for item, record in planned:
        by_label[record.label].append((item, record))

    stat_updates: Counter[str] = Counter()
    errors = 0
    for label, batch in by_label.items():
        batch_items = [item for item, _record in batch]
        try:
            await provider.apply_category(batch_items, label)
            await provider.archive(batch_items)
        except Exception:
            errors += len(batch)
            logger.exception("Error filing %d message(s) to %s", len(batch), label)
            _emit(f"  ERROR: Failed to file {len(batch)} message(s) to {label}")
            continue

        for item, record in batch:
            stat_updates[record.rule_key] += 1
            if filing_log:
                filing_log.log_filed(
                    item,
                    sender=record.sender,
                    label=label,
                    rule_key=record.rule_key,
                    source="sweep",
                )
        _emit(f"  Filed {len(batch)} message(s) to {label}")

    store.increment_filing_stats(stat_updates)
    filed = sum(stat_updates.values())
    logger.info("Sweep complete: %d filed, %d error(s)", filed, errors)
    _emit(f"\nDone. Filed: {filed}, Errors: {errors}")
    return None


async def run_discovery(
    *,
    provider: MailProvider,
    store: RuleStore,
    per_label_limit: int = 30,
    time_budget_ms: int = 5 * 60 * 1000,
    clock: Callable[[], float] = time.monotonic,
    on_progress: Callable[[str], None] | None = None,
) -> DiscoveryResult:
    """Infer exact-sender rules from mail already sitting in categories.

    For every non-system category, the senders of its most recent messages
    are mapped to that category. A sender seen under several categories ends
    up mapped to the last one scanned.

    The elapsed time is checked before each category; once it exceeds
    ``time_budget_ms`` the run stops. Whatever was found is saved exactly
    once at the end, including after an early exit or an error.

    Args:
        provider: An open MailProvider.
        store: Rule persistence.
        per_label_limit: Messages to sample per category.
        time_budget_ms: Wall-clock budget for the whole run.
        clock: Monotonic seconds source.
        on_progress: Optional callback for progress messages.

    Returns:
        DiscoveryResult with counts and whether the budget ran out.
    """

    def _emit(msg: str) -> None:
        if on_progress:
            on_progress(msg)

    categories = await provider.list_categories()
    rules = store.load_rules()
    result = DiscoveryResult()
    start = clock()

    logger.info("Starting rule discovery across %d categories", len(categories))
    _emit(f"Scanning {len(categories)} categories...")

    try:
        for i, category in enumerate(categories):
            if (clock() - start) * 1000 > time_budget_ms:
                result.timed_out = True
                logger.info("Time limit reached after %d categories, saving progress", i)
                _emit(f"Time limit reached after {i} categories, saving progress.")
                break

            if category.is_system:
                result.categories_skipped += 1
                continue

            try:
                items = await provider.get_items(category.name, limit=per_label_limit)
            except Exception:
                result.categories_skipped += 1
                logger.exception("Error reading category %s", category.name)
                continue

            for item in items:
                sender = extract_email(item.sender_header)
                if sender and rules.get(sender) != category.name:
                    rules[sender] = category.name
                    result.new_rules += 1

            result.categories_scanned += 1
            if i % CHECKPOINT_EVERY == 0:
                logger.info("Checkpoint: processed %d/%d categories", i + 1, len(categories))
    finally:
        store.save_rules(rules)
        result.total_rules = len(rules)

    logger.info(
        "Discovery complete: %d new rule(s), %d total", result.new_rules, result.total_rules
    )
    _emit(f"Done. {result.new_rules} new rule(s), {result.total_rules} total.")
    return result
