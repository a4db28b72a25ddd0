"""Rule manager: add/update/delete/search over the rule documents.

Every operation is a load-modify-save unit over one document. Concurrent
invocations are not isolated; the last save wins.
"""

import logging
from collections.abc import Sequence

from mailfiler.audit.filing_log import FilingLog
from mailfiler.consolidation import apply_opportunities, find_opportunities
from mailfiler.integrations.ports import MailProvider
from mailfiler.router.matcher import extract_email, is_excluded, matches_pattern
from mailfiler.schemas.mail import MessageRef
from mailfiler.schemas.rules import (
    ConsolidationOpportunity,
    KeywordEntry,
    RuleEntry,
    RuleStats,
    SenderPattern,
)
from mailfiler.store.rule_store import RuleStore

logger = logging.getLogger(__name__)


def _contains(term: str, *fields: str) -> bool:
    lowered = term.lower()
    return any(lowered in field.lower() for field in fields)


class RuleManager:
    """Manages sender rules, exclusions, keyword rules and filing stats.

    Usage::

        mgr = RuleManager(RuleStore(RULES_PATH, kv))
        filed = await mgr.add_rule("@example.com", "Newsletters", provider=imap)
        for entry in mgr.search("news"):
            print(entry.pattern, entry.label)
    """

    def __init__(self, store: RuleStore, *, filing_log: FilingLog | None = None) -> None:
        self._store = store
        self._filing_log = filing_log

    @property
    def store(self) -> RuleStore:
        return self._store

    # --- Sender rules ---

    async def add_rule(
        self,
        pattern: str,
        label: str,
        *,
        provider: MailProvider | None = None,
        pending: Sequence[MessageRef] | None = None,
        auto_consolidate: bool = False,
    ) -> int:
        """Add or update a rule, then file pending mail that matches it.

        The rule is saved first. Unless the pattern is excluded, every
        pending message whose sender matches ``pattern`` directly is filed
        and counted under the pattern in the filing stats. When ``pending``
        is None and a provider is given, the provider's inbox is used.

        Args:
            pattern: Exact address or ``@domain`` wildcard.
            label: Destination category.
            provider: MailProvider used to file matching messages.
            pending: Messages to consider for immediate filing.
            auto_consolidate: Run a consolidation pass afterwards.

        Returns:
            Number of messages filed.

        Raises:
            ValueError: If the pattern or label is empty.
        """
        if not pattern.strip():
            raise ValueError("Rule pattern must not be empty")
        if not label.strip():
            raise ValueError("Rule label must not be empty")

        rules = self._store.load_rules()
        rules[pattern] = label
        self._store.save_rules(rules)
        logger.info("Rule saved: %s → %s", pattern, label)

        filed = 0
        if is_excluded(self._store.load_exclusions(), pattern):
            logger.info("%s is in exclusion list, skipping immediate filing", pattern)
        elif provider is not None:
            filed = await self._file_pending(pattern, label, provider, pending)

        if auto_consolidate:
            opportunities = self.find_opportunities()
            if opportunities:
                self.consolidate(opportunities)

        return filed

    async def _file_pending(
        self,
        pattern: str,
        label: str,
        provider: MailProvider,
        pending: Sequence[MessageRef] | None,
    ) -> int:
        if pending is None:
            pending = await provider.get_inbox()

        matched: list[tuple[MessageRef, str]] = []
        for item in pending:
            sender = extract_email(item.sender_header)
            if matches_pattern(pattern, sender):
                matched.append((item, sender))
        if not matched:
            return 0

        items = [item for item, _sender in matched]
        await provider.apply_category(items, label)
        await provider.archive(items)
        self._store.increment_filing_stats({pattern: len(items)})

        if self._filing_log:
            for item, sender in matched:
                self._filing_log.log_filed(
                    item, sender=sender, label=label, rule_key=pattern, source="add_rule"
                )
        logger.info("Filed %d existing message(s) to %s", len(items), label)
        return len(items)

    def delete_rule(self, pattern: str) -> bool:
        """Delete a rule. Returns True if it existed."""
        rules = self._store.load_rules()
        if pattern not in rules:
            logger.info("Rule not found: %s", pattern)
            return False
        del rules[pattern]
        self._store.save_rules(rules)
        logger.info("Rule deleted: %s", pattern)
        return True

    def search(self, term: str | None = None) -> list[RuleEntry]:
        """List rules, optionally filtered on pattern or label, sorted by pattern."""
        rules = self._store.load_rules()
        entries = [
            RuleEntry(pattern=pattern, label=label)
            for pattern, label in rules.items()
            if not term or _contains(term, pattern, label)
        ]
        return sorted(entries, key=lambda e: e.pattern)

    def stats(self) -> RuleStats:
        """Count rules by shape, plus exclusions and keyword rules."""
        rules = self._store.load_rules()
        domain = sum(1 for pattern in rules if SenderPattern.parse(pattern).is_domain)
        return RuleStats(
            total=len(rules),
            exact=len(rules) - domain,
            domain=domain,
            exclusions=len(self._store.load_exclusions()),
            keywords=len(self._store.load_keyword_rules()),
        )

    # --- Consolidation ---

    def find_opportunities(self) -> list[ConsolidationOpportunity]:
        return find_opportunities(self._store.load_rules())

    def consolidate(self, opportunities: Sequence[ConsolidationOpportunity] | None = None) -> int:
        """Apply consolidation proposals with a single save.

        Args:
            opportunities: Proposals to apply; analyzed fresh when None.

        Returns:
            Number of rules removed.
        """
        if opportunities is None:
            opportunities = self.find_opportunities()
        if not opportunities:
            logger.info("No consolidation opportunities found")
            return 0

        rules, removed = apply_opportunities(opportunities, self._store.load_rules())
        self._store.save_rules(rules)
        logger.info("Consolidation complete: %d rule(s) simplified", removed)
        return removed

    # --- Labels ---

    def rename_label(self, old_name: str, new_name: str) -> int:
        """Point every rule for ``old_name`` at ``new_name``.

        Use after renaming the folder in the mail client; no mail is moved.
        """
        rules = self._store.load_rules()
        updated = 0
        for pattern, label in rules.items():
            if label == old_name:
                rules[pattern] = new_name
                updated += 1
        self._store.save_rules(rules)
        logger.info('%d rule(s) now point to "%s"', updated, new_name)
        return updated

    async def migrate_label(self, old_name: str, new_name: str, *, provider: MailProvider) -> int:
        """Move all mail from one category to another, delete the old one, update rules.

        Returns:
            Number of rules repointed.
        """
        categories = {c.name for c in await provider.list_categories()}
        if old_name in categories:
            items = await provider.get_items(old_name)
            if items:
                await provider.apply_category(items, new_name)
            else:
                await provider.create_category(new_name)
            await provider.delete_category(old_name)
            logger.info("Migrated category %s → %s (%d message(s))", old_name, new_name, len(items))
        else:
            logger.info("Category %s not found, updating rules only", old_name)
        return self.rename_label(old_name, new_name)

    # --- Exclusions ---

    def add_exclusion(self, pattern: str) -> bool:
        """Exclude a sender or domain. Returns False if already excluded.

        Raises:
            ValueError: If the pattern is empty.
        """
        normalized = pattern.strip().lower()
        if not normalized:
            raise ValueError("Exclusion pattern must not be empty")
        exclusions = self._store.load_exclusions()
        if normalized in exclusions:
            logger.info("Already excluded: %s", normalized)
            return False
        exclusions.append(normalized)
        self._store.save_exclusions(exclusions)
        logger.info("Exclusion added: %s", normalized)
        return True

    def remove_exclusion(self, pattern: str) -> bool:
        """Lift an exclusion. Returns True if it was present."""
        normalized = pattern.strip().lower()
        exclusions = self._store.load_exclusions()
        if normalized not in exclusions:
            logger.info("Exclusion not found: %s", normalized)
            return False
        exclusions.remove(normalized)
        self._store.save_exclusions(exclusions)
        logger.info("Exclusion removed: %s", normalized)
        return True

    def list_exclusions(self, term: str | None = None) -> list[str]:
        exclusions = self._store.load_exclusions()
        if term:
            exclusions = [p for p in exclusions if term.lower() in p]
        return sorted(exclusions)

    # --- Keyword rules ---

    def add_keyword_rule(self, keyword: str, label: str) -> None:
        """Add or update a subject keyword rule.

        Raises:
            ValueError: If the keyword or label is empty.
        """
        keyword = keyword.strip()
        if not keyword:
            raise ValueError("Keyword must not be empty")
        if not label.strip():
            raise ValueError("Keyword rule label must not be empty")
        rules = self._store.load_keyword_rules()
        rules[keyword] = label
        self._store.save_keyword_rules(rules)
        logger.info('Keyword rule saved: "%s" → %s', keyword, label)

    def delete_keyword_rule(self, keyword: str) -> bool:
        """Delete a keyword rule. Returns True if it existed."""
        rules = self._store.load_keyword_rules()
        if keyword not in rules:
            return False
        del rules[keyword]
        self._store.save_keyword_rules(rules)
        logger.info('Keyword rule deleted: "%s"', keyword)
        return True

    def list_keyword_rules(self, term: str | None = None) -> list[KeywordEntry]:
        rules = self._store.load_keyword_rules()
        entries = [
            KeywordEntry(keyword=keyword, label=label)
            for keyword, label in rules.items()
            if not term or _contains(term, keyword, label)
        ]
        return sorted(entries, key=lambda e: e.keyword)

    # --- Filing stats ---

    def filing_stats(self) -> dict[str, int]:
        return self._store.load_filing_stats()

    def reset_filing_stats(self) -> None:
        self._store.reset_filing_stats()
