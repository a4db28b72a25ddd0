"""Deterministic rule resolution for incoming mail.

Given a sender address and subject, picks the single applicable rule:
exclusions first, then exact sender, then ``@domain`` wildcard, then subject
keywords. No I/O — pure Python logic over already-loaded rule documents.
"""

import logging
import re
from collections.abc import Iterable, Mapping

from mailfiler.schemas.rules import DOMAIN_SIGIL, KeywordPattern, RuleMatch, SenderPattern

logger = logging.getLogger(__name__)

_ANGLE_ADDRESS = re.compile(r"<([^<>]*)>")


def extract_email(sender_header: str) -> str:
    """Reduce ``Display Name <address@host>`` to ``address@host``.

    Uses the first angle-bracket pair; a header without brackets is
    returned unchanged.
    """
    match = _ANGLE_ADDRESS.search(sender_header)
    return match.group(1) if match else sender_header


def domain_of(address: str) -> str:
    """Return ``@`` + the text after the last ``@``, or "" if there is none."""
    if DOMAIN_SIGIL not in address:
        return ""
    return DOMAIN_SIGIL + address.rpartition(DOMAIN_SIGIL)[2]


def is_excluded(exclusions: Iterable[str], address: str) -> bool:
    """Case-insensitive check of an address (or its domain) against exclusions."""
    excluded = {pattern.lower() for pattern in exclusions}
    if not excluded:
        return False
    lowered = address.lower()
    domain = domain_of(lowered)
    return lowered in excluded or (bool(domain) and domain in excluded)


def matches_pattern(pattern: str, address: str) -> bool:
    """Direct lookup of one address against one sender pattern.

    Used when a new rule files existing inbox mail; unlike :class:`Matcher`
    this ignores every other rule and compares case-insensitively.
    """
    parsed = SenderPattern.parse(pattern)
    lowered = address.lower()
    if parsed.is_domain:
        return domain_of(lowered) == parsed.value.lower()
    return lowered == parsed.value.lower()


class Matcher:
    """Resolves messages against one snapshot of the rule documents.

    Usage::

        matcher = Matcher(rules, exclusions, keyword_rules)
        match = matcher.resolve("alice@co.com", "Invoice attached")
        if match:
            print(match.label, match.rule_key)
    """

    def __init__(
        self,
        rules: Mapping[str, str],
        exclusions: Iterable[str] = (),
        keyword_rules: Mapping[str, str] | None = None,
    ) -> None:
        self._rules = rules
        self._excluded = {pattern.lower() for pattern in exclusions}
        # Insertion order is the evaluation order; empty keywords would match everything.
        self._keywords = [
            (KeywordPattern(keyword=keyword), keyword.lower(), label)
            for keyword, label in (keyword_rules or {}).items()
            if keyword
        ]

    def resolve(self, sender: str, subject: str | None = None) -> RuleMatch | None:
        """Return the applicable rule for a sender/subject, or None."""
        lowered = sender.lower()
        lowered_domain = domain_of(lowered)
        if lowered in self._excluded or (lowered_domain and lowered_domain in self._excluded):
            logger.debug("Sender %s is excluded", sender)
            return None

        # Exact match compares the address as received.
        label = self._rules.get(sender)
        if label is not None:
            return RuleMatch(label=label, rule_key=sender)

        domain = domain_of(sender)
        if domain:
            label = self._rules.get(domain)
            if label is not None:
                return RuleMatch(label=label, rule_key=domain)

        if subject and self._keywords:
            subject_lower = subject.lower()
            for pattern, keyword_lower, label in self._keywords:
                if keyword_lower in subject_lower:
                    return RuleMatch(label=label, rule_key=pattern.rule_key)

        return None


def resolve(
    rules: Mapping[str, str],
    exclusions: Iterable[str],
    keyword_rules: Mapping[str, str] | None,
    sender: str,
    subject: str | None = None,
) -> RuleMatch | None:
    """One-shot resolution; build a :class:`Matcher` when resolving many messages."""
    return Matcher(rules, exclusions, keyword_rules).resolve(sender, subject)
