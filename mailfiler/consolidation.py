"""Consolidation analysis for the sender Rule Set.

Finds rules that are redundant or can be merged into a broader domain
wildcard, and applies such proposals to a rule mapping. Proposals are
independent: applying one can make a later one moot, and re-running the
analysis afterwards picks up anything left over.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping

from mailfiler.schemas.rules import (
    ConsolidationOpportunity,
    OpportunityKind,
    SenderPattern,
)

logger = logging.getLogger(__name__)

MIN_SUBDOMAINS_TO_MERGE = 2
MIN_ADDRESSES_TO_MERGE = 3


def _parent_domain(pattern: SenderPattern) -> str | None:
    """``@a.b.example.com`` -> ``@example.com``; None for a single-label domain."""
    parts = pattern.value[1:].split(".")
    if len(parts) < 2:
        return None
    return "@" + ".".join(parts[-2:])


def _analyze_group(label: str, patterns: list[SenderPattern]) -> list[ConsolidationOpportunity]:
    opportunities: list[ConsolidationOpportunity] = []
    domains = [p for p in patterns if p.is_domain]
    exacts = [p for p in patterns if not p.is_domain]
    domain_values = {p.value for p in domains}

    for exact in exacts:
        if exact.domain and exact.domain in domain_values:
            opportunities.append(
                ConsolidationOpportunity(
                    kind=OpportunityKind.REDUNDANT,
                    rules_to_remove=[exact.value],
                    label=label,
                    description=f"{exact.value} is redundant (covered by {exact.domain})",
                )
            )

    by_parent: dict[str, list[str]] = defaultdict(list)
    for domain in domains:
        parent = _parent_domain(domain)
        if parent:
            by_parent[parent].append(domain.value)

    for parent, subdomains in by_parent.items():
        if len(subdomains) >= MIN_SUBDOMAINS_TO_MERGE and parent not in domain_values:
            opportunities.append(
                ConsolidationOpportunity(
                    kind=OpportunityKind.DOMAIN_MERGE,
                    rules_to_remove=subdomains,
                    rule_to_add=parent,
                    label=label,
                    description=f"Merge {', '.join(subdomains)} → {parent}",
                )
            )

    by_domain: dict[str, list[str]] = defaultdict(list)
    for exact in exacts:
        if exact.domain:
            by_domain[exact.domain].append(exact.value)

    for domain, addresses in by_domain.items():
        if len(addresses) >= MIN_ADDRESSES_TO_MERGE and domain not in domain_values:
            opportunities.append(
                ConsolidationOpportunity(
                    kind=OpportunityKind.DOMAIN_MERGE,
                    rules_to_remove=addresses,
                    rule_to_add=domain,
                    label=label,
                    description=f"Merge {len(addresses)} emails → {domain}",
                )
            )

    return opportunities


def find_opportunities(rules: Mapping[str, str]) -> list[ConsolidationOpportunity]:
    """Analyze a Rule Set, label group by label group.

    Detects, within each label with at least two rules:

    - exact senders already covered by a domain wildcard (redundant);
    - two or more subdomain wildcards sharing a parent domain that has no
      rule of its own (merge into the parent);
    - three or more exact senders at one domain that has no wildcard
      (merge into the wildcard).
    """
    groups: dict[str, list[SenderPattern]] = defaultdict(list)
    for pattern, label in rules.items():
        groups[label].append(SenderPattern.parse(pattern))

    opportunities: list[ConsolidationOpportunity] = []
    for label, patterns in groups.items():
        if len(patterns) < 2:
            continue
        opportunities.extend(_analyze_group(label, patterns))

    logger.debug("Found %d consolidation opportunit(ies)", len(opportunities))
    return opportunities


def apply_opportunities(
    opportunities: Iterable[ConsolidationOpportunity],
    rules: dict[str, str],
) -> tuple[dict[str, str], int]:
    """Apply proposals to ``rules`` in place.

    Patterns already gone are skipped silently. Only removals are counted.

    Returns:
        The mutated mapping and the number of rules removed.
    """
    removed = 0
    for opportunity in opportunities:
        for pattern in opportunity.rules_to_remove:
            if pattern in rules:
                del rules[pattern]
                removed += 1
                logger.info("Removed: %s", pattern)
        if opportunity.rule_to_add:
            rules[opportunity.rule_to_add] = opportunity.label
            logger.info("Added: %s → %s", opportunity.rule_to_add, opportunity.label)
    return rules, removed
