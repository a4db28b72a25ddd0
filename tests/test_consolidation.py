"""Tests for mailfiler.consolidation — redundant and mergeable rules."""

from mailfiler.consolidation import apply_opportunities, find_opportunities
from mailfiler.schemas.rules import ConsolidationOpportunity, OpportunityKind


class TestFindOpportunities:
    def test_empty_rules(self):
        assert find_opportunities({}) == []

    def test_exact_covered_by_domain_is_redundant(self):
        opps = find_opportunities({"@co.com": "Work", "alice@co.com": "Work"})
        assert len(opps) == 1
        assert opps[0].kind == OpportunityKind.REDUNDANT
        assert opps[0].rules_to_remove == ["alice@co.com"]
        assert opps[0].rule_to_add is None
        assert opps[0].label == "Work"

    def test_different_labels_not_redundant(self):
        assert find_opportunities({"@co.com": "Work", "alice@co.com": "People"}) == []

    def test_subdomains_merge_into_parent(self):
        opps = find_opportunities({"@mail.example.com": "News", "@promo.example.com": "News"})
        assert len(opps) == 1
        assert opps[0].kind == OpportunityKind.DOMAIN_MERGE
        assert opps[0].rule_to_add == "@example.com"
        assert sorted(opps[0].rules_to_remove) == ["@mail.example.com", "@promo.example.com"]

    def test_no_subdomain_merge_when_parent_exists(self):
        rules = {
            "@example.com": "News",
            "@mail.example.com": "News",
            "@promo.example.com": "News",
        }
        assert find_opportunities(rules) == []

    def test_three_addresses_merge_into_domain(self):
        rules = {"a@shop.com": "Shopping", "b@shop.com": "Shopping", "c@shop.com": "Shopping"}
        opps = find_opportunities(rules)
        assert len(opps) == 1
        assert opps[0].rule_to_add == "@shop.com"
        assert opps[0].rules_to_remove == ["a@shop.com", "b@shop.com", "c@shop.com"]
        assert "3 emails" in opps[0].description

    def test_two_addresses_not_enough(self):
        assert find_opportunities({"a@shop.com": "Shopping", "b@shop.com": "Shopping"}) == []

    def test_single_rule_label_skipped(self):
        assert find_opportunities({"@a.example.com": "X", "@b.example.com": "Y"}) == []


class TestApplyOpportunities:
    def test_apply_merge(self):
        rules = {"a@shop.com": "S", "b@shop.com": "S", "c@shop.com": "S", "x@y.com": "Other"}
        rules, removed = apply_opportunities(find_opportunities(rules), rules)
        assert removed == 3
        assert rules == {"x@y.com": "Other", "@shop.com": "S"}

    def test_apply_redundant(self):
        rules = {"@co.com": "Work", "alice@co.com": "Work"}
        rules, removed = apply_opportunities(find_opportunities(rules), rules)
        assert removed == 1
        assert rules == {"@co.com": "Work"}

    def test_missing_patterns_skipped(self):
        opp = ConsolidationOpportunity(
            kind=OpportunityKind.DOMAIN_MERGE,
            rules_to_remove=["gone@co.com", "here@co.com"],
            rule_to_add="@co.com",
            label="Work",
        )
        rules, removed = apply_opportunities([opp], {"here@co.com": "Work"})
        assert removed == 1
        assert rules == {"@co.com": "Work"}

    def test_reanalysis_after_apply_is_clean(self):
        rules = {
            "@co.com": "Work",
            "alice@co.com": "Work",
            "a@shop.com": "S",
            "b@shop.com": "S",
            "c@shop.com": "S",
        }
        rules, _removed = apply_opportunities(find_opportunities(rules), rules)
        assert find_opportunities(rules) == []
