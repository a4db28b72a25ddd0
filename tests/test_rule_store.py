"""Tests for mailfiler.store.rule_store — the four rule documents.

Covers: missing documents, round trips, malformed documents treated as
empty, and filing stats batching.
"""

import json
import logging

import pytest

from mailfiler.store.rule_store import (
    EXCLUSIONS_KEY,
    FILING_STATS_KEY,
    KEYWORD_RULES_KEY,
    RuleStore,
)


class TestRuleSet:
    def test_missing_file_is_empty(self, store):
        assert store.load_rules() == {}

    def test_round_trip_keeps_order(self, store):
        rules = {"z@z.com": "Z", "@a.com": "A", "m@m.com": "M"}
        store.save_rules(rules)
        assert list(store.load_rules().items()) == list(rules.items())

    def test_file_format(self, tmp_path, kv):
        path = tmp_path / "sub" / "rules.json"
        RuleStore(path, kv).save_rules({"@co.com": "Work"})
        content = path.read_text()
        assert content.endswith("\n")
        assert json.loads(content) == {"@co.com": "Work"}
        assert '\n  "@co.com"' in content

    def test_invalid_json_treated_as_empty(self, tmp_path, kv, caplog):
        path = tmp_path / "rules.json"
        path.write_text("{not json")
        with caplog.at_level(logging.WARNING):
            assert RuleStore(path, kv).load_rules() == {}
        assert "Malformed rule set" in caplog.text

    def test_invalid_utf8_treated_as_empty(self, tmp_path, kv, caplog):
        path = tmp_path / "rules.json"
        path.write_bytes(b'{"a@b.com": "\xff\xfe"}')
        with caplog.at_level(logging.WARNING):
            assert RuleStore(path, kv).load_rules() == {}
        assert "Malformed rule set" in caplog.text

    def test_wrong_shape_treated_as_empty(self, tmp_path, kv):
        path = tmp_path / "rules.json"
        path.write_text('["a@b.com"]')
        assert RuleStore(path, kv).load_rules() == {}

    def test_no_temp_files_left_behind(self, tmp_path, kv):
        store = RuleStore(tmp_path / "rules.json", kv)
        store.save_rules({"a@b.com": "X"})
        store.save_rules({"a@b.com": "Y"})
        assert [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []


class TestExclusionsAndKeywords:
    def test_exclusions_default_empty(self, store):
        assert store.load_exclusions() == []

    def test_exclusions_round_trip(self, store, kv):
        store.save_exclusions(["boss@co.com", "@bank.com"])
        assert store.load_exclusions() == ["boss@co.com", "@bank.com"]
        assert json.loads(kv.get(EXCLUSIONS_KEY)) == ["boss@co.com", "@bank.com"]

    def test_malformed_exclusions(self, store, kv):
        kv.put(EXCLUSIONS_KEY, '{"not": "a list"}')
        assert store.load_exclusions() == []

    def test_keyword_rules_round_trip(self, store, kv):
        store.save_keyword_rules({"invoice": "Receipts"})
        assert store.load_keyword_rules() == {"invoice": "Receipts"}
        assert KEYWORD_RULES_KEY in kv.keys()


class TestFilingStats:
    def test_increment_accumulates(self, store):
        store.increment_filing_stats({"@co.com": 2})
        store.increment_filing_stats({"@co.com": 3, "keyword:invoice": 1})
        assert store.load_filing_stats() == {"@co.com": 5, "keyword:invoice": 1}

    def test_round_trip_unchanged(self, store, kv):
        store.increment_filing_stats({"@co.com": 3, "keyword:invoice": 1})
        before = kv.get(FILING_STATS_KEY)

        store.save_filing_stats(store.load_filing_stats())

        assert kv.get(FILING_STATS_KEY) == before
        assert store.load_filing_stats() == {"@co.com": 3, "keyword:invoice": 1}

    def test_empty_batch_writes_nothing(self, store, kv):
        store.increment_filing_stats({})
        assert kv.get(FILING_STATS_KEY) is None

    def test_negative_count_rejected(self, store):
        with pytest.raises(ValueError, match="only increase"):
            store.increment_filing_stats({"@co.com": -1})
        assert store.load_filing_stats() == {}

    def test_reset_saves_empty_document(self, store, kv):
        store.increment_filing_stats({"@co.com": 2})
        store.reset_filing_stats()
        assert store.load_filing_stats() == {}
        assert kv.get(FILING_STATS_KEY) == "{}"

    def test_negative_stored_value_is_malformed(self, store, kv):
        kv.put(FILING_STATS_KEY, '{"@co.com": -4}')
        assert store.load_filing_stats() == {}
