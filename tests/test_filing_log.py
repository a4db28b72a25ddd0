"""Tests for the filing audit log (mailfiler/audit/filing_log.py)."""

import json
from datetime import UTC, datetime, timedelta

from mailfiler.audit.filing_log import FilingLog
from mailfiler.schemas.mail import FilingEntry, MessageRef


def _entry(uid: str, when: datetime) -> FilingEntry:
    return FilingEntry(
        timestamp=when,
        uid=uid,
        folder="INBOX",
        sender="a@co.com",
        subject="Hello",
        label="Work",
        rule_key="@co.com",
        source="sweep",
    )


class TestFilingLog:
    def test_missing_file(self, tmp_path):
        assert FilingLog(tmp_path / "none.jsonl").read_entries() == []

    def test_log_filed_appends_jsonl(self, tmp_path):
        path = tmp_path / "audit" / "filing.jsonl"
        log = FilingLog(path)
        item = MessageRef(uid="7", folder="INBOX", sender_header="A <a@co.com>", subject="Hi")

        entry = log.log_filed(
            item, sender="a@co.com", label="Work", rule_key="@co.com", source="sweep"
        )

        lines = path.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["uid"] == "7"
        assert entry.subject == "Hi"
        assert entry.timestamp.tzinfo is not None

    def test_since_filter(self, tmp_path):
        log = FilingLog(tmp_path / "filing.jsonl")
        now = datetime.now(UTC)
        log.log(_entry("old", now - timedelta(days=2)))
        log.log(_entry("new", now))

        entries = log.read_entries(since=now - timedelta(hours=24))

        assert [e.uid for e in entries] == ["new"]

    def test_limit_keeps_newest(self, tmp_path):
        log = FilingLog(tmp_path / "filing.jsonl")
        now = datetime.now(UTC)
        for i in range(5):
            log.log(_entry(str(i), now))

        assert [e.uid for e in log.read_entries(limit=2)] == ["3", "4"]

    def test_source_filter(self, tmp_path):
        log = FilingLog(tmp_path / "filing.jsonl")
        now = datetime.now(UTC)
        log.log(_entry("swept", now))
        log.log(_entry("added", now).model_copy(update={"source": "add_rule"}))

        assert [e.uid for e in log.read_entries(source="add_rule")] == ["added"]

    def test_malformed_line_skipped(self, tmp_path):
        path = tmp_path / "filing.jsonl"
        log = FilingLog(path)
        log.log(_entry("1", datetime.now(UTC)))
        with path.open("a") as f:
            f.write("{truncated\n")
        log.log(_entry("2", datetime.now(UTC)))

        assert [e.uid for e in log.read_entries()] == ["1", "2"]
