"""Tests for the sweep pipeline (mailfiler.orchestrator.pipelines.run_sweep).

Uses an AsyncMock MailProvider; no IMAP connection is made.
"""

from mailfiler.audit.filing_log import FilingLog
from mailfiler.orchestrator.pipelines import plan_sweep, run_sweep
from mailfiler.router.matcher import Matcher
from mailfiler.schemas.mail import MessageRef
from mailfiler.store.rule_store import FILING_STATS_KEY


def _ref(uid: str, sender: str, subject: str = "", folder: str = "INBOX") -> MessageRef:
    return MessageRef(uid=uid, folder=folder, sender_header=sender, subject=subject)


def _inbox() -> list[MessageRef]:
    return [
        _ref("1", "Alice <alice@co.com>", "Lunch?"),
        _ref("2", "Bob <bob@co.com>", "Standup"),
        _ref("3", "Shop <orders@shop.com>", "Your invoice"),
        _ref("4", "Stranger <who@nowhere.org>", "Hi"),
        _ref("5", "Boss <boss@co.com>", "Urgent"),
    ]


def _seed(store):
    store.save_rules({"alice@co.com": "People", "@co.com": "Work"})
    store.save_exclusions(["boss@co.com"])
    store.save_keyword_rules({"invoice": "Receipts"})


class TestPlanSweep:
    def test_unmatched_left_out(self):
        planned = plan_sweep(_inbox(), Matcher({"@co.com": "Work"}, ["boss@co.com"]))
        assert [item.uid for item, _record in planned] == ["1", "2"]
        assert planned[0][1].sender == "alice@co.com"


class TestRunSweepLive:
    async def test_files_by_label(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = _inbox()

        result = await run_sweep(provider=provider, store=store)

        assert result is None
        applied = {
            call.args[1]: [i.uid for i in call.args[0]]
            for call in provider.apply_category.await_args_list
        }
        assert applied == {"People": ["1"], "Work": ["2"], "Receipts": ["3"]}
        archived = sorted(i.uid for call in provider.archive.await_args_list for i in call.args[0])
        assert archived == ["1", "2", "3"]

    async def test_stats_counted_per_rule_key(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = _inbox()

        await run_sweep(provider=provider, store=store)

        assert store.load_filing_stats() == {
            "alice@co.com": 1,
            "@co.com": 1,
            "keyword:invoice": 1,
        }

    async def test_excluded_sender_untouched(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = [_ref("5", "Boss <boss@co.com>")]

        await run_sweep(provider=provider, store=store)

        provider.apply_category.assert_not_awaited()
        provider.archive.assert_not_awaited()

    async def test_empty_inbox_writes_no_stats(self, store, kv, provider):
        _seed(store)
        await run_sweep(provider=provider, store=store)
        assert kv.get(FILING_STATS_KEY) is None

    async def test_limit_passed_to_provider(self, store, provider):
        await run_sweep(provider=provider, store=store, limit=25)
        provider.get_inbox.assert_awaited_once_with(limit=25)

    async def test_failed_label_skipped_and_not_counted(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = _inbox()

        def _apply(items, name):
            if name == "Work":
                raise ConnectionError("IMAP dropped")

        provider.apply_category.side_effect = _apply
        messages = []

        await run_sweep(provider=provider, store=store, on_progress=messages.append)

        stats = store.load_filing_stats()
        assert "@co.com" not in stats
        assert stats == {"alice@co.com": 1, "keyword:invoice": 1}
        assert any("ERROR" in m and "Work" in m for m in messages)
        assert "Errors: 1" in messages[-1]

    async def test_filing_log_written(self, store, provider, tmp_path):
        _seed(store)
        provider.get_inbox.return_value = _inbox()
        log = FilingLog(tmp_path / "filing.jsonl")

        await run_sweep(provider=provider, store=store, filing_log=log)

        entries = log.read_entries()
        assert sorted(e.uid for e in entries) == ["1", "2", "3"]
        assert all(e.source == "sweep" for e in entries)
        receipt = next(e for e in entries if e.uid == "3")
        assert receipt.rule_key == "keyword:invoice"
        assert receipt.sender == "orders@shop.com"


class TestRunSweepDryRun:
    async def test_dry_run_touches_nothing(self, store, kv, provider):
        _seed(store)
        provider.get_inbox.return_value = _inbox()

        records = await run_sweep(provider=provider, store=store, dry_run=True)

        assert len(records) == 3
        provider.apply_category.assert_not_awaited()
        provider.archive.assert_not_awaited()
        assert kv.get(FILING_STATS_KEY) is None

    async def test_dry_run_agrees_with_live_run(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = _inbox()

        records = await run_sweep(provider=provider, store=store, dry_run=True)
        await run_sweep(provider=provider, store=store)

        planned = sorted((r.sender, r.label) for r in records)
        filed = sorted(
            (item.sender_header.split("<")[1].rstrip(">"), call.args[1])
            for call in provider.apply_category.await_args_list
            for item in call.args[0]
        )
        assert planned == filed

    async def test_dry_run_record_fields(self, store, provider):
        _seed(store)
        provider.get_inbox.return_value = [_ref("3", "Shop <orders@shop.com>", "Your invoice")]

        records = await run_sweep(provider=provider, store=store, dry_run=True)

        assert records[0].sender == "orders@shop.com"
        assert records[0].subject == "Your invoice"
        assert records[0].label == "Receipts"
        assert records[0].rule_key == "keyword:invoice"
