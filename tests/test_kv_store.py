"""Tests for mailfiler.store.kv_store — SQLite key/value slots."""

from mailfiler.store.kv_store import KeyValueStore


class TestKeyValueStore:
    def test_missing_key_is_none(self, kv):
        assert kv.get("nothing") is None

    def test_put_and_get(self, kv):
        kv.put("exclusions", '["a@b.com"]')
        assert kv.get("exclusions") == '["a@b.com"]'

    def test_put_replaces(self, kv):
        kv.put("k", "one")
        kv.put("k", "two")
        assert kv.get("k") == "two"
        assert kv.keys() == ["k"]

    def test_delete(self, kv):
        kv.put("k", "v")
        assert kv.delete("k") is True
        assert kv.delete("k") is False
        assert kv.get("k") is None

    def test_keys_sorted(self, kv):
        kv.put("b", "1")
        kv.put("a", "2")
        assert kv.keys() == ["a", "b"]

    def test_scopes_are_isolated(self, tmp_path):
        db = tmp_path / "shared.db"
        with KeyValueStore(db, scope="one") as first, KeyValueStore(db, scope="two") as second:
            first.put("k", "from-one")
            assert second.get("k") is None
            assert first.scope == "one"

    def test_persists_across_reopen(self, tmp_path):
        db = tmp_path / "nested" / "state.db"
        with KeyValueStore(db) as kv:
            kv.put("k", "v")
        with KeyValueStore(db) as kv:
            assert kv.get("k") == "v"
