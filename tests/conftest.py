"""Shared fixtures for mailfiler tests."""

from unittest.mock import AsyncMock

import pytest

from mailfiler.store.kv_store import KeyValueStore
from mailfiler.store.rule_store import RuleStore


@pytest.fixture()
def kv(tmp_path):
    """A fresh key/value store in a temp directory."""
    store = KeyValueStore(tmp_path / "state.db")
    yield store
    store.close()


@pytest.fixture()
def store(tmp_path, kv):
    """A RuleStore whose rule file does not exist yet."""
    return RuleStore(tmp_path / "mail-rules.json", kv)


@pytest.fixture()
def provider():
    """An AsyncMock MailProvider with an empty mailbox."""
    mock = AsyncMock()
    mock.get_inbox.return_value = []
    mock.get_items.return_value = []
    mock.list_categories.return_value = []
    return mock
