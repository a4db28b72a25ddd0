"""Load/save for the four rule documents.

The Rule Set is a JSON object file (pattern -> label) written atomically.
Exclusions, keyword rules and filing stats are JSON documents kept in
separate key/value slots. Every document is loaded whole, mutated by the
caller and saved whole; there is no partial merge on save.

Loading never raises: a missing document is empty, and a malformed one is
logged and treated as empty so sweeps and discovery survive a corrupted
config.
"""

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import TypeVar

from pydantic import NonNegativeInt, TypeAdapter, ValidationError

from mailfiler.store.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

EXCLUSIONS_KEY = "exclusions"
KEYWORD_RULES_KEY = "keyword_rules"
FILING_STATS_KEY = "filing_stats"

_RULES = TypeAdapter(dict[str, str])
_EXCLUSIONS = TypeAdapter(list[str])
_STATS = TypeAdapter(dict[str, NonNegativeInt])

T = TypeVar("T")


def _decode(raw: str | bytes | None, adapter: TypeAdapter[T], what: str) -> T | None:
    """Validate a JSON document, returning None when absent or malformed."""
    if raw is None or not raw.strip():
        return None
    try:
        return adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning(
            "Malformed %s document, treating as empty (%d error(s)): %s",
            what,
            exc.error_count(),
            exc.errors()[0]["msg"],
        )
        return None


def _atomic_write(path: Path, content: str) -> None:
    """Write via temp file + rename so readers never see a torn file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class RuleStore:
    """Persistence for the Rule Set, Exclusion Set, Keyword Rules and Filing Stats.

    Usage::

        with KeyValueStore(STATE_DB_PATH) as kv:
            store = RuleStore(RULES_PATH, kv)
            rules = store.load_rules()
            rules["@example.com"] = "Newsletters"
            store.save_rules(rules)
    """

    def __init__(self, rules_path: str | Path, kv: KeyValueStore) -> None:
        self._rules_path = Path(rules_path)
        self._kv = kv

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    # --- Rule Set ---

    def load_rules(self) -> dict[str, str]:
        if not self._rules_path.exists():
            logger.info("Rules file not found at %s, starting with no rules", self._rules_path)
            return {}
        rules = _decode(self._rules_path.read_bytes(), _RULES, "rule set")
        return rules if rules is not None else {}

    def save_rules(self, rules: Mapping[str, str]) -> None:
        _atomic_write(self._rules_path, json.dumps(dict(rules), indent=2) + "\n")
        logger.debug("Saved %d rule(s) to %s", len(rules), self._rules_path)

    # --- Exclusions ---

    def load_exclusions(self) -> list[str]:
        exclusions = _decode(self._kv.get(EXCLUSIONS_KEY), _EXCLUSIONS, "exclusion")
        return exclusions if exclusions is not None else []

    def save_exclusions(self, exclusions: list[str]) -> None:
        self._kv.put(EXCLUSIONS_KEY, json.dumps(list(exclusions)))

    # --- Keyword rules ---

    def load_keyword_rules(self) -> dict[str, str]:
        rules = _decode(self._kv.get(KEYWORD_RULES_KEY), _RULES, "keyword rule")
        return rules if rules is not None else {}

    def save_keyword_rules(self, rules: Mapping[str, str]) -> None:
        self._kv.put(KEYWORD_RULES_KEY, json.dumps(dict(rules)))

    # --- Filing stats ---

    def load_filing_stats(self) -> dict[str, int]:
        stats = _decode(self._kv.get(FILING_STATS_KEY), _STATS, "filing stats")
        return stats if stats is not None else {}

    def save_filing_stats(self, stats: Mapping[str, int]) -> None:
        self._kv.put(FILING_STATS_KEY, json.dumps(dict(stats)))

    def increment_filing_stats(self, updates: Mapping[str, int]) -> None:
        """Add a batch of per-rule counts in a single load/save.

        Raises:
            ValueError: If any increment is negative.
        """
        if not updates:
            return
        negative = [key for key, count in updates.items() if count < 0]
        if negative:
            raise ValueError(f"Filing stats only increase; negative count for {negative}")

        stats = self.load_filing_stats()
        for key, count in updates.items():
            stats[key] = stats.get(key, 0) + count
        self.save_filing_stats(stats)
        logger.debug("Filing stats updated for %d rule(s)", len(updates))

    def reset_filing_stats(self) -> None:
        self.save_filing_stats({})
        logger.info("Filing stats reset")
