"""Append-only audit log of messages filed by mailfiler.

Writes FilingEntry records as JSON Lines (one JSON object per line).
Filing stats keep lifetime counts per rule; this log keeps the individual
messages behind them.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import ValidationError

from mailfiler.schemas.mail import FilingEntry, MessageRef

logger = logging.getLogger(__name__)


class FilingLog:
    """Append-only JSONL log of filed messages.

    Usage::

        log = FilingLog("/path/to/filing.jsonl")
        log.log_filed(item, sender="a@b.com", label="Receipts", rule_key="@b.com", source="sweep")

        entries = log.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: FilingEntry) -> None:
        """Append a single entry to the log file."""
        with self._path.open("a") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug(
            "Filing log: uid=%s sender=%s label=%s rule=%s",
            entry.uid,
            entry.sender,
            entry.label,
            entry.rule_key,
        )

    def log_filed(
        self,
        item: MessageRef,
        *,
        sender: str,
        label: str,
        rule_key: str,
        source: Literal["sweep", "add_rule"],
    ) -> FilingEntry:
        entry = FilingEntry(
            timestamp=datetime.now(UTC),
            uid=item.uid,
            folder=item.folder,
            sender=sender,
            subject=item.subject,
            label=label,
            rule_key=rule_key,
            source=source,
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        source: Literal["sweep", "add_rule"] | None = None,
        limit: int | None = None,
    ) -> list[FilingEntry]:
        """Read filed messages, oldest first.

        Lines that fail validation are logged and skipped.

        Args:
            since: Keep entries strictly newer than this.
            source: Keep entries written by this operation only.
            limit: Keep the newest ``limit`` entries after filtering.
        """
        if not self._path.exists():
            return []

        entries: list[FilingEntry] = []
        for lineno, raw in enumerate(self._path.read_text().splitlines(), start=1):
            if not raw.strip():
                continue
            try:
                entry = FilingEntry.model_validate_json(raw)
            except ValidationError:
                logger.warning("Skipping malformed filing log line %d in %s", lineno, self._path)
                continue
            if since is not None and entry.timestamp <= since:
                continue
            if source is not None and entry.source != source:
                continue
            entries.append(entry)

        return entries if limit is None else entries[-limit:]
