"""Export and import of Rule Set backups.

Backups are plain JSON copies of the rule file kept in a backup folder.
Import never raises for bad input: a missing file, invalid JSON or the wrong
document shape comes back as a failed ImportResult.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from mailfiler.schemas.rules import ImportResult
from mailfiler.store.rule_store import RuleStore

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "mail-rules-backup-"
_RULES = TypeAdapter(dict[str, str])


class BackupFolder:
    """A directory of named backup files.

    Usage::

        folder = BackupFolder("data/backups")
        folder.write_new("mail-rules-backup-2025-06-01_1200.json", b"{}")
        data = folder.read_by_name("mail-rules-backup-2025-06-01_1200.json")
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _resolve(self, name: str) -> Path | None:
        # Bare file names only; anything with a path component is treated as absent.
        if not name or Path(name).name != name or name in (".", ".."):
            return None
        return self._dir / name

    def exists(self, name: str) -> bool:
        path = self._resolve(name)
        return path is not None and path.is_file()

    def read_by_name(self, name: str) -> bytes | None:
        """Return the file's bytes, or None if there is no such backup."""
        path = self._resolve(name)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()

    def write_new(self, name: str, data: bytes) -> Path:
        """Create a new backup file.

        Raises:
            ValueError: If the name is not a bare file name.
            FileExistsError: If a backup with that name already exists.
        """
        path = self._resolve(name)
        if path is None:
            raise ValueError(f"Invalid backup name: {name!r}")
        self._dir.mkdir(parents=True, exist_ok=True)
        with path.open("xb") as f:
            f.write(data)
        return path

    def list_names(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return sorted(p.name for p in self._dir.iterdir() if p.is_file())


def export_rules(store: RuleStore, folder: BackupFolder, *, now: datetime | None = None) -> str:
    """Write the current Rule Set to a timestamped backup file.

    Returns:
        The name of the created backup.
    """
    rules = store.load_rules()
    content = (json.dumps(rules, indent=2) + "\n").encode()
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H%M")

    base = f"{BACKUP_PREFIX}{stamp}"
    name = f"{base}.json"
    suffix = 2
    while folder.exists(name):
        name = f"{base}-{suffix}.json"
        suffix += 1

    folder.write_new(name, content)
    logger.info("Rules exported to: %s (%d rule(s))", name, len(rules))
    return name


def import_rules(
    store: RuleStore,
    folder: BackupFolder,
    filename: str,
    *,
    replace_all: bool = False,
) -> ImportResult:
    """Import rules from a named backup.

    Args:
        store: Rule persistence.
        folder: Where backups live.
        filename: Backup file name.
        replace_all: Replace every rule instead of merging (imported wins).

    Returns:
        ImportResult describing what happened.
    """
    content = folder.read_by_name(filename)
    if content is None:
        return ImportResult(success=False, message=f"File not found: {filename}", count=0)

    try:
        imported = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return ImportResult(success=False, message="Invalid JSON in file.", count=0)

    try:
        imported = _RULES.validate_python(imported, strict=True)
    except ValidationError:
        return ImportResult(success=False, message="Expected a JSON object of rules.", count=0)

    count = len(imported)
    if replace_all:
        store.save_rules(imported)
        logger.info("Replaced all rules with %d imported rule(s)", count)
    else:
        rules = store.load_rules()
        new = sum(1 for key in imported if key not in rules)
        rules.update(imported)
        store.save_rules(rules)
        logger.info("Merged %d rule(s) (%d new)", count, new)

    return ImportResult(success=True, message=f"Imported {count} rules.", count=count)
