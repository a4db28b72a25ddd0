"""Async IMAP mail provider wrapping imap-tools.

imap-tools is synchronous; all public methods use asyncio.to_thread()
so the engine can await provider calls without blocking.

Categories map onto IMAP folders (Gmail exposes labels as folders).
Applying a category copies messages into its folder; archiving deletes them
from the folder they were fetched from, which on Gmail only removes the
Inbox label.

Usage::

    async with ImapProvider(account_config) as provider:
        items = await provider.get_inbox()
        await provider.apply_category(items[:2], "Receipts")
        await provider.archive(items[:2])
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Sequence

from imap_tools import AND, MailBox, MailboxLoginError, MailMessage

from mailfiler.schemas.mail import AccountConfig, Category, MessageRef

logger = logging.getLogger(__name__)

_SYSTEM_FLAGS = {
    "\\noselect",
    "\\trash",
    "\\junk",
    "\\spam",
    "\\sent",
    "\\drafts",
    "\\all",
    "\\flagged",
    "\\important",
}
_SYSTEM_NAME_MARKERS = ("Trash", "Spam", "Junk")
_SYSTEM_PREFIXES = ("[Gmail]", "[Google Mail]")


def _is_system_folder(name: str, flags: Sequence[str], inbox_folder: str) -> bool:
    """True for folders that must never be scanned as user categories."""
    if name.upper() == "INBOX" or name == inbox_folder:
        return True
    if name.startswith(_SYSTEM_PREFIXES):
        return True
    if any(flag.lower() in _SYSTEM_FLAGS for flag in flags):
        return True
    return any(marker in name for marker in _SYSTEM_NAME_MARKERS)


def _raw_from(msg: MailMessage) -> str:
    """The raw From header, unfolded; falls back to the parsed address."""
    values = msg.headers.get("from") or ()
    if values and values[0].strip():
        return " ".join(values[0].split())
    return msg.from_


def _parse_ref(msg: MailMessage, folder: str) -> MessageRef:
    """Convert an imap-tools MailMessage to a MessageRef (headers only)."""
    return MessageRef(
        uid=msg.uid,
        folder=folder,
        sender_header=_raw_from(msg),
        subject=msg.subject or "",
    )


def _group_by_folder(items: Sequence[MessageRef]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = defaultdict(list)
    for item in items:
        grouped[item.folder].append(item.uid)
    return grouped


class ImapProvider:
    """Async IMAP implementation of the MailProvider port."""

    def __init__(self, config: AccountConfig) -> None:
        self._config = config
        self._mailbox: MailBox | None = None

    async def __aenter__(self) -> "ImapProvider":
        self._mailbox = await asyncio.to_thread(self._connect)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._mailbox:
            await asyncio.to_thread(self._disconnect)
            self._mailbox = None

    def _connect(self) -> MailBox:
        """Connect and login (sync, called via to_thread)."""
        if self._config.ssl:
            mb = MailBox(self._config.server, port=self._config.port)
        else:
            from imap_tools import MailBoxUnencrypted

            mb = MailBoxUnencrypted(self._config.server, port=self._config.port)

        try:
            mb.login(self._config.email, self._config.password)
        except MailboxLoginError:
            logger.error("IMAP login failed for %s", self._config.email)
            raise

        logger.info("Connected to %s as %s", self._config.server, self._config.email)
        return mb

    def _disconnect(self) -> None:
        """Logout and close (sync, called via to_thread)."""
        if self._mailbox:
            try:
                self._mailbox.logout()
            except Exception:
                logger.debug("Error during IMAP logout", exc_info=True)

    @property
    def mailbox(self) -> MailBox:
        if self._mailbox is None:
            raise RuntimeError("ImapProvider is not connected. Use 'async with' context.")
        return self._mailbox

    # --- Categories ---

    async def list_categories(self) -> list[Category]:
        """List every folder, flagging the ones discovery must skip."""

        def _list() -> list[Category]:
            return [
                Category(
                    name=f.name,
                    is_system=_is_system_folder(f.name, f.flags, self._config.inbox_folder),
                )
                for f in self.mailbox.folder.list()
            ]

        return await asyncio.to_thread(_list)

    async def create_category(self, name: str) -> None:
        """Create the folder unless it already exists."""

        def _create() -> None:
            existing = {f.name for f in self.mailbox.folder.list()}
            if name not in existing:
                self.mailbox.folder.create(name)
                logger.info("Created IMAP folder: %s", name)

        await asyncio.to_thread(_create)

    async def delete_category(self, name: str) -> None:
        def _delete() -> None:
            self.mailbox.folder.delete(name)
            logger.info("Deleted IMAP folder: %s", name)

        await asyncio.to_thread(_delete)

    # --- Fetch ---

    async def get_items(self, category: str, *, limit: int = 0) -> list[MessageRef]:
        """Fetch message headers from a folder, newest first.

        Args:
            category: IMAP folder name.
            limit: Maximum number of messages (0 = all).
        """

        def _fetch() -> list[MessageRef]:
            self.mailbox.folder.set(category)
            msgs = self.mailbox.fetch(
                AND(all=True),
                headers_only=True,
                mark_seen=False,
                reverse=True,
                limit=limit if limit > 0 else None,
            )
            return [_parse_ref(m, category) for m in msgs]

        return await asyncio.to_thread(_fetch)

    async def get_inbox(self, *, limit: int = 0) -> list[MessageRef]:
        return await self.get_items(self._config.inbox_folder, limit=limit)

    # --- Actions ---

    async def apply_category(self, items: Sequence[MessageRef], name: str) -> None:
        """Copy messages into the category folder, creating it if needed."""
        if not items:
            return
        await self.create_category(name)

        def _do() -> None:
            for folder, uids in _group_by_folder(items).items():
                self.mailbox.folder.set(folder)
                self.mailbox.copy(uids, name)
            logger.info("Applied %s to %d message(s)", name, len(items))

        await asyncio.to_thread(_do)

    async def archive(self, items: Sequence[MessageRef]) -> None:
        """Remove messages from the folder they were fetched from."""
        if not items:
            return

        def _do() -> None:
            for folder, uids in _group_by_folder(items).items():
                self.mailbox.folder.set(folder)
                self.mailbox.delete(uids)
            logger.info("Archived %d message(s)", len(items))

        await asyncio.to_thread(_do)
