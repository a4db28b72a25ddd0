"""Schemas for the mailbox side of mailfiler.

Covers account configuration, the lightweight message references handed to
the matcher, destination categories, and the filing audit record.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

# --- Config ---


class AccountConfig(BaseModel):
    """Configuration for the IMAP account being filed."""

    server: str
    email: str
    password: str
    inbox_folder: str = "INBOX"
    port: int = 993
    ssl: bool = True


# --- Mailbox data ---


class MessageRef(BaseModel):
    """A message as seen by the rule engine (headers only)."""

    uid: str
    folder: str
    sender_header: str  # raw From header, e.g. "Alice <alice@co.com>"
    subject: str = ""


class Category(BaseModel):
    """A destination folder / label."""

    name: str
    is_system: bool = False


# --- Audit ---


class FilingEntry(BaseModel):
    """A record of one message filed by mailfiler."""

    timestamp: datetime
    uid: str
    folder: str
    sender: str
    subject: str
    label: str
    rule_key: str
    source: Literal["sweep", "add_rule"]
