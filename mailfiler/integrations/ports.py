"""Ports (interfaces) used by the rule engine.

Ports define the minimal contracts for the mailbox and scheduler so the
sweep, discovery and rule management code can run against IMAP, a test
double, or any other backend.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from mailfiler.schemas.mail import Category, MessageRef
from mailfiler.schemas.rules import ScheduledJob


class MailProvider(Protocol):
    """Message/category operations required by the engine."""

    async def list_categories(self) -> list[Category]:
        ...

    async def get_items(self, category: str, *, limit: int = 0) -> list[MessageRef]:
        ...

    async def get_inbox(self, *, limit: int = 0) -> list[MessageRef]:
        ...

    async def apply_category(self, items: Sequence[MessageRef], name: str) -> None:
        ...

    async def archive(self, items: Sequence[MessageRef]) -> None:
        ...

    async def create_category(self, name: str) -> None:
        ...

    async def delete_category(self, name: str) -> None:
        ...


class Scheduler(Protocol):
    """Recurring-job registry used by trigger management."""

    def list_scheduled(self) -> list[ScheduledJob]:
        ...

    def schedule(self, handler_name: str, interval_seconds: int) -> ScheduledJob:
        ...

    def unschedule(self, handler_name: str) -> int:
        ...

    def mark_run(self, handler_name: str, when: datetime) -> None:
        ...
