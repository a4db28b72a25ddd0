"""Trigger management for scheduled sweeps and discovery runs.

The job registry is a JSON document in the key/value store. Something
external (cron, a systemd timer) runs ``mailfiler run-due`` periodically;
that command asks the registry which jobs are due and runs them.
"""

import json
import logging
from datetime import datetime, timedelta

from pydantic import TypeAdapter, ValidationError

from mailfiler.integrations.ports import Scheduler
from mailfiler.schemas.rules import ScheduledJob, TriggerStatus
from mailfiler.store.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

SCHEDULE_KEY = "scheduled_jobs"
SWEEP_HANDLER = "sweep"
DISCOVERY_HANDLER = "discover"
SWEEP_INTERVAL_SECONDS = 60 * 60
DISCOVERY_INTERVAL_SECONDS = 24 * 60 * 60

_JOBS = TypeAdapter(list[ScheduledJob])


class KeyValueScheduler:
    """Scheduler port backed by one key/value slot."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def list_scheduled(self) -> list[ScheduledJob]:
        raw = self._kv.get(SCHEDULE_KEY)
        if not raw:
            return []
        try:
            return _JOBS.validate_json(raw)
        except ValidationError:
            logger.warning("Malformed schedule document, treating as empty")
            return []

    def _save(self, jobs: list[ScheduledJob]) -> None:
        self._kv.put(SCHEDULE_KEY, json.dumps([job.model_dump(mode="json") for job in jobs]))

    def schedule(self, handler_name: str, interval_seconds: int) -> ScheduledJob:
        job = ScheduledJob(handler_name=handler_name, interval_seconds=interval_seconds)
        jobs = self.list_scheduled()
        jobs.append(job)
        self._save(jobs)
        return job

    def unschedule(self, handler_name: str) -> int:
        """Remove every job for a handler. Returns how many were removed."""
        jobs = self.list_scheduled()
        kept = [job for job in jobs if job.handler_name != handler_name]
        if len(kept) != len(jobs):
            self._save(kept)
        return len(jobs) - len(kept)

    def mark_run(self, handler_name: str, when: datetime) -> None:
        jobs = self.list_scheduled()
        for job in jobs:
            if job.handler_name == handler_name:
                job.last_run = when
        self._save(jobs)

    def due(self, now: datetime) -> list[str]:
        """Handler names whose interval has elapsed (or that never ran)."""
        names: list[str] = []
        for job in self.list_scheduled():
            if job.last_run is None or now - job.last_run >= timedelta(seconds=job.interval_seconds):
                if job.handler_name not in names:
                    names.append(job.handler_name)
        return names


class TriggerManager:
    """Enable, disable and inspect the sweep and discovery triggers."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler

    def status(self) -> TriggerStatus:
        handlers = {job.handler_name for job in self._scheduler.list_scheduled()}
        return TriggerStatus(
            cleanup=SWEEP_HANDLER in handlers,
            discovery=DISCOVERY_HANDLER in handlers,
        )

    def enable_cleanup(self) -> None:
        self._scheduler.unschedule(SWEEP_HANDLER)
        self._scheduler.schedule(SWEEP_HANDLER, SWEEP_INTERVAL_SECONDS)
        logger.info("Cleanup trigger enabled: every 1 hour")

    def disable_cleanup(self) -> None:
        self._scheduler.unschedule(SWEEP_HANDLER)
        logger.info("Cleanup trigger disabled")

    def enable_discovery(self) -> None:
        self._scheduler.unschedule(DISCOVERY_HANDLER)
        self._scheduler.schedule(DISCOVERY_HANDLER, DISCOVERY_INTERVAL_SECONDS)
        logger.info("Discovery trigger enabled: every 24 hours")

    def disable_discovery(self) -> None:
        self._scheduler.unschedule(DISCOVERY_HANDLER)
        logger.info("Discovery trigger disabled")
