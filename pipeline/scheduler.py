"""Lock-guarded batch scheduler and cleanup routine."""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from core.budget import BUDGET_EXCEEDED, BUDGET_OK, BUDGET_WARNING
from core.config import settings
from core.db import (
    acquire_lock,
    delete_episodes_before,
    get_eligible_entries,
    get_lock,
    release_lock,
    reset_stuck_entries,
)
from core.models import utcnow

if TYPE_CHECKING:
    from core.budget import BudgetLedger
    from core.notify import Notifier
    from pipeline.service import ResumablePipeline

logger = logging.getLogger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    temp_dir: str
    max_retries: int
    retention_days: int
    lock_stale_after: timedelta
    orphan_max_age: timedelta
    processing_interval_seconds: float
    cleanup_interval_seconds: float

    @classmethod
    def from_settings(cls) -> "SchedulerConfig":
        return cls(
            temp_dir=settings.temp_dir,
            max_retries=int(settings.max_retries),
            retention_days=int(settings.retention_days),
            lock_stale_after=timedelta(minutes=float(settings.lock_stale_minutes)),
            orphan_max_age=timedelta(hours=float(settings.orphan_file_max_age_hours)),
            processing_interval_seconds=float(settings.processing_interval_seconds),
            cleanup_interval_seconds=float(settings.cleanup_interval_seconds),
        )


@dataclass(frozen=True, slots=True)
class CleanupReport:
    episodes_deleted: int
    entries_reset: int
    files_removed: int


def sweep_orphan_files(temp_dir: str | Path, max_age: timedelta) -> int:
    """Delete files in the temp directory not modified within max_age."""
    directory = Path(temp_dir)
    if not directory.is_dir():
        return 0

    cutoff = time.time() - max_age.total_seconds()
    removed = 0
    for path in directory.iterdir():
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
                logger.info("Deleted orphaned temp file: %s", path.name)
        except OSError as e:
            logger.warning("Failed to delete temp file %s: %s", path, e)
    return removed


class Scheduler:
    """Runs processing batches under the global lock and periodic cleanup."""

    def __init__(
        self,
        pipeline: ResumablePipeline,
        budget: BudgetLedger,
        notifier: Notifier,
        config: SchedulerConfig | None = None,
        owner: str | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.budget = budget
        self.notifier = notifier
        self.config = config or SchedulerConfig.from_settings()
        self.owner = owner or default_owner()
        self._previous_budget_status = BUDGET_OK
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def acquire_lock(self) -> bool:
        acquired = acquire_lock(self.owner, self.config.lock_stale_after)
        if not acquired:
            holder = get_lock()
            if holder is None:
                logger.error("Processing lock row missing, run init_db")
            else:
                logger.info(
                    "Processing lock held by %s since %s, skipping",
                    holder.locked_by,
                    holder.locked_at,
                )
        return acquired

    def release_lock(self) -> None:
        release_lock()

    def run_processing_job(self) -> int:
        """Process eligible entries one at a time. Returns how many were processed."""
        if not self.acquire_lock():
            return 0

        try:
            if not self._check_budget_status():
                logger.info("Budget exceeded, skipping processing")
                return 0

            entries = get_eligible_entries(self.config.max_retries)
            logger.info("Found %d entries to process", len(entries))

            processed = 0
            for entry in entries:
                if not self.budget.can_process():
                    logger.info("Budget exceeded mid-batch, stopping")
                    break

                logger.info("Processing entry %s: %s", entry.id, entry.url)
                result = self.pipeline.process_entry(entry)
                processed += 1

                if result.success:
                    logger.info("Successfully processed entry %s", entry.id)
                else:
                    logger.error("Failed to process entry %s: %s", entry.id, result.error)

            return processed
        finally:
            self.release_lock()

    def _check_budget_status(self) -> bool:
        """Notify on newly crossed thresholds. False when processing is disabled."""
        try:
            status = self.budget.get_status()
        except Exception:
            logger.exception("Failed to check budget status, proceeding with caution")
            return True

        previous = self._previous_budget_status
        newly_warning = status.status == BUDGET_WARNING and previous == BUDGET_OK
        newly_exceeded = status.status == BUDGET_EXCEEDED and previous != BUDGET_EXCEEDED
        if newly_warning or newly_exceeded:
            try:
                self.notifier.notify_budget_transition(status)
            except Exception:
                logger.exception("Failed to send budget notification")
        self._previous_budget_status = status.status

        return status.processing_enabled

    def run_cleanup_job(self) -> CleanupReport:
        logger.info("Running cleanup job")

        cutoff = utcnow() - timedelta(days=self.config.retention_days)
        episodes_deleted = delete_episodes_before(cutoff)
        logger.info("Deleted %d old episodes", episodes_deleted)

        entries_reset = 0
        if acquire_lock(self.owner, self.config.lock_stale_after):
            try:
                entries_reset = reset_stuck_entries()
                if entries_reset:
                    logger.info("Reset %d stuck entries", entries_reset)
            finally:
                self.release_lock()
        else:
            logger.info("Skipping stuck entry reset - processing job is running")

        files_removed = sweep_orphan_files(self.config.temp_dir, self.config.orphan_max_age)

        return CleanupReport(
            episodes_deleted=episodes_deleted,
            entries_reset=entries_reset,
            files_removed=files_removed,
        )

    def start(self) -> None:
        """Run both jobs on their intervals in background threads."""
        if self._threads:
            return
        self._stop_event.clear()
        jobs: list[tuple[str, Callable[[], object], float]] = [
            ("processing", self.run_processing_job, self.config.processing_interval_seconds),
            ("cleanup", self.run_cleanup_job, self.config.cleanup_interval_seconds),
        ]
        for name, job, interval in jobs:
            logger.info("Scheduling %s job every %.0fs", name, interval)
            thread = threading.Thread(
                target=self._loop, args=(name, job, interval), name=f"{name}-job", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _loop(self, name: str, job: Callable[[], object], interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                job()
            except Exception:
                logger.exception("Scheduled %s job failed", name)
