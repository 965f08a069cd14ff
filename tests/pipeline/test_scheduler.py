"""Tests for the lock-guarded scheduler and cleanup job."""

import logging
import os
import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from core import db
from core.budget import BudgetStatus
from core.db import acquire_lock, complete_entry, create_entry, get_entry, get_lock, release_lock
from core.models import EntryStatus, Episode, ProcessingLock, utcnow
from pipeline.models import ProcessingResult
from pipeline.scheduler import CleanupReport, Scheduler, SchedulerConfig, sweep_orphan_files

STALE_AFTER = timedelta(minutes=30)


def budget_status(status: str, spent: float = 0.0) -> BudgetStatus:
    return BudgetStatus(
        period="2026-10",
        spent_usd=spent,
        budget_usd=10.0,
        remaining_usd=max(0.0, 10.0 - spent),
        percent_used=spent * 10,
        status=status,
        processing_enabled=status != "exceeded",
    )


@pytest.fixture
def config(temp_dir):
    return SchedulerConfig(
        temp_dir=str(temp_dir),
        max_retries=3,
        retention_days=90,
        lock_stale_after=STALE_AFTER,
        orphan_max_age=timedelta(hours=24),
        processing_interval_seconds=0.01,
        cleanup_interval_seconds=0.01,
    )


@pytest.fixture
def budget():
    mock = MagicMock()
    mock.get_status.return_value = budget_status("ok")
    mock.can_process.return_value = True
    return mock


@pytest.fixture
def pipeline():
    mock = MagicMock()
    mock.process_entry.side_effect = lambda entry: ProcessingResult(success=True, entry_id=entry.id)
    return mock


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def scheduler(database, pipeline, budget, notifier, config):
    return Scheduler(pipeline, budget, notifier, config, owner="test-worker")


def processed_ids(pipeline):
    return [c.args[0].id for c in pipeline.process_entry.call_args_list]


class TestProcessingLock:
    def test_acquire_free_lock(self, database):
        assert acquire_lock("worker-1", STALE_AFTER) is True
        lock = get_lock()
        assert lock.locked_by == "worker-1"
        assert lock.locked_at is not None

    def test_held_lock_is_not_acquired(self, database):
        assert acquire_lock("worker-1", STALE_AFTER) is True
        assert acquire_lock("worker-2", STALE_AFTER) is False
        assert get_lock().locked_by == "worker-1"

    def test_stale_lock_is_taken_over(self, database):
        long_ago = utcnow() - timedelta(minutes=31)
        assert acquire_lock("crashed-worker", STALE_AFTER, now=long_ago) is True

        assert acquire_lock("worker-2", STALE_AFTER) is True
        assert get_lock().locked_by == "worker-2"

    def test_lock_inside_stale_window_is_respected(self, database):
        recent = utcnow() - timedelta(minutes=29)
        assert acquire_lock("worker-1", STALE_AFTER, now=recent) is True

        assert acquire_lock("worker-2", STALE_AFTER) is False

    def test_release_frees_lock(self, database):
        acquire_lock("worker-1", STALE_AFTER)
        release_lock()

        lock = get_lock()
        assert lock.locked_at is None
        assert lock.locked_by is None
        assert acquire_lock("worker-2", STALE_AFTER) is True

    def test_missing_lock_row_is_never_acquired(self, database):
        with db.get_session() as session:
            session.execute(delete(ProcessingLock))
            session.commit()

        assert acquire_lock("worker-1", STALE_AFTER) is False

    def test_concurrent_acquire_has_single_winner(self, file_database):
        workers = 8
        barrier = threading.Barrier(workers)
        results: list[bool] = []
        results_lock = threading.Lock()

        def contend(owner):
            barrier.wait()
            try:
                acquired = acquire_lock(owner, STALE_AFTER)
            except OperationalError:
                # SQLite reports a busy database to writers that lose the race
                acquired = False
            with results_lock:
                results.append(acquired)

        threads = [threading.Thread(target=contend, args=(f"worker-{i}",)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert len(results) == workers


class TestRunProcessingJob:
    def test_processes_eligible_entries_oldest_first(self, scheduler, pipeline, update_entry):
        first = create_entry("https://example.com/1")
        second = create_entry("https://example.com/2")
        update_entry(first.id, created_at=utcnow() - timedelta(hours=2))
        update_entry(second.id, created_at=utcnow() - timedelta(hours=1))

        processed = scheduler.run_processing_job()

        assert processed == 2
        assert processed_ids(pipeline) == [first.id, second.id]
        assert get_lock().locked_at is None

    def test_skips_entries_that_are_not_due(self, scheduler, pipeline, update_entry):
        pending = create_entry("https://example.com/pending")
        due = create_entry("https://example.com/due")
        not_due = create_entry("https://example.com/not-due")
        exhausted = create_entry("https://example.com/exhausted")
        done = create_entry("https://example.com/done")
        update_entry(
            due.id,
            status=EntryStatus.FAILED,
            retry_count=1,
            next_retry_at=utcnow() - timedelta(minutes=1),
        )
        update_entry(
            not_due.id,
            status=EntryStatus.FAILED,
            retry_count=1,
            next_retry_at=utcnow() + timedelta(hours=1),
        )
        update_entry(exhausted.id, status=EntryStatus.FAILED, retry_count=3, next_retry_at=None)
        update_entry(done.id, status=EntryStatus.COMPLETED)

        scheduler.run_processing_job()

        assert sorted(processed_ids(pipeline)) == sorted([pending.id, due.id])

    def test_held_lock_skips_processing(self, scheduler, pipeline):
        create_entry("https://example.com/1")
        acquire_lock("other-worker", STALE_AFTER)

        processed = scheduler.run_processing_job()

        assert processed == 0
        pipeline.process_entry.assert_not_called()
        assert get_lock().locked_by == "other-worker"

    def test_held_lock_logs_its_holder(self, scheduler, pipeline, caplog):
        acquire_lock("other-worker", STALE_AFTER)
        caplog.set_level(logging.INFO, logger="pipeline.scheduler")

        scheduler.run_processing_job()

        assert "Processing lock held by other-worker" in caplog.text

    def test_missing_lock_row_is_logged(self, scheduler, pipeline, caplog):
        with db.get_session() as session:
            session.execute(delete(ProcessingLock))
            session.commit()

        assert scheduler.run_processing_job() == 0
        assert "Processing lock row missing" in caplog.text
        pipeline.process_entry.assert_not_called()

    def test_lock_released_when_processing_raises(self, scheduler, pipeline):
        create_entry("https://example.com/1")
        pipeline.process_entry.side_effect = RuntimeError("unexpected")

        with pytest.raises(RuntimeError):
            scheduler.run_processing_job()

        assert get_lock().locked_at is None

    def test_failed_results_do_not_stop_batch(self, scheduler, pipeline):
        create_entry("https://example.com/1")
        create_entry("https://example.com/2")
        pipeline.process_entry.side_effect = lambda entry: ProcessingResult(
            success=False, entry_id=entry.id, error="boom"
        )

        assert scheduler.run_processing_job() == 2

    def test_exceeded_budget_skips_batch(self, scheduler, pipeline, budget):
        create_entry("https://example.com/1")
        budget.get_status.return_value = budget_status("exceeded", spent=10.5)

        processed = scheduler.run_processing_job()

        assert processed == 0
        pipeline.process_entry.assert_not_called()
        assert get_lock().locked_at is None

    def test_budget_checked_before_each_entry(self, scheduler, pipeline, budget):
        for i in range(3):
            create_entry(f"https://example.com/{i}")
        budget.can_process.side_effect = [True, False, True]

        processed = scheduler.run_processing_job()

        assert processed == 1
        assert pipeline.process_entry.call_count == 1
        assert budget.can_process.call_count == 2

    def test_status_read_error_still_processes(self, scheduler, pipeline, budget, notifier):
        create_entry("https://example.com/1")
        budget.get_status.side_effect = RuntimeError("database busy")

        assert scheduler.run_processing_job() == 1
        notifier.notify_budget_transition.assert_not_called()


class TestBudgetNotifications:
    def test_warning_notified_once(self, scheduler, budget, notifier):
        budget.get_status.return_value = budget_status("warning", spent=8.5)

        scheduler.run_processing_job()
        scheduler.run_processing_job()

        notifier.notify_budget_transition.assert_called_once()
        assert notifier.notify_budget_transition.call_args.args[0].status == "warning"

    def test_exceeded_notified_once(self, scheduler, budget, notifier):
        budget.get_status.return_value = budget_status("exceeded", spent=10.5)

        scheduler.run_processing_job()
        scheduler.run_processing_job()

        notifier.notify_budget_transition.assert_called_once()

    def test_warning_then_exceeded_notifies_both(self, scheduler, budget, notifier):
        budget.get_status.side_effect = [
            budget_status("warning", spent=8.5),
            budget_status("exceeded", spent=10.5),
        ]

        scheduler.run_processing_job()
        scheduler.run_processing_job()

        statuses = [c.args[0].status for c in notifier.notify_budget_transition.call_args_list]
        assert statuses == ["warning", "exceeded"]

    def test_exceeded_to_warning_is_silent(self, scheduler, budget, notifier):
        budget.get_status.side_effect = [
            budget_status("exceeded", spent=10.5),
            budget_status("warning", spent=8.5),
        ]

        scheduler.run_processing_job()
        scheduler.run_processing_job()

        notifier.notify_budget_transition.assert_called_once()

    def test_ok_is_never_notified(self, scheduler, notifier):
        scheduler.run_processing_job()

        notifier.notify_budget_transition.assert_not_called()

    def test_notification_error_does_not_block_processing(self, scheduler, pipeline, budget, notifier):
        create_entry("https://example.com/1")
        budget.get_status.return_value = budget_status("warning", spent=8.5)
        notifier.notify_budget_transition.side_effect = RuntimeError("pushover down")

        assert scheduler.run_processing_job() == 1


class TestCleanupJob:
    def test_deletes_episodes_past_retention(self, scheduler):
        old_entry = create_entry("https://example.com/old")
        new_entry = create_entry("https://example.com/new")
        old = complete_entry(old_entry.id, "ep-old", "Old", "old.aac", 60, 100)
        complete_entry(new_entry.id, "ep-new", "New", "new.aac", 60, 100)
        with db.get_session() as session:
            session.get(Episode, old.id).published_at = utcnow() - timedelta(days=91)
            session.commit()

        report = scheduler.run_cleanup_job()

        assert report.episodes_deleted == 1
        assert db.get_episode("ep-old") is None
        assert db.get_episode("ep-new") is not None

    def test_resets_stuck_entries_when_lock_free(self, scheduler, update_entry):
        entry = create_entry("https://example.com/1")
        update_entry(entry.id, status=EntryStatus.PROCESSING)

        report = scheduler.run_cleanup_job()

        assert report.entries_reset == 1
        assert get_entry(entry.id).status == EntryStatus.PENDING
        assert get_lock().locked_at is None

    def test_leaves_processing_entries_while_lock_held(self, scheduler, update_entry):
        entry = create_entry("https://example.com/1")
        update_entry(entry.id, status=EntryStatus.PROCESSING)
        acquire_lock("other-worker", STALE_AFTER)

        report = scheduler.run_cleanup_job()

        assert report.entries_reset == 0
        assert get_entry(entry.id).status == EntryStatus.PROCESSING
        assert get_lock().locked_by == "other-worker"

        release_lock()

        assert scheduler.run_cleanup_job().entries_reset == 1
        assert get_entry(entry.id).status == EntryStatus.PENDING

    def test_sweeps_old_temp_files(self, scheduler, temp_dir):
        old_file = temp_dir / "abandoned_0.aac"
        new_file = temp_dir / "active_0.aac"
        old_file.write_bytes(b"old")
        new_file.write_bytes(b"new")
        two_days_ago = time.time() - 48 * 3600
        os.utime(old_file, (two_days_ago, two_days_ago))

        report = scheduler.run_cleanup_job()

        assert report == CleanupReport(episodes_deleted=0, entries_reset=0, files_removed=1)
        assert not old_file.exists()
        assert new_file.exists()

    def test_sweep_missing_directory(self, tmp_path):
        assert sweep_orphan_files(tmp_path / "missing", timedelta(hours=24)) == 0


class TestBackgroundJobs:
    def test_start_runs_jobs_until_stopped(self, scheduler):
        ran = threading.Event()
        with patch.object(scheduler, "run_processing_job", side_effect=lambda: ran.set()), patch.object(
            scheduler, "run_cleanup_job", return_value=None
        ):
            scheduler.start()
            try:
                assert ran.wait(timeout=5.0)
            finally:
                scheduler.stop(timeout=5.0)

        assert scheduler._threads == []

    def test_job_errors_do_not_kill_loop(self, scheduler):
        calls = []
        second_call = threading.Event()

        def flaky():
            calls.append(1)
            if len(calls) >= 2:
                second_call.set()
            raise RuntimeError("transient")

        with patch.object(scheduler, "run_processing_job", side_effect=flaky), patch.object(
            scheduler, "run_cleanup_job", return_value=None
        ):
            scheduler.start()
            try:
                assert second_call.wait(timeout=5.0)
            finally:
                scheduler.stop(timeout=5.0)
