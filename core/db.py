"""SQLAlchemy database client."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, delete, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from core.models import (
    LOCK_ROW_ID,
    Base,
    Entry,
    EntryStatus,
    Episode,
    ProcessingLock,
    UsageRecord,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(settings.database_url, echo=False)
    return _engine


def get_session() -> Session:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory()


def init_db() -> None:
    """Create tables and seed the lock row."""
    Base.metadata.create_all(get_engine())
    with get_session() as session:
        if session.get(ProcessingLock, LOCK_ROW_ID) is None:
            session.add(ProcessingLock(id=LOCK_ROW_ID))
            session.commit()


# Entries


def create_entry(url: str, category: str | None = None) -> Entry:
    with get_session() as session:
        entry = Entry(
            id=str(uuid.uuid4()),
            url=url,
            category=category,
            status=EntryStatus.PENDING,
            retry_count=0,
            force_reprocess=False,
            created_at=utcnow(),
        )
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry


def get_entry(entry_id: str) -> Entry | None:
    with get_session() as session:
        return session.get(Entry, entry_id)


def get_entry_by_url(url: str) -> Entry | None:
    with get_session() as session:
        return session.scalars(select(Entry).where(Entry.url == url)).first()


def list_entries(status: str | None = None) -> list[Entry]:
    with get_session() as session:
        query = select(Entry).order_by(Entry.created_at.desc())
        if status:
            query = query.where(Entry.status == status)
        return list(session.scalars(query))


def get_retry_count(entry_id: str) -> int:
    """Read the stored retry count, ignoring any in-memory copy of the entry."""
    with get_session() as session:
        count = session.scalar(select(Entry.retry_count).where(Entry.id == entry_id))
        return count or 0


def mark_entry_processing(entry_id: str) -> None:
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.status = EntryStatus.PROCESSING
            session.commit()


def clear_entry_artifacts(entry_id: str) -> None:
    """Drop all intermediate artifacts and the force-reprocess flag."""
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.title = None
            entry.extracted_content = None
            entry.transcript_json = None
            entry.expected_segment_count = None
            entry.force_reprocess = False
            session.commit()


def save_extraction(entry_id: str, title: str, content: str) -> None:
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.title = title
            entry.extracted_content = content
            session.commit()


def save_transcript(entry_id: str, transcript_json: str) -> None:
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.transcript_json = transcript_json
            session.commit()


def save_segment_count(entry_id: str, count: int) -> None:
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.expected_segment_count = count
            session.commit()


def complete_entry(
    entry_id: str,
    episode_id: str,
    title: str,
    audio_key: str,
    audio_duration: int,
    audio_size: int,
) -> Episode:
    """Create the episode and mark the entry completed in one transaction."""
    now = utcnow()
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry is None:
            raise LookupError(f"Entry {entry_id} not found")

        episode = Episode(
            id=episode_id,
            entry_id=entry_id,
            category=entry.category,
            title=title,
            description=f"Podcast episode from: {entry.url}",
            audio_key=audio_key,
            audio_duration=audio_duration,
            audio_size=audio_size,
            published_at=now,
        )
        session.add(episode)

        entry.status = EntryStatus.COMPLETED
        entry.force_reprocess = False
        entry.title = title
        entry.processed_at = now
        entry.error_message = None
        entry.next_retry_at = None
        session.commit()
        session.refresh(episode)
        return episode


def record_entry_failure(
    entry_id: str,
    error_message: str,
    retry_count: int,
    next_retry_at: datetime | None,
) -> None:
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry:
            entry.status = EntryStatus.FAILED
            entry.error_message = error_message
            entry.retry_count = retry_count
            entry.next_retry_at = next_retry_at
            session.commit()


def request_reprocess(entry_id: str) -> Entry | None:
    """Flag an entry for a full rerun and make it eligible again."""
    with get_session() as session:
        entry = session.get(Entry, entry_id)
        if entry is None:
            return None
        entry.force_reprocess = True
        entry.status = EntryStatus.PENDING
        entry.retry_count = 0
        entry.next_retry_at = None
        entry.error_message = None
        session.commit()
        return entry


def _eligible_filter(max_retries: int, now: datetime):
    return or_(
        Entry.status == EntryStatus.PENDING,
        (Entry.status == EntryStatus.FAILED)
        & (Entry.retry_count < max_retries)
        & (Entry.next_retry_at.is_(None) | (Entry.next_retry_at <= now)),
    )


def get_eligible_entries(max_retries: int, now: datetime | None = None) -> list[Entry]:
    """Pending entries plus failed entries whose retry is due, oldest first."""
    now = now or utcnow()
    with get_session() as session:
        query = (
            select(Entry)
            .where(_eligible_filter(max_retries, now))
            .order_by(Entry.created_at.asc())
        )
        return list(session.scalars(query))


def count_eligible_entries(max_retries: int, now: datetime | None = None) -> int:
    now = now or utcnow()
    with get_session() as session:
        query = select(func.count()).select_from(Entry).where(_eligible_filter(max_retries, now))
        return session.scalar(query) or 0


def reset_stuck_entries() -> int:
    with get_session() as session:
        result = session.execute(
            update(Entry)
            .where(Entry.status == EntryStatus.PROCESSING)
            .values(status=EntryStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount


# Episodes


def get_episode(episode_id: str) -> Episode | None:
    with get_session() as session:
        return session.get(Episode, episode_id)


def get_entry_episodes(entry_id: str) -> list[Episode]:
    with get_session() as session:
        return list(session.scalars(select(Episode).where(Episode.entry_id == entry_id)))


def delete_episodes_before(cutoff: datetime) -> int:
    with get_session() as session:
        result = session.execute(
            delete(Episode)
            .where(Episode.published_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount


# Usage log


def create_usage_record(
    entry_id: str | None,
    service: str,
    model: str,
    input_units: int,
    output_units: int | None,
    cost_usd: float,
) -> UsageRecord:
    with get_session() as session:
        record = UsageRecord(
            id=str(uuid.uuid4()),
            entry_id=entry_id,
            service=service,
            model=model,
            input_units=input_units,
            output_units=output_units,
            cost_usd=cost_usd,
            created_at=utcnow(),
        )
        session.add(record)
        session.commit()
        session.refresh(record)
        return record


def get_usage_records(entry_id: str) -> list[UsageRecord]:
    with get_session() as session:
        query = (
            select(UsageRecord)
            .where(UsageRecord.entry_id == entry_id)
            .order_by(UsageRecord.created_at.asc())
        )
        return list(session.scalars(query))


def sum_usage_since(since: datetime) -> float:
    with get_session() as session:
        total = session.scalar(
            select(func.coalesce(func.sum(UsageRecord.cost_usd), 0.0)).where(
                UsageRecord.created_at >= since
            )
        )
        return float(total or 0.0)


# Processing lock


def acquire_lock(owner: str, stale_after: timedelta, now: datetime | None = None) -> bool:
    """
    Take the processing lock if it is free or stale.

    A single conditional UPDATE decides ownership; the caller holds the lock
    only if that statement changed the row.
    """
    now = now or utcnow()
    with get_session() as session:
        result = session.execute(
            update(ProcessingLock)
            .where(
                ProcessingLock.id == LOCK_ROW_ID,
                or_(
                    ProcessingLock.locked_at.is_(None),
                    ProcessingLock.locked_at < now - stale_after,
                ),
            )
            .values(locked_at=now, locked_by=owner)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount > 0


def release_lock() -> None:
    with get_session() as session:
        session.execute(
            update(ProcessingLock)
            .where(ProcessingLock.id == LOCK_ROW_ID)
            .values(locked_at=None, locked_by=None)
            .execution_options(synchronize_session=False)
        )
        session.commit()


def get_lock() -> ProcessingLock | None:
    with get_session() as session:
        return session.get(ProcessingLock, LOCK_ROW_ID)
