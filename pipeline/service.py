"""Resumable URL-to-episode processing pipeline."""

from __future__ import annotations

import json
import logging
import random
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from core.config import settings
from core.db import (
    clear_entry_artifacts,
    complete_entry,
    get_entry,
    get_retry_count,
    mark_entry_processing,
    record_entry_failure,
    save_extraction,
    save_segment_count,
    save_transcript,
)
from core.models import utcnow
from pipeline.models import ProcessingResult, ScriptLine, Usage
from pipeline.stages import (
    Extractor,
    Fetcher,
    Publisher,
    StageError,
    Synthesizer,
    Transcriber,
    find_segments,
    remove_segments,
    segment_path,
    validate_segments,
)

if TYPE_CHECKING:
    from core.budget import BudgetLedger
    from core.models import Entry
    from core.notify import Notifier

logger = logging.getLogger(__name__)

RETRY_JITTER_SECONDS = 30

T = TypeVar("T")


class PipelineError(Exception):
    """Pipeline failure with error code for categorization."""

    def __init__(self, message: str, error_code: str = "PIPELINE_FAILED") -> None:
        super().__init__(message)
        self.error_code = error_code


class InsufficientContentError(PipelineError):
    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"Content too short: {length} < {minimum}", "INSUFFICIENT_CONTENT")


class ResumePoint(IntEnum):
    """Earliest stage that must run. Later stages always run too."""

    FETCH = 0
    GENERATE_SCRIPT = 1
    SYNTHESIZE = 2
    PUBLISH = 3


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    temp_dir: str
    min_content_length: int
    max_retries: int

    @classmethod
    def from_settings(cls) -> "PipelineConfig":
        return cls(
            temp_dir=settings.temp_dir,
            min_content_length=int(settings.min_content_length),
            max_retries=int(settings.max_retries),
        )


def retry_delay(retry_count: int) -> timedelta:
    """Exponential backoff of 2^retry_count minutes plus up to 30s of jitter."""
    return timedelta(minutes=2**retry_count, seconds=random.random() * RETRY_JITTER_SECONDS)


def parse_script(transcript_json: str | None) -> tuple[ScriptLine, ...] | None:
    """Decode a stored script. Anything unusable counts as no script."""
    if not transcript_json:
        return None
    try:
        data = json.loads(transcript_json)
        if not isinstance(data, list) or not data:
            return None
        return tuple(ScriptLine.from_dict(item) for item in data)
    except (ValueError, TypeError, KeyError):
        return None


def dump_script(script: tuple[ScriptLine, ...]) -> str:
    return json.dumps([line.to_dict() for line in script])


def determine_resume_point(entry: Entry, temp_dir: str | Path) -> ResumePoint:
    """Infer the first stage to run from the entry's stored artifacts."""
    if not entry.extracted_content:
        return ResumePoint.FETCH
    if parse_script(entry.transcript_json) is None:
        return ResumePoint.GENERATE_SCRIPT
    count = entry.expected_segment_count
    if count is None or not validate_segments(temp_dir, entry.id, count):
        return ResumePoint.SYNTHESIZE
    return ResumePoint.PUBLISH


class ResumablePipeline:
    """Runs one entry through fetch, extract, script, synthesize and publish."""

    def __init__(
        self,
        fetcher: Fetcher,
        extractor: Extractor,
        transcriber: Transcriber,
        synthesizer: Synthesizer,
        publisher: Publisher,
        budget: BudgetLedger,
        notifier: Notifier,
        config: PipelineConfig | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._extractor = extractor
        self._transcriber = transcriber
        self._synthesizer = synthesizer
        self._publisher = publisher
        self._budget = budget
        self._notifier = notifier
        self.config = config or PipelineConfig.from_settings()

    def process_entry(self, entry: Entry) -> ProcessingResult:
        """Process an entry, converting any failure into a stored retry state."""
        try:
            return self._run(entry)
        except Exception as e:
            logger.exception("Processing failed for entry %s", entry.id)
            return self._handle_failure(entry, str(e) or type(e).__name__)

    def _run(self, entry: Entry) -> ProcessingResult:
        mark_entry_processing(entry.id)

        # The batch may have selected this entry before a reprocess request landed
        entry = get_entry(entry.id) or entry
        title = entry.title
        content = entry.extracted_content
        script = parse_script(entry.transcript_json)

        if entry.force_reprocess:
            clear_entry_artifacts(entry.id)
            title = content = script = None
            resume = ResumePoint.FETCH
        else:
            resume = determine_resume_point(entry, self.config.temp_dir)

        logger.info("Entry %s resuming at %s", entry.id, resume.name)

        if resume <= ResumePoint.FETCH:
            html = self._fetcher.fetch(entry.url)
            title, content = self._extract(entry.id, html)
            save_extraction(entry.id, title, content)

        title = title or "Untitled"

        if resume <= ResumePoint.GENERATE_SCRIPT:
            generated = self._billed(entry.id, self._transcriber.generate_script, content, title)
            self._log_usage(entry.id, generated.usage)
            script = generated.script
            save_transcript(entry.id, dump_script(script))

        if resume <= ResumePoint.SYNTHESIZE:
            segment_paths = self._synthesize(entry.id, script)
        else:
            segment_paths = [
                str(segment_path(self.config.temp_dir, entry.id, i))
                for i in range(entry.expected_segment_count or 0)
            ]

        episode_id = str(uuid.uuid4())
        published = self._publisher.publish(segment_paths, episode_id)
        complete_entry(
            entry.id,
            episode_id,
            title,
            published.audio_key,
            published.duration_seconds,
            published.size_bytes,
        )
        remove_segments(segment_paths)

        logger.info("Entry %s published as episode %s", entry.id, episode_id)
        return ProcessingResult(success=True, entry_id=entry.id, episode_id=episode_id)

    def _extract(self, entry_id: str, html: str) -> tuple[str, str]:
        minimum = self.config.min_content_length
        try:
            extracted = self._extractor.extract(html)
            title, body = extracted.title, extracted.body
        except Exception as e:
            logger.warning("Structural extraction failed for entry %s: %s", entry_id, e)
            title, body = "", ""

        if len(body) < minimum:
            logger.info("Entry %s: extracted %d chars, using model fallback", entry_id, len(body))
            fallback = self._billed(entry_id, self._extractor.extract_fallback, html)
            self._log_usage(entry_id, fallback.usage)
            body = fallback.body
            title = title or "Untitled"

        if len(body) < minimum:
            raise InsufficientContentError(len(body), minimum)
        return title, body

    def _synthesize(self, entry_id: str, script: tuple[ScriptLine, ...] | None) -> list[str]:
        if not script:
            raise PipelineError(f"No script available for entry {entry_id}", "NO_SCRIPT")

        stale = find_segments(self.config.temp_dir, entry_id)
        if stale:
            logger.info("Removing %d stale segments for entry %s", len(stale), entry_id)
            remove_segments(stale)

        synthesis = self._synthesizer.synthesize(script, entry_id)
        self._log_usage(entry_id, synthesis.usage)
        segment_paths = list(synthesis.segment_paths)
        save_segment_count(entry_id, len(segment_paths))
        return segment_paths

    def _billed(self, entry_id: str, call: Callable[..., T], *args: Any) -> T:
        """Run a billed stage call, logging its usage even when it fails afterwards."""
        try:
            return call(*args)
        except StageError as e:
            if e.usage is not None:
                self._log_usage(entry_id, e.usage)
            raise

    def _log_usage(self, entry_id: str, usage: Usage) -> None:
        self._budget.log_usage(
            entry_id,
            usage.service,
            usage.model,
            usage.input_units,
            usage.output_units,
        )

    def _handle_failure(self, entry: Entry, message: str) -> ProcessingResult:
        try:
            current = get_retry_count(entry.id)
            new_count = current + 1

            if new_count >= self.config.max_retries:
                record_entry_failure(entry.id, message, new_count, None)
                logger.error("Entry %s failed permanently after %d attempts", entry.id, new_count)
                self._notifier.notify_permanent_failure(entry.id, entry.url, message)
            else:
                next_retry_at = utcnow() + retry_delay(current)
                record_entry_failure(entry.id, message, new_count, next_retry_at)
                logger.info("Entry %s will retry at %s", entry.id, next_retry_at.isoformat())
        except Exception:
            logger.exception("Failed to record failure for entry %s", entry.id)

        return ProcessingResult(success=False, entry_id=entry.id, error=message)
