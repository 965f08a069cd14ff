"""Stage executor interfaces and the on-disk segment file convention."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pipeline.models import (
    ExtractionResult,
    FallbackExtraction,
    PublishResult,
    ScriptLine,
    ScriptResult,
    SynthesisResult,
    Usage,
)

logger = logging.getLogger(__name__)

SEGMENT_SUFFIX = ".aac"


class StageError(Exception):
    """Stage failure, carrying the usage of a call that was billed before it failed."""

    def __init__(
        self, message: str, error_code: str = "STAGE_FAILED", usage: Usage | None = None
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.usage = usage


class Fetcher(Protocol):
    def fetch(self, url: str) -> str: ...


class Extractor(Protocol):
    def extract(self, html: str) -> ExtractionResult: ...

    def extract_fallback(self, html: str) -> FallbackExtraction: ...


class Transcriber(Protocol):
    def generate_script(self, body: str, title: str) -> ScriptResult: ...


class Synthesizer(Protocol):
    def synthesize(self, script: Sequence[ScriptLine], entry_id: str) -> SynthesisResult: ...


class Publisher(Protocol):
    def publish(self, segment_paths: Sequence[str], episode_id: str) -> PublishResult: ...


def segment_path(temp_dir: str | Path, entry_id: str, index: int) -> Path:
    """Path of the audio segment at a zero-based index for an entry."""
    return Path(temp_dir) / f"{entry_id}_{index}{SEGMENT_SUFFIX}"


def validate_segments(temp_dir: str | Path, entry_id: str, expected_count: int) -> bool:
    """True when every expected segment file exists. Contents are not checked."""
    return all(segment_path(temp_dir, entry_id, i).is_file() for i in range(expected_count))


def find_segments(temp_dir: str | Path, entry_id: str) -> list[Path]:
    directory = Path(temp_dir)
    if not directory.is_dir():
        return []
    pattern = re.compile(rf"^{re.escape(entry_id)}_\d+{re.escape(SEGMENT_SUFFIX)}$")
    return sorted(p for p in directory.iterdir() if pattern.match(p.name))


def remove_segments(paths: Sequence[str | Path]) -> int:
    removed = 0
    for path in paths:
        try:
            Path(path).unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Failed to delete segment %s: %s", path, e)
    return removed
