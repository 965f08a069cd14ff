"""Segment merging with ffmpeg and upload to S3-compatible storage."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import boto3

from core.config import settings
from pipeline.models import PublishResult

logger = logging.getLogger(__name__)

CONTENT_TYPE = "audio/aac"


class AudioMergeError(Exception):
    def __init__(self, message: str, error_code: str = "MERGE_FAILED") -> None:
        super().__init__(message)
        self.error_code = error_code


def create_storage_client() -> Any:
    """S3 client pointed at the configured R2 account."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        region_name="auto",
    )


def probe_duration(path: Path) -> int:
    """Audio duration in whole seconds, 0 when ffprobe cannot tell."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    result = subprocess.run(args, capture_output=True, text=True, timeout=30, check=False)
    if result.returncode != 0:
        logger.warning("ffprobe failed for %s: %s", path, result.stderr[:200])
        return 0
    try:
        return round(float(result.stdout.strip()))
    except ValueError:
        return 0


class AudioPublisher:
    """Concatenates segments into one AAC file and uploads it."""

    def __init__(self, client: Any = None, temp_dir: str | None = None, bucket: str | None = None) -> None:
        self._client = client
        self.temp_dir = Path(temp_dir or settings.temp_dir)
        self.bucket = bucket or settings.r2_bucket_name

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_storage_client()
        return self._client

    def publish(self, segment_paths: Sequence[str], episode_id: str) -> PublishResult:
        if not segment_paths:
            raise AudioMergeError("No segments to merge")

        audio_key = f"{episode_id}.aac"
        concat_path = self.temp_dir / f"{episode_id}_concat.txt"
        output_path = self.temp_dir / f"{episode_id}_merged.aac"
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        try:
            concat_path.write_text("\n".join(f"file '{p}'" for p in segment_paths), encoding="utf-8")
            self._merge(concat_path, output_path)
            duration = probe_duration(output_path)
            size = output_path.stat().st_size

            with output_path.open("rb") as body:
                self.client.upload_fileobj(
                    body, self.bucket, audio_key, ExtraArgs={"ContentType": CONTENT_TYPE}
                )
            logger.info("Uploaded %s (%d bytes, %ds)", audio_key, size, duration)
        finally:
            for path in (concat_path, output_path):
                path.unlink(missing_ok=True)

        return PublishResult(audio_key=audio_key, duration_seconds=duration, size_bytes=size)

    @staticmethod
    def _merge(concat_path: Path, output_path: Path) -> None:
        args = [
            "ffmpeg",
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(concat_path),
            "-c:a", "aac",
            "-b:a", "128k",
            str(output_path),
        ]
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=600, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise AudioMergeError(f"ffmpeg merge failed: {e}") from e

        if result.returncode != 0:
            raise AudioMergeError(f"ffmpeg failed (rc={result.returncode}): {result.stderr[:300]}")
        if not output_path.exists():
            raise AudioMergeError("Merged file not created")
