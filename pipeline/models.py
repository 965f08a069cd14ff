"""Value types passed between the pipeline and its stage executors."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class ScriptLine:
    """One spoken line of a generated script."""

    speaker: str
    text: str
    instruction: str

    def to_dict(self) -> dict[str, str]:
        return {"speaker": self.speaker, "text": self.text, "instruction": self.instruction}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScriptLine":
        return cls(
            speaker=str(data["speaker"]),
            text=str(data["text"]),
            instruction=str(data["instruction"]),
        )


@dataclass(frozen=True, slots=True)
class Usage:
    """Billable units consumed by one external call."""

    service: str
    model: str
    input_units: int
    output_units: int | None = None


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    title: str
    body: str


@dataclass(frozen=True, slots=True)
class FallbackExtraction:
    body: str
    usage: Usage


@dataclass(frozen=True, slots=True)
class ScriptResult:
    script: tuple[ScriptLine, ...]
    usage: Usage


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    segment_paths: tuple[str, ...]
    usage: Usage


@dataclass(frozen=True, slots=True)
class PublishResult:
    audio_key: str
    duration_seconds: int
    size_bytes: int


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """Outcome of one pipeline run over an entry."""

    success: bool
    entry_id: str
    episode_id: str | None = None
    error: str | None = None
