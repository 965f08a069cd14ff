"""Text-to-speech synthesis of script segments."""

import logging
import random
from collections.abc import Sequence
from pathlib import Path

from core.config import settings
from executors.llm import OpenAIGateway
from pipeline.models import ScriptLine, SynthesisResult, Usage
from pipeline.stages import segment_path

logger = logging.getLogger(__name__)

MAX_INSTRUCTION_LENGTH = 400


def assign_voices(script: Sequence[ScriptLine], voices: Sequence[str]) -> dict[str, str]:
    """Pick a random voice per speaker; HOST and EXPERT get distinct voices when possible."""
    shuffled = list(voices)
    random.shuffle(shuffled)
    speakers = {line.speaker for line in script}

    if "NARRATOR" in speakers:
        return {"NARRATOR": shuffled[0]}
    return {
        "HOST": shuffled[0],
        "EXPERT": shuffled[1] if len(shuffled) > 1 else shuffled[0],
    }


class SpeechSynthesizer:
    """Writes one audio file per script line into the temp directory."""

    def __init__(
        self,
        gateway: OpenAIGateway | None = None,
        temp_dir: str | None = None,
        model: str | None = None,
        voices: Sequence[str] | None = None,
    ) -> None:
        self._gateway = gateway
        self.temp_dir = Path(temp_dir or settings.temp_dir)
        self._model = model or settings.tts_model
        self._voices = list(voices or settings.tts_voices)

    @property
    def gateway(self) -> OpenAIGateway:
        if self._gateway is None:
            self._gateway = OpenAIGateway()
        return self._gateway

    def synthesize(self, script: Sequence[ScriptLine], entry_id: str) -> SynthesisResult:
        voices = assign_voices(script, self._voices)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        paths = []
        characters = 0
        for index, line in enumerate(script):
            voice = voices.get(line.speaker) or next(iter(voices.values()))
            audio = self.gateway.speech(
                self._model,
                voice,
                line.text,
                line.instruction[:MAX_INSTRUCTION_LENGTH],
            )
            path = segment_path(self.temp_dir, entry_id, index)
            path.write_bytes(audio)
            paths.append(str(path))
            characters += len(line.text)

        logger.info("Synthesized %d segments (%d chars) for entry %s", len(paths), characters, entry_id)
        return SynthesisResult(
            segment_paths=tuple(paths),
            usage=Usage("openai_tts", self._model, characters),
        )
