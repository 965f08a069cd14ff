"""Podcast script generation with a chat model."""

import logging

from core.config import settings
from executors.llm import ChatGateway, create_chat_gateway
from pipeline.models import ScriptLine, ScriptResult, Usage
from pipeline.stages import StageError

logger = logging.getLogger(__name__)

SPEAKERS = ("HOST", "EXPERT", "NARRATOR")

SCRIPT_PROMPT = (
    "Turn the article into a podcast script. Use either a single NARRATOR, or a "
    "dialogue between HOST and EXPERT. Cover the article faithfully. Respond with "
    'a JSON object {"segments": [{"speaker": "...", "text": "...", '
    '"instruction": "<short delivery direction for a voice actor>"}]}'
)


class ScriptGenerationError(StageError):
    def __init__(
        self, message: str, error_code: str = "SCRIPT_INVALID", usage: Usage | None = None
    ) -> None:
        super().__init__(message, error_code, usage)


class ScriptTranscriber:
    """Generates an ordered speaker/text/instruction script from article text."""

    def __init__(self, gateway: ChatGateway | None = None, model: str | None = None) -> None:
        self._gateway = gateway
        self._model = model or settings.llm_model

    @property
    def gateway(self) -> ChatGateway:
        if self._gateway is None:
            self._gateway = create_chat_gateway()
        return self._gateway

    def generate_script(self, body: str, title: str) -> ScriptResult:
        data, input_tokens, output_tokens = self.gateway.complete_json(
            self._model,
            SCRIPT_PROMPT,
            f"Title: {title}\n\n{body}",
            int(settings.max_transcript_tokens),
        )
        usage = Usage(self.gateway.service, self._model, input_tokens, output_tokens)

        segments = data.get("segments")
        if not isinstance(segments, list) or not segments:
            raise ScriptGenerationError("Model returned no script segments", usage=usage)

        script = []
        for item in segments:
            try:
                line = ScriptLine.from_dict(item)
            except (KeyError, TypeError) as e:
                raise ScriptGenerationError(f"Malformed script segment: {e}", usage=usage) from e
            if line.speaker not in SPEAKERS:
                raise ScriptGenerationError(f"Unknown speaker: {line.speaker}", usage=usage)
            script.append(line)

        logger.info("Generated script '%s' with %d segments", title[:50], len(script))
        return ScriptResult(script=tuple(script), usage=usage)
