"""Production stage executors used by the pipeline."""

from executors.audio import AudioMergeError, AudioPublisher
from executors.extractor import ArticleExtractor
from executors.fetcher import FetchError, HttpFetcher
from executors.llm import AnthropicGateway, ChatGateway, OpenAIGateway, create_chat_gateway
from executors.transcriber import ScriptGenerationError, ScriptTranscriber
from executors.tts import SpeechSynthesizer

__all__ = [
    "AnthropicGateway",
    "ArticleExtractor",
    "AudioMergeError",
    "AudioPublisher",
    "ChatGateway",
    "FetchError",
    "HttpFetcher",
    "OpenAIGateway",
    "ScriptGenerationError",
    "ScriptTranscriber",
    "SpeechSynthesizer",
    "create_chat_gateway",
]
