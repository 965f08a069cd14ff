"""Article extraction: structural parse with a model-based fallback."""

import logging

from bs4 import BeautifulSoup

from core.config import settings
from executors.llm import ChatGateway, create_chat_gateway
from pipeline.models import ExtractionResult, FallbackExtraction, Usage

logger = logging.getLogger(__name__)

NOISE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe")
MAX_FALLBACK_INPUT_CHARS = 100_000

EXTRACTION_PROMPT = (
    "You extract the main article text from web pages. Ignore navigation, ads, "
    "comments and boilerplate. Respond with a JSON object: "
    '{"content": "<the full article text as plain paragraphs>"}'
)


def _clean_soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NOISE_TAGS):
        tag.decompose()
    return soup


def _find_title(soup: BeautifulSoup) -> str:
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content"):
        return str(og_title["content"]).strip()
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    heading = soup.find("h1")
    return heading.get_text(strip=True) if heading else ""


class ArticleExtractor:
    """Pulls title and body text out of article HTML."""

    def __init__(self, gateway: ChatGateway | None = None, model: str | None = None) -> None:
        self._gateway = gateway
        self._model = model or settings.llm_model

    @property
    def gateway(self) -> ChatGateway:
        if self._gateway is None:
            self._gateway = create_chat_gateway()
        return self._gateway

    def extract(self, html: str) -> ExtractionResult:
        soup = _clean_soup(html)
        title = _find_title(soup)

        container = soup.find("article") or soup.find("main") or soup.body or soup
        paragraphs = [p.get_text(" ", strip=True) for p in container.find_all(["p", "li", "h2", "h3"])]
        body = "\n\n".join(p for p in paragraphs if p)
        if not body:
            body = container.get_text("\n", strip=True)

        return ExtractionResult(title=title, body=body)

    def extract_fallback(self, html: str) -> FallbackExtraction:
        text = _clean_soup(html).get_text("\n", strip=True)[:MAX_FALLBACK_INPUT_CHARS]
        data, input_tokens, output_tokens = self.gateway.complete_json(
            self._model,
            EXTRACTION_PROMPT,
            text,
            int(settings.max_extraction_tokens),
        )
        body = str(data.get("content") or "").strip()
        logger.info("Model extraction returned %d chars", len(body))
        return FallbackExtraction(
            body=body,
            usage=Usage(self.gateway.service, self._model, input_tokens, output_tokens),
        )
