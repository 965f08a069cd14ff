"""Entry points for scheduled and manually triggered pipeline jobs."""

import logging
import signal
import threading
from typing import Any

from core.budget import BudgetLedger
from core.db import init_db
from core.notify import Notifier
from core.utils import lambda_response
from executors.audio import AudioPublisher
from executors.extractor import ArticleExtractor
from executors.fetcher import HttpFetcher
from executors.llm import OpenAIGateway, create_chat_gateway
from executors.transcriber import ScriptTranscriber
from executors.tts import SpeechSynthesizer
from pipeline.scheduler import Scheduler
from pipeline.service import ResumablePipeline

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

_scheduler: Scheduler | None = None


def build_scheduler() -> Scheduler:
    """Wire the pipeline with the production stage executors."""
    speech = OpenAIGateway()
    chat = create_chat_gateway(speech)
    budget = BudgetLedger()
    notifier = Notifier()
    pipeline = ResumablePipeline(
        fetcher=HttpFetcher(),
        extractor=ArticleExtractor(chat),
        transcriber=ScriptTranscriber(chat),
        synthesizer=SpeechSynthesizer(speech),
        publisher=AudioPublisher(),
        budget=budget,
        notifier=notifier,
    )
    return Scheduler(pipeline, budget, notifier)


def get_scheduler() -> Scheduler:
    """Get or create the scheduler instance (singleton per process)."""
    global _scheduler
    if _scheduler is None:
        init_db()
        _scheduler = build_scheduler()
    return _scheduler


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    """
    Run one job in response to an external trigger.

    Expected event format:
    {
        "job": "process" | "cleanup"
    }

    Returns:
        Response with statusCode and body
    """
    job = event.get("job", "process")

    try:
        scheduler = get_scheduler()
        if job == "process":
            processed = scheduler.run_processing_job()
            body: dict[str, Any] = {"job": job, "processed": processed}
        elif job == "cleanup":
            report = scheduler.run_cleanup_job()
            body = {
                "job": job,
                "episodes_deleted": report.episodes_deleted,
                "entries_reset": report.entries_reset,
                "files_removed": report.files_removed,
            }
        else:
            return _error_response(400, "INVALID_INPUT", f"Unknown job: {job}")
    except Exception as e:
        logger.exception("Job %s failed", job)
        return _error_response(500, "INTERNAL_ERROR", str(e))

    return lambda_response(body)


def _error_response(status: int, error: str, message: str) -> dict[str, Any]:
    return lambda_response({"error": error, "message": message}, status)


def run() -> None:
    """Long-running worker: schedule both jobs until SIGINT/SIGTERM."""
    logging.basicConfig(level=logging.INFO)
    scheduler = get_scheduler()
    stopped = threading.Event()

    def _shutdown(signum: int, _frame: Any) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.start()
    stopped.wait()
    scheduler.stop(timeout=5.0)


if __name__ == "__main__":
    run()
