"""Flask API for local development and testing."""

import logging
import threading
from urllib.parse import urlparse

from flask import Flask, Response, request

from core.config import settings
from core.db import (
    count_eligible_entries,
    create_entry,
    get_entry,
    get_entry_by_url,
    get_entry_episodes,
    get_usage_records,
    init_db,
    list_entries,
    request_reprocess,
)
from core.utils import SUMMARY_EXCLUDED_COLUMNS, json_response, to_dict

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

PUBLIC_PATHS = ("/health",)


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _error(status: int, error: str, message: str, code: str) -> Response:
    return json_response({"error": error, "message": message, "code": code}, status)


@app.before_request
def ensure_db() -> None:
    if not getattr(app, "_db_initialized", False):
        init_db()
        app._db_initialized = True  # type: ignore[attr-defined]


@app.before_request
def check_api_key() -> Response | None:
    if not settings.api_key or request.path.startswith(PUBLIC_PATHS):
        return None
    if request.headers.get("X-API-Key") != settings.api_key:
        return _error(401, "Unauthorized", "Missing or invalid API key", "UNAUTHORIZED")
    return None


@app.route("/entries", methods=["POST"])
def create_entry_endpoint() -> Response:
    """Submit a URL for conversion."""
    data = request.get_json(silent=True) or {}
    url = data.get("url", "")
    if not is_valid_url(url):
        return _error(400, "Bad Request", "Invalid URL format", "INVALID_URL")
    if get_entry_by_url(url):
        return _error(409, "Conflict", "URL already exists", "DUPLICATE_URL")

    entry = create_entry(url, data.get("category"))
    logger.info("Created entry %s for %s", entry.id, url)
    return json_response(to_dict(entry), 201)


@app.route("/entries", methods=["GET"])
def list_entries_endpoint() -> Response:
    entries = list_entries(request.args.get("status"))
    return json_response({"entries": [to_dict(e, SUMMARY_EXCLUDED_COLUMNS) for e in entries]})


@app.route("/entries/<entry_id>", methods=["GET"])
def get_entry_endpoint(entry_id: str) -> Response:
    """Entry detail with its published episodes and billed usage."""
    entry = get_entry(entry_id)
    if not entry:
        return _error(404, "Not Found", "Entry not found", "NOT_FOUND")
    data = to_dict(entry)
    data["episodes"] = [to_dict(e) for e in get_entry_episodes(entry_id)]
    data["usage"] = [to_dict(r) for r in get_usage_records(entry_id)]
    return json_response(data)


@app.route("/entries/<entry_id>/reprocess", methods=["POST"])
def reprocess_entry_endpoint(entry_id: str) -> Response:
    """Discard cached artifacts and queue the entry for a full rerun."""
    entry = request_reprocess(entry_id)
    if not entry:
        return _error(404, "Not Found", "Entry not found", "NOT_FOUND")
    logger.info("Entry %s flagged for reprocessing", entry_id)
    return json_response(to_dict(entry, SUMMARY_EXCLUDED_COLUMNS), 202)


@app.route("/process", methods=["POST"])
def process_endpoint() -> Response:
    from pipeline.handler import get_scheduler

    scheduler = get_scheduler()
    if not scheduler.budget.can_process():
        status = scheduler.budget.get_status()
        if status.status == "exceeded":
            return _error(503, "Service Unavailable", "Budget exceeded", "BUDGET_EXCEEDED")
        return _error(
            503,
            "Service Unavailable",
            "Pricing config missing or invalid",
            "PRICING_CONFIG_MISSING",
        )

    pending = count_eligible_entries(scheduler.config.max_retries)
    threading.Thread(target=scheduler.run_processing_job, daemon=True).start()
    return json_response({"message": "Processing started", "pending_count": pending}, 202)


@app.route("/budget", methods=["GET"])
def budget_endpoint() -> Response:
    from pipeline.handler import get_scheduler

    return json_response(get_scheduler().budget.get_status().to_dict())


@app.route("/health", methods=["GET"])
def health() -> Response:
    return json_response({"status": "ok"})


def run() -> None:
    app.run(host="0.0.0.0", port=5000, debug=True)


if __name__ == "__main__":
    run()
