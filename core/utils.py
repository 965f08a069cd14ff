"""Shared utilities."""

import json
from datetime import datetime
from typing import Any

from flask import Response

# Large text columns omitted from API listings
SUMMARY_EXCLUDED_COLUMNS = frozenset({"extracted_content", "transcript_json"})


def json_response(data: dict[str, Any], status: int = 200) -> Response:
    """Create a Flask JSON response."""
    return Response(json.dumps(data), status=status, mimetype="application/json")


def lambda_response(data: dict[str, Any], status: int = 200) -> dict[str, Any]:
    """Create an event-handler response."""
    return {"statusCode": status, "body": json.dumps(data)}


def to_dict(obj: Any, exclude: frozenset[str] = frozenset()) -> dict[str, Any]:
    """Serialize SQLAlchemy model to dictionary."""
    result: dict[str, Any] = {}
    for c in obj.__table__.columns:
        if c.name in exclude:
            continue
        value = getattr(obj, c.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        result[c.name] = value
    return result
