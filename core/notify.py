"""Pushover notifications for budget and failure events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from core.config import settings

if TYPE_CHECKING:
    from core.budget import BudgetStatus

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"
TITLE_PREFIX = "Unread Cast"


class Notifier:
    """Sends operator notifications. Logs instead of sending when unconfigured."""

    def __init__(self, user_key: str | None = None, app_token: str | None = None) -> None:
        self.user_key = user_key if user_key is not None else settings.pushover_user_key
        self.app_token = app_token if app_token is not None else settings.pushover_app_token

    @property
    def enabled(self) -> bool:
        return bool(self.user_key and self.app_token)

    def send(self, title: str, message: str, priority: int = 0) -> None:
        if not self.enabled:
            logger.info("[Pushover disabled] %s: %s", title, message)
            return

        try:
            response = httpx.post(
                PUSHOVER_URL,
                json={
                    "token": self.app_token,
                    "user": self.user_key,
                    "title": title,
                    "message": message,
                    "priority": priority,
                },
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            logger.error("Error sending Pushover notification: %s", e)
            return

        if response.status_code >= 400:
            logger.error("Failed to send Pushover notification: %d", response.status_code)

    def send_budget_warning(self, percent_used: float, spent: float, budget: float) -> None:
        self.send(
            f"{TITLE_PREFIX} - Budget Warning",
            f"Monthly spend at {percent_used:.0f}% (${spent:.2f} of ${budget:.2f}). "
            "Processing will pause at 100%.",
        )

    def send_budget_exceeded(self, spent: float, budget: float) -> None:
        self.send(
            f"{TITLE_PREFIX} - Budget Exceeded",
            f"Monthly budget exceeded (${spent:.2f} of ${budget:.2f}). "
            "Processing is paused until next month.",
            priority=1,
        )

    def notify_budget_transition(self, status: BudgetStatus) -> None:
        if status.status == "exceeded":
            self.send_budget_exceeded(status.spent_usd, status.budget_usd)
        elif status.status == "warning":
            self.send_budget_warning(status.percent_used, status.spent_usd, status.budget_usd)

    def notify_permanent_failure(self, entry_id: str, url: str, message: str) -> None:
        self.send(
            f"{TITLE_PREFIX} - Processing Failed",
            f"Entry {entry_id} failed after max retries.\nURL: {url}\nError: {message}",
        )
