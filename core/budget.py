"""Monthly cost ledger backed by the usage log."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.config import settings
from core.db import create_usage_record, sum_usage_since
from core.models import UsageRecord, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PRICING_PATH = "/app/pricing.json"

BUDGET_OK = "ok"
BUDGET_WARNING = "warning"
BUDGET_EXCEEDED = "exceeded"


class PricingConfigError(Exception):
    """Pricing config is missing, unreadable or lacks a model."""

    def __init__(self, message: str, error_code: str = "PRICING_CONFIG_MISSING") -> None:
        super().__init__(message)
        self.error_code = error_code


@dataclass(frozen=True, slots=True)
class BudgetStatus:
    """Spend for the current calendar month."""

    period: str
    spent_usd: float
    budget_usd: float
    remaining_usd: float
    percent_used: float
    status: str
    processing_enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "spent_usd": self.spent_usd,
            "budget_usd": self.budget_usd,
            "remaining_usd": self.remaining_usd,
            "percent_used": self.percent_used,
            "status": self.status,
            "processing_enabled": self.processing_enabled,
        }


class BudgetLedger:
    """Records billed usage and reports whether spending may continue."""

    def __init__(
        self,
        pricing_config_path: str | None = None,
        monthly_budget_usd: float | None = None,
        warning_percent: float | None = None,
    ) -> None:
        self.pricing_config_path = pricing_config_path or settings.pricing_config_path
        self.monthly_budget_usd = float(
            monthly_budget_usd if monthly_budget_usd is not None else settings.monthly_budget_usd
        )
        self.warning_percent = float(
            warning_percent if warning_percent is not None else settings.budget_warning_percent
        )
        self._pricing: dict[str, Any] | None = None

    def load_pricing_config(self) -> dict[str, Any]:
        """Load pricing from the configured path, falling back to the bundled default."""
        if self._pricing is not None:
            return self._pricing

        paths = [self.pricing_config_path]
        if self.pricing_config_path != DEFAULT_PRICING_PATH:
            paths.append(DEFAULT_PRICING_PATH)

        for path in paths:
            candidate = Path(path)
            if not candidate.exists():
                continue
            try:
                self._pricing = json.loads(candidate.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Failed to parse pricing config at %s: %s", path, e)
                continue
            logger.info("Loaded pricing config from %s", path)
            return self._pricing

        raise PricingConfigError(f"Failed to load pricing config from any of: {', '.join(paths)}")

    def calculate_cost(
        self,
        service: str,
        model: str,
        input_units: int,
        output_units: int | None = None,
    ) -> float:
        pricing = self.load_pricing_config()

        if service in ("openai_chat", "openai_tts"):
            model_pricing = (pricing.get("openai") or {}).get(model)
            if model_pricing is None:
                raise PricingConfigError(f"Model {model} not found in pricing config")
            if service == "openai_tts":
                return input_units / 1_000_000 * model_pricing.get("chars_per_1m", 0)
            return self._token_cost(model_pricing, input_units, output_units)

        if service == "anthropic_chat":
            model_pricing = (pricing.get("anthropic") or {}).get(model)
            if model_pricing is None:
                raise PricingConfigError(f"Model {model} not found in pricing config")
            return self._token_cost(model_pricing, input_units, output_units)

        raise ValueError(f"Unknown service: {service}")

    @staticmethod
    def _token_cost(model_pricing: dict[str, float], input_units: int, output_units: int | None) -> float:
        input_cost = input_units / 1_000_000 * model_pricing.get("input_per_1m", 0)
        output_cost = (output_units or 0) / 1_000_000 * model_pricing.get("output_per_1m", 0)
        return input_cost + output_cost

    def log_usage(
        self,
        entry_id: str | None,
        service: str,
        model: str,
        input_units: int,
        output_units: int | None = None,
    ) -> UsageRecord:
        """Price one billed call and append it to the usage log."""
        cost = self.calculate_cost(service, model, input_units, output_units)
        record = create_usage_record(entry_id, service, model, input_units, output_units, cost)
        logger.info("Logged %s/%s usage for entry %s: $%.4f", service, model, entry_id, cost)
        return record

    def get_status(self) -> BudgetStatus:
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        spent = sum_usage_since(month_start)
        budget = self.monthly_budget_usd
        percent = spent / budget * 100 if budget > 0 else 100.0

        if percent >= 100:
            status = BUDGET_EXCEEDED
        elif percent >= self.warning_percent:
            status = BUDGET_WARNING
        else:
            status = BUDGET_OK

        return BudgetStatus(
            period=now.strftime("%Y-%m"),
            spent_usd=spent,
            budget_usd=budget,
            remaining_usd=max(0.0, budget - spent),
            percent_used=percent,
            status=status,
            processing_enabled=status != BUDGET_EXCEEDED,
        )

    def can_process(self) -> bool:
        try:
            self.load_pricing_config()
        except PricingConfigError:
            logger.error("Pricing config unavailable, processing disabled")
            return False
        return self.get_status().processing_enabled
