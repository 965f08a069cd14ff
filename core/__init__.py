"""Core utilities shared across all modules."""

from core.budget import BudgetLedger, BudgetStatus, PricingConfigError
from core.cache import RedisCache, create_cache
from core.config import settings
from core.db import (
    acquire_lock,
    create_entry,
    get_eligible_entries,
    get_entry,
    init_db,
    list_entries,
    release_lock,
    request_reprocess,
)
from core.models import Base, Entry, EntryStatus, Episode, ProcessingLock, UsageRecord
from core.notify import Notifier

__all__ = [
    "Base",
    "BudgetLedger",
    "BudgetStatus",
    "Entry",
    "EntryStatus",
    "Episode",
    "Notifier",
    "PricingConfigError",
    "ProcessingLock",
    "RedisCache",
    "UsageRecord",
    "acquire_lock",
    "create_cache",
    "create_entry",
    "get_eligible_entries",
    "get_entry",
    "init_db",
    "list_entries",
    "release_lock",
    "request_reprocess",
    "settings",
]
