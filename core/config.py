"""Project-wide configuration using dynaconf."""

import os
from pathlib import Path

from dynaconf import Dynaconf

_root = Path(os.environ.get("APP_ROOT_PATH", "."))

settings = Dynaconf(
    envvar_prefix="APP",
    root_path=_root,
    settings_files=["settings.toml", ".secrets.toml"],
    environments=True,
    load_dotenv=True,
    default_env="development",
    # Database
    database_url="sqlite:///data/unreadcast.db",
    # Redis
    redis_url="redis://localhost:6379/0",
    cache_ttl_seconds=3600,
    rate_limit_window_seconds=1,
    # Storage
    data_dir="/data",
    temp_dir="/data/temp",
    # Budget
    monthly_budget_usd=10.0,
    budget_warning_percent=80,
    pricing_config_path="/data/pricing.json",
    # Pipeline
    max_retries=3,
    min_content_length=500,
    # Scheduler
    lock_stale_minutes=30,
    retention_days=90,
    orphan_file_max_age_hours=24,
    processing_interval_seconds=6 * 60 * 60,
    cleanup_interval_seconds=24 * 60 * 60,
    # Fetch
    fetch_timeout_seconds=30.0,
    fetch_user_agent="Mozilla/5.0 (compatible; UnreadCast/1.0)",
    # LLM / TTS
    llm_provider="openai",
    openai_api_key="",
    anthropic_api_key="",
    llm_model="gpt-4o",
    tts_model="gpt-4o-mini-tts",
    tts_voices=[
        "alloy",
        "ash",
        "ballad",
        "coral",
        "echo",
        "fable",
        "nova",
        "onyx",
        "sage",
        "shimmer",
        "verse",
    ],
    llm_rate_limit_requests=5,
    max_transcript_tokens=16000,
    max_extraction_tokens=8000,
    # Object storage (S3-compatible, e.g. Cloudflare R2)
    r2_account_id="",
    r2_access_key_id="",
    r2_secret_access_key="",
    r2_bucket_name="",
    r2_public_url="",
    # Notifications
    pushover_user_key="",
    pushover_app_token="",
    # API
    api_key="",
)
