from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

DATA_DIR = Path(__file__).parent.parent / "data"


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Log source (append-only JSONL written by Claude Code)
    history_path: Path = Path.home() / ".claude" / "history.jsonl"

    # Durable key-value store for limits, settings and the last snapshot
    data_dir: Path = DATA_DIR
    limits_db_path: Path = DATA_DIR / "usage.db"

    # Refresh cadence (seconds). Values outside the range are clamped.
    refresh_interval: int = 60
    min_refresh_interval: int = 30
    max_refresh_interval: int = 300

    # Characters per estimated token, used when the store has no value
    token_estimation_ratio: int = 7

    # Threshold notifications (store values win over these)
    show_notifications: bool = True
    notification_threshold: float = 80.0  # percent
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Logging
    log_level: str = "INFO"

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000


settings = Settings()
