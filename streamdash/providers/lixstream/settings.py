from __future__ import annotations

import os
import sqlite3

from streamdash.core.config import AppConfig

from .client import LixstreamClient

# settings key -> environment variable consulted when the row is missing or empty
SETTING_ENV_KEYS: dict[str, str] = {
    "lixstream_api_key": "LIXSTREAM_API_KEY",
    "lixstream_api_url": "LIXSTREAM_API_URL",
    "telegram_bot_token": "TELEGRAM_BOT_TOKEN",
    "telegram_channel_id": "TELEGRAM_CHANNEL_ID",
    "telegram_channel_name": "TELEGRAM_CHANNEL_NAME",
}

SECRET_KEYS = {"lixstream_api_key", "telegram_bot_token"}


def _config_value(cfg: AppConfig | None, key: str) -> str | None:
    if cfg is None:
        return None
    values = {
        "lixstream_api_key": cfg.lixstream.api_key,
        "lixstream_api_url": cfg.lixstream.api_url,
        "telegram_bot_token": cfg.telegram.bot_token,
        "telegram_channel_id": cfg.telegram.channel_id,
        "telegram_channel_name": cfg.telegram.channel_name,
    }
    return values.get(key) or None


def get_setting(conn: sqlite3.Connection, key: str, cfg: AppConfig | None = None) -> str | None:
    """Database row, then environment variable, then config.yaml."""
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if row and row["value"]:
        return row["value"]
    env_key = SETTING_ENV_KEYS.get(key)
    if env_key and os.environ.get(env_key):
        return os.environ[env_key]
    return _config_value(cfg, key)


def set_setting(conn: sqlite3.Connection, key: str, value: str | None):
    if value is None or value == "":
        conn.execute("DELETE FROM settings WHERE key = ?", (key,))
    else:
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
            """,
            (key, value),
        )
    conn.commit()


def all_settings(conn: sqlite3.Connection) -> dict[str, str]:
    rows = conn.execute("SELECT key, value FROM settings").fetchall()
    return {r["key"]: r["value"] for r in rows}


def mask_secret(value: str | None) -> str | None:
    if not value:
        return value
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"


def build_client_from_settings(conn: sqlite3.Connection, cfg: AppConfig) -> LixstreamClient:
    return LixstreamClient(
        api_key=get_setting(conn, "lixstream_api_key", cfg) or "",
        api_url=get_setting(conn, "lixstream_api_url", cfg) or cfg.lixstream.api_url,
        timeout=cfg.lixstream.timeout_sec,
        page_size=cfg.lixstream.page_size,
    )
