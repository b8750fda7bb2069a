from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    jwt_secret: str = "change-me-in-production"
    token_ttl_days: int = Field(default=7, ge=1, le=90)
    cookie_name: str = "auth_token"
    cookie_secure: bool = False


class LixstreamConfig(BaseModel):
    api_url: str = "https://api.luxsioab.com/pub/api"
    api_key: str = ""
    timeout_sec: int = 30
    # The provider caps file/page at 100 items.
    page_size: int = Field(default=100, ge=1, le=100)


class TelegramConfig(BaseModel):
    bot_token: str = ""
    channel_id: str = ""
    channel_name: str = "channel telegram"
    timeout_sec: int = 30


class ListingConfig(BaseModel):
    # How remote files are fetched before reconciliation:
    # - global: drain the full file/page listing
    # - per_folder: list only the requested folder's directory when one is selected
    strategy: Literal["global", "per_folder"] = "global"
    default_page_size: int = Field(default=15, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=500)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "runtime/service.log"


class DatabaseConfig(BaseModel):
    path: str = "runtime/streamdash.db"


class AppConfig(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    lixstream: LixstreamConfig = Field(default_factory=LixstreamConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    listing: ListingConfig = Field(default_factory=ListingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8000


PROJECT_ROOT = Path(os.environ.get("STREAMDASH_HOME") or Path.cwd())
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"


def _resolve(path_value: str) -> str:
    p = Path(path_value).expanduser()
    if not p.is_absolute():
        p = PROJECT_ROOT / p
    return str(p)


def resolve_runtime_paths(cfg: AppConfig) -> AppConfig:
    """Anchor relative log/database paths to PROJECT_ROOT."""
    cfg.logging.file = _resolve(cfg.logging.file)
    cfg.database.path = _resolve(cfg.database.path)
    return cfg


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def _dump_yaml(cfg: AppConfig) -> str:
    import yaml

    return yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(_dump_yaml(cfg), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(_dump_yaml(cfg), encoding="utf-8")
        resolve_runtime_paths(cfg)
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = resolve_runtime_paths(AppConfig.model_validate(data))
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_dump_yaml(cfg), encoding="utf-8")
