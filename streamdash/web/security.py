from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Iterator

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request

from streamdash.catalog import repository as repo
from streamdash.core.config import AppConfig, load_config
from streamdash.providers.lixstream.db import get_conn

JWT_ALGORITHM = "HS256"

logger = logging.getLogger("api")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user: dict, cfg: AppConfig) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["id"]),
        "username": user["username"],
        "iat": now,
        "exp": now + timedelta(days=cfg.auth.token_ttl_days),
    }
    return jwt.encode(payload, cfg.auth.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, cfg: AppConfig) -> int | None:
    try:
        payload = jwt.decode(token, cfg.auth.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def get_config() -> AppConfig:
    return load_config()


def get_db(cfg: AppConfig = Depends(get_config)) -> Iterator[sqlite3.Connection]:
    conn = get_conn(cfg.database.path)
    try:
        yield conn
    finally:
        conn.close()


def current_user(
    request: Request,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
) -> dict:
    """The signed cookie only carries the user id; role is read from the users table on every request."""
    token = request.cookies.get(cfg.auth.cookie_name)
    if not token:
        raise HTTPException(status_code=401, detail="unauthorized")
    user_id = decode_access_token(token, cfg)
    if user_id is None:
        raise HTTPException(status_code=401, detail="invalid_token")
    user = repo.get_user(conn, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="user_not_found")
    user.pop("password_hash", None)
    return user


def require_superuser(user: dict = Depends(current_user)) -> dict:
    if user["role"] != "superuser":
        raise HTTPException(status_code=403, detail="superuser_required")
    return user
