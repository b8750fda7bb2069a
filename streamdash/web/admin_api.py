from __future__ import annotations

import json
import logging
import sqlite3

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError

from streamdash.catalog import repository as repo
from streamdash.catalog.identity import LocalVideoRef, extract_code, parse_video_ref
from streamdash.catalog.sharing import resolve_scope
from streamdash.core.config import AppConfig
from streamdash.providers.lixstream import LixstreamError
from streamdash.providers.lixstream.settings import (
    SECRET_KEYS,
    SETTING_ENV_KEYS,
    all_settings,
    build_client_from_settings,
    get_setting,
    mask_secret,
    set_setting,
)
from streamdash.providers.telegram import TelegramClient, TelegramError, build_caption
from streamdash.web.security import current_user, get_config, get_db, hash_password, require_superuser, verify_password

router = APIRouter(prefix="/api")

logger = logging.getLogger("api")

ROLES = ("superuser", "publisher")


def _publisher_or_error(conn: sqlite3.Connection, user_id: object) -> dict:
    try:
        target = repo.get_user(conn, int(str(user_id)))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="invalid_shared_to_user_id")
    if not target:
        raise HTTPException(status_code=404, detail="target_user_not_found")
    if target["role"] != "publisher":
        raise HTTPException(status_code=400, detail="can_only_share_to_publisher")
    return target


# users


@router.get("/users")
def list_users(conn: sqlite3.Connection = Depends(get_db), _user: dict = Depends(require_superuser)):
    return {"ok": True, "users": repo.list_users(conn)}


@router.post("/users")
def create_user(payload: dict, conn: sqlite3.Connection = Depends(get_db), _user: dict = Depends(require_superuser)):
    username = str(payload.get("username", "")).strip()
    password = str(payload.get("password", ""))
    role = payload.get("role") or "publisher"
    if not username or not password:
        raise HTTPException(status_code=400, detail="username_and_password_required")
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="invalid_role")
    if repo.get_user_by_username(conn, username):
        raise HTTPException(status_code=400, detail="username_exists")

    user_id = repo.create_user(conn, username, hash_password(password), payload.get("email") or None, role)
    logger.info("user_created user_id=%s role=%s", user_id, role)
    return {"ok": True, "user": {"id": user_id, "username": username, "email": payload.get("email") or None, "role": role}}


@router.put("/users/update")
def update_user(payload: dict, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(require_superuser)):
    try:
        target_id = int(str(payload.get("id")))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="user_id_required")
    if target_id == user["id"]:
        raise HTTPException(status_code=400, detail="cannot_modify_self")
    target = repo.get_user(conn, target_id)
    if not target:
        raise HTTPException(status_code=404, detail="user_not_found")

    fields: dict[str, object] = {}
    if payload.get("username"):
        username = str(payload["username"]).strip()
        other = repo.get_user_by_username(conn, username)
        if other and other["id"] != target_id:
            raise HTTPException(status_code=400, detail="username_exists")
        fields["username"] = username
    if "email" in payload:
        fields["email"] = payload.get("email") or None
    if payload.get("role"):
        if payload["role"] not in ROLES:
            raise HTTPException(status_code=400, detail="invalid_role")
        fields["role"] = payload["role"]
    if payload.get("password"):
        fields["password_hash"] = hash_password(str(payload["password"]))
    if not fields:
        raise HTTPException(status_code=400, detail="no_updates")

    repo.update_user(conn, target_id, fields)
    logger.info("user_updated user_id=%s fields=%s", target_id, ",".join(sorted(fields)))
    updated = repo.get_user(conn, target_id) or {}
    updated.pop("password_hash", None)
    return {"ok": True, "user": updated}


@router.delete("/users")
def delete_user(id: int, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(require_superuser)):
    if id == user["id"]:
        raise HTTPException(status_code=400, detail="cannot_delete_self")
    if not repo.delete_user(conn, id):
        raise HTTPException(status_code=404, detail="user_not_found")
    logger.info("user_deleted user_id=%s by=%s", id, user["id"])
    return {"ok": True}


@router.put("/profile")
def update_profile(payload: dict, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(current_user)):
    fields: dict[str, object] = {}
    if "email" in payload:
        fields["email"] = payload.get("email") or None

    new_password = payload.get("new_password")
    if new_password:
        current = payload.get("current_password")
        if not current:
            raise HTTPException(status_code=400, detail="current_password_required")
        row = repo.get_user(conn, user["id"])
        if not row or not verify_password(str(current), row["password_hash"]):
            raise HTTPException(status_code=400, detail="current_password_incorrect")
        fields["password_hash"] = hash_password(str(new_password))

    if not fields:
        raise HTTPException(status_code=400, detail="no_updates")
    repo.update_user(conn, user["id"], fields)
    updated = repo.get_user(conn, user["id"]) or {}
    updated.pop("password_hash", None)
    return {"ok": True, "user": updated}


# settings


@router.get("/settings")
def get_settings(
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    _user: dict = Depends(require_superuser),
):
    stored = all_settings(conn)
    effective = {}
    for key in SETTING_ENV_KEYS:
        value = get_setting(conn, key, cfg)
        effective[key] = mask_secret(value) if key in SECRET_KEYS else value
    return {"ok": True, "stored_keys": sorted(stored), "settings": effective}


@router.put("/settings")
def update_settings(payload: dict, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(require_superuser)):
    unknown = [k for k in payload if k not in SETTING_ENV_KEYS]
    if unknown:
        raise HTTPException(status_code=400, detail=f"unknown_settings: {','.join(sorted(unknown))}")
    for key, value in payload.items():
        set_setting(conn, key, None if value is None else str(value).strip())
    logger.info("settings_updated keys=%s by=%s", ",".join(sorted(payload)), user["id"])
    return {"ok": True, "updated": sorted(payload)}


# shares


@router.post("/shares/video")
def share_video(payload: dict, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(require_superuser)):
    try:
        ref = parse_video_ref(payload.get("video"))
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="video_ref_required")
    target = _publisher_or_error(conn, payload.get("shared_to_user_id"))

    if isinstance(ref, LocalVideoRef):
        video = repo.get_video(conn, ref.id)
        if not video:
            raise HTTPException(status_code=404, detail="video_not_found")
        code = video.get("remote_file_id")
        if not code:
            raise HTTPException(status_code=400, detail="video_has_no_remote_code")
    else:
        code = ref.code

    created = repo.add_video_share(conn, ref.key, code, user["id"], target["id"])
    return {"ok": True, "created": created, "video": ref.key, "code": code}


@router.delete("/shares/video")
def unshare_video(
    video: str,
    shared_to_user_id: int,
    conn: sqlite3.Connection = Depends(get_db),
    _user: dict = Depends(require_superuser),
):
    try:
        ref = parse_video_ref(video)
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="invalid_video_ref")
    return {"ok": True, "removed": repo.remove_video_share(conn, ref.key, shared_to_user_id)}


@router.get("/shares/video")
def video_shares(video: str, conn: sqlite3.Connection = Depends(get_db), _user: dict = Depends(require_superuser)):
    try:
        ref = parse_video_ref(video)
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="invalid_video_ref")
    return {"ok": True, "shares": repo.list_video_shares(conn, ref.key)}


@router.post("/shares/folder")
def share_folder(payload: dict, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(require_superuser)):
    try:
        folder_id = int(str(payload.get("folder_id")))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="folder_id_required")
    folder = repo.get_folder(conn, folder_id)
    if not folder:
        raise HTTPException(status_code=404, detail="folder_not_found")
    target = _publisher_or_error(conn, payload.get("shared_to_user_id"))
    created = repo.add_folder_share(conn, folder_id, folder.get("remote_dir_id"), user["id"], target["id"])
    return {"ok": True, "created": created, "folder_id": folder_id}


@router.delete("/shares/folder")
def unshare_folder(
    folder_id: int,
    shared_to_user_id: int,
    conn: sqlite3.Connection = Depends(get_db),
    _user: dict = Depends(require_superuser),
):
    return {"ok": True, "removed": repo.remove_folder_share(conn, folder_id, shared_to_user_id)}


@router.get("/shares/folder")
def folder_shares(folder_id: int, conn: sqlite3.Connection = Depends(get_db), _user: dict = Depends(require_superuser)):
    return {"ok": True, "shares": repo.list_folder_shares(conn, folder_id)}


# posts


def _links_for_post(conn: sqlite3.Connection, cfg: AppConfig, user: dict, refs: list) -> list[str]:
    scope = resolve_scope(conn, user)
    links: list[str] = []
    remote_codes: list[str] = []
    for ref in refs:
        if isinstance(ref, LocalVideoRef):
            video = repo.get_video(conn, ref.id)
            if video and (scope.unrestricted or video["user_id"] == user["id"]):
                link = video.get("share_link") or video.get("embed_link")
                if link:
                    links.append(link)
        elif scope.unrestricted or ref.code in scope.shared_codes:
            remote_codes.append(ref.code)

    if remote_codes:
        try:
            remote = build_client_from_settings(conn, cfg).list_all_files()
        except LixstreamError as e:
            logger.error("post_remote_lookup_failed err=%s", e)
            raise HTTPException(status_code=502, detail=str(e))
        by_code = {extract_code(f): f for f in remote}
        for code in remote_codes:
            f = by_code.get(code)
            if f and (f.get("share_link") or f.get("embed_link")):
                links.append(f.get("share_link") or f.get("embed_link"))
    return links


@router.post("/posts")
def create_post(
    title: str = Form(...),
    video_ids: str = Form(...),
    post_to_channel: bool = Form(False),
    image: UploadFile | None = File(None),
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    """Record a post and optionally send it to the Telegram channel.

    ``video_ids`` is a JSON list of video refs (``"local:12"``, ``"remote:abc"`` or objects).
    A channel failure is reported in ``channel_error`` and does not undo the post.
    """
    title = title.strip()
    try:
        raw_ids = json.loads(video_ids or "[]")
        refs = [parse_video_ref(v) for v in raw_ids] if isinstance(raw_ids, list) else []
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="invalid_video_ids")
    if not title or not refs:
        raise HTTPException(status_code=400, detail="title_and_videos_required")

    links = _links_for_post(conn, cfg, user, refs)
    if not links:
        raise HTTPException(status_code=400, detail="no_valid_videos")

    post_id = repo.insert_post(conn, user["id"], title, [r.key for r in refs])
    repo.log_activity(conn, user["id"], "create_post", "post", post_id, {"videos": len(refs)})

    message_id = None
    channel_error = None
    if post_to_channel:
        channel_id = get_setting(conn, "telegram_channel_id", cfg)
        if not channel_id:
            channel_error = "telegram_channel_id_missing"
        else:
            photo = image.file.read() if image is not None else None
            try:
                caption = build_caption(title, links, get_setting(conn, "telegram_channel_name", cfg))
                client = TelegramClient(get_setting(conn, "telegram_bot_token", cfg) or "", timeout=cfg.telegram.timeout_sec)
                message_id = client.post(
                    channel_id,
                    caption,
                    photo=photo or None,
                    filename=(image.filename if image is not None else None) or "photo.jpg",
                    content_type=image.content_type if image is not None else None,
                )
                repo.mark_post_sent(conn, post_id, message_id)
            except TelegramError as e:
                channel_error = str(e)
        if channel_error:
            logger.warning("post_channel_failed post_id=%s err=%s", post_id, channel_error)

    return {"ok": True, "post_id": post_id, "channel_message_id": message_id, "channel_error": channel_error}


@router.get("/posts")
def list_posts(conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(current_user)):
    owner = None if user["role"] == "superuser" else user["id"]
    return {"ok": True, "posts": repo.list_posts(conn, owner)}


@router.get("/posts/preview")
def post_preview(
    title: str = "",
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    _user: dict = Depends(current_user),
):
    channel_name = get_setting(conn, "telegram_channel_name", cfg)
    preview = build_caption(title or "<title>", ["<link>"], channel_name)
    return {"ok": True, "channel_name": channel_name, "preview": preview}


# activity


@router.get("/activity")
def activity(
    page: int = 1,
    page_size: int = 20,
    action: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    if action and action not in repo.ACTIVITY_ACTIONS:
        raise HTTPException(status_code=400, detail="invalid_action")
    page = max(1, page)
    page_size = min(max(1, page_size), 100)
    owner = None if user["role"] == "superuser" else user["id"]
    logs = repo.list_activity(conn, limit=page_size, offset=(page - 1) * page_size, user_id=owner, action=action)
    return {"ok": True, "page": page, "page_size": page_size, "logs": logs}


@router.get("/activity/summary")
def activity_summary(
    days: int = 7,
    user_id: int | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    days = min(max(1, days), 90)
    owner = user_id if user["role"] == "superuser" else user["id"]
    return {"ok": True, **repo.activity_summary(conn, days=days, user_id=owner)}
