from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from streamdash.catalog import repository as repo
from streamdash.catalog.deletion import delete_folder_recursive, delete_videos
from streamdash.catalog.folder_tree import build_tree, flatten
from streamdash.catalog.identity import code_from_links, parse_video_ref
from streamdash.catalog.reconciler import FolderFilter, fetch_remote_files, paginate, reconcile
from streamdash.catalog.sharing import resolve_scope
from streamdash.catalog.sync_engine import SyncEngine
from streamdash.catalog.tombstones import TombstoneTracker
from streamdash.core.config import AppConfig
from streamdash.providers.lixstream import LixstreamError
from streamdash.providers.lixstream.db import get_conn, init_db
from streamdash.providers.lixstream.settings import build_client_from_settings
from streamdash.web import security
from streamdash.web.security import current_user, get_config, get_db, require_superuser

router = APIRouter(prefix="/api")

logger = logging.getLogger("api")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_int(value: object, field: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"invalid_{field}")


def _as_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise HTTPException(status_code=400, detail=f"invalid_{field}")


def _optional_folder_id(value: object) -> int | None:
    if value is None or value == "" or value == 0 or value == "0":
        return None
    return _as_int(value, "folder_id")


def _upstream_error(exc: LixstreamError) -> HTTPException:
    logger.error("lixstream_call_failed err=%s", exc)
    return HTTPException(status_code=502, detail=str(exc))


def _public_user(user: dict) -> dict:
    return {k: user.get(k) for k in ("id", "username", "email", "role", "created_at")}


# health


def _build_readiness_payload() -> dict:
    checks: dict[str, bool] = {
        "config_load": False,
        "database_parent_ready": False,
        "log_parent_ready": False,
        "database_ready": False,
        "lixstream_key_configured": False,
    }
    warnings: list[str] = []
    errors: list[str] = []

    cfg = None
    try:
        cfg = security.load_config()
        checks["config_load"] = True
    except Exception as e:
        errors.append(f"config_load_failed: {e}")

    if cfg is not None:
        try:
            Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
            checks["database_parent_ready"] = True
        except OSError as e:
            errors.append(f"database_parent_unavailable: {e}")

        try:
            Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
            checks["log_parent_ready"] = True
        except OSError as e:
            errors.append(f"log_parent_unavailable: {e}")

        if checks["database_parent_ready"]:
            try:
                init_db(cfg.database.path)
                conn = get_conn(cfg.database.path)
                try:
                    client = build_client_from_settings(conn, cfg)
                finally:
                    conn.close()
                checks["database_ready"] = True
                checks["lixstream_key_configured"] = bool(client.api_key)
            except sqlite3.Error as e:
                errors.append(f"database_unavailable: {e}")

        if checks["database_ready"] and not checks["lixstream_key_configured"]:
            warnings.append("lixstream_api_key_missing")

    ok = checks["config_load"] and checks["database_ready"] and checks["log_parent_ready"]
    return {"ok": ok, "checked_at": _now_iso(), "checks": checks, "warnings": warnings, "errors": errors}


@router.get("/healthz")
def healthz():
    return {"ok": True, "status": "alive", "checked_at": _now_iso()}


@router.get("/readyz")
def readyz():
    payload = _build_readiness_payload()
    return JSONResponse(status_code=200 if payload["ok"] else 503, content=payload)


# auth


@router.post("/auth/login")
def login(
    payload: dict,
    response: Response,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
):
    username = str(payload.get("username", "")).strip()
    password = str(payload.get("password", ""))
    if not username or not password:
        raise HTTPException(status_code=400, detail="username_and_password_required")

    user = repo.get_user_by_username(conn, username)
    if not user or not security.verify_password(password, user["password_hash"]):
        logger.info("login_failed username=%s", username)
        raise HTTPException(status_code=401, detail="invalid_credentials")

    token = security.create_access_token(user, cfg)
    response.set_cookie(
        key=cfg.auth.cookie_name,
        value=token,
        httponly=True,
        secure=cfg.auth.cookie_secure,
        samesite="lax",
        max_age=cfg.auth.token_ttl_days * 24 * 3600,
        path="/",
    )
    repo.log_activity(conn, user["id"], "login", "user", user["id"])
    logger.info("login_ok user_id=%s role=%s", user["id"], user["role"])
    return {"ok": True, "user": _public_user(user)}


@router.post("/auth/logout")
def logout(response: Response, cfg: AppConfig = Depends(get_config)):
    response.delete_cookie(cfg.auth.cookie_name, path="/")
    return {"ok": True}


@router.get("/auth/me")
def me(user: dict = Depends(current_user)):
    return {"ok": True, "user": _public_user(user)}


# videos


@router.get("/videos")
def list_videos(
    folder_id: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    try:
        folder_filter = FolderFilter.parse(folder_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    scope = resolve_scope(conn, user)
    folders = scope.filter_folders(repo.list_folders(conn))
    if folder_filter.kind == "folder" and not scope.can_see_folder(folder_filter.folder_id):
        raise HTTPException(status_code=404, detail="folder_not_found")

    remote_files: list[dict] = []
    if scope.needs_remote_listing:
        client = build_client_from_settings(conn, cfg)
        try:
            remote_files = fetch_remote_files(client, cfg.listing.strategy, folder_filter, folders)
        except LixstreamError as e:
            raise _upstream_error(e)
        remote_files = scope.filter_remote(remote_files)

    local_videos = repo.list_videos(conn, None if scope.unrestricted else user["id"])
    result = reconcile(
        remote_files,
        folders,
        local_videos,
        TombstoneTracker(conn).load(),
        folder_filter,
        shared_codes=None if scope.unrestricted else scope.shared_codes,
    )
    page_obj = paginate(
        result.items,
        page=page,
        page_size=page_size or cfg.listing.default_page_size,
        max_page_size=cfg.listing.max_page_size,
    )
    return {"ok": True, **page_obj.model_dump(mode="json")}


@router.post("/videos")
def create_upload(
    payload: dict,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    """Step 1 of the upload: ask the provider for an upload URL and record an ``uploading`` row.

    The browser PUTs the bytes to ``upload_task.url`` itself, then calls PUT /api/videos.
    """
    name = str(payload.get("name", "")).strip()
    if not name:
        raise HTTPException(status_code=400, detail="name_required")
    folder_id = _optional_folder_id(payload.get("folder_id"))

    dir_id = None
    if folder_id is not None:
        folder = repo.get_folder(conn, folder_id)
        if not folder or not resolve_scope(conn, user).can_write_folder(folder_id):
            raise HTTPException(status_code=404, detail="folder_not_found")
        dir_id = folder.get("remote_dir_id")

    client = build_client_from_settings(conn, cfg)
    try:
        task = client.create_upload_task(name, dir_id)
    except LixstreamError as e:
        raise _upstream_error(e)

    video_id = repo.insert_video(conn, user["id"], folder_id, name, "uploading", task["id"])
    repo.log_activity(conn, user["id"], "upload_local", "video", video_id, {"name": name, "folder_id": folder_id})
    logger.info("upload_task_created video_id=%s upload_id=%s folder_id=%s", video_id, task["id"], folder_id)
    return {"ok": True, "video_id": video_id, "upload_task": task}


@router.put("/videos")
def confirm_upload(
    payload: dict,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    """Step 3 of the upload: confirm with the provider and store the file code and links."""
    if payload.get("video_id") in (None, "") or not payload.get("upload_id"):
        raise HTTPException(status_code=400, detail="video_id_and_upload_id_required")
    video_id = _as_int(payload.get("video_id"), "video_id")
    upload_id = str(payload["upload_id"])
    succeeded = _as_bool(payload.get("result", True), "result")

    video = repo.get_video(conn, video_id)
    if not video or video["user_id"] != user["id"]:
        raise HTTPException(status_code=404, detail="video_not_found")
    if video.get("remote_upload_id") and video["remote_upload_id"] != upload_id:
        raise HTTPException(status_code=400, detail="upload_id_mismatch")

    client = build_client_from_settings(conn, cfg)
    try:
        data = client.confirm_upload(upload_id, succeeded)
    except LixstreamError as e:
        raise _upstream_error(e)

    if data.get("dir_share_link") and video.get("folder_id") is not None:
        repo.set_folder_share_link(conn, video["folder_id"], data["dir_share_link"])

    share_link = data.get("file_share_link") or None
    embed_link = data.get("file_embed_link") or None
    code = code_from_links(share_link, embed_link)
    status = "completed" if succeeded else "failed"
    repo.complete_video(conn, video_id, status, code, share_link, embed_link, data.get("thumbnail_url") or None)
    logger.info("upload_confirmed video_id=%s status=%s code=%s", video_id, status, code)
    return {"ok": True, "video_id": video_id, "status": status, "code": code, "data": data}


@router.post("/videos/remote")
def remote_upload(
    payload: dict,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(require_superuser),
):
    url = str(payload.get("url", "")).strip()
    name = str(payload.get("name", "")).strip()
    if not url or not name:
        raise HTTPException(status_code=400, detail="url_and_name_required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="invalid_url")

    folder_id = _optional_folder_id(payload.get("folder_id"))
    dir_id = None
    if folder_id is not None:
        folder = repo.get_folder(conn, folder_id)
        if not folder:
            raise HTTPException(status_code=404, detail="folder_not_found")
        if not folder.get("remote_dir_id"):
            raise HTTPException(status_code=400, detail="folder_has_no_remote_dir")
        dir_id = folder["remote_dir_id"]

    client = build_client_from_settings(conn, cfg)
    try:
        task = client.remote_upload(url, name, dir_id)
    except LixstreamError as e:
        raise _upstream_error(e)
    if not task.get("id"):
        raise HTTPException(status_code=502, detail="remote_upload_no_task_id")

    if task.get("dir_share_link") and folder_id is not None:
        repo.set_folder_share_link(conn, folder_id, task["dir_share_link"])
    # No local row: the file shows up through the remote listing once the provider has fetched it.
    repo.log_activity(conn, user["id"], "upload_remote", "task", task["id"], {"url": url, "name": name})
    return {"ok": True, "task_id": task["id"], "dir_share_link": task.get("dir_share_link")}


@router.delete("/videos")
def delete_videos_route(
    payload: dict,
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    raw = payload.get("videos")
    if not isinstance(raw, list) or not raw:
        raise HTTPException(status_code=400, detail="videos_required")
    try:
        refs = [parse_video_ref(item) for item in raw]
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"invalid_video_ref: {e}")

    result = delete_videos(conn, user, refs)
    repo.log_activity(conn, user["id"], "delete_video", "video", None, {"count": result["deleted"]})
    return {"ok": True, **result}


# folders


@router.get("/folders")
def list_folders(conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(current_user)):
    scope = resolve_scope(conn, user)
    folders = scope.filter_folders(repo.list_folders(conn))
    tree = build_tree(folders)
    return {"ok": True, "tree": tree["root"], "folders": flatten(tree["root"])}


@router.post("/folders")
def create_folder(
    payload: dict,
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    name = str(payload.get("name", "")).strip()
    if not name:
        raise HTTPException(status_code=400, detail="name_required")
    parent_id = _optional_folder_id(payload.get("parent_id"))

    parent_dir_id = None
    if parent_id is not None:
        parent = repo.get_folder(conn, parent_id)
        if not parent or not resolve_scope(conn, user).can_write_folder(parent_id):
            raise HTTPException(status_code=400, detail="parent_folder_not_found")
        parent_dir_id = parent.get("remote_dir_id")

    client = build_client_from_settings(conn, cfg)
    try:
        dir_id = client.create_folder(name, parent_dir_id)
    except LixstreamError as e:
        raise _upstream_error(e)

    try:
        folder_id = repo.insert_folder(conn, user["id"], name, parent_id, dir_id)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="remote_dir_already_mapped")
    repo.log_activity(conn, user["id"], "create_folder", "folder", folder_id, {"name": name, "parent_id": parent_id})
    logger.info("folder_created folder_id=%s dir_id=%s parent_id=%s", folder_id, dir_id, parent_id)
    return {"ok": True, "folder": {"id": folder_id, "name": name, "parent_id": parent_id, "remote_dir_id": dir_id}}


@router.delete("/folders")
def delete_folder(id: int, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(current_user)):
    folder = repo.get_folder(conn, id)
    if not folder or (user["role"] != "superuser" and folder["user_id"] != user["id"]):
        raise HTTPException(status_code=404, detail="folder_not_found")

    result = delete_folder_recursive(conn, user, id)
    if result["errors"] and not (result["deleted_folders"] or result["deleted_videos"]):
        raise HTTPException(status_code=409, detail="; ".join(result["errors"]))
    repo.log_activity(
        conn,
        user["id"],
        "delete_folder",
        "folder",
        id,
        {"name": folder["name"], "folders": result["deleted_folders"], "videos": result["deleted_videos"]},
    )
    return {"ok": True, "partial": bool(result["errors"]), **result}


@router.get("/folders/share-link")
def folder_share_link(folder_id: int, conn: sqlite3.Connection = Depends(get_db), user: dict = Depends(current_user)):
    folder = repo.get_folder(conn, folder_id)
    if not folder or not resolve_scope(conn, user).can_see_folder(folder_id):
        raise HTTPException(status_code=404, detail="folder_not_found")
    return {
        "ok": True,
        "folder_id": folder["id"],
        "folder_name": folder["name"],
        "share_link": folder.get("share_link_cache"),
        "remote_dir_id": folder.get("remote_dir_id"),
    }


# sync


@router.post("/sync")
def sync_now(
    cfg: AppConfig = Depends(get_config),
    conn: sqlite3.Connection = Depends(get_db),
    user: dict = Depends(current_user),
):
    engine = SyncEngine(conn, build_client_from_settings(conn, cfg))
    try:
        summary = engine.run_once(user)
    except LixstreamError as e:
        raise _upstream_error(e)
    repo.log_activity(conn, user["id"], "sync", None, None, summary)
    return {"ok": True, "summary": summary}
