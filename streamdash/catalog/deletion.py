from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from . import repository as repo
from .identity import LocalVideoRef, RemoteVideoRef, code_from_links
from .tombstones import TombstoneTracker

logger = logging.getLogger("reconcile")


def _video_code(video: dict) -> str | None:
    return video.get("remote_file_id") or code_from_links(video.get("share_link"), video.get("embed_link"))


def _drop_local_video(conn: sqlite3.Connection, tombstones: TombstoneTracker, video: dict, user_id: int):
    code = _video_code(video)
    repo.delete_video_shares(conn, video_key=LocalVideoRef(id=video["id"]).key, code=code)
    if code:
        tombstones.record_deletion(code, user_id)
    repo.delete_video_row(conn, video["id"])


def delete_videos(conn: sqlite3.Connection, user: dict, refs: Iterable[LocalVideoRef | RemoteVideoRef]) -> dict[str, Any]:
    """Hide videos locally. The remote asset itself is never touched.

    Per-item failures are collected in ``errors``; one failure does not stop the batch.
    """
    tombstones = TombstoneTracker(conn)
    is_super = user["role"] == "superuser"
    deleted = 0
    errors: list[str] = []

    for ref in refs:
        try:
            if isinstance(ref, LocalVideoRef):
                video = repo.get_video(conn, ref.id)
                if video and (is_super or video["user_id"] == user["id"]):
                    _drop_local_video(conn, tombstones, video, user["id"])
                    deleted += 1
                elif video and not is_super and _video_code(video) in repo.shared_codes_for(conn, user["id"]):
                    errors.append(f"Video {ref.key} cannot be deleted (shared video - contact superuser)")
                else:
                    errors.append(f"Video {ref.key} not found or unauthorized")
                continue

            if is_super:
                tombstones.record_deletion(ref.code, user["id"])
                repo.delete_video_shares(conn, video_key=ref.key, code=ref.code)
                deleted += 1
                continue

            owned = [v for v in repo.list_videos(conn, user["id"]) if _video_code(v) == ref.code]
            if owned:
                for video in owned:
                    _drop_local_video(conn, tombstones, video, user["id"])
                deleted += 1
            elif ref.code in repo.shared_codes_for(conn, user["id"]):
                errors.append(f"Video {ref.key} cannot be deleted (shared video - contact superuser)")
            else:
                errors.append(f"Video {ref.key} not found or unauthorized")
        except sqlite3.Error as exc:
            logger.error("delete_video_failed ref=%s err=%s", ref.key, exc)
            errors.append(f"Failed to delete video {ref.key}: {exc}")

    logger.info("videos_deleted user_id=%s deleted=%s errors=%s", user["id"], deleted, len(errors))
    return {"deleted": deleted, "errors": errors}


def delete_folder_recursive(conn: sqlite3.Connection, user: dict, folder_id: int) -> dict[str, Any]:
    """Delete subfolders first, then the folder's videos (tombstoned), its shares, then the folder.

    Publishers only remove rows they own. A folder that still holds another
    user's subfolder or video is kept and reported in ``errors``.
    """
    tombstones = TombstoneTracker(conn)
    is_super = user["role"] == "superuser"
    result: dict[str, Any] = {"deleted_folders": 0, "deleted_videos": 0, "errors": []}
    _delete_folder(conn, tombstones, user["id"], is_super, folder_id, result, seen=set())
    logger.info(
        "folder_deleted user_id=%s folder_id=%s folders=%s videos=%s errors=%s",
        user["id"],
        folder_id,
        result["deleted_folders"],
        result["deleted_videos"],
        len(result["errors"]),
    )
    return result


def _delete_folder(
    conn: sqlite3.Connection,
    tombstones: TombstoneTracker,
    user_id: int,
    is_super: bool,
    folder_id: int,
    result: dict[str, Any],
    seen: set[int],
) -> bool:
    """Returns True once the folder row itself is gone."""
    seen.add(folder_id)
    cleared = True
    children = conn.execute("SELECT id, user_id FROM folders WHERE parent_id=?", (folder_id,)).fetchall()
    for child in children:
        if child["id"] in seen:
            continue
        if not (is_super or child["user_id"] == user_id):
            cleared = False
            continue
        if not _delete_folder(conn, tombstones, user_id, is_super, child["id"], result, seen):
            cleared = False

    for video in repo.list_videos_in_folder(conn, folder_id):
        if not (is_super or video["user_id"] == user_id):
            cleared = False
            continue
        try:
            _drop_local_video(conn, tombstones, video, user_id)
            result["deleted_videos"] += 1
        except sqlite3.Error as exc:
            cleared = False
            result["errors"].append(f"Failed to delete video {video['id']}: {exc}")

    if not cleared:
        result["errors"].append(f"Folder {folder_id} kept: it still contains items you cannot delete")
        return False

    try:
        repo.delete_folder_row(conn, folder_id)
    except sqlite3.Error as exc:
        result["errors"].append(f"Failed to delete folder {folder_id}: {exc}")
        return False
    result["deleted_folders"] += 1
    return True
