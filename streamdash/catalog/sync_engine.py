from __future__ import annotations

import logging
import sqlite3
from typing import Any

from . import repository as repo
from .identity import code_from_links, extract_code, normalize_dir_id

logger = logging.getLogger("sync")


class SyncEngine:
    """Prune and promote local video rows against the remote listing.

    Folders are never deleted here; only a user action removes a folder.
    """

    def __init__(self, conn: sqlite3.Connection, client):
        self.conn = conn
        self.client = client

    def _local_code(self, video: dict) -> str | None:
        return video.get("remote_file_id") or code_from_links(video.get("share_link"), video.get("embed_link"))

    def _match_by_name(self, video: dict, remote_files: list[dict], folder_dirs: dict[int, str]) -> dict | None:
        name = video.get("name")
        folder_id = video.get("folder_id")
        video_dir = normalize_dir_id(folder_dirs.get(folder_id)) if folder_id is not None else None
        for f in remote_files:
            if f.get("name") != name and f.get("title") != name:
                continue
            file_dir = normalize_dir_id(f.get("dir_id"))
            if folder_id is None and file_dir is None:
                return f
            if video_dir is not None and file_dir == video_dir:
                return f
        return None

    def run_once(self, user: dict) -> dict[str, Any]:
        remote_files = self.client.list_all_files()

        by_code: dict[str, dict] = {}
        for f in remote_files:
            code = extract_code(f)
            if code and code not in by_code:
                by_code[code] = f

        is_super = user["role"] == "superuser"
        all_folders = repo.list_folders(self.conn)
        folders = all_folders if is_super else [f for f in all_folders if f["user_id"] == user["id"]]
        # a publisher's video may sit in a folder shared with them, so every folder's dir id is kept for matching
        folder_dirs = {f["id"]: f["remote_dir_id"] for f in all_folders if f.get("remote_dir_id")}
        videos = repo.list_videos(self.conn, None if is_super else user["id"])

        summary: dict[str, Any] = {
            "remote_files": len(remote_files),
            "local_folders": len(folders),
            "local_videos": len(videos),
            "deleted_videos": 0,
            "updated_videos": 0,
            "deleted_folders": 0,
            "errors": 0,
        }

        for video in videos:
            try:
                self._sync_video(video, by_code, remote_files, folder_dirs, summary)
            except sqlite3.Error as exc:
                summary["errors"] += 1
                logger.error("sync_video_failed video_id=%s err=%s", video["id"], exc)

        logger.info(
            "sync_done user_id=%s remote=%s local=%s deleted=%s updated=%s errors=%s",
            user["id"],
            summary["remote_files"],
            summary["local_videos"],
            summary["deleted_videos"],
            summary["updated_videos"],
            summary["errors"],
        )
        return summary

    def _sync_video(
        self,
        video: dict,
        by_code: dict[str, dict],
        remote_files: list[dict],
        folder_dirs: dict[int, str],
        summary: dict[str, Any],
    ):
        uploading = video.get("upload_status") == "uploading"
        code = self._local_code(video)
        match = by_code.get(code) if code else None

        if match is None and uploading:
            match = self._match_by_name(video, remote_files, folder_dirs)
            if match is None:
                repo.delete_video_row(self.conn, video["id"])
                summary["deleted_videos"] += 1
                logger.info("sync_drop_unmatched_upload video_id=%s name=%s", video["id"], video.get("name"))
                return

        if match is None:
            if code:
                repo.delete_video_row(self.conn, video["id"])
                summary["deleted_videos"] += 1
                logger.info("sync_drop_missing video_id=%s code=%s", video["id"], code)
            return

        if uploading:
            repo.complete_video(
                self.conn,
                video["id"],
                "completed",
                extract_code(match),
                match.get("share_link") or None,
                match.get("embed_link") or None,
                match.get("thumbnail") or match.get("thumbnail_url") or None,
            )
            summary["updated_videos"] += 1
            logger.info("sync_promote video_id=%s code=%s", video["id"], extract_code(match))
