"""Merge the remote file listing with local video rows into one listing.

The remote provider decides whether a file exists; local rows only fill the
gap while an upload is in flight or the remote listing lags behind.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Literal

from pydantic import BaseModel

from .directory_map import DirectoryMap, build_directory_map
from .identity import LocalVideoRef, RemoteVideoRef, code_from_links, extract_code

ROOT_LABEL = "Root"
UNMAPPED_LABEL = "(unmapped)"

logger = logging.getLogger("reconcile")


class FolderFilter(BaseModel):
    kind: Literal["all", "root", "folder"] = "all"
    folder_id: int | None = None

    @classmethod
    def parse(cls, value: Any) -> "FolderFilter":
        """``None``/empty -> all, ``"root"`` or ``0`` -> root only, anything else -> that folder id."""
        if value is None:
            return cls()
        text = str(value).strip()
        if not text or text.lower() == "all":
            return cls()
        if text.lower() == "root":
            return cls(kind="root")
        try:
            folder_id = int(text)
        except ValueError:
            raise ValueError(f"invalid_folder_filter: {value}")
        if folder_id == 0:
            return cls(kind="root")
        return cls(kind="folder", folder_id=folder_id)

    def matches(self, view: "VideoView") -> bool:
        if self.kind == "root":
            return view.folder_id is None and view.folder_name == ROOT_LABEL
        if self.kind == "folder":
            return view.folder_id == self.folder_id
        return True


class VideoView(BaseModel):
    key: str
    source: Literal["remote", "local"]
    id: int | None = None
    code: str | None = None
    name: str
    folder_id: int | None = None
    folder_name: str | None = None
    share_link: str | None = None
    embed_link: str | None = None
    thumbnail_url: str | None = None
    upload_status: str = "completed"
    user_id: int | None = None
    created_at: datetime
    is_shared: bool = False


class ReconciledPage(BaseModel):
    items: list[VideoView]
    page: int
    page_size: int
    total: int
    total_pages: int


class Reconciliation(BaseModel):
    remote: list[VideoView]
    local: list[VideoView]
    items: list[VideoView]
    present_codes: set[str]


def parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return fallback
    else:
        return fallback
    if dt.tzinfo is None:
        # sqlite CURRENT_TIMESTAMP is UTC without an offset
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _remote_views(
    remote_files: Iterable[dict],
    dir_map: DirectoryMap,
    tombstones: set[str],
    now: datetime,
    shared_codes: set[str] | None,
) -> list[VideoView]:
    views: list[VideoView] = []
    seen: set[str] = set()
    skipped = 0
    for f in remote_files:
        code = extract_code(f)
        if not code:
            skipped += 1
            continue
        if code in tombstones or code in seen:
            continue
        seen.add(code)

        dir_id = f.get("dir_id")
        if dir_id:
            folder_id = dir_map.folder_id(dir_id)
            folder_name = dir_map.folder_name(dir_id)
            if folder_id is None:
                logger.debug("remote_dir_unmapped code=%s dir_id=%s", code, dir_id)
                folder_name = UNMAPPED_LABEL
        else:
            folder_id = None
            folder_name = ROOT_LABEL

        views.append(
            VideoView(
                key=RemoteVideoRef(code=code).key,
                source="remote",
                code=code,
                name=f.get("name") or f.get("title") or "Unknown",
                folder_id=folder_id,
                folder_name=folder_name,
                share_link=f.get("share_link") or None,
                embed_link=f.get("embed_link") or None,
                thumbnail_url=f.get("thumbnail") or f.get("thumbnail_url") or None,
                upload_status="completed",
                created_at=now,
                is_shared=bool(shared_codes and code in shared_codes),
            )
        )
    if skipped:
        logger.info("remote_files_without_code skipped=%s", skipped)
    return views


def _local_views(
    local_videos: Iterable[dict],
    folder_names: dict[int, str],
    present_codes: set[str],
    tombstones: set[str],
    now: datetime,
) -> list[VideoView]:
    views: list[VideoView] = []
    for v in local_videos:
        status = v.get("upload_status") or "pending"
        code = v.get("remote_file_id") or code_from_links(v.get("share_link"), v.get("embed_link"))
        # uploading rows are always kept; the remote listing may not show them yet
        if status != "uploading" and (not code or code in present_codes or code in tombstones):
            continue

        folder_id = v.get("folder_id")
        views.append(
            VideoView(
                key=LocalVideoRef(id=v["id"]).key,
                source="local",
                id=v["id"],
                code=code,
                name=v.get("name") or "Unknown",
                folder_id=folder_id,
                folder_name=ROOT_LABEL if folder_id is None else folder_names.get(folder_id),
                share_link=v.get("share_link"),
                embed_link=v.get("embed_link"),
                thumbnail_url=v.get("thumbnail_url"),
                upload_status=status,
                user_id=v.get("user_id"),
                created_at=parse_timestamp(v.get("created_at"), now),
            )
        )
    return views


def reconcile(
    remote_files: Iterable[dict],
    folders: Iterable[dict],
    local_videos: Iterable[dict],
    tombstones: set[str],
    folder_filter: FolderFilter | None = None,
    now: datetime | None = None,
    shared_codes: set[str] | None = None,
) -> Reconciliation:
    now = now or datetime.now(timezone.utc)
    folder_filter = folder_filter or FolderFilter()
    folder_list = list(folders)
    dir_map = build_directory_map(folder_list)
    folder_names = {f["id"]: f["name"] for f in folder_list}

    remote = _remote_views(remote_files, dir_map, tombstones, now, shared_codes)
    present_codes = {v.code for v in remote if v.code}
    local = _local_views(local_videos, folder_names, present_codes, tombstones, now)

    merged = [v for v in remote + local if folder_filter.matches(v)]
    # list.sort is stable with reverse=True, so ties keep remote-before-local order.
    merged.sort(key=lambda v: v.created_at, reverse=True)

    logger.info(
        "reconciled remote=%s local=%s filter=%s items=%s",
        len(remote),
        len(local),
        folder_filter.kind if folder_filter.kind != "folder" else f"folder:{folder_filter.folder_id}",
        len(merged),
    )
    return Reconciliation(remote=remote, local=local, items=merged, present_codes=present_codes)


def paginate(items: list[VideoView], page: int = 1, page_size: int = 15, max_page_size: int = 100) -> ReconciledPage:
    page = max(1, int(page))
    page_size = max(1, min(int(page_size), max_page_size))
    total = len(items)
    start = (page - 1) * page_size
    return ReconciledPage(
        items=items[start : start + page_size],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size),
    )


def fetch_remote_files(client, strategy: str, folder_filter: FolderFilter, folders: Iterable[dict]) -> list[dict]:
    """Remote listing for one reconciliation.

    ``per_folder`` lists only the selected folder's directory when a mapped
    folder is requested; every other case drains the global listing.
    """
    if strategy == "per_folder" and folder_filter.kind == "folder":
        folder = next((f for f in folders if f["id"] == folder_filter.folder_id), None)
        dir_id = (folder or {}).get("remote_dir_id")
        if dir_id:
            files = client.list_directory(dir_id)
            # the per-directory listing may omit the directory id on each file
            return [f if f.get("dir_id") else {**f, "dir_id": dir_id} for f in files]
    return client.list_all_files()
