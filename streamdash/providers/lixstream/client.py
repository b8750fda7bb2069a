from __future__ import annotations

import logging
import math
from typing import Any

import requests

from streamdash.catalog.identity import normalize_remote_file

DEFAULT_API_URL = "https://api.luxsioab.com/pub/api"
MAX_PAGE_SIZE = 100

logger = logging.getLogger("lixstream")


class LixstreamError(RuntimeError):
    pass


class LixstreamClient:
    def __init__(self, api_key: str, api_url: str = DEFAULT_API_URL, timeout: int = 30, page_size: int = MAX_PAGE_SIZE):
        self.api_key = api_key or ""
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self.timeout = timeout
        self.page_size = max(1, min(int(page_size), MAX_PAGE_SIZE))

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise LixstreamError("lixstream_api_key_missing")
        payload = {"key": self.api_key, **body}
        try:
            res = requests.post(f"{self.api_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise LixstreamError(f"lixstream_unreachable: {path} {exc.__class__.__name__}") from exc
        try:
            body_raw = res.json()
        except ValueError:
            raise LixstreamError(f"lixstream_non_json_response: {path} status={res.status_code}")
        return self._check_data(body_raw, path)

    def _check_data(self, payload: Any, path: str = "") -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise LixstreamError(f"invalid_response: {path}")
        if payload.get("code") != 200:
            msg = payload.get("msg") or payload.get("error")
            raise LixstreamError(f"lixstream_error: path={path} code={payload.get('code')} msg={msg}")
        data = payload.get("data", {}) or {}
        if not isinstance(data, dict):
            raise LixstreamError(f"invalid_response_data: {path}")
        return data

    def list_files(self, page_num: int = 1, page_size: int | None = None, dir_id: str | None = None) -> dict[str, Any]:
        size = self.page_size if page_size is None else max(1, min(int(page_size), MAX_PAGE_SIZE))
        body: dict[str, Any] = {"page_num": page_num, "page_size": size}
        if dir_id:
            body["dir_id"] = dir_id
        data = self._post("/file/page", body)
        files_raw = data.get("files", []) or []
        files = [normalize_remote_file(item) for item in files_raw if isinstance(item, dict)] if isinstance(files_raw, list) else []
        total = int(data.get("total_elements") or data.get("total") or 0)
        total_pages = int(data.get("total_pages") or math.ceil(total / size))
        return {"files": files, "total": total, "total_pages": total_pages, "page_num": page_num, "page_size": size}

    def _drain(self, dir_id: str | None) -> list[dict[str, Any]]:
        page_num = 1
        items: list[dict[str, Any]] = []
        while True:
            res = self.list_files(page_num=page_num, dir_id=dir_id)
            files = res["files"]
            if not files:
                break
            items.extend(files)
            if page_num >= res["total_pages"] or len(files) < res["page_size"]:
                break
            page_num += 1
        logger.info("remote_listing_fetched dir_id=%s files=%s pages=%s", dir_id or "*", len(items), page_num)
        return items

    def list_all_files(self) -> list[dict[str, Any]]:
        return self._drain(None)

    def list_directory(self, dir_id: str) -> list[dict[str, Any]]:
        """Files of one remote directory; the provider filters file/page by ``dir_id``."""
        if not dir_id:
            raise LixstreamError("dir_id_missing")
        return self._drain(dir_id)

    def create_upload_task(self, name: str, dir_id: str | None = None) -> dict[str, Any]:
        data = self._post("/local/upload", {"name": name, "dir_id": dir_id or None})
        upload_id = data.get("id")
        if not upload_id or not data.get("url"):
            raise LixstreamError("create_upload_task_incomplete")
        return {"id": str(upload_id), "url": data.get("url"), "header": data.get("header") or {}}

    def confirm_upload(self, upload_id: str, result: bool = True) -> dict[str, Any]:
        data = self._post("/local/upload/callback", {"id": upload_id, "result": bool(result)})
        return {
            "file_name": data.get("file_name"),
            "thumbnail_url": data.get("thumbnail_url"),
            "file_share_link": data.get("file_share_link"),
            "file_embed_link": data.get("file_embed_link"),
            "dir_share_link": data.get("dir_share_link"),
        }

    def create_folder(self, name: str, parent_dir_id: str | None = None) -> str:
        data = self._post("/directory/create", {"name": name, "parent_id": parent_dir_id or None})
        dir_id = data.get("dir_id")
        if dir_id is None or str(dir_id).strip() == "":
            raise LixstreamError("create_folder_no_dir_id")
        return str(dir_id)

    def remote_upload(self, url: str, name: str, dir_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "url": url}
        if dir_id:
            body["dir_id"] = dir_id
        data = self._post("/remote/upload", body)
        return {"id": str(data.get("id") or ""), "dir_share_link": data.get("dir_share_link")}
