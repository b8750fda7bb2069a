from __future__ import annotations

import logging
from typing import Iterable

from .identity import normalize_dir_id

logger = logging.getLogger("reconcile")


class DirectoryMap:
    """Normalized remote directory id -> local folder name / local folder id."""

    def __init__(self):
        self.names: dict[str, str] = {}
        self.ids: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, dir_id) -> bool:
        key = normalize_dir_id(dir_id)
        return key is not None and key in self.ids

    def folder_id(self, dir_id) -> int | None:
        key = normalize_dir_id(dir_id)
        return self.ids.get(key) if key else None

    def folder_name(self, dir_id) -> str | None:
        key = normalize_dir_id(dir_id)
        return self.names.get(key) if key else None


def build_directory_map(folders: Iterable[dict]) -> DirectoryMap:
    mapping = DirectoryMap()
    for folder in folders:
        key = normalize_dir_id(folder.get("remote_dir_id"))
        if key is None:
            continue
        previous = mapping.ids.get(key)
        if previous is not None and previous != folder["id"]:
            logger.warning(
                "duplicate_remote_dir_id dir_id=%s kept_folder=%s dropped_folder=%s",
                key,
                folder["id"],
                previous,
            )
        mapping.names[key] = folder["name"]
        mapping.ids[key] = folder["id"]
    return mapping
