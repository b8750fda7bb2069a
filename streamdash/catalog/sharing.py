from __future__ import annotations

import sqlite3
from typing import Iterable

from pydantic import BaseModel, Field

from . import repository as repo
from .identity import extract_code


class AccessScope(BaseModel):
    """What one user may see. ``unrestricted`` short-circuits every check."""

    user_id: int
    role: str
    unrestricted: bool = False
    owned_folder_ids: set[int] = Field(default_factory=set)
    shared_folder_ids: set[int] = Field(default_factory=set)
    shared_codes: set[str] = Field(default_factory=set)

    @property
    def visible_folder_ids(self) -> set[int]:
        return self.owned_folder_ids | self.shared_folder_ids

    @property
    def needs_remote_listing(self) -> bool:
        return self.unrestricted or bool(self.shared_codes)

    def can_see_folder(self, folder_id: int | None) -> bool:
        if folder_id is None or self.unrestricted:
            return True
        return folder_id in self.visible_folder_ids

    def can_write_folder(self, folder_id: int | None) -> bool:
        if folder_id is None or self.unrestricted:
            return True
        return folder_id in self.owned_folder_ids

    def filter_remote(self, remote_files: Iterable[dict]) -> list[dict]:
        if self.unrestricted:
            return list(remote_files)
        return [f for f in remote_files if extract_code(f) in self.shared_codes]

    def filter_folders(self, folders: Iterable[dict]) -> list[dict]:
        if self.unrestricted:
            return list(folders)
        visible = self.visible_folder_ids
        return [f for f in folders if f["id"] in visible]


def resolve_scope(conn: sqlite3.Connection, user: dict) -> AccessScope:
    """Sharing tables are only consulted for publishers."""
    if user["role"] == "superuser":
        return AccessScope(user_id=user["id"], role="superuser", unrestricted=True)
    return AccessScope(
        user_id=user["id"],
        role=user["role"],
        owned_folder_ids=repo.owned_folder_ids(conn, user["id"]),
        shared_folder_ids=repo.shared_folder_ids_for(conn, user["id"]),
        shared_codes=repo.shared_codes_for(conn, user["id"]),
    )
