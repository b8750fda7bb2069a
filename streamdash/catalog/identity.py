"""File-code extraction and identity types shared by listing, deletion and sharing."""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

SHARE_LINK_RE = re.compile(r"/s/([^/?]+)")
EMBED_LINK_RE = re.compile(r"/e/([^/?]+)")

# The provider has shipped the directory id under several names.
DIR_ID_KEYS = (
    "dir_id",
    "dirId",
    "dirID",
    "directory_id",
    "dir_code",
    "dirCode",
    "dir_id_str",
    "dirIdStr",
    "parent_dir_id",
    "parentId",
)


def _match(pattern: re.Pattern, value: Any) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    m = pattern.search(value)
    return m.group(1) if m else None


def code_from_links(share_link: Any = None, embed_link: Any = None) -> str | None:
    return _match(SHARE_LINK_RE, share_link) or _match(EMBED_LINK_RE, embed_link)


def extract_code(remote_file: dict) -> str | None:
    """Return the remote file code, or None when the record cannot be identified.

    Order: explicit ``code`` field, then ``/s/<code>`` in ``share_link``,
    then ``/e/<code>`` in ``embed_link``.
    """
    code = remote_file.get("code")
    if isinstance(code, str) and code.strip():
        return code.strip()
    return code_from_links(remote_file.get("share_link"), remote_file.get("embed_link"))


def normalize_dir_id(dir_id: Any) -> str | None:
    if dir_id is None:
        return None
    s = str(dir_id).strip().lower()
    return s or None


def _raw_dir_id(raw: dict) -> str | None:
    for key in DIR_ID_KEYS:
        value = raw.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def normalize_remote_file(raw: dict) -> dict:
    """Copy a provider file record with ``dir_id`` and ``code`` filled consistently."""
    item = dict(raw)
    item["dir_id"] = _raw_dir_id(raw)
    item["code"] = extract_code(raw)
    return item


class LocalVideoRef(BaseModel):
    kind: Literal["local"] = "local"
    id: int

    @property
    def key(self) -> str:
        return f"local:{self.id}"


class RemoteVideoRef(BaseModel):
    kind: Literal["remote"] = "remote"
    code: str = Field(min_length=1)

    @property
    def key(self) -> str:
        return f"remote:{self.code}"


VideoRef = Annotated[Union[LocalVideoRef, RemoteVideoRef], Field(discriminator="kind")]

_video_ref_adapter: TypeAdapter = TypeAdapter(VideoRef)


def parse_video_ref(value: Any) -> LocalVideoRef | RemoteVideoRef:
    """Validate a ``{"kind": ..., ...}`` payload or a ``local:12`` / ``remote:abc`` key."""
    if isinstance(value, str):
        kind, sep, rest = value.partition(":")
        if not sep or not rest:
            raise ValueError(f"invalid_video_ref: {value}")
        if kind == "local":
            return LocalVideoRef(id=int(rest))
        if kind == "remote":
            return RemoteVideoRef(code=rest)
        raise ValueError(f"invalid_video_ref: {value}")
    return _video_ref_adapter.validate_python(value)
