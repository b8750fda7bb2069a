from datetime import datetime, timedelta, timezone

import pytest

from streamdash.catalog.reconciler import (
    UNMAPPED_LABEL,
    FolderFilter,
    fetch_remote_files,
    paginate,
    reconcile,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

FOLDERS = [
    {"id": 10, "name": "Clips", "parent_id": None, "remote_dir_id": "D1"},
    {"id": 11, "name": "Local only", "parent_id": None, "remote_dir_id": None},
]


def _remote(code, dir_id=None, name=None):
    return {"code": code, "dir_id": dir_id, "name": name or f"{code}.mp4", "share_link": f"https://host/s/{code}"}


def _local(vid, status="completed", code=None, folder_id=None, created_at="2026-02-01 10:00:00"):
    return {
        "id": vid,
        "user_id": 1,
        "folder_id": folder_id,
        "name": f"local-{vid}.mp4",
        "upload_status": status,
        "remote_file_id": code,
        "share_link": f"https://host/s/{code}" if code else None,
        "embed_link": None,
        "thumbnail_url": None,
        "created_at": created_at,
    }


def test_remote_wins_over_local_row_with_same_code():
    result = reconcile([_remote("abc")], FOLDERS, [_local(1, code="abc")], set(), now=NOW)
    assert [v.key for v in result.items] == ["remote:abc"]


def test_uploading_row_is_listed_before_remote_shows_it():
    result = reconcile([], FOLDERS, [_local(2, status="uploading", folder_id=10)], set(), now=NOW)
    assert len(result.items) == 1
    view = result.items[0]
    assert view.key == "local:2"
    assert view.upload_status == "uploading"
    assert view.folder_name == "Clips"


def test_uploading_row_survives_even_when_its_code_is_listed():
    result = reconcile([_remote("abc")], FOLDERS, [_local(3, status="uploading", code="abc")], set(), now=NOW)
    assert {v.key for v in result.items} == {"remote:abc", "local:3"}


def test_completed_local_row_not_listed_remotely_still_shows():
    result = reconcile([], FOLDERS, [_local(4, code="gone")], set(), now=NOW)
    assert [v.key for v in result.items] == ["local:4"]


def test_tombstoned_codes_are_hidden_from_both_sources():
    result = reconcile([_remote("dead")], FOLDERS, [_local(5, code="dead")], {"dead"}, now=NOW)
    assert result.items == []


def test_local_rows_without_code_are_dropped_unless_uploading():
    local = [_local(6, status="failed"), _local(7, status="pending"), _local(8, status="uploading")]
    result = reconcile([], FOLDERS, local, set(), now=NOW)
    assert [v.key for v in result.items] == ["local:8"]


def test_remote_files_without_code_are_skipped_and_duplicates_collapse():
    remote = [{"name": "nocode.mp4"}, _remote("abc", name="first"), _remote("abc", name="second")]
    result = reconcile(remote, FOLDERS, [], set(), now=NOW)
    assert [v.name for v in result.items] == ["first"]


def test_remote_folder_mapping_root_and_unmapped():
    remote = [_remote("a", dir_id="d1"), _remote("b"), _remote("c", dir_id="zzz")]
    result = reconcile(remote, FOLDERS, [], set(), now=NOW)
    by_code = {v.code: v for v in result.items}
    assert (by_code["a"].folder_id, by_code["a"].folder_name) == (10, "Clips")
    assert (by_code["b"].folder_id, by_code["b"].folder_name) == (None, "Root")
    assert (by_code["c"].folder_id, by_code["c"].folder_name) == (None, UNMAPPED_LABEL)


def test_folder_filters():
    remote = [_remote("a", dir_id="D1"), _remote("b"), _remote("c", dir_id="zzz")]
    local = [_local(9, status="uploading", folder_id=11), _local(12, status="uploading")]

    root = reconcile(remote, FOLDERS, local, set(), FolderFilter.parse("root"), now=NOW)
    assert {v.key for v in root.items} == {"remote:b", "local:12"}

    clips = reconcile(remote, FOLDERS, local, set(), FolderFilter.parse("10"), now=NOW)
    assert [v.key for v in clips.items] == ["remote:a"]

    local_only = reconcile(remote, FOLDERS, local, set(), FolderFilter.parse(11), now=NOW)
    assert [v.key for v in local_only.items] == ["local:9"]

    everything = reconcile(remote, FOLDERS, local, set(), FolderFilter.parse(None), now=NOW)
    assert len(everything.items) == 5


def test_items_sorted_newest_first_with_remote_stamped_now():
    local = [
        _local(1, status="uploading", created_at="2026-01-01 00:00:00"),
        _local(2, status="uploading", created_at="2026-02-01T00:00:00Z"),
    ]
    result = reconcile([_remote("r")], FOLDERS, local, set(), now=NOW)
    assert [v.key for v in result.items] == ["remote:r", "local:2", "local:1"]
    assert result.items[0].created_at == NOW


def test_local_row_newer_than_now_sorts_first():
    future = (NOW + timedelta(hours=1)).isoformat()
    result = reconcile([_remote("r")], FOLDERS, [_local(1, status="uploading", created_at=future)], set(), now=NOW)
    assert [v.key for v in result.items] == ["local:1", "remote:r"]


def test_shared_codes_mark_remote_views():
    result = reconcile([_remote("a"), _remote("b")], FOLDERS, [], set(), now=NOW, shared_codes={"b"})
    flags = {v.code: v.is_shared for v in result.items}
    assert flags == {"a": False, "b": True}


def test_folder_filter_parse():
    assert FolderFilter.parse("").kind == "all"
    assert FolderFilter.parse("ALL").kind == "all"
    assert FolderFilter.parse(" Root ").kind == "root"
    assert FolderFilter.parse("0").kind == "root"
    assert FolderFilter.parse(0).kind == "root"
    f = FolderFilter.parse("42")
    assert (f.kind, f.folder_id) == ("folder", 42)
    with pytest.raises(ValueError):
        FolderFilter.parse("clips")


def test_paginate_clamps_page_and_size():
    result = reconcile([_remote(f"c{i}") for i in range(7)], [], [], set(), now=NOW)

    first = paginate(result.items, page=1, page_size=3)
    assert (len(first.items), first.total, first.total_pages) == (3, 7, 3)

    last = paginate(result.items, page=3, page_size=3)
    assert len(last.items) == 1

    beyond = paginate(result.items, page=9, page_size=3)
    assert beyond.items == []
    assert beyond.total == 7

    clamped = paginate(result.items, page=0, page_size=500, max_page_size=5)
    assert (clamped.page, clamped.page_size, clamped.total_pages) == (1, 5, 2)

    empty = paginate([], page=1, page_size=15)
    assert (empty.total, empty.total_pages) == (0, 0)


class FakeListingClient:
    def __init__(self):
        self.calls = []

    def list_all_files(self):
        self.calls.append(("all",))
        return [_remote("g")]

    def list_directory(self, dir_id):
        self.calls.append(("dir", dir_id))
        return [{"code": "p", "name": "p.mp4"}, {"code": "q", "dir_id": "other"}]


def test_fetch_remote_files_per_folder_uses_directory_listing():
    client = FakeListingClient()
    files = fetch_remote_files(client, "per_folder", FolderFilter.parse(10), FOLDERS)
    assert client.calls == [("dir", "D1")]
    assert files[0]["dir_id"] == "D1"
    assert files[1]["dir_id"] == "other"


def test_fetch_remote_files_falls_back_to_global_listing():
    client = FakeListingClient()
    fetch_remote_files(client, "per_folder", FolderFilter.parse(11), FOLDERS)
    fetch_remote_files(client, "per_folder", FolderFilter.parse("root"), FOLDERS)
    fetch_remote_files(client, "global", FolderFilter.parse(10), FOLDERS)
    assert client.calls == [("all",), ("all",), ("all",)]


def test_single_root_file_from_share_link():
    remote = [{"share_link": "https://x/s/abc123", "dir_id": None}]
    result = reconcile(remote, [], [], set(), now=NOW)
    assert len(result.items) == 1
    item = result.items[0]
    assert (item.code, item.folder_id, item.folder_name) == ("abc123", None, "Root")
    assert result.present_codes == {"abc123"}


def test_second_page_of_twenty():
    result = reconcile([_remote(f"c{i:02d}") for i in range(20)], [], [], set(), now=NOW)
    page = paginate(result.items, page=2, page_size=15)
    assert page.items == result.items[15:20]
    assert (len(page.items), page.total, page.total_pages) == (5, 20, 2)


def test_root_filter_never_returns_folder_entries():
    remote = [_remote("a", "D1"), _remote("b"), _remote("c", "nowhere")]
    local = [_local(1, status="uploading", folder_id=10), _local(2, code="z", folder_id=11), _local(3, code="y")]
    result = reconcile(remote, FOLDERS, local, set(), FolderFilter(kind="root"), now=NOW)
    assert result.items
    assert all(item.folder_id is None and item.folder_name == "Root" for item in result.items)
