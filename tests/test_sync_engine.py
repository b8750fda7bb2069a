import pytest

from streamdash.catalog import repository as repo
from streamdash.catalog.sync_engine import SyncEngine
from streamdash.providers.lixstream import LixstreamError
from streamdash.providers.lixstream.db import get_conn, init_db


class FakeClient:
    def __init__(self, files=None, error=None):
        self.files = files or []
        self.error = error
        self.calls = 0

    def list_all_files(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.files)


def _conn(tmp_path):
    db = str(tmp_path / "app.db")
    init_db(db)
    return get_conn(db)


def _video(conn, user_id, name, status, folder_id=None, code=None):
    vid = repo.insert_video(conn, user_id, folder_id, name, status)
    if code:
        repo.complete_video(conn, vid, status, code, f"https://host/s/{code}", None, None)
    return vid


def test_run_once_prunes_and_promotes(tmp_path):
    conn = _conn(tmp_path)
    admin = repo.create_user(conn, "admin", "x", None, "superuser")
    folder = repo.insert_folder(conn, admin, "Clips", None, "D1")

    v1 = _video(conn, admin, "kept.mp4", "completed", code="a")
    v2 = _video(conn, admin, "gone.mp4", "completed", code="gone")
    v3 = _video(conn, admin, "new.mp4", "uploading", folder_id=folder)
    v4 = _video(conn, admin, "root.mp4", "uploading")
    v5 = _video(conn, admin, "lost.mp4", "uploading")
    v6 = _video(conn, admin, "broken.mp4", "failed")

    client = FakeClient(
        [
            {"code": "a", "name": "kept.mp4", "dir_id": None, "share_link": "https://host/s/a"},
            {"code": "n1", "name": "new.mp4", "dir_id": "d1", "share_link": "https://host/s/n1", "thumbnail": "https://t/n1.jpg"},
            {"code": "r1", "title": "root.mp4", "dir_id": None, "embed_link": "https://host/e/r1"},
            {"code": "x", "name": "lost.mp4", "dir_id": "elsewhere"},
        ]
    )
    summary = SyncEngine(conn, client).run_once(repo.get_user(conn, admin))

    assert summary["remote_files"] == 4
    assert summary["local_videos"] == 6
    assert summary["deleted_videos"] == 2
    assert summary["updated_videos"] == 2
    assert summary["deleted_folders"] == 0
    assert summary["errors"] == 0

    assert repo.get_video(conn, v1)["upload_status"] == "completed"
    assert repo.get_video(conn, v2) is None
    assert repo.get_video(conn, v5) is None
    assert repo.get_video(conn, v6)["upload_status"] == "failed"

    promoted = repo.get_video(conn, v3)
    assert promoted["upload_status"] == "completed"
    assert promoted["remote_file_id"] == "n1"
    assert promoted["thumbnail_url"] == "https://t/n1.jpg"
    assert repo.get_video(conn, v4)["embed_link"] == "https://host/e/r1"

    assert repo.get_folder(conn, folder) is not None


def test_second_run_is_a_no_op(tmp_path):
    conn = _conn(tmp_path)
    admin = repo.create_user(conn, "admin", "x", None, "superuser")
    _video(conn, admin, "up.mp4", "uploading")
    client = FakeClient([{"code": "u", "name": "up.mp4", "share_link": "https://host/s/u"}])
    engine = SyncEngine(conn, client)

    first = engine.run_once(repo.get_user(conn, admin))
    second = engine.run_once(repo.get_user(conn, admin))
    assert first["updated_videos"] == 1
    assert (second["updated_videos"], second["deleted_videos"]) == (0, 0)


def test_publisher_only_syncs_own_rows(tmp_path):
    conn = _conn(tmp_path)
    admin = repo.create_user(conn, "admin", "x", None, "superuser")
    alice = repo.create_user(conn, "alice", "x", None, "publisher")
    repo.insert_folder(conn, admin, "Admin folder", None, "D9")
    mine = _video(conn, alice, "mine.mp4", "completed", code="m")
    theirs = _video(conn, admin, "theirs.mp4", "completed", code="t")

    summary = SyncEngine(conn, FakeClient([])).run_once(repo.get_user(conn, alice))

    assert summary["local_videos"] == 1
    assert summary["local_folders"] == 0
    assert summary["deleted_videos"] == 1
    assert repo.get_video(conn, mine) is None
    assert repo.get_video(conn, theirs) is not None


def test_remote_failure_propagates_and_leaves_rows(tmp_path):
    conn = _conn(tmp_path)
    admin = repo.create_user(conn, "admin", "x", None, "superuser")
    vid = _video(conn, admin, "up.mp4", "uploading")

    with pytest.raises(LixstreamError):
        SyncEngine(conn, FakeClient(error=LixstreamError("lixstream_unreachable: boom"))).run_once(repo.get_user(conn, admin))

    assert repo.get_video(conn, vid)["upload_status"] == "uploading"
