import json
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from streamdash.catalog import repository as repo
from streamdash.core.config import AppConfig
from streamdash.providers.lixstream.db import get_conn, init_db
from streamdash.providers.lixstream.settings import get_setting
from streamdash.providers.telegram import TelegramError
from streamdash.web import admin_api as admin_module
from streamdash.web import api as api_module
from streamdash.web import security as security_module
from streamdash.web.security import hash_password


class _FakeLixstream:
    api_key = "k"

    def __init__(self, files=None):
        self.files = files or []

    def list_all_files(self):
        return list(self.files)


class _FakeTelegram:
    sent: list[dict] = []
    fail_with: str | None = None

    def __init__(self, bot_token, timeout=30):
        self.bot_token = bot_token

    def post(self, chat_id, caption, photo=None, filename="photo.jpg", content_type=None):
        if _FakeTelegram.fail_with:
            raise TelegramError(_FakeTelegram.fail_with)
        _FakeTelegram.sent.append({"chat_id": chat_id, "caption": caption, "photo": photo, "filename": filename})
        return "555"


def _setup(monkeypatch, tmp_path: Path, remote_files=None):
    cfg = AppConfig()
    cfg.database.path = str(tmp_path / "runtime" / "app.db")
    cfg.logging.file = str(tmp_path / "runtime" / "service.log")
    cfg.auth.jwt_secret = "test-secret-0123456789abcdef0123456789"
    init_db(cfg.database.path)

    fake = _FakeLixstream(remote_files)
    _FakeTelegram.sent = []
    _FakeTelegram.fail_with = None
    monkeypatch.setattr(security_module, "load_config", lambda: cfg)
    monkeypatch.setattr(api_module, "build_client_from_settings", lambda _conn, _cfg: fake)
    monkeypatch.setattr(admin_module, "build_client_from_settings", lambda _conn, _cfg: fake)
    monkeypatch.setattr(admin_module, "TelegramClient", _FakeTelegram)
    for key in ("TELEGRAM_CHANNEL_ID", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHANNEL_NAME", "LIXSTREAM_API_KEY"):
        monkeypatch.delenv(key, raising=False)

    conn = get_conn(cfg.database.path)
    admin = repo.create_user(conn, "admin", hash_password("admin-pw"), None, "superuser")
    alice = repo.create_user(conn, "alice", hash_password("alice-pw"), None, "publisher")
    return cfg, conn, admin, alice


def _client(username: str, password: str) -> TestClient:
    app = FastAPI()
    app.include_router(api_module.router)
    app.include_router(admin_module.router)
    client = TestClient(app)
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200
    return client


def test_user_management(monkeypatch, tmp_path: Path):
    _cfg, conn, admin, alice = _setup(monkeypatch, tmp_path)
    client = _client("admin", "admin-pw")

    created = client.post("/api/users", json={"username": "bob", "password": "bob-pw"})
    assert created.status_code == 200
    bob = created.json()["user"]["id"]
    assert created.json()["user"]["role"] == "publisher"
    assert client.post("/api/users", json={"username": "bob", "password": "x"}).json()["detail"] == "username_exists"
    assert client.post("/api/users", json={"username": "eve", "password": "x", "role": "root"}).status_code == 400

    users = client.get("/api/users").json()["users"]
    assert {u["username"] for u in users} == {"admin", "alice", "bob"}
    assert all("password_hash" not in u for u in users)

    assert client.put("/api/users/update", json={"id": admin, "role": "publisher"}).json()["detail"] == "cannot_modify_self"
    assert client.put("/api/users/update", json={"id": bob}).json()["detail"] == "no_updates"
    updated = client.put("/api/users/update", json={"id": bob, "email": "bob@example.com", "password": "new-pw"})
    assert updated.json()["user"]["email"] == "bob@example.com"
    _client("bob", "new-pw")

    assert client.delete("/api/users", params={"id": admin}).json()["detail"] == "cannot_delete_self"
    assert client.delete("/api/users", params={"id": bob}).status_code == 200
    assert client.delete("/api/users", params={"id": bob}).status_code == 404

    publisher = _client("alice", "alice-pw")
    assert publisher.get("/api/users").status_code == 403
    assert repo.get_user(conn, alice)["role"] == "publisher"


def test_role_change_applies_to_existing_session(monkeypatch, tmp_path: Path):
    _cfg, conn, _admin, alice = _setup(monkeypatch, tmp_path)
    client = _client("alice", "alice-pw")
    assert client.get("/api/users").status_code == 403

    repo.update_user(conn, alice, {"role": "superuser"})
    assert client.get("/api/users").status_code == 200

    repo.delete_user(conn, alice)
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "user_not_found"


def test_profile_password_change(monkeypatch, tmp_path: Path):
    _setup(monkeypatch, tmp_path)
    client = _client("alice", "alice-pw")

    assert client.put("/api/profile", json={}).json()["detail"] == "no_updates"
    assert client.put("/api/profile", json={"new_password": "x"}).json()["detail"] == "current_password_required"
    wrong = client.put("/api/profile", json={"current_password": "bad", "new_password": "x"})
    assert wrong.json()["detail"] == "current_password_incorrect"

    ok = client.put("/api/profile", json={"current_password": "alice-pw", "new_password": "fresh-pw", "email": "a@x.io"})
    assert ok.status_code == 200
    assert ok.json()["user"]["email"] == "a@x.io"
    _client("alice", "fresh-pw")


def test_settings_are_masked_and_validated(monkeypatch, tmp_path: Path):
    cfg, conn, _admin, _alice = _setup(monkeypatch, tmp_path)
    client = _client("admin", "admin-pw")

    assert client.put("/api/settings", json={"nope": "1"}).status_code == 400
    resp = client.put("/api/settings", json={"lixstream_api_key": "abcd1234wxyz", "telegram_channel_id": " @chan "})
    assert resp.json()["updated"] == ["lixstream_api_key", "telegram_channel_id"]
    assert get_setting(conn, "telegram_channel_id", cfg) == "@chan"

    shown = client.get("/api/settings").json()
    assert shown["settings"]["lixstream_api_key"] == "abcd****wxyz"
    assert shown["settings"]["telegram_channel_id"] == "@chan"
    assert shown["stored_keys"] == ["lixstream_api_key", "telegram_channel_id"]

    client.put("/api/settings", json={"telegram_channel_id": ""})
    assert client.get("/api/settings").json()["stored_keys"] == ["lixstream_api_key"]


def test_video_and_folder_shares(monkeypatch, tmp_path: Path):
    _cfg, conn, admin, alice = _setup(monkeypatch, tmp_path)
    client = _client("admin", "admin-pw")
    no_code = repo.insert_video(conn, admin, None, "pending.mp4", "uploading")
    folder = repo.insert_folder(conn, admin, "Clips", None, "D1")

    created = client.post("/api/shares/video", json={"video": "remote:abc", "shared_to_user_id": alice})
    assert created.json() == {"ok": True, "created": True, "video": "remote:abc", "code": "abc"}
    again = client.post("/api/shares/video", json={"video": "remote:abc", "shared_to_user_id": alice})
    assert again.json()["created"] is False

    assert client.post("/api/shares/video", json={"video": f"local:{no_code}", "shared_to_user_id": alice}).status_code == 400
    to_admin = client.post("/api/shares/video", json={"video": "remote:abc", "shared_to_user_id": admin})
    assert to_admin.json()["detail"] == "can_only_share_to_publisher"
    assert client.post("/api/shares/video", json={"video": "remote:abc", "shared_to_user_id": 999}).status_code == 404

    shares = client.get("/api/shares/video", params={"video": "remote:abc"}).json()["shares"]
    assert [s["username"] for s in shares] == ["alice"]
    assert client.delete("/api/shares/video", params={"video": "remote:abc", "shared_to_user_id": alice}).json()["removed"] is True

    assert client.post("/api/shares/folder", json={"folder_id": folder, "shared_to_user_id": alice}).json()["created"] is True
    assert [s["shared_to_user_id"] for s in client.get("/api/shares/folder", params={"folder_id": folder}).json()["shares"]] == [alice]

    publisher = _client("alice", "alice-pw")
    folders = publisher.get("/api/folders").json()["folders"]
    assert [f["id"] for f in folders] == [folder]
    assert publisher.post("/api/shares/folder", json={"folder_id": folder, "shared_to_user_id": alice}).status_code == 403

    client.delete("/api/shares/folder", params={"folder_id": folder, "shared_to_user_id": alice})
    assert publisher.get("/api/folders").json()["folders"] == []


def test_create_post_and_send_to_channel(monkeypatch, tmp_path: Path):
    _cfg, conn, admin, _alice = _setup(monkeypatch, tmp_path, remote_files=[{"code": "abc", "share_link": "https://host/s/abc"}])
    repo.insert_video(conn, admin, None, "local.mp4", "uploading")
    local_id = repo.list_videos(conn)[0]["id"]
    repo.complete_video(conn, local_id, "completed", "loc", "https://host/s/loc", None, None)
    client = _client("admin", "admin-pw")
    client.put("/api/settings", json={"telegram_channel_id": "@chan", "telegram_bot_token": "TOKEN", "telegram_channel_name": "@chan"})

    resp = client.post(
        "/api/posts",
        data={"title": "Daily", "video_ids": json.dumps([f"local:{local_id}", "remote:abc"]), "post_to_channel": "true"},
        files={"image": ("cover.jpg", b"jpegbytes", "image/jpeg")},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["channel_message_id"] == "555"
    assert body["channel_error"] is None

    sent = _FakeTelegram.sent[0]
    assert sent["chat_id"] == "@chan"
    assert sent["photo"] == b"jpegbytes"
    assert sent["caption"].startswith("Daily\n\nhttps://host/s/loc\nhttps://host/s/abc\n\n")
    assert sent["caption"].endswith("\n\n@chan")

    posts = client.get("/api/posts").json()["posts"]
    assert posts[0]["posted_to_channel"] is True
    assert posts[0]["video_ids"] == [f"local:{local_id}", "remote:abc"]


def test_post_channel_failure_keeps_post(monkeypatch, tmp_path: Path):
    _cfg, conn, _admin, _alice = _setup(monkeypatch, tmp_path, remote_files=[{"code": "abc", "share_link": "https://host/s/abc"}])
    client = _client("admin", "admin-pw")

    missing = client.post("/api/posts", data={"title": "T", "video_ids": '["remote:abc"]', "post_to_channel": "true"})
    assert missing.json()["channel_error"] == "telegram_channel_id_missing"

    client.put("/api/settings", json={"telegram_channel_id": "@chan"})
    _FakeTelegram.fail_with = "Bot was blocked by the channel. Unblock the bot."
    failed = client.post("/api/posts", data={"title": "T", "video_ids": '["remote:abc"]', "post_to_channel": "true"})
    assert failed.status_code == 200
    assert failed.json()["channel_error"].startswith("Bot was blocked")

    assert len(repo.list_posts(conn)) == 2
    assert all(p["posted_to_channel"] is False for p in repo.list_posts(conn))


def test_post_rejects_unusable_videos(monkeypatch, tmp_path: Path):
    _cfg, _conn, _admin, _alice = _setup(monkeypatch, tmp_path)
    client = _client("alice", "alice-pw")

    assert client.post("/api/posts", data={"title": "T", "video_ids": "not json"}).status_code == 400
    assert client.post("/api/posts", data={"title": "T", "video_ids": "[]"}).status_code == 400
    resp = client.post("/api/posts", data={"title": "T", "video_ids": '["remote:abc"]'})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "no_valid_videos"


def test_post_preview(monkeypatch, tmp_path: Path):
    _setup(monkeypatch, tmp_path)
    preview = _client("alice", "alice-pw").get("/api/posts/preview", params={"title": "Hello"}).json()
    assert preview["preview"].startswith("Hello\n\n<link>\n\n")
    assert preview["preview"].endswith("channel telegram")


def test_activity_listing_scoped_by_role(monkeypatch, tmp_path: Path):
    _cfg, conn, admin, alice = _setup(monkeypatch, tmp_path)
    admin_client = _client("admin", "admin-pw")
    alice_client = _client("alice", "alice-pw")
    repo.log_activity(conn, admin, "sync")

    everything = admin_client.get("/api/activity").json()["logs"]
    assert {row["action"] for row in everything} == {"login", "sync"}
    assert len(everything) == 3

    own = alice_client.get("/api/activity").json()["logs"]
    assert [row["user_id"] for row in own] == [alice]

    logins = admin_client.get("/api/activity", params={"action": "login"}).json()["logs"]
    assert len(logins) == 2

    unknown = admin_client.get("/api/activity", params={"action": "drop_tables"})
    assert unknown.status_code == 400
    assert unknown.json()["detail"] == "invalid_action"

    summary = admin_client.get("/api/activity/summary", params={"days": 7}).json()
    assert summary["total"] == 3
    assert summary["by_action"] == {"login": 2, "sync": 1}
    assert alice_client.get("/api/activity/summary", params={"user_id": admin}).json()["total"] == 1
