from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable

logger = logging.getLogger("activity")

ACTIVITY_ACTIONS = {
    "login",
    "upload_local",
    "upload_remote",
    "delete_video",
    "delete_folder",
    "create_folder",
    "create_post",
    "sync",
}


def _rows(cur) -> list[dict]:
    return [dict(r) for r in cur.fetchall()]


def _one(cur) -> dict | None:
    row = cur.fetchone()
    return dict(row) if row else None


# users


def get_user(conn: sqlite3.Connection, user_id: int) -> dict | None:
    return _one(conn.execute("SELECT * FROM users WHERE id=?", (user_id,)))


def get_user_by_username(conn: sqlite3.Connection, username: str) -> dict | None:
    return _one(conn.execute("SELECT * FROM users WHERE username=?", (username,)))


def list_users(conn: sqlite3.Connection) -> list[dict]:
    return _rows(conn.execute("SELECT id, username, email, role, created_at FROM users ORDER BY id"))


def create_user(conn: sqlite3.Connection, username: str, password_hash: str, email: str | None, role: str) -> int:
    cur = conn.execute(
        "INSERT INTO users(username, password_hash, email, role) VALUES (?,?,?,?)",
        (username, password_hash, email, role),
    )
    conn.commit()
    return int(cur.lastrowid)


def update_user(conn: sqlite3.Connection, user_id: int, fields: dict[str, Any]):
    allowed = {k: v for k, v in fields.items() if k in {"username", "password_hash", "email", "role"}}
    if not allowed:
        return
    assignments = ", ".join(f"{k}=?" for k in allowed)
    conn.execute(f"UPDATE users SET {assignments} WHERE id=?", (*allowed.values(), user_id))
    conn.commit()


def delete_user(conn: sqlite3.Connection, user_id: int) -> bool:
    cur = conn.execute("DELETE FROM users WHERE id=?", (user_id,))
    conn.commit()
    return cur.rowcount > 0


# folders


def list_folders(conn: sqlite3.Connection, folder_ids: Iterable[int] | None = None) -> list[dict]:
    if folder_ids is None:
        return _rows(conn.execute("SELECT * FROM folders ORDER BY name, id"))
    ids = list(folder_ids)
    if not ids:
        return []
    marks = ",".join("?" for _ in ids)
    return _rows(conn.execute(f"SELECT * FROM folders WHERE id IN ({marks}) ORDER BY name, id", ids))


def owned_folder_ids(conn: sqlite3.Connection, user_id: int) -> set[int]:
    return {r["id"] for r in conn.execute("SELECT id FROM folders WHERE user_id=?", (user_id,)).fetchall()}


def get_folder(conn: sqlite3.Connection, folder_id: int) -> dict | None:
    return _one(conn.execute("SELECT * FROM folders WHERE id=?", (folder_id,)))


def insert_folder(conn: sqlite3.Connection, user_id: int, name: str, parent_id: int | None, remote_dir_id: str | None) -> int:
    cur = conn.execute(
        "INSERT INTO folders(user_id, name, parent_id, remote_dir_id) VALUES (?,?,?,?)",
        (user_id, name, parent_id, remote_dir_id),
    )
    conn.commit()
    return int(cur.lastrowid)


def set_folder_share_link(conn: sqlite3.Connection, folder_id: int, link: str):
    conn.execute("UPDATE folders SET share_link_cache=? WHERE id=?", (link, folder_id))
    conn.commit()


def delete_folder_row(conn: sqlite3.Connection, folder_id: int):
    conn.execute("DELETE FROM folder_shares WHERE folder_id=?", (folder_id,))
    conn.execute("DELETE FROM folders WHERE id=?", (folder_id,))
    conn.commit()


# videos


def list_videos(conn: sqlite3.Connection, user_id: int | None = None) -> list[dict]:
    if user_id is None:
        return _rows(conn.execute("SELECT * FROM videos ORDER BY created_at DESC, id DESC"))
    return _rows(conn.execute("SELECT * FROM videos WHERE user_id=? ORDER BY created_at DESC, id DESC", (user_id,)))


def list_videos_in_folder(conn: sqlite3.Connection, folder_id: int) -> list[dict]:
    return _rows(conn.execute("SELECT * FROM videos WHERE folder_id=?", (folder_id,)))


def get_video(conn: sqlite3.Connection, video_id: int) -> dict | None:
    return _one(conn.execute("SELECT * FROM videos WHERE id=?", (video_id,)))


def insert_video(
    conn: sqlite3.Connection,
    user_id: int,
    folder_id: int | None,
    name: str,
    upload_status: str,
    remote_upload_id: str | None = None,
) -> int:
    cur = conn.execute(
        "INSERT INTO videos(user_id, folder_id, name, upload_status, remote_upload_id) VALUES (?,?,?,?,?)",
        (user_id, folder_id, name, upload_status, remote_upload_id),
    )
    conn.commit()
    return int(cur.lastrowid)


def complete_video(
    conn: sqlite3.Connection,
    video_id: int,
    status: str,
    code: str | None,
    share_link: str | None,
    embed_link: str | None,
    thumbnail_url: str | None,
):
    conn.execute(
        """
        UPDATE videos
           SET upload_status=?, remote_file_id=?, share_link=?, embed_link=?, thumbnail_url=?
         WHERE id=?
        """,
        (status, code, share_link, embed_link, thumbnail_url, video_id),
    )
    conn.commit()


def delete_video_row(conn: sqlite3.Connection, video_id: int):
    conn.execute("DELETE FROM videos WHERE id=?", (video_id,))
    conn.commit()


# shares


def add_video_share(conn: sqlite3.Connection, video_key: str, code: str, shared_by: int, shared_to: int) -> bool:
    cur = conn.execute(
        """
        INSERT INTO video_shares(video_id, remote_file_id, shared_by_user_id, shared_to_user_id)
        VALUES (?,?,?,?)
        ON CONFLICT(video_id, shared_to_user_id) DO NOTHING
        """,
        (video_key, code, shared_by, shared_to),
    )
    conn.commit()
    return cur.rowcount > 0


def remove_video_share(conn: sqlite3.Connection, video_key: str, shared_to: int) -> bool:
    cur = conn.execute("DELETE FROM video_shares WHERE video_id=? AND shared_to_user_id=?", (video_key, shared_to))
    conn.commit()
    return cur.rowcount > 0


def list_video_shares(conn: sqlite3.Connection, video_key: str) -> list[dict]:
    return _rows(
        conn.execute(
            """
            SELECT vs.*, u.username, u.email
              FROM video_shares vs
              JOIN users u ON vs.shared_to_user_id = u.id
             WHERE vs.video_id=?
            """,
            (video_key,),
        )
    )


def shared_codes_for(conn: sqlite3.Connection, user_id: int) -> set[str]:
    rows = conn.execute(
        "SELECT DISTINCT remote_file_id FROM video_shares WHERE shared_to_user_id=?", (user_id,)
    ).fetchall()
    return {r["remote_file_id"] for r in rows if r["remote_file_id"]}


def delete_video_shares(conn: sqlite3.Connection, video_key: str | None = None, code: str | None = None) -> int:
    removed = 0
    if video_key:
        removed += conn.execute("DELETE FROM video_shares WHERE video_id=?", (video_key,)).rowcount
    if code:
        removed += conn.execute("DELETE FROM video_shares WHERE remote_file_id=?", (code,)).rowcount
    conn.commit()
    return removed


def add_folder_share(conn: sqlite3.Connection, folder_id: int, remote_dir_id: str | None, shared_by: int, shared_to: int) -> bool:
    cur = conn.execute(
        """
        INSERT INTO folder_shares(folder_id, remote_dir_id, shared_by_user_id, shared_to_user_id)
        VALUES (?,?,?,?)
        ON CONFLICT(folder_id, shared_to_user_id) DO NOTHING
        """,
        (folder_id, remote_dir_id, shared_by, shared_to),
    )
    conn.commit()
    return cur.rowcount > 0


def remove_folder_share(conn: sqlite3.Connection, folder_id: int, shared_to: int) -> bool:
    cur = conn.execute("DELETE FROM folder_shares WHERE folder_id=? AND shared_to_user_id=?", (folder_id, shared_to))
    conn.commit()
    return cur.rowcount > 0


def list_folder_shares(conn: sqlite3.Connection, folder_id: int) -> list[dict]:
    return _rows(
        conn.execute(
            """
            SELECT fs.*, u.username, u.email
              FROM folder_shares fs
              JOIN users u ON fs.shared_to_user_id = u.id
             WHERE fs.folder_id=?
            """,
            (folder_id,),
        )
    )


def shared_folder_ids_for(conn: sqlite3.Connection, user_id: int) -> set[int]:
    rows = conn.execute("SELECT folder_id FROM folder_shares WHERE shared_to_user_id=?", (user_id,)).fetchall()
    return {r["folder_id"] for r in rows}


# posts


def insert_post(conn: sqlite3.Connection, user_id: int, title: str, video_ids: list) -> int:
    cur = conn.execute(
        "INSERT INTO posts(user_id, title, video_ids_json) VALUES (?,?,?)",
        (user_id, title, json.dumps(video_ids, ensure_ascii=False)),
    )
    conn.commit()
    return int(cur.lastrowid)


def mark_post_sent(conn: sqlite3.Connection, post_id: int, message_id: str):
    conn.execute("UPDATE posts SET posted_to_channel=1, channel_message_id=? WHERE id=?", (message_id, post_id))
    conn.commit()


def list_posts(conn: sqlite3.Connection, user_id: int | None = None, limit: int = 50) -> list[dict]:
    if user_id is None:
        rows = _rows(conn.execute("SELECT * FROM posts ORDER BY id DESC LIMIT ?", (limit,)))
    else:
        rows = _rows(conn.execute("SELECT * FROM posts WHERE user_id=? ORDER BY id DESC LIMIT ?", (user_id, limit)))
    for r in rows:
        r["video_ids"] = json.loads(r.pop("video_ids_json") or "[]")
        r["posted_to_channel"] = bool(r["posted_to_channel"])
    return rows


# activity


def log_activity(
    conn: sqlite3.Connection,
    user_id: int | None,
    action: str,
    target_type: str | None = None,
    target_id: Any = None,
    metadata: dict | None = None,
):
    """Best effort: a failed activity insert is logged and never breaks the calling operation."""
    try:
        conn.execute(
            "INSERT INTO activity_logs(user_id, action, target_type, target_id, metadata_json) VALUES (?,?,?,?,?)",
            (
                user_id,
                action,
                target_type,
                str(target_id) if target_id is not None else None,
                json.dumps(metadata, ensure_ascii=False) if metadata else None,
            ),
        )
        conn.commit()
    except sqlite3.Error as exc:
        logger.warning("activity_log_failed user_id=%s action=%s err=%s", user_id, action, exc)


def list_activity(
    conn: sqlite3.Connection,
    limit: int = 50,
    offset: int = 0,
    user_id: int | None = None,
    action: str | None = None,
) -> list[dict]:
    sql = """
        SELECT a.*, u.username
          FROM activity_logs a
          LEFT JOIN users u ON a.user_id = u.id
         WHERE 1=1
    """
    params: list[Any] = []
    if user_id is not None:
        sql += " AND a.user_id=?"
        params.append(user_id)
    if action:
        sql += " AND a.action=?"
        params.append(action)
    sql += " ORDER BY a.id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    rows = _rows(conn.execute(sql, params))
    for r in rows:
        r["metadata"] = json.loads(r.pop("metadata_json") or "null")
    return rows


def activity_summary(conn: sqlite3.Connection, days: int = 7, user_id: int | None = None) -> dict[str, Any]:
    where = "WHERE created_at >= datetime('now', ?)"
    params: list[Any] = [f"-{int(days)} days"]
    if user_id is not None:
        where += " AND user_id=?"
        params.append(user_id)
    by_action = {
        r["action"]: r["n"]
        for r in conn.execute(f"SELECT action, COUNT(*) AS n FROM activity_logs {where} GROUP BY action", params).fetchall()
    }
    by_day = _rows(
        conn.execute(
            f"SELECT date(created_at) AS day, COUNT(*) AS n FROM activity_logs {where} GROUP BY day ORDER BY day",
            params,
        )
    )
    return {"days": days, "total": sum(by_action.values()), "by_action": by_action, "by_day": by_day}
