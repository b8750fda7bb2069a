from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger("reconcile")


class TombstoneTracker:
    """Remote file codes hidden from every listing, for every user.

    Deleting never removes the remote asset, so the code is recorded here and
    filtered out of each reconciliation.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def record_deletion(self, code: str, user_id: int) -> bool:
        """Returns True when a new tombstone row was written."""
        if not code:
            return False
        cur = self.conn.execute(
            "INSERT OR IGNORE INTO deleted_videos(remote_file_id, deleted_by_user_id) VALUES (?, ?)",
            (code, user_id),
        )
        self.conn.commit()
        created = cur.rowcount > 0
        if created:
            logger.info("tombstone_recorded code=%s user_id=%s", code, user_id)
        return created

    def is_deleted(self, code: str | None) -> bool:
        if not code:
            return False
        row = self.conn.execute("SELECT 1 FROM deleted_videos WHERE remote_file_id=?", (code,)).fetchone()
        return row is not None

    def load(self) -> set[str]:
        rows = self.conn.execute("SELECT remote_file_id FROM deleted_videos").fetchall()
        return {r["remote_file_id"] for r in rows if r["remote_file_id"]}
