import sqlite3
from pathlib import Path


def get_conn(db_path: str):
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # FastAPI may resolve a dependency and run the endpoint on different threadpool workers.
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str):
    conn = get_conn(db_path)
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          username TEXT UNIQUE NOT NULL,
          password_hash TEXT NOT NULL,
          email TEXT,
          role TEXT NOT NULL DEFAULT 'publisher' CHECK (role IN ('superuser', 'publisher')),
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS folders (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL,
          name TEXT NOT NULL,
          parent_id INTEGER,
          remote_dir_id TEXT,
          share_link_cache TEXT,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
          FOREIGN KEY (parent_id) REFERENCES folders(id) ON DELETE CASCADE
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS videos (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL,
          folder_id INTEGER,
          name TEXT NOT NULL,
          remote_file_id TEXT,
          remote_upload_id TEXT,
          share_link TEXT,
          embed_link TEXT,
          thumbnail_url TEXT,
          upload_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (upload_status IN ('pending', 'uploading', 'completed', 'failed')),
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
          FOREIGN KEY (folder_id) REFERENCES folders(id) ON DELETE SET NULL
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS deleted_videos (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          remote_file_id TEXT NOT NULL UNIQUE,
          deleted_by_user_id INTEGER NOT NULL,
          deleted_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS video_shares (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          video_id TEXT NOT NULL,
          remote_file_id TEXT NOT NULL,
          shared_by_user_id INTEGER NOT NULL,
          shared_to_user_id INTEGER NOT NULL,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (shared_by_user_id) REFERENCES users(id) ON DELETE CASCADE,
          FOREIGN KEY (shared_to_user_id) REFERENCES users(id) ON DELETE CASCADE,
          UNIQUE (video_id, shared_to_user_id)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS folder_shares (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          folder_id INTEGER NOT NULL,
          remote_dir_id TEXT,
          shared_by_user_id INTEGER NOT NULL,
          shared_to_user_id INTEGER NOT NULL,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (folder_id) REFERENCES folders(id) ON DELETE CASCADE,
          FOREIGN KEY (shared_by_user_id) REFERENCES users(id) ON DELETE CASCADE,
          FOREIGN KEY (shared_to_user_id) REFERENCES users(id) ON DELETE CASCADE,
          UNIQUE (folder_id, shared_to_user_id)
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS posts (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL,
          title TEXT NOT NULL,
          video_ids_json TEXT NOT NULL,
          posted_to_channel INTEGER NOT NULL DEFAULT 0,
          channel_message_id TEXT,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
          key TEXT PRIMARY KEY,
          value TEXT,
          updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS activity_logs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER,
          action TEXT NOT NULL,
          target_type TEXT,
          target_id TEXT,
          metadata_json TEXT,
          created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_user_id ON videos(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_folder_id ON videos(folder_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_folders_user_id ON folders(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_folders_parent_id ON folders(parent_id)")
    # One local folder per remote directory, matched the same way the directory mapper matches.
    cur.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_folders_remote_dir ON folders(lower(trim(remote_dir_id)))"
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_video_shares_file ON video_shares(remote_file_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_video_shares_to ON video_shares(shared_to_user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_folder_shares_folder ON folder_shares(folder_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_folder_shares_to ON folder_shares(shared_to_user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_logs(created_at)")

    conn.commit()
    conn.close()
