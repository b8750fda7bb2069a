from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from streamdash.catalog import repository as repo
from streamdash.catalog.folder_tree import build_tree, flatten
from streamdash.catalog.reconciler import FolderFilter, fetch_remote_files, paginate, reconcile
from streamdash.catalog.sync_engine import SyncEngine
from streamdash.catalog.tombstones import TombstoneTracker
from streamdash.core.config import DEFAULT_CONFIG_PATH, load_config, save_config
from streamdash.providers.lixstream import LixstreamError
from streamdash.providers.lixstream.db import get_conn, init_db
from streamdash.providers.lixstream.settings import build_client_from_settings, mask_secret

app = typer.Typer(add_completion=False)
console = Console()


def _open_db():
    cfg = load_config()
    init_db(cfg.database.path)
    return cfg, get_conn(cfg.database.path)


def _superuser(conn, username: str | None) -> dict:
    if username:
        user = repo.get_user_by_username(conn, username)
        if not user:
            console.print(f"[red]user not found: {username}[/red]")
            raise typer.Exit(1)
        return user
    row = conn.execute("SELECT * FROM users WHERE role='superuser' ORDER BY id LIMIT 1").fetchone()
    if not row:
        console.print("[red]no superuser; run add-superuser first[/red]")
        raise typer.Exit(1)
    return dict(row)


@app.command("init-db")
def init_db_cmd():
    """Create the database tables."""
    cfg = load_config()
    init_db(cfg.database.path)
    print(f"OK: database={cfg.database.path}")


@app.command("add-superuser")
def add_superuser(
    username: str = typer.Option(..., "--username"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
    email: str = typer.Option("", "--email"),
):
    """Create a superuser, or promote and reset an existing user."""
    from streamdash.web.security import hash_password

    _cfg, conn = _open_db()
    try:
        existing = repo.get_user_by_username(conn, username)
        if existing:
            repo.update_user(conn, existing["id"], {"role": "superuser", "password_hash": hash_password(password)})
            print(f"OK: promoted user_id={existing['id']} username={username}")
            return
        user_id = repo.create_user(conn, username, hash_password(password), email or None, "superuser")
        print(f"OK: created user_id={user_id} username={username}")
    finally:
        conn.close()


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml with secrets masked."""
    cfg = load_config(path)
    data = cfg.model_dump()
    data["auth"]["jwt_secret"] = mask_secret(data["auth"]["jwt_secret"])
    data["lixstream"]["api_key"] = mask_secret(data["lixstream"]["api_key"])
    data["telegram"]["bot_token"] = mask_secret(data["telegram"]["bot_token"])
    print(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("config-set-lixstream")
def config_set_lixstream(
    api_key: str = typer.Option(..., "--api-key"),
    api_url: str = typer.Option("", "--api-url"),
    strategy: str = typer.Option("", "--strategy", help="global or per_folder"),
):
    """Set remote provider credentials and listing strategy in config.yaml."""
    cfg = load_config()
    cfg.lixstream.api_key = api_key
    if api_url:
        cfg.lixstream.api_url = api_url
    if strategy:
        if strategy not in ("global", "per_folder"):
            console.print("[red]strategy must be global or per_folder[/red]")
            raise typer.Exit(1)
        cfg.listing.strategy = strategy
    save_config(cfg)
    print(
        json.dumps(
            {"ok": True, "api_key_set": bool(cfg.lixstream.api_key), "api_url": cfg.lixstream.api_url, "strategy": cfg.listing.strategy},
            ensure_ascii=False,
            indent=2,
        )
    )


@app.command()
def serve():
    """Run the web API."""
    from streamdash.web.main import main as web_main

    web_main()


@app.command()
def sync(username: str = typer.Option("", "--user", help="Run as this user; defaults to the first superuser.")):
    """Prune and promote local videos against the remote listing."""
    from streamdash.core.logging_setup import setup_logging

    cfg, conn = _open_db()
    setup_logging(cfg.logging.level, cfg.logging.file)
    try:
        user = _superuser(conn, username or None)
        engine = SyncEngine(conn, build_client_from_settings(conn, cfg))
        try:
            summary = engine.run_once(user)
        except LixstreamError as e:
            logging.getLogger("sync").error("sync_failed err=%s", e)
            print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, indent=2))
            raise typer.Exit(2)
    finally:
        conn.close()
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    if int(summary.get("errors", 0)) > 0:
        raise typer.Exit(2)


@app.command()
def videos(
    folder: str = typer.Option("", "--folder", help="root, or a folder id"),
    page: int = typer.Option(1, "--page"),
    page_size: int = typer.Option(15, "--page-size"),
):
    """Print the reconciled video listing as the superuser sees it."""
    cfg, conn = _open_db()
    try:
        folder_filter = FolderFilter.parse(folder or None)
        folders = repo.list_folders(conn)
        client = build_client_from_settings(conn, cfg)
        try:
            remote = fetch_remote_files(client, cfg.listing.strategy, folder_filter, folders)
        except LixstreamError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(2)
        result = reconcile(remote, folders, repo.list_videos(conn), TombstoneTracker(conn).load(), folder_filter)
    finally:
        conn.close()

    page_obj = paginate(result.items, page=page, page_size=page_size, max_page_size=cfg.listing.max_page_size)
    table = Table(title=f"videos page {page_obj.page}/{page_obj.total_pages} total={page_obj.total}")
    table.add_column("Key")
    table.add_column("Name")
    table.add_column("Folder")
    table.add_column("Status")
    table.add_column("Link")
    for v in page_obj.items:
        table.add_row(v.key, v.name, v.folder_name or "-", v.upload_status, v.share_link or v.embed_link or "-")
    console.print(table)


@app.command()
def folders():
    """Print the folder tree."""
    _cfg, conn = _open_db()
    try:
        tree = build_tree(repo.list_folders(conn))
    finally:
        conn.close()

    table = Table(title="folders")
    table.add_column("Id")
    table.add_column("Path")
    table.add_column("Remote dir")
    for f in flatten(tree["root"]):
        table.add_row(str(f["id"]), f["path"], f.get("remote_dir_id") or "-")
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
