from __future__ import annotations

from typing import Any, Iterable

ROOT_NAME = "Root"
PATH_SEP = " / "


def _node(folder: dict) -> dict[str, Any]:
    return {
        "id": folder["id"],
        "name": folder["name"],
        "parent_id": folder.get("parent_id"),
        "remote_dir_id": folder.get("remote_dir_id"),
        "user_id": folder.get("user_id"),
        "path": "",
        "children": [],
        "is_root": False,
    }


def build_tree(folders: Iterable[dict]) -> dict[str, dict]:
    """Nest flat folder rows under a synthetic root node.

    Folders whose parent is missing, is themselves, or sits on a parent cycle
    are attached directly under the root instead of raising.
    """
    root: dict[str, Any] = {
        "id": None,
        "name": ROOT_NAME,
        "parent_id": None,
        "remote_dir_id": None,
        "user_id": None,
        "path": ROOT_NAME,
        "children": [],
        "is_root": True,
    }

    nodes: dict[int, dict] = {}
    order: list[int] = []
    for f in folders:
        if f["id"] in nodes:
            continue
        nodes[f["id"]] = _node(f)
        order.append(f["id"])

    for fid in order:
        node = nodes[fid]
        parent = nodes.get(node["parent_id"]) if node["parent_id"] is not None else None
        if parent is None or parent is node:
            root["children"].append(node)
        else:
            parent["children"].append(node)

    # Nodes on a parent cycle are unreachable from the root; detach each one and hang it under root.
    reached = _walk_ids(root)
    for fid in order:
        if fid in reached:
            continue
        node = nodes[fid]
        parent = nodes.get(node["parent_id"])
        if parent is not None:
            parent["children"] = [c for c in parent["children"] if c is not node]
        root["children"].append(node)
        reached |= _walk_ids(node)

    _assign_paths(root)
    return {"root": root}


def _walk_ids(start: dict) -> set[int]:
    seen: set[int] = set()
    stack = [start]
    while stack:
        n = stack.pop()
        if n["id"] is not None:
            if n["id"] in seen:
                continue
            seen.add(n["id"])
        stack.extend(n["children"])
    return seen


def _assign_paths(root: dict):
    stack = [root]
    while stack:
        n = stack.pop()
        for child in n["children"]:
            child["path"] = f"{n['path']}{PATH_SEP}{child['name']}"
        stack.extend(reversed(n["children"]))


def flatten(root: dict) -> list[dict]:
    """Real folders in pre-order; children of the synthetic root get ``parent_id=None``."""
    out: list[dict] = []
    stack = [(child, None) for child in reversed(root["children"])]
    while stack:
        node, parent_id = stack.pop()
        out.append(
            {
                "id": node["id"],
                "name": node["name"],
                "parent_id": parent_id,
                "remote_dir_id": node.get("remote_dir_id"),
                "user_id": node.get("user_id"),
                "path": node["path"],
            }
        )
        stack.extend((child, node["id"]) for child in reversed(node["children"]))
    return out
