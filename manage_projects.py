#!/usr/bin/env python3
"""
Project data management CLI

Validates and migrates the local gallery documents (data/projects.json,
comments.json, likes.json) and can seed a Git repository with them.
Safe to run multiple times.

Usage:
  python manage_projects.py validate [--data-dir data]
  python manage_projects.py stats [--data-dir data]
  python manage_projects.py push [--data-dir data]
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import ValidationError, validate as js_validate

from gallery_store import (
    COLLECTIONS,
    LocalJsonStore,
    _atomic_write_json,
    apply_schema_defaults,
    load_schema,
)
from github_contents import GitHubAPIError, GitHubContentsClient


BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = Path(os.getenv("GALLERY_DATA_DIR", str(BASE_DIR / "data")))


def _read_array(path: Path) -> Optional[List[Any]]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8") or "[]")
    except json.JSONDecodeError as exc:
        print(f"[error] {path} invalid JSON: {exc}")
        return None
    if not isinstance(data, list):
        print(f"[error] {path} does not hold a JSON array")
        return None
    return data


def validate_and_migrate(data_dir: Path = DEFAULT_DATA_DIR) -> int:
    schema = load_schema()
    path = data_dir / "projects.json"
    projects = _read_array(path)
    if projects is None:
        return 1

    changed = 0
    invalid = 0
    migrated: List[Dict[str, Any]] = []
    for entry in projects:
        if not isinstance(entry, dict):
            print(f"[warn] dropping non-object entry {entry!r}")
            changed += 1
            continue
        before = json.dumps(entry, sort_keys=True)
        entry = apply_schema_defaults(entry, schema)
        try:
            js_validate(instance=entry, schema=schema)
        except ValidationError as exc:
            print(f"[warn] {entry.get('id', '?')} failed schema validation: {exc.message}")
            invalid += 1
        if before != json.dumps(entry, sort_keys=True):
            changed += 1
        migrated.append(entry)

    if changed:
        _atomic_write_json(path, migrated)
    print(f"Validated {len(projects)} projects; updated {changed}; {invalid} still invalid.")
    return 1 if invalid else 0


def print_stats(data_dir: Path = DEFAULT_DATA_DIR) -> int:
    store = LocalJsonStore(data_dir, show_demo=False)
    totals = store.stats()
    comments = _read_array(store.path_for("comments")) or []
    print(f"Projects: {totals['total_projects']}")
    print(f"Likes:    {totals['total_likes']}")
    print(f"Views:    {totals['total_views']}")
    print(f"Comments: {len(comments)}")
    return 0


def push_to_github(data_dir: Path = DEFAULT_DATA_DIR, client: Optional[GitHubContentsClient] = None) -> int:
    client = client or GitHubContentsClient.from_env()
    if not client.is_configured():
        print("[error] GitHub not configured; missing " + ", ".join(client.missing_settings()))
        client.close()
        return 1
    remote_dir = os.getenv("GITHUB_DATA_PATH", "src/data").strip("/")
    try:
        for collection in COLLECTIONS:
            local_path = data_dir / f"{collection}.json"
            document = _read_array(local_path)
            if document is None:
                return 1
            remote_path = f"{remote_dir}/{collection}.json" if remote_dir else f"{collection}.json"
            text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
            client.upload_file(remote_path, text, f"Seed {collection} from local data")
            print(f"Pushed {len(document)} {collection} to {remote_path}")
    except GitHubAPIError as exc:
        print(f"[error] {exc}")
        return 1
    finally:
        client.close()
    return 0


def main(argv: List[str]) -> int:
    parser = argparse.ArgumentParser(description="Manage the gallery's JSON documents.")
    sub = parser.add_subparsers(dest="cmd", required=True)
    for name, help_text in (
        ("validate", "Validate and migrate data/projects.json"),
        ("stats", "Print project, like, view and comment totals"),
        ("push", "Upload the local documents to the configured GitHub repository"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--data-dir", type=Path, default=DEFAULT_DATA_DIR)
    args = parser.parse_args(argv)

    if args.cmd == "validate":
        return validate_and_migrate(args.data_dir)
    if args.cmd == "stats":
        return print_stats(args.data_dir)
    if args.cmd == "push":
        return push_to_github(args.data_dir)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
