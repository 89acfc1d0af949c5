"""Project, comment and like documents for the gallery.

Each collection is a JSON array held in one document (``projects.json``,
``comments.json``, ``likes.json``). ``ProjectStore`` implements the gallery
operations once on top of two primitives, ``_read`` and ``_update``; the
subclasses decide where the documents live.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
import threading
import time
from contextlib import suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator

from github_contents import GitHubAPIError, GitHubContentsClient
from media_utils import get_media_type

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
SCHEMA_PATH = BASE_DIR / "Project.schema.json"

CATEGORIES: Dict[str, str] = {
    "design": "Design",
    "fotografie": "Fotografie",
    "illustration": "Illustration",
    "ui_ux": "UI/UX",
    "architektur": "Architektur",
    "produktdesign": "Produktdesign",
    "video": "Video",
    "ai_ki": "AI/KI",
}

COLLECTIONS = ("projects", "comments", "likes")

EDITABLE_FIELDS = {"title", "description", "category", "cover_image_url", "media", "downloadable"}

MAX_COMMENT_LENGTH = 1000

DEMO_PROJECTS: List[Dict[str, Any]] = [
    {
        "id": "demo-1",
        "title": "Abstract Geometrie",
        "description": "Eine moderne abstrakte Komposition mit geometrischen Formen und lebendigen Farbverläufen.",
        "category": "design",
        "cover_image_url": "/static/demo/project-1.jpg",
        "likes": 234,
        "views": 1523,
    },
    {
        "id": "demo-2",
        "title": "Landschaft",
        "description": "Atemberaubende Landschaftsfotografie zur goldenen Stunde. Biel/Bienne - Ligerz",
        "category": "fotografie",
        "cover_image_url": "/static/demo/project-2.jpg",
        "likes": 567,
        "views": 3421,
    },
    {
        "id": "demo-3",
        "title": "Surreale Kunst",
        "description": "Kreative digitale Illustration mit surrealen Elementen und kräftigen Farben.",
        "category": "illustration",
        "cover_image_url": "/static/demo/project-3.jpg",
        "likes": 432,
        "views": 2134,
    },
    {
        "id": "demo-4",
        "title": "Retouche",
        "description": "Foto Retouchieren",
        "category": "fotografie",
        "cover_image_url": "/static/demo/project-4.png",
        "likes": 891,
        "views": 4532,
    },
    {
        "id": "demo-5",
        "title": "Moderne Architektur",
        "description": "Zeitgenössische Architekturfotografie moderner Gebäude mit Glas und Stahl.",
        "category": "architektur",
        "cover_image_url": "/static/demo/project-5.jpg",
        "likes": 345,
        "views": 2876,
    },
    {
        "id": "demo-6",
        "title": "Produktfotografie",
        "description": "Produktdesign-Fotografie moderner Elektronik mit eleganter Beleuchtung.",
        "category": "produktdesign",
        "cover_image_url": "/static/demo/project-6.jpg",
        "likes": 678,
        "views": 3987,
    },
    {
        "id": "demo-7",
        "title": "Geometrie Blender",
        "description": "Blender 3d Engine Rendering",
        "category": "design",
        "cover_image_url": "/static/demo/project-7.webp",
        "likes": 856,
        "views": 4897,
    },
    {
        "id": "demo-8",
        "title": "Musik Album Cover",
        "description": "Erstellung des Musik Cover für ein Spotify Album.",
        "category": "design",
        "cover_image_url": "/static/demo/project-8.png",
        "likes": 943,
        "views": 3846,
    },
]

for _demo in DEMO_PROJECTS:
    _demo.update(
        {
            "media": [],
            "user_id": "demo",
            "downloadable": True,
            "created_at": "2024-01-01T00:00:00.000Z",
            "updated_at": "2024-01-01T00:00:00.000Z",
        }
    )


class StoreError(Exception):
    """Base class for gallery store failures."""


class ProjectNotFoundError(StoreError):
    pass


class InvalidProjectError(StoreError):
    pass


class ReadOnlyProjectError(StoreError):
    """Demo projects cannot be liked, commented on or edited."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_demo_id(project_id: str) -> bool:
    return str(project_id).startswith("demo-")


def load_schema() -> Dict[str, Any]:
    try:
        return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unable to load schema at %s: %s", SCHEMA_PATH, exc)
        return {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "title": {"type": "string", "minLength": 1},
                "category": {"type": "string", "enum": sorted(CATEGORIES)},
            },
            "required": ["id", "title", "category"],
        }


def validate_project(record: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> None:
    """Raise InvalidProjectError naming the first schema violation."""
    validator = Draft202012Validator(schema or load_schema())
    errors = sorted(validator.iter_errors(record), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.path) or "project"
        raise InvalidProjectError(f"{where}: {first.message}")


def apply_schema_defaults(record: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing fields from schema defaults and coerce legacy values in place."""
    for key, spec in schema.get("properties", {}).items():
        if key not in record and "default" in spec:
            default = spec["default"]
            record[key] = list(default) if isinstance(default, list) else default
    for counter in ("likes", "views"):
        try:
            record[counter] = max(0, int(record.get(counter) or 0))
        except (TypeError, ValueError):
            record[counter] = 0
    media = record.get("media")
    if not isinstance(media, list):
        media = []
    cleaned = []
    for item in media:
        if isinstance(item, str):
            item = {"url": item}
        if isinstance(item, dict) and item.get("url"):
            cleaned.append({"url": str(item["url"]), "type": item.get("type") or get_media_type(str(item["url"]))})
    record["media"] = cleaned
    return record


def default_avatar_url(seed: str) -> str:
    return f"https://api.dicebear.com/7.x/thumbs/svg?seed={seed or 'guest'}"


def _find(items: List[Dict[str, Any]], key: str, value: Any) -> Optional[Dict[str, Any]]:
    return next((item for item in items if item.get(key) == value), None)


class ProjectStore:
    """Gallery operations over the three JSON collections."""

    backend = "abstract"

    def __init__(self, show_demo: bool = True) -> None:
        self.show_demo = show_demo
        self._schema = load_schema()

    # --- storage primitives ---

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def _update(self, collection: str, mutate: Callable[[List[Dict[str, Any]]], Any], message: str) -> Any:
        raise NotImplementedError

    # --- projects ---

    def stored_projects(self) -> List[Dict[str, Any]]:
        return [p for p in self._read("projects") if isinstance(p, dict)]

    def list_projects(self, category: str = "all") -> List[Dict[str, Any]]:
        category = (category or "all").strip()
        if category != "all" and category not in CATEGORIES:
            raise InvalidProjectError(f"Unknown category: {category}")
        projects = self.stored_projects()
        if not projects and self.show_demo:
            projects = [dict(p) for p in DEMO_PROJECTS]
        else:
            projects = sorted(projects, key=lambda p: p.get("created_at") or "", reverse=True)
        if category != "all":
            projects = [p for p in projects if p.get("category") == category]
        return projects

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        found = _find(self.stored_projects(), "id", project_id)
        if found is None and is_demo_id(project_id):
            demo = _find(DEMO_PROJECTS, "id", project_id)
            return dict(demo) if demo else None
        return found

    def _require_stored(self, project_id: str) -> Dict[str, Any]:
        project = _find(self.stored_projects(), "id", project_id)
        if project is not None:
            return project
        if _find(DEMO_PROJECTS, "id", project_id) is not None:
            raise ReadOnlyProjectError(f"Demo project {project_id} is read-only")
        raise ProjectNotFoundError(project_id)

    def create_project(self, data: Dict[str, Any], user_id: str = "admin") -> Dict[str, Any]:
        title = str(data.get("title") or "").strip()
        category = str(data.get("category") or "").strip()
        if not title:
            raise InvalidProjectError("Titel ist erforderlich")
        if category not in CATEGORIES:
            raise InvalidProjectError(f"Unknown category: {category}")
        now = _now_iso()
        record: Dict[str, Any] = {
            "id": "",
            "title": title,
            "description": str(data.get("description") or "").strip(),
            "category": category,
            "cover_image_url": str(data.get("cover_image_url") or ""),
            "media": list(data.get("media") or []),
            "likes": 0,
            "views": 0,
            "user_id": user_id or "anonymous",
            "downloadable": bool(data.get("downloadable", True)),
            "created_at": now,
            "updated_at": now,
        }
        apply_schema_defaults(record, self._schema)

        def mutate(projects: List[Dict[str, Any]]) -> Dict[str, Any]:
            taken = {p.get("id") for p in projects}
            stamp = _now_ms()
            while f"project-{stamp}" in taken:
                stamp += 1
            record["id"] = f"project-{stamp}"
            validate_project(record, self._schema)
            projects.append(record)
            return dict(record)

        created = self._update("projects", mutate, f"Add project {title}")
        logger.info("Created project %s (%s)", created["id"], title)
        return created

    def update_project(self, project_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        self._require_stored(project_id)
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidProjectError("Not editable: " + ", ".join(sorted(unknown)))
        if "category" in changes and changes["category"] not in CATEGORIES:
            raise InvalidProjectError(f"Unknown category: {changes['category']}")
        if "title" in changes and not str(changes["title"] or "").strip():
            raise InvalidProjectError("Titel ist erforderlich")

        def mutate(projects: List[Dict[str, Any]]) -> Dict[str, Any]:
            project = _find(projects, "id", project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            candidate = dict(project)
            candidate.update(changes)
            if "title" in changes:
                candidate["title"] = str(changes["title"]).strip()
            candidate["updated_at"] = _now_iso()
            apply_schema_defaults(candidate, self._schema)
            validate_project(candidate, self._schema)
            project.clear()
            project.update(candidate)
            return dict(project)

        return self._update("projects", mutate, f"Update project {project_id}")

    def delete_project(self, project_id: str) -> Dict[str, Any]:
        """Remove a project with its comments and likes; returns the removed record."""
        self._require_stored(project_id)

        def drop_project(projects: List[Dict[str, Any]]) -> Dict[str, Any]:
            project = _find(projects, "id", project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            projects.remove(project)
            return project

        removed = self._update("projects", drop_project, f"Delete project {project_id}")

        def drop_children(items: List[Dict[str, Any]]) -> int:
            before = len(items)
            items[:] = [item for item in items if item.get("project_id") != project_id]
            return before - len(items)

        for collection in ("comments", "likes"):
            try:
                count = self._update(collection, drop_children, f"Delete {collection} of {project_id}")
                logger.debug("Removed %d %s of %s", count, collection, project_id)
            except (StoreError, GitHubAPIError) as exc:
                logger.error("Failed to remove %s of %s: %s", collection, project_id, exc)
        logger.info("Deleted project %s", project_id)
        return removed

    @staticmethod
    def media_urls(project: Dict[str, Any]) -> List[str]:
        urls = [project.get("cover_image_url") or ""]
        urls.extend(item.get("url", "") for item in project.get("media") or [])
        return [u for u in urls if u]

    # --- engagement ---

    def _bump_counter(self, project_id: str, field: str, delta: int) -> int:
        def mutate(projects: List[Dict[str, Any]]) -> int:
            project = _find(projects, "id", project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            project[field] = max(0, int(project.get(field) or 0) + delta)
            return project[field]

        return self._update("projects", mutate, f"Update {field} of {project_id}")

    def increment_views(self, project_id: str) -> int:
        self._require_stored(project_id)
        return self._bump_counter(project_id, "views", 1)

    def has_liked(self, project_id: str, user_id: str) -> bool:
        return any(
            row.get("project_id") == project_id and row.get("user_id") == user_id
            for row in self._read("likes")
        )

    def toggle_like(self, project_id: str, user_id: str) -> Tuple[bool, int]:
        if not user_id:
            raise InvalidProjectError("user_id is required to like a project")
        self._require_stored(project_id)

        def mutate(rows: List[Dict[str, Any]]) -> bool:
            for row in rows:
                if row.get("project_id") == project_id and row.get("user_id") == user_id:
                    rows.remove(row)
                    return False
            rows.append({"project_id": project_id, "user_id": user_id, "created_at": _now_iso()})
            return True

        liked = self._update("likes", mutate, f"Toggle like on {project_id}")
        likes = self._bump_counter(project_id, "likes", 1 if liked else -1)
        return liked, likes

    # --- comments ---

    def list_comments(self, project_id: str) -> List[Dict[str, Any]]:
        comments = [c for c in self._read("comments") if c.get("project_id") == project_id]
        return sorted(comments, key=lambda c: c.get("created_at") or "")

    def add_comment(
        self,
        project_id: str,
        user_id: str,
        display_name: str,
        text: str,
        avatar_url: str = "",
    ) -> Dict[str, Any]:
        body = (text or "").strip()
        if not body:
            raise InvalidProjectError("Kommentar darf nicht leer sein")
        if len(body) > MAX_COMMENT_LENGTH:
            raise InvalidProjectError(f"Kommentar ist zu lang (max. {MAX_COMMENT_LENGTH} Zeichen)")
        self._require_stored(project_id)
        comment = {
            "id": f"comment-{_now_ms()}-{secrets.token_hex(3)}",
            "project_id": project_id,
            "user_id": user_id or "anonymous",
            "display_name": (display_name or "").strip() or "Gast",
            "avatar_url": avatar_url or default_avatar_url(user_id),
            "text": body,
            "created_at": _now_iso(),
        }

        def mutate(comments: List[Dict[str, Any]]) -> Dict[str, Any]:
            comments.append(comment)
            return dict(comment)

        return self._update("comments", mutate, f"Add comment on {project_id}")

    def delete_comment(self, comment_id: str) -> bool:
        def mutate(comments: List[Dict[str, Any]]) -> bool:
            found = _find(comments, "id", comment_id)
            if found is None:
                return False
            comments.remove(found)
            return True

        return self._update("comments", mutate, f"Delete comment {comment_id}")

    # --- dashboard ---

    def stats(self) -> Dict[str, int]:
        projects = self.stored_projects()
        return {
            "total_projects": len(projects),
            "total_likes": sum(int(p.get("likes") or 0) for p in projects),
            "total_views": sum(int(p.get("views") or 0) for p in projects),
        }


def _atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON through a unique temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=path.name + ".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            with suppress(OSError):
                os.remove(tmp_name)


class LocalJsonStore(ProjectStore):
    """Documents in a local directory; one lock serializes every write."""

    backend = "local"

    def __init__(self, data_dir: Path, show_demo: bool = True) -> None:
        super().__init__(show_demo=show_demo)
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def path_for(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _load(self, collection: str) -> List[Dict[str, Any]]:
        path = self.path_for(collection)
        if not path.exists():
            return []
        try:
            loaded = json.loads(path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid JSON in {path}: {exc}") from exc
        if not isinstance(loaded, list):
            raise StoreError(f"{path} does not hold a JSON array")
        return loaded

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return self._load(collection)

    def _update(self, collection: str, mutate: Callable[[List[Dict[str, Any]]], Any], message: str) -> Any:
        with self._lock:
            document = self._load(collection)
            result = mutate(document)
            _atomic_write_json(self.path_for(collection), document)
            logger.debug("%s: %s", self.path_for(collection).name, message)
            return result


class GitHubJsonStore(ProjectStore):
    """Documents as files in a Git repository, edited via the contents API."""

    backend = "github"

    def __init__(self, client: GitHubContentsClient, data_path: str = "src/data", show_demo: bool = True) -> None:
        super().__init__(show_demo=show_demo)
        self.client = client
        self.data_path = data_path.strip("/")

    def path_for(self, collection: str) -> str:
        return f"{self.data_path}/{collection}.json" if self.data_path else f"{collection}.json"

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        document = self.client.read_json(self.path_for(collection), default=list)
        if not isinstance(document, list):
            raise StoreError(f"{self.path_for(collection)} does not hold a JSON array")
        return document

    def _update(self, collection: str, mutate: Callable[[List[Dict[str, Any]]], Any], message: str) -> Any:
        def guarded(document: Any) -> Any:
            if not isinstance(document, list):
                raise StoreError(f"{self.path_for(collection)} does not hold a JSON array")
            return mutate(document)

        return self.client.update_json(self.path_for(collection), guarded, message, default=list)
