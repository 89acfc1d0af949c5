# main.py
import os
import json
import random
import re
import secrets
import time
import uuid
import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import (
    FastAPI,
    File,
    Form,
    HTTPException,
    Request,
    Response,
    UploadFile,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette import status
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from gallery_store import (
    CATEGORIES,
    GitHubJsonStore,
    InvalidProjectError,
    LocalJsonStore,
    ProjectNotFoundError,
    ProjectStore,
    ReadOnlyProjectError,
    StoreError,
    _atomic_write_json,
)
from github_contents import GitHubAPIError, GitHubConflictError, GitHubContentsClient
from media_utils import (
    MSG_COVER_IMAGE_ONLY,
    get_media_type,
    guess_content_type,
    media_type_for_content_type,
    sniff_image,
    validate_upload,
)
from r2_storage import ObjectStorage, StorageError

# --- Configuration ---
BASE_DIR = Path(__file__).resolve().parent
# Static files are served from the URL path `/static`; the folder in the
# repository is named with a capital "S".
STATIC_DIR = BASE_DIR / "Static"
TEMPLATES_DIR = BASE_DIR / "templates"
CONFIG_PATH = BASE_DIR / "gallery_config.json"
DEFAULT_DATA_DIR = BASE_DIR / "data"

BACKEND_CHOICES = ["local", "github"]
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

HERO_PROJECT_COUNT = 12
VISITOR_COOKIE = "visitor_id"
VISITOR_COOKIE_MAX_AGE = 365 * 24 * 3600

# The object storage endpoints accept requests from any origin
OBJECT_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-filename",
}

STATIC_DIR.mkdir(parents=True, exist_ok=True)
TEMPLATES_DIR.mkdir(parents=True, exist_ok=True)


def _configure_logging() -> logging.Logger:
    """Configure console + rotating file logging with env-driven levels.

    Env vars:
    - APP_LOG_LEVEL: console log level (default INFO)
    - APP_FILE_LOG: enable file logging to logs/app.log (default 1/true)
    - APP_FILE_LOG_LEVEL: file log level (default INFO)
    """
    logger = logging.getLogger()
    if getattr(logger, "_app_logging_configured", False):
        return logging.getLogger(__name__)

    level_name = os.getenv("APP_LOG_LEVEL", "INFO").upper()
    file_level_name = os.getenv("APP_FILE_LOG_LEVEL", level_name).upper()
    level = getattr(logging, level_name, logging.INFO)
    file_level = getattr(logging, file_level_name, level)

    logger.setLevel(min(level, file_level))

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    file_log_enabled = os.getenv("APP_FILE_LOG", "1").lower() in {"1", "true", "yes"}
    if file_log_enabled:
        logs_dir = BASE_DIR / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        from logging.handlers import RotatingFileHandler

        fh = RotatingFileHandler(str(logs_dir / "app.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setLevel(file_level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    setattr(logger, "_app_logging_configured", True)
    return logging.getLogger(__name__)


logger = _configure_logging()

# --- FastAPI App Setup ---
app = FastAPI(title="Artwork-Galerie")

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _parse_bool_env(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "y", "on"}:
        return True
    if candidate in {"0", "false", "no", "n", "off"}:
        return False
    try:
        return bool(int(candidate))
    except ValueError:
        return default


app.add_middleware(
    SessionMiddleware,
    secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-me"),
    https_only=_parse_bool_env(os.getenv("SESSION_HTTPS_ONLY"), False),
    same_site="lax",
)


# --- Runtime config (logging, backend, demo projects) ---

def _default_config_from_env() -> Dict[str, Any]:
    lvl = os.getenv("APP_LOG_LEVEL", "INFO").upper()
    file_lvl = os.getenv("APP_FILE_LOG_LEVEL", lvl).upper()
    return {
        "log_level": lvl if lvl in LOG_LEVELS else "INFO",
        "file_log": _parse_bool_env(os.getenv("APP_FILE_LOG"), True),
        "file_log_level": file_lvl if file_lvl in LOG_LEVELS else "INFO",
        "backend": os.getenv("GALLERY_BACKEND", "local").strip().lower(),
        "show_demo_projects": _parse_bool_env(os.getenv("GALLERY_SHOW_DEMO_PROJECTS"), True),
    }


def _sanitize_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(_default_config_from_env())
    if out["backend"] not in BACKEND_CHOICES:
        out["backend"] = "local"
    if not isinstance(cfg, dict):
        return out
    lvl = str(cfg.get("log_level", out["log_level"])).upper()
    out["log_level"] = lvl if lvl in LOG_LEVELS else out["log_level"]
    out["file_log"] = bool(cfg.get("file_log", out["file_log"]))
    flvl = str(cfg.get("file_log_level", out["file_log_level"])).upper()
    out["file_log_level"] = flvl if flvl in LOG_LEVELS else out["file_log_level"]
    backend = str(cfg.get("backend", out["backend"])).strip().lower()
    out["backend"] = backend if backend in BACKEND_CHOICES else out["backend"]
    out["show_demo_projects"] = bool(cfg.get("show_demo_projects", out["show_demo_projects"]))
    return out


def _load_config() -> Dict[str, Any]:
    base = _default_config_from_env()
    if CONFIG_PATH.exists():
        with suppress(json.JSONDecodeError, OSError):
            persisted = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
            return _sanitize_config({**base, **(persisted or {})})
    return _sanitize_config(base)


def _save_config(cfg: Dict[str, Any]) -> None:
    _atomic_write_json(CONFIG_PATH, _sanitize_config(cfg))


def _get_config() -> Dict[str, Any]:
    cfg = getattr(app.state, "config", None)
    if not isinstance(cfg, dict):
        cfg = _load_config()
        app.state.config = cfg
    return cfg


def _apply_logging_config(cfg: Dict[str, Any]) -> None:
    root = logging.getLogger()
    stream = None
    fileh = None
    for h in root.handlers:
        if isinstance(h, logging.FileHandler):
            fileh = h
        elif isinstance(h, logging.StreamHandler):
            stream = h
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
    if stream is None:
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        root.addHandler(stream)
    level = getattr(logging, str(cfg.get("log_level", "INFO")).upper(), logging.INFO)
    file_level = getattr(logging, str(cfg.get("file_log_level", "INFO")).upper(), logging.INFO)
    stream.setLevel(level)
    root.setLevel(min(level, file_level))
    enable_file = bool(cfg.get("file_log", True))
    if enable_file and fileh is None:
        from logging.handlers import RotatingFileHandler

        logs_dir = BASE_DIR / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        fileh = RotatingFileHandler(str(logs_dir / "app.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
        fileh.setFormatter(fmt)
        root.addHandler(fileh)
    if fileh is not None:
        if enable_file:
            fileh.setLevel(file_level)
        else:
            root.removeHandler(fileh)
            fileh.close()


# --- Backends ---

def _build_store(cfg: Dict[str, Any]) -> ProjectStore:
    """Return the configured project store, falling back to local files."""
    show_demo = bool(cfg.get("show_demo_projects", True))
    if cfg.get("backend") == "github":
        client = GitHubContentsClient.from_env()
        if client.is_configured():
            data_path = os.getenv("GITHUB_DATA_PATH", "src/data")
            logger.info("Using GitHub store %s/%s:%s/%s", client.owner, client.repo, client.branch, data_path)
            return GitHubJsonStore(client, data_path=data_path, show_demo=show_demo)
        logger.error(
            "GitHub backend selected but missing configuration (%s); using local files",
            ", ".join(client.missing_settings()),
        )
    data_dir = Path(os.getenv("GALLERY_DATA_DIR", str(DEFAULT_DATA_DIR)))
    logger.info("Using local store in %s", data_dir)
    return LocalJsonStore(data_dir, show_demo=show_demo)


def _get_store() -> ProjectStore:
    store = getattr(app.state, "store", None)
    if store is None:
        store = _build_store(_get_config())
        app.state.store = store
    return store


def _get_object_storage() -> ObjectStorage:
    storage = getattr(app.state, "object_storage", None)
    if storage is None:
        storage = ObjectStorage.from_env()
        app.state.object_storage = storage
    return storage


def _close_store(store: Optional[ProjectStore]) -> None:
    if isinstance(store, GitHubJsonStore):
        store.client.close()


@app.on_event("startup")
async def startup_event() -> None:
    app.state.config = _load_config()
    _apply_logging_config(app.state.config)
    _get_store()
    _get_object_storage()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    _close_store(getattr(app.state, "store", None))


# --- Error translation ---

@app.exception_handler(ProjectNotFoundError)
async def project_not_found_handler(request: Request, exc: ProjectNotFoundError) -> JSONResponse:
    logger.info("Project not found: %s", exc)
    return JSONResponse({"detail": "Projekt nicht gefunden"}, status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(InvalidProjectError)
async def invalid_project_handler(request: Request, exc: InvalidProjectError) -> JSONResponse:
    logger.info("Rejected request on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(ReadOnlyProjectError)
async def read_only_project_handler(request: Request, exc: ReadOnlyProjectError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_409_CONFLICT)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(GitHubConflictError)
async def github_conflict_handler(request: Request, exc: GitHubConflictError) -> JSONResponse:
    logger.error("GitHub write conflict on %s: %s", request.url.path, exc)
    return JSONResponse(
        {"detail": "Die Daten wurden gleichzeitig geändert. Bitte erneut versuchen."},
        status_code=status.HTTP_409_CONFLICT,
    )


@app.exception_handler(GitHubAPIError)
async def github_error_handler(request: Request, exc: GitHubAPIError) -> JSONResponse:
    logger.error("GitHub API failure on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_502_BAD_GATEWAY)


# --- Helpers ---

def _visitor_id(request: Request) -> Tuple[str, bool]:
    """Return (visitor id, is_new) taken from the visitor cookie."""
    existing = request.cookies.get(VISITOR_COOKIE, "")
    if re.fullmatch(r"[0-9a-f]{32}", existing):
        return existing, False
    return uuid.uuid4().hex, True


def _remember_visitor(response: Response, visitor_id: str, is_new: bool) -> None:
    if is_new:
        response.set_cookie(
            VISITOR_COOKIE,
            visitor_id,
            max_age=VISITOR_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )


def _is_admin(request: Request) -> bool:
    return bool(request.session.get("admin"))


def _require_admin(request: Request) -> None:
    if not _is_admin(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Nicht angemeldet")


def _check_admin_password(password: str) -> bool:
    expected = os.getenv("ADMIN_PASSWORD", "")
    if not expected:
        logger.warning("ADMIN_PASSWORD is not set; refusing admin login")
        return False
    return secrets.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))


def _with_media_type(project: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(project)
    item["media_type"] = get_media_type(item.get("cover_image_url") or "")
    return item


def _read_upload(upload: UploadFile) -> bytes:
    try:
        return upload.file.read()
    finally:
        upload.file.close()


def _store_uploads(
    storage: ObjectStorage,
    cover: Optional[UploadFile],
    media: List[UploadFile],
) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Validate every file first, then push them to object storage.

    Returns (cover url, media entries). Nothing is uploaded when any file
    fails validation.
    """
    pending: List[Tuple[bytes, UploadFile, bool]] = []
    if cover is not None and cover.filename:
        data = _read_upload(cover)
        error = validate_upload(cover.filename, cover.content_type or "", len(data), is_cover=True)
        if error is None and sniff_image(data) is None:
            error = MSG_COVER_IMAGE_ONLY
        if error:
            raise InvalidProjectError(f"{cover.filename}: {error}")
        pending.append((data, cover, True))
    for upload in media:
        if not upload.filename:
            continue
        data = _read_upload(upload)
        error = validate_upload(upload.filename, upload.content_type or "", len(data))
        if error:
            raise InvalidProjectError(f"{upload.filename}: {error}")
        pending.append((data, upload, False))

    cover_url: Optional[str] = None
    media_entries: List[Dict[str, str]] = []
    uploaded: List[str] = []
    try:
        for data, upload, is_cover in pending:
            content_type = upload.content_type or guess_content_type(upload.filename)
            result = storage.upload(data, upload.filename, content_type)
            uploaded.append(result["url"])
            if is_cover:
                cover_url = result["url"]
            else:
                media_entries.append({"url": result["url"], "type": media_type_for_content_type(content_type)})
    except StorageError:
        storage.delete_many(uploaded)
        raise
    return cover_url, media_entries


def _dashboard_data(store: ProjectStore) -> Dict[str, Any]:
    return {
        "projects": [_with_media_type(p) for p in store.list_projects("all") if p.get("user_id") != "demo"],
        "stats": store.stats(),
    }


# --- Object storage endpoints ---

@app.get("/health", response_class=JSONResponse)
async def health() -> Dict[str, bool]:
    return {"ok": True}


@app.options("/api/upload")
@app.options("/api/delete")
async def object_storage_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=OBJECT_CORS_HEADERS)


@app.post("/api/upload", response_class=JSONResponse)
async def api_upload(request: Request) -> JSONResponse:
    """Store the raw request body as an object; filename from `x-filename`."""
    body = await request.body()
    if not body:
        return JSONResponse(
            {"error": "No file body received"},
            status_code=status.HTTP_400_BAD_REQUEST,
            headers=OBJECT_CORS_HEADERS,
        )
    filename = request.headers.get("x-filename") or f"upload-{int(time.time() * 1000)}"
    content_type = request.headers.get("content-type") or "application/octet-stream"
    try:
        result = await run_in_threadpool(_get_object_storage().upload, body, filename, content_type)
    except StorageError as exc:
        logger.error("api/upload error: %s", exc)
        return JSONResponse(
            {"error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=OBJECT_CORS_HEADERS,
        )
    return JSONResponse(result, headers=OBJECT_CORS_HEADERS)


@app.post("/api/delete", response_class=JSONResponse)
async def api_delete(request: Request) -> JSONResponse:
    """Delete an object named by `key`, or by its public `url`."""
    storage = _get_object_storage()
    raw = (await request.body()).decode("utf-8", errors="replace") or "{}"
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("api/delete error: %s", exc)
        return JSONResponse(
            {"error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=OBJECT_CORS_HEADERS,
        )
    if not isinstance(payload, dict):
        payload = {}
    key = payload.get("key")
    url = payload.get("url")
    if not key and url:
        key = storage.key_from_url(str(url))
    if not key:
        return JSONResponse(
            {"error": "No key or url provided"},
            status_code=status.HTTP_400_BAD_REQUEST,
            headers=OBJECT_CORS_HEADERS,
        )
    try:
        await run_in_threadpool(storage.delete, str(key))
    except StorageError as exc:
        logger.error("api/delete error: %s", exc)
        return JSONResponse(
            {"error": str(exc)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=OBJECT_CORS_HEADERS,
        )
    return JSONResponse({"deleted": True}, headers=OBJECT_CORS_HEADERS)


# --- Gallery JSON API ---

@app.get("/api/projects", response_class=JSONResponse)
def api_list_projects(category: str = "all") -> Dict[str, Any]:
    projects = _get_store().list_projects(category)
    return {"projects": [_with_media_type(p) for p in projects]}


@app.get("/api/projects/{project_id}", response_class=JSONResponse)
def api_get_project(project_id: str) -> Dict[str, Any]:
    project = _get_store().get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return _with_media_type(project)


@app.post("/api/projects/{project_id}/view", response_class=JSONResponse)
def api_count_view(project_id: str) -> Dict[str, int]:
    return {"views": _get_store().increment_views(project_id)}


@app.post("/api/projects/{project_id}/like", response_class=JSONResponse)
def api_toggle_like(project_id: str, request: Request, response: Response) -> Dict[str, Any]:
    visitor_id, is_new = _visitor_id(request)
    liked, likes = _get_store().toggle_like(project_id, visitor_id)
    _remember_visitor(response, visitor_id, is_new)
    return {"liked": liked, "likes": likes}


@app.get("/api/projects/{project_id}/like", response_class=JSONResponse)
def api_like_state(project_id: str, request: Request) -> Dict[str, Any]:
    store = _get_store()
    project = store.get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    visitor_id, is_new = _visitor_id(request)
    liked = False if is_new else store.has_liked(project_id, visitor_id)
    return {"liked": liked, "likes": int(project.get("likes") or 0)}


@app.get("/api/projects/{project_id}/comments", response_class=JSONResponse)
def api_list_comments(project_id: str) -> Dict[str, Any]:
    return {"comments": _get_store().list_comments(project_id)}


@app.post("/api/projects/{project_id}/comments", response_class=JSONResponse, status_code=status.HTTP_201_CREATED)
async def api_add_comment(project_id: str, request: Request, response: Response) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    visitor_id, is_new = _visitor_id(request)
    comment = await run_in_threadpool(
        _get_store().add_comment,
        project_id,
        visitor_id,
        str(body.get("display_name") or ""),
        str(body.get("text") or ""),
        str(body.get("avatar_url") or ""),
    )
    _remember_visitor(response, visitor_id, is_new)
    return comment


@app.get("/api/hero", response_class=JSONResponse)
def api_hero_projects() -> Dict[str, Any]:
    """Random selection of projects for the landing page background."""
    pool = _get_store().list_projects("all")
    picked = random.sample(pool, min(HERO_PROJECT_COUNT, len(pool)))
    return {"projects": [_with_media_type(p) for p in picked]}


# --- Media proxy ---

@app.get("/media/github/{path:path}")
def github_media(path: str) -> Response:
    """Serve a file from the (possibly private) gallery repository."""
    store = _get_store()
    if isinstance(store, GitHubJsonStore):
        data = store.client.fetch_raw(path)
    else:
        client = GitHubContentsClient.from_env()
        try:
            if not client.is_configured():
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Datei nicht gefunden")
            data = client.fetch_raw(path)
        finally:
            client.close()
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Datei nicht gefunden")
    return Response(content=data, media_type=guess_content_type(path))


# --- Admin ---

@app.get("/admin", response_class=HTMLResponse)
async def admin_login_page(request: Request) -> HTMLResponse:
    if _is_admin(request):
        return RedirectResponse(url="/admin/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse("admin_login.html", {"request": request, "error": ""})


@app.post("/admin/login")
async def admin_login(request: Request, password: str = Form("")) -> Response:
    if _check_admin_password(password):
        request.session["admin"] = True
        logger.info("Admin signed in")
        return RedirectResponse(url="/admin/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    logger.warning("Failed admin login attempt")
    return templates.TemplateResponse(
        "admin_login.html",
        {"request": request, "error": "Falsches Passwort"},
        status_code=status.HTTP_401_UNAUTHORIZED,
    )


@app.post("/admin/logout")
async def admin_logout(request: Request) -> RedirectResponse:
    request.session.clear()
    return RedirectResponse(url="/admin", status_code=status.HTTP_303_SEE_OTHER)


@app.get("/admin/dashboard", response_class=HTMLResponse)
def admin_dashboard(request: Request) -> HTMLResponse:
    """Render stats and the project list for the operator."""
    if not _is_admin(request):
        return RedirectResponse(url="/admin", status_code=status.HTTP_303_SEE_OTHER)
    data = _dashboard_data(_get_store())
    return templates.TemplateResponse(
        "admin_dashboard.html",
        {
            "request": request,
            "projects": data["projects"],
            "stats": data["stats"],
            "categories": CATEGORIES,
            "backend": _get_store().backend,
        },
    )


@app.get("/admin/api/projects", response_class=JSONResponse)
def admin_api_projects(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    return _dashboard_data(_get_store())


@app.post("/admin/projects", response_class=JSONResponse, status_code=status.HTTP_201_CREATED)
def admin_create_project(
    request: Request,
    title: str = Form(...),
    category: str = Form(...),
    description: str = Form(""),
    downloadable: bool = Form(True),
    cover: UploadFile = File(...),
    media: Optional[List[UploadFile]] = File(None),
) -> Dict[str, Any]:
    _require_admin(request)
    store = _get_store()
    storage = _get_object_storage()
    if not title.strip() or category not in CATEGORIES or not cover.filename:
        raise InvalidProjectError("Bitte füllen Sie alle Pflichtfelder aus")
    try:
        cover_url, media_entries = _store_uploads(storage, cover, media or [])
    except StorageError as exc:
        logger.error("Upload failed while creating project %r: %s", title, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    try:
        project = store.create_project(
            {
                "title": title,
                "description": description,
                "category": category,
                "cover_image_url": cover_url or "",
                "media": media_entries,
                "downloadable": downloadable,
            },
            user_id="admin",
        )
    except (StoreError, GitHubAPIError):
        logger.error("Project %r could not be saved; removing its uploads", title)
        storage.delete_many([cover_url or ""] + [m["url"] for m in media_entries])
        raise
    return _with_media_type(project)


@app.post("/admin/projects/{project_id}", response_class=JSONResponse)
def admin_update_project(
    project_id: str,
    request: Request,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    downloadable: Optional[bool] = Form(None),
    cover: Optional[UploadFile] = File(None),
    media: Optional[List[UploadFile]] = File(None),
) -> Dict[str, Any]:
    _require_admin(request)
    store = _get_store()
    storage = _get_object_storage()
    existing = store.get_project(project_id)
    if existing is None:
        raise ProjectNotFoundError(project_id)
    changes: Dict[str, Any] = {}
    if title is not None:
        changes["title"] = title
    if description is not None:
        changes["description"] = description
    if category is not None:
        changes["category"] = category
    if downloadable is not None:
        changes["downloadable"] = downloadable
    try:
        cover_url, media_entries = _store_uploads(storage, cover, media or [])
    except StorageError as exc:
        logger.error("Upload failed while editing %s: %s", project_id, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    if cover_url:
        changes["cover_image_url"] = cover_url
    if media_entries:
        changes["media"] = list(existing.get("media") or []) + media_entries
    try:
        project = store.update_project(project_id, changes)
    except (StoreError, GitHubAPIError):
        storage.delete_many([cover_url or ""] + [m["url"] for m in media_entries])
        raise
    old_cover = existing.get("cover_image_url") or ""
    if cover_url and old_cover and old_cover != cover_url:
        storage.delete_many([old_cover])
    return _with_media_type(project)


@app.delete("/admin/projects/{project_id}/media", response_class=JSONResponse)
async def admin_remove_media(project_id: str, request: Request) -> Dict[str, Any]:
    _require_admin(request)
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    url = str(body.get("url") or "")
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No key or url provided")
    store = _get_store()
    project = await run_in_threadpool(store.get_project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    storage = _get_object_storage()
    if storage.owns_url(url):
        try:
            await run_in_threadpool(storage.delete, None, url)
        except StorageError as exc:
            logger.error("Failed to remove media %s of %s: %s", url, project_id, exc)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    remaining = [m for m in project.get("media") or [] if m.get("url") != url]
    updated = await run_in_threadpool(store.update_project, project_id, {"media": remaining})
    return _with_media_type(updated)


@app.delete("/admin/projects/{project_id}", response_class=JSONResponse)
def admin_delete_project(project_id: str, request: Request) -> Dict[str, Any]:
    _require_admin(request)
    store = _get_store()
    removed = store.delete_project(project_id)
    media_deleted = _get_object_storage().delete_many(ProjectStore.media_urls(removed))
    return {"deleted": True, "media_deleted": media_deleted}


@app.delete("/admin/comments/{comment_id}", response_class=JSONResponse)
def admin_delete_comment(comment_id: str, request: Request) -> Dict[str, Any]:
    _require_admin(request)
    if not _get_store().delete_comment(comment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Kommentar nicht gefunden")
    return {"deleted": True}


@app.get("/admin/config", response_class=JSONResponse)
async def get_admin_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    return {"config": _get_config(), "backends": BACKEND_CHOICES}


def _replace_config(cfg: Dict[str, Any]) -> None:
    previous = _get_config()
    app.state.config = cfg
    _save_config(cfg)
    _apply_logging_config(cfg)
    if (previous.get("backend"), previous.get("show_demo_projects")) != (cfg["backend"], cfg["show_demo_projects"]):
        _close_store(getattr(app.state, "store", None))
        app.state.store = _build_store(cfg)


@app.post("/admin/config", response_class=JSONResponse)
async def update_admin_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object")
    cfg = _sanitize_config({**_get_config(), **data})
    _replace_config(cfg)
    return {"config": cfg, "message": "Einstellungen gespeichert"}


@app.post("/admin/config/reset", response_class=JSONResponse)
async def reset_admin_config(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    cfg = _sanitize_config(_default_config_from_env())
    _replace_config(cfg)
    return {"config": cfg, "message": "Einstellungen zurückgesetzt"}


@app.get("/admin/github/status", response_class=JSONResponse)
def github_status(request: Request) -> Dict[str, Any]:
    _require_admin(request)
    store = _get_store()
    if isinstance(store, GitHubJsonStore):
        return store.client.status(store.path_for("projects"))
    client = GitHubContentsClient.from_env()
    try:
        return client.status(f"{os.getenv('GITHUB_DATA_PATH', 'src/data').strip('/')}/projects.json")
    finally:
        client.close()


# --- Pages ---

@app.get("/project/{project_id}", response_class=HTMLResponse)
def project_detail(request: Request, project_id: str) -> HTMLResponse:
    """Detail page; every visit of a stored project counts one view."""
    store = _get_store()
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Projekt nicht gefunden")
    if project.get("user_id") != "demo":
        try:
            project["views"] = store.increment_views(project_id)
        except (StoreError, GitHubAPIError) as exc:
            logger.error("Failed to count view for %s: %s", project_id, exc)
    return templates.TemplateResponse(
        "project_detail.html",
        {
            "request": request,
            "project": _with_media_type(project),
            "media": [dict(m, type=m.get("type") or get_media_type(m.get("url", ""))) for m in project.get("media") or []],
            "comments": store.list_comments(project_id),
            "category_label": CATEGORIES.get(project.get("category", ""), project.get("category", "")),
            "is_admin": _is_admin(request),
        },
    )


@app.get("/", response_class=HTMLResponse)
def read_root(request: Request, category: str = "all") -> HTMLResponse:
    """Gallery grid with the category filter."""
    logger.info("Request received for root path ('/')")
    if category != "all" and category not in CATEGORIES:
        category = "all"
    projects = _get_store().list_projects(category)
    context = {
        "request": request,
        "projects": [_with_media_type(p) for p in projects],
        "categories": CATEGORIES,
        "selected_category": category,
        "gallery_title": "Entdecke kreative Meisterwerke",
    }
    return templates.TemplateResponse("index.html", context)


# --- Running the App ---
# Development:  uvicorn main:app --reload
# Production:   gunicorn main:app --config gunicorn.conf.py
