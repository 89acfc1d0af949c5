"""
Gunicorn configuration for the Artwork-Galerie

Run:
  gunicorn main:app --config gunicorn.conf.py

Every setting can be overridden through the environment variable named next
to it; unset the variable to get the default shown here.

Notes:
- The local JSON backend keeps its write lock inside one process, so it runs
  with a single worker. Use more workers only with GALLERY_BACKEND=github,
  where concurrent commits are detected through blob shas.
- Uploads go through the app to R2 and admin edits commit to GitHub, so the
  worker timeout is generous.
"""

import os
from pathlib import Path


LOG_DIR = Path(os.getenv("GUNICORN_LOGDIR", "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

_BACKEND = os.getenv("GALLERY_BACKEND", "local").strip().lower()

# --- Server ---
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
worker_class = os.getenv("GUNICORN_WORKER_CLASS", "uvicorn.workers.UvicornWorker")
# WEB_CONCURRENCY; 1 for the local backend, 4 for the GitHub backend
workers = int(os.getenv("WEB_CONCURRENCY", "4" if _BACKEND == "github" else "1"))

# --- Timeouts ---
# GUNICORN_TIMEOUT covers a 50MB upload plus the R2 put and a GitHub commit
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))

# --- Logging ---
# Access and error logs sit next to the app's own logs/app.log
errorlog = os.getenv("GUNICORN_ERRORLOG", str(LOG_DIR / "gunicorn_error.log"))
accesslog = os.getenv("GUNICORN_ACCESSLOG", str(LOG_DIR / "gunicorn_access.log"))
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")


# --- Hooks ---
def when_ready(server):
    server.log.info("Artwork-Galerie ready: backend=%s workers=%s", _BACKEND, workers)
    if _BACKEND != "github" and workers > 1:
        server.log.warning("Local JSON backend with %s workers; concurrent writes may be lost", workers)
