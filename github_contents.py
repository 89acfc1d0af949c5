"""GitHub contents API client used as a JSON document store.

Writes follow a plain read-modify-write cycle: fetch the file together with
its blob sha, change the decoded JSON in memory and PUT it back naming that
sha. GitHub rejects the PUT when somebody else committed in between; that
case re-runs the whole cycle a bounded number of times.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import httpx

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_CONFLICT_RETRIES = 1


class GitHubAPIError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"GitHub API Error: {status_code} {message}".strip())
        self.status_code = status_code
        self.message = message


class GitHubConflictError(GitHubAPIError):
    """The file changed between our read and our write."""


@dataclass
class GitHubFile:
    content: str
    sha: str


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", ""))
    except (ValueError, AttributeError):
        return response.text[:300]


class GitHubContentsClient:
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        branch: str = "main",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.owner = owner or ""
        self.repo = repo or ""
        self.token = token or ""
        self.branch = branch or "main"
        self.conflict_retries = max(0, int(conflict_retries))
        self._http = httpx.Client(
            base_url=GITHUB_API_URL,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github.v3+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "artwork-galerie",
            },
        )

    @classmethod
    def from_env(cls, transport: Optional[httpx.BaseTransport] = None) -> "GitHubContentsClient":
        try:
            timeout = float(os.getenv("GITHUB_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
        except ValueError:
            timeout = DEFAULT_TIMEOUT_SECONDS
        try:
            retries = int(os.getenv("GITHUB_CONFLICT_RETRIES", str(DEFAULT_CONFLICT_RETRIES)))
        except ValueError:
            retries = DEFAULT_CONFLICT_RETRIES
        return cls(
            owner=os.getenv("GITHUB_REPO_OWNER", ""),
            repo=os.getenv("GITHUB_REPO_NAME", ""),
            token=os.getenv("GITHUB_TOKEN", ""),
            branch=os.getenv("GITHUB_BRANCH", "main"),
            timeout=timeout,
            conflict_retries=retries,
            transport=transport,
        )

    def missing_settings(self) -> list:
        missing = []
        if not self.owner:
            missing.append("GITHUB_REPO_OWNER")
        if not self.repo:
            missing.append("GITHUB_REPO_NAME")
        if not self.token:
            missing.append("GITHUB_TOKEN")
        return missing

    def is_configured(self) -> bool:
        return not self.missing_settings()

    def close(self) -> None:
        self._http.close()

    def _contents_url(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/contents/{path.lstrip('/')}"

    def _get(self, path: str, accept: Optional[str] = None) -> Optional[httpx.Response]:
        headers = {"Accept": accept} if accept else None
        try:
            response = self._http.get(
                self._contents_url(path), params={"ref": self.branch}, headers=headers
            )
        except httpx.HTTPError as exc:
            raise GitHubAPIError(0, str(exc)) from exc
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise GitHubAPIError(response.status_code, _error_message(response))
        return response

    def fetch_file(self, path: str) -> Optional[GitHubFile]:
        response = self._get(path)
        if response is None:
            return None
        data = response.json()
        raw = base64.b64decode(data.get("content", "") or "")
        return GitHubFile(content=raw.decode("utf-8"), sha=data.get("sha", ""))

    def fetch_raw(self, path: str) -> Optional[bytes]:
        """Return the file bytes; works for binaries above the 1MB JSON limit."""
        response = self._get(path, accept="application/vnd.github.raw")
        return None if response is None else response.content

    def upload_file(
        self,
        path: str,
        content: Union[str, bytes],
        message: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        if sha is None:
            existing = self.fetch_file(path)
            if existing is not None:
                sha = existing.sha
        raw = content.encode("utf-8") if isinstance(content, str) else content
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(raw).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        try:
            response = self._http.put(self._contents_url(path), json=body)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(0, str(exc)) from exc
        if response.status_code in (409, 422):
            raise GitHubConflictError(response.status_code, _error_message(response))
        if not response.is_success:
            raise GitHubAPIError(response.status_code, _error_message(response))
        return response.json()

    def delete_file(self, path: str, message: str) -> Optional[Dict[str, Any]]:
        existing = self.fetch_file(path)
        if existing is None:
            return None
        body = {"message": message, "sha": existing.sha, "branch": self.branch}
        try:
            response = self._http.request("DELETE", self._contents_url(path), json=body)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(0, str(exc)) from exc
        if not response.is_success:
            raise GitHubAPIError(response.status_code, _error_message(response))
        return response.json()

    def read_json(self, path: str, default: Callable[[], Any] = list) -> Any:
        current = self.fetch_file(path)
        if current is None:
            return default()
        return json.loads(current.content) if current.content.strip() else default()

    def update_json(
        self,
        path: str,
        mutate: Callable[[Any], Any],
        message: str,
        default: Callable[[], Any] = list,
    ) -> Any:
        """Fetch `path`, apply `mutate` to the parsed document, PUT it back.

        `mutate` edits the document in place and returns the caller's result.
        It may run more than once when a concurrent commit forces a retry.
        """
        attempts = self.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            current = self.fetch_file(path)
            if current is None:
                document, sha = default(), ""
            else:
                document = json.loads(current.content) if current.content.strip() else default()
                sha = current.sha
            result = mutate(document)
            text = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
            try:
                self.upload_file(path, text, message, sha=sha)
            except GitHubConflictError as exc:
                if attempt >= attempts:
                    logger.error("Giving up on %s after %d conflicting writes", path, attempt)
                    raise
                logger.warning("Concurrent update on %s (%s); retrying", path, exc.message)
                continue
            logger.info("Committed %s: %s", path, message)
            return result
        raise GitHubConflictError(409, f"Could not update {path}")

    def status(self, path: str) -> Dict[str, Any]:
        """Connectivity summary for the admin page."""
        summary: Dict[str, Any] = {
            "repo": f"{self.owner}/{self.repo}" if self.owner and self.repo else "",
            "branch": self.branch,
            "path": path,
            "token_present": bool(self.token),
            "status": "not configured",
            "message": "",
        }
        if not self.is_configured():
            summary["message"] = "missing " + ", ".join(self.missing_settings())
            return summary
        try:
            found = self.fetch_file(path)
        except GitHubAPIError as exc:
            summary["status"] = "error"
            summary["message"] = str(exc)[:200]
            return summary
        summary["status"] = "ok"
        summary["message"] = "file reachable" if found else "file will be created on first commit"
        return summary
