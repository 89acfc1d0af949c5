import base64
import json
from io import BytesIO
from typing import Any, Dict, List, Tuple

import httpx
import pytest
from PIL import Image

from gallery_store import LocalJsonStore
from r2_storage import ObjectStorage

PUBLIC_DOMAIN = "https://cdn.example.com"


class RecordingS3:
    """Minimal S3 client double that remembers put/delete calls."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    def put_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.objects[kwargs["Key"]] = kwargs["Body"]
        return {"ETag": '"etag"'}

    def delete_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.deleted.append(kwargs["Key"])
        self.objects.pop(kwargs["Key"], None)
        return {}


class FakeGitHubRepo:
    """In-memory contents API; each PUT must name the current blob sha."""

    def __init__(self) -> None:
        self.files: Dict[str, Tuple[bytes, str]] = {}
        self.requests: List[httpx.Request] = []
        self._version = 0

    def _next_sha(self) -> str:
        self._version += 1
        return f"sha{self._version}"

    def seed(self, path: str, document: Any) -> None:
        self.files[path] = (json.dumps(document).encode("utf-8"), self._next_sha())

    def document(self, path: str) -> Any:
        return json.loads(self.files[path][0])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prefix = "/repos/owner/repo/contents/"
        path = request.url.path[len(prefix):]
        current = self.files.get(path)
        if request.method == "GET":
            if current is None:
                return httpx.Response(404, json={"message": "Not Found"})
            if request.headers.get("accept") == "application/vnd.github.raw":
                return httpx.Response(200, content=current[0])
            encoded = base64.b64encode(current[0]).decode("ascii")
            return httpx.Response(200, json={"content": encoded, "sha": current[1]})
        body = json.loads(request.content)
        if request.method == "PUT":
            expected = current[1] if current else None
            if body.get("sha") != expected:
                return httpx.Response(409, json={"message": "sha does not match"})
            sha = self._next_sha()
            self.files[path] = (base64.b64decode(body["content"]), sha)
            return httpx.Response(201 if current is None else 200, json={"content": {"path": path, "sha": sha}})
        if request.method == "DELETE":
            self.files.pop(path, None)
            return httpx.Response(200, json={"commit": {}})
        return httpx.Response(405)


def png_bytes(size: Tuple[int, int] = (4, 4)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def store(tmp_path):
    return LocalJsonStore(tmp_path / "data", show_demo=True)


@pytest.fixture
def s3():
    return RecordingS3()


@pytest.fixture
def storage(s3):
    return ObjectStorage(bucket="art", public_domain=PUBLIC_DOMAIN, client=s3)


@pytest.fixture
def fake_repo():
    return FakeGitHubRepo()
