"""Cloudflare R2 (S3 compatible) object storage for uploaded media.

Configured from the environment:

- CLOUDFLARE_ACCOUNT_ID / CLOUDFLARE_ACCESS_KEY_ID / CLOUDFLARE_SECRET_ACCESS_KEY
- CLOUDFLARE_BUCKET_NAME: target bucket
- CLOUDFLARE_PUBLIC_DOMAIN: public base URL objects are served from
- CLOUDFLARE_REGION: defaults to "auto"
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import time
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object storage call cannot be completed."""


class StorageConfigError(StorageError):
    """Raised when bucket or public domain are not configured."""


def build_key(filename: Optional[str]) -> str:
    """Return `<epoch ms>-<12 hex>-<basename>` with whitespace replaced by '_'."""
    base_name = re.sub(r"\s+", "_", (filename or "").strip()) or "upload"
    base_name = base_name.rsplit("/", 1)[-1] or "upload"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}-{base_name}"


def _make_client(account_id: str, access_key: str, secret_key: str, region: str) -> Any:
    endpoint = f"https://{account_id}.r2.cloudflarestorage.com" if account_id else None
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=access_key or "",
        aws_secret_access_key=secret_key or "",
        config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
        region_name=region or "auto",
    )


class ObjectStorage:
    def __init__(self, bucket: str, public_domain: str, client: Any) -> None:
        self.bucket = bucket or ""
        self.public_domain = public_domain or ""
        self.client = client
        if not self.bucket or not self.public_domain:
            logger.warning("Missing CLOUDFLARE_BUCKET_NAME or CLOUDFLARE_PUBLIC_DOMAIN")

    @classmethod
    def from_env(cls) -> "ObjectStorage":
        account_id = os.getenv("CLOUDFLARE_ACCOUNT_ID", "")
        access_key = os.getenv("CLOUDFLARE_ACCESS_KEY_ID", "")
        secret_key = os.getenv("CLOUDFLARE_SECRET_ACCESS_KEY", "")
        if not (account_id and access_key and secret_key):
            logger.warning("Missing Cloudflare R2 env vars (CLOUDFLARE_*); uploads will fail")
        client = _make_client(account_id, access_key, secret_key, os.getenv("CLOUDFLARE_REGION", "auto"))
        return cls(
            bucket=os.getenv("CLOUDFLARE_BUCKET_NAME", ""),
            public_domain=os.getenv("CLOUDFLARE_PUBLIC_DOMAIN", ""),
            client=client,
        )

    @property
    def configured(self) -> bool:
        return bool(self.bucket and self.public_domain)

    def public_url(self, key: str) -> str:
        return f"{self.public_domain.rstrip('/')}/{key}"

    def upload(self, body: bytes, filename: Optional[str], content_type: Optional[str]) -> Dict[str, str]:
        if not self.configured:
            raise StorageConfigError("R2 configuration missing")
        key = build_key(filename)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        url = self.public_url(key)
        logger.info("Uploaded %s (%d bytes)", url, len(body))
        return {"url": url, "key": key}

    def _url_prefix(self) -> str:
        return self.public_domain.rstrip("/") + "/" if self.public_domain else ""

    def key_from_url(self, url: str) -> str:
        """Map a public object URL back to its key."""
        prefix = self._url_prefix()
        if prefix and url.startswith(prefix):
            return url[len(prefix):]
        return url.split("/")[-1]

    def delete(self, key: Optional[str] = None, url: Optional[str] = None) -> str:
        if not key and url:
            key = self.key_from_url(url)
        if not key:
            raise StorageError("No key or url provided")
        if not self.bucket:
            raise StorageConfigError("R2 configuration missing")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        logger.info("Deleted object %s", key)
        return key

    def owns_url(self, url: str) -> bool:
        prefix = self._url_prefix()
        return bool(prefix) and (url or "").startswith(prefix)

    def delete_many(self, urls: Iterable[str]) -> List[str]:
        """Best-effort delete of our own objects; foreign URLs are skipped."""
        deleted: List[str] = []
        for url in urls:
            if not url or not self.owns_url(url):
                continue
            try:
                deleted.append(self.delete(url=url))
            except StorageError as exc:
                logger.error("Failed to delete media %s: %s", url, exc)
        return deleted
