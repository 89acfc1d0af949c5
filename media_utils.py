"""Media type detection and upload validation for gallery assets."""

import logging
from io import BytesIO
from pathlib import PurePosixPath
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".webm", ".ogg", ".mov", ".avi", ".mkv")

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
ALLOWED_VIDEO_TYPES = {
    "video/mp4",
    "video/webm",
    "video/ogg",
    "video/quicktime",
    "video/x-msvideo",
}

CONTENT_TYPES_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogg": "video/ogg",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".json": "application/json",
}

MSG_TOO_LARGE = f"Datei ist zu groß. Maximum: {MAX_FILE_SIZE // (1024 * 1024)}MB"
MSG_COVER_IMAGE_ONLY = "Nur Bilddateien (JPEG, PNG, GIF, WebP) sind als Cover erlaubt"
MSG_BAD_VIDEO = "Nur MP4, WebM, OGG, MOV und AVI Videos sind erlaubt"
MSG_BAD_IMAGE = "Nur JPEG, PNG, GIF und WebP Bilder sind erlaubt"
MSG_NOT_MEDIA = "Nur Bild- und Videodateien sind erlaubt"


def is_video_file(url: str) -> bool:
    lower_url = (url or "").lower()
    return any(ext in lower_url for ext in VIDEO_EXTENSIONS)


def get_media_type(url: str) -> str:
    return "video" if is_video_file(url) else "image"


def media_type_for_content_type(content_type: str) -> str:
    """Tag stored next to an uploaded media URL."""
    return "video" if (content_type or "").startswith("video") else "image"


def guess_content_type(filename: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lower()
    return CONTENT_TYPES_BY_EXTENSION.get(suffix, "application/octet-stream")


def validate_upload(
    filename: str,
    content_type: str,
    size: int,
    is_cover: bool = False,
) -> Optional[str]:
    """Return a user-facing error message, or None when the file is acceptable.

    The MIME type sent by the browser wins; the extension is only consulted
    when the browser sent nothing useful.
    """
    if size > MAX_FILE_SIZE:
        return MSG_TOO_LARGE
    file_type = (content_type or "").lower()
    if not file_type or file_type == "application/octet-stream":
        file_type = guess_content_type(filename)
    if is_cover:
        if file_type not in ALLOWED_IMAGE_TYPES:
            return MSG_COVER_IMAGE_ONLY
        return None
    is_video = file_type.startswith("video")
    is_image = file_type.startswith("image")
    if is_video and file_type not in ALLOWED_VIDEO_TYPES:
        return MSG_BAD_VIDEO
    if is_image and file_type not in ALLOWED_IMAGE_TYPES:
        return MSG_BAD_IMAGE
    if not is_video and not is_image:
        return MSG_NOT_MEDIA
    return None


def sniff_image(data: bytes) -> Optional[str]:
    """Return the Pillow format name (e.g. 'PNG') of image bytes, or None."""
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            return img.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        logger.debug("Pillow could not identify upload: %s", exc)
        return None
