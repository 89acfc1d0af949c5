import pytest

from conftest import png_bytes
from media_utils import (
    MAX_FILE_SIZE,
    MSG_BAD_IMAGE,
    MSG_BAD_VIDEO,
    MSG_COVER_IMAGE_ONLY,
    MSG_NOT_MEDIA,
    MSG_TOO_LARGE,
    get_media_type,
    guess_content_type,
    media_type_for_content_type,
    sniff_image,
    validate_upload,
)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://cdn.example.com/1-abc-clip.MP4", "video"),
        ("https://cdn.example.com/1-abc-clip.webm?x=1", "video"),
        ("/static/demo/project-1.jpg", "image"),
        ("", "image"),
    ],
)
def test_get_media_type(url, expected):
    assert get_media_type(url) == expected


def test_media_type_for_content_type():
    assert media_type_for_content_type("video/mp4") == "video"
    assert media_type_for_content_type("image/png") == "image"
    assert media_type_for_content_type("") == "image"


def test_guess_content_type_falls_back_to_octet_stream():
    assert guess_content_type("Cover.JPG") == "image/jpeg"
    assert guess_content_type("notes.txt") == "application/octet-stream"


def test_validate_upload_accepts_supported_files():
    assert validate_upload("a.png", "image/png", 10, is_cover=True) is None
    assert validate_upload("a.mp4", "video/mp4", 10) is None
    assert validate_upload("a.webp", "", 10) is None


def test_validate_upload_rejects_each_case():
    assert validate_upload("big.png", "image/png", MAX_FILE_SIZE + 1) == MSG_TOO_LARGE
    assert MSG_TOO_LARGE == "Datei ist zu groß. Maximum: 50MB"
    assert validate_upload("clip.mp4", "video/mp4", 10, is_cover=True) == MSG_COVER_IMAGE_ONLY
    assert validate_upload("clip.mkv", "video/x-matroska", 10) == MSG_BAD_VIDEO
    assert validate_upload("logo.svg", "image/svg+xml", 10) == MSG_BAD_IMAGE
    assert validate_upload("doc.pdf", "application/pdf", 10) == MSG_NOT_MEDIA


def test_validate_upload_uses_extension_for_octet_stream():
    assert validate_upload("photo.jpeg", "application/octet-stream", 10, is_cover=True) is None
    assert validate_upload("archive.zip", "application/octet-stream", 10) == MSG_NOT_MEDIA


def test_sniff_image():
    assert sniff_image(png_bytes()) == "PNG"
    assert sniff_image(b"definitely not an image") is None
    assert sniff_image(b"") is None
