import re

import boto3
import pytest
from botocore.stub import ANY, Stubber

from r2_storage import ObjectStorage, StorageConfigError, StorageError, build_key

KEY_PATTERN = re.compile(r"^\d{13}-[0-9a-f]{12}-(?P<name>.+)$")


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="auto",
        endpoint_url="https://account.r2.cloudflarestorage.com",
        aws_access_key_id="key",
        aws_secret_access_key="secret",
    )


def test_build_key_format():
    match = KEY_PATTERN.match(build_key("my summer photo.png"))
    assert match and match.group("name") == "my_summer_photo.png"
    assert KEY_PATTERN.match(build_key(None)).group("name") == "upload"
    assert KEY_PATTERN.match(build_key("dir/sub/pic.jpg")).group("name") == "pic.jpg"


def test_upload_puts_object_and_returns_public_url(s3_client):
    storage = ObjectStorage("art", "https://cdn.example.com", s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {"Bucket": "art", "Key": ANY, "Body": b"data", "ContentType": "image/png"},
        )
        result = storage.upload(b"data", "cover.png", "image/png")
        stubber.assert_no_pending_responses()
    assert KEY_PATTERN.match(result["key"])
    assert result["url"] == f"https://cdn.example.com/{result['key']}"


def test_upload_without_configuration_fails(s3_client):
    storage = ObjectStorage("", "", s3_client)
    with pytest.raises(StorageConfigError, match="R2 configuration missing"):
        storage.upload(b"data", "cover.png", "image/png")


def test_upload_client_error_becomes_storage_error(s3_client):
    storage = ObjectStorage("art", "https://cdn.example.com", s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageError):
            storage.upload(b"data", "cover.png", "image/png")


def test_key_from_url():
    storage = ObjectStorage("art", "https://cdn.example.com", client=None)
    assert storage.key_from_url("https://cdn.example.com/folder/a.png") == "folder/a.png"
    assert storage.key_from_url("https://elsewhere.org/x/b.png") == "b.png"

    slashed = ObjectStorage("art", "https://cdn.example.com/", client=None)
    assert slashed.key_from_url("https://cdn.example.com/folder/a.png") == "folder/a.png"
    assert slashed.owns_url("https://cdn.example.com/folder/a.png")
    assert not slashed.owns_url("https://cdn.example.com.evil.org/a.png")


def test_delete_by_url(s3_client):
    storage = ObjectStorage("art", "https://cdn.example.com", s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response("delete_object", {}, {"Bucket": "art", "Key": "123-abc-a.png"})
        assert storage.delete(url="https://cdn.example.com/123-abc-a.png") == "123-abc-a.png"


def test_delete_requires_key_or_url():
    storage = ObjectStorage("art", "https://cdn.example.com", client=None)
    with pytest.raises(StorageError, match="No key or url provided"):
        storage.delete()


def test_delete_many_skips_foreign_urls_and_keeps_going(s3_client):
    storage = ObjectStorage("art", "https://cdn.example.com", s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
        stubber.add_response("delete_object", {}, {"Bucket": "art", "Key": "2-b.png"})
        deleted = storage.delete_many(
            [
                "https://cdn.example.com/1-a.png",
                "/static/demo/project-1.jpg",
                "",
                "https://cdn.example.com/2-b.png",
            ]
        )
    assert deleted == ["2-b.png"]


def test_delete_many_with_trailing_slash_domain_removes_uploaded_object(s3_client):
    storage = ObjectStorage("art", "https://cdn.example.com/", s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response("put_object", {}, {"Bucket": "art", "Key": ANY, "Body": b"data", "ContentType": "image/png"})
        uploaded = storage.upload(b"data", "cover.png", "image/png")
        stubber.add_response("delete_object", {}, {"Bucket": "art", "Key": uploaded["key"]})
        assert storage.delete_many([uploaded["url"]]) == [uploaded["key"]]
        stubber.assert_no_pending_responses()
    assert uploaded["url"] == f"https://cdn.example.com/{uploaded['key']}"
