from __future__ import annotations

import asyncio

import cloudinary.exceptions
import cloudinary.uploader
import pytest

from talkflair.config import Settings
from talkflair.errors import MissingInput, StorageUnavailable, UploadRejected
from talkflair.services.storage import (
    AssetKind,
    CloudinaryStorage,
    UploadedAsset,
    validate_media,
)


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _storage() -> CloudinaryStorage:
    return CloudinaryStorage(
        cloud_name="demo",
        api_key="1234567890",
        api_secret="shh",
        image_folder="tf/images",
        audio_folder="tf/audio",
        timeout_seconds=12.0,
    )


def test_upload_sends_per_call_credentials_and_resource_type(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []

    def fake_upload(file, **options):  # noqa: ANN001, ANN003, ANN202
        calls.append({"name": file.name, "bytes": file.read(), **options})
        return {
            "secure_url": "https://res.cloudinary.com/demo/video/upload/v1/tf/audio/voice.mp3",
            "public_id": "tf/audio/voice",
            "bytes": 4,
            "format": "mp3",
        }

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    asset = _run(_storage().upload(b"ID3!", AssetKind.AUDIO, filename="voice.mp3", mime_type="audio/mpeg"))

    assert asset == UploadedAsset(
        kind=AssetKind.AUDIO,
        remote_url="https://res.cloudinary.com/demo/video/upload/v1/tf/audio/voice.mp3",
        storage_id="tf/audio/voice",
        size_bytes=4,
        mime_type="audio/mpeg",
    )
    (call,) = calls
    assert call["bytes"] == b"ID3!"
    assert call["name"] == "voice.mp3"
    assert call["resource_type"] == "video"
    assert call["folder"] == "tf/audio"
    assert call["cloud_name"] == "demo"
    assert call["api_key"] == "1234567890"
    assert call["timeout"] == 12.0
    assert call["public_id"].startswith("audio_")
    assert call["public_id"].endswith("_voice")


def test_upload_folder_hint_overrides_default(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict = {}

    def fake_upload(file, **options):  # noqa: ANN001, ANN003, ANN202
        _ = file
        seen.update(options)
        return {"secure_url": "https://res.cloudinary.com/demo/image/upload/x.png", "public_id": "x"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    asset = _run(_storage().upload(b"\x89PNG", AssetKind.IMAGE, "campaign/42", filename="x.png"))

    assert seen["folder"] == "campaign/42"
    assert seen["resource_type"] == "image"
    assert asset.size_bytes == 4


def test_unconfigured_storage_raises_before_calling_cloudinary(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_upload(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        raise AssertionError("must not be called")

    monkeypatch.setattr(cloudinary.uploader, "upload", fail_upload)
    storage = CloudinaryStorage.from_settings(Settings())

    assert storage.is_configured is False
    with pytest.raises(StorageUnavailable):
        _run(storage.upload(b"data", AssetKind.IMAGE))


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (cloudinary.exceptions.BadRequest("Invalid image file"), UploadRejected),
        (cloudinary.exceptions.AuthorizationRequired("Invalid Signature"), StorageUnavailable),
        (cloudinary.exceptions.Error("File size too large. Got 120000000"), UploadRejected),
        (cloudinary.exceptions.Error("Unknown API key 1234"), StorageUnavailable),
        (ConnectionError("connection reset by peer"), StorageUnavailable),
    ],
)
def test_upload_errors_are_classified(
    monkeypatch: pytest.MonkeyPatch, raised: Exception, expected: type
) -> None:
    def fake_upload(file, **options):  # noqa: ANN001, ANN003, ANN202
        _ = file, options
        raise raised

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    with pytest.raises(expected) as excinfo:
        _run(_storage().upload(b"data", AssetKind.IMAGE, filename="a.png"))

    assert excinfo.value.__cause__ is raised


def test_upload_response_without_url_is_storage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cloudinary.uploader, "upload", lambda file, **options: {"public_id": "x"})

    with pytest.raises(StorageUnavailable):
        _run(_storage().upload(b"data", AssetKind.IMAGE))


def test_delete_is_best_effort(monkeypatch: pytest.MonkeyPatch) -> None:
    destroyed: list[tuple[str, str]] = []

    def fake_destroy(public_id, **options):  # noqa: ANN001, ANN003, ANN202
        destroyed.append((public_id, options["resource_type"]))
        return {"result": "ok"}

    monkeypatch.setattr(cloudinary.uploader, "destroy", fake_destroy)
    asset = UploadedAsset(
        kind=AssetKind.AUDIO,
        remote_url="https://res.cloudinary.com/demo/video/upload/a.mp3",
        storage_id="tf/audio/a",
        size_bytes=3,
        mime_type="audio/mpeg",
    )

    assert _run(_storage().delete(asset)) is True
    assert destroyed == [("tf/audio/a", "video")]

    def broken_destroy(public_id, **options):  # noqa: ANN001, ANN003, ANN202
        raise cloudinary.exceptions.Error("gone")

    monkeypatch.setattr(cloudinary.uploader, "destroy", broken_destroy)
    assert _run(_storage().delete(asset)) is False


def test_delete_skips_assets_that_were_never_stored() -> None:
    remote_only = UploadedAsset(
        kind=AssetKind.IMAGE,
        remote_url="https://example.com/face.png",
        storage_id="",
        size_bytes=0,
        mime_type="",
    )

    assert _run(_storage().delete(remote_only)) is False


def test_validate_media_rules() -> None:
    validate_media(b"abc", kind=AssetKind.IMAGE, mime_type="image/jpeg", max_bytes=10)
    validate_media(b"abc", kind=AssetKind.AUDIO, mime_type=None, max_bytes=10)

    with pytest.raises(MissingInput):
        validate_media(b"", kind=AssetKind.IMAGE, mime_type="image/png", max_bytes=10)
    with pytest.raises(UploadRejected):
        validate_media(b"abc", kind=AssetKind.IMAGE, mime_type="audio/mpeg", max_bytes=10)
    with pytest.raises(UploadRejected):
        validate_media(b"x" * 11, kind=AssetKind.AUDIO, mime_type="audio/wav", max_bytes=10)
