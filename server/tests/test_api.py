from __future__ import annotations

import asyncio
import json
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, FakeStorage
from talkflair.api.app import create_app
from talkflair.config import Settings
from talkflair.services.providers import HedraProvider
from talkflair.services.providers.base import JobHandle, JobOutcome
from talkflair.services.storage import AssetKind


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256
MP3 = b"ID3" + b"\x00" * 1024


def _files(image: bytes = PNG, audio: Optional[bytes] = MP3) -> dict:
    files = {"image": ("face.png", image, "image/png")}
    if audio is not None:
        files["audio"] = ("voice.mp3", audio, "audio/mpeg")
    return files


@pytest.fixture
def build_client(make_service):  # noqa: ANN001, ANN201
    def _build(**kwargs) -> TestClient:  # noqa: ANN003
        service = make_service(**kwargs)
        app = create_app(Settings(log_level="WARNING"), service=service)
        return TestClient(app)

    return _build


def test_health_reports_configuration(build_client) -> None:  # noqa: ANN001
    with build_client() as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "service": "talkflair-lipsync",
        "status": "ok",
        "storage": True,
        "provider": True,
        "providerName": "fake",
        "responseMode": "synced",
        "enhancer": False,
        "providerInitError": None,
    }


def test_health_is_degraded_without_storage(build_client) -> None:  # noqa: ANN001
    with build_client(storage=FakeStorage(configured=False)) as client:
        body = client.get("/health").json()

    assert body["status"] == "degraded"
    assert body["storage"] is False


def test_unknown_provider_still_boots_and_reports() -> None:
    app = create_app(Settings(generation_provider="d-id", log_level="WARNING"))

    with TestClient(app) as client:
        health = client.get("/health").json()
        response = client.post(
            "/generate",
            json={"imageUrl": "https://example.com/a.png", "audioUrl": "https://example.com/a.mp3"},
        )

    assert health["status"] == "degraded"
    assert health["providerName"] == "unavailable"
    assert "d-id" in health["providerInitError"]
    assert response.status_code == 500
    assert response.json()["success"] is False


def test_generate_multipart_synced_returns_video_url(build_client) -> None:  # noqa: ANN001
    storage = FakeStorage()
    provider = FakeProvider([JobOutcome.pending(20), JobOutcome.succeeded("https://cdn.example.com/out.mp4")])

    with build_client(storage=storage, provider=provider) as client:
        response = client.post("/generate", files=_files(), data={"aspectRatio": "9:16"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "videoUrl": "https://cdn.example.com/out.mp4",
        "jobId": "job_123",
    }
    assert provider.submissions[0]["aspect_ratio"] == "9:16"
    assert len(storage.uploads) == 2


def test_generate_deferred_returns_202_and_status_url(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()

    with build_client(provider=provider, response_mode="deferred") as client:
        response = client.post("/generate", files=_files())

    assert response.status_code == 202
    body = response.json()
    assert body["jobId"] == "job_123"
    assert body["status"] == "pending"
    assert body["statusUrl"].endswith("/status/job_123")
    assert provider.status_calls == 0


def test_generate_mode_can_be_overridden_per_request(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()

    with build_client(provider=provider) as client:
        response = client.post("/generate", files=_files(), data={"mode": "deferred"})

    assert response.status_code == 202
    assert provider.status_calls == 0


def test_generate_json_urls_skip_upload(build_client) -> None:  # noqa: ANN001
    storage = FakeStorage()
    provider = FakeProvider()

    with build_client(storage=storage, provider=provider) as client:
        response = client.post(
            "/generate",
            json={
                "imageUrl": "https://example.com/face.png",
                "audioUrl": "https://example.com/voice.mp3",
                "aspectRatio": "16:9",
            },
        )

    assert response.status_code == 200
    assert storage.uploads == []
    assert provider.submissions[0]["image_url"] == "https://example.com/face.png"


def test_generate_json_with_bad_aspect_ratio_is_400(build_client) -> None:  # noqa: ANN001
    with build_client() as client:
        response = client.post(
            "/generate",
            json={
                "imageUrl": "https://example.com/face.png",
                "audioUrl": "https://example.com/voice.mp3",
                "aspectRatio": "4:3",
            },
        )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_generate_json_null_aspect_ratio_uses_default(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()

    with build_client(provider=provider) as client:
        response = client.post(
            "/generate",
            json={
                "imageUrl": "https://example.com/face.png",
                "audioUrl": "https://example.com/voice.mp3",
                "aspectRatio": None,
            },
        )

    assert response.status_code == 200
    assert provider.submissions[0]["aspect_ratio"] == "16:9"


def test_generate_missing_audio_is_400(build_client) -> None:  # noqa: ANN001
    storage = FakeStorage()
    provider = FakeProvider()

    with build_client(storage=storage, provider=provider) as client:
        response = client.post("/generate", files=_files(audio=None))

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Both image and audio files are required",
        "details": None,
        "retryable": False,
    }
    assert storage.uploads == []
    assert provider.submissions == []


def test_generate_timeout_is_408_and_retryable(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider([JobOutcome.pending(60)])

    with build_client(provider=provider, max_attempts=2) as client:
        response = client.post("/generate", files=_files())

    assert response.status_code == 408
    body = response.json()
    assert body["retryable"] is True
    assert body["details"] == {"jobId": "job_123", "progress": 60}


def test_generate_provider_failure_is_502(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider([JobOutcome.failed("no face detected")])

    with build_client(provider=provider) as client:
        response = client.post("/generate", files=_files())

    assert response.status_code == 502
    assert response.json()["details"]["reason"] == "no face detected"


def test_generate_upload_failure_mirrors_storage_error(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()

    with build_client(storage=FakeStorage(fail_kinds=(AssetKind.AUDIO,)), provider=provider) as client:
        response = client.post("/generate", files=_files())

    assert response.status_code == 502
    assert response.json()["retryable"] is True
    assert provider.submissions == []


def test_status_endpoint_maps_states(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider(
        [
            JobOutcome.pending(35),
            JobOutcome.succeeded("https://cdn.example.com/out.mp4"),
            JobOutcome.failed("render crashed"),
        ]
    )

    with build_client(provider=provider) as client:
        pending = client.get("/status/job_123").json()
        done = client.get("/status/job_123").json()
        failed = client.get("/status/job_123").json()

    assert pending == {"jobId": "job_123", "status": "pending", "progress": 35}
    assert done == {
        "jobId": "job_123",
        "status": "completed",
        "videoUrl": "https://cdn.example.com/out.mp4",
        "progress": 100,
    }
    assert failed == {"jobId": "job_123", "status": "failed", "error": "render crashed"}


def test_status_after_completion_is_stable(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider([JobOutcome.succeeded("https://cdn.example.com/out.mp4")])

    with build_client(provider=provider) as client:
        first = client.get("/status/job_123").json()
        second = client.get("/status/job_123").json()

    assert first == second
    assert provider.submissions == []


def test_status_rejects_unsafe_id(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()

    with build_client(provider=provider) as client:
        response = client.get("/status/bad%20id")

    assert response.status_code == 400
    assert provider.status_calls == 0


def test_upload_image_returns_asset(build_client) -> None:  # noqa: ANN001
    storage = FakeStorage()

    with build_client(storage=storage) as client:
        response = client.post("/upload/image", files={"image": ("face.png", PNG, "image/png")})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["url"] == "https://res.cloudinary.com/demo/image/upload/face.png"
    assert body["storageId"] == "talkflair/image/face.png"
    assert body["sizeBytes"] == len(PNG)


def test_upload_audio_without_file_is_400(build_client) -> None:  # noqa: ANN001
    with build_client() as client:
        response = client.post("/upload/audio")

    assert response.status_code == 400
    assert response.json()["error"] == "No audio file provided"


def test_upload_audio_wrong_type_is_rejected(build_client) -> None:  # noqa: ANN001
    with build_client() as client:
        response = client.post("/upload/audio", files={"audio": ("notes.txt", b"hello", "text/plain")})

    assert response.status_code == 400
    assert "audio/*" in response.json()["error"]


def test_lifespan_closes_provider(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider()
    client = build_client(provider=provider)

    with client:
        client.get("/")

    assert provider.closed is True


def test_status_polled_repeatedly_while_pending(build_client) -> None:  # noqa: ANN001
    provider = FakeProvider(
        [
            HedraProvider.normalize({"status": "processing", "progress": value})
            for value in (0.1, 0.5, 0.95, 1)
        ]
    )

    with build_client(provider=provider) as client:
        bodies = [client.get("/status/job_123").json() for _ in range(4)]

    assert {body["status"] for body in bodies} == {"pending"}
    progress = [body["progress"] for body in bodies]
    assert progress == sorted(progress)
    assert progress == [10, 50, 95, 100]
    assert provider.submissions == []


def test_unexpected_error_returns_json_500(make_service) -> None:  # noqa: ANN001
    class BrokenProvider(FakeProvider):
        async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
            raise KeyError("job")

    app = create_app(Settings(log_level="WARNING"), service=make_service(provider=BrokenProvider()))

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.post(
            "/generate",
            json={"imageUrl": "https://example.com/face.png", "audioUrl": "https://example.com/voice.mp3"},
        )

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {
        "success": False,
        "error": "Internal server error",
        "details": "KeyError",
        "retryable": False,
    }


def test_synced_generate_stops_polling_when_client_disconnects(make_service) -> None:  # noqa: ANN001
    provider = FakeProvider([JobOutcome.pending(10)])
    app = create_app(
        Settings(log_level="WARNING"),
        service=make_service(provider=provider, max_attempts=30),
    )
    body = json.dumps(
        {"imageUrl": "https://example.com/face.png", "audioUrl": "https://example.com/voice.mp3"}
    ).encode()
    incoming = [{"type": "http.request", "body": body, "more_body": False}]
    sent: list[dict] = []

    async def receive() -> dict:
        if incoming:
            return incoming.pop(0)
        if provider.status_calls >= 1:
            return {"type": "http.disconnect"}
        # Still connected: block until the disconnect check gives up.
        await asyncio.sleep(3600)
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        sent.append(message)

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/generate",
        "raw_path": b"/generate",
        "query_string": b"",
        "root_path": "",
        "headers": [(b"content-type", b"application/json"), (b"host", b"testserver")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "state": {},
    }

    asyncio.run(app(scope, receive, send))

    assert provider.status_calls == 1
    start = next(message for message in sent if message["type"] == "http.response.start")
    assert start["status"] == 499
