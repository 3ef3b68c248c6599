from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from talkflair.errors import StorageUnavailable
from talkflair.services.generation import GenerationService
from talkflair.services.poller import JobPoller
from talkflair.services.providers.base import JobHandle, JobOutcome
from talkflair.services.storage import AssetKind, UploadedAsset


class FakeStorage:
    def __init__(self, *, fail_kinds: tuple[AssetKind, ...] = (), configured: bool = True) -> None:
        self.fail_kinds = fail_kinds
        self.configured = configured
        self.uploads: list[tuple[AssetKind, int, Optional[str]]] = []
        self.deleted: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def upload(
        self,
        data: bytes,
        kind: AssetKind,
        folder_hint: Optional[str] = None,
        *,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadedAsset:
        _ = folder_hint
        # Yield so both uploads are genuinely in flight together.
        await asyncio.sleep(0)
        self.uploads.append((kind, len(data), mime_type))
        if kind in self.fail_kinds:
            raise StorageUnavailable(f"{kind.value} upload exploded")
        storage_id = f"talkflair/{kind.value}/{filename or kind.value}"
        return UploadedAsset(
            kind=kind,
            remote_url=f"https://res.cloudinary.com/demo/{kind.value}/upload/{filename or kind.value}",
            storage_id=storage_id,
            size_bytes=len(data),
            mime_type=mime_type or "",
        )

    async def delete(self, asset: UploadedAsset) -> bool:
        self.deleted.append(asset.storage_id)
        return True


class FakeProvider:
    """Scripted adapter: returns `outcomes` in order, repeating the last one."""

    provider_id = "fake"
    is_configured = True

    def __init__(self, outcomes: Optional[list] = None, *, job_id: str = "job_123") -> None:
        self.outcomes = list(outcomes or [JobOutcome.succeeded("https://cdn.example.com/out.mp4")])
        self.job_id = job_id
        self.submissions: list[dict[str, str]] = []
        self.status_calls = 0
        self.closed = False

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        self.submissions.append(
            {"image_url": image_url, "audio_url": audio_url, "aspect_ratio": aspect_ratio}
        )
        return JobHandle(provider_id=self.provider_id, external_job_id=self.job_id)

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        _ = handle
        index = min(self.status_calls, len(self.outcomes) - 1)
        self.status_calls += 1
        item = self.outcomes[index]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_service(recording_sleep: RecordingSleep) -> Callable[..., GenerationService]:
    def _make(
        *,
        storage: Optional[FakeStorage] = None,
        provider: Optional[FakeProvider] = None,
        response_mode: str = "synced",
        max_attempts: int = 5,
        max_upload_bytes: int = 50 * 1024 * 1024,
    ) -> GenerationService:
        poller = JobPoller(
            poll_interval_seconds=10.0,
            max_attempts=max_attempts,
            max_consecutive_failures=3,
            sleep=recording_sleep,
        )
        return GenerationService(
            storage=storage or FakeStorage(),  # type: ignore[arg-type]
            provider=provider or FakeProvider(),
            poller=poller,
            response_mode=response_mode,
            max_upload_bytes=max_upload_bytes,
        )

    return _make
