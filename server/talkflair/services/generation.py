from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

from talkflair.config import VALID_RESPONSE_MODES, Settings
from talkflair.errors import (
    GenerationFailed,
    GenerationTimedOut,
    InvalidInput,
    MissingInput,
    StorageUnavailable,
    TalkflairError,
    UploadFailed,
)
from talkflair.services.enhancement import AudioEnhancer
from talkflair.services.poller import CancelCheck, JobPoller, ProgressCallback
from talkflair.services.providers import build_provider
from talkflair.services.providers.base import (
    ASPECT_RATIOS,
    DEFAULT_ASPECT_RATIO,
    GenerationProvider,
    JobHandle,
    JobOutcome,
    JobState,
    is_http_url,
)
from talkflair.services.storage import AssetKind, CloudinaryStorage, UploadedAsset, validate_media

logger = logging.getLogger(__name__)

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


@dataclass(slots=True)
class MediaInput:
    """One request input: raw bytes to upload, or a URL that is already public."""

    kind: AssetKind
    data: Optional[bytes] = None
    url: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.data is None and bool(self.url)


@dataclass(slots=True)
class SubmittedJob:
    handle: JobHandle
    image: UploadedAsset
    audio: UploadedAsset
    aspect_ratio: str


@dataclass(slots=True)
class GenerationResult:
    """Outcome of a synced generation; only built for a verified video URL."""

    job_id: str
    provider_id: str
    video_url: str
    image_url: str
    audio_url: str


def normalize_aspect_ratio(value: Optional[str]) -> str:
    ratio = (value or "").strip() or DEFAULT_ASPECT_RATIO
    if ratio not in ASPECT_RATIOS:
        raise InvalidInput(f"aspectRatio must be one of {', '.join(ASPECT_RATIOS)}, got {ratio!r}")
    return ratio


def normalize_response_mode(value: Optional[str], default: str) -> str:
    mode = (value or "").strip().lower() or default
    if mode not in VALID_RESPONSE_MODES:
        raise InvalidInput(f"mode must be one of {', '.join(VALID_RESPONSE_MODES)}, got {mode!r}")
    return mode


class GenerationService:
    """Upload, submit, poll, return.

    One instance serves every request; it holds only configured collaborators
    and no per-request state. Each call owns its assets and its job handle.
    """

    def __init__(
        self,
        *,
        storage: CloudinaryStorage,
        provider: GenerationProvider,
        poller: JobPoller,
        enhancer: Optional[AudioEnhancer] = None,
        response_mode: str = "synced",
        max_upload_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self.storage = storage
        self.provider = provider
        self.poller = poller
        self.enhancer = enhancer
        self.response_mode = normalize_response_mode(response_mode, "synced")
        self._max_upload_bytes = max_upload_bytes

    def _validate(self, media: Optional[MediaInput], kind: AssetKind) -> MediaInput:
        if media is None or (media.data is None and not media.url):
            raise MissingInput("Both image and audio files are required")
        if media.kind is not kind:
            raise InvalidInput(f"Expected an {kind.value} input, got {media.kind.value}")
        if media.is_remote:
            if not is_http_url(media.url):
                raise InvalidInput(f"{kind.value}Url must be an absolute http(s) URL")
            return media
        validate_media(
            media.data or b"",
            kind=kind,
            mime_type=media.mime_type,
            max_bytes=self._max_upload_bytes,
        )
        return media

    async def _store(self, media: MediaInput) -> UploadedAsset:
        if media.is_remote:
            assert media.url is not None
            return UploadedAsset(
                kind=media.kind,
                remote_url=media.url.strip(),
                storage_id="",
                size_bytes=0,
                mime_type=media.mime_type or "",
            )

        data = media.data or b""
        mime_type = media.mime_type
        if media.kind is AssetKind.AUDIO and self.enhancer is not None and self.enhancer.is_configured:
            enhanced = await self.enhancer.enhance(data, filename=media.filename, mime_type=mime_type)
            data, mime_type = enhanced.audio, enhanced.mime_type

        return await self.storage.upload(data, media.kind, filename=media.filename, mime_type=mime_type)

    async def _store_pair(self, image: MediaInput, audio: MediaInput) -> tuple[UploadedAsset, UploadedAsset]:
        """Store both inputs concurrently; all-or-nothing."""
        results = await asyncio.gather(self._store(image), self._store(audio), return_exceptions=True)
        failures = [item for item in results if isinstance(item, BaseException)]
        if not failures:
            image_asset, audio_asset = results
            return image_asset, audio_asset  # type: ignore[return-value]

        # Remove whichever half did make it so no orphan stays behind.
        survivors = [item for item in results if isinstance(item, UploadedAsset) and item.storage_id]
        if survivors:
            await asyncio.gather(*(self.storage.delete(asset) for asset in survivors))

        cause = failures[0]
        if isinstance(cause, TalkflairError):
            raise UploadFailed(f"Upload failed: {cause.message}", cause=cause) from cause
        if isinstance(cause, Exception):
            wrapped = StorageUnavailable(f"Upload failed: {cause}")
            raise UploadFailed(wrapped.message, cause=wrapped) from cause
        raise cause

    async def submit(
        self,
        image: Optional[MediaInput],
        audio: Optional[MediaInput],
        aspect_ratio: Optional[str] = None,
    ) -> SubmittedJob:
        """Validate, store both inputs, and submit exactly one provider job."""
        image = self._validate(image, AssetKind.IMAGE)
        audio = self._validate(audio, AssetKind.AUDIO)
        ratio = normalize_aspect_ratio(aspect_ratio)

        image_asset, audio_asset = await self._store_pair(image, audio)
        logger.info(
            "Submitting %s job (aspect %s) image=%s audio=%s",
            self.provider.provider_id,
            ratio,
            image_asset.remote_url,
            audio_asset.remote_url,
        )
        handle = await self.provider.submit(
            image_url=image_asset.remote_url,
            audio_url=audio_asset.remote_url,
            aspect_ratio=ratio,
        )
        logger.info("%s job %s submitted", handle.provider_id, handle.external_job_id)
        return SubmittedJob(handle=handle, image=image_asset, audio=audio_asset, aspect_ratio=ratio)

    async def wait(
        self,
        job: SubmittedJob,
        *,
        should_cancel: Optional[CancelCheck] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """Poll a submitted job to completion and verify the resulting video URL."""
        outcome = await self.poller.wait(
            self.provider, job.handle, should_cancel=should_cancel, on_progress=on_progress
        )
        job_id = job.handle.external_job_id

        if outcome.state == JobState.TIMED_OUT:
            raise GenerationTimedOut(
                f"Video generation timed out after {self.poller.max_wait_seconds:g}s",
                details={"jobId": job_id, "progress": outcome.progress},
            )
        if outcome.state == JobState.FAILED:
            raise GenerationFailed(
                f"{self.provider.provider_id} video generation failed",
                details={"jobId": job_id, "reason": outcome.reason},
            )

        video_url = (outcome.result_url or "").strip()
        if not is_http_url(video_url) or video_url in {job.image.remote_url, job.audio.remote_url}:
            raise GenerationFailed(
                "Provider returned an unusable video URL",
                details={"jobId": job_id, "videoUrl": outcome.result_url},
            )

        logger.info("%s job %s finished: %s", job.handle.provider_id, job_id, video_url)
        return GenerationResult(
            job_id=job_id,
            provider_id=job.handle.provider_id,
            video_url=video_url,
            image_url=job.image.remote_url,
            audio_url=job.audio.remote_url,
        )

    async def generate(
        self,
        image: Optional[MediaInput],
        audio: Optional[MediaInput],
        aspect_ratio: Optional[str] = None,
        *,
        should_cancel: Optional[CancelCheck] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """Synced mode: submit and hold until the job is terminal."""
        job = await self.submit(image, audio, aspect_ratio)
        return await self.wait(job, should_cancel=should_cancel, on_progress=on_progress)

    async def status(self, job_id: str) -> JobOutcome:
        """One stateless status query for a job of the configured provider."""
        cleaned = (job_id or "").strip()
        if not _JOB_ID_RE.match(cleaned):
            raise InvalidInput(f"Invalid job id: {job_id!r}")
        handle = JobHandle(provider_id=self.provider.provider_id, external_job_id=cleaned)
        return await self.provider.query_status(handle)

    async def upload_single(self, media: Optional[MediaInput], kind: AssetKind) -> UploadedAsset:
        """Store one input on its own (standalone upload endpoints)."""
        if media is None or media.data is None:
            raise MissingInput(f"No {kind.value} file provided")
        media = self._validate(media, kind)
        return await self._store(media)

    async def aclose(self) -> None:
        await self.provider.aclose()
        if self.enhancer is not None:
            await self.enhancer.aclose()


def build_generation_service(
    settings: Settings, *, provider: Optional[GenerationProvider] = None
) -> GenerationService:
    """Wire storage, provider, poller and enhancer from one Settings instance."""
    poller = JobPoller(
        poll_interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        max_consecutive_failures=settings.poll_max_consecutive_failures,
        status_timeout_seconds=settings.request_timeout_seconds,
    )
    enhancer = None
    if settings.enhancer_configured:
        enhancer = AudioEnhancer(
            api_key=settings.elevenlabs_api_key,
            api_base=settings.elevenlabs_api_base,
            timeout_seconds=settings.elevenlabs_timeout_seconds,
        )
    return GenerationService(
        storage=CloudinaryStorage.from_settings(settings),
        provider=provider if provider is not None else build_provider(settings),
        poller=poller,
        enhancer=enhancer,
        response_mode=settings.response_mode,
        max_upload_bytes=settings.max_upload_bytes,
    )
