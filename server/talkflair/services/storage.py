"""Cloudinary-backed blob store for the portrait and audio inputs."""
from __future__ import annotations

import asyncio
import io
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional

import cloudinary.exceptions
import cloudinary.uploader

from talkflair.config import Settings
from talkflair.errors import MissingInput, StorageUnavailable, UploadRejected

logger = logging.getLogger(__name__)


class AssetKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"

    @property
    def resource_type(self) -> str:
        # Cloudinary stores audio under the "video" resource type.
        return "image" if self is AssetKind.IMAGE else "video"


@dataclass(frozen=True, slots=True)
class UploadedAsset:
    """A stored input; lives for one request only."""

    kind: AssetKind
    remote_url: str
    storage_id: str
    size_bytes: int
    mime_type: str


# Message fragments Cloudinary uses when it refuses a payload rather than us.
_REJECTION_MARKERS = (
    "invalid image",
    "invalid file",
    "unsupported",
    "file size too large",
    "too large",
    "empty file",
    "maximum",
)
_CREDENTIAL_MARKERS = (
    "api_key",
    "api_secret",
    "cloud_name",
    "signature",
    "unknown api key",
    "unauthorized",
)


def _classify_upload_error(exc: Exception) -> Exception:
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if isinstance(exc, (cloudinary.exceptions.AuthorizationRequired, cloudinary.exceptions.NotAllowed)):
        return StorageUnavailable(f"Cloudinary refused our credentials: {message}")
    if isinstance(exc, cloudinary.exceptions.BadRequest):
        return UploadRejected(f"Cloudinary rejected the upload: {message}")
    if any(marker in lowered for marker in _CREDENTIAL_MARKERS):
        return StorageUnavailable(f"Cloudinary refused our credentials: {message}")
    if any(marker in lowered for marker in _REJECTION_MARKERS):
        return UploadRejected(f"Cloudinary rejected the upload: {message}")
    return StorageUnavailable(f"Cloudinary upload failed: {message}")


def validate_media(
    data: bytes,
    *,
    kind: AssetKind,
    mime_type: Optional[str],
    max_bytes: int,
) -> None:
    """Local checks run before any upload starts; no side effects."""
    if not data:
        raise MissingInput(f"The {kind.value} file is empty")
    mime = (mime_type or "").strip().lower()
    if mime and not mime.startswith(f"{kind.value}/"):
        raise UploadRejected(f"The {kind.value} file must have an {kind.value}/* content type, got {mime}")
    if len(data) > max_bytes:
        size_mb = len(data) / (1024 * 1024)
        raise UploadRejected(
            f"The {kind.value} file is too large ({size_mb:.2f} MB). "
            f"Max {max_bytes // (1024 * 1024)} MB"
        )


def _public_id(kind: AssetKind, filename: Optional[str]) -> str:
    stem = PurePath(filename or "").stem if filename else ""
    safe_stem = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in stem)[:60]
    suffix = uuid.uuid4().hex[:8]
    base = f"{kind.value}_{int(time.time() * 1000)}_{suffix}"
    return f"{base}_{safe_stem}" if safe_stem else base


class CloudinaryStorage:
    """Uploads request inputs to Cloudinary and returns their public URLs.

    Credentials travel with each call instead of `cloudinary.config()` so two
    instances with different accounts never interfere. The SDK is blocking;
    calls run in a worker thread.
    """

    def __init__(
        self,
        *,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        image_folder: str = "talkflair/images",
        audio_folder: str = "talkflair/audio",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._cloud_name = (cloud_name or "").strip()
        self._api_key = (api_key or "").strip()
        self._api_secret = (api_secret or "").strip()
        self._folders = {AssetKind.IMAGE: image_folder, AssetKind.AUDIO: audio_folder}
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryStorage":
        return cls(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            image_folder=settings.cloudinary_image_folder,
            audio_folder=settings.cloudinary_audio_folder,
            timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._cloud_name and self._api_key and self._api_secret)

    def _credentials(self) -> dict[str, Any]:
        return {
            "cloud_name": self._cloud_name,
            "api_key": self._api_key,
            "api_secret": self._api_secret,
            "secure": True,
        }

    async def upload(
        self,
        data: bytes,
        kind: AssetKind,
        folder_hint: Optional[str] = None,
        *,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> UploadedAsset:
        """Upload one payload; a single attempt, errors surface to the caller."""
        if not self.is_configured:
            raise StorageUnavailable(
                "Cloudinary is not configured. Set CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
            )
        if not data:
            raise MissingInput(f"The {kind.value} payload is empty")

        options = {
            **self._credentials(),
            "resource_type": kind.resource_type,
            "folder": folder_hint or self._folders[kind],
            "public_id": _public_id(kind, filename),
            "timeout": self._timeout_seconds,
        }
        stream = io.BytesIO(data)
        stream.name = filename or f"{kind.value}.bin"

        try:
            result = await asyncio.to_thread(cloudinary.uploader.upload, stream, **options)
        except Exception as exc:
            error = _classify_upload_error(exc)
            logger.error("Cloudinary %s upload failed: %s", kind.value, exc)
            raise error from exc

        url = result.get("secure_url") or result.get("url")
        storage_id = result.get("public_id")
        if not url or not storage_id:
            raise StorageUnavailable(f"Cloudinary upload response missing URL or public id: {result!r}")

        asset = UploadedAsset(
            kind=kind,
            remote_url=str(url),
            storage_id=str(storage_id),
            size_bytes=int(result.get("bytes") or len(data)),
            mime_type=(mime_type or f"{kind.value}/{result.get('format') or 'octet-stream'}"),
        )
        logger.info("Uploaded %s to Cloudinary: %s", kind.value, asset.remote_url)
        return asset

    async def delete(self, asset: UploadedAsset) -> bool:
        """Best-effort removal of a stored asset. Returns True when Cloudinary confirmed it."""
        if not asset.storage_id or not self.is_configured:
            return False
        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.destroy,
                asset.storage_id,
                resource_type=asset.kind.resource_type,
                **self._credentials(),
            )
        except Exception:
            logger.warning("Could not delete orphaned %s %s", asset.kind.value, asset.storage_id, exc_info=True)
            return False
        deleted = isinstance(result, dict) and result.get("result") == "ok"
        if deleted:
            logger.info("Deleted orphaned %s %s", asset.kind.value, asset.storage_id)
        return deleted
