from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnhancementResult:
    audio: bytes
    mime_type: Optional[str]
    enhanced: bool
    error: Optional[str] = None


class AudioEnhancer:
    """Optional ElevenLabs voice isolation applied to the audio before upload.

    Enhancement is an optimization, not a requirement: when the key is absent or
    the call fails, the original bytes go through unchanged and the failure is
    logged.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str],
        api_base: str = "https://api.elevenlabs.io/v1",
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._url = f"{api_base.rstrip('/')}/audio-isolation"
        self._http: Optional[httpx.AsyncClient] = None
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self._timeout_seconds,
                headers={"xi-api-key": self._api_key},
                transport=self._transport,
            )
        return self._http

    async def enhance(
        self,
        audio: bytes,
        *,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> EnhancementResult:
        if not self.is_configured:
            return EnhancementResult(audio=audio, mime_type=mime_type, enhanced=False)

        files = {"audio": (filename or "audio.mp3", audio, mime_type or "audio/mpeg")}
        try:
            response = await self._client().post(self._url, files=files)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("ElevenLabs enhancement failed, using original audio: %s", exc)
            return EnhancementResult(audio=audio, mime_type=mime_type, enhanced=False, error=str(exc))

        enhanced = response.content
        if not enhanced:
            logger.warning("ElevenLabs returned an empty body, using original audio")
            return EnhancementResult(
                audio=audio, mime_type=mime_type, enhanced=False, error="empty response"
            )
        content_type = response.headers.get("content-type", "audio/mpeg").split(";")[0].strip()
        logger.info("Audio enhanced with ElevenLabs (%d -> %d bytes)", len(audio), len(enhanced))
        return EnhancementResult(audio=enhanced, mime_type=content_type or "audio/mpeg", enhanced=True)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
