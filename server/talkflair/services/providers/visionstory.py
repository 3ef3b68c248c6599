from __future__ import annotations

from typing import Any, Optional

from talkflair.errors import SubmissionRejected, Unconfigured
from talkflair.services.providers.base import (
    JobHandle,
    JobOutcome,
    build_http_client,
    extract_error_message,
    extract_result_url,
    normalize_progress,
    request_json,
    require_job_id,
)


_SUCCESS_STATUSES = {"finished", "completed", "succeeded", "success"}
_FAILURE_STATUSES = {"failed", "error", "cancelled"}
_STATUS_PROGRESS = {"created": 5, "queued": 5, "processing": 50, "generating": 50}


def _envelope(data: dict[str, Any]) -> dict[str, Any]:
    # VisionStory wraps payloads as {"code": ..., "data": {...}}.
    inner = data.get("data")
    return inner if isinstance(inner, dict) else data


class VisionStoryProvider:
    """VisionStory talking-avatar video API (`X-API-Key` auth)."""

    provider_id = "visionstory"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        api_base: str = "https://openapi.visionstory.ai/api/v1",
        model_id: str = "vs_talk_v1",
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base = api_base.rstrip("/")
        self._model_id = model_id
        self._http = build_http_client(
            headers={
                "X-API-Key": self._api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout_seconds=request_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _require_configured(self) -> None:
        if not self._api_key:
            raise Unconfigured("VISIONSTORY_API_KEY is required for the visionstory provider")

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        self._require_configured()
        payload = {
            "model_id": self._model_id,
            "image_url": image_url,
            "audio_script": {"voice_url": audio_url},
            "aspect_ratio": aspect_ratio,
            "resolution": "480p",
        }
        data = await request_json(
            self._http, "POST", f"{self._base}/video", json=payload, provider="VisionStory", phase="submit"
        )
        code = data.get("code")
        if code not in (None, 0, 200, "0", "200"):
            raise SubmissionRejected(
                f"VisionStory declined the job (code {code})",
                details=extract_error_message(data),
            )
        job_id = require_job_id(_envelope(data), "video_id", "id", provider="VisionStory")
        return JobHandle(provider_id=self.provider_id, external_job_id=job_id)

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        self._require_configured()
        data = await request_json(
            self._http,
            "GET",
            f"{self._base}/video",
            params={"video_id": handle.external_job_id},
            provider="VisionStory",
            phase="status",
        )
        return self.normalize(data)

    @staticmethod
    def normalize(data: dict[str, Any]) -> JobOutcome:
        body = _envelope(data)
        status = str(body.get("status") or "").strip().lower()
        if status in _SUCCESS_STATUSES:
            url = extract_result_url(body)
            if not url:
                return JobOutcome.failed("VisionStory finished without a video URL")
            return JobOutcome.succeeded(url)
        if status in _FAILURE_STATUSES:
            return JobOutcome.failed(
                extract_error_message(body)
                or extract_error_message(data)
                or f"VisionStory video ended with status {status}"
            )

        progress = normalize_progress(body.get("progress"), fraction=True)
        if progress is None:
            progress = _STATUS_PROGRESS.get(status)
        return JobOutcome.pending(progress)

    async def aclose(self) -> None:
        await self._http.aclose()
