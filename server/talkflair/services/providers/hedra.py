from __future__ import annotations

from typing import Any, Optional

from talkflair.errors import Unconfigured
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


# Hedra names frame shapes rather than ratios.
HEDRA_ASPECT_ALIASES = {"16:9": "horizontal", "9:16": "vertical"}

_SUCCESS_STATUSES = {"completed", "complete", "success", "succeeded", "done"}
_FAILURE_STATUSES = {"failed", "error", "cancelled", "canceled"}
_STATUS_PROGRESS = {"queued": 5, "pending": 5, "processing": 50, "in_progress": 50}


class HedraProvider:
    """Hedra Character-2 portrait animation."""

    provider_id = "hedra"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        api_base: str = "https://www.hedra.com/api/v1",
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base = api_base.rstrip("/")
        self._http = build_http_client(
            headers={
                "Authorization": f"Bearer {self._api_key}",
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
            raise Unconfigured("HEDRA_API_KEY is required for the hedra provider")

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        self._require_configured()
        payload = {
            "imageSource": image_url,
            "audioSource": audio_url,
            "aspectRatio": HEDRA_ASPECT_ALIASES.get(aspect_ratio, "horizontal"),
        }
        data = await request_json(
            self._http, "POST", f"{self._base}/portrait", json=payload, provider="Hedra", phase="submit"
        )
        job_id = require_job_id(data, "jobId", "job_id", "id", provider="Hedra")
        return JobHandle(provider_id=self.provider_id, external_job_id=job_id)

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        self._require_configured()
        data = await request_json(
            self._http,
            "GET",
            f"{self._base}/portrait/{handle.external_job_id}",
            provider="Hedra",
            phase="status",
        )
        return self.normalize(data)

    @staticmethod
    def normalize(data: dict[str, Any]) -> JobOutcome:
        status = str(data.get("status") or "").strip().lower()
        if status in _SUCCESS_STATUSES:
            url = extract_result_url(data)
            if not url:
                return JobOutcome.failed("Hedra reported completion without a video URL")
            return JobOutcome.succeeded(url)
        if status in _FAILURE_STATUSES:
            return JobOutcome.failed(extract_error_message(data) or f"Hedra job ended with status {status}")

        progress = normalize_progress(data.get("progress"), fraction=True)
        if progress is None:
            progress = _STATUS_PROGRESS.get(status)
        return JobOutcome.pending(progress)

    async def aclose(self) -> None:
        await self._http.aclose()
