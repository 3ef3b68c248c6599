from __future__ import annotations

import re
from typing import Any, Optional

from talkflair.errors import Unconfigured
from talkflair.services.providers.base import (
    JobHandle,
    JobOutcome,
    build_http_client,
    extract_result_url,
    request_json,
    require_job_id,
)


_STATUS_PROGRESS = {"starting": 10, "processing": 50}
# Cog models log tqdm-style bars; the last percentage seen is the best hint we get.
_PERCENT_RE = re.compile(r"(\d{1,3})%")


def _progress_from_logs(logs: Any) -> Optional[int]:
    if not isinstance(logs, str) or not logs:
        return None
    matches = _PERCENT_RE.findall(logs)
    if not matches:
        return None
    return max(0, min(99, int(matches[-1])))


class ReplicateProvider:
    """Replicate predictions API running a lip-sync model version."""

    provider_id = "replicate"

    def __init__(
        self,
        *,
        api_token: Optional[str],
        model_version: Optional[str],
        api_base: str = "https://api.replicate.com/v1",
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._api_token = (api_token or "").strip()
        self._model_version = (model_version or "").strip()
        self._base = api_base.rstrip("/")
        self._http = build_http_client(
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout_seconds=request_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_token and self._model_version)

    def _require_configured(self) -> None:
        if not self._api_token:
            raise Unconfigured("REPLICATE_API_TOKEN is required for the replicate provider")
        if not self._model_version:
            raise Unconfigured("REPLICATE_MODEL_VERSION is required for the replicate provider")

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        self._require_configured()
        body = {
            "version": self._model_version,
            "input": {"image": image_url, "audio": audio_url, "aspect_ratio": aspect_ratio},
        }
        data = await request_json(
            self._http, "POST", f"{self._base}/predictions", json=body, provider="Replicate", phase="submit"
        )
        prediction_id = require_job_id(data, "id", provider="Replicate")
        return JobHandle(provider_id=self.provider_id, external_job_id=prediction_id)

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        self._require_configured()
        data = await request_json(
            self._http,
            "GET",
            f"{self._base}/predictions/{handle.external_job_id}",
            provider="Replicate",
            phase="status",
        )
        return self.normalize(data)

    @staticmethod
    def normalize(data: dict[str, Any]) -> JobOutcome:
        status = str(data.get("status") or "").strip().lower()
        if status == "succeeded":
            # Output can be a string URL or a list of them.
            url = extract_result_url(data.get("output"))
            if not url:
                return JobOutcome.failed("Replicate prediction succeeded without a video URL")
            return JobOutcome.succeeded(url)
        if status == "failed":
            return JobOutcome.failed(str(data.get("error") or "Replicate prediction failed"))
        if status == "canceled":
            return JobOutcome.failed("Replicate prediction was canceled")

        progress = _progress_from_logs(data.get("logs"))
        if progress is None:
            progress = _STATUS_PROGRESS.get(status)
        return JobOutcome.pending(progress)

    async def aclose(self) -> None:
        await self._http.aclose()
