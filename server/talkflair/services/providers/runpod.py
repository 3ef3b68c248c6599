from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from talkflair.errors import Unconfigured
from talkflair.services.providers.base import (
    JobHandle,
    JobOutcome,
    build_http_client,
    extract_result_url,
    normalize_progress,
    request_json,
    require_job_id,
)


class RunPodJobState(str, Enum):
    """Canonical RunPod serverless job states."""

    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in {
            RunPodJobState.COMPLETED,
            RunPodJobState.FAILED,
            RunPodJobState.CANCELLED,
            RunPodJobState.TIMED_OUT,
        }


# Coarse progress for handlers that do not report their own.
_STATE_PROGRESS = {
    RunPodJobState.IN_QUEUE: 5,
    RunPodJobState.IN_PROGRESS: 50,
    RunPodJobState.UNKNOWN: None,
}


class RunPodProvider:
    """Wav2Lip handler deployed on RunPod Serverless v2.

    Submits `{"input": {"face", "audio", "aspect_ratio"}}` to `/run` and
    reads `/status/{job_id}`.
    """

    provider_id = "runpod"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        endpoint_id: Optional[str],
        api_base: str = "https://api.runpod.ai/v2",
        request_timeout_seconds: float = 30.0,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._endpoint_id = (endpoint_id or "").strip()
        base = f"{api_base.rstrip('/')}/{self._endpoint_id}"
        self._run_url = f"{base}/run"
        self._status_url_template = f"{base}/status/{{job_id}}"
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
        return bool(self._api_key and self._endpoint_id)

    def _require_configured(self) -> None:
        if not self._api_key:
            raise Unconfigured("RUNPOD_API_KEY is required for the runpod provider")
        if not self._endpoint_id:
            raise Unconfigured("RUNPOD_ENDPOINT_ID is required for the runpod provider")

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        self._require_configured()
        body = {"input": {"face": image_url, "audio": audio_url, "aspect_ratio": aspect_ratio}}
        data = await request_json(self._http, "POST", self._run_url, json=body, provider="RunPod", phase="submit")
        job_id = require_job_id(data, "id", "job_id", provider="RunPod")
        return JobHandle(provider_id=self.provider_id, external_job_id=job_id)

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        self._require_configured()
        url = self._status_url_template.format(job_id=handle.external_job_id)
        data = await request_json(self._http, "GET", url, provider="RunPod", phase="status")
        return self.normalize(data)

    @staticmethod
    def normalize(data: dict[str, Any]) -> JobOutcome:
        raw_status = str(data.get("status") or "UNKNOWN").upper()
        try:
            state = RunPodJobState(raw_status)
        except ValueError:
            state = RunPodJobState.UNKNOWN

        output = data.get("output")
        if state == RunPodJobState.COMPLETED:
            url = extract_result_url(output)
            if not url:
                return JobOutcome.failed("RunPod completed without a video URL in output payload")
            return JobOutcome.succeeded(url)

        if state.is_terminal:
            error = data.get("error")
            if not error:
                # Different handlers may surface terminal reasons via "message".
                message = data.get("message")
                if isinstance(message, str) and message.strip():
                    error = message.strip()
            return JobOutcome.failed(str(error) if error else f"RunPod job ended in state {state.value}")

        progress = None
        if isinstance(output, dict):
            progress = normalize_progress(output.get("progress"))
        if progress is None:
            progress = _STATE_PROGRESS.get(state)
        return JobOutcome.pending(progress)

    async def aclose(self) -> None:
        """Close persistent HTTP resources used by this client."""
        await self._http.aclose()
