from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx

from talkflair.errors import StatusCheckFailed, SubmissionRejected


ASPECT_RATIOS = ("16:9", "9:16")
DEFAULT_ASPECT_RATIO = "16:9"


class JobState(str, Enum):
    """Provider-neutral job states."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in {JobState.SUCCEEDED, JobState.FAILED}


@dataclass(frozen=True, slots=True)
class JobHandle:
    """Identifies one provider-side job; created by a successful submit."""

    provider_id: str
    external_job_id: str
    submitted_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """Normalized result of one status query (or of the whole poll loop)."""

    state: JobState
    progress: Optional[int] = None
    result_url: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def pending(cls, progress: Optional[int] = None) -> "JobOutcome":
        return cls(state=JobState.PENDING, progress=progress)

    @classmethod
    def succeeded(cls, result_url: str) -> "JobOutcome":
        return cls(state=JobState.SUCCEEDED, progress=100, result_url=result_url)

    @classmethod
    def failed(cls, reason: str) -> "JobOutcome":
        return cls(state=JobState.FAILED, reason=reason)

    @classmethod
    def timed_out(cls, progress: Optional[int] = None) -> "JobOutcome":
        return cls(
            state=JobState.TIMED_OUT,
            progress=progress,
            reason="Timed out waiting for the generation job to finish",
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class GenerationProvider(Protocol):
    """Adapter protocol: one submit call and one status call per provider."""

    provider_id: str

    @property
    def is_configured(self) -> bool: ...

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        raise NotImplementedError

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        raise NotImplementedError

    async def aclose(self) -> None: ...


def is_http_url(value: Any) -> bool:
    """Return True when value is an absolute HTTP(S) URL."""
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def normalize_progress(value: Any, *, fraction: bool = False) -> Optional[int]:
    """Coerce a provider progress hint to a 0..100 percentage.

    The scale is a property of the provider, not of the JSON number: with
    `fraction=True` the hint is read as 0..1 (so `1` means done), otherwise
    as a percentage.
    """
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if fraction:
        number *= 100.0
    return max(0, min(100, int(round(number))))


_RESULT_URL_KEYS = (
    "video_url",
    "videoUrl",
    "result_url",
    "resultUrl",
    "output_url",
    "url",
    "video",
    "mp4_url",
    "file_url",
)


def extract_result_url(output: Any) -> Optional[str]:
    """Best-effort URL extraction across common provider output schemas."""
    if is_http_url(output):
        return output.strip()

    if isinstance(output, list):
        for item in output:
            url = extract_result_url(item)
            if url:
                return url
        return None

    if isinstance(output, dict):
        for key in _RESULT_URL_KEYS:
            value = output.get(key)
            if is_http_url(value):
                return value.strip()
        for nested_key in ("output", "result", "data", "response"):
            if nested_key in output:
                url = extract_result_url(output[nested_key])
                if url:
                    return url
    return None


def extract_error_message(payload: Any) -> Optional[str]:
    """Best-effort extraction of human-readable error details from JSON payloads."""
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict):
                nested = extract_error_message(value)
                if nested:
                    return nested
        for nested_key in ("output", "result", "data", "response"):
            if nested_key in payload:
                nested = extract_error_message(payload[nested_key])
                if nested:
                    return nested
    if isinstance(payload, list):
        for item in payload:
            nested = extract_error_message(item)
            if nested:
                return nested
    return None


def build_http_client(*, headers: dict[str, str], timeout_seconds: float) -> httpx.AsyncClient:
    """Return a pooled keep-alive client shared by one adapter's submit/status calls."""
    return httpx.AsyncClient(
        timeout=timeout_seconds,
        headers=headers,
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        http2=True,
    )


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    phase: str,
    **kwargs: Any,
) -> dict[str, Any]:
    """Send one request and return its JSON object body.

    `phase` is "submit" or "status"; failures raise SubmissionRejected or
    StatusCheckFailed respectively, chained to the underlying httpx error.
    """
    error_cls = SubmissionRejected if phase == "submit" else StatusCheckFailed
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise error_cls(f"{provider} {phase} request error ({exc.__class__.__name__})") from exc

    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise error_cls(
            f"{provider} {phase} failed with status {response.status_code}",
            details=_safe_error_detail(response),
        ) from exc

    try:
        data = response.json()
    except ValueError as exc:
        raise error_cls(f"{provider} {phase} returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise error_cls(f"Expected JSON object from {provider} {phase}, got {type(data).__name__}")
    return data


def _safe_error_detail(response: httpx.Response) -> Optional[str]:
    try:
        return extract_error_message(response.json())
    except ValueError:
        text = (response.text or "").strip()
        return text[:500] or None


def require_job_id(data: dict[str, Any], *keys: str, provider: str) -> str:
    """Return the first non-empty job id found under `keys` or raise SubmissionRejected."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    raise SubmissionRejected(
        f"{provider} submit response missing job id",
        details=extract_error_message(data),
    )
