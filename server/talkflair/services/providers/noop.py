from __future__ import annotations

from talkflair.errors import Unconfigured
from talkflair.services.providers.base import JobHandle, JobOutcome


class UnavailableProvider:
    """Stand-in adapter used when the configured provider could not be built.

    Keeps the service bootable so /health can report what is wrong; every job
    operation fails with the original configuration error.
    """

    provider_id = "unavailable"
    is_configured = False

    def __init__(self, reason: str) -> None:
        self.reason = reason

    async def submit(self, *, image_url: str, audio_url: str, aspect_ratio: str) -> JobHandle:
        _ = image_url, audio_url, aspect_ratio
        raise Unconfigured(f"Generation provider not configured: {self.reason}")

    async def query_status(self, handle: JobHandle) -> JobOutcome:
        _ = handle
        raise Unconfigured(f"Generation provider not configured: {self.reason}")

    async def aclose(self) -> None:
        return None
