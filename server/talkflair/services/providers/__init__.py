"""Generation provider adapters and configuration-driven selection."""
from __future__ import annotations

from talkflair.config import VALID_PROVIDERS, Settings
from talkflair.errors import Unconfigured
from talkflair.services.providers.base import (
    ASPECT_RATIOS,
    DEFAULT_ASPECT_RATIO,
    GenerationProvider,
    JobHandle,
    JobOutcome,
    JobState,
)
from talkflair.services.providers.hedra import HedraProvider
from talkflair.services.providers.replicate import ReplicateProvider
from talkflair.services.providers.runpod import RunPodProvider
from talkflair.services.providers.visionstory import VisionStoryProvider

__all__ = [
    "ASPECT_RATIOS",
    "DEFAULT_ASPECT_RATIO",
    "GenerationProvider",
    "HedraProvider",
    "JobHandle",
    "JobOutcome",
    "JobState",
    "ReplicateProvider",
    "RunPodProvider",
    "VisionStoryProvider",
    "build_provider",
]


def build_provider(settings: Settings) -> GenerationProvider:
    """Build the adapter named by `settings.generation_provider`.

    Missing credentials do not fail here; the adapter reports
    `is_configured = False` and raises Unconfigured on first use so the
    service can still boot and report itself through /health.
    """
    name = (settings.generation_provider or "").strip().lower()
    timeout = settings.request_timeout_seconds
    if name == "hedra":
        return HedraProvider(
            api_key=settings.hedra_api_key,
            api_base=settings.hedra_api_base,
            request_timeout_seconds=timeout,
        )
    if name == "runpod":
        return RunPodProvider(
            api_key=settings.runpod_api_key,
            endpoint_id=settings.runpod_endpoint_id,
            api_base=settings.runpod_api_base,
            request_timeout_seconds=timeout,
        )
    if name == "visionstory":
        return VisionStoryProvider(
            api_key=settings.visionstory_api_key,
            api_base=settings.visionstory_api_base,
            model_id=settings.visionstory_model_id,
            request_timeout_seconds=timeout,
        )
    if name == "replicate":
        return ReplicateProvider(
            api_token=settings.replicate_api_token,
            model_version=settings.replicate_model_version,
            api_base=settings.replicate_api_base,
            request_timeout_seconds=timeout,
        )
    raise Unconfigured(
        f"Unknown GENERATION_PROVIDER: {name!r}. Expected one of {', '.join(VALID_PROVIDERS)}"
    )
