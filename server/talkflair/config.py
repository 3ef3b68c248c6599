"""Configuration helpers for the lip-sync gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional


VALID_RESPONSE_MODES = ("synced", "deferred")
VALID_PROVIDERS = ("hedra", "runpod", "visionstory", "replicate")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value or default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class Settings:
    """Centralized configuration for one gateway process.

    Built once at startup (see `Settings.from_env`) and handed to the app
    factory, which passes it down to the storage client, the provider adapter
    and the poller. Request handling code never reads the environment itself.
    """

    # Cloudinary object storage for the uploaded portrait and audio.
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_image_folder: str = "talkflair/images"
    cloudinary_audio_folder: str = "talkflair/audio"

    # Which generation provider adapter to build: hedra, runpod, visionstory, replicate.
    generation_provider: str = "hedra"
    hedra_api_key: Optional[str] = None
    hedra_api_base: str = "https://www.hedra.com/api/v1"
    runpod_api_key: Optional[str] = None
    runpod_api_base: str = "https://api.runpod.ai/v2"
    runpod_endpoint_id: Optional[str] = None
    visionstory_api_key: Optional[str] = None
    visionstory_api_base: str = "https://openapi.visionstory.ai/api/v1"
    visionstory_model_id: str = "vs_talk_v1"
    replicate_api_token: Optional[str] = None
    replicate_api_base: str = "https://api.replicate.com/v1"
    replicate_model_version: Optional[str] = None

    # Optional audio clean-up before upload; disabled when no key is set.
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_api_base: str = "https://api.elevenlabs.io/v1"
    elevenlabs_timeout_seconds: float = 60.0

    # Delivery strategy for /generate:
    # - synced: hold the request open and poll the provider to a terminal state
    # - deferred: return the job id right away; callers poll /status/{job_id}
    response_mode: str = "synced"
    poll_interval_seconds: float = 10.0
    poll_max_attempts: int = 30
    poll_max_consecutive_failures: int = 3
    # Per network call; independent of poll_interval_seconds * poll_max_attempts.
    request_timeout_seconds: float = 30.0

    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Read every knob from the process environment."""
        origins = _env_str("CORS_ALLOW_ORIGINS", "*") or "*"
        return cls(
            cloudinary_cloud_name=_env_str("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=_env_str("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=_env_str("CLOUDINARY_API_SECRET"),
            cloudinary_image_folder=_env_str("CLOUDINARY_IMAGE_FOLDER", "talkflair/images") or "",
            cloudinary_audio_folder=_env_str("CLOUDINARY_AUDIO_FOLDER", "talkflair/audio") or "",
            generation_provider=(_env_str("GENERATION_PROVIDER", "hedra") or "hedra").lower(),
            hedra_api_key=_env_str("HEDRA_API_KEY"),
            hedra_api_base=_env_str("HEDRA_API_BASE", cls.hedra_api_base) or cls.hedra_api_base,
            runpod_api_key=_env_str("RUNPOD_API_KEY"),
            runpod_api_base=_env_str("RUNPOD_API_BASE", cls.runpod_api_base) or cls.runpod_api_base,
            runpod_endpoint_id=_env_str("RUNPOD_ENDPOINT_ID"),
            visionstory_api_key=_env_str("VISIONSTORY_API_KEY"),
            visionstory_api_base=_env_str("VISIONSTORY_API_BASE", cls.visionstory_api_base)
            or cls.visionstory_api_base,
            visionstory_model_id=_env_str("VISIONSTORY_MODEL_ID", cls.visionstory_model_id)
            or cls.visionstory_model_id,
            replicate_api_token=_env_str("REPLICATE_API_TOKEN"),
            replicate_api_base=_env_str("REPLICATE_API_BASE", cls.replicate_api_base)
            or cls.replicate_api_base,
            replicate_model_version=_env_str("REPLICATE_MODEL_VERSION"),
            elevenlabs_api_key=_env_str("ELEVENLABS_API_KEY"),
            elevenlabs_api_base=_env_str("ELEVENLABS_API_BASE", cls.elevenlabs_api_base)
            or cls.elevenlabs_api_base,
            elevenlabs_timeout_seconds=_env_float("ELEVENLABS_TIMEOUT_SECONDS", 60.0),
            response_mode=(_env_str("RESPONSE_MODE", "synced") or "synced").lower(),
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 10.0),
            poll_max_attempts=_env_int("POLL_MAX_ATTEMPTS", 30),
            poll_max_consecutive_failures=_env_int("POLL_MAX_CONSECUTIVE_FAILURES", 3),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", 30.0),
            host=_env_str("HOST", "0.0.0.0") or "0.0.0.0",
            port=_env_int("PORT", 8000),
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 50),
            cors_allow_origins=[item.strip() for item in origins.split(",") if item.strip()],
            log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    @property
    def max_upload_bytes(self) -> int:
        return max(1, self.max_upload_mb) * 1024 * 1024

    @property
    def storage_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret
        )

    @property
    def enhancer_configured(self) -> bool:
        return bool(self.elevenlabs_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings.from_env()
