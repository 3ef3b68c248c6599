from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateUrlsRequest(_CamelModel):
    """JSON body for /generate when both inputs are already publicly hosted."""

    image_url: str = Field(..., alias="imageUrl", min_length=1)
    audio_url: str = Field(..., alias="audioUrl", min_length=1)
    aspect_ratio: Optional[Literal["16:9", "9:16"]] = Field(None, alias="aspectRatio")
    mode: Optional[Literal["synced", "deferred"]] = None


class GenerateResponse(_CamelModel):
    success: Literal[True] = True
    video_url: str = Field(..., alias="videoUrl")
    job_id: str = Field(..., alias="jobId")


class GenerateAcceptedResponse(_CamelModel):
    success: Literal[True] = True
    job_id: str = Field(..., alias="jobId")
    status: Literal["pending"] = "pending"
    status_url: str = Field(..., alias="statusUrl")


class StatusResponse(_CamelModel):
    job_id: str = Field(..., alias="jobId")
    status: Literal["pending", "completed", "failed"]
    video_url: Optional[str] = Field(None, alias="videoUrl")
    progress: Optional[int] = Field(None, ge=0, le=100)
    error: Optional[str] = None


class UploadResponse(_CamelModel):
    success: Literal[True] = True
    url: str
    storage_id: str = Field(..., alias="storageId")
    size_bytes: int = Field(..., alias="sizeBytes")
    mime_type: str = Field(..., alias="mimeType")


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    details: Optional[Any] = None
    retryable: bool = False


class HealthResponse(_CamelModel):
    service: str = "talkflair-lipsync"
    status: Literal["ok", "degraded"]
    storage: bool
    provider: bool
    provider_name: str = Field(..., alias="providerName")
    response_mode: str = Field(..., alias="responseMode")
    enhancer: bool
    provider_init_error: Optional[str] = Field(None, alias="providerInitError")
