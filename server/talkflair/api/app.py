from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import FormData
from starlette.datastructures import UploadFile as StarletteUploadFile

from talkflair import __version__
from talkflair.api.models import (
    ErrorResponse,
    GenerateAcceptedResponse,
    GenerateResponse,
    GenerateUrlsRequest,
    HealthResponse,
    StatusResponse,
    UploadResponse,
)
from talkflair.config import Settings, get_settings
from talkflair.errors import InvalidInput, MissingInput, TalkflairError
from talkflair.services.generation import (
    GenerationService,
    MediaInput,
    build_generation_service,
    normalize_response_mode,
)
from talkflair.services.providers import build_provider
from talkflair.services.providers.base import JobState
from talkflair.services.providers.noop import UnavailableProvider
from talkflair.services.storage import AssetKind

logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    JobState.PENDING: "pending",
    JobState.SUCCEEDED: "completed",
    JobState.FAILED: "failed",
    JobState.TIMED_OUT: "pending",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _media_from_form(form: FormData, kind: AssetKind) -> Optional[MediaInput]:
    """Read `image`/`audio` as an uploaded file, or `imageUrl`/`audioUrl` as a URL."""
    value = form.get(kind.value)
    if isinstance(value, StarletteUploadFile):
        data = await value.read()
        return MediaInput(
            kind=kind,
            data=data,
            filename=value.filename,
            mime_type=value.content_type,
        )
    url = form.get(f"{kind.value}Url") or (value if isinstance(value, str) else None)
    if isinstance(url, str) and url.strip():
        return MediaInput(kind=kind, url=url.strip())
    return None


async def _parse_generate_request(
    request: Request,
) -> tuple[Optional[MediaInput], Optional[MediaInput], Optional[str], Optional[str]]:
    content_type = (request.headers.get("content-type") or "").lower()
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError as exc:
            raise InvalidInput("Request body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise InvalidInput("Request body must be a JSON object")
        if not payload.get("imageUrl") or not payload.get("audioUrl"):
            raise MissingInput("Both imageUrl and audioUrl are required")
        try:
            body = GenerateUrlsRequest.model_validate(payload)
        except ValidationError as exc:
            raise InvalidInput(
                "Invalid generate request",
                details=[error.get("msg") for error in exc.errors()],
            ) from exc
        return (
            MediaInput(kind=AssetKind.IMAGE, url=body.image_url),
            MediaInput(kind=AssetKind.AUDIO, url=body.audio_url),
            body.aspect_ratio,
            body.mode,
        )

    form = await request.form()
    image = await _media_from_form(form, AssetKind.IMAGE)
    audio = await _media_from_form(form, AssetKind.AUDIO)
    aspect_ratio = form.get("aspectRatio")
    mode = form.get("mode")
    return (
        image,
        audio,
        aspect_ratio if isinstance(aspect_ratio, str) else None,
        mode if isinstance(mode, str) else None,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    service: Optional[GenerationService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings.log_level)

    provider_init_error: Optional[str] = None
    if service is None:
        try:
            provider = build_provider(settings)
        except TalkflairError as exc:
            # Keep booting; /health reports the misconfiguration.
            logger.error("Generation provider unavailable: %s", exc)
            provider = UnavailableProvider(str(exc))
            provider_init_error = str(exc)
        service = build_generation_service(settings, provider=provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "TalkFlair %s starting: provider=%s mode=%s storage=%s",
            __version__,
            service.provider.provider_id,
            service.response_mode,
            "configured" if service.storage.is_configured else "missing",
        )
        yield
        await app.state.service.aclose()

    app = FastAPI(title="TalkFlair LipSync Gateway", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.provider_init_error = provider_init_error

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TalkflairError)
    async def talkflair_error_handler(request: Request, exc: TalkflairError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        body = ErrorResponse(error=exc.message, details=exc.details, retryable=exc.retryable)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "%s %s crashed: %s",
            request.method,
            request.url.path,
            exc.__class__.__name__,
            exc_info=exc,
        )
        body = ErrorResponse(error="Internal server error", details=exc.__class__.__name__)
        return JSONResponse(status_code=500, content=body.model_dump())

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "message": "TalkFlair lip-sync video generator",
            "version": __version__,
            "provider": app.state.service.provider.provider_id,
        }

    @app.get("/health", response_model=HealthResponse, response_model_by_alias=True)
    async def health() -> HealthResponse:
        svc: GenerationService = app.state.service
        storage_ok = svc.storage.is_configured
        provider_ok = bool(svc.provider.is_configured)
        return HealthResponse(
            status="ok" if storage_ok and provider_ok else "degraded",
            storage=storage_ok,
            provider=provider_ok,
            provider_name=svc.provider.provider_id,
            response_mode=svc.response_mode,
            enhancer=bool(svc.enhancer is not None and svc.enhancer.is_configured),
            provider_init_error=app.state.provider_init_error,
        )

    @app.post(
        "/generate",
        response_model=GenerateResponse,
        response_model_by_alias=True,
        responses={
            202: {"model": GenerateAcceptedResponse},
            400: {"model": ErrorResponse},
            408: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
        },
    )
    async def generate(request: Request) -> Any:
        svc: GenerationService = app.state.service
        image, audio, aspect_ratio, requested_mode = await _parse_generate_request(request)
        mode = normalize_response_mode(requested_mode, svc.response_mode)

        if mode == "deferred":
            job = await svc.submit(image, audio, aspect_ratio)
            job_id = job.handle.external_job_id
            accepted = GenerateAcceptedResponse(
                job_id=job_id,
                status_url=str(request.url_for("job_status", job_id=job_id)),
            )
            return JSONResponse(status_code=202, content=accepted.model_dump(by_alias=True))

        result = await svc.generate(
            image,
            audio,
            aspect_ratio,
            should_cancel=request.is_disconnected,
        )
        return GenerateResponse(video_url=result.video_url, job_id=result.job_id)

    @app.get(
        "/status/{job_id}",
        name="job_status",
        response_model=StatusResponse,
        response_model_by_alias=True,
        response_model_exclude_none=True,
    )
    async def job_status(job_id: str) -> StatusResponse:
        svc: GenerationService = app.state.service
        outcome = await svc.status(job_id)
        return StatusResponse(
            job_id=job_id,
            status=_STATUS_LABELS[outcome.state],
            video_url=outcome.result_url,
            progress=outcome.progress,
            error=outcome.reason if outcome.state == JobState.FAILED else None,
        )

    async def _upload_one(file: Optional[UploadFile], kind: AssetKind) -> UploadResponse:
        svc: GenerationService = app.state.service
        if file is None:
            raise MissingInput(f"No {kind.value} file provided")
        media = MediaInput(
            kind=kind,
            data=await file.read(),
            filename=file.filename,
            mime_type=file.content_type,
        )
        asset = await svc.upload_single(media, kind)
        return UploadResponse(
            url=asset.remote_url,
            storage_id=asset.storage_id,
            size_bytes=asset.size_bytes,
            mime_type=asset.mime_type,
        )

    @app.post("/upload/image", response_model=UploadResponse, response_model_by_alias=True)
    async def upload_image(image: Optional[UploadFile] = File(None)) -> UploadResponse:
        return await _upload_one(image, AssetKind.IMAGE)

    @app.post("/upload/audio", response_model=UploadResponse, response_model_by_alias=True)
    async def upload_audio(audio: Optional[UploadFile] = File(None)) -> UploadResponse:
        return await _upload_one(audio, AssetKind.AUDIO)

    return app


def main() -> None:
    """Entry point for the `talkflair` console script."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
