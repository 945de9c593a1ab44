"""Generation router: video, image and text creation plus premium video operations."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_account_context, get_auth_context, get_optional_account_context
from routers.credits import usage_bucket_for
from routers.rate_limit import rate_limit
from services.errors import (
    InsufficientCredits,
    NetworkTimeout,
    NotFound,
    OperationTimeout,
    ProviderTierFailed,
)
from services.generation import GenerationResult, generate, submit_video_operation
from services.providers import (
    BaseGenerationProvider,
    GenerationRequest,
    get_veo_provider,
    image_provider_chain,
    text_provider_chain,
    video_provider_chain,
)
from services.providers.veo import POLL_MAX_ATTEMPTS, VeoVideoProvider, backoff_delay, wait_for_operation
from services.usage_limits import DailyUsageCounter, get_daily_usage_counter

router = APIRouter()
logger = logging.getLogger(__name__)


class VideoGenerationRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    story_type: str = "cinematic"
    aspect_ratio: str = "9:16"
    model: Optional[str] = None
    use_free_mode: bool = False


class VideoOperationRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    aspect_ratio: str = "9:16"
    duration: int = Field(default=8, ge=1, le=8)


class ImageGenerationRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    style: str = "photorealistic"
    size: str = "1024x1024"
    model: Optional[str] = None


class TextGenerationRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=8000)
    model: Optional[str] = None
    max_tokens: int = Field(default=800, ge=16, le=4000)


async def _run_generation(
    generation_request: GenerationRequest,
    db: AsyncSession,
    providers: List[BaseGenerationProvider],
    counter: DailyUsageCounter,
    bucket: str,
) -> GenerationResult:
    try:
        return await generate(
            generation_request,
            db,
            providers=providers,
            usage_counter=counter,
            usage_bucket=bucket,
        )
    except InsufficientCredits as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/video")
async def generate_video(
    request: VideoGenerationRequest,
    http_request: Request,
    _rate_limit: None = Depends(rate_limit("generate_video", limit=30, window_seconds=3600)),
    auth: Optional[AuthContext] = Depends(get_optional_account_context),
    providers: List[BaseGenerationProvider] = Depends(video_provider_chain),
    counter: DailyUsageCounter = Depends(get_daily_usage_counter),
    db: AsyncSession = Depends(get_db),
):
    """Generate a short video. Anonymous callers draw on the daily free allowance."""
    user_id = auth.user_id if auth else None

    generation_request = GenerationRequest(
        content_type="video",
        prompt=request.prompt,
        options={"story_type": request.story_type, "aspect_ratio": request.aspect_ratio},
        model=request.model,
        user_id=user_id,
        use_free_mode=request.use_free_mode,
    )
    result = await _run_generation(generation_request, db, providers, counter, usage_bucket_for(http_request))
    return {"success": True, **result.as_dict()}


@router.post("/image")
async def generate_image(
    request: ImageGenerationRequest,
    http_request: Request,
    _rate_limit: None = Depends(rate_limit("generate_image", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    providers: List[BaseGenerationProvider] = Depends(image_provider_chain),
    counter: DailyUsageCounter = Depends(get_daily_usage_counter),
    db: AsyncSession = Depends(get_db),
):
    generation_request = GenerationRequest(
        content_type="image",
        prompt=request.prompt,
        options={"style": request.style, "size": request.size},
        model=request.model,
        user_id=auth.user_id,
    )
    result = await _run_generation(generation_request, db, providers, counter, usage_bucket_for(http_request))
    return {"success": True, **result.as_dict()}


@router.post("/text")
async def generate_text(
    request: TextGenerationRequest,
    http_request: Request,
    _rate_limit: None = Depends(rate_limit("generate_text", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    providers: List[BaseGenerationProvider] = Depends(text_provider_chain),
    counter: DailyUsageCounter = Depends(get_daily_usage_counter),
    db: AsyncSession = Depends(get_db),
):
    generation_request = GenerationRequest(
        content_type="text",
        prompt=request.prompt,
        options={"max_tokens": request.max_tokens},
        model=request.model,
        user_id=auth.user_id,
    )
    result = await _run_generation(generation_request, db, providers, counter, usage_bucket_for(http_request))
    return {"success": True, **result.as_dict()}


@router.post("/video/operations")
async def start_video_operation(
    request: VideoOperationRequest,
    _rate_limit: None = Depends(rate_limit("generate_video_operation", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    provider: VeoVideoProvider = Depends(get_veo_provider),
    db: AsyncSession = Depends(get_db),
):
    """Submit a long-running premium video job; poll it via the operations endpoint."""
    if not provider.is_configured():
        raise HTTPException(status_code=503, detail="Premium video provider is not configured.")

    generation_request = GenerationRequest(
        content_type="video",
        prompt=request.prompt,
        options={"aspect_ratio": request.aspect_ratio, "duration": request.duration},
        model=settings.VEO_PREMIUM_MODEL_ALIAS,
        user_id=auth.user_id,
    )
    try:
        return await submit_video_operation(generation_request, db, provider)
    except InsufficientCredits as exc:
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ProviderTierFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get("/video/operations/{operation_name:path}")
async def get_video_operation(
    operation_name: str,
    attempt: int = Query(default=1, ge=1),
    wait_attempts: int = Query(default=0, ge=0, le=POLL_MAX_ATTEMPTS),
    _auth: AuthContext = Depends(get_auth_context),
    provider: VeoVideoProvider = Depends(get_veo_provider),
):
    """Check a premium video job.

    ``attempt`` only shapes the ``retry_after_seconds`` hint. With
    ``wait_attempts`` the server keeps polling with backoff before answering.
    """
    retry_after = backoff_delay(attempt)
    try:
        if wait_attempts:
            status = await wait_for_operation(provider, operation_name, max_attempts=wait_attempts)
        else:
            status = await provider.poll_operation(operation_name)
    except NetworkTimeout:
        return JSONResponse(
            status_code=408,
            content={
                "status": "processing",
                "message": "Status check timed out, video may still be processing",
                "retry_after_seconds": retry_after,
            },
        )
    except OperationTimeout as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except ProviderTierFailed as exc:
        logger.warning("Video operation status check failed for %s: %s", operation_name, exc)
        return JSONResponse(
            status_code=503,
            content={
                "status": "processing",
                "message": "Unable to check video status right now",
                "retry_after_seconds": retry_after,
            },
        )

    if status.state == "rejected":
        return JSONResponse(
            status_code=400,
            content={
                "status": "failed",
                "error": "Video generation failed due to content policy",
                "reason": status.reason,
            },
        )
    if status.state == "completed":
        return {"status": "completed", "video_url": status.video_url, "metadata": status.metadata}
    return {
        "status": "processing",
        "message": "Video is still being generated",
        "retry_after_seconds": retry_after,
        "metadata": status.metadata,
    }
