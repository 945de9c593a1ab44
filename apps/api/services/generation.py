"""Generation orchestration: entitlement, provider fallback and ledger reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from services import ledger
from services.errors import InsufficientCredits, ProviderTierFailed
from services.providers.base import BaseGenerationProvider
from services.providers.types import (
    GenerationRequest,
    ProviderFailed,
    ProviderSuccess,
    ProviderUnavailable,
)
from services.providers.veo import VeoVideoProvider
from services.samples import DEMO_FALLBACK_VIDEO, demo_text, pick_sample_image, pick_sample_video
from services.usage_limits import ANONYMOUS_BUCKET, DailyUsageCounter

logger = logging.getLogger(__name__)

GENERATION_COST = 1


class GenerationState(str, Enum):
    REJECTED_NO_CREDIT = "rejected_no_credit"
    FREE_SAMPLE = "free_sample"
    PROVIDER_SUCCESS = "provider_success"
    DEMO_FALLBACK = "demo_fallback"


@dataclass
class GenerationResult:
    state: GenerationState
    content_type: str
    media_url: Optional[str] = None
    text: Optional[str] = None
    provider: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    charged: int = 0
    balance_after: Optional[int] = None
    creation_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "content_type": self.content_type,
            "url": self.media_url,
            "download_url": self.media_url,
            "text": self.text,
            "provider": self.provider,
            "charged": self.charged,
            "credits_remaining": self.balance_after,
            "creation_id": self.creation_id,
            "metadata": self.metadata,
        }


def _request_metadata(request: GenerationRequest) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"prompt": request.prompt, "model": request.model}
    if request.content_type == "video":
        metadata["story_type"] = request.option("story_type")
        metadata["aspect_ratio"] = request.option("aspect_ratio")
    elif request.content_type == "image":
        metadata["style"] = request.option("style")
        metadata["size"] = request.option("size")
    return metadata


def _free_sample(request: GenerationRequest) -> Tuple[Optional[str], Optional[str]]:
    if request.content_type == "video":
        return pick_sample_video(request.option("story_type", "default"), request.option("aspect_ratio", "9:16")), None
    if request.content_type == "image":
        return pick_sample_image(request.option("style", "photorealistic"), request.option("size", "1024x1024")), None
    return None, demo_text(request.prompt, request.model or "")


def _demo_fallback(request: GenerationRequest, *, charged: bool) -> Tuple[Optional[str], Optional[str], str]:
    suffix = " Credits deducted for generation attempt." if charged else ""
    if request.content_type == "video":
        story_type = request.option("story_type", "default")
        note = f"DEMO MODE: All video APIs unavailable. Sample {story_type} video provided.{suffix}"
        return DEMO_FALLBACK_VIDEO, None, note
    if request.content_type == "image":
        style = request.option("style", "photorealistic")
        size = request.option("size", "1024x1024")
        note = f"DEMO MODE: Sample {style} image ({size}). The image API may require a valid key or credits.{suffix}"
        return pick_sample_image(style, size), None, note
    note = f"DEMO MODE: Text provider unavailable. Placeholder text provided.{suffix}"
    return None, demo_text(request.prompt, request.model or ""), note


async def run_provider_chain(
    request: GenerationRequest,
    providers: Sequence[BaseGenerationProvider],
) -> Tuple[Optional[ProviderSuccess], List[Dict[str, str]]]:
    """Try each tier in order and stop at the first success."""
    attempts: List[Dict[str, str]] = []
    for provider in providers:
        outcome = await provider.run(request)
        if isinstance(outcome, ProviderSuccess):
            attempts.append({"provider": outcome.provider, "outcome": "success"})
            return outcome, attempts
        if isinstance(outcome, ProviderUnavailable):
            attempts.append({"provider": outcome.provider, "outcome": "unavailable", "reason": outcome.reason})
        elif isinstance(outcome, ProviderFailed):
            attempts.append({"provider": outcome.provider, "outcome": "failed", "reason": outcome.reason})
    return None, attempts


def _resolve_outcome(
    request: GenerationRequest,
    success: Optional[ProviderSuccess],
    attempts: List[Dict[str, str]],
    providers: Sequence[BaseGenerationProvider],
    *,
    charged: bool,
) -> GenerationResult:
    metadata = _request_metadata(request)
    if success is not None:
        metadata.update(success.metadata)
        metadata["provider_attempts"] = attempts
        return GenerationResult(
            state=GenerationState.PROVIDER_SUCCESS,
            content_type=request.content_type,
            media_url=success.media_url,
            text=success.text,
            provider=success.provider,
            metadata=metadata,
        )

    logger.warning("All %s providers failed, using demo fallback", request.content_type)
    media_url, text, note = _demo_fallback(request, charged=charged)
    metadata.update(
        {
            "mode": "demo_fallback",
            "error": "All APIs Failed",
            "note": note,
            "providers_tried": [provider.label for provider in providers],
            "provider_attempts": attempts,
        }
    )
    return GenerationResult(
        state=GenerationState.DEMO_FALLBACK,
        content_type=request.content_type,
        media_url=media_url,
        text=text,
        metadata=metadata,
    )


def _free_sample_result(request: GenerationRequest, note: str, **extra: Any) -> GenerationResult:
    media_url, text = _free_sample(request)
    metadata = _request_metadata(request)
    metadata.update({"mode": "free_sample", "note": note, "source": "Free samples", **extra})
    return GenerationResult(
        state=GenerationState.FREE_SAMPLE,
        content_type=request.content_type,
        media_url=media_url,
        text=text,
        metadata=metadata,
    )


async def _generate_anonymous(
    request: GenerationRequest,
    providers: Sequence[BaseGenerationProvider],
    usage_counter: DailyUsageCounter,
    usage_bucket: str,
) -> GenerationResult:
    decision = await usage_counter.consume(usage_bucket)
    if not decision.allowed:
        logger.info("Anonymous daily free limit reached bucket=%s date=%s", usage_bucket, decision.date)
        raise InsufficientCredits(
            f"Daily free limit reached ({decision.cap} {request.content_type}). "
            "Please sign up for more creations."
        )

    if request.use_free_mode:
        return _free_sample_result(
            request,
            "Free mode: Using sample video to save costs.",
            remaining_free_videos=decision.remaining,
        )

    success, attempts = await run_provider_chain(request, providers)
    result = _resolve_outcome(request, success, attempts, providers, charged=False)
    result.metadata["remaining_free_videos"] = decision.remaining
    return result


async def _generate_for_account(
    request: GenerationRequest,
    db: AsyncSession,
    providers: Sequence[BaseGenerationProvider],
) -> GenerationResult:
    user_id = request.user_id
    if request.use_free_mode:
        return _free_sample_result(request, "Free mode: Using sample content to save credits.")

    # The atomic debit doubles as the entitlement check.
    debit = await ledger.debit_one(user_id, db)
    try:
        success, attempts = await run_provider_chain(request, providers)
        result = _resolve_outcome(request, success, attempts, providers, charged=True)
    except Exception:
        logger.exception("Generation aborted for user %s; refunding credit", user_id)
        await ledger.credit(user_id, db, GENERATION_COST)
        raise

    result.charged = GENERATION_COST
    result.balance_after = debit["balance_after"]
    result.metadata["remaining_credits"] = debit["balance_after"]

    creation_metadata = {key: value for key, value in result.metadata.items() if key != "prompt"}
    try:
        creation = await ledger.record_creation(
            user_id,
            db,
            content_type=request.content_type,
            prompt=request.prompt,
            result_url=result.media_url,
            metadata=creation_metadata,
            cost=GENERATION_COST,
        )
        result.creation_id = creation.id
    except Exception:
        await db.rollback()
        logger.exception("Creation log write failed for user %s (%s)", user_id, result.state.value)
    return result


async def generate(
    request: GenerationRequest,
    db: AsyncSession,
    *,
    providers: Sequence[BaseGenerationProvider],
    usage_counter: DailyUsageCounter,
    usage_bucket: str = ANONYMOUS_BUCKET,
) -> GenerationResult:
    """Resolve one generation request into exactly one terminal state.

    Raises ``InsufficientCredits`` for the rejected state; nothing is charged
    or recorded in that case.
    """
    if not request.prompt or not request.prompt.strip():
        raise ValueError("Prompt is required")

    try:
        if request.user_id:
            result = await _generate_for_account(request, db, providers)
        else:
            result = await _generate_anonymous(request, providers, usage_counter, usage_bucket)
    except InsufficientCredits:
        logger.info(
            "generation type=%s user=%s state=%s",
            request.content_type,
            request.user_id or "anonymous",
            GenerationState.REJECTED_NO_CREDIT.value,
        )
        raise

    logger.info(
        "generation type=%s user=%s state=%s provider=%s",
        request.content_type,
        request.user_id or "anonymous",
        result.state.value,
        result.provider,
    )
    return result


async def submit_video_operation(
    request: GenerationRequest,
    db: AsyncSession,
    provider: VeoVideoProvider,
) -> Dict[str, Any]:
    """Charge for and start a long-running premium video job.

    The credit is spent at submission. If the provider refuses the job, the
    credit is refunded and ``ProviderTierFailed`` propagates.
    """
    user_id = request.user_id
    debit = await ledger.debit_one(user_id, db)
    try:
        handle = await provider.submit_operation(request)
    except Exception as exc:
        logger.warning("Video operation submission failed for user %s: %s", user_id, exc)
        refund = await ledger.credit(user_id, db, GENERATION_COST)
        raise ProviderTierFailed(
            f"Video operation could not be started. Credit refunded (balance {refund['balance_after']})."
        ) from exc

    metadata = _request_metadata(request)
    metadata.pop("prompt", None)
    metadata.update({"mode": "async_operation", "provider": "veo-3.1", "operation": handle.name})
    creation = await ledger.record_creation(
        user_id,
        db,
        content_type="video",
        prompt=request.prompt,
        result_url=None,
        metadata=metadata,
        cost=GENERATION_COST,
    )
    return {
        "operation_id": handle.name,
        "status": "processing",
        "charged": GENERATION_COST,
        "credits_remaining": debit["balance_after"],
        "creation_id": creation.id,
    }
