"""Veo (Google Generative Language API) premium video tier and long-running operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config import is_configured_key, settings
from services.errors import NetworkTimeout, OperationTimeout, ProviderTierFailed
from services.providers.base import BaseGenerationProvider
from services.providers.types import (
    GenerationRequest,
    OperationHandle,
    OperationStatus,
    ProviderSuccess,
)
from services.samples import DEMO_FALLBACK_VIDEO

logger = logging.getLogger(__name__)

VEO_VIDEO_DURATION = "8s"
POLL_BASE_DELAY_SECONDS = 10.0
POLL_BACKOFF_FACTOR = 1.5
POLL_MAX_DELAY_SECONDS = 30.0
POLL_MAX_ATTEMPTS = 60


def _dig(data: Any, *path: Any) -> Any:
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
    return current


def extract_inline_video_uri(data: Dict[str, Any]) -> Optional[str]:
    uri = _dig(data, "candidates", 0, "content", "parts", 0, "fileData", "videoUri")
    return uri if isinstance(uri, str) and uri.strip() else None


def extract_operation_video_uri(response: Dict[str, Any]) -> Optional[str]:
    candidates = (
        _dig(response, "generateVideoResponse", "generatedSamples", 0, "video", "uri"),
        _dig(response, "predictions", 0, "videoUrl"),
        _dig(response, "candidates", 0, "videoUrl"),
        _dig(response, "videoUrl"),
    )
    for uri in candidates:
        if isinstance(uri, str) and uri.strip():
            return uri
    return None


def backoff_delay(
    attempt: int,
    *,
    base: float = POLL_BASE_DELAY_SECONDS,
    factor: float = POLL_BACKOFF_FACTOR,
    cap: float = POLL_MAX_DELAY_SECONDS,
) -> float:
    """Delay before poll ``attempt`` (1-based), growing geometrically up to ``cap``."""
    step = max(int(attempt), 1) - 1
    return min(base * (factor ** step), cap)


class VeoVideoProvider(BaseGenerationProvider):
    name = "veo"
    label = "Veo"
    quality = "premium"

    def _api_key(self) -> str:
        return (settings.VEO_API_KEY or "").strip()

    def is_configured(self) -> bool:
        return is_configured_key(self._api_key())

    def is_available(self, request: GenerationRequest) -> Optional[str]:
        if request.model != settings.VEO_PREMIUM_MODEL_ALIAS:
            return "premium model not requested"
        if not self.is_configured():
            return "VEO_API_KEY not configured"
        return None

    def _model_url(self, method: str) -> str:
        base = settings.VEO_API_BASE_URL.rstrip("/")
        return f"{base}/models/{settings.VEO_MODEL}:{method}"

    async def _generate(self, request: GenerationRequest) -> ProviderSuccess:
        story_type = request.option("story_type", "cinematic")
        aspect_ratio = request.option("aspect_ratio", "9:16")
        payload = {
            "contents": [{"parts": [{"text": f"Generate a {story_type} style video: {request.prompt}"}]}],
            "generationConfig": {"aspectRatio": aspect_ratio, "videoDuration": VEO_VIDEO_DURATION},
        }
        data = await self._post_json(
            f"{self._model_url('generateContent')}?key={self._api_key()}",
            payload=payload,
            headers={"Content-Type": "application/json"},
        )
        video_uri = extract_inline_video_uri(data)
        if not video_uri:
            raise ProviderTierFailed("Veo response did not include a video URI")
        return ProviderSuccess(
            provider=self.name,
            media_url=video_uri,
            metadata={"provider": "veo-3.1", "quality": self.quality, "model": request.model},
        )

    async def submit_operation(self, request: GenerationRequest) -> OperationHandle:
        """Start a long-running generation and return its operation handle."""
        if not self.is_configured():
            raise ProviderTierFailed("VEO_API_KEY not configured")

        payload = {
            "instances": [{"prompt": request.prompt}],
            "parameters": {
                "aspectRatio": request.option("aspect_ratio", "9:16"),
                "durationSeconds": int(request.option("duration", 8)),
            },
        }
        data = await self._post_json(
            f"{self._model_url('predictLongRunning')}?key={self._api_key()}",
            payload=payload,
            headers={"Content-Type": "application/json"},
        )
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ProviderTierFailed("Veo did not return an operation name")
        logger.info("Veo operation submitted: %s", name)
        return OperationHandle(provider=self.name, name=name)

    async def poll_operation(self, name: str) -> OperationStatus:
        """Fetch the operation once and map it onto processing / completed / rejected."""
        base = settings.VEO_API_BASE_URL.rstrip("/")
        url = f"{base}/{name.lstrip('/')}"
        try:
            async with self._http_client() as client:
                response = await client.get(
                    url,
                    params={"key": self._api_key()},
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise NetworkTimeout("Veo status check timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderTierFailed(f"Veo status check failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderTierFailed(f"Veo status check returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderTierFailed("Veo status check returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ProviderTierFailed("Veo status check returned an unexpected payload")

        if not data.get("done"):
            return OperationStatus(state="processing", metadata=data.get("metadata") or {})

        result = data.get("response") or {}
        filtered = _dig(result, "generateVideoResponse", "raiMediaFilteredReasons")
        if filtered:
            reason = filtered[0] if isinstance(filtered, list) and filtered[0] else "Content policy violation"
            return OperationStatus(state="rejected", reason=str(reason))

        video_uri = extract_operation_video_uri(result)
        if video_uri:
            return OperationStatus(state="completed", video_url=video_uri)

        logger.error("Veo operation %s finished without a video URI", name)
        return OperationStatus(
            state="completed",
            video_url=DEMO_FALLBACK_VIDEO,
            metadata={
                "note": "DEMO MODE: Sample video returned. The provider finished without a video.",
                "original_error": "No video URL found in completed operation",
                "is_demo": True,
            },
        )


async def wait_for_operation(
    provider: VeoVideoProvider,
    name: str,
    *,
    max_attempts: int = POLL_MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> OperationStatus:
    """Poll until the operation leaves ``processing`` or the attempt budget runs out.

    Transient status-check failures count as attempts and are retried. If the
    last attempt itself failed, that failure is raised instead of a timeout.
    """
    attempts = max(int(max_attempts), 1)
    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            status = await provider.poll_operation(name)
        except (NetworkTimeout, ProviderTierFailed) as exc:
            logger.warning("Veo poll attempt %s for %s failed: %s", attempt, name, exc)
            last_error = exc
        else:
            if status.state != "processing":
                return status
            last_error = None
        if attempt < attempts:
            await sleep(backoff_delay(attempt))
    if last_error is not None:
        raise last_error
    raise OperationTimeout(f"Operation {name} still processing after {max_attempts} attempts.")
