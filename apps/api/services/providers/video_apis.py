"""Budget and standard video tiers (Pika Labs, Haiper AI)."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Dict, Optional

from config import is_configured_key, settings
from services.errors import ProviderTierFailed
from services.providers.base import BaseGenerationProvider
from services.providers.types import GenerationRequest, ProviderSuccess

VIDEO_DURATION_SECONDS = 8


class BearerVideoProvider(BaseGenerationProvider):
    """Video API that takes a bearer key and answers inline with ``video_url``."""

    provider_tag: str
    key_setting: str
    url_setting: str

    def _api_key(self) -> str:
        return str(getattr(settings, self.key_setting, "") or "").strip()

    def is_available(self, request: GenerationRequest) -> Optional[str]:
        if not is_configured_key(self._api_key()):
            return f"{self.key_setting} not configured"
        return None

    @abstractmethod
    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        raise NotImplementedError

    def extra_metadata(self) -> Dict[str, Any]:
        return {}

    async def _generate(self, request: GenerationRequest) -> ProviderSuccess:
        data = await self._post_json(
            str(getattr(settings, self.url_setting)),
            payload=self.build_payload(request),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key()}",
            },
        )
        video_url = data.get("video_url")
        if not isinstance(video_url, str) or not video_url.strip():
            raise ProviderTierFailed(f"{self.label} response did not include video_url")
        return ProviderSuccess(
            provider=self.name,
            media_url=video_url,
            metadata={"provider": self.provider_tag, "quality": self.quality, **self.extra_metadata()},
        )


class PikaVideoProvider(BearerVideoProvider):
    name = "pika"
    label = "Pika Labs"
    provider_tag = "pika-labs"
    quality = "budget"
    key_setting = "PIKA_API_KEY"
    url_setting = "PIKA_API_URL"

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        aspect_ratio = request.option("aspect_ratio", "9:16")
        return {
            "prompt": f"{request.option('story_type', 'cinematic')} style: {request.prompt}",
            "aspect_ratio": "vertical" if aspect_ratio == "9:16" else "horizontal",
            "duration": VIDEO_DURATION_SECONDS,
        }

    def extra_metadata(self) -> Dict[str, Any]:
        return {"cost_per_video": "$0.011"}


class HaiperVideoProvider(BearerVideoProvider):
    name = "haiper"
    label = "Haiper AI"
    provider_tag = "haiper-ai"
    quality = "standard"
    key_setting = "HAIPER_API_KEY"
    url_setting = "HAIPER_API_URL"

    def build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "text": f"Create {request.option('story_type', 'cinematic')} video: {request.prompt}",
            "ratio": request.option("aspect_ratio", "9:16"),
            "duration": VIDEO_DURATION_SECONDS,
        }

    def extra_metadata(self) -> Dict[str, Any]:
        return {"cost_estimate": "$0.33"}
