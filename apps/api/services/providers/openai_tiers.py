"""OpenAI image (DALL-E) and text tiers."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from openai import APITimeoutError, AsyncOpenAI

from config import is_configured_key, settings
from services.errors import NetworkTimeout, ProviderTierFailed
from services.providers.base import BaseGenerationProvider
from services.providers.types import GenerationRequest, ProviderSuccess

logger = logging.getLogger(__name__)

DALLE_SIZES = {"1024x1024", "1024x1792", "1792x1024"}
DEFAULT_TEXT_MODEL = "gpt-4o-mini"
TEXT_SYSTEM_PROMPT = (
    "You are a creative writing assistant for social content creators. "
    "Answer with polished, ready-to-post copy."
)


class OpenAIProvider(BaseGenerationProvider):
    """Shared client construction; ``client`` may be injected for tests."""

    def __init__(self, *, client: Optional[AsyncOpenAI] = None) -> None:
        super().__init__()
        self._client = client

    def is_available(self, request: GenerationRequest) -> Optional[str]:
        if self._client is None and not is_configured_key(settings.OPENAI_API_KEY):
            return "OPENAI_API_KEY not configured"
        return None

    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=float(settings.PROVIDER_TIMEOUT_SECONDS),
                max_retries=0,
            )
        return self._client


class DalleImageProvider(OpenAIProvider):
    name = "openai-dalle"
    label = "OpenAI DALL-E"
    quality = "standard"

    def build_params(self, request: GenerationRequest) -> Dict[str, Any]:
        style = request.option("style", "photorealistic")
        size = request.option("size", "1024x1024")
        params: Dict[str, Any] = {
            "model": "dall-e-3" if request.model == "dalle-3" else "dall-e-2",
            "prompt": f"{request.prompt} in {style} style",
            "size": size if size in DALLE_SIZES else "1024x1024",
            "n": 1,
        }
        if request.model == "dalle-3":
            params["quality"] = "hd"
        return params

    async def _generate(self, request: GenerationRequest) -> ProviderSuccess:
        params = self.build_params(request)
        try:
            response = await self.client().images.generate(**params)
        except APITimeoutError as exc:
            raise NetworkTimeout("DALL-E request timed out") from exc

        data = getattr(response, "data", None) or []
        image_url = getattr(data[0], "url", None) if data else None
        if not image_url:
            raise ProviderTierFailed("No image URL in DALL-E response")
        return ProviderSuccess(
            provider=self.name,
            media_url=image_url,
            metadata={"generated_by": "OpenAI DALL-E", "model": params["model"]},
        )


class ChatTextProvider(OpenAIProvider):
    name = "openai-chat"
    label = "OpenAI Chat"
    quality = "standard"

    async def _generate(self, request: GenerationRequest) -> ProviderSuccess:
        model = request.model or DEFAULT_TEXT_MODEL
        try:
            response = await self.client().chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": TEXT_SYSTEM_PROMPT},
                    {"role": "user", "content": request.prompt},
                ],
                max_tokens=int(request.option("max_tokens", 800)),
            )
        except APITimeoutError as exc:
            raise NetworkTimeout("Chat completion timed out") from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise ProviderTierFailed("Empty completion from text provider")
        return ProviderSuccess(
            provider=self.name,
            text=content.strip(),
            metadata={"generated_by": "OpenAI", "model": model},
        )
