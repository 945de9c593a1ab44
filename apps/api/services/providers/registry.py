"""Ordered provider chains per content type."""

from __future__ import annotations

from typing import Dict, List

from config import is_configured_key, settings
from services.providers.base import BaseGenerationProvider
from services.providers.openai_tiers import ChatTextProvider, DalleImageProvider
from services.providers.veo import VeoVideoProvider
from services.providers.video_apis import HaiperVideoProvider, PikaVideoProvider


def video_provider_chain() -> List[BaseGenerationProvider]:
    """Premium -> budget -> standard."""
    return [VeoVideoProvider(), PikaVideoProvider(), HaiperVideoProvider()]


def image_provider_chain() -> List[BaseGenerationProvider]:
    return [DalleImageProvider()]


def text_provider_chain() -> List[BaseGenerationProvider]:
    return [ChatTextProvider()]


def get_veo_provider() -> VeoVideoProvider:
    return VeoVideoProvider()


def provider_capabilities() -> Dict[str, bool]:
    return {
        "veo": is_configured_key(settings.VEO_API_KEY),
        "pika": is_configured_key(settings.PIKA_API_KEY),
        "haiper": is_configured_key(settings.HAIPER_API_KEY),
        "openai": is_configured_key(settings.OPENAI_API_KEY),
    }
