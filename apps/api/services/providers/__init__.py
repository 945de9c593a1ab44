"""Public generation provider utilities."""

from services.providers.base import BaseGenerationProvider
from services.providers.registry import (
    get_veo_provider,
    image_provider_chain,
    provider_capabilities,
    text_provider_chain,
    video_provider_chain,
)
from services.providers.types import (
    GenerationRequest,
    OperationHandle,
    OperationStatus,
    ProviderFailed,
    ProviderOutcome,
    ProviderSuccess,
    ProviderUnavailable,
)

__all__ = [
    "BaseGenerationProvider",
    "GenerationRequest",
    "OperationHandle",
    "OperationStatus",
    "ProviderFailed",
    "ProviderOutcome",
    "ProviderSuccess",
    "ProviderUnavailable",
    "get_veo_provider",
    "image_provider_chain",
    "provider_capabilities",
    "text_provider_chain",
    "video_provider_chain",
]
