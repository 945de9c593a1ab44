"""Provider tier base class."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from config import settings
from services.errors import NetworkTimeout, ProviderTierFailed
from services.providers.types import (
    GenerationRequest,
    ProviderFailed,
    ProviderOutcome,
    ProviderSuccess,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)


class BaseGenerationProvider(ABC):
    """One tier in a prioritized fallback list.

    Subclasses implement ``is_available`` and ``_generate``. ``run`` never
    raises: every failure inside the tier is folded into ``ProviderFailed``.
    """

    name: str
    label: str
    quality: str = "standard"

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    @abstractmethod
    def is_available(self, request: GenerationRequest) -> Optional[str]:
        """Return ``None`` when the tier may be called, else the reason it is skipped."""
        raise NotImplementedError

    @abstractmethod
    async def _generate(self, request: GenerationRequest) -> ProviderSuccess:
        raise NotImplementedError

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=float(settings.PROVIDER_TIMEOUT_SECONDS),
            transport=self._transport,
        )

    async def _post_json(self, url: str, *, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with self._http_client() as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(f"{self.label} request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderTierFailed(f"{self.label} request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderTierFailed(f"{self.label} returned HTTP {response.status_code}: {response.text[:300]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderTierFailed(f"{self.label} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ProviderTierFailed(f"{self.label} returned an unexpected payload")
        return data

    async def run(self, request: GenerationRequest) -> ProviderOutcome:
        skip_reason = self.is_available(request)
        if skip_reason:
            return ProviderUnavailable(provider=self.name, reason=skip_reason)

        logger.info("Attempting %s generation (%s tier)", self.label, self.quality)
        try:
            return await self._generate(request)
        except NetworkTimeout as exc:
            logger.warning("%s tier timed out: %s", self.label, exc)
            return ProviderFailed(provider=self.name, reason="timeout")
        except ProviderTierFailed as exc:
            logger.warning("%s tier failed: %s", self.label, exc)
            return ProviderFailed(provider=self.name, reason=str(exc))
        except Exception as exc:
            logger.warning("%s tier raised %s: %s", self.label, type(exc).__name__, exc)
            return ProviderFailed(provider=self.name, reason=f"{type(exc).__name__}: {exc}")
