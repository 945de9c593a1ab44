"""Generation provider contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Union


ContentType = Literal["text", "image", "video"]


@dataclass(frozen=True)
class GenerationRequest:
    content_type: ContentType
    prompt: str
    options: Dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None
    user_id: Optional[str] = None
    use_free_mode: bool = False

    def option(self, name: str, default: Any = None) -> Any:
        value = self.options.get(name)
        return default if value in (None, "") else value


@dataclass(frozen=True)
class ProviderSuccess:
    provider: str
    media_url: Optional[str] = None
    text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderUnavailable:
    provider: str
    reason: str


@dataclass(frozen=True)
class ProviderFailed:
    provider: str
    reason: str


ProviderOutcome = Union[ProviderSuccess, ProviderUnavailable, ProviderFailed]


@dataclass(frozen=True)
class OperationHandle:
    provider: str
    name: str


OperationState = Literal["processing", "completed", "rejected"]


@dataclass(frozen=True)
class OperationStatus:
    state: OperationState
    video_url: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
