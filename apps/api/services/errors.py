"""Domain errors shared by the ledger, generation and payment services."""

from __future__ import annotations


class StudioError(RuntimeError):
    """Base class for errors routers translate into HTTP responses."""


class NotFound(StudioError):
    """Referenced account or payment order does not exist."""


class InsufficientCredits(StudioError):
    """No spendable credit (or daily free allowance) is left."""


class InvalidPlan(StudioError):
    """Unknown pricing plan identifier."""


class InvalidSignature(StudioError):
    """Inbound payment signal failed its authenticity check."""


class GatewayUnavailable(StudioError):
    """Payment gateway is not configured or returned an error."""


class ProviderTierFailed(StudioError):
    """A single generation provider returned an error or malformed payload."""


class NetworkTimeout(StudioError):
    """An outbound call exceeded its time bound."""


class OperationTimeout(StudioError):
    """A long-running provider operation did not finish within its attempt budget."""
