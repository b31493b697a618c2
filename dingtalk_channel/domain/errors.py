"""Error types raised by the DingTalk channel.

An admission deny is not an error; it is a PolicyDecision with allowed=False.
"""
from __future__ import annotations

from dingtalk_channel.core.retry import RateLimitError, TransientError


class DingtalkError(Exception):
    """Base class for channel errors."""


class CredentialMissing(DingtalkError):
    """Account has no usable clientId/clientSecret. Raised before any network call."""

    def __init__(self, account_id: str):
        super().__init__(f"DingTalk account '{account_id}' is not configured (clientId/clientSecret missing)")
        self.account_id = account_id


class ProviderRejected(DingtalkError):
    """The provider API refused the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class TransientProviderError(TransientError):
    """5xx or network failure; retried by the API client before surfacing."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimited(RateLimitError):
    """HTTP 429 from the provider."""

    def __init__(self, message: str, status_code: int | None = 429):
        super().__init__(message)
        self.status_code = status_code


class DeliveryFailed(DingtalkError):
    """A multi-chunk delivery stopped part way; nothing is rolled back."""

    def __init__(self, delivered: int, total: int, target: str):
        super().__init__(f"delivery to {target} failed after {delivered}/{total} chunks")
        self.delivered = delivered
        self.total = total
        self.target = target


class ConnectionLost(DingtalkError):
    """The provider session ended without a cancel request."""


class InvalidTransition(DingtalkError):
    def __init__(self, state, event):
        super().__init__(f"no transition from {state.value} on {event.value}")
        self.state = state
        self.event = event


class ConnectionAlreadyActive(DingtalkError):
    """A second gateway connection was started for an account that already has a live one."""

    def __init__(self, account_id: str):
        super().__init__(f"gateway connection for account '{account_id}' is already running")
        self.account_id = account_id
