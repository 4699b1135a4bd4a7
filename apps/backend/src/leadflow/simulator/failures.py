"""Delivery failures: the errors channels raise, and rules for injecting them into the simulator."""

from __future__ import annotations

import random
from typing import Literal, Optional

from pydantic import BaseModel, Field, PrivateAttr

# Names of the DeliveryChannels callables a rule can target
DeliveryAction = Literal["send_sms", "send_email", "handoff_to_agent"]

# Error types real connectors report, plus the simulator-only bad number
DeliveryErrorType = Literal[
    "delivery_failed",
    "rate_limit",
    "timeout",
    "permission_denied",
    "connector_error",
    "missing_recipient",
    "invalid_number",
]

DEFAULT_MESSAGES: dict[str, str] = {
    "delivery_failed": "Delivery failed.",
    "rate_limit": "Provider rate limit exceeded.",
    "timeout": "Provider did not respond in time.",
    "permission_denied": "Provider rejected the credentials.",
    "connector_error": "Provider rejected the request.",
    "missing_recipient": "No recipient could be resolved for this lead.",
    "invalid_number": "The number is not a valid mobile number.",
}


class ServiceError(Exception):
    """Raised when a delivery collaborator cannot complete a call."""

    def __init__(self, message: str, error_type: str = "delivery_failed"):
        self.error_type = error_type
        super().__init__(message)


class RecipientError(ServiceError):
    """Raised when no usable address or number can be resolved for a send."""

    def __init__(self, message: str):
        super().__init__(message, "missing_recipient")


class FailureRule(BaseModel):
    error_type: DeliveryErrorType = "delivery_failed"
    message: Optional[str] = None
    probability: float = Field(default=1.0, ge=0.0, le=1.0)
    # Fail only the first N calls, then deliver normally
    times: Optional[int] = Field(default=None, ge=1)

    def to_error(self) -> ServiceError:
        message = self.message or DEFAULT_MESSAGES[self.error_type]
        if self.error_type == "missing_recipient":
            return RecipientError(message)
        return ServiceError(message, self.error_type)


class FailureConfig(BaseModel):
    """Failure rules keyed by delivery action, e.g. ``{"send_sms": FailureRule(error_type="rate_limit")}``.

    ``seed`` makes probabilistic rules repeatable.
    """

    rules: dict[DeliveryAction, FailureRule] = {}
    seed: Optional[int] = None

    _rng: Optional[random.Random] = PrivateAttr(default=None)
    _failed: dict[str, int] = PrivateAttr(default_factory=dict)

    def check(self, action: DeliveryAction) -> None:
        """Raise the injected error when the rule for ``action`` triggers."""
        rule = self.rules.get(action)
        if rule is None:
            return
        failed = self._failed.get(action, 0)
        if rule.times is not None and failed >= rule.times:
            return
        if self._rng is None:
            self._rng = random.Random(self.seed)
        if self._rng.random() >= rule.probability:
            return
        self._failed[action] = failed + 1
        raise rule.to_error()

    def failures(self, action: DeliveryAction) -> int:
        """How many calls to ``action`` have been failed so far."""
        return self._failed.get(action, 0)
