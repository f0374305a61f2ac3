"""
Error taxonomy for the slot purchase pipeline.

Each error carries the HTTP status and the short ``code`` the API returns, so
routes can raise and let the app-level handler render ``{"error": code, ...}``.
"""
from datetime import datetime
from typing import Any, Dict, Optional


class SlotMarketError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(SlotMarketError):
    """Missing/invalid input, unknown slot or draft type. Raised before any external call."""
    status_code = 400
    code = "validation_error"


class PaymentNotCompletedError(ValidationError):
    """The provider says the session/order exists but is not paid."""
    code = "payment_not_completed"


class AuthorizationError(SlotMarketError):
    status_code = 403
    code = "forbidden"


class NotFoundError(SlotMarketError):
    status_code = 404
    code = "not_found"


class CapacityExceededError(SlotMarketError):
    status_code = 409
    code = "slot_full"

    def __init__(self, slot_id: int, active_count: int, max_allowed: int,
                 next_available_at: Optional[datetime] = None):
        super().__init__(f"Slot {slot_id} is currently full ({active_count}/{max_allowed} active).")
        self.slot_id = slot_id
        self.active_count = active_count
        self.max_allowed = max_allowed
        self.next_available_at = next_available_at

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "error": self.code,
            "message": self.message,
            "slotId": self.slot_id,
            "activeCount": self.active_count,
            "maxAllowed": self.max_allowed,
        }
        # Only present when an active purchase with a known expiry exists
        if self.next_available_at is not None:
            from app.utils.timeutil import isoformat
            payload["nextAvailableAt"] = isoformat(self.next_available_at)
        return payload


class ProviderNotConfiguredError(SlotMarketError):
    """No credentials for the requested provider; UI explains setup is incomplete."""
    status_code = 503
    code = "needs_configuration"

    def __init__(self, provider: str):
        super().__init__(f"{provider} is not configured")
        self.provider = provider

    def to_dict(self) -> Dict[str, Any]:
        return {"needsConfiguration": True, "provider": self.provider, "error": self.code}


class ProviderUnavailableError(SlotMarketError):
    """Provider API unreachable or returned an error. Safe to retry."""
    status_code = 502
    code = "provider_unavailable"

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["retryable"] = True
        return payload


class SignatureVerificationError(SlotMarketError):
    status_code = 400
    code = "invalid_signature"


class MalformedEventError(SlotMarketError):
    """Verified webhook whose body we can't use. 500 so the provider retries."""
    status_code = 500
    code = "malformed_event"


class ActivationRaceError(SlotMarketError):
    """Draft/purchase already active. Callers treat this as success."""
    status_code = 200
    code = "already_active"

    def __init__(self, expires_at: Optional[datetime] = None):
        super().__init__("already active")
        self.expires_at = expires_at
