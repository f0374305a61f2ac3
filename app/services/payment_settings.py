from typing import Any, Dict, Optional

from flask import current_app

from app.errors import ValidationError
from app.extensions import db
from app.models import PaymentConfig
from app.services import paypal_gateway
from app.services.providers import get_providers
from app.utils.helpers import safe_float
from app.utils.timeutil import utcnow

CONFIG_KEYS = ("stripe", "paypal")


def get_config_row(key: str) -> Optional[PaymentConfig]:
    return PaymentConfig.query.filter_by(config_key=key).one_or_none()


def fee_percent(provider: str) -> float:
    row = get_config_row(provider)
    value = (row.config_value or {}).get("platform_fee_percent") if row else None
    if value is None or value == "":
        return safe_float(current_app.config.get("PLATFORM_FEE_PERCENT", 0))
    return max(0.0, min(100.0, safe_float(value)))


def upsert_config(key: str, value: Optional[Dict[str, Any]] = None,
                  is_enabled: Optional[bool] = None) -> PaymentConfig:
    """Merge ``value`` into the stored JSON for ``key``."""
    if key not in CONFIG_KEYS:
        raise ValidationError(f"Unknown config key: {key}", field="configKey")
    value = dict(value or {})
    if "platform_fee_percent" in value:
        pct = safe_float(value["platform_fee_percent"], default=-1)
        if not 0 <= pct <= 100:
            raise ValidationError("platform_fee_percent must be between 0 and 100", field="platform_fee_percent")
        value["platform_fee_percent"] = str(value["platform_fee_percent"])

    row = get_config_row(key)
    if row is None:
        row = PaymentConfig(config_key=key, config_value={}, is_enabled=False)
        db.session.add(row)
    merged = dict(row.config_value or {})
    merged.update(value)
    # Reassign so the JSON column is flagged dirty
    row.config_value = merged
    if is_enabled is not None:
        row.is_enabled = bool(is_enabled)
    db.session.commit()
    return row


def checkout_config() -> Dict[str, Any]:
    providers = get_providers()
    paypal_row = get_config_row("paypal")
    return {
        "stripe": {
            "configured": providers.stripe.configured,
            "publishableKey": getattr(providers.stripe, "publishable_key", None),
        },
        "paypal": {
            "configured": providers.paypal.configured,
            "enabled": bool(paypal_row and paypal_row.is_enabled),
        },
        "currency": current_app.config.get("PAYMENT_CURRENCY", "usd"),
    }


def check_paypal_config() -> Dict[str, Any]:
    """OAuth probe; on success records the working environment in payment_config."""
    settings = get_providers().paypal
    if not settings.configured:
        return {
            "configured": False,
            "status": "not_configured",
            "message": "PayPal credentials are not set. Add PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET.",
            "hasWebhookId": bool(current_app.config.get("PAYPAL_WEBHOOK_ID")),
        }

    probe = paypal_gateway.probe_credentials(settings)
    if not probe["ok"]:
        current_app.logger.warning("paypal config test failed: invalid credentials")
        return {
            "configured": False,
            "status": "invalid_credentials",
            "message": "PayPal credentials are invalid. Check the client id and secret.",
            "hasWebhookId": settings.verifies_webhooks,
        }

    existing = get_config_row("paypal")
    fee = (existing.config_value or {}).get("platform_fee_percent") if existing else None
    upsert_config("paypal", {
        "client_id_set": True,
        "client_secret_set": True,
        "webhook_id_set": settings.verifies_webhooks,
        "environment": probe["environment"],
        "last_verified": utcnow().isoformat(),
        "platform_fee_percent": fee if fee is not None else "0",
    }, is_enabled=True)
    return {
        "configured": True,
        "status": "connected",
        "environment": probe["environment"],
        "message": f"PayPal credentials are valid. Connected to {probe['environment'].upper()} environment.",
        "hasWebhookId": settings.verifies_webhooks,
        "tokenType": probe.get("tokenType"),
        "expiresIn": probe.get("expiresIn"),
    }
