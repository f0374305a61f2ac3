"""
Payment provider settings, materialised once at startup.

Checkout and webhook code never read STRIPE_*/PAYPAL_* config keys directly;
they ask ``get_providers()`` and branch on ``settings.configured``.
"""
from dataclasses import dataclass
from typing import Optional, Union

from flask import current_app

from app.errors import ProviderNotConfiguredError, ValidationError

PAYPAL_SANDBOX_BASE = "https://api-m.sandbox.paypal.com"
PAYPAL_LIVE_BASE = "https://api-m.paypal.com"


@dataclass(frozen=True)
class NotConfigured:
    provider: str
    configured = False


@dataclass(frozen=True)
class StripeSettings:
    secret_key: str
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    provider = "stripe"
    configured = True


@dataclass(frozen=True)
class PayPalSettings:
    client_id: str
    client_secret: str
    webhook_id: Optional[str] = None
    environment: str = "sandbox"
    timeout: float = 10.0
    provider = "paypal"
    configured = True

    @property
    def base_url(self) -> str:
        return PAYPAL_LIVE_BASE if self.environment == "live" else PAYPAL_SANDBOX_BASE

    @property
    def verifies_webhooks(self) -> bool:
        return bool(self.webhook_id)


StripeConfig = Union[StripeSettings, NotConfigured]
PayPalConfig = Union[PayPalSettings, NotConfigured]


def guess_paypal_environment(client_id: str) -> str:
    """Sandbox client ids are usually recognisable; anything else is treated as live."""
    cid = client_id or ""
    if "sandbox" in cid or cid.startswith("AV") or cid.startswith("sb-"):
        return "sandbox"
    return "live"


@dataclass(frozen=True)
class PaymentProviders:
    stripe: StripeConfig
    paypal: PayPalConfig

    def get(self, name: str):
        if name == "stripe":
            return self.stripe
        if name == "paypal":
            return self.paypal
        raise ValidationError(f"Unknown payment method: {name}", field="paymentMethod")

    def require(self, name: str):
        settings = self.get(name)
        if not settings.configured:
            raise ProviderNotConfiguredError(name)
        return settings

    @classmethod
    def from_config(cls, config) -> "PaymentProviders":
        stripe_key = config.get("STRIPE_SECRET_KEY")
        stripe = (
            StripeSettings(
                secret_key=stripe_key,
                publishable_key=config.get("STRIPE_PUBLISHABLE_KEY"),
                webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            )
            if stripe_key else NotConfigured("stripe")
        )

        client_id = config.get("PAYPAL_CLIENT_ID")
        client_secret = config.get("PAYPAL_CLIENT_SECRET")
        if client_id and client_secret:
            env = (config.get("PAYPAL_ENVIRONMENT") or "").strip().lower()
            if env not in ("sandbox", "live"):
                env = guess_paypal_environment(client_id)
            paypal = PayPalSettings(
                client_id=client_id,
                client_secret=client_secret,
                webhook_id=config.get("PAYPAL_WEBHOOK_ID") or None,
                environment=env,
                timeout=float(config.get("PAYPAL_HTTP_TIMEOUT") or 10.0),
            )
        else:
            paypal = NotConfigured("paypal")
        return cls(stripe=stripe, paypal=paypal)


def init_payment_providers(app) -> PaymentProviders:
    providers = PaymentProviders.from_config(app.config)
    app.extensions["payment_providers"] = providers
    for settings in (providers.stripe, providers.paypal):
        if not settings.configured:
            app.logger.warning("%s credentials missing; checkout via %s is disabled",
                               settings.provider, settings.provider)
    return providers


def get_providers() -> PaymentProviders:
    providers = current_app.extensions.get("payment_providers")
    if providers is None:
        providers = init_payment_providers(current_app)
    return providers
