from typing import Dict, Any, Optional
from urllib.parse import urljoin
from flask import current_app
from stripe import StripeClient
import hashlib, json
import stripe

from app.errors import ProviderUnavailableError, SignatureVerificationError
from app.services.providers import StripeSettings


def _client(settings: StripeSettings) -> StripeClient:
    return StripeClient(settings.secret_key)


def absolute_url(path: str) -> str:
    if path.startswith("http://") or path.startswith("https://"):
        return path
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def _with_session_id(url: str) -> str:
    if "{CHECKOUT_SESSION_ID}" in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={{CHECKOUT_SESSION_ID}}"


def create_checkout_session(
    settings: StripeSettings,
    *,
    purchase_id: int,
    user_id: int,
    amount_cents: int,
    currency: str,
    product_name: str,
    metadata: Dict[str, str],
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a one-off Stripe Checkout Session for a slot package.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client(settings)
    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": [{
            "quantity": 1,
            "price_data": {
                "currency": currency,
                "unit_amount": int(amount_cents),
                "product_data": {"name": product_name},
            },
        }],
        "success_url": _with_session_id(absolute_url(success_url)),
        "cancel_url": absolute_url(cancel_url),
        "client_reference_id": f"slot_{metadata.get('slot_id')}_{user_id}",
        # Webhook context; Stripe metadata values must be strings
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    if customer_email:
        params["customer_email"] = customer_email

    # One session per pending purchase; a param change produces a new key
    idem = make_idempotency_key(
        "slot-checkout", "v1",
        purchase_id, user_id,
        _params_hash(params),
    )
    try:
        session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    except stripe.StripeError as e:
        raise ProviderUnavailableError(f"Stripe checkout failed: {e.__class__.__name__}") from e
    return {"id": session.id, "url": getattr(session, "url", None)}


def retrieve_checkout_session(settings: StripeSettings, session_id: str) -> Dict[str, Any]:
    """Return the fields activation cares about: id, payment_status, status, payment_intent."""
    client = _client(settings)
    try:
        session = client.checkout.sessions.retrieve(session_id)
    except stripe.StripeError as e:
        raise ProviderUnavailableError(f"Stripe session lookup failed: {e.__class__.__name__}") from e
    payment_intent = getattr(session, "payment_intent", None)
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = getattr(payment_intent, "id", None)
    return {
        "id": getattr(session, "id", session_id),
        "payment_status": getattr(session, "payment_status", None),
        "status": getattr(session, "status", None),
        "payment_intent": payment_intent,
    }


def verify_webhook(settings: StripeSettings, raw_body: bytes, sig_header: str) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and return the event as a plain dict.
    """
    try:
        stripe.Webhook.construct_event(
            payload=raw_body.decode("utf-8"),
            sig_header=sig_header,
            secret=settings.webhook_secret,
        )
    except (ValueError, UnicodeDecodeError, stripe.SignatureVerificationError) as e:
        raise SignatureVerificationError("Stripe signature verification failed") from e
    # The verified body is the event; parse it ourselves so we get plain dicts
    try:
        return json.loads(raw_body.decode("utf-8"))
    except ValueError as e:
        raise SignatureVerificationError("Stripe payload is not JSON") from e
