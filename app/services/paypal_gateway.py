"""
Thin PayPal REST client (OAuth, Orders v2, webhook signature verification).

Every call fetches a fresh client-credentials token; volume is a handful of
requests per purchase so no token cache is kept.
"""
from typing import Any, Dict, Mapping, Optional

import httpx
from flask import current_app

from app.errors import ProviderUnavailableError
from app.services.providers import PAYPAL_LIVE_BASE, PAYPAL_SANDBOX_BASE, PayPalSettings
from app.utils.helpers import format_cents

WEBHOOK_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
    "transmission_sig": "paypal-transmission-sig",
}


def _request_token(client_id: str, client_secret: str, base_url: str, timeout: float) -> httpx.Response:
    with httpx.Client(timeout=timeout) as client:
        return client.post(
            f"{base_url}/v1/oauth2/token",
            auth=(client_id, client_secret),
            headers={"Accept": "application/json"},
            data={"grant_type": "client_credentials"},
        )


def get_access_token(settings: PayPalSettings) -> str:
    try:
        response = _request_token(settings.client_id, settings.client_secret, settings.base_url, settings.timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ProviderUnavailableError(f"PayPal OAuth failed: {e.__class__.__name__}") from e
    token = response.json().get("access_token")
    if not token:
        raise ProviderUnavailableError("PayPal OAuth returned no access token")
    return token


def _call(settings: PayPalSettings, method: str, path: str, *, json: Any = None,
          headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    token = get_access_token(settings)
    all_headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    all_headers.update(headers or {})
    try:
        with httpx.Client(timeout=settings.timeout) as client:
            response = client.request(method, f"{settings.base_url}{path}", headers=all_headers, json=json)
            response.raise_for_status()
    except httpx.HTTPError as e:
        current_app.logger.warning("paypal %s %s failed: %s", method, path, e)
        raise ProviderUnavailableError(f"PayPal request failed: {e.__class__.__name__}") from e
    return response.json() if response.content else {}


def _approve_url(order: Dict[str, Any]) -> Optional[str]:
    for link in order.get("links") or []:
        if link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def create_order(
    settings: PayPalSettings,
    *,
    amount_cents: int,
    currency: str,
    custom_id: str,
    reference_id: str,
    description: str,
    return_url: str,
    cancel_url: str,
    request_id: str,
) -> Dict[str, Any]:
    """Create a CAPTURE-intent order. Returns {"id": <order_id>, "url": <approve link>}."""
    body = {
        "intent": "CAPTURE",
        "purchase_units": [{
            "reference_id": reference_id,
            "custom_id": custom_id,
            "description": description[:127],
            "amount": {"currency_code": currency.upper(), "value": format_cents(amount_cents)},
        }],
        "application_context": {
            "return_url": return_url,
            "cancel_url": cancel_url,
            "user_action": "PAY_NOW",
            "shipping_preference": "NO_SHIPPING",
        },
    }
    order = _call(settings, "POST", "/v2/checkout/orders", json=body,
                  headers={"PayPal-Request-Id": request_id})
    return {"id": order.get("id"), "url": _approve_url(order)}


def get_order(settings: PayPalSettings, order_id: str) -> Dict[str, Any]:
    return _call(settings, "GET", f"/v2/checkout/orders/{order_id}")


def capture_order(settings: PayPalSettings, order_id: str) -> Dict[str, Any]:
    # Request id makes a retried capture return the original result
    return _call(settings, "POST", f"/v2/checkout/orders/{order_id}/capture", json={},
                 headers={"PayPal-Request-Id": f"capture-{order_id}"})


def missing_webhook_headers(headers: Mapping[str, str]) -> list:
    return [name for name in WEBHOOK_HEADERS.values() if not headers.get(name)]


def verify_webhook_signature(settings: PayPalSettings, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
    """
    Ask PayPal whether the transmission headers match this event.
    False means PayPal rejected it; ProviderUnavailableError means we couldn't ask.
    """
    body = {key: headers.get(header) for key, header in WEBHOOK_HEADERS.items()}
    body["webhook_id"] = settings.webhook_id
    body["webhook_event"] = event
    token = get_access_token(settings)
    try:
        with httpx.Client(timeout=settings.timeout) as client:
            response = client.post(
                f"{settings.base_url}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                json=body,
            )
    except httpx.HTTPError as e:
        raise ProviderUnavailableError(f"PayPal signature check failed: {e.__class__.__name__}") from e
    if response.status_code >= 500:
        raise ProviderUnavailableError(f"PayPal signature check returned {response.status_code}")
    if response.status_code >= 400:
        return False
    return (response.json() or {}).get("verification_status") == "SUCCESS"


def probe_credentials(settings: PayPalSettings) -> Dict[str, Any]:
    """
    OAuth round-trip used by the admin "test configuration" action.
    A sandbox guess that fails is retried against live before giving up.
    """
    attempts = [settings.base_url]
    if settings.base_url == PAYPAL_SANDBOX_BASE:
        attempts.append(PAYPAL_LIVE_BASE)

    last_error = None
    for base_url in attempts:
        try:
            response = _request_token(settings.client_id, settings.client_secret, base_url, settings.timeout)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"PayPal OAuth unreachable: {e.__class__.__name__}") from e
        if response.is_success:
            data = response.json()
            return {
                "ok": True,
                "environment": "live" if base_url == PAYPAL_LIVE_BASE else "sandbox",
                "tokenType": data.get("token_type"),
                "expiresIn": data.get("expires_in"),
            }
        current_app.logger.warning("paypal oauth probe failed at %s: %s", base_url, response.status_code)
        last_error = response.text
    return {"ok": False, "error": last_error}
