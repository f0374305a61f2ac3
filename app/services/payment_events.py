"""
Provider webhook processing: dedup -> parse -> audit -> match -> activate.

Functions here work on the current session and never commit; the webhook
routes own the transaction so a failure anywhere rolls the whole event back
and the provider's retry starts clean.
"""
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.errors import MalformedEventError, ProviderUnavailableError, SignatureVerificationError
from app.extensions import db
from app.models import Payment, SlotPurchase, WebhookEventLog
from app.models.slot_purchase import PURCHASE_PENDING, PROVIDER_PAYPAL, PROVIDER_STRIPE
from app.services import paypal_gateway
from app.services.activation import activate_purchase
from app.services.checkout import abandon_purchase
from app.services.payment_metadata import (
    PaymentMetadata, decode_paypal_unit, decode_stripe_metadata, parse_legacy_reference,
)
from app.services.payment_settings import fee_percent
from app.utils.helpers import cents_from_amount, fee_split
from app.utils.timeutil import utcnow

PAYMENT_COMPLETED = "completed"
PAYMENT_APPROVED = "approved"
PAYMENT_LOGGED_ONLY = "logged_only"
PAYMENT_UNMATCHED = "unmatched"
PAYMENT_CAPACITY_CONFLICT = "capacity_conflict"
PAYMENT_EXPIRED = "expired"
PAYMENT_DUPLICATE_ACTIVATION = "duplicate_activation"

STRIPE_PAID_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
STRIPE_EXPIRED_EVENT = "checkout.session.expired"
PAYPAL_ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
PAYPAL_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"


@dataclass
class WebhookOutcome:
    status: str
    purchase_id: Optional[int] = None

    @property
    def duplicate(self) -> bool:
        return self.status == "duplicate"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": True, "status": self.status}
        if self.duplicate:
            body["duplicate"] = True
        if self.purchase_id is not None:
            body["purchaseId"] = self.purchase_id
        return body


def _log(event: str, **fields):
    current_app.logger.info(json.dumps({"event": event, **fields}, default=str))


# ---- dedup ledger ----

def begin_event(provider: str, event_id: str, event_type: str, payload: Dict[str, Any],
                signature_valid: bool = True) -> Optional[WebhookEventLog]:
    """
    Returns the log row to process under, or None when this event id was
    already processed. An unprocessed row (earlier attempt failed) is reused.
    """
    log = WebhookEventLog.query.filter_by(provider=provider, event_id=event_id).first()
    if log is None:
        try:
            with db.session.begin_nested():
                log = WebhookEventLog(
                    provider=provider,
                    event_id=event_id,
                    type=event_type,
                    signature_valid=signature_valid,
                    payload=payload,
                    retries=0,
                )
                db.session.add(log)
        except IntegrityError:
            # A concurrent delivery of the same event got there first
            log = WebhookEventLog.query.filter_by(provider=provider, event_id=event_id).first()
            if log is None:
                raise
    elif log.processed_at is None:
        log.retries = (log.retries or 0) + 1
    if log.processed_at is not None:
        return None
    return log


def finish_event(log: WebhookEventLog, notes: Optional[str] = None):
    log.processed_at = utcnow()
    if notes:
        log.notes = notes[:255]


def note_failure(provider: str, event_id: Optional[str], event_type: Optional[str], exc: Exception):
    """Called after rollback; leaves a trail for the failed attempt in its own transaction."""
    if not event_id:
        return
    try:
        log = WebhookEventLog.query.filter_by(provider=provider, event_id=event_id).first()
        if log is None:
            log = WebhookEventLog(provider=provider, event_id=event_id, type=event_type or "unknown",
                                  payload={}, retries=0)
            db.session.add(log)
        else:
            log.retries = (log.retries or 0) + 1
        log.notes = f"handler_error:{type(exc).__name__}"
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("webhook.note_failure_failed", extra={"event_id": event_id})


def record_invalid_signature(provider: str, raw_body: bytes):
    """Log a rejected delivery under a deterministic synthetic id (payload is not trusted)."""
    digest = hashlib.sha256(raw_body or b"").hexdigest()[:32]
    synthetic_id = f"invalid:{digest}"
    log = WebhookEventLog.query.filter_by(provider=provider, event_id=synthetic_id).first()
    if log is None:
        db.session.add(WebhookEventLog(
            provider=provider,
            event_id=synthetic_id,
            type="signature_invalid",
            signature_valid=False,
            payload={},
            retries=0,
            processed_at=utcnow(),
        ))
    else:
        log.retries = (log.retries or 0) + 1
    current_app.logger.warning(json.dumps({
        "event": "webhook_signature_invalid",
        "provider": provider,
        "synthetic_id": synthetic_id,
    }))


# ---- audit ----

def record_payment(provider: str, event_id: Optional[str], event_type: str, *, status: str,
                   meta: PaymentMetadata, amount_cents: int = 0, currency: Optional[str] = None,
                   purchase: Optional[SlotPurchase] = None, extra: Optional[Dict[str, Any]] = None) -> Payment:
    fee, earnings = fee_split(amount_cents, fee_percent(provider))
    if status == PAYMENT_DUPLICATE_ACTIVATION:
        # The first event for this purchase already booked the earnings
        fee, earnings = 0, 0
    product_type = meta.product_type
    if purchase is not None and product_type == "unknown":
        product_type = purchase.product_type
    duration = purchase.duration_days if purchase is not None else (meta.duration_days or 0)
    row = Payment(
        user_id=meta.user_id if meta.user_id is not None else (purchase.user_id if purchase else None),
        provider=provider,
        provider_event_id=event_id,
        event_type=event_type,
        amount_cents=amount_cents,
        currency=(currency or current_app.config.get("PAYMENT_CURRENCY", "usd")).lower(),
        product_type=product_type,
        duration_days=duration or 0,
        status=status,
        platform_fee_cents=fee,
        seller_earnings_cents=earnings,
        slot_purchase_id=purchase.id if purchase is not None else None,
        meta={"metadata": meta.to_log(), **(extra or {})},
        completed_at=utcnow() if status == PAYMENT_COMPLETED else None,
    )
    db.session.add(row)
    return row


def record_unconfigured(provider: str, payload: Dict[str, Any]) -> WebhookOutcome:
    """Provider has no credentials: keep a trail, activate nothing, answer 200."""
    event_id = payload.get("id") if isinstance(payload, dict) else None
    event_type = (payload.get("type") or payload.get("event_type")) if isinstance(payload, dict) else None
    if event_id:
        log = begin_event(provider, str(event_id), event_type or "unknown", payload, signature_valid=False)
        if log is None:
            return WebhookOutcome("duplicate")
        finish_event(log, "provider_not_configured")
    record_payment(provider, event_id, event_type or "unknown", status=PAYMENT_LOGGED_ONLY,
                   meta=PaymentMetadata(),
                   extra={"unconfigured": True})
    current_app.logger.warning(json.dumps({
        "event": "webhook_provider_not_configured",
        "provider": provider,
        "event_id": event_id,
        "type": event_type,
    }))
    return WebhookOutcome(PAYMENT_LOGGED_ONLY)


# ---- matching ----

def match_purchase(meta: PaymentMetadata, provider_reference: Optional[str] = None) -> Optional[SlotPurchase]:
    if meta.purchase_id is not None:
        row = db.session.get(SlotPurchase, meta.purchase_id)
        if row is not None and (meta.user_id is None or row.user_id == meta.user_id):
            return row
    if provider_reference:
        row = SlotPurchase.query.filter_by(provider_reference=provider_reference).first()
        if row is not None:
            return row
    if meta.user_id is not None and meta.slot_id is not None:
        return (
            SlotPurchase.query
            .filter_by(user_id=meta.user_id, slot_id=meta.slot_id, status=PURCHASE_PENDING, is_active=False)
            .order_by(SlotPurchase.created_at.desc(), SlotPurchase.id.desc())
            .first()
        )
    return None


def _complete(provider: str, event_id: str, event_type: str, meta: PaymentMetadata, *,
              amount_cents: int, currency: Optional[str], provider_reference: Optional[str],
              payment_intent_id: Optional[str], extra: Dict[str, Any]) -> WebhookOutcome:
    purchase = match_purchase(meta, provider_reference)
    if purchase is None:
        record_payment(provider, event_id, event_type, status=PAYMENT_UNMATCHED, meta=meta,
                       amount_cents=amount_cents, currency=currency, extra=extra)
        current_app.logger.warning(json.dumps({
            "event": "webhook_unmatched_payment",
            "provider": provider,
            "event_id": event_id,
            "provider_reference": provider_reference,
            "metadata": meta.to_log(),
        }))
        return WebhookOutcome(PAYMENT_UNMATCHED)

    result = activate_purchase(
        purchase,
        provider_reference=provider_reference,
        draft_kind=meta.draft_kind,
        draft_id=meta.draft_id,
        fallback_duration_days=meta.duration_days,
        payment_intent_id=payment_intent_id,
    )
    if result.conflict is not None:
        status = PAYMENT_CAPACITY_CONFLICT
    elif result.already_active:
        status = PAYMENT_DUPLICATE_ACTIVATION
    else:
        status = PAYMENT_COMPLETED
    record_payment(provider, event_id, event_type, status=status,
                   meta=meta, amount_cents=amount_cents, currency=currency, purchase=purchase, extra=extra)
    _log("webhook_payment_matched", provider=provider, event_id=event_id, purchase_id=purchase.id,
         status=status, already_active=result.already_active)
    if result.already_active:
        return WebhookOutcome("already_active", purchase_id=purchase.id)
    return WebhookOutcome(status, purchase_id=purchase.id)


# ---- Stripe ----

def _stripe_meta(obj: Dict[str, Any]) -> PaymentMetadata:
    meta = decode_stripe_metadata(obj.get("metadata"))
    if not meta.parsed:
        meta = parse_legacy_reference(obj.get("client_reference_id"))
    return meta


def handle_stripe_event(event: Dict[str, Any]) -> WebhookOutcome:
    ev_id, ev_type = event.get("id"), event.get("type")
    obj = (event.get("data") or {}).get("object")
    if not ev_id or not ev_type or not isinstance(obj, dict):
        raise MalformedEventError("Stripe event is missing id, type or data.object")

    log = begin_event(PROVIDER_STRIPE, ev_id, ev_type, event)
    if log is None:
        return WebhookOutcome("duplicate")

    session_id = obj.get("id")
    extra = {"session_id": session_id, "payment_intent": obj.get("payment_intent")}

    if ev_type in STRIPE_PAID_EVENTS:
        if ev_type == "checkout.session.completed" and obj.get("payment_status") != "paid":
            # Delayed methods; async_payment_succeeded follows
            finish_event(log, f"awaiting_payment:{obj.get('payment_status')}")
            return WebhookOutcome("awaiting_payment")
        outcome = _complete(
            PROVIDER_STRIPE, ev_id, ev_type, _stripe_meta(obj),
            amount_cents=int(obj.get("amount_total") or 0),
            currency=obj.get("currency"),
            provider_reference=session_id,
            payment_intent_id=obj.get("payment_intent") if isinstance(obj.get("payment_intent"), str) else None,
            extra=extra,
        )
    elif ev_type == STRIPE_EXPIRED_EVENT:
        meta = _stripe_meta(obj)
        purchase = match_purchase(PaymentMetadata(purchase_id=meta.purchase_id, user_id=meta.user_id), session_id)
        released = purchase is not None and abandon_purchase(purchase)
        record_payment(PROVIDER_STRIPE, ev_id, ev_type, status=PAYMENT_EXPIRED, meta=meta,
                       currency=obj.get("currency"), purchase=purchase, extra=extra)
        outcome = WebhookOutcome("abandoned" if released else "ignored",
                                 purchase_id=purchase.id if purchase is not None else None)
    else:
        _log("webhook_ignored", provider=PROVIDER_STRIPE, event_id=ev_id, type=ev_type)
        outcome = WebhookOutcome("ignored")

    finish_event(log, outcome.status)
    return outcome


# ---- PayPal ----

def verify_paypal_event(settings, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
    """
    True when verified, False when verification is not set up (no webhook id).
    Raises SignatureVerificationError when PayPal says no or headers are missing.
    """
    if not settings.verifies_webhooks:
        current_app.logger.warning("paypal webhook id not set; processing %s unverified", event.get("id"))
        return False
    missing = paypal_gateway.missing_webhook_headers(headers)
    if missing:
        raise SignatureVerificationError("Missing PayPal transmission headers", missing=missing)
    if not paypal_gateway.verify_webhook_signature(settings, headers, event):
        raise SignatureVerificationError("PayPal signature verification failed")
    return True


def _paypal_unit(resource: Dict[str, Any]) -> Dict[str, Any]:
    units = resource.get("purchase_units") or []
    if units and isinstance(units[0], dict):
        return units[0]
    # Capture resources carry custom_id and amount at the top level
    return resource


def _paypal_order_id(event_type: str, resource: Dict[str, Any]) -> Optional[str]:
    if event_type == PAYPAL_CAPTURE_COMPLETED:
        related = ((resource.get("supplementary_data") or {}).get("related_ids") or {})
        return related.get("order_id") or resource.get("id")
    return resource.get("id")


def handle_paypal_event(event: Dict[str, Any], settings=None, signature_valid: bool = True) -> WebhookOutcome:
    ev_id, ev_type = event.get("id"), event.get("event_type")
    resource = event.get("resource")
    if not ev_id or not ev_type or not isinstance(resource, dict):
        raise MalformedEventError("PayPal event is missing id, event_type or resource")

    log = begin_event(PROVIDER_PAYPAL, ev_id, ev_type, event, signature_valid=signature_valid)
    if log is None:
        return WebhookOutcome("duplicate")

    unit = _paypal_unit(resource)
    amount = unit.get("amount") or {}
    amount_cents = cents_from_amount(amount.get("value") or 0)
    currency = (amount.get("currency_code") or "").lower() or None
    order_id = _paypal_order_id(ev_type, resource)
    meta = decode_paypal_unit(unit.get("custom_id"), unit.get("reference_id"))
    extra = {
        "order_id": order_id,
        "reference_id": unit.get("reference_id") or unit.get("custom_id"),
        "payer_email": (resource.get("payer") or {}).get("email_address"),
    }

    if ev_type == PAYPAL_ORDER_APPROVED:
        purchase = match_purchase(meta, order_id)
        record_payment(PROVIDER_PAYPAL, ev_id, ev_type, status=PAYMENT_APPROVED, meta=meta,
                       amount_cents=amount_cents, currency=currency, purchase=purchase, extra=extra)
        note = "approved"
        if settings is not None and settings.configured and order_id:
            try:
                capture = paypal_gateway.capture_order(settings, order_id)
                note = f"capture:{capture.get('status')}"
            except ProviderUnavailableError as e:
                # PAYMENT.CAPTURE.COMPLETED or the direct path will still activate
                current_app.logger.warning("paypal capture failed for order %s: %s", order_id, e)
                note = "capture_failed"
        outcome = WebhookOutcome(PAYMENT_APPROVED, purchase_id=purchase.id if purchase is not None else None)
        finish_event(log, note)
        return outcome

    if ev_type == PAYPAL_CAPTURE_COMPLETED:
        outcome = _complete(
            PROVIDER_PAYPAL, ev_id, ev_type, meta,
            amount_cents=amount_cents,
            currency=currency,
            provider_reference=order_id,
            payment_intent_id=f"paypal_{order_id}" if order_id else None,
            extra=extra,
        )
    else:
        _log("webhook_ignored", provider=PROVIDER_PAYPAL, event_id=ev_id, type=ev_type)
        outcome = WebhookOutcome("ignored")

    finish_event(log, outcome.status)
    return outcome
