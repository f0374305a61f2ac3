import json
from flask import request, jsonify, current_app
from . import bp
from app.errors import ProviderUnavailableError, SignatureVerificationError, SlotMarketError
from app.extensions import db, csrf
from app.services import payment_events, stripe_gateway
from app.services.providers import get_providers


def _json_body(raw: bytes):
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def _process(provider: str, event_id, event_type, handler):
    """Run one event in a single transaction; roll back and leave a note on failure."""
    try:
        outcome = handler()
        db.session.commit()
    except SlotMarketError as e:
        db.session.rollback()
        current_app.logger.error(
            "%s_webhook.rejected", provider,
            extra={"event_id": event_id, "type": event_type, "error": e.code},
        )
        payment_events.note_failure(provider, event_id, event_type, e)
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(
            "%s_webhook.handler_error", provider,
            extra={"event_id": event_id, "type": event_type},
        )
        payment_events.note_failure(provider, event_id, event_type, e)
        # 500 so the provider redelivers; dedup makes the retry safe
        return jsonify({"error": "handler_error", "eventId": event_id}), 500

    current_app.logger.info(json.dumps({
        "event": f"{provider}_webhook",
        "event_id": event_id,
        "type": event_type,
        "status": outcome.status,
        "purchase_id": outcome.purchase_id,
    }))
    return jsonify(outcome.to_dict()), 200


def _log_only(provider: str, raw: bytes):
    outcome = payment_events.record_unconfigured(provider, _json_body(raw) or {})
    db.session.commit()
    return jsonify(outcome.to_dict()), 200


# ----- Stripe Webhook (slot checkout lifecycle) -----
@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies signature, dedups by event id, activates the matched purchase.
    """
    raw_bytes = request.get_data(cache=False, as_text=False)
    settings = get_providers().stripe
    if not settings.configured or not settings.webhook_secret:
        return _log_only("stripe", raw_bytes)

    try:
        event = stripe_gateway.verify_webhook(settings, raw_bytes, request.headers.get("Stripe-Signature", ""))
    except SignatureVerificationError as e:
        payment_events.record_invalid_signature("stripe", raw_bytes)
        db.session.commit()
        return jsonify(e.to_dict()), 400

    return _process("stripe", event.get("id"), event.get("type"),
                    lambda: payment_events.handle_stripe_event(event))


# ----- PayPal Webhook (orders / captures) -----
@csrf.exempt
@bp.post("/paypal")
def paypal_webhook():
    raw_bytes = request.get_data(cache=False, as_text=False)
    event = _json_body(raw_bytes)
    settings = get_providers().paypal
    if not settings.configured:
        return _log_only("paypal", raw_bytes)
    if event is None:
        return jsonify({"error": "malformed_event", "message": "Body is not a JSON object"}), 400

    try:
        verified = payment_events.verify_paypal_event(settings, request.headers, event)
    except SignatureVerificationError as e:
        payment_events.record_invalid_signature("paypal", raw_bytes)
        db.session.commit()
        return jsonify(e.to_dict()), 400
    except ProviderUnavailableError as e:
        current_app.logger.warning("paypal_webhook.verify_unavailable", extra={"event_id": event.get("id")})
        return jsonify(e.to_dict()), e.status_code

    return _process("paypal", event.get("id"), event.get("event_type"),
                    lambda: payment_events.handle_paypal_event(event, settings, signature_valid=verified))
