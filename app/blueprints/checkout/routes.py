from flask import request, jsonify
from flask_login import login_required, current_user
from . import bp
from app.extensions import limiter
from app.services.activation import activate_draft_for_user
from app.services.checkout import create_slot_checkout
from app.services.payment_settings import checkout_config


@bp.get("/config")
def config():
    """Which payment methods the checkout modal may offer."""
    return jsonify(checkout_config())


@bp.post("/session")
@limiter.limit("10/minute")
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    result = create_slot_checkout(
        current_user.id,
        data.get("packageId"),
        slot_id=data.get("slotId"),
        draft_id=data.get("draftId"),
        draft_type=data.get("draftType"),
        success_url=data.get("successUrl"),
        cancel_url=data.get("cancelUrl"),
        provider=data.get("paymentMethod") or "stripe",
        customer_email=getattr(current_user, "email", None),
    )
    return jsonify(result.to_dict())


@bp.post("/activate-draft")
@limiter.limit("20/minute")
@login_required
def activate_draft():
    """
    Client already holds a provider-confirmed reference; activate without
    waiting for the webhook.
    """
    data = request.get_json(silent=True) or {}
    result = activate_draft_for_user(
        current_user.id,
        data.get("draftType"),
        data.get("draftId"),
        data.get("slotId"),
        data.get("durationDays"),
        stripe_session_id=data.get("stripeSessionId"),
        paypal_order_id=data.get("paypalOrderId"),
    )
    return jsonify(result.to_dict())
