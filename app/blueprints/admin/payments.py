import json

from flask import current_app, request, jsonify
from flask_login import current_user

from . import bp
from app.errors import ValidationError
from app.services import payment_settings, pricing
from app.services.policy import admin_required


@bp.post("/paypal/test")
@admin_required
def paypal_test():
    """Probe the configured PayPal credentials against sandbox, then live."""
    result = payment_settings.check_paypal_config()
    current_app.logger.info(json.dumps({
        "event": "admin.paypal_test",
        "user_id": current_user.id,
        "status": result.get("status"),
    }))
    return jsonify(result)


@bp.get("/payment-config")
@admin_required
def list_payment_config():
    rows = [payment_settings.get_config_row(k) for k in payment_settings.CONFIG_KEYS]
    return jsonify({"configs": [r.to_dict() for r in rows if r is not None]})


@bp.put("/payment-config/<key>")
@admin_required
def put_payment_config(key: str):
    data = request.get_json(silent=True) or {}
    value = data.get("configValue") or {}
    if not isinstance(value, dict):
        raise ValidationError("configValue must be an object", field="configValue")
    is_enabled = data.get("isEnabled")
    row = payment_settings.upsert_config(key, value, None if is_enabled is None else bool(is_enabled))
    current_app.logger.info(json.dumps({"event": "admin.payment_config_updated", "key": key, "user_id": current_user.id}))
    return jsonify(row.to_dict())


@bp.get("/packages")
@admin_required
def list_packages():
    slot_id = request.args.get("slotId", type=int)
    rows = pricing.list_packages(slot_id, include_inactive=True)
    return jsonify({"packages": [p.to_dict() for p in rows]})


@bp.post("/packages/<int:package_id>/deactivate")
@admin_required
def deactivate_package(package_id: int):
    return jsonify(pricing.deactivate_package(package_id).to_dict())
