from flask import request, jsonify
from flask_login import login_required, current_user
from . import bp
from app.errors import NotFoundError, ValidationError
from app.extensions import limiter
from app.security.entitlements import require_slot_access
from app.services import capacity, drafts
from app.services.access import access_status
from app.services.pricing import list_packages
from app.services.slots import get_slot_config, list_slots

# Body keys that describe the request, not listing content
_META_KEYS = {"draftType", "slotId", "fields"}


def _slot_or_404(slot_id: int):
    cfg = get_slot_config(slot_id)
    if cfg is None:
        raise NotFoundError(f"Slot {slot_id} not found", slotId=slot_id)
    return cfg


@bp.get("")
@bp.get("/")
def index():
    return jsonify({"slots": [cfg.to_dict() for cfg in list_slots()]})


@bp.get("/<int:slot_id>")
def detail(slot_id: int):
    cfg = _slot_or_404(slot_id)
    body = cfg.to_dict()
    body["packages"] = [p.to_dict() for p in list_packages(slot_id=cfg.slot_id)]
    body["availability"] = capacity.availability(cfg.slot_id)
    return jsonify(body)


@bp.get("/<int:slot_id>/availability")
def availability(slot_id: int):
    cfg = _slot_or_404(slot_id)
    return jsonify(capacity.availability(cfg.slot_id))


@bp.get("/<int:slot_id>/access")
@login_required
def access(slot_id: int):
    cfg = _slot_or_404(slot_id)
    after_payment = (request.args.get("payment") or "").lower() == "success"
    return jsonify(access_status(current_user.id, cfg.slot_id, after_payment=after_payment))


@bp.post("/<int:slot_id>/listings")
@limiter.limit("20/minute")
@login_required
@require_slot_access
def create_listing(slot_id: int):
    cfg = _slot_or_404(slot_id)
    data = request.get_json(silent=True) or {}
    if data.get("draftType") and data["draftType"] != cfg.kind.value:
        raise ValidationError(f"Slot {slot_id} holds {cfg.kind.value} listings", field="draftType")
    fields = data.get("fields")
    if fields is None:
        fields = {k: v for k, v in data.items() if k not in _META_KEYS}
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object", field="fields")
    entity = drafts.create_listing(cfg.kind, current_user.id, cfg.slot_id, fields)
    return jsonify(drafts.serialize(entity)), 201
