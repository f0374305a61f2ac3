from flask import request, jsonify
from flask_login import login_required, current_user
from . import bp
from app.errors import ValidationError
from app.services import drafts


def _fields(data: dict) -> dict:
    fields = data.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object", field="fields")
    fields = dict(fields)
    if "slotId" in data:
        fields["slot_id"] = data.get("slotId")
    return fields


@bp.before_request
@login_required
def _require_login():
    return None


@bp.get("")
@bp.get("/")
def index():
    drafts_only = (request.args.get("draftsOnly") or "").lower() in ("1", "true", "yes")
    rows = drafts.list_drafts_for_user(current_user.id, drafts_only=drafts_only)
    return jsonify({"drafts": [drafts.serialize(r) for r in rows]})


@bp.post("")
@bp.post("/")
def create():
    data = request.get_json(silent=True) or {}
    entity = drafts.create_draft(data.get("draftType"), current_user.id, _fields(data))
    return jsonify(drafts.serialize(entity)), 201


@bp.patch("/<kind>/<int:draft_id>")
def update(kind: str, draft_id: int):
    data = request.get_json(silent=True) or {}
    entity = drafts.update_draft(kind, draft_id, current_user.id, _fields(data))
    return jsonify(drafts.serialize(entity))


@bp.delete("/<kind>/<int:draft_id>")
def delete(kind: str, draft_id: int):
    drafts.delete_draft(kind, draft_id, current_user.id)
    return jsonify({"ok": True})


@bp.post("/<kind>/<int:draft_id>/publish")
def publish(kind: str, draft_id: int):
    """Free-slot drafts go live without checkout."""
    entity = drafts.publish_free_draft(kind, draft_id, current_user.id)
    return jsonify(drafts.serialize(entity))
