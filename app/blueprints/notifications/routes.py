from flask import request, jsonify
from flask_login import login_required, current_user
from . import bp
from app.services import notifications


@bp.get("")
@bp.get("/")
@login_required
def index():
    unread_only = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    rows = notifications.list_for_user(current_user.id, unread_only=unread_only)
    return jsonify({
        "notifications": [n.to_dict() for n in rows],
        "unreadCount": notifications.unread_count(current_user.id),
    })


@bp.post("/<int:notification_id>/read")
@login_required
def mark_read(notification_id: int):
    row = notifications.mark_read(notification_id, current_user.id)
    return jsonify(row.to_dict())
