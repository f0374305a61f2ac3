from flask import request, jsonify
from . import bp
from app.services.pricing import list_packages
from app.utils.validators import parse_int


@bp.get("/packages")
def packages():
    slot_id = parse_int(request.args.get("slotId"), "slotId", required=False)
    order_by = request.args.get("orderBy") or "display_order"
    rows = list_packages(slot_id=slot_id, order_by=order_by)
    return jsonify({"packages": [p.to_dict() for p in rows]})
