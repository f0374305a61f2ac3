from functools import wraps
from typing import Callable
from flask import request
from flask_login import current_user

from app.services.access import has_active_purchase
from app.services.slots import get_slot_config


def enforce_slot_access(slot_id):
    """
    Returns None when allowed; otherwise a (payload, status) tuple.
    Allowed: free slot, or an active unexpired purchase for (current_user, slot).
    """
    if get_slot_config(slot_id) is None:
        return ({"error": "validation_error", "message": f"Unknown slot: {slot_id}"}, 400)
    if has_active_purchase(current_user.id, slot_id):
        return None
    return ({"error": "purchase_required", "slotId": int(slot_id), "hasAccess": False}, 403)


def require_slot_access(fn: Callable):
    """
    Gate listing creation behind a paid slot. Reads ``slot_id`` from the view
    kwargs, falling back to ``slotId`` in the JSON body. Expects login first.
    """
    @wraps(fn)
    def _wrap(*args, **kwargs):
        slot_id = kwargs.get("slot_id")
        if slot_id is None:
            slot_id = (request.get_json(silent=True) or {}).get("slotId")
        resp = enforce_slot_access(slot_id)
        if resp is not None:
            return resp
        return fn(*args, **kwargs)
    return _wrap
