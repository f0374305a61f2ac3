from functools import wraps
from flask import abort, request
from flask_login import current_user


def admin_required(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            return _abort_smart(401)
        if not getattr(current_user, "is_admin", False):
            return _abort_smart(403)
        return fn(*args, **kwargs)
    return _wrap


def _abort_smart(code: int):
    # If the client asked for JSON, return a JSON-shaped error
    accept = (request.headers.get("Accept") or "").lower()
    if "application/json" in accept or request.is_json or request.path.endswith(".json"):
        from flask import jsonify
        return jsonify({"error": {401: "unauthorized", 403: "forbidden", 404: "not_found"}[code], "code": code}), code
    abort(code)
