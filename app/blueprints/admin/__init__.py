from flask import Blueprint

bp = Blueprint("admin", __name__)

from flask_login import current_user
from flask import jsonify

@bp.before_request
def _require_login_admin():
    if current_user.is_authenticated:
        return None
    return jsonify({"error": "unauthorized", "code": 401}), 401


# Import submodules so their routes register on the same bp
from . import payments  # noqa: E402,F401
