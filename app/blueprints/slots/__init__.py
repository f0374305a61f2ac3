from flask import Blueprint

bp = Blueprint("slots", __name__)

from . import routes  # noqa: E402,F401
