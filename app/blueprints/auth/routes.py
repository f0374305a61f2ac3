from flask import request, jsonify
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func
from app.extensions import db, limiter
from app.models.user import User
from . import bp


def _login_email_scope():
    data_json = request.get_json(silent=True) or {}
    email = (request.form.get("email") or data_json.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _user_payload(user: User) -> dict:
    return {"id": user.id, "email": user.email, "isAdmin": bool(user.is_admin)}


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")              # per-IP (anon → IP via _rate_limit_key)
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)  # per-account
def login_post():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "validation_error", "message": "Email and password are required"}), 400

    user = db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()

    if not user or not user.check_password(password) or not user.is_active:
        return jsonify({"error": "invalid_credentials"}), 400

    login_user(user)
    return jsonify(_user_payload(user))


@bp.post("/logout")
def logout_post():
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"ok": True})


@bp.get("/csrf")
def csrf_token():
    # SPA clients echo this back in the X-CSRFToken header
    return jsonify({"csrfToken": generate_csrf()})


@bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(current_user))
