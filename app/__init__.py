import os
from flask import Flask, request, jsonify

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=True)


from .config import get_config
from .errors import SlotMarketError
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .observability import init_logging, init_sentry

def create_app():
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_DEFAULTS", ["1000 per hour"])
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        # Payment providers are optional at boot; checkout answers needsConfiguration

    init_logging(app)
    init_sentry(app)

    # Apply HTTPS, HSTS & CSP only in staging/production
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    from .services.providers import init_payment_providers
    init_payment_providers(app)

    from .blueprints.auth import bp as auth_bp
    from .blueprints.slots import bp as slots_bp
    from .blueprints.pricing import bp as pricing_bp
    from .blueprints.checkout import bp as checkout_bp
    from .blueprints.drafts import bp as drafts_bp
    from .blueprints.notifications import bp as notifications_bp
    from .blueprints.admin import bp as admin_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")

    # Marketplace
    app.register_blueprint(slots_bp, url_prefix="/slots")
    app.register_blueprint(pricing_bp, url_prefix="/pricing")
    app.register_blueprint(checkout_bp, url_prefix="/checkout")
    app.register_blueprint(drafts_bp, url_prefix="/drafts")
    app.register_blueprint(notifications_bp, url_prefix="/notifications")

    # Admin & provider callbacks
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # Domain errors carry their own status and payload
    @app.errorhandler(SlotMarketError)
    def handle_slot_market_error(e):
        if e.status_code >= 500:
            app.logger.warning("request.failed", extra={"code": e.code, "path": request.path})
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(401)
    def unauthorized(e):
        return {"error": "unauthorized", "code": 401}, 401

    @app.errorhandler(403)
    def forbidden(e):
        return {"error": "forbidden", "code": 403}, 403

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "not_found", "code": 404}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "method_not_allowed", "code": 405}, 405

    @app.errorhandler(500)
    def server_error(e):
        return {"error": "internal_error", "code": 500}, 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError
    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return {"error": "csrf_failed", "message": e.description}, 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return (payload, 429, headers)

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    # Ensure the Stripe SDK is initialized for every worker/process.
    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    else:
        app.logger.warning(
            "Stripe secret key missing; Stripe checkout will answer needsConfiguration"
        )

    return app
