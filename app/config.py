import os
from dotenv import dotenv_values


def _floats(raw: str):
    return tuple(float(x) for x in raw.split(",") if x.strip())


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database (env in prod; dev/test may use default)
    _ENV_FALLBACK = dotenv_values(".env")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # Used for creation-path redirects and provider return URLs
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # --- PayPal ---
    PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
    PAYPAL_WEBHOOK_ID = os.getenv("PAYPAL_WEBHOOK_ID")
    # "sandbox" | "live"; empty means guess from the client id
    PAYPAL_ENVIRONMENT = os.getenv("PAYPAL_ENVIRONMENT", "")
    PAYPAL_HTTP_TIMEOUT = float(os.getenv("PAYPAL_HTTP_TIMEOUT", "10"))

    # --- Slot purchases ---
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
    # Fallback when payment_config has no platform_fee_percent for the provider
    PLATFORM_FEE_PERCENT = float(os.getenv("PLATFORM_FEE_PERCENT", "0"))
    # How long a pending purchase holds a unit of capacity on a capped slot
    CHECKOUT_RESERVATION_MINUTES = int(os.getenv("CHECKOUT_RESERVATION_MINUTES", "30"))
    # Pending purchases older than this are abandoned by the expiry sweep
    PENDING_PURCHASE_TTL_HOURS = int(os.getenv("PENDING_PURCHASE_TTL_HOURS", "24"))
    # Seconds between access checks after redirect-back from the provider
    ACCESS_POLL_DELAYS = _floats(os.getenv("ACCESS_POLL_DELAYS", "0.8,1.5,2.5,4.0"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Presence is enforced in create_app(); reading lazily keeps imports safe
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    RATELIMIT_ENABLED = False
    ACCESS_POLL_DELAYS = ()


_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
