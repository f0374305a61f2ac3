from flask_talisman import Talisman

def init_security(app):
    """
    Production/staging security headers with a conservative CSP.
    Stripe and PayPal hosted checkout pages are reached by redirect; their
    SDK origins stay allowed for the client bundle.
    """
    csp = {
        "default-src": ["'self'"],
        "script-src":  ["'self'", "https://js.stripe.com", "https://www.paypal.com"],
        "style-src":   ["'self'", "'unsafe-inline'"],
        "img-src":     ["'self'", "data:", "blob:", "https:"],
        "font-src":    ["'self'", "data:"],
        "connect-src": ["'self'", "https://api.stripe.com", "https://www.paypal.com",
                        "https://api-m.paypal.com", "https://api-m.sandbox.paypal.com"],
        "frame-src":   ["'self'", "https://js.stripe.com", "https://hooks.stripe.com",
                        "https://www.paypal.com", "https://www.sandbox.paypal.com"],
        "frame-ancestors": ["'self'"],
        "base-uri":    ["'self'"],
        "form-action": ["'self'", "https://checkout.stripe.com", "https://www.paypal.com",
                        "https://www.sandbox.paypal.com"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="SAMEORIGIN",
        referrer_policy="strict-origin-when-cross-origin",
    )
