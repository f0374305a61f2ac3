from app.extensions import db
from app.models import PaymentConfig, PricingPackage
from app.services import paypal_gateway

def _login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)


def test_admin_requires_login(client):
    resp = client.get("/admin/payment-config")
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "unauthorized"


def test_non_admin_is_forbidden(client, make_user):
    _login(client, make_user())
    assert client.get("/admin/payment-config", headers={"Accept": "application/json"}).status_code == 403
    assert client.post("/admin/paypal/test", json={}).status_code == 403


def test_paypal_test_without_credentials(client, make_user):
    _login(client, make_user(is_admin=True))
    body = client.post("/admin/paypal/test", json={}).get_json()
    assert body["configured"] is False
    assert body["status"] == "not_configured"


def test_paypal_test_records_environment(app, client, make_user, configure_providers, monkeypatch):
    configure_providers(paypal=True)
    monkeypatch.setattr(paypal_gateway, "probe_credentials",
                        lambda settings: {"ok": True, "environment": "sandbox", "tokenType": "Bearer", "expiresIn": 32400})
    _login(client, make_user(is_admin=True))

    body = client.post("/admin/paypal/test", json={}).get_json()
    assert body["status"] == "connected"
    assert body["environment"] == "sandbox"
    assert body["hasWebhookId"] is False
    with app.app_context():
        row = PaymentConfig.query.filter_by(config_key="paypal").one()
        assert row.is_enabled is True
        assert row.config_value["environment"] == "sandbox"
        assert row.config_value["platform_fee_percent"] == "0"


def test_paypal_test_bad_credentials(client, make_user, configure_providers, monkeypatch):
    configure_providers(paypal=True)
    monkeypatch.setattr(paypal_gateway, "probe_credentials", lambda settings: {"ok": False, "error": "invalid_client"})
    _login(client, make_user(is_admin=True))
    assert client.post("/admin/paypal/test", json={}).get_json()["status"] == "invalid_credentials"


def test_payment_config_update(app, client, make_user):
    _login(client, make_user(is_admin=True))
    resp = client.put("/admin/payment-config/stripe",
                      json={"configValue": {"platform_fee_percent": 12.5}, "isEnabled": True})
    assert resp.status_code == 200

    listed = client.get("/admin/payment-config").get_json()["configs"]
    assert [c["configKey"] for c in listed] == ["stripe"]

    assert client.put("/admin/payment-config/stripe",
                      json={"configValue": {"platform_fee_percent": 140}}).status_code == 400
    assert client.put("/admin/payment-config/bitcoin", json={"configValue": {}}).status_code == 400
    assert client.put("/admin/payment-config/stripe", json={"configValue": ["x"]}).status_code == 400
    with app.app_context():
        row = PaymentConfig.query.filter_by(config_key="stripe").one()
        assert row.config_value["platform_fee_percent"] == "12.5"


def test_package_admin(app, client, make_user, make_package):
    pid = make_package(slot_id=2)
    make_package(slot_id=3)
    _login(client, make_user(is_admin=True))

    resp = client.post(f"/admin/packages/{pid}/deactivate")
    assert resp.status_code == 200
    assert resp.get_json()["isActive"] is False
    with app.app_context():
        assert db.session.get(PricingPackage, pid).is_active is False

    listed = client.get("/admin/packages?slotId=2").get_json()["packages"]
    assert [p["id"] for p in listed] == [pid]
    assert client.post("/admin/packages/9999/deactivate").status_code == 404
