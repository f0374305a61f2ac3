import json
from datetime import timedelta
import pytest
from app.errors import ProviderUnavailableError
from app.extensions import db
from app.models import Advertisement, Banner, SlotPurchase
from app.services import paypal_gateway, stripe_gateway
from app.utils.timeutil import utcnow

def _login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)

def _body(package_id, **over):
    body = {
        "packageId": package_id,
        "successUrl": "/checkout/success",
        "cancelUrl": "/checkout/cancel",
    }
    body.update(over)
    return body

@pytest.fixture()
def fake_stripe(monkeypatch):
    calls = []
    def _fake_create(settings, **kwargs):
        calls.append(kwargs)
        return {"id": f"cs_test_{len(calls)}", "url": f"https://checkout.stripe.test/{len(calls)}"}
    monkeypatch.setattr(stripe_gateway, "create_checkout_session", _fake_create)
    return calls

def _ad_draft(app, uid, slot_id=None):
    with app.app_context():
        ad = Advertisement(user_id=uid, slot_id=slot_id, title="Selling wings")
        db.session.add(ad); db.session.commit()
        return ad.id


def test_checkout_requires_login(client):
    assert client.post("/checkout/session", json={"packageId": 1}).status_code == 401


def test_free_package_skips_provider(app, client, make_user, make_package, fake_stripe):
    uid = make_user()
    pid = make_package(slot_id=6, price_cents=0, duration_days=30)
    _login(client, uid)

    resp = client.post("/checkout/session", json={"packageId": pid})
    assert resp.status_code == 200
    assert resp.get_json() == {"url": f"/create-listing?type=upcoming-server&slot=6&package={pid}", "free": True}
    assert fake_stripe == []
    with app.app_context():
        assert SlotPurchase.query.count() == 0


def test_unconfigured_provider_answers_needs_configuration(app, client, make_user, make_package):
    uid = make_user()
    pid = make_package(slot_id=1)
    _login(client, uid)
    resp = client.post("/checkout/session", json=_body(pid))
    assert resp.status_code == 503
    assert resp.get_json()["needsConfiguration"] is True
    with app.app_context():
        assert SlotPurchase.query.count() == 0


def test_stripe_checkout_creates_pending_purchase(app, client, make_user, make_package,
                                                  configure_providers, fake_stripe):
    configure_providers(stripe=True)
    uid = make_user()
    pid = make_package(slot_id=1, price_cents=2999, duration_days=30)
    draft_id = _ad_draft(app, uid)
    _login(client, uid)

    resp = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["provider"] == "stripe"
    assert body["url"] == "https://checkout.stripe.test/1"

    sent = fake_stripe[0]
    assert sent["amount_cents"] == 2999
    assert sent["metadata"]["purchase_id"] == str(body["purchaseId"])
    assert sent["metadata"]["draft_type"] == "advertisement"

    with app.app_context():
        purchase = db.session.get(SlotPurchase, body["purchaseId"])
        assert purchase.status == "pending"
        assert purchase.is_active is False
        assert purchase.provider_reference == "cs_test_1"
        ad = db.session.get(Advertisement, draft_id)
        assert ad.status == "pending_payment"
        assert ad.slot_id == 1
        assert ad.is_active is False


def test_retry_supersedes_earlier_pending(app, client, make_user, make_package,
                                          configure_providers, fake_stripe):
    configure_providers(stripe=True)
    uid = make_user()
    pid = make_package(slot_id=1)
    draft_id = _ad_draft(app, uid)
    _login(client, uid)

    first = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    second = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    assert first.status_code == second.status_code == 200
    with app.app_context():
        statuses = {p.id: p.status for p in SlotPurchase.query.all()}
    assert statuses[first.get_json()["purchaseId"]] == "abandoned"
    assert statuses[second.get_json()["purchaseId"]] == "pending"


def test_draft_of_wrong_kind_is_rejected(app, client, make_user, make_package, configure_providers, fake_stripe):
    configure_providers(stripe=True)
    uid = make_user()
    pid = make_package(slot_id=3)
    draft_id = _ad_draft(app, uid)
    _login(client, uid)
    resp = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    assert resp.status_code == 400
    assert fake_stripe == []


def test_someone_elses_draft_is_forbidden(app, client, make_user, make_package, configure_providers, fake_stripe):
    configure_providers(stripe=True)
    owner, buyer = make_user(), make_user()
    pid = make_package(slot_id=1)
    draft_id = _ad_draft(app, owner)
    _login(client, buyer)
    resp = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    assert resp.status_code == 403


def test_provider_failure_rolls_back(app, client, make_user, make_package, configure_providers, monkeypatch):
    configure_providers(stripe=True)
    uid = make_user()
    pid = make_package(slot_id=1)
    draft_id = _ad_draft(app, uid)

    def _boom(settings, **kwargs):
        raise ProviderUnavailableError("Stripe checkout failed: APIConnectionError")
    monkeypatch.setattr(stripe_gateway, "create_checkout_session", _boom)
    _login(client, uid)

    resp = client.post("/checkout/session", json=_body(pid, draftId=draft_id, draftType="advertisement"))
    assert resp.status_code == 502
    assert resp.get_json()["retryable"] is True
    with app.app_context():
        assert SlotPurchase.query.count() == 0
        assert db.session.get(Advertisement, draft_id).status == "draft"


def _fill_banner_slot(app, owner_id, with_purchases):
    now = utcnow()
    expiries = [now + timedelta(days=d) for d in (3, 9, 20)]
    with app.app_context():
        for i, exp in enumerate(expiries):
            b = Banner(user_id=owner_id, slot_id=5, title=f"B{i}", image_url="https://img.example/b.png",
                       is_active=True, status="active", expires_at=exp)
            db.session.add(b); db.session.flush()
            if with_purchases:
                db.session.add(SlotPurchase(user_id=owner_id, slot_id=5, product_type="slot_5", provider="stripe",
                                            status="active", is_active=True, draft_kind="banner", draft_id=b.id,
                                            duration_days=30, amount_cents=2499, expires_at=exp))
        db.session.commit()
    return expiries


def test_full_banner_slot_returns_409_with_next_available(app, client, make_user, make_package,
                                                          configure_providers, fake_stripe):
    configure_providers(stripe=True)
    seller, buyer = make_user(), make_user()
    expiries = _fill_banner_slot(app, seller, with_purchases=True)
    pid = make_package(slot_id=5, price_cents=2499, duration_days=7)
    _login(client, buyer)

    resp = client.post("/checkout/session", json=_body(pid))
    assert resp.status_code == 409
    data = resp.get_json()
    assert data["error"] == "slot_full"
    assert (data["activeCount"], data["maxAllowed"]) == (3, 3)
    assert data["nextAvailableAt"].startswith(expiries[0].isoformat()[:16])
    assert fake_stripe == []


def test_full_slot_without_purchase_expiry_omits_next_available(app, client, make_user, make_package,
                                                                configure_providers, fake_stripe):
    configure_providers(stripe=True)
    seller, buyer = make_user(), make_user()
    _fill_banner_slot(app, seller, with_purchases=False)
    pid = make_package(slot_id=5, price_cents=2499, duration_days=7)
    _login(client, buyer)

    resp = client.post("/checkout/session", json=_body(pid))
    assert resp.status_code == 409
    assert "nextAvailableAt" not in resp.get_json()


def test_fresh_pending_checkout_holds_capacity(app, client, make_user, make_package,
                                               configure_providers, fake_stripe):
    configure_providers(stripe=True)
    a, b, c, d = make_user(), make_user(), make_user(), make_user()
    pid = make_package(slot_id=5, price_cents=2499, duration_days=7)
    for uid in (a, b, c):
        _login(client, uid)
        assert client.post("/checkout/session", json=_body(pid)).status_code == 200

    _login(client, d)
    assert client.post("/checkout/session", json=_body(pid)).status_code == 409

    # Reservations lapse after CHECKOUT_RESERVATION_MINUTES
    with app.app_context():
        for p in SlotPurchase.query.all():
            p.created_at = utcnow() - timedelta(hours=2)
        db.session.commit()
    assert client.post("/checkout/session", json=_body(pid)).status_code == 200


def test_repeated_checkout_without_draft_holds_one_place(app, client, make_user, make_package,
                                                         configure_providers, fake_stripe):
    configure_providers(stripe=True)
    a, b, c, d = make_user(), make_user(), make_user(), make_user()
    pid = make_package(slot_id=5, price_cents=2499, duration_days=7)
    _login(client, a)
    for _ in range(3):
        assert client.post("/checkout/session", json=_body(pid)).status_code == 200

    with app.app_context():
        rows = SlotPurchase.query.filter_by(user_id=a).order_by(SlotPurchase.id).all()
        assert [r.status for r in rows] == ["abandoned", "abandoned", "pending"]

    # Only the latest attempt holds a reservation; two more buyers fit
    for uid in (b, c):
        _login(client, uid)
        assert client.post("/checkout/session", json=_body(pid)).status_code == 200
    _login(client, d)
    assert client.post("/checkout/session", json=_body(pid)).status_code == 409


def test_paypal_checkout_sends_custom_id_and_legacy_reference(app, client, make_user, make_package,
                                                              configure_providers, monkeypatch):
    configure_providers(paypal=True)
    app.config["PAYMENT_CURRENCY"] = "usd"
    uid = make_user()
    pid = make_package(slot_id=4, price_cents=799, duration_days=7)
    sent = {}
    def _fake_order(settings, **kwargs):
        sent.update(kwargs)
        return {"id": "ORDER-1", "url": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"}
    monkeypatch.setattr(paypal_gateway, "create_order", _fake_order)
    _login(client, uid)

    resp = client.post("/checkout/session", json=_body(pid, paymentMethod="paypal"))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["provider"] == "paypal"

    custom = json.loads(sent["custom_id"])
    assert custom["purchase_id"] == body["purchaseId"]
    assert custom["user_id"] == uid
    assert sent["reference_id"] == f"slot_4_{uid}"
    assert sent["return_url"] == "http://example.test/checkout/success"
    with app.app_context():
        assert db.session.get(SlotPurchase, body["purchaseId"]).provider_reference == "ORDER-1"


def test_checkout_config_reports_providers(client, configure_providers):
    configure_providers(stripe=True)
    data = client.get("/checkout/config").get_json()
    assert data["stripe"] == {"configured": True, "publishableKey": "pk_test_x"}
    assert data["paypal"] == {"configured": False, "enabled": False}
