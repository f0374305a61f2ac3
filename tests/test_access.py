from datetime import timedelta
from app.extensions import db
from app.models import Advertisement, SlotPurchase
from app.services import access
from app.utils.timeutil import utcnow

def _login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)

def _purchase(app, uid, slot_id=1, status="active", expires_in_days=10, draft_id=None):
    with app.app_context():
        p = SlotPurchase(user_id=uid, slot_id=slot_id, product_type=f"slot_{slot_id}", provider="stripe",
                         status=status, is_active=status == "active", duration_days=30, amount_cents=999,
                         draft_kind="advertisement" if draft_id else None, draft_id=draft_id,
                         expires_at=utcnow() + timedelta(days=expires_in_days))
        db.session.add(p)
        db.session.commit()
        return p.id


def test_access_requires_login(client):
    assert client.get("/slots/1/access").status_code == 401


def test_access_none_then_ready(app, client, make_user):
    uid = make_user()
    _login(client, uid)
    body = client.get("/slots/1/access").get_json()
    assert body == {"slotId": 1, "hasAccess": False, "status": "none"}

    _purchase(app, uid)
    body = client.get("/slots/1/access").get_json()
    assert body["hasAccess"] is True and body["status"] == "ready"


def test_expired_purchase_grants_nothing(app, client, make_user):
    uid = make_user()
    _purchase(app, uid, expires_in_days=-1)
    _login(client, uid)
    assert client.get("/slots/1/access").get_json()["status"] == "none"


def test_free_slot_always_has_access(client, make_user):
    _login(client, make_user())
    assert client.get("/slots/6/access").get_json()["hasAccess"] is True


def test_after_payment_reports_processing_until_webhook(client, make_user):
    _login(client, make_user())
    body = client.get("/slots/1/access?payment=success").get_json()
    assert body["status"] == "processing"
    assert body["hasAccess"] is False


def test_wait_for_activation_sees_late_webhook(app, make_user):
    uid = make_user()
    slept = []

    def _sleep(delay):
        slept.append(delay)
        if len(slept) == 2:
            # Webhook lands between the second and third check
            db.session.add(SlotPurchase(user_id=uid, slot_id=2, product_type="slot_2", provider="paypal",
                                        status="active", is_active=True, duration_days=30,
                                        expires_at=utcnow() + timedelta(days=30)))
            db.session.commit()

    with app.app_context():
        assert access.wait_for_activation(uid, 2, delays=(0.8, 1.5, 2.5, 4.0), sleep=_sleep) == "ready"
    assert slept == [0.8, 1.5]


def test_wait_for_activation_gives_up(app, make_user):
    uid = make_user()
    slept = []
    with app.app_context():
        assert access.wait_for_activation(uid, 2, delays=(0.1, 0.2), sleep=slept.append) == "processing"
    assert slept == [0.1, 0.2]


def test_listing_creation_needs_purchase(client, make_user):
    _login(client, make_user())
    resp = client.post("/slots/1/listings", json={"title": "Buying Jewels"})
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "purchase_required"


def test_listing_creation_consumes_unclaimed_purchase(app, client, make_user):
    uid = make_user()
    pid = _purchase(app, uid)
    _login(client, uid)

    resp = client.post("/slots/1/listings", json={"fields": {"title": "Buying Jewels"}})
    assert resp.status_code == 201
    body = resp.get_json()
    with app.app_context():
        ad = db.session.get(Advertisement, body["id"])
        purchase = db.session.get(SlotPurchase, pid)
        assert ad.is_active is True and ad.ad_type == "marketplace"
        assert (purchase.draft_kind, purchase.draft_id) == ("advertisement", ad.id)

    # The purchase is now tied to a listing; a second one needs another purchase
    again = client.post("/slots/1/listings", json={"fields": {"title": "Second"}})
    assert again.status_code == 403


def test_listing_creation_on_free_slot(client, make_user):
    _login(client, make_user())
    resp = client.post("/slots/6/listings", json={"name": "Fresh MU", "website": "https://fresh.example"})
    assert resp.status_code == 201
    assert resp.get_json()["isActive"] is True


def test_listing_creation_rejects_wrong_kind(app, client, make_user):
    uid = make_user()
    _purchase(app, uid)
    _login(client, uid)
    resp = client.post("/slots/1/listings", json={"draftType": "banner", "title": "x"})
    assert resp.status_code == 400
