from datetime import timedelta
from app.extensions import db
from app.models import Server, Banner, SlotPurchase
from app.utils.timeutil import utcnow

def _login(client, user_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)


def test_drafts_require_login(client):
    resp = client.get("/drafts")
    assert resp.status_code == 401


def test_create_draft_starts_inactive(app, client, make_user):
    uid = make_user()
    _login(client, uid)
    resp = client.post("/drafts", json={
        "draftType": "server",
        "slotId": 3,
        "fields": {"name": "MU Legends", "website": "https://legends.example", "features": ["x5", "pvp"]},
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["status"] == "draft"
    assert body["isActive"] is False
    assert body["isDraft"] is True
    with app.app_context():
        s = db.session.get(Server, body["id"])
        assert s.is_active is False
        # Slot 3 implies the premium flag
        assert s.is_premium is True


def test_create_draft_rejects_protected_and_bad_fields(client, make_user):
    _login(client, make_user())
    resp = client.post("/drafts", json={"draftType": "server", "fields": {"name": "x", "is_active": True}})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "is_active"

    resp = client.post("/drafts", json={"draftType": "server", "fields": {"name": "x", "website": "ftp://x"}})
    assert resp.status_code == 400

    resp = client.post("/drafts", json={"draftType": "wizard", "fields": {"name": "x"}})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "draftType"

    # Slot 5 holds banners, not servers
    resp = client.post("/drafts", json={"draftType": "server", "slotId": 5, "fields": {"name": "x"}})
    assert resp.status_code == 400


def test_other_users_draft_is_forbidden(app, client, make_user):
    owner, other = make_user(), make_user()
    with app.app_context():
        s = Server(user_id=owner, name="Mine", features=[])
        db.session.add(s); db.session.commit()
        sid = s.id
    _login(client, other)
    assert client.patch(f"/drafts/server/{sid}", json={"fields": {"name": "Theirs"}}).status_code == 403
    assert client.delete(f"/drafts/server/{sid}").status_code == 403
    assert client.patch("/drafts/server/99999", json={"fields": {"name": "x"}}).status_code == 404


def test_update_and_delete_draft(app, client, make_user):
    uid = make_user()
    with app.app_context():
        s = Server(user_id=uid, name="Old", features=[])
        db.session.add(s); db.session.commit()
        sid = s.id
    _login(client, uid)
    resp = client.patch(f"/drafts/server/{sid}", json={"fields": {"name": "New", "season": "S19"}})
    assert resp.status_code == 200
    assert resp.get_json()["name"] == "New"

    assert client.delete(f"/drafts/server/{sid}").status_code == 200
    with app.app_context():
        assert db.session.get(Server, sid) is None


def test_delete_refused_while_payment_pending(app, client, make_user):
    uid = make_user()
    with app.app_context():
        b = Banner(user_id=uid, slot_id=5, title="Hero", image_url="https://img.example/a.png",
                   status="pending_payment")
        db.session.add(b); db.session.flush()
        db.session.add(SlotPurchase(user_id=uid, slot_id=5, product_type="slot_5", provider="stripe",
                                    draft_kind="banner", draft_id=b.id, duration_days=7, amount_cents=2499))
        db.session.commit()
        bid = b.id
    _login(client, uid)
    resp = client.delete(f"/drafts/banner/{bid}")
    assert resp.status_code == 400


def test_publish_free_slot_draft(app, client, make_user, make_package):
    uid = make_user()
    make_package(slot_id=6, price_cents=0, duration_days=30)
    with app.app_context():
        s = Server(user_id=uid, slot_id=6, name="Fresh", features=[])
        db.session.add(s); db.session.commit()
        sid = s.id
    _login(client, uid)
    resp = client.post(f"/drafts/server/{sid}/publish")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["isActive"] is True
    assert body["isDraft"] is False
    assert body["expiresAt"] is not None


def test_publish_paid_slot_draft_refused(app, client, make_user):
    uid = make_user()
    with app.app_context():
        s = Server(user_id=uid, slot_id=3, name="Premium", features=[])
        db.session.add(s); db.session.commit()
        sid = s.id
    _login(client, uid)
    resp = client.post(f"/drafts/server/{sid}/publish")
    assert resp.status_code == 400
    with app.app_context():
        assert db.session.get(Server, sid).is_active is False


def test_listing_shows_expired_and_drafts_only(app, client, make_user):
    uid = make_user()
    with app.app_context():
        live = Server(user_id=uid, slot_id=3, name="Live", features=[], is_active=True, status="active",
                      expires_at=utcnow() - timedelta(days=1))
        draft = Server(user_id=uid, slot_id=3, name="Draft", features=[])
        free = Server(user_id=uid, slot_id=6, name="Free", features=[])
        db.session.add_all([live, draft, free]); db.session.commit()
    _login(client, uid)

    rows = client.get("/drafts").get_json()["drafts"]
    by_name = {r["name"]: r for r in rows}
    # Past expiry reads as expired before any sweep runs
    assert by_name["Live"]["status"] == "expired"
    assert by_name["Live"]["isActive"] is False

    drafts_only = client.get("/drafts?draftsOnly=true").get_json()["drafts"]
    assert [r["name"] for r in drafts_only] == ["Draft"]
