from datetime import timedelta
import pytest
from app.extensions import db
from app.models import Banner, Notification, Server, SlotPurchase
from app.services import paypal_gateway, stripe_gateway
from app.services.activation import activate_purchase
from app.utils.timeutil import as_utc, utcnow

def _login(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)

@pytest.fixture()
def paid_stripe(monkeypatch, configure_providers):
    configure_providers(stripe=True)
    seen = []
    def _fake_retrieve(settings, session_id):
        seen.append(session_id)
        return {"id": session_id, "payment_status": "paid", "status": "complete", "payment_intent": "pi_9"}
    monkeypatch.setattr(stripe_gateway, "retrieve_checkout_session", _fake_retrieve)
    return seen

def _server_draft(app, uid, with_pending=None, package_id=None):
    with app.app_context():
        s = Server(user_id=uid, slot_id=3, name="Top MU", features=[], status="pending_payment" if with_pending else "draft")
        db.session.add(s); db.session.flush()
        if with_pending:
            db.session.add(SlotPurchase(user_id=uid, slot_id=3, package_id=package_id, product_type="slot_3",
                                        provider="stripe", provider_reference=with_pending,
                                        draft_kind="server", draft_id=s.id, duration_days=15, amount_cents=2699))
        db.session.commit()
        return s.id

def _activate(client, draft_id, **over):
    body = {"draftType": "server", "draftId": draft_id, "slotId": 3, "durationDays": 15,
            "stripeSessionId": "cs_live_1"}
    body.update(over)
    return client.post("/checkout/activate-draft", json=body)


def test_direct_activation_is_idempotent(app, client, make_user, make_package, paid_stripe):
    uid = make_user()
    pkg = make_package(slot_id=3, price_cents=2699, duration_days=15)
    sid = _server_draft(app, uid, with_pending="cs_live_1", package_id=pkg)
    _login(client, uid)

    first = _activate(client, sid)
    second = _activate(client, sid)
    assert first.status_code == second.status_code == 200
    a, b = first.get_json(), second.get_json()
    assert a["success"] is True and a["alreadyActive"] is False
    assert b["alreadyActive"] is True
    assert a["expiresAt"] == b["expiresAt"]
    assert paid_stripe == ["cs_live_1", "cs_live_1"]

    with app.app_context():
        assert SlotPurchase.query.count() == 1
        assert Notification.query.count() == 1
        server = db.session.get(Server, sid)
        purchase = SlotPurchase.query.one()
        assert server.is_active is True
        assert purchase.stripe_payment_intent_id == "pi_9"
        assert as_utc(purchase.expires_at) - utcnow() > timedelta(days=14)


def test_activation_without_prior_purchase_creates_ledger_row(app, client, make_user, configure_providers, monkeypatch):
    configure_providers(paypal=True)
    monkeypatch.setattr(paypal_gateway, "get_order", lambda settings, order_id: {"id": order_id, "status": "COMPLETED"})
    uid = make_user()
    sid = _server_draft(app, uid)
    _login(client, uid)

    resp = _activate(client, sid, stripeSessionId=None, paypalOrderId="ORDER-77", durationDays=7)
    assert resp.status_code == 200
    with app.app_context():
        purchase = SlotPurchase.query.one()
        assert (purchase.provider, purchase.provider_reference) == ("paypal", "ORDER-77")
        assert purchase.duration_days == 7
        assert purchase.status == "active"
        assert purchase.stripe_payment_intent_id == "paypal_ORDER-77"


def test_unpaid_session_is_refused(app, client, make_user, configure_providers, monkeypatch):
    configure_providers(stripe=True)
    monkeypatch.setattr(stripe_gateway, "retrieve_checkout_session",
                        lambda settings, session_id: {"id": session_id, "payment_status": "unpaid"})
    uid = make_user()
    sid = _server_draft(app, uid)
    _login(client, uid)

    resp = _activate(client, sid)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "payment_not_completed"
    with app.app_context():
        assert db.session.get(Server, sid).is_active is False
        assert SlotPurchase.query.count() == 0


def test_cannot_activate_someone_elses_draft(app, client, make_user, paid_stripe):
    owner, other = make_user(), make_user()
    sid = _server_draft(app, owner)
    _login(client, other)
    resp = _activate(client, sid)
    assert resp.status_code == 403
    assert paid_stripe == []
    with app.app_context():
        assert SlotPurchase.query.count() == 0


def test_reference_from_another_account_is_forbidden(app, client, make_user, paid_stripe):
    owner, other = make_user(), make_user()
    _server_draft(app, owner, with_pending="cs_live_1")
    sid = _server_draft(app, other)
    _login(client, other)
    assert _activate(client, sid).status_code == 403


def test_missing_reference_and_bad_slot(client, make_user):
    _login(client, make_user())
    assert _activate(client, 1, stripeSessionId=None).status_code == 400
    # Slot 5 holds banners
    assert _activate(client, 1, slotId=5).status_code == 400


def test_capacity_conflict_at_activation(app, client, make_user, paid_stripe):
    seller, buyer = make_user(), make_user()
    with app.app_context():
        for i in range(3):
            db.session.add(Banner(user_id=seller, slot_id=5, title=f"B{i}", image_url="https://img.example/b.png",
                                  is_active=True, status="active", expires_at=utcnow() + timedelta(days=5)))
        mine = Banner(user_id=buyer, slot_id=5, title="Mine", image_url="https://img.example/m.png",
                      status="pending_payment")
        db.session.add(mine); db.session.flush()
        db.session.add(SlotPurchase(user_id=buyer, slot_id=5, product_type="slot_5", provider="stripe",
                                    provider_reference="cs_live_1", draft_kind="banner", draft_id=mine.id,
                                    duration_days=7, amount_cents=2499))
        db.session.commit()
        bid = mine.id
    _login(client, buyer)

    resp = _activate(client, bid, draftType="banner", slotId=5)
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "slot_full"
    with app.app_context():
        purchase = SlotPurchase.query.filter_by(user_id=buyer).one()
        assert purchase.status == "capacity_conflict"
        banner = db.session.get(Banner, bid)
        assert banner.is_active is False and banner.status == "draft"
        note = Notification.query.filter_by(user_id=buyer).one()
        assert note.type == "payment_capacity_conflict"


def test_activate_purchase_twice_keeps_expiry(app, make_user):
    uid = make_user()
    sid = _server_draft(app, uid, with_pending="cs_x")
    with app.app_context():
        purchase = SlotPurchase.query.one()
        first = activate_purchase(purchase)
        db.session.commit()
        second = activate_purchase(purchase)
        db.session.commit()
        assert first.activated and not first.already_active
        assert second.already_active
        assert as_utc(second.expires_at) == as_utc(first.expires_at)
        # No package: falls back to the purchase's own duration
        assert purchase.duration_days == 15
        assert db.session.get(Server, sid).status == "active"


def test_activation_sees_commit_made_while_waiting_for_lock(app, make_user):
    uid = make_user()
    sid = _server_draft(app, uid, with_pending="cs_race")
    with app.app_context():
        purchase = SlotPurchase.query.one()
        assert purchase.status == "pending"
        # Another worker activates the row behind this session's back
        theirs = utcnow() + timedelta(days=15) - timedelta(minutes=5)
        db.session.execute(
            SlotPurchase.__table__.update()
            .where(SlotPurchase.__table__.c.id == purchase.id)
            .values(status="active", is_active=True, expires_at=theirs, completed_at=utcnow())
        )

        result = activate_purchase(purchase)
        db.session.commit()
        assert result.already_active is True
        assert as_utc(result.expires_at) == theirs
        assert as_utc(db.session.get(SlotPurchase, purchase.id).expires_at) == theirs
        assert Notification.query.count() == 0
        server = db.session.get(Server, sid)
        assert server.is_active is True
        assert as_utc(server.expires_at) == theirs


def test_interleaved_banner_activations_never_overfill(app, make_user):
    seller = make_user()
    buyers = [make_user() for _ in range(5)]
    with app.app_context():
        db.session.add(Banner(user_id=seller, slot_id=5, title="Live", image_url="https://img.example/l.png",
                              is_active=True, status="active", expires_at=utcnow() + timedelta(days=3)))
        for i, uid in enumerate(buyers):
            banner = Banner(user_id=uid, slot_id=5, title=f"B{i}", image_url="https://img.example/b.png",
                            status="pending_payment")
            db.session.add(banner); db.session.flush()
            db.session.add(SlotPurchase(user_id=uid, slot_id=5, product_type="slot_5", provider="stripe",
                                        provider_reference=f"cs_banner_{i}", draft_kind="banner",
                                        draft_id=banner.id, duration_days=7, amount_cents=2499))
        db.session.commit()

    with app.app_context():
        # Every worker loaded its purchase before any of them activated
        purchases = SlotPurchase.query.order_by(SlotPurchase.id).all()
        order = [purchases[i] for i in (3, 0, 4, 1, 2)]
        outcomes = []
        for purchase in order + order:
            result = activate_purchase(purchase)
            db.session.commit()
            outcomes.append(result)
            live = Banner.query.filter_by(slot_id=5, is_active=True).count()
            assert live <= 3

        first_round = outcomes[:5]
        assert [r.conflict is None for r in first_round] == [True, True, False, False, False]
        # Redelivery changes nothing: winners stay active, losers stay in conflict
        for before, after in zip(first_round, outcomes[5:]):
            if before.conflict is None:
                assert after.already_active and after.expires_at == as_utc(before.expires_at)
            else:
                assert after.conflict is not None
        statuses = sorted(p.status for p in SlotPurchase.query.all())
        assert statuses == ["active", "active", "capacity_conflict", "capacity_conflict", "capacity_conflict"]
        assert Notification.query.filter_by(type="payment_success").count() == 2
        assert Notification.query.filter_by(type="payment_capacity_conflict").count() == 3
