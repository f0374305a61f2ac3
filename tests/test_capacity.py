from datetime import timedelta
import pytest
from app.errors import CapacityExceededError
from app.extensions import db
from app.models import Banner, SlotLock, SlotPurchase
from app.services import capacity
from app.utils.timeutil import utcnow


def _banner(uid, active=True, expires_in_days=5, **kw):
    return Banner(user_id=uid, slot_id=5, title="B", image_url="https://img.example/b.png",
                  is_active=active, status="active" if active else "draft",
                  expires_at=utcnow() + timedelta(days=expires_in_days), **kw)


def _pending(uid, age_minutes=0):
    return SlotPurchase(user_id=uid, slot_id=5, product_type="slot_5", provider="stripe", status="pending",
                        duration_days=7, created_at=utcnow() - timedelta(minutes=age_minutes))


def test_uncapped_slot_is_never_full(app):
    with app.app_context():
        occ = capacity.check_availability(1)
        assert occ.max_allowed is None and not occ.is_full and occ.available is None
        assert capacity.reserve_capacity(1) is None


def test_expired_banners_free_capacity(app, make_user):
    uid = make_user()
    with app.app_context():
        db.session.add_all([_banner(uid), _banner(uid), _banner(uid, expires_in_days=-1), _banner(uid, active=False)])
        db.session.commit()
        occ = capacity.occupancy(5)
        assert (occ.live, occ.reserved, occ.available) == (2, 0, 1)


def test_unconsumed_active_purchase_holds_a_place(app, make_user):
    uid = make_user()
    with app.app_context():
        db.session.add_all([_banner(uid), _banner(uid)])
        db.session.add(SlotPurchase(user_id=uid, slot_id=5, product_type="slot_5", provider="paypal",
                                    status="active", is_active=True, duration_days=7,
                                    expires_at=utcnow() + timedelta(days=2)))
        db.session.commit()
        with pytest.raises(CapacityExceededError) as exc:
            capacity.check_availability(5)
        assert exc.value.active_count == 3
        assert exc.value.next_available_at is not None


def test_pending_reservations_count_at_checkout_not_at_activation(app, make_user):
    uid = make_user()
    with app.app_context():
        db.session.add_all([_banner(uid), _banner(uid), _pending(uid), _pending(uid, age_minutes=90)])
        db.session.commit()
        assert capacity.occupancy(5).reserved == 1
        with pytest.raises(CapacityExceededError):
            capacity.reserve_capacity(5)
        db.session.rollback()
        # A paid holder only competes with live listings
        assert capacity.claim_for_activation(5).total == 2
        db.session.commit()


def test_claim_excludes_the_entity_being_activated(app, make_user):
    uid = make_user()
    with app.app_context():
        mine = _banner(uid)
        db.session.add_all([_banner(uid), _banner(uid), mine])
        db.session.commit()
        # Re-activating a live banner doesn't count against itself
        assert capacity.claim_for_activation(5, entity=mine).total == 2
        db.session.commit()


def test_lock_row_is_created_and_versioned(app):
    with app.app_context():
        capacity.lock_slot(5)
        db.session.commit()
        capacity.lock_slot(5)
        db.session.commit()
        assert db.session.get(SlotLock, 5).version == 2


def test_availability_endpoint(app, client, make_user):
    uid = make_user()
    with app.app_context():
        db.session.add_all([_banner(uid) for _ in range(3)])
        db.session.commit()
    body = client.get("/slots/5/availability").get_json()
    assert body["isFull"] is True
    assert body["available"] == 0
    assert "nextAvailableAt" not in body
    assert client.get("/slots/99/availability").status_code == 404
