import pytest
from app.errors import ValidationError
from app.extensions import db
from app.models import PricingPackage, SlotPurchase
from app.services import pricing


def test_packages_filtered_by_slot_and_active(client, make_package):
    make_package(slot_id=1, price_cents=2999, duration_days=30)
    make_package(slot_id=1, price_cents=999, duration_days=7)
    make_package(slot_id=1, price_cents=500, duration_days=3, is_active=False)
    make_package(slot_id=2, price_cents=999, duration_days=7)

    resp = client.get("/pricing/packages?slotId=1&orderBy=price")
    assert resp.status_code == 200
    rows = resp.get_json()["packages"]
    assert [r["priceCents"] for r in rows] == [999, 2999]
    assert all(r["slotId"] == 1 for r in rows)


def test_packages_rejects_unknown_order(client):
    resp = client.get("/pricing/packages?orderBy=name")
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "orderBy"


def test_packages_unknown_slot_is_400(client):
    resp = client.get("/pricing/packages?slotId=77")
    assert resp.status_code == 400


def test_seed_is_idempotent(app):
    with app.app_context():
        first = pricing.seed_default_packages()
        second = pricing.seed_default_packages()
        assert first > 0
        assert second == 0
        free = PricingPackage.query.filter_by(slot_id=6).all()
        assert len(free) == 1 and free[0].price_cents == 0


def test_price_frozen_once_purchased(app, make_user, make_package):
    uid = make_user()
    pid = make_package(slot_id=3, price_cents=1499, duration_days=7)
    with app.app_context():
        assert pricing.set_package_price(pid, 1599).price_cents == 1599
        db.session.add(SlotPurchase(user_id=uid, slot_id=3, package_id=pid, product_type="slot_3",
                                    provider="stripe", duration_days=7, amount_cents=1599))
        db.session.commit()
        with pytest.raises(ValidationError):
            pricing.set_package_price(pid, 1999)
        # Deactivating is still allowed; history keeps pointing at the row
        assert pricing.deactivate_package(pid).is_active is False
