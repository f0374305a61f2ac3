from typing import List, Optional

from app.errors import NotFoundError, ValidationError
from app.extensions import db
from app.models import PricingPackage, SlotPurchase
from app.services.slots import require_slot

ORDER_BY = ("display_order", "price")

# slot_id -> (product_type, [(duration_days, price_cents), ...])
DEFAULT_CATALOG = {
    1: ("marketplace_ad", [(7, 999), (15, 1799), (30, 2999)]),
    2: ("services_ad", [(7, 999), (15, 1799), (30, 2999)]),
    3: ("top50_server", [(7, 1499), (15, 2699), (30, 4499)]),
    4: ("premium_text", [(7, 799), (15, 1399), (30, 2299)]),
    5: ("main_banner", [(7, 2499), (15, 4499), (30, 7499)]),
    6: ("upcoming_server", [(30, 0)]),
    7: ("partner_discount", [(7, 1299), (15, 2299), (30, 3799)]),
    8: ("server_event", [(7, 999), (15, 1799), (30, 2999)]),
}


def list_packages(slot_id: Optional[int] = None, include_inactive: bool = False,
                  order_by: str = "display_order") -> List[PricingPackage]:
    if order_by not in ORDER_BY:
        raise ValidationError(f"orderBy must be one of {', '.join(ORDER_BY)}", field="orderBy")
    q = PricingPackage.query
    if slot_id is not None:
        require_slot(slot_id)
        q = q.filter(PricingPackage.slot_id == slot_id)
    if not include_inactive:
        q = q.filter(PricingPackage.is_active.is_(True))
    if order_by == "price":
        q = q.order_by(PricingPackage.price_cents.asc(), PricingPackage.display_order.asc())
    else:
        q = q.order_by(PricingPackage.slot_id.asc(), PricingPackage.display_order.asc(),
                       PricingPackage.price_cents.asc())
    return q.all()


def get_package(package_id: int) -> Optional[PricingPackage]:
    return db.session.get(PricingPackage, package_id)


def require_package(package_id: int) -> PricingPackage:
    pkg = get_package(package_id)
    if pkg is None:
        raise NotFoundError(f"Package {package_id} not found", field="packageId")
    return pkg


def is_referenced(package_id: int) -> bool:
    return db.session.query(SlotPurchase.id).filter(SlotPurchase.package_id == package_id).first() is not None


def deactivate_package(package_id: int) -> PricingPackage:
    pkg = require_package(package_id)
    pkg.is_active = False
    db.session.commit()
    return pkg


def set_package_price(package_id: int, price_cents: int) -> PricingPackage:
    """Prices are frozen once any purchase points at the package; add a new package instead."""
    pkg = require_package(package_id)
    if price_cents < 0:
        raise ValidationError("price must be >= 0", field="priceCents")
    if pkg.price_cents == price_cents:
        return pkg
    if is_referenced(package_id):
        raise ValidationError("Package price cannot change after it has been purchased",
                              field="priceCents", packageId=package_id)
    pkg.price_cents = price_cents
    db.session.commit()
    return pkg


def seed_default_packages() -> int:
    """Insert the default catalog; existing (slot, duration) rows are left alone. Returns rows added."""
    added = 0
    for slot_id, (product_type, tiers) in DEFAULT_CATALOG.items():
        slot = require_slot(slot_id)
        existing = {
            row.duration_days
            for row in PricingPackage.query.filter_by(slot_id=slot_id).all()
        }
        for order, (days, cents) in enumerate(tiers):
            if days in existing:
                continue
            db.session.add(PricingPackage(
                slot_id=slot_id,
                name=f"{slot.name} - {days} days" if cents else f"{slot.name} - Free",
                description=f"{days}-day placement in {slot.name}",
                product_type=product_type,
                price_cents=cents,
                duration_days=days,
                features=[],
                is_active=True,
                display_order=order,
            ))
            added += 1
    db.session.commit()
    return added
