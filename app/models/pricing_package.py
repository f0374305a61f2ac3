from sqlalchemy import func, text
from app.extensions import db
from app.models.columns import JSONType

class PricingPackage(db.Model):
    __tablename__ = "pricing_packages"

    id = db.Column(db.Integer, primary_key=True)
    slot_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    product_type = db.Column(db.String(40), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    features = db.Column(JSONType, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, server_default=text("true"), default=True)
    display_order = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_pricing_packages_price_non_negative"),
        db.CheckConstraint("duration_days > 0", name="ck_pricing_packages_duration_positive"),
    )

    @property
    def is_free(self) -> bool:
        return self.price_cents == 0

    def to_dict(self):
        return {
            "id": self.id,
            "slotId": self.slot_id,
            "name": self.name,
            "description": self.description,
            "productType": self.product_type,
            "priceCents": self.price_cents,
            "durationDays": self.duration_days,
            "features": list(self.features or []),
            "isActive": bool(self.is_active),
            "displayOrder": self.display_order,
        }

    def __repr__(self) -> str:
        return f"<PricingPackage id={self.id} slot={self.slot_id} {self.duration_days}d {self.price_cents}c>"
