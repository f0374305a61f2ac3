from sqlalchemy import func, text
from app.extensions import db
from app.utils.timeutil import isoformat, utcnow

PURCHASE_PENDING = "pending"
PURCHASE_ACTIVE = "active"
PURCHASE_EXPIRED = "expired"
PURCHASE_ABANDONED = "abandoned"
# Paid, but the slot filled up before activation; needs a manual refund
PURCHASE_CAPACITY_CONFLICT = "capacity_conflict"

PROVIDER_STRIPE = "stripe"
PROVIDER_PAYPAL = "paypal"
PROVIDER_DIRECT = "direct"


class SlotPurchase(db.Model):
    __tablename__ = "slot_purchases"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, nullable=False, index=True)
    package_id = db.Column(db.Integer, db.ForeignKey("pricing_packages.id", ondelete="RESTRICT"), nullable=True, index=True)
    product_type = db.Column(db.String(40), nullable=False)

    status = db.Column(db.String(24), nullable=False, server_default=PURCHASE_PENDING, default=PURCHASE_PENDING, index=True)
    is_active = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)

    provider = db.Column(db.String(16), nullable=False, default=PROVIDER_STRIPE)
    # Stripe checkout session id or PayPal order id
    provider_reference = db.Column(db.String(255), nullable=True, unique=True)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)

    draft_kind = db.Column(db.String(20), nullable=True)
    draft_id = db.Column(db.Integer, nullable=True)
    duration_days = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    package = db.relationship("PricingPackage", lazy="joined")

    __table_args__ = (
        db.Index("ix_slot_purchases_user_slot_status", "user_id", "slot_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "slotId": self.slot_id,
            "packageId": self.package_id,
            "status": self.status,
            "isActive": bool(self.is_active),
            "provider": self.provider,
            "draftType": self.draft_kind,
            "draftId": self.draft_id,
            "durationDays": self.duration_days,
            "completedAt": isoformat(self.completed_at),
            "expiresAt": isoformat(self.expires_at),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<SlotPurchase id={self.id} user={self.user_id} slot={self.slot_id} status={self.status}>"
