from sqlalchemy import func, text
from app.extensions import db
from app.models.columns import JSONType

class Payment(db.Model):
    """Append-only audit of every provider event we receive."""
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    # Null when the event can't be attributed to a user
    user_id = db.Column(db.Integer, nullable=True, index=True)
    provider = db.Column(db.String(16), nullable=False, index=True)
    provider_event_id = db.Column(db.String(255), nullable=True, index=True)
    event_type = db.Column(db.String(80), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)
    currency = db.Column(db.String(8), nullable=False, server_default="usd", default="usd")
    product_type = db.Column(db.String(40), nullable=False, server_default="unknown", default="unknown")
    duration_days = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)
    status = db.Column(db.String(24), nullable=False, index=True)
    platform_fee_cents = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)
    seller_earnings_cents = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)

    slot_purchase_id = db.Column(db.Integer, db.ForeignKey("slot_purchases.id", ondelete="SET NULL"), nullable=True, index=True)
    meta = db.Column(JSONType, nullable=False, default=dict)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Payment id={self.id} {self.provider}:{self.provider_event_id} status={self.status}>"
