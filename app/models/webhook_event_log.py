from sqlalchemy import func, text, UniqueConstraint
from app.extensions import db
from app.models.columns import JSONType

class WebhookEventLog(db.Model):
    """One row per provider event id; processed_at marks it done for dedup."""
    __tablename__ = "webhook_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(16), nullable=False, index=True)
    event_id = db.Column(db.String(255), nullable=False, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    signature_valid = db.Column(db.Boolean, nullable=False, server_default=text("true"), default=True)
    payload = db.Column(JSONType, nullable=False, default=dict)
    retries = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_event_logs_provider_event"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEventLog {self.provider}:{self.event_id} type={self.type!r}>"
