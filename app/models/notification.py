from sqlalchemy import func, text
from app.extensions import db
from app.models.columns import JSONType
from app.utils.timeutil import isoformat, utcnow

class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(160), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(JSONType, nullable=False, default=dict)
    is_read = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)
    # e.g. "payment_success:purchase:42"; keeps webhook retries from notifying twice
    dedup_key = db.Column(db.String(160), nullable=True, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data or {}),
            "isRead": bool(self.is_read),
            "createdAt": isoformat(self.created_at),
        }
