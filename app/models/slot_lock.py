from sqlalchemy import func, text
from app.extensions import db

class SlotLock(db.Model):
    """Row locked FOR UPDATE while a capacity decision is made for a slot."""
    __tablename__ = "slot_locks"

    slot_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    version = db.Column(db.Integer, nullable=False, server_default=text("0"), default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
