from sqlalchemy import func, text
from app.extensions import db
from app.models.columns import JSONType

class PaymentConfig(db.Model):
    __tablename__ = "payment_config"

    id = db.Column(db.Integer, primary_key=True)
    config_key = db.Column(db.String(32), nullable=False, unique=True)  # "stripe" | "paypal"
    config_value = db.Column(JSONType, nullable=False, default=dict)
    is_enabled = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            "configKey": self.config_key,
            "configValue": dict(self.config_value or {}),
            "isEnabled": bool(self.is_enabled),
        }
