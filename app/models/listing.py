import enum
from sqlalchemy import func, text
from sqlalchemy.orm import declared_attr
from app.extensions import db
from app.models.columns import JSONType
from app.utils.timeutil import isoformat, utcnow


class DraftKind(str, enum.Enum):
    SERVER = "server"
    ADVERTISEMENT = "advertisement"
    TEXT_SERVER = "text_server"
    BANNER = "banner"
    PROMO = "promo"


class ListingStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    EXPIRED = "expired"


STATUS_VALUES = tuple(s.value for s in ListingStatus)


class ListingMixin:
    """Columns shared by every slot-placeable entity."""

    kind = None
    # Content fields an owner may set through the Draft Store
    editable_fields = ()

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    slot_id = db.Column(db.Integer, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)
    status = db.Column(db.String(20), nullable=False, server_default=ListingStatus.DRAFT.value,
                       default=ListingStatus.DRAFT.value, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def content(self) -> dict:
        return {name: getattr(self, name) for name in self.editable_fields}

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "kind": self.kind.value,
            "userId": self.user_id,
            "slotId": self.slot_id,
            "isActive": bool(self.is_active),
            "status": self.status,
            "expiresAt": isoformat(self.expires_at),
            "createdAt": isoformat(self.created_at),
        }
        for name, value in self.content().items():
            out[name] = value.isoformat() if hasattr(value, "isoformat") else value
        return out

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} slot={self.slot_id} status={self.status}>"


class Server(ListingMixin, db.Model):
    __tablename__ = "servers"
    kind = DraftKind.SERVER
    editable_fields = ("name", "website", "banner_url", "season", "part", "exp_rate",
                       "open_date", "features", "description")

    name = db.Column(db.String(120), nullable=False)
    website = db.Column(db.String(255), nullable=True)
    banner_url = db.Column(db.String(512), nullable=True)
    season = db.Column(db.String(40), nullable=True)
    part = db.Column(db.String(40), nullable=True)
    exp_rate = db.Column(db.String(40), nullable=True)
    open_date = db.Column(db.DateTime(timezone=True), nullable=True)
    features = db.Column(JSONType, nullable=False, default=list)
    description = db.Column(db.Text, nullable=True)
    is_premium = db.Column(db.Boolean, nullable=False, server_default=text("false"), default=False)


class Advertisement(ListingMixin, db.Model):
    __tablename__ = "advertisements"
    kind = DraftKind.ADVERTISEMENT
    editable_fields = ("title", "description", "website", "banner_url", "ad_type")

    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    website = db.Column(db.String(255), nullable=True)
    banner_url = db.Column(db.String(512), nullable=True)
    # marketplace (slot 1) | services (slot 2)
    ad_type = db.Column(db.String(20), nullable=True)
    vip_level = db.Column(db.String(20), nullable=False, server_default="none", default="none")


class TextServer(ListingMixin, db.Model):
    __tablename__ = "premium_text_servers"
    kind = DraftKind.TEXT_SERVER
    editable_fields = ("name", "website", "exp_rate", "version", "open_date")

    name = db.Column(db.String(120), nullable=False)
    website = db.Column(db.String(255), nullable=True)
    exp_rate = db.Column(db.String(40), nullable=True)
    version = db.Column(db.String(40), nullable=True)
    open_date = db.Column(db.DateTime(timezone=True), nullable=True)


class Banner(ListingMixin, db.Model):
    __tablename__ = "premium_banners"
    kind = DraftKind.BANNER
    editable_fields = ("title", "image_url", "link_url")

    title = db.Column(db.String(160), nullable=False)
    image_url = db.Column(db.String(512), nullable=False)
    link_url = db.Column(db.String(512), nullable=True)


class Promo(ListingMixin, db.Model):
    __tablename__ = "rotating_promos"
    kind = DraftKind.PROMO
    editable_fields = ("text", "link", "highlight", "promo_type")

    text = db.Column(db.String(280), nullable=False)
    link = db.Column(db.String(512), nullable=True)
    highlight = db.Column(db.String(80), nullable=True)
    # discount (slot 7) | event (slot 8)
    promo_type = db.Column(db.String(20), nullable=True)


LISTING_MODELS = {
    DraftKind.SERVER: Server,
    DraftKind.ADVERTISEMENT: Advertisement,
    DraftKind.TEXT_SERVER: TextServer,
    DraftKind.BANNER: Banner,
    DraftKind.PROMO: Promo,
}
