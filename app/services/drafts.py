"""
Draft Store: CRUD over the five listing kinds.

Everything created here starts inactive in ``draft`` status. Only the
activation service, the free-slot publish path and the expiry sweep move
``is_active``/``status``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.extensions import db
from app.models import LISTING_MODELS, DraftKind, ListingStatus, PricingPackage, SlotPurchase
from app.models.slot_purchase import PURCHASE_PENDING
from app.services import capacity
from app.services.slots import FREE_SLOT_ID, get_slot_config, require_slot
from app.utils.timeutil import as_utc, expires_after, is_expired, utcnow
from app.utils.validators import clean_str, is_valid_url

PROTECTED_FIELDS = frozenset({"id", "user_id", "is_active", "status", "expires_at", "created_at", "updated_at"})
URL_FIELDS = frozenset({"website", "banner_url", "image_url", "link_url", "link"})
TEXT_FIELDS = frozenset({"description"})
DATE_FIELDS = frozenset({"open_date"})
REQUIRED_FIELDS = {
    DraftKind.SERVER: ("name",),
    DraftKind.ADVERTISEMENT: ("title",),
    DraftKind.TEXT_SERVER: ("name",),
    DraftKind.BANNER: ("title", "image_url"),
    DraftKind.PROMO: ("text",),
}
# Sub-type implied by the slot when the client doesn't send one
_SLOT_SUBTYPES = {
    1: ("ad_type", "marketplace"),
    2: ("ad_type", "services"),
    3: ("is_premium", True),
    7: ("promo_type", "discount"),
    8: ("promo_type", "event"),
}


def resolve_kind(value) -> DraftKind:
    if isinstance(value, DraftKind):
        return value
    try:
        return DraftKind(str(value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown draft type: {value}", field="draftType")


def _parse_datetime(name: str, value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp", field=name)


def _clean_fields(kind: DraftKind, fields: Dict[str, Any]) -> Dict[str, Any]:
    model = LISTING_MODELS[kind]
    out: Dict[str, Any] = {}
    for name, value in (fields or {}).items():
        if name in PROTECTED_FIELDS:
            raise ValidationError(f"{name} cannot be set directly", field=name)
        if name == "slot_id":
            continue
        if name not in model.editable_fields:
            raise ValidationError(f"Unknown field for {kind.value}: {name}", field=name)
        if name in DATE_FIELDS:
            out[name] = _parse_datetime(name, value)
        elif name == "features":
            if value is None:
                value = []
            if not isinstance(value, list):
                raise ValidationError("features must be a list", field=name)
            out[name] = [clean_str(str(v), 80) for v in value if clean_str(str(v), 80)]
        else:
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string", field=name)
            cleaned = value.strip() if name in TEXT_FIELDS and value else clean_str(value, 512)
            if name in URL_FIELDS and not is_valid_url(cleaned):
                raise ValidationError(f"{name} must be an http(s) URL", field=name)
            out[name] = cleaned or None
    return out


def _check_required(kind: DraftKind, values: Dict[str, Any]):
    for name in REQUIRED_FIELDS[kind]:
        if not values.get(name):
            raise ValidationError(f"{name} is required", field=name)


def _check_slot(kind: DraftKind, slot_id) -> Optional[int]:
    if slot_id in (None, ""):
        return None
    cfg = require_slot(slot_id)
    if cfg.kind != kind:
        raise ValidationError(f"Slot {cfg.slot_id} holds {cfg.kind.value} listings, not {kind.value}",
                              field="slotId")
    return cfg.slot_id


def _apply_slot_subtype(entity, slot_id: Optional[int]):
    if slot_id in _SLOT_SUBTYPES:
        attr, value = _SLOT_SUBTYPES[slot_id]
        if hasattr(entity, attr) and not getattr(entity, attr):
            setattr(entity, attr, value)


def create_draft(kind, owner_id: int, fields: Dict[str, Any]):
    kind = resolve_kind(kind)
    fields = dict(fields or {})
    slot_id = _check_slot(kind, fields.get("slot_id"))
    values = _clean_fields(kind, fields)
    _check_required(kind, values)

    # Banners: tell the seller up front that the rotation is full
    if slot_id is not None and get_slot_config(slot_id).max_concurrent is not None:
        capacity.check_availability(slot_id)

    entity = LISTING_MODELS[kind](
        user_id=owner_id,
        slot_id=slot_id,
        is_active=False,
        status=ListingStatus.DRAFT.value,
        **values,
    )
    _apply_slot_subtype(entity, slot_id)
    db.session.add(entity)
    db.session.commit()
    return entity


def get_owned(kind, draft_id: int, owner_id: int, *, for_update: bool = False):
    kind = resolve_kind(kind)
    model = LISTING_MODELS[kind]
    if for_update:
        entity = db.session.execute(
            db.select(model).where(model.id == draft_id).with_for_update()
        ).scalar_one_or_none()
    else:
        entity = db.session.get(model, draft_id)
    if entity is None:
        raise NotFoundError(f"{kind.value} {draft_id} not found", draftId=draft_id)
    if entity.user_id != owner_id:
        raise AuthorizationError("You do not own this listing", draftId=draft_id)
    return entity


def update_draft(kind, draft_id: int, owner_id: int, fields: Dict[str, Any]):
    kind = resolve_kind(kind)
    entity = get_owned(kind, draft_id, owner_id)
    fields = dict(fields or {})
    if "slot_id" in fields:
        new_slot = _check_slot(kind, fields.get("slot_id"))
        if new_slot != entity.slot_id:
            if entity.status != ListingStatus.DRAFT.value:
                raise ValidationError("Slot can only change while the listing is a draft", field="slotId")
            entity.slot_id = new_slot
            _apply_slot_subtype(entity, new_slot)
    values = _clean_fields(kind, fields)
    for name, value in values.items():
        setattr(entity, name, value)
    _check_required(kind, {n: getattr(entity, n) for n in REQUIRED_FIELDS[kind]})
    db.session.commit()
    return entity


def _pending_purchase_for(kind: DraftKind, entity_id: int) -> Optional[SlotPurchase]:
    return (
        SlotPurchase.query
        .filter_by(draft_kind=kind.value, draft_id=entity_id, status=PURCHASE_PENDING)
        .first()
    )


def delete_draft(kind, draft_id: int, owner_id: int) -> None:
    kind = resolve_kind(kind)
    entity = get_owned(kind, draft_id, owner_id)
    if _pending_purchase_for(kind, entity.id) is not None:
        raise ValidationError("A payment for this listing is in progress", draftId=draft_id)
    db.session.delete(entity)
    db.session.commit()


def effective_status(entity, now: Optional[datetime] = None) -> str:
    """Stored status, with read-time expiry applied ahead of the sweep."""
    if entity.status == ListingStatus.ACTIVE.value and is_expired(entity.expires_at, now):
        return ListingStatus.EXPIRED.value
    return entity.status


def is_live(entity, now: Optional[datetime] = None) -> bool:
    return (
        bool(entity.is_active)
        and entity.slot_id is not None
        and effective_status(entity, now) == ListingStatus.ACTIVE.value
    )


def is_draft(entity, now: Optional[datetime] = None) -> bool:
    # Free-slot listings go live on creation; never shown as drafts
    if entity.slot_id == FREE_SLOT_ID:
        return False
    return effective_status(entity, now) in (ListingStatus.DRAFT.value, ListingStatus.PENDING_PAYMENT.value)


def serialize(entity, now: Optional[datetime] = None) -> Dict[str, Any]:
    out = entity.to_dict()
    out["status"] = effective_status(entity, now)
    out["isActive"] = is_live(entity, now)
    out["isDraft"] = is_draft(entity, now)
    return out


def list_drafts_for_user(owner_id: int, now: Optional[datetime] = None, drafts_only: bool = False) -> List:
    rows = []
    for model in LISTING_MODELS.values():
        rows.extend(model.query.filter_by(user_id=owner_id).all())
    if drafts_only:
        rows = [r for r in rows if is_draft(r, now)]
    rows.sort(key=lambda r: (as_utc(r.created_at), r.id), reverse=True)
    return rows


def _free_expiry(slot_id: int, now: datetime) -> Optional[datetime]:
    pkg = (
        PricingPackage.query
        .filter_by(slot_id=slot_id, is_active=True, price_cents=0)
        .order_by(PricingPackage.display_order.asc())
        .first()
    )
    return expires_after(pkg.duration_days, now) if pkg else None


def publish_free_draft(kind, draft_id: int, owner_id: int):
    kind = resolve_kind(kind)
    entity = get_owned(kind, draft_id, owner_id)
    cfg = require_slot(entity.slot_id) if entity.slot_id is not None else None
    if cfg is None or not cfg.is_free:
        raise ValidationError("Only free-slot listings can be published without payment", draftId=draft_id)
    if is_live(entity):
        return entity
    now = utcnow()
    entity.is_active = True
    entity.status = ListingStatus.ACTIVE.value
    entity.expires_at = _free_expiry(cfg.slot_id, now)
    db.session.commit()
    return entity


def create_listing(kind, owner_id: int, slot_id: int, fields: Dict[str, Any]):
    """
    Purchase-first creation: the seller paid for the slot before writing the
    listing. Paid slots need an active purchase not yet tied to a listing.
    """
    from app.services.access import get_active_purchase

    kind = resolve_kind(kind)
    slot_id = _check_slot(kind, slot_id)
    if slot_id is None:
        raise ValidationError("slotId is required", field="slotId")
    cfg = require_slot(slot_id)
    values = _clean_fields(kind, fields)
    _check_required(kind, values)
    now = utcnow()

    purchase = None
    if cfg.is_free:
        expires_at = _free_expiry(slot_id, now)
    else:
        purchase = get_active_purchase(owner_id, slot_id, now=now, unclaimed=True)
        if purchase is None:
            raise AuthorizationError("An active purchase for this slot is required", slotId=slot_id)
        expires_at = as_utc(purchase.expires_at)

    entity = LISTING_MODELS[kind](
        user_id=owner_id,
        slot_id=slot_id,
        is_active=True,
        status=ListingStatus.ACTIVE.value,
        expires_at=expires_at,
        **values,
    )
    _apply_slot_subtype(entity, slot_id)
    db.session.add(entity)
    db.session.flush()
    if purchase is not None:
        purchase.draft_kind = kind.value
        purchase.draft_id = entity.id
    db.session.commit()
    return entity
