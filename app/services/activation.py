"""
Draft Activation Service.

``activate_purchase`` is the only code path that turns a paid purchase into a
live listing. Webhooks and the direct client confirmation both end up here.
It is a deterministic overwrite keyed on the purchase row: a second call for
an already active purchase returns the stored ``expires_at`` and changes
nothing.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import current_app

from app.errors import (
    ActivationRaceError, AuthorizationError, CapacityExceededError, PaymentNotCompletedError,
    ProviderUnavailableError, ValidationError,
)
from app.extensions import db
from app.models import LISTING_MODELS, DraftKind, ListingStatus, SlotPurchase
from app.models.slot_purchase import (
    PURCHASE_ACTIVE, PURCHASE_CAPACITY_CONFLICT, PURCHASE_EXPIRED, PURCHASE_PENDING,
    PROVIDER_PAYPAL, PROVIDER_STRIPE,
)
from app.services import capacity, notifications, paypal_gateway, stripe_gateway
from app.services.drafts import get_owned, resolve_kind
from app.services.payment_metadata import DEFAULT_DURATION_DAYS
from app.services.providers import get_providers
from app.services.slots import require_slot
from app.utils.timeutil import as_utc, expires_after, utcnow
from app.utils.validators import parse_int

PAYPAL_PAID_STATUSES = ("COMPLETED", "APPROVED")


@dataclass
class ActivationResult:
    purchase: SlotPurchase
    entity: Optional[object]
    expires_at: Optional[datetime]
    already_active: bool = False
    conflict: Optional[CapacityExceededError] = None

    @property
    def activated(self) -> bool:
        return self.conflict is None

    def to_dict(self) -> dict:
        return {
            "success": self.activated,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "alreadyActive": self.already_active,
            "purchaseId": self.purchase.id,
        }


def _log(event: str, **fields):
    current_app.logger.info(json.dumps({"event": event, **fields}, default=str))


def _claim(purchase_id: int) -> SlotPurchase:
    """Lock the purchase row; ActivationRaceError when someone already activated it."""
    # populate_existing: the caller usually loaded this row before the lock was
    # granted; overwrite it with what the lock holder committed
    purchase = db.session.execute(
        db.select(SlotPurchase)
        .where(SlotPurchase.id == purchase_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
    # Expired purchases were activated once already; a late redelivery must not revive them
    if purchase.status in (PURCHASE_ACTIVE, PURCHASE_EXPIRED):
        raise ActivationRaceError(as_utc(purchase.expires_at))
    return purchase


def _load_target(purchase: SlotPurchase):
    if not purchase.draft_kind or purchase.draft_id is None:
        return None
    try:
        kind = DraftKind(purchase.draft_kind)
    except ValueError:
        return None
    entity = db.session.get(LISTING_MODELS[kind], purchase.draft_id)
    if entity is None:
        current_app.logger.warning("activation: %s %s missing for purchase %s",
                                   kind.value, purchase.draft_id, purchase.id)
        return None
    if entity.user_id != purchase.user_id:
        current_app.logger.warning("activation: %s %s not owned by user %s (purchase %s)",
                                   kind.value, entity.id, purchase.user_id, purchase.id)
        return None
    if require_slot(purchase.slot_id).kind != kind:
        current_app.logger.warning("activation: slot %s cannot hold %s (purchase %s)",
                                   purchase.slot_id, kind.value, purchase.id)
        return None
    return entity


def _set_live(entity, slot_id: int, expires_at: datetime):
    if entity.slot_id is None:
        entity.slot_id = slot_id
    current = as_utc(entity.expires_at)
    # A listing already live on a later expiry keeps it
    if not (entity.is_active and current is not None and current > expires_at):
        entity.expires_at = expires_at
    entity.is_active = True
    entity.status = ListingStatus.ACTIVE.value


def _duration_for(purchase: SlotPurchase, fallback: Optional[int]) -> int:
    if purchase.package is not None:
        return purchase.package.duration_days
    return purchase.duration_days or fallback or DEFAULT_DURATION_DAYS


def activate_purchase(purchase: SlotPurchase, *, provider_reference: Optional[str] = None,
                      draft_kind: Optional[DraftKind] = None, draft_id: Optional[int] = None,
                      fallback_duration_days: Optional[int] = None,
                      payment_intent_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> ActivationResult:
    """
    Activate ``purchase`` and its target listing on the current session.
    The caller commits. A full capped slot marks the purchase
    ``capacity_conflict`` and returns the error on the result.
    """
    now = as_utc(now) or utcnow()
    try:
        purchase = _claim(purchase.id)
    except ActivationRaceError as race:
        entity = _load_target(purchase)
        expires_at = race.expires_at
        if entity is not None and expires_at is not None and expires_at > now and not entity.is_active:
            _set_live(entity, purchase.slot_id, expires_at)
        _log("activation_duplicate", purchase_id=purchase.id)
        return ActivationResult(purchase, entity, expires_at, already_active=True)

    if purchase.status == PURCHASE_CAPACITY_CONFLICT:
        occ = capacity.occupancy(purchase.slot_id, now=now, include_pending=False)
        return ActivationResult(purchase, None, None, conflict=CapacityExceededError(
            occ.slot_id, occ.total, occ.max_allowed or 0, capacity.next_available_at(occ.slot_id, now)))

    if draft_kind is not None and draft_id is not None and purchase.draft_id is None:
        purchase.draft_kind = draft_kind.value
        purchase.draft_id = draft_id
    if provider_reference and not purchase.provider_reference:
        purchase.provider_reference = provider_reference
    if payment_intent_id:
        purchase.stripe_payment_intent_id = payment_intent_id

    entity = _load_target(purchase)
    try:
        capacity.claim_for_activation(purchase.slot_id, purchase_id=purchase.id, entity=entity, now=now)
    except CapacityExceededError as exc:
        purchase.status = PURCHASE_CAPACITY_CONFLICT
        purchase.is_active = False
        if entity is not None and entity.status == ListingStatus.PENDING_PAYMENT.value:
            entity.status = ListingStatus.DRAFT.value
        notifications.notify_capacity_conflict(purchase)
        current_app.logger.warning(json.dumps({
            "event": "activation_capacity_conflict",
            "purchase_id": purchase.id,
            "slot_id": purchase.slot_id,
            "provider_reference": purchase.provider_reference,
        }))
        return ActivationResult(purchase, entity, None, conflict=exc)

    duration = _duration_for(purchase, fallback_duration_days)
    expires_at = expires_after(duration, now)
    purchase.duration_days = duration
    purchase.status = PURCHASE_ACTIVE
    purchase.is_active = True
    purchase.completed_at = now
    purchase.expires_at = expires_at
    if entity is not None:
        _set_live(entity, purchase.slot_id, expires_at)

    notifications.notify_payment_success(purchase)
    _log("activation_completed", purchase_id=purchase.id, slot_id=purchase.slot_id,
         draft_type=purchase.draft_kind, draft_id=purchase.draft_id, expires_at=expires_at.isoformat())
    return ActivationResult(purchase, entity, expires_at)


# ---- direct client confirmation ----

def _verify_stripe(session_id: str) -> Optional[str]:
    """Returns the payment intent id when known. Lookup failures don't block activation."""
    settings = get_providers().stripe
    if not settings.configured:
        return None
    try:
        session = stripe_gateway.retrieve_checkout_session(settings, session_id)
    except ProviderUnavailableError as e:
        current_app.logger.warning("activate-draft: stripe lookup failed for %s: %s", session_id, e)
        return None
    if session.get("payment_status") != "paid":
        raise PaymentNotCompletedError("Payment not completed", paymentStatus=session.get("payment_status"))
    return session.get("payment_intent")


def _verify_paypal(order_id: str) -> None:
    settings = get_providers().paypal
    if not settings.configured:
        return
    try:
        order = paypal_gateway.get_order(settings, order_id)
    except ProviderUnavailableError as e:
        current_app.logger.warning("activate-draft: paypal lookup failed for %s: %s", order_id, e)
        return
    if order.get("status") not in PAYPAL_PAID_STATUSES:
        raise PaymentNotCompletedError("Payment not completed", orderStatus=order.get("status"))


def _ledger_row(user_id: int, slot_id: int, kind: DraftKind, draft_id: int,
                provider: str, reference: str, duration_days: int) -> SlotPurchase:
    """
    Find the purchase this confirmation belongs to: by provider reference,
    else the user's latest pending row for the slot, else an active one that
    is unclaimed or already tied to this draft, else a new row.
    """
    row = SlotPurchase.query.filter_by(provider_reference=reference).first()
    if row is not None:
        if row.user_id != user_id:
            raise AuthorizationError("Payment belongs to another account")
        return row

    row = (
        SlotPurchase.query
        .filter_by(user_id=user_id, slot_id=slot_id, status=PURCHASE_PENDING)
        .filter(db.or_(
            SlotPurchase.draft_id.is_(None),
            db.and_(SlotPurchase.draft_kind == kind.value, SlotPurchase.draft_id == draft_id),
        ))
        .order_by(SlotPurchase.created_at.desc(), SlotPurchase.id.desc())
        .first()
    )
    if row is not None:
        return row

    row = (
        SlotPurchase.query
        .filter_by(user_id=user_id, slot_id=slot_id, status=PURCHASE_ACTIVE)
        .filter(db.or_(
            SlotPurchase.draft_id.is_(None),
            db.and_(SlotPurchase.draft_kind == kind.value, SlotPurchase.draft_id == draft_id),
        ))
        .order_by(SlotPurchase.completed_at.desc(), SlotPurchase.id.desc())
        .first()
    )
    if row is not None:
        return row

    row = SlotPurchase(
        user_id=user_id,
        slot_id=slot_id,
        product_type=f"slot_{slot_id}",
        status=PURCHASE_PENDING,
        is_active=False,
        provider=provider,
        provider_reference=reference,
        draft_kind=kind.value,
        draft_id=draft_id,
        duration_days=duration_days,
    )
    db.session.add(row)
    db.session.flush()
    return row


def activate_draft_for_user(user_id: int, draft_kind, draft_id, slot_id, duration_days=None, *,
                            stripe_session_id: Optional[str] = None,
                            paypal_order_id: Optional[str] = None) -> ActivationResult:
    kind = resolve_kind(draft_kind)
    draft_id = parse_int(draft_id, "draftId", minimum=1)
    cfg = require_slot(parse_int(slot_id, "slotId"))
    if cfg.kind != kind:
        raise ValidationError(f"Slot {cfg.slot_id} cannot hold {kind.value} listings", field="draftType")
    duration_days = parse_int(duration_days, "durationDays", required=False, minimum=1) or DEFAULT_DURATION_DAYS
    if not stripe_session_id and not paypal_order_id:
        raise ValidationError("stripeSessionId or paypalOrderId is required")

    # Ownership first: nothing is written for someone else's draft
    get_owned(kind, draft_id, user_id)

    payment_intent = None
    if stripe_session_id:
        provider, reference = PROVIDER_STRIPE, stripe_session_id
        payment_intent = _verify_stripe(stripe_session_id)
    else:
        provider, reference = PROVIDER_PAYPAL, paypal_order_id
        _verify_paypal(paypal_order_id)
        payment_intent = f"paypal_{paypal_order_id}"

    try:
        purchase = _ledger_row(user_id, cfg.slot_id, kind, draft_id, provider, reference, duration_days)
        if purchase.draft_id is not None and (purchase.draft_kind, purchase.draft_id) != (kind.value, draft_id):
            raise ValidationError("This payment was made for a different listing", draftId=draft_id)
        result = activate_purchase(
            purchase,
            provider_reference=reference,
            draft_kind=kind,
            draft_id=draft_id,
            fallback_duration_days=duration_days,
            payment_intent_id=payment_intent,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if result.conflict is not None:
        raise result.conflict
    return result
