import json
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from app.errors import ProviderUnavailableError, ValidationError
from app.extensions import db
from app.models import LISTING_MODELS, DraftKind, ListingStatus, SlotPurchase
from app.models.slot_purchase import PURCHASE_ABANDONED, PURCHASE_PENDING, PROVIDER_PAYPAL, PROVIDER_STRIPE
from app.services import capacity, paypal_gateway, stripe_gateway
from app.services.drafts import get_owned, resolve_kind
from app.services.payment_metadata import (
    build_metadata, encode_custom_id, legacy_reference_id, to_stripe_metadata,
)
from app.services.pricing import require_package
from app.services.providers import get_providers
from app.services.slots import require_slot, slot_creation_path
from app.utils.validators import parse_int

RETRYABLE_DRAFT_STATUSES = (ListingStatus.DRAFT.value, ListingStatus.PENDING_PAYMENT.value)


@dataclass
class CheckoutResult:
    url: str
    provider: Optional[str] = None
    purchase_id: Optional[int] = None
    free: bool = False

    def to_dict(self) -> dict:
        if self.free:
            return {"url": self.url, "free": True}
        return {"url": self.url, "provider": self.provider, "purchaseId": self.purchase_id}


def _require_url(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def _checkout_draft(user_id: int, slot_kind: DraftKind, draft_id, draft_type):
    if draft_id in (None, "") and not draft_type:
        return None
    if draft_id in (None, "") or not draft_type:
        raise ValidationError("draftId and draftType must be sent together", field="draftId")
    kind = resolve_kind(draft_type)
    if kind != slot_kind:
        raise ValidationError(f"This slot holds {slot_kind.value} listings, not {kind.value}", field="draftType")
    entity = get_owned(kind, parse_int(draft_id, "draftId", minimum=1), user_id)
    if entity.status not in RETRYABLE_DRAFT_STATUSES:
        raise ValidationError("Listing is not a draft", field="draftId", status=entity.status)
    return entity


def _supersede_pending(kind: DraftKind, draft_id: int):
    """A retried checkout replaces any earlier pending purchase for the same draft."""
    rows = SlotPurchase.query.filter_by(draft_kind=kind.value, draft_id=draft_id, status=PURCHASE_PENDING).all()
    for row in rows:
        row.status = PURCHASE_ABANDONED
    if rows:
        db.session.flush()


def _supersede_unassigned_pending(user_id: int, slot_id: int):
    """A repeated draft-less checkout replaces the user's earlier one for the slot."""
    rows = SlotPurchase.query.filter_by(
        user_id=user_id, slot_id=slot_id, status=PURCHASE_PENDING, draft_id=None,
    ).all()
    for row in rows:
        row.status = PURCHASE_ABANDONED
    if rows:
        db.session.flush()


def create_slot_checkout(user_id: int, package_id, *, slot_id=None, draft_id=None, draft_type=None,
                         success_url=None, cancel_url=None, provider: str = PROVIDER_STRIPE,
                         customer_email: Optional[str] = None) -> CheckoutResult:
    package = require_package(parse_int(package_id, "packageId", minimum=1))
    if not package.is_active:
        raise ValidationError("Package is no longer available", field="packageId")
    if slot_id not in (None, "") and parse_int(slot_id, "slotId") != package.slot_id:
        raise ValidationError("Package does not belong to this slot", field="slotId")
    cfg = require_slot(package.slot_id)

    # $0 packages go straight to the creation form; no provider, no ledger row
    if package.is_free:
        return CheckoutResult(url=slot_creation_path(cfg.slot_id, package.id), free=True)

    success_url = _require_url(success_url, "successUrl")
    cancel_url = _require_url(cancel_url, "cancelUrl")
    provider = (provider or PROVIDER_STRIPE).lower()
    settings = get_providers().require(provider)
    entity = _checkout_draft(user_id, cfg.kind, draft_id, draft_type)
    if entity is not None and entity.slot_id not in (None, cfg.slot_id):
        raise ValidationError("Draft is assigned to a different slot", field="slotId")

    currency = current_app.config.get("PAYMENT_CURRENCY", "usd")
    try:
        if cfg.max_concurrent is not None:
            # Supersede under the slot lock so a double-click can't hold two places
            capacity.lock_slot(cfg.slot_id)
        if entity is not None:
            _supersede_pending(entity.kind, entity.id)
        else:
            _supersede_unassigned_pending(user_id, cfg.slot_id)
        capacity.reserve_capacity(cfg.slot_id)

        purchase = SlotPurchase(
            user_id=user_id,
            slot_id=cfg.slot_id,
            package_id=package.id,
            product_type=package.product_type,
            status=PURCHASE_PENDING,
            is_active=False,
            provider=provider,
            draft_kind=entity.kind.value if entity is not None else None,
            draft_id=entity.id if entity is not None else None,
            duration_days=package.duration_days,
            amount_cents=package.price_cents,
        )
        db.session.add(purchase)
        db.session.flush()
        if entity is not None:
            entity.slot_id = cfg.slot_id
            entity.status = ListingStatus.PENDING_PAYMENT.value

        meta = build_metadata(
            user_id=user_id,
            slot_id=cfg.slot_id,
            duration_days=package.duration_days,
            purchase_id=purchase.id,
            package_id=package.id,
            draft_kind=entity.kind if entity is not None else None,
            draft_id=entity.id if entity is not None else None,
        )
        description = f"{cfg.name} - {package.duration_days} days"
        if provider == PROVIDER_PAYPAL:
            session = paypal_gateway.create_order(
                settings,
                amount_cents=package.price_cents,
                currency=currency,
                custom_id=encode_custom_id(meta),
                reference_id=legacy_reference_id(cfg.slot_id, user_id),
                description=description,
                return_url=stripe_gateway.absolute_url(success_url),
                cancel_url=stripe_gateway.absolute_url(cancel_url),
                request_id=f"slot-purchase-{purchase.id}",
            )
        else:
            session = stripe_gateway.create_checkout_session(
                settings,
                purchase_id=purchase.id,
                user_id=user_id,
                amount_cents=package.price_cents,
                currency=currency,
                product_name=description,
                metadata=to_stripe_metadata(meta),
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
            )
        if not session.get("id") or not session.get("url"):
            raise ProviderUnavailableError(f"{provider} returned no checkout url")

        purchase.provider_reference = session["id"]
        db.session.commit()
    except ProviderUnavailableError:
        db.session.rollback()
        current_app.logger.exception(
            "checkout.session_create_failed",
            extra={"user_id": user_id, "package_id": package.id, "provider": provider},
        )
        raise
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(json.dumps({
        "event": "checkout_session_created",
        "provider": provider,
        "purchase_id": purchase.id,
        "slot_id": cfg.slot_id,
        "provider_reference": purchase.provider_reference,
    }))
    return CheckoutResult(url=session["url"], provider=provider, purchase_id=purchase.id)


def abandon_purchase(purchase: SlotPurchase) -> bool:
    """
    Release a pending purchase's reservation and put its draft back to
    ``draft``. Caller commits. Returns False when the purchase wasn't pending.
    """
    if purchase.status != PURCHASE_PENDING:
        return False
    purchase.status = PURCHASE_ABANDONED
    purchase.is_active = False
    if purchase.draft_kind and purchase.draft_id is not None:
        try:
            model = LISTING_MODELS[DraftKind(purchase.draft_kind)]
        except ValueError:
            return True
        entity = db.session.get(model, purchase.draft_id)
        if entity is not None and entity.status == ListingStatus.PENDING_PAYMENT.value:
            other = (
                SlotPurchase.query
                .filter(SlotPurchase.id != purchase.id)
                .filter_by(draft_kind=purchase.draft_kind, draft_id=purchase.draft_id, status=PURCHASE_PENDING)
                .first()
            )
            if other is None:
                entity.status = ListingStatus.DRAFT.value
    return True
