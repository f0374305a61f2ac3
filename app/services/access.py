"""
Access Gate: does this user hold an active, unexpired purchase for a slot?

After the redirect back from a provider the webhook may not have landed yet,
so ``wait_for_activation`` re-checks on a short fixed schedule and then
reports ``processing`` instead of spinning.
"""
import time
from datetime import datetime
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy import or_

from app.extensions import db
from app.models import SlotPurchase
from app.models.slot_purchase import PURCHASE_ACTIVE
from app.services.slots import is_slot_free, require_slot
from app.utils.timeutil import as_utc, utcnow

STATUS_READY = "ready"
STATUS_PROCESSING = "processing"
STATUS_NONE = "none"


def get_active_purchase(user_id: int, slot_id: int, now: Optional[datetime] = None,
                        unclaimed: bool = False) -> Optional[SlotPurchase]:
    now = as_utc(now) or utcnow()
    q = SlotPurchase.query.filter(
        SlotPurchase.user_id == user_id,
        SlotPurchase.slot_id == slot_id,
        SlotPurchase.status == PURCHASE_ACTIVE,
        SlotPurchase.is_active.is_(True),
        or_(SlotPurchase.expires_at.is_(None), SlotPurchase.expires_at > now),
    )
    if unclaimed:
        q = q.filter(SlotPurchase.draft_id.is_(None))
    return q.order_by(SlotPurchase.expires_at.desc()).first()


def has_active_purchase(user_id: int, slot_id: int, now: Optional[datetime] = None) -> bool:
    cfg = require_slot(slot_id)
    if cfg.is_free:
        return True
    return get_active_purchase(user_id, cfg.slot_id, now=now) is not None


def wait_for_activation(user_id: int, slot_id: int, delays: Optional[Iterable[float]] = None,
                        sleep: Callable[[float], None] = time.sleep) -> str:
    """
    One immediate check, then one more after each delay. Each retry starts a
    fresh transaction so a webhook committed meanwhile is visible.
    """
    if is_slot_free(slot_id):
        return STATUS_READY
    if delays is None:
        delays = current_app.config.get("ACCESS_POLL_DELAYS", (0.8, 1.5, 2.5, 4.0))
    if has_active_purchase(user_id, slot_id):
        return STATUS_READY
    for delay in delays:
        sleep(delay)
        db.session.rollback()
        if has_active_purchase(user_id, slot_id):
            return STATUS_READY
    return STATUS_PROCESSING


def access_status(user_id: int, slot_id: int, after_payment: bool = False) -> dict:
    if after_payment:
        status = wait_for_activation(user_id, slot_id)
    else:
        status = STATUS_READY if has_active_purchase(user_id, slot_id) else STATUS_NONE
    return {"slotId": int(slot_id), "hasAccess": status == STATUS_READY, "status": status}
