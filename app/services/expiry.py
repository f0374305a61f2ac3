"""
Periodic sweep that persists what reads already compute: listings and
purchases past ``expires_at`` become ``expired``. Pending purchases older than
``PENDING_PURCHASE_TTL_HOURS`` are abandoned so their drafts return to ``draft``.
"""
import json
from datetime import datetime, timedelta
from typing import Dict, Optional

from flask import current_app

from app.extensions import db
from app.models import LISTING_MODELS, ListingStatus, SlotPurchase
from app.models.slot_purchase import PURCHASE_ACTIVE, PURCHASE_EXPIRED, PURCHASE_PENDING
from app.services.checkout import abandon_purchase
from app.utils.timeutil import as_utc, utcnow


def expire_listings(now: datetime) -> int:
    count = 0
    for model in LISTING_MODELS.values():
        rows = model.query.filter(
            model.is_active.is_(True),
            model.expires_at.isnot(None),
            model.expires_at <= now,
        ).all()
        for row in rows:
            row.is_active = False
            row.status = ListingStatus.EXPIRED.value
        count += len(rows)
    return count


def expire_purchases(now: datetime) -> int:
    rows = SlotPurchase.query.filter(
        SlotPurchase.status == PURCHASE_ACTIVE,
        SlotPurchase.expires_at.isnot(None),
        SlotPurchase.expires_at <= now,
    ).all()
    for row in rows:
        row.status = PURCHASE_EXPIRED
        row.is_active = False
    return len(rows)


def abandon_stale_pending(now: datetime) -> int:
    ttl = timedelta(hours=current_app.config.get("PENDING_PURCHASE_TTL_HOURS", 24))
    rows = SlotPurchase.query.filter(
        SlotPurchase.status == PURCHASE_PENDING,
        SlotPurchase.created_at <= now - ttl,
    ).all()
    return sum(1 for row in rows if abandon_purchase(row))


def sweep(now: Optional[datetime] = None) -> Dict[str, int]:
    now = as_utc(now) or utcnow()
    try:
        result = {
            "listings": expire_listings(now),
            "purchases": expire_purchases(now),
            "abandoned": abandon_stale_pending(now),
        }
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(json.dumps({"event": "expiry_sweep", **result}))
    return result
