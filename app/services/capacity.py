"""
Capacity accounting for capped slots (slot 5: three banners at a time).

A capacity decision is made while holding the slot's ``SlotLock`` row
(``SELECT ... FOR UPDATE`` on Postgres; the version bump takes SQLite's write
lock). The lock lives until the caller commits or rolls back.

Occupancy counts:
  * live entities (``is_active`` with an unexpired or null ``expires_at``)
  * active purchases with no entity yet (purchase-first listings)
  * pending purchases younger than ``CHECKOUT_RESERVATION_MINUTES``
    (checkout only; at activation those holders already took their turn)
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from app.errors import CapacityExceededError
from app.extensions import db
from app.models import LISTING_MODELS, SlotLock, SlotPurchase
from app.models.slot_purchase import PURCHASE_ACTIVE, PURCHASE_PENDING
from app.services.slots import SlotConfig, require_slot
from app.utils.timeutil import as_utc, utcnow


@dataclass
class Occupancy:
    slot_id: int
    live: int
    reserved: int
    max_allowed: Optional[int]

    @property
    def total(self) -> int:
        return self.live + self.reserved

    @property
    def is_full(self) -> bool:
        return self.max_allowed is not None and self.total >= self.max_allowed

    @property
    def available(self) -> Optional[int]:
        if self.max_allowed is None:
            return None
        return max(0, self.max_allowed - self.total)


def lock_slot(slot_id: int) -> SlotLock:
    stmt = db.select(SlotLock).where(SlotLock.slot_id == slot_id).with_for_update()
    lock = db.session.execute(stmt).scalar_one_or_none()
    if lock is None:
        try:
            with db.session.begin_nested():
                lock = SlotLock(slot_id=slot_id, version=0)
                db.session.add(lock)
        except IntegrityError:
            # Another transaction created it first
            lock = db.session.execute(stmt).scalar_one()
    lock.version = (lock.version or 0) + 1
    db.session.flush()
    return lock


def _live_count(cfg: SlotConfig, now: datetime, exclude_entity=None) -> int:
    model = LISTING_MODELS[cfg.kind]
    q = db.session.query(func.count(model.id)).filter(
        model.slot_id == cfg.slot_id,
        model.is_active.is_(True),
        or_(model.expires_at.is_(None), model.expires_at > now),
    )
    if exclude_entity is not None and exclude_entity.id is not None:
        q = q.filter(model.id != exclude_entity.id)
    return q.scalar() or 0


def _held_count(cfg: SlotConfig, now: datetime, include_pending: bool,
                exclude_purchase_id: Optional[int]) -> int:
    reservation_cutoff = now - timedelta(minutes=current_app.config.get("CHECKOUT_RESERVATION_MINUTES", 30))
    unconsumed_active = db.and_(
        SlotPurchase.status == PURCHASE_ACTIVE,
        SlotPurchase.draft_id.is_(None),
        or_(SlotPurchase.expires_at.is_(None), SlotPurchase.expires_at > now),
    )
    conditions = [unconsumed_active]
    if include_pending:
        conditions.append(db.and_(
            SlotPurchase.status == PURCHASE_PENDING,
            SlotPurchase.created_at > reservation_cutoff,
        ))
    q = db.session.query(func.count(SlotPurchase.id)).filter(
        SlotPurchase.slot_id == cfg.slot_id,
        or_(*conditions),
    )
    if exclude_purchase_id is not None:
        q = q.filter(SlotPurchase.id != exclude_purchase_id)
    return q.scalar() or 0


def occupancy(slot_id: int, *, now: Optional[datetime] = None, include_pending: bool = True,
              exclude_purchase_id: Optional[int] = None, exclude_entity=None) -> Occupancy:
    cfg = require_slot(slot_id)
    now = as_utc(now) or utcnow()
    return Occupancy(
        slot_id=cfg.slot_id,
        live=_live_count(cfg, now, exclude_entity),
        reserved=_held_count(cfg, now, include_pending, exclude_purchase_id),
        max_allowed=cfg.max_concurrent,
    )


def next_available_at(slot_id: int, now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest expiry among active purchases on the slot, if any has one."""
    now = as_utc(now) or utcnow()
    value = (
        db.session.query(func.min(SlotPurchase.expires_at))
        .filter(
            SlotPurchase.slot_id == slot_id,
            SlotPurchase.status == PURCHASE_ACTIVE,
            SlotPurchase.expires_at.isnot(None),
            SlotPurchase.expires_at > now,
        )
        .scalar()
    )
    return as_utc(value)


def _raise_full(occ: Occupancy, now: datetime):
    raise CapacityExceededError(
        slot_id=occ.slot_id,
        active_count=occ.total,
        max_allowed=occ.max_allowed,
        next_available_at=next_available_at(occ.slot_id, now),
    )


def check_availability(slot_id: int, now: Optional[datetime] = None) -> Occupancy:
    """Unlocked read; raises CapacityExceededError when the slot is full right now."""
    now = as_utc(now) or utcnow()
    occ = occupancy(slot_id, now=now)
    if occ.is_full:
        _raise_full(occ, now)
    return occ


def reserve_capacity(slot_id: int, *, exclude_purchase_id: Optional[int] = None,
                     now: Optional[datetime] = None) -> Optional[Occupancy]:
    """
    Called by checkout before inserting the pending purchase. Locks the slot;
    the new pending row becomes the reservation once flushed.
    """
    cfg = require_slot(slot_id)
    if cfg.max_concurrent is None:
        return None
    now = as_utc(now) or utcnow()
    lock_slot(cfg.slot_id)
    occ = occupancy(cfg.slot_id, now=now, exclude_purchase_id=exclude_purchase_id)
    if occ.is_full:
        _raise_full(occ, now)
    return occ


def claim_for_activation(slot_id: int, *, purchase_id: Optional[int] = None, entity=None,
                         now: Optional[datetime] = None) -> Optional[Occupancy]:
    """Final check before an entity goes live. Other pending reservations are not counted."""
    cfg = require_slot(slot_id)
    if cfg.max_concurrent is None:
        return None
    now = as_utc(now) or utcnow()
    lock_slot(cfg.slot_id)
    occ = occupancy(cfg.slot_id, now=now, include_pending=False,
                    exclude_purchase_id=purchase_id, exclude_entity=entity)
    if occ.is_full:
        _raise_full(occ, now)
    return occ


def availability(slot_id: int, now: Optional[datetime] = None) -> dict:
    now = as_utc(now) or utcnow()
    occ = occupancy(slot_id, now=now)
    payload = {
        "slotId": occ.slot_id,
        "maxAllowed": occ.max_allowed,
        "activeCount": occ.total,
        "available": occ.available,
        "isFull": occ.is_full,
    }
    if occ.is_full:
        nxt = next_available_at(occ.slot_id, now)
        if nxt is not None:
            payload["nextAvailableAt"] = nxt.isoformat()
    return payload
