from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from app.errors import NotFoundError
from app.extensions import db
from app.models import Notification
from app.services.slots import get_slot_config
from app.utils.timeutil import as_utc, isoformat

PAYMENT_SUCCESS = "payment_success"
CAPACITY_CONFLICT = "payment_capacity_conflict"


def notify(user_id: int, type: str, title: str, message: str,
           data: Optional[Dict[str, Any]] = None, dedup_key: Optional[str] = None) -> Optional[Notification]:
    """
    Queue an in-app notification on the current session (caller commits).
    Returns None when one with the same dedup_key already exists.
    """
    if dedup_key and Notification.query.filter_by(dedup_key=dedup_key).first() is not None:
        return None
    row = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data or {},
        dedup_key=dedup_key,
    )
    try:
        with db.session.begin_nested():
            db.session.add(row)
    except IntegrityError:
        # Concurrent delivery inserted the same dedup_key first
        return None
    return row


def notify_payment_success(purchase) -> Optional[Notification]:
    cfg = get_slot_config(purchase.slot_id)
    slot_name = cfg.name if cfg else f"slot {purchase.slot_id}"
    expires_at = as_utc(purchase.expires_at)
    until = expires_at.strftime("%B %d, %Y") if expires_at else "further notice"
    return notify(
        purchase.user_id,
        PAYMENT_SUCCESS,
        "Payment Confirmed",
        f"Your {slot_name} placement is live until {until}.",
        data={
            "purchaseId": purchase.id,
            "slotId": purchase.slot_id,
            "draftType": purchase.draft_kind,
            "draftId": purchase.draft_id,
            "expiresAt": isoformat(expires_at),
        },
        dedup_key=f"{PAYMENT_SUCCESS}:{purchase.id}",
    )


def notify_capacity_conflict(purchase) -> Optional[Notification]:
    cfg = get_slot_config(purchase.slot_id)
    slot_name = cfg.name if cfg else f"slot {purchase.slot_id}"
    return notify(
        purchase.user_id,
        CAPACITY_CONFLICT,
        "Slot Full",
        f"We received your payment but {slot_name} filled up first. Support will contact you about a refund.",
        data={"purchaseId": purchase.id, "slotId": purchase.slot_id},
        dedup_key=f"{CAPACITY_CONFLICT}:{purchase.id}",
    )


def list_for_user(user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    q = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(user_id: int) -> int:
    return Notification.query.filter_by(user_id=user_id, is_read=False).count()


def mark_read(notification_id: int, user_id: int) -> Notification:
    row = db.session.get(Notification, notification_id)
    # Someone else's notification looks the same as a missing one
    if row is None or row.user_id != user_id:
        raise NotFoundError(f"Notification {notification_id} not found")
    row.is_read = True
    db.session.commit()
    return row
