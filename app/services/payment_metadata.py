"""
Context that rides along with a provider session so the webhook can find
what to activate.

Stripe carries it as string metadata. PayPal carries it as a compact JSON
``custom_id`` (127 chars max) plus a delimited ``reference_id`` that older
orders used on their own: ``slot_<id>_<userId>``, ``listing_<id>_<userId>``
or ``purchase_<purchaseId>``.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from app.models.listing import DraftKind

CUSTOM_ID_MAX = 127
DEFAULT_DURATION_DAYS = 30

# Dropped in this order until the encoded custom_id fits
_OPTIONAL_KEYS = ("package_id", "type", "duration_days")


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _kind_or_none(value: Any) -> Optional[DraftKind]:
    try:
        return DraftKind(value) if value else None
    except ValueError:
        return None


@dataclass
class PaymentMetadata:
    user_id: Optional[int] = None
    slot_id: Optional[int] = None
    draft_id: Optional[int] = None
    draft_kind: Optional[DraftKind] = None
    duration_days: Optional[int] = None
    type: Optional[str] = None
    purchase_id: Optional[int] = None
    package_id: Optional[int] = None
    listing_id: Optional[int] = None
    # "metadata" | "custom_id" | "reference_id"; None when nothing parsed
    source: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def parsed(self) -> bool:
        return self.source is not None

    @property
    def product_type(self) -> str:
        if self.listing_id is not None and self.slot_id is None:
            return "listing_purchase"
        if self.type == "slot" and self.slot_id is not None:
            return f"slot_{self.slot_id}"
        if self.type:
            return self.type
        if self.slot_id is not None:
            return f"slot_{self.slot_id}"
        return "unknown"

    def duration_or_default(self) -> int:
        return self.duration_days or DEFAULT_DURATION_DAYS

    def to_log(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "slot_id": self.slot_id,
            "draft_id": self.draft_id,
            "draft_type": self.draft_kind.value if self.draft_kind else None,
            "duration_days": self.duration_days,
            "purchase_id": self.purchase_id,
            "listing_id": self.listing_id,
            "source": self.source,
        }


def build_metadata(*, user_id: int, slot_id: int, duration_days: int, purchase_id: int,
                   package_id: Optional[int] = None, draft_kind: Optional[DraftKind] = None,
                   draft_id: Optional[int] = None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {
        "user_id": user_id,
        "slot_id": slot_id,
        "draft_id": draft_id,
        "draft_type": draft_kind.value if draft_kind else None,
        "duration_days": duration_days,
        "type": "slot",
        "purchase_id": purchase_id,
        "package_id": package_id,
    }
    return {k: v for k, v in meta.items() if v is not None}


def to_stripe_metadata(meta: Dict[str, Any]) -> Dict[str, str]:
    return {k: str(v) for k, v in meta.items() if v is not None}


def encode_custom_id(meta: Dict[str, Any]) -> str:
    data = dict(meta)
    encoded = json.dumps(data, separators=(",", ":"))
    for key in _OPTIONAL_KEYS:
        if len(encoded) <= CUSTOM_ID_MAX:
            break
        data.pop(key, None)
        encoded = json.dumps(data, separators=(",", ":"))
    if len(encoded) > CUSTOM_ID_MAX:
        raise ValueError(f"custom_id exceeds {CUSTOM_ID_MAX} characters")
    return encoded


def legacy_reference_id(slot_id: int, user_id: int) -> str:
    return f"slot_{slot_id}_{user_id}"


def _from_mapping(data: Dict[str, Any], source: str) -> PaymentMetadata:
    return PaymentMetadata(
        user_id=_int_or_none(data.get("user_id")),
        slot_id=_int_or_none(data.get("slot_id")),
        draft_id=_int_or_none(data.get("draft_id")),
        draft_kind=_kind_or_none(data.get("draft_type")),
        duration_days=_int_or_none(data.get("duration_days")),
        type=data.get("type") or None,
        purchase_id=_int_or_none(data.get("purchase_id")),
        package_id=_int_or_none(data.get("package_id")),
        listing_id=_int_or_none(data.get("listing_id")),
        source=source,
        raw=dict(data),
    )


def decode_stripe_metadata(metadata: Optional[Dict[str, Any]]) -> PaymentMetadata:
    if not metadata:
        return PaymentMetadata()
    meta = _from_mapping(metadata, "metadata")
    if meta.user_id is None and meta.purchase_id is None:
        return PaymentMetadata(raw=dict(metadata))
    return meta


def parse_legacy_reference(reference_id: Optional[str]) -> PaymentMetadata:
    if not reference_id:
        return PaymentMetadata()
    parts = str(reference_id).split("_")
    if parts[0] == "slot" and len(parts) >= 3:
        slot_id, user_id = _int_or_none(parts[1]), _int_or_none(parts[2])
        if slot_id is not None and user_id is not None:
            return PaymentMetadata(user_id=user_id, slot_id=slot_id, type="slot", source="reference_id")
    elif parts[0] == "listing" and len(parts) >= 3:
        listing_id, user_id = _int_or_none(parts[1]), _int_or_none(parts[2])
        if listing_id is not None and user_id is not None:
            return PaymentMetadata(user_id=user_id, listing_id=listing_id, source="reference_id")
    elif parts[0] == "purchase" and len(parts) >= 2:
        purchase_id = _int_or_none(parts[1])
        if purchase_id is not None:
            return PaymentMetadata(purchase_id=purchase_id, source="reference_id")
    return PaymentMetadata()


def decode_paypal_unit(custom_id: Optional[str], reference_id: Optional[str]) -> PaymentMetadata:
    """custom_id JSON first; the legacy reference format when that yields no user or purchase."""
    if custom_id:
        try:
            data = json.loads(custom_id)
        except ValueError:
            data = None
        if isinstance(data, dict):
            meta = _from_mapping(data, "custom_id")
            if meta.user_id is not None or meta.purchase_id is not None:
                return meta
    # Older orders put the legacy string in custom_id when reference_id was absent
    legacy = parse_legacy_reference(reference_id)
    if not legacy.parsed and custom_id:
        legacy = parse_legacy_reference(custom_id)
    return legacy
