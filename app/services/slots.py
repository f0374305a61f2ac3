"""
Slot registry: the 8 fixed homepage placements and the entity kind each one holds.

Pure lookups. Callers treat an unknown slot id as a validation error
(``require_slot``) or a null (``get_slot_config``).
"""
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlencode

from app.errors import ValidationError
from app.models.listing import DraftKind

FREE_SLOT_ID = 6


@dataclass(frozen=True)
class SlotConfig:
    slot_id: int
    kind: DraftKind
    table: str
    name: str
    description: str
    type: str
    max_concurrent: Optional[int] = None
    is_free: bool = False

    def to_dict(self) -> Dict:
        return {
            "slotId": self.slot_id,
            "draftType": self.kind.value,
            "table": self.table,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "maxListings": self.max_concurrent,
            "isFree": self.is_free,
        }


SLOT_CONFIG: Dict[int, SlotConfig] = {
    1: SlotConfig(1, DraftKind.ADVERTISEMENT, "advertisements", "Marketplace Advertise",
                  "Promote items and accounts in the marketplace section", "marketplace"),
    2: SlotConfig(2, DraftKind.ADVERTISEMENT, "advertisements", "Services Advertise",
                  "Advertise boosting, guides and other services", "services"),
    3: SlotConfig(3, DraftKind.SERVER, "servers", "Top 50 Servers",
                  "Premium placement in the Top 50 server list", "top50"),
    4: SlotConfig(4, DraftKind.TEXT_SERVER, "premium_text_servers", "Premium Text Servers",
                  "Highlighted text listing in the sidebar", "text-server"),
    5: SlotConfig(5, DraftKind.BANNER, "premium_banners", "Main Banner",
                  "Rotating hero banner on the homepage", "main-banner", max_concurrent=3),
    6: SlotConfig(6, DraftKind.SERVER, "servers", "Upcoming & Recent Servers",
                  "Free listing for newly opened and upcoming servers", "upcoming-server",
                  is_free=True),
    7: SlotConfig(7, DraftKind.PROMO, "rotating_promos", "Partner Discounts",
                  "Rotating partner discount codes", "partner-discount"),
    8: SlotConfig(8, DraftKind.PROMO, "rotating_promos", "Server Events",
                  "Rotating announcements for in-game events", "server-event"),
}


def get_slot_config(slot_id) -> Optional[SlotConfig]:
    try:
        return SLOT_CONFIG.get(int(slot_id))
    except (TypeError, ValueError):
        return None


def require_slot(slot_id) -> SlotConfig:
    cfg = get_slot_config(slot_id)
    if cfg is None:
        raise ValidationError(f"Unknown slot: {slot_id}", field="slotId")
    return cfg


def is_slot_free(slot_id) -> bool:
    cfg = get_slot_config(slot_id)
    return bool(cfg and cfg.is_free)


def slot_creation_path(slot_id: int, package_id: Optional[int] = None) -> str:
    """Where the client goes to fill in the listing once access is granted."""
    cfg = require_slot(slot_id)
    params = {"type": cfg.type, "slot": cfg.slot_id}
    if package_id is not None:
        params["package"] = package_id
    return "/create-listing?" + urlencode(params)


def list_slots() -> List[SlotConfig]:
    return [SLOT_CONFIG[k] for k in sorted(SLOT_CONFIG)]


def slots_for_kind(kind: DraftKind) -> List[int]:
    return [cfg.slot_id for cfg in list_slots() if cfg.kind == kind]
