from .user import User
from .listing import (
    DraftKind, ListingStatus, LISTING_MODELS,
    Server, Advertisement, TextServer, Banner, Promo,
)
from .pricing_package import PricingPackage
from .slot_purchase import SlotPurchase
from .payment import Payment
from .payment_config import PaymentConfig
from .notification import Notification
from .webhook_event_log import WebhookEventLog
from .slot_lock import SlotLock

__all__ = [
    "User",
    "DraftKind", "ListingStatus", "LISTING_MODELS",
    "Server", "Advertisement", "TextServer", "Banner", "Promo",
    "PricingPackage", "SlotPurchase", "Payment", "PaymentConfig",
    "Notification", "WebhookEventLog", "SlotLock",
]
