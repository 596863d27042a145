from settlement.models.booking import Booking
from settlement.models.booking_item import BookingItem
from settlement.models.notification_outbox import NotificationOutbox
from settlement.models.payment_transaction import PaymentTransaction
from settlement.models.payout_request import PayoutRequest
from settlement.models.platform_setting import PlatformSetting
from settlement.models.user import User

__all__ = [
    "User",
    "Booking",
    "BookingItem",
    "PaymentTransaction",
    "PayoutRequest",
    "NotificationOutbox",
    "PlatformSetting",
]
