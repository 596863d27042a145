from settlement.services.booking_service import BookingService
from settlement.services.ledger_service import LedgerService
from settlement.services.notification_service import NotificationService
from settlement.services.payment_service import PaymentService
from settlement.services.payout_service import PayoutService
from settlement.services.platform_service import PlatformService
from settlement.services.tier_service import TierService

__all__ = [
    "BookingService",
    "LedgerService",
    "NotificationService",
    "PaymentService",
    "PayoutService",
    "PlatformService",
    "TierService",
]
