import logging

from settlement.errors import AppError, InsufficientBalance, InvalidAmount, InvalidTransition, NotFound
from settlement.extensions import db
from settlement.locking import talent_lock
from settlement.models import PaymentTransaction, PayoutRequest, User
from settlement.models.base import utcnow
from settlement.services.ledger_service import LedgerService
from settlement.services.notification_service import NotificationService
from settlement.services.platform_service import PlatformService
from settlement.services.pricing import to_amount

log = logging.getLogger(__name__)

PAYOUT_METHODS = {"bank_transfer", "e_wallet"}
PAYOUT_DECISIONS = {"approved", "rejected"}


class PayoutService:
    @staticmethod
    def get_request(request_id):
        payout = db.session.get(PayoutRequest, request_id)
        if not payout:
            raise NotFound("Payout request not found.")
        return payout

    @staticmethod
    def list_requests(status=None, talent_id=None):
        query = PayoutRequest.query
        if status:
            query = query.filter_by(status=status)
        if talent_id:
            query = query.filter_by(talent_id=talent_id)
        return query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).all()

    @staticmethod
    def request_payout(talent_id, amount, method="bank_transfer", destination=None):
        amount = to_amount(amount, "Payout amount")
        minimum = PlatformService.get_decimal("min_payout_amount", 0)
        if amount < minimum:
            raise InvalidAmount(f"Minimum payout is {minimum}.")
        if method not in PAYOUT_METHODS:
            raise AppError(f"Unsupported payout method: {method}.", 400)

        talent = db.session.get(User, talent_id)
        if not talent or not talent.is_talent:
            raise NotFound("Talent not found.")

        with talent_lock(talent_id):
            available = LedgerService.available_balance(talent_id)
            if amount > available:
                db.session.rollback()
                raise InsufficientBalance(amount, available)
            payout = PayoutRequest(
                talent_id=talent_id,
                requested_amount=amount,
                available_balance_snapshot=available,
                payout_method=method,
                payout_destination=destination or {},
                status="pending",
            )
            db.session.add(payout)
            db.session.commit()

        log.info("Payout request %s: talent %s asked for %s of %s", payout.id, talent_id, amount, available)
        return payout

    @staticmethod
    def decide_payout(request_id, decision, notes=None, admin_id=None):
        decision = (decision or "").strip().lower()
        if decision not in PAYOUT_DECISIONS:
            raise AppError("Decision must be approved or rejected.", 400)
        payout = PayoutService.get_request(request_id)

        with talent_lock(payout.talent_id):
            db.session.refresh(payout)
            if payout.status != "pending":
                raise InvalidTransition(payout.status, decision)

            now = utcnow()
            payout.status = decision
            payout.admin_notes = (notes or "").strip() or None
            payout.reviewed_by_id = admin_id
            payout.reviewed_at = now
            if decision == "approved":
                db.session.add(
                    PaymentTransaction(
                        transaction_type="payout",
                        payout_request_id=payout.id,
                        talent_id=payout.talent_id,
                        amount=-payout.requested_amount,
                        payment_status="paid",
                        commission_rate=0,
                        platform_fee=0,
                        talent_earnings=-payout.requested_amount,
                        payment_method=payout.payout_method,
                        paid_at=now,
                    )
                )
            NotificationService.enqueue(
                "payout_decided",
                payout.talent.phone or payout.talent_id,
                {"payout_id": payout.id, "amount": str(payout.requested_amount), "decision": decision},
            )
            db.session.commit()

        log.info("Payout request %s %s by admin %s", request_id, decision, admin_id)
        return payout

    @staticmethod
    def mark_processed(request_id, reference=None):
        payout = PayoutService.get_request(request_id)
        if payout.status == "processed":
            return payout
        if payout.status != "approved":
            raise InvalidTransition(payout.status, "processed")
        payout.status = "processed"
        payout.processed_at = utcnow()
        payout.transfer_reference = (reference or "").strip() or None
        db.session.commit()
        log.info("Payout request %s processed (ref %s)", request_id, payout.transfer_reference)
        return payout
