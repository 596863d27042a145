import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, update

from settlement.errors import AppError, InsufficientBalance, InvalidTransition, NotFound, PaymentNotSettled
from settlement.extensions import db
from settlement.locking import talent_lock
from settlement.models import Booking, BookingItem, PaymentTransaction, User
from settlement.models.base import utcnow
from settlement.models.booking import SERVICE_TYPES
from settlement.services.ledger_service import LedgerService
from settlement.services.notification_service import NotificationService
from settlement.services.platform_service import PlatformService
from settlement.services.pricing import (
    ServiceLine,
    compute_breakdown,
    price_selection,
    selection_total,
    to_amount,
)
from settlement.services.tier_service import TierService

log = logging.getLogger(__name__)

BOOKING_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}
# Moves that require payment_status == "paid".
SETTLEMENT_REQUIRED = {"confirmed", "in_progress", "completed"}
CANCELLABLE = {"pending", "confirmed", "in_progress"}
TRANSITION_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "in_progress": "started_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}
TERMINAL_PAYMENT_STATUSES = {"paid", "failed"}


def _recipient(user):
    return user.phone or user.id


class BookingService:
    @staticmethod
    def get_booking(booking_id):
        booking = db.session.get(Booking, booking_id)
        if not booking:
            raise NotFound("Booking not found.")
        return booking

    @staticmethod
    def _get_user(user_id, role):
        user = db.session.get(User, user_id)
        if not user or user.role != role:
            raise NotFound(f"{role.title()} not found.")
        if not user.is_active_user:
            raise AppError(f"{role.title()} account is inactive.", 409)
        return user

    @staticmethod
    def _open_transaction(booking, attempt):
        transaction = PaymentTransaction(
            transaction_type="service",
            booking_id=booking.id,
            talent_id=booking.talent_id,
            customer_id=booking.customer_id,
            amount=booking.customer_charge,
            payment_status="pending",
            commission_rate=booking.commission_rate,
            platform_fee=booking.platform_revenue,
            talent_earnings=booking.talent_earnings,
            gateway_order_id=f"BK-{booking.id}-{attempt}",
        )
        db.session.add(transaction)
        return transaction

    @staticmethod
    def _compare_and_set(booking, expected_status, expected_payment, changes):
        """Write `changes` only if (status, payment_status) still hold; rolls back otherwise."""
        result = db.session.execute(
            update(Booking)
            .where(Booking.id == booking.id)
            .where(Booking.status == expected_status)
            .where(Booking.payment_status == expected_payment)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise InvalidTransition(
                f"{expected_status}/{expected_payment}",
                f"{changes.get('status', expected_status)}/{changes.get('payment_status', expected_payment)}",
                f"Booking #{booking.id} was modified concurrently; reload and retry.",
            )

    @staticmethod
    def _price_lines(service_type, duration, duration_unit, base_price, services):
        """Resolve what is being booked into priced lines and their total."""
        if services:
            lines = price_selection(services)
            return lines, selection_total(lines)
        if base_price is None:
            lines = price_selection(
                [{"service_type": service_type, "duration": duration, "duration_unit": duration_unit}]
            )
            return lines, selection_total(lines)
        if service_type not in SERVICE_TYPES:
            raise AppError(f"Unknown service type: {service_type}.", 400)
        amount = to_amount(base_price, "Base price")
        line = ServiceLine(
            service_type=service_type,
            duration=int(duration),
            duration_unit=duration_unit,
            unit_price=amount,
            subtotal=amount,
        )
        return [line], amount

    @staticmethod
    def quote(talent_id, service_type=None, duration=1, duration_unit=None, base_price=None, services=None):
        talent = BookingService._get_user(talent_id, "talent")
        lines, base_price = BookingService._price_lines(
            service_type, duration, duration_unit, base_price, services
        )
        return compute_breakdown(base_price, talent.talent_tier or "entry"), lines

    @staticmethod
    def create_booking(
        customer_id,
        talent_id,
        service_type=None,
        duration=1,
        duration_unit=None,
        base_price=None,
        customer_note=None,
        services=None,
    ):
        """Book one catalog service, an explicit base price, or a list of `services` selections."""
        if customer_id == talent_id:
            raise AppError("Customers cannot book themselves.", 400)
        customer = BookingService._get_user(customer_id, "customer")
        talent = BookingService._get_user(talent_id, "talent")

        lines, base_price = BookingService._price_lines(
            service_type, duration, duration_unit, base_price, services
        )
        breakdown = compute_breakdown(base_price, talent.talent_tier or "entry")
        primary = lines[0]

        booking = Booking(
            customer_id=customer.id,
            talent_id=talent.id,
            service_type=primary.service_type,
            duration=primary.duration,
            duration_unit=primary.duration_unit,
            base_price=breakdown.base_price,
            app_fee=breakdown.app_fee,
            commission_amount=breakdown.commission_amount,
            customer_charge=breakdown.customer_charge,
            talent_earnings=breakdown.talent_earnings,
            platform_revenue=breakdown.platform_revenue,
            talent_tier=breakdown.tier,
            commission_rate=breakdown.commission_rate,
            status="pending",
            payment_status="pending",
            customer_note=(customer_note or "").strip() or None,
        )
        booking.items = [
            BookingItem(
                service_type=line.service_type,
                duration=line.duration,
                duration_unit=line.duration_unit,
                unit_price=line.unit_price,
                subtotal=line.subtotal,
            )
            for line in lines
        ]
        db.session.add(booking)
        db.session.flush()
        BookingService._open_transaction(booking, attempt=1)
        db.session.commit()
        log.info(
            "Booking %s created: %s for talent %s (%s), charge %s",
            booking.id,
            ", ".join(line.service_type for line in lines),
            talent.id,
            breakdown.tier,
            breakdown.customer_charge,
        )
        return booking

    @staticmethod
    def apply_payment_status(order_id, payment_status, gateway_fields=None):
        """Apply a gateway verdict to the charge and its booking, once."""
        transaction = PaymentTransaction.query.filter_by(gateway_order_id=order_id).first()
        if not transaction or transaction.transaction_type != "service":
            raise NotFound("Transaction not found.")
        gateway_fields = {k: v for k, v in (gateway_fields or {}).items() if v is not None}

        if payment_status not in TERMINAL_PAYMENT_STATUSES:
            if transaction.payment_status == "pending" and gateway_fields:
                for key, value in gateway_fields.items():
                    setattr(transaction, key, value)
                db.session.commit()
            return transaction
        if transaction.payment_status == payment_status:
            log.info("Duplicate %s callback for %s ignored", payment_status, order_id)
            return transaction
        if transaction.payment_status != "pending":
            raise InvalidTransition(
                transaction.payment_status,
                payment_status,
                f"Payment {order_id} already settled as {transaction.payment_status}.",
            )

        with talent_lock(transaction.talent_id):
            now = utcnow()
            tx_changes = dict(gateway_fields, payment_status=payment_status)
            if payment_status == "paid":
                tx_changes["paid_at"] = now
            result = db.session.execute(
                update(PaymentTransaction)
                .where(PaymentTransaction.id == transaction.id)
                .where(PaymentTransaction.payment_status == "pending")
                .values(**tx_changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.session.rollback()
                db.session.refresh(transaction)
                if transaction.payment_status == payment_status:
                    return transaction
                raise InvalidTransition(transaction.payment_status, payment_status)

            booking = transaction.booking
            status = booking.status
            booking_changes = {"payment_status": payment_status}
            auto_confirm = (
                payment_status == "paid"
                and status == "pending"
                and current_app.config.get("AUTO_CONFIRM_ON_PAYMENT", True)
            )
            if payment_status == "paid":
                booking_changes["paid_at"] = now
            if auto_confirm:
                booking_changes.update(status="confirmed", confirmed_at=now)
            BookingService._compare_and_set(booking, status, "pending", booking_changes)

            if payment_status == "paid":
                BookingService._notify_paid(booking, auto_confirm)
                if status == "cancelled":
                    BookingService._notify_refund(booking)
            db.session.commit()

        log.info("Payment %s for booking %s is now %s", order_id, transaction.booking_id, payment_status)
        db.session.refresh(transaction)
        return transaction

    @staticmethod
    def _notify_paid(booking, confirmed):
        customer, talent = booking.customer, booking.talent
        NotificationService.enqueue(
            "payment_confirmed",
            _recipient(customer),
            {"booking_id": booking.id, "amount": str(booking.customer_charge)},
            booking_id=booking.id,
        )
        NotificationService.enqueue(
            "payment_confirmed",
            _recipient(talent),
            {"booking_id": booking.id, "amount": str(booking.talent_earnings)},
            booking_id=booking.id,
        )
        if not confirmed:
            return
        for user, counterpart in ((customer, talent), (talent, customer)):
            NotificationService.enqueue(
                "booking_confirmed",
                _recipient(user),
                {
                    "booking_id": booking.id,
                    "service_type": booking.service_type,
                    "counterpart_name": counterpart.full_name,
                    "amount": str(booking.customer_charge),
                },
                booking_id=booking.id,
            )
            NotificationService.enqueue(
                "contact_exchange",
                _recipient(user),
                {
                    "booking_id": booking.id,
                    "counterpart_name": counterpart.full_name,
                    "counterpart_phone": counterpart.phone,
                },
                booking_id=booking.id,
            )

    @staticmethod
    def _notify_refund(booking):
        NotificationService.enqueue(
            "refund_requested",
            booking.customer_id,
            {"booking_id": booking.id, "amount": str(booking.customer_charge), "customer_id": booking.customer_id},
            booking_id=booking.id,
        )

    @staticmethod
    def retry_payment(booking_id):
        booking = BookingService.get_booking(booking_id)
        if booking.status != "pending" or booking.payment_status != "failed":
            raise InvalidTransition(
                f"{booking.status}/{booking.payment_status}",
                "pending/pending",
                "Payment can only be retried for a pending booking whose payment failed.",
            )
        attempt = booking.transactions.filter(PaymentTransaction.transaction_type == "service").count() + 1
        BookingService._compare_and_set(booking, "pending", "failed", {"payment_status": "pending"})
        transaction = BookingService._open_transaction(booking, attempt)
        db.session.commit()
        log.info("Booking %s payment retry #%s opened", booking_id, attempt)
        return transaction

    @staticmethod
    def transition_booking(booking_id, new_status, actor=None):
        booking = BookingService.get_booking(booking_id)
        new_status = (new_status or "").strip().lower()
        if new_status == "cancelled":
            return BookingService.cancel_booking(booking_id, actor=actor)

        current = booking.status
        payment = booking.payment_status
        if new_status not in BOOKING_TRANSITIONS.get(current, set()):
            raise InvalidTransition(current, new_status)
        if new_status in SETTLEMENT_REQUIRED and payment != "paid":
            raise PaymentNotSettled(booking.id, payment)

        changes = {"status": new_status, TRANSITION_TIMESTAMPS[new_status]: utcnow()}
        completing = new_status == "completed"
        if completing:
            changes["review_requested"] = True
        BookingService._compare_and_set(booking, current, payment, changes)

        if completing:
            BookingService._request_review(booking)
            db.session.execute(
                update(User)
                .where(User.id == booking.talent_id)
                .values(completed_orders=User.completed_orders + 1)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
        log.info(
            "Booking %s moved %s -> %s by %s",
            booking_id,
            current,
            new_status,
            getattr(actor, "id", "system"),
        )

        if completing:
            try:
                TierService.recalculate(booking.talent_id)
            except Exception:
                db.session.rollback()
                log.exception("Tier recalculation after booking %s failed", booking_id)
        return BookingService.get_booking(booking_id)

    @staticmethod
    def _request_review(booking):
        customer, talent = booking.customer, booking.talent
        for user, counterpart in ((customer, talent), (talent, customer)):
            NotificationService.enqueue(
                "review_request",
                _recipient(user),
                {
                    "booking_id": booking.id,
                    "service_type": booking.service_type,
                    "counterpart_name": counterpart.full_name,
                },
                booking_id=booking.id,
            )

    @staticmethod
    def cancel_booking(booking_id, reason=None, actor=None, only_unpaid=False):
        """Cancel from any non-terminal state. Re-cancelling is a no-op.

        Cancelling a paid booking holds its talent earnings back from the balance until the
        refund is settled, so it is refused once those earnings have been withdrawn.
        """
        booking = BookingService.get_booking(booking_id)
        if booking.status == "cancelled":
            return booking
        if booking.status not in CANCELLABLE:
            raise InvalidTransition(booking.status, "cancelled")
        payment = booking.payment_status
        if only_unpaid and payment == "paid":
            return booking

        reason = (reason or "").strip() or "cancelled"
        with talent_lock(booking.talent_id):
            if payment == "paid":
                available = LedgerService.available_balance(booking.talent_id)
                held = booking.talent_earnings
                if held > available:
                    raise InsufficientBalance(
                        held,
                        available,
                        f"Booking #{booking.id} earnings were already paid out; "
                        f"recover {held - available} before cancelling.",
                    )
            BookingService._compare_and_set(
                booking,
                booking.status,
                payment,
                {"status": "cancelled", "cancelled_at": utcnow(), "cancel_reason": reason[:255]},
            )
            for user in (booking.customer, booking.talent):
                NotificationService.enqueue(
                    "booking_cancelled",
                    _recipient(user),
                    {"booking_id": booking.id, "reason": reason},
                    booking_id=booking.id,
                )
            if payment == "paid":
                BookingService._notify_refund(booking)
            db.session.commit()
        log.info("Booking %s cancelled by %s: %s", booking_id, getattr(actor, "id", "system"), reason)
        return BookingService.get_booking(booking_id)

    @staticmethod
    def expire_unpaid_bookings(now=None):
        """Timeout sweep: cancel pending bookings whose current charge was opened too long ago.

        The window restarts with every payment retry.
        """
        now = now or utcnow()
        timeout = int(PlatformService.get_decimal("payment_timeout_minutes", 60))
        cutoff = now - timedelta(minutes=timeout)
        latest_charge = (
            db.session.query(
                PaymentTransaction.booking_id.label("booking_id"),
                func.max(PaymentTransaction.created_at).label("opened_at"),
            )
            .filter(PaymentTransaction.transaction_type == "service")
            .group_by(PaymentTransaction.booking_id)
            .subquery()
        )
        booking_ids = [
            row.id
            for row in db.session.query(Booking.id)
            .outerjoin(latest_charge, latest_charge.c.booking_id == Booking.id)
            .filter(Booking.status == "pending")
            .filter(Booking.payment_status != "paid")
            .filter(func.coalesce(latest_charge.c.opened_at, Booking.created_at) < cutoff)
            .all()
        ]
        cancelled = 0
        for booking_id in booking_ids:
            try:
                booking = BookingService.cancel_booking(booking_id, reason="payment_timeout", only_unpaid=True)
            except InvalidTransition as exc:
                log.info("Skipping booking %s in timeout sweep: %s", booking_id, exc.message)
                continue
            if booking.status == "cancelled":
                cancelled += 1
        return {"checked": len(booking_ids), "cancelled": cancelled}

