import logging
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from settlement.errors import BalanceUnknown
from settlement.extensions import db
from settlement.models import Booking, PaymentTransaction, PayoutRequest, User
from settlement.models.base import utcnow
from settlement.services.pricing import round_amount

log = logging.getLogger(__name__)

RESERVING_PAYOUT_STATUSES = ("pending",)
SETTLED_PAYOUT_STATUSES = ("approved", "processed")


def _decimal(value):
    return Decimal(str(value or 0))


def _paid_service_charges(*columns):
    return (
        db.session.query(*columns)
        .select_from(PaymentTransaction)
        .outerjoin(Booking, Booking.id == PaymentTransaction.booking_id)
        .filter(PaymentTransaction.transaction_type == "service")
        .filter(PaymentTransaction.payment_status == "paid")
    )


def _earning_charges(*columns):
    """Paid charges the talent may withdraw. Cancelled bookings are held for their refund."""
    return _paid_service_charges(*columns).filter(
        or_(PaymentTransaction.booking_id.is_(None), Booking.status != "cancelled")
    )


class LedgerService:
    """Balances derived from transaction and payout history on every call; never stored."""

    @staticmethod
    def _paid_earnings(talent_id):
        total = (
            _earning_charges(func.coalesce(func.sum(PaymentTransaction.talent_earnings), 0))
            .filter(PaymentTransaction.talent_id == talent_id)
            .scalar()
        )
        return _decimal(total)

    @staticmethod
    def _held_for_refund(talent_id):
        total = (
            _paid_service_charges(func.coalesce(func.sum(PaymentTransaction.talent_earnings), 0))
            .filter(PaymentTransaction.talent_id == talent_id)
            .filter(Booking.status == "cancelled")
            .scalar()
        )
        return _decimal(total)

    @staticmethod
    def _payout_total(talent_id, statuses):
        total = (
            db.session.query(func.coalesce(func.sum(PayoutRequest.requested_amount), 0))
            .filter(PayoutRequest.talent_id == talent_id)
            .filter(PayoutRequest.status.in_(statuses))
            .scalar()
        )
        return _decimal(total)

    @staticmethod
    def available_balance(talent_id):
        try:
            earned = LedgerService._paid_earnings(talent_id)
            paid_out = LedgerService._payout_total(talent_id, SETTLED_PAYOUT_STATUSES)
            reserved = LedgerService._payout_total(talent_id, RESERVING_PAYOUT_STATUSES)
        except SQLAlchemyError as exc:
            log.error("Ledger computation failed for talent %s: %s", talent_id, exc)
            raise BalanceUnknown(talent_id) from exc
        return earned - paid_out - reserved

    @staticmethod
    def earnings_summary(talent_id):
        try:
            earned = LedgerService._paid_earnings(talent_id)
            held = LedgerService._held_for_refund(talent_id)
            paid_out = LedgerService._payout_total(talent_id, SETTLED_PAYOUT_STATUSES)
            reserved = LedgerService._payout_total(talent_id, RESERVING_PAYOUT_STATUSES)
            last_payout = (
                db.session.query(func.max(PayoutRequest.reviewed_at))
                .filter(PayoutRequest.talent_id == talent_id)
                .filter(PayoutRequest.status.in_(SETTLED_PAYOUT_STATUSES))
                .scalar()
            )
            pending_charges = (
                db.session.query(func.coalesce(func.sum(PaymentTransaction.talent_earnings), 0))
                .filter(PaymentTransaction.talent_id == talent_id)
                .filter(PaymentTransaction.transaction_type == "service")
                .filter(PaymentTransaction.payment_status == "pending")
                .scalar()
            )
        except SQLAlchemyError as exc:
            log.error("Earnings summary failed for talent %s: %s", talent_id, exc)
            raise BalanceUnknown(talent_id) from exc

        return {
            "talent_id": talent_id,
            "total_earnings": str(earned),
            "total_paid_out": str(paid_out),
            "pending_payouts": str(reserved),
            "held_for_refund": str(held),
            "awaiting_payment": str(_decimal(pending_charges)),
            "available_balance": str(earned - paid_out - reserved),
            "last_payout_at": last_payout.isoformat() if last_payout else None,
        }

    @staticmethod
    def all_talent_earnings():
        """Per-talent balances for the payout approval queue, largest balance first."""
        try:
            earned = {
                talent_id: (_decimal(total), int(count))
                for talent_id, total, count in _earning_charges(
                    PaymentTransaction.talent_id,
                    func.sum(PaymentTransaction.talent_earnings),
                    func.count(PaymentTransaction.id),
                )
                .group_by(PaymentTransaction.talent_id)
                .all()
            }
            payouts = {}
            for talent_id, status, total, count, last_at in (
                db.session.query(
                    PayoutRequest.talent_id,
                    PayoutRequest.status,
                    func.sum(PayoutRequest.requested_amount),
                    func.count(PayoutRequest.id),
                    func.max(PayoutRequest.created_at),
                )
                .group_by(PayoutRequest.talent_id, PayoutRequest.status)
                .all()
            ):
                payouts.setdefault(talent_id, []).append((status, _decimal(total), int(count), last_at))

            talent_ids = set(earned) | set(payouts)
            talents = (
                User.query.filter(User.id.in_(sorted(talent_ids))).filter(User.role == "talent").all()
                if talent_ids
                else []
            )
        except SQLAlchemyError as exc:
            log.error("Talent earnings listing failed: %s", exc)
            raise BalanceUnknown(None) from exc

        rows = []
        for talent in talents:
            total, transaction_count = earned.get(talent.id, (Decimal("0"), 0))
            paid_out = reserved = Decimal("0")
            request_count = 0
            last_request = None
            for status, amount, count, last_at in payouts.get(talent.id, []):
                request_count += count
                if status in SETTLED_PAYOUT_STATUSES:
                    paid_out += amount
                elif status in RESERVING_PAYOUT_STATUSES:
                    reserved += amount
                if last_at and (last_request is None or last_at > last_request):
                    last_request = last_at
            rows.append(
                {
                    "talent_id": talent.id,
                    "full_name": talent.full_name,
                    "email": talent.email,
                    "talent_tier": talent.talent_tier,
                    "total_earnings": str(total),
                    "total_paid_out": str(paid_out),
                    "pending_payouts": str(reserved),
                    "available_balance": str(total - paid_out - reserved),
                    "transaction_count": transaction_count,
                    "payout_request_count": request_count,
                    "last_payout_request_at": last_request.isoformat() if last_request else None,
                }
            )
        rows.sort(key=lambda row: (-Decimal(row["available_balance"]), row["talent_id"]))
        return rows

    @staticmethod
    def platform_summary(now=None):
        now = now or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        def _paid_bookings():
            return (
                db.session.query(
                    func.count(Booking.id),
                    func.coalesce(func.sum(Booking.customer_charge), 0),
                    func.coalesce(func.sum(Booking.app_fee), 0),
                    func.coalesce(func.sum(Booking.commission_amount), 0),
                    func.coalesce(func.sum(Booking.platform_revenue), 0),
                    func.coalesce(func.sum(Booking.talent_earnings), 0),
                )
                .filter(Booking.payment_status == "paid")
                .filter(Booking.status != "cancelled")
            )

        count, charged, app_fees, commission, revenue, earnings = _paid_bookings().one()
        monthly_count, monthly_charged, *_rest = _paid_bookings().filter(Booking.paid_at >= month_start).one()
        refund_count, refund_amount = (
            db.session.query(func.count(Booking.id), func.coalesce(func.sum(Booking.customer_charge), 0))
            .filter(Booking.payment_status == "paid")
            .filter(Booking.status == "cancelled")
            .one()
        )
        paid_out = (
            db.session.query(func.coalesce(func.sum(PayoutRequest.requested_amount), 0))
            .filter(PayoutRequest.status.in_(SETTLED_PAYOUT_STATUSES))
            .scalar()
        )
        reserved = (
            db.session.query(func.coalesce(func.sum(PayoutRequest.requested_amount), 0))
            .filter(PayoutRequest.status.in_(RESERVING_PAYOUT_STATUSES))
            .scalar()
        )
        count = int(count or 0)
        charged = _decimal(charged)
        return {
            "paid_bookings": count,
            "gross_charged": str(charged),
            "app_fee_revenue": str(_decimal(app_fees)),
            "commission_revenue": str(_decimal(commission)),
            "platform_revenue": str(_decimal(revenue)),
            "talent_earnings": str(_decimal(earnings)),
            "average_transaction_value": str(round_amount(charged / count) if count else Decimal("0")),
            "monthly_bookings": int(monthly_count or 0),
            "monthly_revenue": str(_decimal(monthly_charged)),
            "refunds_requested": int(refund_count or 0),
            "refund_amount": str(_decimal(refund_amount)),
            "total_paid_out": str(_decimal(paid_out)),
            "pending_payouts": str(_decimal(reserved)),
        }
