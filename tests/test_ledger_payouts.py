"""Tests for the earnings ledger and the payout workflow."""

import gc
import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from settlement import locking
from settlement.errors import AppError, BalanceUnknown, InsufficientBalance, InvalidAmount, InvalidTransition
from settlement.extensions import db
from settlement.locking import talent_lock
from settlement.models import NotificationOutbox, PaymentTransaction, PayoutRequest, User
from settlement.models.base import utcnow
from settlement.services import BookingService, LedgerService, PayoutService, PlatformService


class TestAvailableBalance:
    """Tests for LedgerService.available_balance."""

    def test_only_paid_service_charges_count(self, talent, make_booking, pay):
        """Pending and failed charges add nothing."""
        pay(make_booking(100000))
        make_booking(50000)
        pay(make_booking(70000), "failed")
        assert LedgerService.available_balance(talent.id) == Decimal("80000")

    def test_balance_formula(self, talent, admin, seed_earnings):
        """earned - approved/processed - pending."""
        seed_earnings(talent.id, 300000)
        first = PayoutService.request_payout(talent.id, 100000)
        PayoutService.decide_payout(first.id, "approved", admin_id=admin.id)
        second = PayoutService.request_payout(talent.id, 50000)
        PayoutService.decide_payout(second.id, "approved", admin_id=admin.id)
        PayoutService.mark_processed(second.id, reference="TRF-1")
        PayoutService.request_payout(talent.id, 20000)
        rejected = PayoutService.request_payout(talent.id, 10000)
        PayoutService.decide_payout(rejected.id, "rejected", notes="wrong account", admin_id=admin.id)

        assert LedgerService.available_balance(talent.id) == Decimal("130000")
        summary = LedgerService.earnings_summary(talent.id)
        assert Decimal(summary["total_earnings"]) == Decimal("300000")
        assert Decimal(summary["total_paid_out"]) == Decimal("150000")
        assert Decimal(summary["pending_payouts"]) == Decimal("20000")
        assert Decimal(summary["available_balance"]) == Decimal("130000")
        assert summary["last_payout_at"] is not None

    def test_payout_transactions_do_not_double_count(self, talent, admin, seed_earnings):
        """Approval writes a negative payout row that the ledger ignores."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 40000)
        PayoutService.decide_payout(payout.id, "approved", admin_id=admin.id)
        row = PaymentTransaction.query.filter_by(payout_request_id=payout.id).one()
        assert row.transaction_type == "payout"
        assert Decimal(row.amount) == Decimal("-40000")
        assert LedgerService.available_balance(talent.id) == Decimal("60000")

    def test_unreadable_ledger_raises(self, talent, monkeypatch):
        """A database failure is reported, never a zero balance."""

        def broken(_talent_id):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(LedgerService, "_paid_earnings", staticmethod(broken))
        with pytest.raises(BalanceUnknown):
            LedgerService.available_balance(talent.id)
        with pytest.raises(BalanceUnknown):
            PayoutService.request_payout(talent.id, 1000)
        assert PayoutRequest.query.count() == 0

    def test_platform_summary(self, make_booking, pay):
        """Revenue is summed over paid bookings only."""
        pay(make_booking(100000))
        pay(make_booking(12345))
        make_booking(50000)
        summary = LedgerService.platform_summary()
        assert summary["paid_bookings"] == 2
        assert Decimal(summary["gross_charged"]) == Decimal("110000") + Decimal("13580")
        assert Decimal(summary["platform_revenue"]) == Decimal("30000") + Decimal("3704")
        assert Decimal(summary["gross_charged"]) == Decimal(summary["talent_earnings"]) + Decimal(
            summary["platform_revenue"]
        )
        assert Decimal(summary["average_transaction_value"]) == Decimal("61790")
        assert summary["monthly_bookings"] == 2
        assert Decimal(summary["monthly_revenue"]) == Decimal("123580")

    def test_platform_summary_sets_refunds_apart(self, make_booking, pay):
        """Paid bookings that were cancelled are reported as refunds, not revenue."""
        pay(make_booking(100000))
        refunded = pay(make_booking(50000))
        BookingService.cancel_booking(refunded.id, reason="emergency")

        summary = LedgerService.platform_summary()
        assert summary["paid_bookings"] == 1
        assert Decimal(summary["gross_charged"]) == Decimal("110000")
        assert summary["refunds_requested"] == 1
        assert Decimal(summary["refund_amount"]) == Decimal("55000")

    def test_monthly_figures_start_at_month_start(self, make_booking, pay):
        """Bookings paid before the current month are left out of the monthly figures."""
        pay(make_booking(100000))
        summary = LedgerService.platform_summary(now=utcnow() + timedelta(days=40))
        assert summary["paid_bookings"] == 1
        assert summary["monthly_bookings"] == 0
        assert Decimal(summary["monthly_revenue"]) == Decimal("0")

    def test_empty_platform_summary(self, app):
        summary = LedgerService.platform_summary()
        assert summary["paid_bookings"] == 0
        assert Decimal(summary["average_transaction_value"]) == Decimal("0")


class TestAllTalentEarnings:
    """Tests for LedgerService.all_talent_earnings."""

    def test_balances_per_talent(self, talent, admin, make_user, seed_earnings):
        """Each talent with activity gets one row, largest available balance first."""
        busy = make_user("talent", full_name="Busy Talent")
        make_user("talent", full_name="Idle Talent")
        seed_earnings(talent.id, 100000)
        approved = PayoutService.request_payout(talent.id, 30000)
        PayoutService.decide_payout(approved.id, "approved", admin_id=admin.id)
        rejected = PayoutService.request_payout(talent.id, 5000)
        PayoutService.decide_payout(rejected.id, "rejected", admin_id=admin.id)
        PayoutService.request_payout(talent.id, 10000)
        seed_earnings(busy.id, 50000)
        seed_earnings(busy.id, 50000)

        rows = LedgerService.all_talent_earnings()
        assert [row["talent_id"] for row in rows] == [busy.id, talent.id]
        busy_row, talent_row = rows
        assert Decimal(busy_row["available_balance"]) == Decimal("100000")
        assert busy_row["transaction_count"] == 2
        assert busy_row["payout_request_count"] == 0
        assert busy_row["full_name"] == "Busy Talent"

        assert Decimal(talent_row["total_earnings"]) == Decimal("100000")
        assert Decimal(talent_row["total_paid_out"]) == Decimal("30000")
        assert Decimal(talent_row["pending_payouts"]) == Decimal("10000")
        assert Decimal(talent_row["available_balance"]) == Decimal("60000")
        assert talent_row["transaction_count"] == 1
        assert talent_row["payout_request_count"] == 3
        assert talent_row["talent_tier"] == "entry"
        assert talent_row["last_payout_request_at"] is not None

    def test_matches_single_talent_balance(self, talent, make_booking, pay):
        """The listing and available_balance agree, cancelled bookings included."""
        pay(make_booking(100000))
        cancelled = pay(make_booking(50000))
        BookingService.cancel_booking(cancelled.id)
        (row,) = LedgerService.all_talent_earnings()
        assert Decimal(row["available_balance"]) == LedgerService.available_balance(talent.id)
        assert row["transaction_count"] == 1

    def test_unreadable_ledger_raises(self, app, monkeypatch):
        def broken(*_columns):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr("settlement.services.ledger_service._earning_charges", broken)
        with pytest.raises(BalanceUnknown):
            LedgerService.all_talent_earnings()


class TestTalentLockRegistry:
    def test_released_locks_are_forgotten(self, talent):
        with talent_lock(talent.id):
            assert talent.id in locking._talent_locks
        gc.collect()
        assert talent.id not in locking._talent_locks

    def test_holders_share_one_lock(self, talent):
        first = locking._lock_for(talent.id)
        assert locking._lock_for(talent.id) is first


class TestRequestPayout:
    """Tests for PayoutService.request_payout."""

    def test_reserves_balance(self, talent, seed_earnings):
        """A pending request holds its amount until decided."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 60000, "e_wallet", {"provider": "dana"})
        assert payout.status == "pending"
        assert Decimal(payout.available_balance_snapshot) == Decimal("100000")
        assert payout.payout_destination == {"provider": "dana"}
        assert LedgerService.available_balance(talent.id) == Decimal("40000")

    def test_insufficient_balance_persists_nothing(self, talent, seed_earnings):
        """Over-asking reports the shortfall and writes no request."""
        seed_earnings(talent.id, 50000)
        with pytest.raises(InsufficientBalance) as exc:
            PayoutService.request_payout(talent.id, 60000)
        assert exc.value.shortfall == Decimal("10000")
        assert exc.value.to_dict()["code"] == "insufficient_balance"
        assert PayoutRequest.query.count() == 0

    def test_exact_balance_is_allowed(self, talent, seed_earnings):
        """The whole balance can be withdrawn, leaving zero."""
        seed_earnings(talent.id, 75000)
        PayoutService.request_payout(talent.id, 75000)
        assert LedgerService.available_balance(talent.id) == 0
        with pytest.raises(InsufficientBalance):
            PayoutService.request_payout(talent.id, 1)

    @pytest.mark.parametrize("amount", [0, -500, "abc", None])
    def test_rejects_invalid_amount(self, talent, seed_earnings, amount):
        """Amounts must be positive numbers."""
        seed_earnings(talent.id, 100000)
        with pytest.raises(InvalidAmount):
            PayoutService.request_payout(talent.id, amount)

    def test_minimum_payout(self, talent, seed_earnings):
        """The minimum comes from platform settings."""
        seed_earnings(talent.id, 100000)
        PlatformService.set_setting("min_payout_amount", 50000)
        with pytest.raises(InvalidAmount):
            PayoutService.request_payout(talent.id, 49999)
        assert PayoutService.request_payout(talent.id, 50000).status == "pending"

    def test_rejects_unknown_method(self, talent, seed_earnings):
        """Only supported payout rails are accepted."""
        seed_earnings(talent.id, 100000)
        with pytest.raises(AppError):
            PayoutService.request_payout(talent.id, 1000, method="cash")

    def test_balance_never_negative(self, talent, admin, seed_earnings):
        """A sequence of requests and decisions never overdraws."""
        seed_earnings(talent.id, 100000)
        for amount, decision in [(30000, "approved"), (50000, "rejected"), (60000, "approved")]:
            payout = PayoutService.request_payout(talent.id, amount)
            PayoutService.decide_payout(payout.id, decision, admin_id=admin.id)
            assert LedgerService.available_balance(talent.id) >= 0
        with pytest.raises(InsufficientBalance):
            PayoutService.request_payout(talent.id, 10001)
        assert LedgerService.available_balance(talent.id) == Decimal("10000")


class TestDecidePayout:
    """Tests for decide_payout and mark_processed."""

    def test_reject_releases_reservation(self, talent, admin, seed_earnings):
        """Rejected requests stop counting against the balance."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 70000)
        payout = PayoutService.decide_payout(payout.id, "rejected", notes="KYC missing", admin_id=admin.id)
        assert payout.status == "rejected"
        assert payout.admin_notes == "KYC missing"
        assert payout.reviewed_by_id == admin.id
        assert LedgerService.available_balance(talent.id) == Decimal("100000")
        assert NotificationOutbox.query.filter_by(kind="payout_decided").count() == 1

    def test_decision_is_final(self, talent, admin, seed_earnings):
        """A decided request cannot be decided again."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 10000)
        PayoutService.decide_payout(payout.id, "approved", admin_id=admin.id)
        with pytest.raises(InvalidTransition):
            PayoutService.decide_payout(payout.id, "rejected", admin_id=admin.id)
        assert PaymentTransaction.query.filter_by(transaction_type="payout").count() == 1

    def test_unknown_decision(self, talent, seed_earnings):
        """Only approved or rejected."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 10000)
        with pytest.raises(AppError):
            PayoutService.decide_payout(payout.id, "maybe")

    def test_mark_processed(self, talent, admin, seed_earnings):
        """Only approved requests are marked processed; repeats are harmless."""
        seed_earnings(talent.id, 100000)
        payout = PayoutService.request_payout(talent.id, 10000)
        with pytest.raises(InvalidTransition):
            PayoutService.mark_processed(payout.id)
        PayoutService.decide_payout(payout.id, "approved", admin_id=admin.id)
        payout = PayoutService.mark_processed(payout.id, reference="TRF-9")
        assert payout.status == "processed"
        assert payout.transfer_reference == "TRF-9"
        assert PayoutService.mark_processed(payout.id).transfer_reference == "TRF-9"
        assert LedgerService.available_balance(talent.id) == Decimal("90000")


class TestConcurrentPayouts:
    """Two workers racing for the same balance."""

    def test_only_one_request_fits(self, file_app):
        talent = User(full_name="Racing Talent", email="race@example.com", phone="0812000", role="talent")
        db.session.add(talent)
        db.session.flush()
        db.session.add(
            PaymentTransaction(
                transaction_type="service",
                talent_id=talent.id,
                amount=Decimal("50000"),
                payment_status="paid",
                commission_rate=Decimal("0.20"),
                talent_earnings=Decimal("50000"),
            )
        )
        db.session.commit()
        talent_id = talent.id

        barrier = threading.Barrier(2)
        outcomes = []

        def worker():
            with file_app.app_context():
                barrier.wait()
                try:
                    PayoutService.request_payout(talent_id, 30000)
                    outcomes.append("ok")
                except InsufficientBalance:
                    outcomes.append("insufficient")
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["insufficient", "ok"]
        db.session.expire_all()
        assert PayoutRequest.query.count() == 1
        assert LedgerService.available_balance(talent_id) == Decimal("20000")
