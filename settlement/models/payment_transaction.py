from settlement.extensions import db
from settlement.models.base import MoneyColumn, PKType, TimestampMixin


class PaymentTransaction(TimestampMixin, db.Model):
    __tablename__ = "payment_transactions"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    transaction_type = db.Column(db.String(16), nullable=False, default="service", index=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True)
    payout_request_id = db.Column(
        PKType, db.ForeignKey("payout_requests.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    talent_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Positive for service charges, negative for payouts.
    amount = MoneyColumn()
    payment_status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    commission_rate = db.Column(db.Numeric(5, 4), nullable=False, default=0)
    platform_fee = MoneyColumn()
    talent_earnings = MoneyColumn()

    gateway_order_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    gateway_reference = db.Column(db.String(255), nullable=True)
    gateway_transaction_id = db.Column(db.String(128), nullable=True)
    gateway_status = db.Column(db.String(32), nullable=True)
    gateway_payment_type = db.Column(db.String(64), nullable=True)
    gateway_fraud_status = db.Column(db.String(32), nullable=True)
    # Last callback body as received, minus the signature.
    gateway_payload = db.Column(db.JSON, nullable=True)
    payment_method = db.Column(db.String(64), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    booking = db.relationship("Booking", back_populates="transactions")
    payout_request = db.relationship("PayoutRequest", back_populates="transaction")

    __table_args__ = (
        db.Index("ix_payment_transactions_talent_status", "talent_id", "payment_status"),
    )
