from settlement.extensions import db
from settlement.models.base import MoneyColumn, PKType, TimestampMixin
from settlement.models.payment_transaction import PaymentTransaction

SERVICE_TYPES = (
    "chat",
    "voice_call",
    "video_call",
    "offline_date",
    "party_companion",
    "extended_companionship",
)
BOOKING_STATUSES = ("pending", "confirmed", "in_progress", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed")


class Booking(TimestampMixin, db.Model):
    __tablename__ = "bookings"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    customer_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    talent_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    service_type = db.Column(db.String(32), nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=1)
    duration_unit = db.Column(db.String(16), nullable=True)

    base_price = MoneyColumn()
    app_fee = MoneyColumn()
    commission_amount = MoneyColumn()
    customer_charge = MoneyColumn()
    talent_earnings = MoneyColumn()
    platform_revenue = MoneyColumn()
    # Snapshot at creation; never recomputed when the talent's tier changes.
    talent_tier = db.Column(db.String(16), nullable=False)
    commission_rate = db.Column(db.Numeric(5, 4), nullable=False)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    review_requested = db.Column(db.Boolean, nullable=False, default=False)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_note = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    customer = db.relationship("User", back_populates="customer_bookings", foreign_keys=[customer_id])
    talent = db.relationship("User", back_populates="talent_bookings", foreign_keys=[talent_id])
    transactions = db.relationship("PaymentTransaction", back_populates="booking", lazy="dynamic")
    items = db.relationship(
        "BookingItem", back_populates="booking", order_by="BookingItem.id", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("ix_bookings_customer_status", "customer_id", "status"),
        db.Index("ix_bookings_talent_status", "talent_id", "status"),
        db.Index("ix_bookings_status_payment", "status", "payment_status"),
        db.CheckConstraint("base_price > 0", name="ck_booking_base_price_positive"),
        db.CheckConstraint("duration > 0", name="ck_booking_duration_positive"),
    )

    def current_transaction(self):
        """Latest service charge for this booking (older ones are failed attempts)."""
        return (
            self.transactions.filter(PaymentTransaction.transaction_type == "service")
            .order_by(PaymentTransaction.id.desc())
            .first()
        )
