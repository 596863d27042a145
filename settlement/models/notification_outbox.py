from settlement.extensions import db
from settlement.models.base import PKType, TimestampMixin

NOTIFICATION_KINDS = (
    "booking_confirmed",
    "contact_exchange",
    "review_request",
    "payment_confirmed",
    "booking_cancelled",
    "refund_requested",
    "payout_decided",
)


class NotificationOutbox(TimestampMixin, db.Model):
    """Intent to notify, written in the same transaction as the state change it reports."""

    __tablename__ = "notification_outbox"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    kind = db.Column(db.String(32), nullable=False, index=True)
    recipient = db.Column(db.String(64), nullable=False)
    template_data = db.Column(db.JSON, nullable=False, default=dict)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="queued", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
