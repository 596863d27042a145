from settlement.extensions import db
from settlement.models.base import MoneyColumn, PKType, TimestampMixin


class BookingItem(TimestampMixin, db.Model):
    """One priced service inside a booking; the booking's base price is their sum."""

    __tablename__ = "booking_items"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    booking_id = db.Column(PKType, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    service_type = db.Column(db.String(32), nullable=False)
    duration = db.Column(db.Integer, nullable=False, default=1)
    duration_unit = db.Column(db.String(16), nullable=True)
    unit_price = MoneyColumn()
    subtotal = MoneyColumn()

    booking = db.relationship("Booking", back_populates="items")

    __table_args__ = (
        db.CheckConstraint("subtotal > 0", name="ck_booking_item_subtotal_positive"),
    )
