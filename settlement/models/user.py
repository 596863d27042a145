from flask_login import UserMixin

from settlement.extensions import db
from settlement.models.base import PKType, TimestampMixin


class User(UserMixin, TimestampMixin, db.Model):
    """Profile collaborator's view of an account; settlement only reads stats and writes the tier."""

    __tablename__ = "users"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    full_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(20), nullable=False, index=True, default="")
    role = db.Column(db.String(24), nullable=False, index=True)
    is_active_user = db.Column(db.Boolean, nullable=False, default=True)

    talent_tier = db.Column(db.String(16), nullable=False, default="entry", index=True)
    completed_orders = db.Column(db.Integer, nullable=False, default=0)
    average_rating = db.Column(db.Numeric(3, 2), nullable=False, default=0)
    tier_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer_bookings = db.relationship(
        "Booking", back_populates="customer", lazy="dynamic", foreign_keys="Booking.customer_id"
    )
    talent_bookings = db.relationship(
        "Booking", back_populates="talent", lazy="dynamic", foreign_keys="Booking.talent_id"
    )
    payout_requests = db.relationship(
        "PayoutRequest", back_populates="talent", lazy="dynamic", foreign_keys="PayoutRequest.talent_id"
    )

    __table_args__ = (
        db.CheckConstraint("completed_orders >= 0", name="ck_user_completed_orders"),
        db.CheckConstraint("average_rating >= 0 AND average_rating <= 5", name="ck_user_rating_range"),
    )

    @property
    def is_talent(self):
        return self.role == "talent"
