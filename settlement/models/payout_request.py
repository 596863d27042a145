from settlement.extensions import db
from settlement.models.base import MoneyColumn, PKType, TimestampMixin

PAYOUT_STATUSES = ("pending", "approved", "rejected", "processed")


class PayoutRequest(TimestampMixin, db.Model):
    __tablename__ = "payout_requests"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    talent_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_amount = MoneyColumn()
    available_balance_snapshot = MoneyColumn()
    payout_method = db.Column(db.String(32), nullable=False, default="bank_transfer")
    payout_destination = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    admin_notes = db.Column(db.Text, nullable=True)
    reviewed_by_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transfer_reference = db.Column(db.String(128), nullable=True)

    talent = db.relationship("User", back_populates="payout_requests", foreign_keys=[talent_id])
    transaction = db.relationship("PaymentTransaction", back_populates="payout_request", uselist=False)

    __table_args__ = (
        db.Index("ix_payout_requests_talent_status", "talent_id", "status"),
        db.CheckConstraint("requested_amount > 0", name="ck_payout_amount_positive"),
    )
