from settlement.extensions import db
from settlement.models.base import TimestampMixin


class PlatformSetting(TimestampMixin, db.Model):
    """Runtime override for an operational knob that otherwise comes from config."""

    __tablename__ = "platform_settings"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)
