from datetime import timedelta
from decimal import Decimal

from settlement.commands import expire_bookings_command
from settlement.extensions import db
from settlement.models import Booking, NotificationOutbox, User
from settlement.models.base import utcnow
from settlement.services import BookingService


def test_expire_bookings(app, make_booking):
    booking = make_booking()
    stale = utcnow() - timedelta(hours=3)
    booking.created_at = stale
    booking.current_transaction().created_at = stale
    db.session.commit()

    result = app.test_cli_runner().invoke(expire_bookings_command)
    assert result.exit_code == 0
    assert "cancelled=1" in result.output
    db.session.expire_all()
    assert db.session.get(Booking, booking.id).status == "cancelled"


def test_recalculate_tiers(app, make_user):
    talent = make_user("talent", completed_orders=35, average_rating=Decimal("4.8"))
    result = app.test_cli_runner().invoke(args=["recalculate-tiers"])
    assert result.exit_code == 0
    assert "checked=1 updated=1 errors=0" in result.output
    db.session.expire_all()
    assert db.session.get(User, talent.id).talent_tier == "elite"


def test_dispatch_notifications(app, make_booking):
    BookingService.cancel_booking(make_booking().id)
    result = app.test_cli_runner().invoke(args=["dispatch-notifications", "--limit", "1"])
    assert result.exit_code == 0
    assert "processed=1" in result.output
    db.session.expire_all()
    assert NotificationOutbox.query.filter_by(status="queued").count() == 1
