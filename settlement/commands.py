import click
from flask.cli import with_appcontext

from settlement.services import BookingService, NotificationService, TierService


@click.command("expire-bookings")
@with_appcontext
def expire_bookings_command():
    """Cancel pending bookings whose payment window has passed."""
    result = BookingService.expire_unpaid_bookings()
    click.echo(f"checked={result['checked']} cancelled={result['cancelled']}")


@click.command("recalculate-tiers")
@with_appcontext
def recalculate_tiers_command():
    """Re-derive every talent's commission tier from current stats."""
    result = TierService.recalculate_all()
    click.echo(f"checked={result['checked']} updated={result['updated']} errors={result['errors']}")


@click.command("dispatch-notifications")
@click.option("--limit", type=int, default=None, help="Maximum notifications to send.")
@with_appcontext
def dispatch_notifications_command(limit):
    """Deliver queued notifications from the outbox."""
    result = NotificationService.dispatch_pending(limit=limit)
    click.echo(
        f"processed={result['processed']} sent={result['sent']} "
        f"failed={result['failed']} skipped={result['skipped']}"
    )


def register_commands(app):
    app.cli.add_command(expire_bookings_command)
    app.cli.add_command(recalculate_tiers_command)
    app.cli.add_command(dispatch_notifications_command)
