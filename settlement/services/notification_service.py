import logging

import requests
from flask import current_app

from settlement.extensions import db
from settlement.models import NotificationOutbox
from settlement.models.base import utcnow
from settlement.models.notification_outbox import NOTIFICATION_KINDS

log = logging.getLogger(__name__)

MESSAGE_TEMPLATES = {
    "booking_confirmed": "Booking #{booking_id} confirmed: {service_type} with {counterpart_name}. Total Rp {amount}.",
    "contact_exchange": "Booking #{booking_id}: contact {counterpart_name} at {counterpart_phone}.",
    "review_request": "How was your {service_type} with {counterpart_name}? Leave a review for booking #{booking_id}.",
    "payment_confirmed": "Payment for booking #{booking_id} received: Rp {amount}.",
    "booking_cancelled": "Booking #{booking_id} was cancelled ({reason}).",
    "refund_requested": "Refund requested for booking #{booking_id}: Rp {amount}.",
    "payout_decided": "Your payout request #{payout_id} for Rp {amount} was {decision}.",
}


class _Defaults(dict):
    def __missing__(self, key):
        return "-"


def render_message(kind, template_data):
    template = MESSAGE_TEMPLATES.get(kind, "{kind}")
    return template.format_map(_Defaults(template_data or {}, kind=kind))


class NotificationService:
    @staticmethod
    def enqueue(kind, recipient, template_data=None, booking_id=None):
        """Record the intent to notify inside the caller's transaction; never commits."""
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        notification = NotificationOutbox(
            kind=kind,
            recipient=str(recipient),
            template_data=dict(template_data or {}),
            booking_id=booking_id,
        )
        db.session.add(notification)
        db.session.flush()
        return notification

    @staticmethod
    def for_booking(booking_id, kind=None):
        query = NotificationOutbox.query.filter_by(booking_id=booking_id)
        if kind:
            query = query.filter_by(kind=kind)
        return query.order_by(NotificationOutbox.id.asc()).all()

    @staticmethod
    def _deliver(notification):
        url = current_app.config.get("NOTIFY_WEBHOOK_URL")
        if not url:
            return False
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        token = current_app.config.get("NOTIFY_WEBHOOK_TOKEN")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        resp = requests.post(
            url,
            json={
                "kind": notification.kind,
                "recipient": notification.recipient,
                "message": render_message(notification.kind, notification.template_data),
                "data": notification.template_data,
            },
            headers=headers,
            timeout=20,
        )
        resp.raise_for_status()
        return True

    @staticmethod
    def dispatch_pending(limit=None):
        """Deliver queued and previously failed notifications. Returns counts."""
        limit = limit or current_app.config.get("NOTIFY_BATCH_SIZE", 50)
        max_attempts = current_app.config.get("NOTIFY_MAX_ATTEMPTS", 5)
        pending = (
            NotificationOutbox.query.filter(NotificationOutbox.status.in_(["queued", "failed"]))
            .filter(NotificationOutbox.attempts < max_attempts)
            .order_by(NotificationOutbox.created_at.asc(), NotificationOutbox.id.asc())
            .limit(limit)
            .all()
        )
        counts = {"processed": len(pending), "sent": 0, "failed": 0, "skipped": 0}
        for notification in pending:
            notification.attempts += 1
            try:
                delivered = NotificationService._deliver(notification)
            except requests.RequestException as exc:
                notification.status = "failed"
                notification.last_error = str(exc)[:500]
                counts["failed"] += 1
                log.warning("Notification %s (%s) failed: %s", notification.id, notification.kind, exc)
                continue
            if delivered:
                notification.status = "sent"
                notification.sent_at = utcnow()
                counts["sent"] += 1
            else:
                notification.status = "skipped"
                counts["skipped"] += 1
                log.info(
                    "No notification webhook configured; %s to %s: %s",
                    notification.kind,
                    notification.recipient,
                    render_message(notification.kind, notification.template_data),
                )
        if pending:
            db.session.commit()
        return counts
