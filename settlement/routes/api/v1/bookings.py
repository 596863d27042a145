from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from settlement.decorators import customer_required
from settlement.models import Booking
from settlement.services import BookingService, PaymentService

api_booking_bp = Blueprint("api_booking", __name__)


def booking_json(b):
    return {
        "id": b.id,
        "customer_id": b.customer_id,
        "talent_id": b.talent_id,
        "service_type": b.service_type,
        "duration": b.duration,
        "duration_unit": b.duration_unit,
        "status": b.status,
        "payment_status": b.payment_status,
        "talent_tier": b.talent_tier,
        "commission_rate": str(b.commission_rate),
        "base_price": str(b.base_price),
        "app_fee": str(b.app_fee),
        "commission_amount": str(b.commission_amount),
        "customer_charge": str(b.customer_charge),
        "talent_earnings": str(b.talent_earnings),
        "platform_revenue": str(b.platform_revenue),
        "review_requested": b.review_requested,
        "items": [item_json(item) for item in b.items],
        "created_at": b.created_at.isoformat(),
    }


def item_json(item):
    return {
        "service_type": item.service_type,
        "duration": item.duration,
        "duration_unit": item.duration_unit,
        "unit_price": str(item.unit_price),
        "subtotal": str(item.subtotal),
    }


def _load_for_party(booking_id):
    booking = BookingService.get_booking(booking_id)
    if current_user.role != "admin" and current_user.id not in (booking.customer_id, booking.talent_id):
        abort(403)
    return booking


@api_booking_bp.get("/quote")
@login_required
def quote():
    breakdown, lines = BookingService.quote(
        talent_id=request.args.get("talent_id", type=int),
        service_type=request.args.get("service_type", ""),
        duration=request.args.get("duration", default=1, type=int),
        duration_unit=request.args.get("duration_unit"),
    )
    return jsonify({**breakdown.as_dict(), "items": [line.as_dict() for line in lines]})


@api_booking_bp.post("/quote")
@login_required
def quote_selection():
    payload = request.get_json(silent=True) or {}
    breakdown, lines = BookingService.quote(
        talent_id=payload.get("talent_id"),
        services=payload.get("services") or [],
    )
    return jsonify({**breakdown.as_dict(), "items": [line.as_dict() for line in lines]})


@api_booking_bp.post("")
@login_required
@customer_required
def create_booking():
    payload = request.get_json(silent=True) or {}
    booking = BookingService.create_booking(
        customer_id=current_user.id,
        talent_id=payload.get("talent_id"),
        service_type=payload.get("service_type", ""),
        duration=payload.get("duration", 1),
        duration_unit=payload.get("duration_unit"),
        customer_note=payload.get("customer_note"),
        services=payload.get("services"),
    )
    checkout = PaymentService.start_checkout(booking)
    return jsonify({"booking": booking_json(booking), "checkout": checkout}), 201


@api_booking_bp.get("/me")
@login_required
def my_bookings():
    column = Booking.talent_id if current_user.role == "talent" else Booking.customer_id
    rows = Booking.query.filter(column == current_user.id).order_by(Booking.created_at.desc()).all()
    return jsonify([booking_json(b) for b in rows])


@api_booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id):
    return jsonify(booking_json(_load_for_party(booking_id)))


@api_booking_bp.patch("/<int:booking_id>/status")
@login_required
def update_status(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = _load_for_party(booking_id)
    new_status = (payload.get("status") or "").strip().lower()
    # Customers may only cancel; talents and admins drive the booking forward.
    if current_user.role == "customer" and new_status != "cancelled":
        abort(403)
    if new_status == "cancelled":
        booking = BookingService.cancel_booking(booking.id, reason=payload.get("reason"), actor=current_user)
    else:
        booking = BookingService.transition_booking(booking.id, new_status, actor=current_user)
    return jsonify(booking_json(booking))


@api_booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel(booking_id):
    payload = request.get_json(silent=True) or {}
    booking = _load_for_party(booking_id)
    booking = BookingService.cancel_booking(booking.id, reason=payload.get("reason"), actor=current_user)
    return jsonify(booking_json(booking))


@api_booking_bp.post("/<int:booking_id>/retry-payment")
@login_required
@customer_required
def retry_payment(booking_id):
    booking = _load_for_party(booking_id)
    BookingService.retry_payment(booking.id)
    checkout = PaymentService.start_checkout(BookingService.get_booking(booking.id))
    return jsonify({"booking": booking_json(BookingService.get_booking(booking.id)), "checkout": checkout})
