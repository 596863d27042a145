from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from settlement.decorators import admin_required, talent_required
from settlement.extensions import limiter
from settlement.services import PayoutService

api_payout_bp = Blueprint("api_payout", __name__)


def payout_json(p):
    return {
        "id": p.id,
        "talent_id": p.talent_id,
        "requested_amount": str(p.requested_amount),
        "available_balance_snapshot": str(p.available_balance_snapshot),
        "payout_method": p.payout_method,
        "status": p.status,
        "admin_notes": p.admin_notes,
        "reviewed_at": p.reviewed_at.isoformat() if p.reviewed_at else None,
        "processed_at": p.processed_at.isoformat() if p.processed_at else None,
        "transfer_reference": p.transfer_reference,
        "created_at": p.created_at.isoformat(),
    }


@api_payout_bp.post("")
@login_required
@talent_required
@limiter.limit(lambda: current_app.config.get("RATELIMIT_PAYOUT", "10 per minute"))
def request_payout():
    payload = request.get_json(silent=True) or {}
    payout = PayoutService.request_payout(
        talent_id=current_user.id,
        amount=payload.get("amount"),
        method=payload.get("payout_method", "bank_transfer"),
        destination=payload.get("payout_destination"),
    )
    return jsonify(payout_json(payout)), 201


@api_payout_bp.get("/me")
@login_required
@talent_required
def my_payouts():
    return jsonify([payout_json(p) for p in PayoutService.list_requests(talent_id=current_user.id)])


@api_payout_bp.get("")
@login_required
@admin_required
def list_payouts():
    rows = PayoutService.list_requests(
        status=request.args.get("status"),
        talent_id=request.args.get("talent_id", type=int),
    )
    return jsonify([payout_json(p) for p in rows])


@api_payout_bp.post("/<int:request_id>/decision")
@login_required
@admin_required
def decide(request_id):
    payload = request.get_json(silent=True) or {}
    payout = PayoutService.decide_payout(
        request_id,
        payload.get("decision"),
        notes=payload.get("notes"),
        admin_id=current_user.id,
    )
    return jsonify(payout_json(payout))


@api_payout_bp.post("/<int:request_id>/processed")
@login_required
@admin_required
def processed(request_id):
    payload = request.get_json(silent=True) or {}
    payout = PayoutService.mark_processed(request_id, reference=payload.get("reference"))
    return jsonify(payout_json(payout))
