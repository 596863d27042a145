from flask import Blueprint, current_app, jsonify, request

from settlement.extensions import limiter
from settlement.services import PaymentService

api_payment_bp = Blueprint("api_payment", __name__)


@api_payment_bp.post("/callback")
@limiter.limit("120 per minute")
def gateway_callback():
    payload = request.get_json(silent=True) or {}
    current_app.logger.info(
        "Gateway callback order=%s status=%s", payload.get("order_id"), payload.get("transaction_status")
    )
    transaction = PaymentService.handle_callback(payload)
    if transaction is None:
        return jsonify({"ok": True, "ignored": True})
    return jsonify(
        {
            "ok": True,
            "order_id": transaction.gateway_order_id,
            "payment_status": transaction.payment_status,
        }
    )
