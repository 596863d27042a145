"""Payment collaborator seam: create a charge, receive a status callback."""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod

import requests
from flask import current_app

from settlement.errors import AppError
from settlement.extensions import db
from settlement.services.booking_service import BookingService

log = logging.getLogger(__name__)

# (transaction_status, fraud_status) -> payment status; None means "leave as is".
PAID_STATUSES = {"settlement"}
FAILED_STATUSES = {"deny", "cancel", "expire", "failure"}
IGNORED_STATUSES = {"refund", "partial_refund", "chargeback", "partial_chargeback"}


def map_gateway_status(transaction_status, fraud_status=None):
    status = (transaction_status or "").strip().lower()
    fraud = (fraud_status or "").strip().lower()
    if status == "capture":
        return "paid" if fraud in ("", "accept") else "pending"
    if status in PAID_STATUSES:
        return "paid"
    if status in FAILED_STATUSES:
        return "failed"
    if status in IGNORED_STATUSES:
        return None
    return "pending"


def callback_signature(order_id, status_code, gross_amount, server_key):
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_callback_signature(payload, server_key):
    received = str(payload.get("signature_key") or "")
    if not received or not server_key:
        return False
    expected = callback_signature(
        payload.get("order_id", ""),
        payload.get("status_code", ""),
        payload.get("gross_amount", ""),
        server_key,
    )
    return hmac.compare_digest(expected, received)


class PaymentGateway(ABC):
    """What the engine needs from a payment provider."""

    @abstractmethod
    def create_charge(self, order_id, amount, customer_details) -> dict:
        """Register a charge and return at least {"reference": ...}."""
        ...


class SnapGateway(PaymentGateway):
    """Hosted-checkout gateway reached over HTTPS with the server key as basic auth."""

    def __init__(self, base_url, server_key, timeout=20):
        self.base_url = base_url.rstrip("/")
        self.server_key = server_key
        self.timeout = timeout

    def create_charge(self, order_id, amount, customer_details) -> dict:
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": int(amount)},
            "customer_details": customer_details,
        }
        resp = requests.post(
            f"{self.base_url}/transactions",
            json=payload,
            auth=(self.server_key, ""),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        log.info("Gateway create_charge order=%s status=%s", order_id, resp.status_code)
        if resp.status_code >= 400:
            log.error("Gateway error %s for order %s: %s", resp.status_code, order_id, resp.text[:500])
        resp.raise_for_status()
        data = resp.json()
        return {"reference": data.get("token"), "redirect_url": data.get("redirect_url")}


class PaymentService:
    @staticmethod
    def gateway():
        gateway = current_app.extensions.get("payment_gateway")
        if gateway is None:
            gateway = SnapGateway(
                current_app.config["GATEWAY_BASE_URL"],
                current_app.config["GATEWAY_SERVER_KEY"],
                timeout=current_app.config.get("GATEWAY_TIMEOUT", 20),
            )
            current_app.extensions["payment_gateway"] = gateway
        return gateway

    @staticmethod
    def start_checkout(booking):
        """Ask the gateway for a charge. Failures are logged; the booking stays pending."""
        transaction = booking.current_transaction()
        if not transaction or transaction.payment_status != "pending":
            raise AppError("Booking has no open charge.", 409)
        if transaction.gateway_reference:
            return {"order_id": transaction.gateway_order_id, "reference": transaction.gateway_reference}

        customer = booking.customer
        try:
            result = PaymentService.gateway().create_charge(
                transaction.gateway_order_id,
                transaction.amount,
                {"first_name": customer.full_name, "email": customer.email, "phone": customer.phone},
            )
        except requests.RequestException as exc:
            log.warning("Checkout for booking %s could not be started: %s", booking.id, exc)
            return {"order_id": transaction.gateway_order_id, "reference": None}

        transaction.gateway_reference = result.get("reference")
        db.session.commit()
        return {
            "order_id": transaction.gateway_order_id,
            "reference": transaction.gateway_reference,
            "redirect_url": result.get("redirect_url"),
        }

    @staticmethod
    def handle_callback(payload):
        order_id = payload.get("order_id")
        if not order_id:
            raise AppError("Missing order_id.", 400)
        if current_app.config.get("GATEWAY_VERIFY_SIGNATURE"):
            if not verify_callback_signature(payload, current_app.config.get("GATEWAY_SERVER_KEY")):
                log.warning("Rejected callback with bad signature for %s", order_id)
                raise AppError("Invalid signature.", 403)

        gateway_status = payload.get("transaction_status")
        payment_status = map_gateway_status(gateway_status, payload.get("fraud_status"))
        if payment_status is None:
            log.info("Callback %s for %s left to the refund collaborator", gateway_status, order_id)
            return None

        return BookingService.apply_payment_status(
            order_id,
            payment_status,
            gateway_fields={
                "gateway_transaction_id": payload.get("transaction_id"),
                "gateway_status": gateway_status,
                "gateway_payment_type": payload.get("payment_type"),
                "gateway_fraud_status": payload.get("fraud_status"),
                "gateway_payload": {k: v for k, v in payload.items() if k != "signature_key"},
            },
        )
