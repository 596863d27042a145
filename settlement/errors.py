from flask import jsonify
from sqlalchemy.exc import IntegrityError


class AppError(Exception):
    status_code = 400
    code = "app_error"

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class InvalidAmount(AppError):
    code = "invalid_amount"


class InsufficientBalance(AppError):
    status_code = 409
    code = "insufficient_balance"

    def __init__(self, requested, available, message=None):
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            message
            or f"Requested {requested} exceeds available balance {available} (short by {self.shortfall})."
        )

    def to_dict(self):
        payload = super().to_dict()
        payload.update(
            requested=str(self.requested),
            available=str(self.available),
            shortfall=str(self.shortfall),
        )
        return payload


class PaymentNotSettled(AppError):
    status_code = 409
    code = "payment_not_settled"

    def __init__(self, booking_id, payment_status):
        self.booking_id = booking_id
        self.payment_status = payment_status
        super().__init__(f"Booking #{booking_id} cannot advance while payment is {payment_status}.")


class InvalidTransition(AppError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current, requested, message=None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Invalid status transition from {current} to {requested}.")

    def to_dict(self):
        payload = super().to_dict()
        payload.update(current=self.current, requested=self.requested)
        return payload


class BalanceUnknown(AppError):
    status_code = 503
    code = "balance_unknown"

    def __init__(self, talent_id):
        self.talent_id = talent_id
        super().__init__("Balance could not be computed. Try again later.")


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(err):
        if err.status_code >= 500:
            app.logger.error("Settlement error: %s", err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(_err):
        app.logger.warning("Database integrity error")
        return jsonify({"error": "Conflict. Resource already exists."}), 409

    @app.errorhandler(400)
    def bad_request(_err):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(401)
    def unauthorized(_err):
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(403)
    def forbidden(_err):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(429)
    def too_many_requests(_err):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(_err):
        app.logger.exception("Internal server error")
        return jsonify({"error": "Internal server error"}), 500
