from flask import Blueprint

from settlement.routes.api.v1.bookings import api_booking_bp
from settlement.routes.api.v1.payments import api_payment_bp
from settlement.routes.api.v1.payouts import api_payout_bp
from settlement.routes.api.v1.talents import api_finance_bp, api_talent_bp

api_v1_bp = Blueprint("api_v1", __name__)
api_v1_bp.register_blueprint(api_booking_bp, url_prefix="/bookings")
api_v1_bp.register_blueprint(api_payment_bp, url_prefix="/payments")
api_v1_bp.register_blueprint(api_payout_bp, url_prefix="/payouts")
api_v1_bp.register_blueprint(api_talent_bp, url_prefix="/talents")
api_v1_bp.register_blueprint(api_finance_bp, url_prefix="/finance")
