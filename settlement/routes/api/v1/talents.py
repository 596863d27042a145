from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from settlement.decorators import admin_required, talent_required
from settlement.services import LedgerService, TierService

api_talent_bp = Blueprint("api_talent", __name__)
api_finance_bp = Blueprint("api_finance", __name__)


@api_talent_bp.get("/me/tier")
@login_required
@talent_required
def my_tier():
    return jsonify(TierService.progress(current_user))


@api_talent_bp.get("/me/earnings")
@login_required
@talent_required
def my_earnings():
    return jsonify(LedgerService.earnings_summary(current_user.id))


@api_talent_bp.post("/<int:talent_id>/tier/recalculate")
@login_required
@admin_required
def recalculate_tier(talent_id):
    updated, old_tier, new_tier = TierService.recalculate(talent_id)
    return jsonify({"talent_id": talent_id, "updated": updated, "old_tier": old_tier, "new_tier": new_tier})


@api_talent_bp.get("/tiers/stats")
@login_required
@admin_required
def tier_stats():
    return jsonify(TierService.tier_stats())


@api_finance_bp.get("/summary")
@login_required
@admin_required
def finance_summary():
    return jsonify(LedgerService.platform_summary())


@api_finance_bp.get("/talents")
@login_required
@admin_required
def talent_earnings():
    return jsonify(LedgerService.all_talent_earnings())
