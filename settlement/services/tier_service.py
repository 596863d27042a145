import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from settlement.errors import NotFound
from settlement.extensions import cache, db
from settlement.models import User
from settlement.models.base import as_utc, utcnow
from settlement.services.pricing import TIERS, tier_commission_rate

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierRequirement:
    min_orders: int
    min_rating: Decimal
    min_months: int


# Evaluated highest tier first.
TIER_REQUIREMENTS = {
    "top": TierRequirement(min_orders=100, min_rating=Decimal("4.5"), min_months=6),
    "elite": TierRequirement(min_orders=30, min_rating=Decimal("4.5"), min_months=0),
    "entry": TierRequirement(min_orders=0, min_rating=Decimal("0"), min_months=0),
}
TIER_RANK = {tier: rank for rank, tier in enumerate(TIERS)}


def _meets(requirement, completed_orders, average_rating, account_age_months):
    return (
        completed_orders >= requirement.min_orders
        and average_rating >= requirement.min_rating
        and account_age_months >= requirement.min_months
    )


def classify_tier(completed_orders, average_rating, account_age_months):
    """Pure: cumulative stats in, tier out."""
    rating = Decimal(str(average_rating or 0))
    orders = int(completed_orders or 0)
    months = int(account_age_months or 0)
    for tier in ("top", "elite"):
        if _meets(TIER_REQUIREMENTS[tier], orders, rating, months):
            return tier
    return "entry"


def account_age_months(created_at, now=None):
    """Whole 30-day periods since the account was created."""
    if created_at is None:
        return 0
    now = now or utcnow()
    days = (as_utc(now) - as_utc(created_at)).days
    return max(days, 0) // 30


def next_tier(tier):
    rank = TIER_RANK[tier]
    if rank + 1 < len(TIERS):
        return TIERS[rank + 1]
    return None


class TierService:
    @staticmethod
    def _get_talent(talent_id):
        talent = db.session.get(User, talent_id)
        if not talent or not talent.is_talent:
            raise NotFound("Talent not found.")
        return talent

    @staticmethod
    def classify(talent, now=None):
        return classify_tier(
            talent.completed_orders,
            talent.average_rating,
            account_age_months(talent.created_at, now),
        )

    @staticmethod
    def progress(talent, now=None):
        months = account_age_months(talent.created_at, now)
        orders = int(talent.completed_orders or 0)
        rating = Decimal(str(talent.average_rating or 0))
        current = talent.talent_tier or "entry"
        upcoming = next_tier(current)

        result = {
            "current_tier": current,
            "computed_tier": classify_tier(orders, rating, months),
            "commission_rate": str(tier_commission_rate(current)),
            "completed_orders": orders,
            "average_rating": str(rating),
            "account_age_months": months,
            "next_tier": upcoming,
            "can_upgrade": False,
        }
        if upcoming:
            requirement = TIER_REQUIREMENTS[upcoming]
            orders_to_next = max(0, requirement.min_orders - orders)
            rating_to_next = max(Decimal("0"), requirement.min_rating - rating)
            months_to_next = max(0, requirement.min_months - months)
            result.update(
                orders_to_next=orders_to_next,
                rating_to_next=str(rating_to_next),
                months_to_next=months_to_next,
                next_commission_rate=str(tier_commission_rate(upcoming)),
                can_upgrade=not orders_to_next and not rating_to_next and not months_to_next,
            )
        return result

    @staticmethod
    def recalculate(talent_id, now=None, commit=True):
        """Re-derive and persist the tier. Returns (updated, old_tier, new_tier)."""
        talent = TierService._get_talent(talent_id)
        old_tier = talent.talent_tier or "entry"
        computed = TierService.classify(talent, now)

        is_downgrade = TIER_RANK[computed] < TIER_RANK[old_tier]
        if computed == old_tier or (is_downgrade and not current_app.config.get("TIER_ALLOW_DOWNGRADE")):
            return False, old_tier, old_tier

        talent.talent_tier = computed
        talent.tier_updated_at = utcnow()
        if commit:
            db.session.commit()
            cache.delete_memoized(TierService.tier_stats)
        log.info("Talent %s tier changed from %s to %s", talent_id, old_tier, computed)
        return True, old_tier, computed

    @staticmethod
    def recalculate_all(now=None):
        counts = {"checked": 0, "updated": 0, "errors": 0}
        talent_ids = [row.id for row in db.session.query(User.id).filter(User.role == "talent").all()]
        for talent_id in talent_ids:
            counts["checked"] += 1
            try:
                updated, _old, _new = TierService.recalculate(talent_id, now=now)
            except Exception:
                db.session.rollback()
                log.exception("Tier recalculation failed for talent %s", talent_id)
                counts["errors"] += 1
                continue
            if updated:
                counts["updated"] += 1
        return counts

    @staticmethod
    @cache.memoize(timeout=300)
    def tier_stats():
        rows = (
            db.session.query(User.talent_tier, func.count(User.id))
            .filter(User.role == "talent")
            .group_by(User.talent_tier)
            .all()
        )
        stats = {tier: 0 for tier in TIERS}
        for tier, count in rows:
            stats[tier] = stats.get(tier, 0) + int(count)
        stats["total"] = sum(stats[tier] for tier in TIERS)
        return stats
