"""Booking price breakdown and the service catalog.

Every amount is a whole currency unit. Each derived amount is rounded half-up on its
own; platform revenue is then taken as the remainder so that

    customer_charge == talent_earnings + platform_revenue

holds exactly for every breakdown.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from settlement.errors import AppError, InvalidAmount

APP_FEE_RATE = Decimal("0.10")

TIERS = ("entry", "elite", "top")
COMMISSION_RATES = {
    "entry": Decimal("0.20"),
    "elite": Decimal("0.18"),
    "top": Decimal("0.15"),
}

SERVICE_PRICING = {
    "chat": (Decimal("25000"), "day"),
    "voice_call": (Decimal("40000"), "hour"),
    "video_call": (Decimal("65000"), "hour"),
    "extended_companionship": (Decimal("85000"), "day"),
    "offline_date": (Decimal("285000"), "3 hours"),
    "party_companion": (Decimal("1000000"), "event"),
}

_WHOLE = Decimal("1")


@dataclass(frozen=True)
class Breakdown:
    base_price: Decimal
    tier: str
    app_fee: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    talent_earnings: Decimal
    customer_charge: Decimal
    platform_revenue: Decimal

    def as_dict(self):
        return {
            "base_price": str(self.base_price),
            "tier": self.tier,
            "app_fee": str(self.app_fee),
            "commission_rate": str(self.commission_rate),
            "commission_amount": str(self.commission_amount),
            "talent_earnings": str(self.talent_earnings),
            "customer_charge": str(self.customer_charge),
            "platform_revenue": str(self.platform_revenue),
        }


def round_amount(value):
    return Decimal(value).quantize(_WHOLE, rounding=ROUND_HALF_UP)


def to_amount(value, label="Amount"):
    """Parse user or caller input into a positive whole-unit Decimal."""
    if isinstance(value, bool):
        raise InvalidAmount(f"{label} must be a number.")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f"{label} must be a number.") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(f"{label} must be greater than zero.")
    amount = round_amount(amount)
    if amount <= 0:
        raise InvalidAmount(f"{label} must be at least one whole unit.")
    return amount


def tier_commission_rate(tier):
    try:
        return COMMISSION_RATES[tier]
    except KeyError as exc:
        raise AppError(f"Unknown talent tier: {tier}.", 400) from exc


def compute_breakdown(base_price, tier) -> Breakdown:
    base = to_amount(base_price, "Base price")
    commission_rate = tier_commission_rate(tier)

    app_fee = round_amount(base * APP_FEE_RATE)
    commission_amount = round_amount(base * commission_rate)
    talent_earnings = base - commission_amount
    customer_charge = base + app_fee
    platform_revenue = customer_charge - talent_earnings

    return Breakdown(
        base_price=base,
        tier=tier,
        app_fee=app_fee,
        commission_rate=commission_rate,
        commission_amount=commission_amount,
        talent_earnings=talent_earnings,
        customer_charge=customer_charge,
        platform_revenue=platform_revenue,
    )


def service_base_price(service_type, duration=1, duration_unit=None) -> Decimal:
    pricing = SERVICE_PRICING.get(service_type)
    if not pricing:
        raise AppError(f"Unknown service type: {service_type}.", 400)
    try:
        duration = int(duration)
    except (TypeError, ValueError) as exc:
        raise AppError("Duration must be a positive integer.", 400) from exc
    if duration <= 0:
        raise AppError("Duration must be a positive integer.", 400)

    unit_price, _unit = pricing
    multiplier = duration
    if service_type == "offline_date" and duration_unit == "hours":
        # Priced per 3-hour block.
        multiplier = math.ceil(duration / 3)
    elif service_type == "extended_companionship":
        if duration_unit == "weeks":
            multiplier = duration * 7
        elif duration_unit == "months":
            multiplier = duration * 30
    return unit_price * multiplier


@dataclass(frozen=True)
class ServiceLine:
    service_type: str
    duration: int
    duration_unit: str | None
    unit_price: Decimal
    subtotal: Decimal

    def as_dict(self):
        return {
            "service_type": self.service_type,
            "duration": self.duration,
            "duration_unit": self.duration_unit,
            "unit_price": str(self.unit_price),
            "subtotal": str(self.subtotal),
        }


def price_selection(selections):
    """Price each requested service from the catalog. The booking's base price is the sum."""
    if not selections or not isinstance(selections, (list, tuple)):
        raise AppError("Select at least one service.", 400)
    lines = []
    for selection in selections:
        if not isinstance(selection, dict):
            raise AppError("Each service selection must be an object.", 400)
        service_type = selection.get("service_type")
        duration = selection.get("duration", 1)
        duration_unit = selection.get("duration_unit")
        subtotal = service_base_price(service_type, duration, duration_unit)
        lines.append(
            ServiceLine(
                service_type=service_type,
                duration=int(duration),
                duration_unit=duration_unit,
                unit_price=SERVICE_PRICING[service_type][0],
                subtotal=subtotal,
            )
        )
    return lines


def selection_total(lines):
    return sum((line.subtotal for line in lines), Decimal("0"))
