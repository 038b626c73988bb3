"""
Customs duty / VAT calculator. Pure functions, no I/O.

Personal packages declared under DUTY_FREE_THRESHOLD pay VAT only; everything
else pays import duty by HS chapter plus VAT on the duty-inclusive value.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from clearance.models import PackageItem

VAT_RATE = Decimal("0.13")
DUTY_FREE_THRESHOLD = Decimal("300")  # USD
DEFAULT_DUTY_RATE = Decimal("0.15")

# First two HS digits (chapter) -> import duty rate
HS_CHAPTER_DUTY_RATES: dict[str, Decimal] = {
    "61": Decimal("0.15"),  # knitted apparel
    "62": Decimal("0.15"),  # woven apparel
    "64": Decimal("0.10"),  # footwear
    "84": Decimal("0.05"),  # machinery
    "85": Decimal("0.05"),  # electronics
    "95": Decimal("0.20"),  # toys
}

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class DutyCalculation:
    declared_value: Decimal
    is_duty_free: bool
    customs_duty: Decimal
    vat: Decimal
    total_fees: Decimal


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def duty_rate_for_hs_code(hs_code: str | None) -> Decimal:
    if not hs_code:
        return DEFAULT_DUTY_RATE
    return HS_CHAPTER_DUTY_RATES.get(hs_code.strip()[:2], DEFAULT_DUTY_RATE)


def _item_value(item: PackageItem) -> Decimal:
    if item.total_value is not None:
        return Decimal(item.total_value)
    return Decimal(item.unit_value) * item.quantity


def _weighted_duty_rate(items: list[PackageItem], items_value: Decimal) -> Decimal:
    if items_value == 0:
        return DEFAULT_DUTY_RATE
    weighted = sum((_item_value(i) * duty_rate_for_hs_code(i.hs_code) for i in items), Decimal("0"))
    return weighted / items_value


def calculate_duty(
    items: Iterable[PackageItem],
    declared_value: Decimal | float | str | None = None,
    purpose: str = "personal",
) -> DutyCalculation:
    """
    Returns duty, VAT and total fees for a package.
    declared_value defaults to the sum of item values; when given it is taxed
    at the value-weighted rate of the items. An empty item list costs nothing.
    total_fees is the sum of the already-rounded components.
    """
    items = list(items)
    if not items:
        return DutyCalculation(ZERO, True, ZERO, ZERO, ZERO)

    items_value = sum((_item_value(i) for i in items), Decimal("0"))
    value = Decimal(str(declared_value)) if declared_value is not None else items_value
    is_duty_free = purpose == "personal" and value < DUTY_FREE_THRESHOLD

    duty = ZERO if is_duty_free else _money(value * _weighted_duty_rate(items, items_value))
    vat = _money((value + duty) * VAT_RATE)
    return DutyCalculation(
        declared_value=_money(value),
        is_duty_free=is_duty_free,
        customs_duty=duty,
        vat=vat,
        total_fees=duty + vat,
    )


def format_currency(amount: Decimal | float) -> str:
    return f"${Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP):,}"
