# FILE: /academy/apps/payments/pricing.py
"""
Revenue split calculation.

All money is integer minor units (cents, piasters, fils). ROUND_HALF_UP is
applied exactly once per step, so the platform and instructor shares always
add back up to the charge amount.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from django.conf import settings
from django.utils import timezone

from academy.core.exceptions import CouponInvalid

# Currencies whose minor unit is 1/1000 instead of 1/100
THREE_DECIMAL_CURRENCIES = frozenset({'KWD', 'BHD', 'OMR'})


@dataclass(frozen=True)
class SplitConfig:
    platform_fee_percent: Decimal

    @classmethod
    def from_settings(cls):
        fee = settings.PAYMENTS.get('PLATFORM_FEE_PERCENT', 20)
        return cls(platform_fee_percent=Decimal(str(fee)))


@dataclass(frozen=True)
class SplitQuote:
    gross: int
    discount_amount: int
    charge_amount: int
    platform_share: int
    instructor_share: int

    def as_dict(self):
        return {
            'gross': self.gross,
            'discount_amount': self.discount_amount,
            'charge_amount': self.charge_amount,
            'platform_share': self.platform_share,
            'instructor_share': self.instructor_share,
        }


def round_half_up(value) -> int:
    return int(Decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def minor_unit_exponent(currency: str) -> int:
    return 3 if (currency or '').upper() in THREE_DECIMAL_CURRENCIES else 2


def to_major_units(amount: int, currency: str) -> str:
    """Render minor units as a major-unit string, e.g. 1999 USD -> '19.99'."""
    exponent = minor_unit_exponent(currency)
    value = Decimal(int(amount)).scaleb(-exponent)
    return str(value.quantize(Decimal(1).scaleb(-exponent)))


def to_minor_units(value, currency: str) -> int:
    """Parse a major-unit amount into minor units, e.g. '1.500' KWD -> 1500."""
    exponent = minor_unit_exponent(currency)
    return round_half_up(Decimal(str(value)).scaleb(exponent))


def validate_coupon(coupon, gross: int, course_id=None, now=None):
    """
    Raise CouponInvalid if the coupon cannot be applied to this purchase.
    Checks run in a fixed order so the first failing rule names the reason.
    """
    now = now or timezone.now()

    if not coupon.is_active or (coupon.start_date and now < coupon.start_date):
        raise CouponInvalid('inactive')
    if coupon.expiry_date and now > coupon.expiry_date:
        raise CouponInvalid('expired')
    if not coupon.has_uses_left:
        raise CouponInvalid('exhausted')
    if coupon.min_purchase is not None and gross < coupon.min_purchase:
        raise CouponInvalid('below_minimum')
    if coupon.course_id is not None and course_id is not None and str(coupon.course_id) != str(course_id):
        raise CouponInvalid('scope_mismatch')


def compute_discount(coupon, gross: int) -> int:
    if coupon is None:
        return 0
    value = Decimal(coupon.discount_value)
    if coupon.discount_type == coupon.DiscountType.PERCENTAGE:
        discount = round_half_up(Decimal(gross) * value / Decimal(100))
        if coupon.max_discount is not None:
            discount = min(discount, coupon.max_discount)
    else:
        discount = round_half_up(value)
    return max(0, min(discount, gross))


def calculate_split(gross: int, config: SplitConfig, coupon=None, course_id=None, now=None) -> SplitQuote:
    """
    Quote a purchase: validate the coupon, apply its discount and split the
    remaining charge between platform and instructor. Pure; touches no rows.
    """
    if gross < 0:
        raise ValueError("Gross amount cannot be negative")

    if coupon is not None:
        validate_coupon(coupon, gross, course_id=course_id, now=now)

    discount = compute_discount(coupon, gross)
    charge = max(0, gross - discount)
    platform = round_half_up(Decimal(charge) * Decimal(config.platform_fee_percent) / Decimal(100))
    platform = min(platform, charge)

    return SplitQuote(
        gross=gross,
        discount_amount=discount,
        charge_amount=charge,
        platform_share=platform,
        instructor_share=charge - platform,
    )


def quote_for_course(course, coupon=None, config: Optional[SplitConfig] = None, now=None) -> SplitQuote:
    return calculate_split(
        course.effective_price,
        config or SplitConfig.from_settings(),
        coupon=coupon,
        course_id=course.id,
        now=now,
    )
