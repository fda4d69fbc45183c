"""Refund, charge and compensation amounts.

Prices are integers in minor currency units. Rates are Decimals, products are
computed exactly and each final amount is rounded once, half-up, to a whole
minor unit.
"""

from decimal import Decimal, ROUND_HALF_UP

from pydantic import BaseModel

from carematch.core.config import LifecyclePolicy, load_policy

MINOR_UNITS_PER_MAJOR = 100


class FinancialOutcome(BaseModel):
    refund_amount: int = 0
    compensation_amount: int = 0
    family_charge_amount: int = 0
    provider_payout_amount: int = 0
    platform_fee_rate: Decimal


def round_minor_units(amount: Decimal) -> int:
    return int(amount.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def to_major_units(amount: int) -> Decimal:
    """Display-only conversion, e.g. 4400 -> Decimal('44.00')."""
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(Decimal('0.01'))


def _validate_price(price: int) -> None:
    if isinstance(price, bool) or not isinstance(price, int):
        raise TypeError('price must be an integer amount of minor units')
    if price < 0:
        raise ValueError('price must not be negative')


def cancellation_outcome(price: int, policy: LifecyclePolicy | None = None) -> FinancialOutcome:
    policy = policy or load_policy()
    _validate_price(price)
    return FinancialOutcome(refund_amount=price, platform_fee_rate=policy.platform_fee_rate)


def no_show_outcome(price: int, policy: LifecyclePolicy | None = None) -> FinancialOutcome:
    policy = policy or load_policy()
    _validate_price(price)
    charged_share = Decimal(price) * policy.no_show_family_charge_ratio
    compensation = charged_share * (Decimal('1') - policy.platform_fee_rate)
    return FinancialOutcome(
        family_charge_amount=round_minor_units(charged_share),
        compensation_amount=round_minor_units(compensation),
        platform_fee_rate=policy.platform_fee_rate,
    )


def completion_outcome(price: int, policy: LifecyclePolicy | None = None) -> FinancialOutcome:
    policy = policy or load_policy()
    _validate_price(price)
    payout = Decimal(price) * (Decimal('1') - policy.platform_fee_rate)
    return FinancialOutcome(
        family_charge_amount=price,
        provider_payout_amount=round_minor_units(payout),
        platform_fee_rate=policy.platform_fee_rate,
    )
