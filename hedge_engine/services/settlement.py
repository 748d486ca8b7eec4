# hedge_engine/services/settlement.py

from typing import Any

from ..domain.models import OptionType, PolicyState, SettlementResult, parse_option_type
from ..utils.fixed_point import ensure_scaled, mul_down


def intrinsic_value(option_type: OptionType, protected_value: int, price: int) -> int:
    """
    In-the-money amount per unit of protection at `price`:
      PUT  -> max(0, strike - price)
      CALL -> max(0, price - strike)
    """
    if option_type is OptionType.PUT:
        return max(0, protected_value - price)
    return max(0, price - protected_value)


def calculate_settlement(
    option_type: Any,
    protected_value: int,
    protection_amount: int,
    expiration_price: int,
) -> SettlementResult:
    """
    Payout owed at expiration, in the same ScaledAmount convention as the inputs:
      payout = floor(intrinsic * protection_amount / SCALE)

    Out-of-the-money and at-the-money policies pay 0 and settle as Expired.
    """
    ot = parse_option_type(option_type)
    strike = ensure_scaled("protected_value", protected_value)
    notional = ensure_scaled("protection_amount", protection_amount)
    price = ensure_scaled("expiration_price", expiration_price)

    intrinsic = intrinsic_value(ot, strike, price)
    payout = mul_down(intrinsic, notional)

    return SettlementResult(
        payout=payout,
        expiration_price=price,
        intrinsic=intrinsic,
        outcome=PolicyState.EXERCISED if payout > 0 else PolicyState.EXPIRED,
    )
