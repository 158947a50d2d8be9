"""
Fee normalization to a common reward denominator.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from protocol import PriceInputs
from rewards.utils.math import FixedPointMath

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedFees:
    amount0: int
    amount1: int
    common_amount: int
    approximate: bool


class PriceNormalizer:
    """
    Converts a pair of fee growth deltas into one common-denominator amount.

    With prices:    (amount0 * price0 + amount1 * price1) / 10^18
    Without prices: amount0 + amount1, flagged approximate. Only meaningful
    when both tokens share a unit value; never use it for a final
    distribution.
    """

    def __init__(self, prices: Optional[PriceInputs] = None):
        self.prices = prices

    @property
    def approximate(self) -> bool:
        return self.prices is None

    def normalize(self, fee_growth0: int, fee_growth1: int, liquidity: int) -> NormalizedFees:
        """
        Args:
            fee_growth0: Fee growth delta for token0 (Q128.128)
            fee_growth1: Fee growth delta for token1 (Q128.128)
            liquidity: Position liquidity the fee growth applies to

        Returns:
            NormalizedFees with token amounts and the common amount
        """
        if liquidity < 0:
            raise ValueError("liquidity must be non-negative")

        amount0, amount1 = FixedPointMath.fee_amounts(fee_growth0, fee_growth1, liquidity)

        if self.prices is None:
            return NormalizedFees(
                amount0=amount0,
                amount1=amount1,
                common_amount=amount0 + amount1,
                approximate=True,
            )

        common_amount = FixedPointMath.div_trunc(
            amount0 * self.prices.token0_price + amount1 * self.prices.token1_price,
            FixedPointMath.WAD,
        )
        return NormalizedFees(
            amount0=amount0,
            amount1=amount1,
            common_amount=common_amount,
            approximate=False,
        )
