from typing import Tuple


class FixedPointMath:
    """
    Int-only fixed point helpers for fee growth accounting (Q128.128).

    Python ints are arbitrary precision, so the bounds below are checked
    explicitly to keep values inside the ranges the registry contract uses.
    """

    Q96 = 1 << 96
    Q128 = 1 << 128
    Q192 = Q96 * Q96
    WAD = 10 ** 18
    PERCENT = 100

    INT256_MIN = -(1 << 255)
    INT256_MAX = (1 << 255) - 1
    UINT256_MAX = (1 << 256) - 1

    @staticmethod
    def is_int256(value: int) -> bool:
        return FixedPointMath.INT256_MIN <= value <= FixedPointMath.INT256_MAX

    @staticmethod
    def is_uint256(value: int) -> bool:
        return 0 <= value <= FixedPointMath.UINT256_MAX

    @staticmethod
    def div_trunc(numerator: int, denominator: int) -> int:
        """
        Integer division rounding toward zero (Solidity / BigInt semantics).

        Python's `//` floors, which differs for negative numerators.
        """
        if denominator == 0:
            raise ZeroDivisionError("division by zero")
        quotient = abs(numerator) // abs(denominator)
        if (numerator < 0) != (denominator < 0):
            return -quotient
        return quotient

    @staticmethod
    def mul_div(a: int, b: int, denominator: int) -> int:
        """
        floor(a * b / denominator) for non-negative operands.

        The product is formed first so no precision is lost to an
        intermediate division.
        """
        if a < 0 or b < 0 or denominator <= 0:
            raise ValueError("mul_div expects non-negative operands and a positive denominator")
        return (a * b) // denominator

    @staticmethod
    def clamp_non_negative(value: int) -> int:
        return value if value > 0 else 0

    # -----------------------------
    # Fee growth conversions
    # -----------------------------

    @staticmethod
    def fee_growth_to_amount(fee_growth_x128: int, liquidity: int) -> int:
        """
        Convert a Q128.128 fee growth value to a token amount.

        amount = (feeGrowth * liquidity) / 2^128, truncated toward zero.
        """
        if liquidity == 0:
            return 0
        return FixedPointMath.div_trunc(fee_growth_x128 * liquidity, FixedPointMath.Q128)

    @staticmethod
    def fee_amounts(
        fee_growth0_x128: int,
        fee_growth1_x128: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """Returns (amount0, amount1) earned by `liquidity` over the given fee growth."""
        return (
            FixedPointMath.fee_growth_to_amount(fee_growth0_x128, liquidity),
            FixedPointMath.fee_growth_to_amount(fee_growth1_x128, liquidity),
        )

    # -----------------------------
    # Price helpers
    # -----------------------------

    @staticmethod
    def price_from_sqrt_price_x96(sqrt_price_x96: int) -> int:
        """
        Convert sqrtPriceX96 to a WAD-scaled price (token1 per token0).

        price = (sqrtPriceX96 / 2^96)^2, computed as
        sqrtPriceX96^2 * 10^18 / 2^192 so the division happens last.
        """
        if sqrt_price_x96 < 0:
            raise ValueError("sqrt_price_x96 must be non-negative")
        return (sqrt_price_x96 * sqrt_price_x96 * FixedPointMath.WAD) // FixedPointMath.Q192
