"""
Shared data models for TELx epoch reward scoring.

These models describe the records returned by the indexer (positions,
checkpoints, subscriptions) and the reward tables produced by the
scoring engine. Big integers from the subgraph arrive as strings and are
coerced to Python ints, so no reward-affecting value ever passes through
a float.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Classification(str, Enum):
    """LP behaviour label for a position."""
    PASSIVE = "Passive"
    ACTIVE = "Active"
    JIT = "JIT"


class Confidence(str, Enum):
    """How trustworthy a resolved fee growth value is."""
    HIGH = "high"
    LOW = "low"


def _to_int(value):
    if value is None or isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip()
        if value.lower().startswith(("0x", "-0x")):
            return int(value, 16)
        return int(value)
    raise ValueError(f"Expected an integer or integer string, got {type(value).__name__}")


class Checkpoint(BaseModel):
    """Fee growth snapshot for one position, taken at a fee-accrual event."""
    model_config = ConfigDict(frozen=True)

    block_number: int = Field(..., ge=0, description="Block the checkpoint was taken at")
    timestamp: int = Field(0, ge=0, description="Block timestamp (seconds)")
    fee_growth_inside0_x128: int = Field(
        ..., description="Cumulative fee growth per liquidity, token0 (Q128.128, signed)"
    )
    fee_growth_inside1_x128: int = Field(
        ..., description="Cumulative fee growth per liquidity, token1 (Q128.128, signed)"
    )
    liquidity: int = Field(0, ge=0, description="Position liquidity when the checkpoint was taken")

    @field_validator(
        "block_number", "timestamp", "fee_growth_inside0_x128",
        "fee_growth_inside1_x128", "liquidity", mode="before",
    )
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)


class Subscription(BaseModel):
    """
    Binding of a wallet to a position over the half-open block interval
    [subscribed_at_block, unsubscribed_at_block).
    """
    wallet: str = Field(..., description="Subscribed wallet address")
    subscribed_at_block: int = Field(..., ge=0)
    unsubscribed_at_block: Optional[int] = Field(
        None, description="First block the subscription is no longer active (absent while active)"
    )
    is_active: bool = Field(True)

    @field_validator("subscribed_at_block", "unsubscribed_at_block", mode="before")
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)

    @field_validator("wallet")
    @classmethod
    def normalize_wallet(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="after")
    def validate_interval(self) -> "Subscription":
        """Ensure the interval is not empty or inverted."""
        if (
            self.unsubscribed_at_block is not None
            and self.unsubscribed_at_block <= self.subscribed_at_block
        ):
            raise ValueError("unsubscribed_at_block must be greater than subscribed_at_block")
        return self

    def overlaps(self, start_block: int, end_block: int) -> bool:
        """Whether the interval overlaps the closed block range [start_block, end_block]."""
        if self.subscribed_at_block > end_block:
            return False
        return self.unsubscribed_at_block is None or self.unsubscribed_at_block > start_block

    def is_active_at(self, block_number: int) -> bool:
        if self.subscribed_at_block > block_number:
            return False
        return self.unsubscribed_at_block is None or self.unsubscribed_at_block > block_number


class LiquidityModification(BaseModel):
    """A liquidity-changing update observed for a position."""
    model_config = ConfigDict(frozen=True)

    block_number: int = Field(..., ge=0)
    new_liquidity: int = Field(..., ge=0)
    liquidity_changed: bool = Field(True, description="False for metadata-only updates")

    @field_validator("block_number", "new_liquidity", mode="before")
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)


class Position(BaseModel):
    """A concentrated-liquidity position NFT as reported by the indexer."""
    id: str = Field(..., description="Position token id")
    pool: str = Field("", description="Pool id (bytes32 hex)")
    owner: str = Field(..., description="Current NFT owner")
    tick_lower: int = Field(0)
    tick_upper: int = Field(0)
    liquidity: int = Field(0, ge=0)
    created_at_block: int = Field(0, ge=0)
    updated_at_block: int = Field(0, ge=0)
    modification_count: int = Field(0, ge=0)
    classification: Classification = Field(Classification.PASSIVE)
    fee_growth_inside_period0: Optional[int] = Field(
        None, description="Period-scoped fee growth, token0 (fallback when no checkpoints)"
    )
    fee_growth_inside_period1: Optional[int] = Field(
        None, description="Period-scoped fee growth, token1 (fallback when no checkpoints)"
    )
    subscriptions: List[Subscription] = Field(default_factory=list)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    modifications: List[LiquidityModification] = Field(
        default_factory=list,
        description="Ordered modification history; when present the label is re-derived from it",
    )
    warnings: List[str] = Field(
        default_factory=list,
        description="Parts of the indexer record that were skipped while mapping it",
    )

    @field_validator(
        "tick_lower", "tick_upper", "liquidity", "created_at_block", "updated_at_block",
        "fee_growth_inside_period0", "fee_growth_inside_period1", mode="before",
    )
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)

    @field_validator("owner")
    @classmethod
    def normalize_owner(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="after")
    def validate_blocks(self) -> "Position":
        """Ensure created_at_block <= updated_at_block."""
        if self.created_at_block > self.updated_at_block:
            raise ValueError("created_at_block must not be after updated_at_block")
        return self

    @property
    def has_period_fields(self) -> bool:
        return (
            self.fee_growth_inside_period0 is not None
            or self.fee_growth_inside_period1 is not None
        )


class Epoch(BaseModel):
    """Closed block interval plus the reward budget distributed over it."""
    model_config = ConfigDict(frozen=True)

    start_block: int = Field(..., ge=0)
    end_block: int = Field(..., ge=0)
    total_reward: int = Field(..., ge=0, description="Budget in the smallest reward unit")

    @field_validator("start_block", "end_block", "total_reward", mode="before")
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)

    @model_validator(mode="after")
    def validate_range(self) -> "Epoch":
        if self.start_block > self.end_block:
            raise ValueError("start_block must not be after end_block")
        return self


class PriceInputs(BaseModel):
    """Token prices in common-denominator units per 10^18 of token."""
    model_config = ConfigDict(frozen=True)

    token0_price: int = Field(..., ge=0)
    token1_price: int = Field(..., ge=0)

    @field_validator("token0_price", "token1_price", mode="before")
    @classmethod
    def coerce_int(cls, value):
        return _to_int(value)


class PositionScore(BaseModel):
    """Audit row: how one position was scored in an evaluation."""
    position_id: str
    wallet: str
    classification: Classification
    weight: int
    eligible: bool
    reason: str
    fee_source: str
    confidence: Confidence
    fee_growth0: int = 0
    fee_growth1: int = 0
    liquidity: int = 0
    amount0: int = 0
    amount1: int = 0
    common_amount: int = 0
    weighted_score: int = 0
    warnings: List[str] = Field(default_factory=list)


class WalletReward(BaseModel):
    """A wallet's aggregated score and resulting reward for one epoch."""
    address: str
    reward: int
    raw_score: int
    weighted_score: int
    position_count: int = 0
    eligible_position_count: int = 0


class EpochResult(BaseModel):
    """Reward table for one epoch evaluation."""
    pool_id: str
    start_block: int
    end_block: int
    per_wallet: List[WalletReward] = Field(default_factory=list)
    positions: List[PositionScore] = Field(default_factory=list)
    total_score: int = 0
    total_budget: int = 0
    total_distributed: int = 0
    undistributed: int = Field(0, description="Budget left undistributed by floor rounding")
    approximate: bool = Field(
        False, description="True when fees were summed without prices (degraded preview only)"
    )
    total_positions: int = 0
    subscribed_count: int = 0
    eligible_count: int = 0
    ineligible_count: int = 0
    passive_count: int = 0
    active_count: int = 0
    jit_count: int = 0
    warnings: List[str] = Field(default_factory=list)


class LiveWalletShare(BaseModel):
    address: str
    reward: int
    reward_share: float = Field(..., ge=0.0, le=1.0, description="Share of rewards distributed so far")


class LiveSnapshot(BaseModel):
    """Provisional reward table computed as if the epoch ended now."""
    result: EpochResult
    shares: List[LiveWalletShare] = Field(default_factory=list)
    provisional: bool = True
