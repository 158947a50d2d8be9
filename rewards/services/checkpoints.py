"""
Epoch fee growth resolution from sparse checkpoints.

Checkpoints hold cumulative fee growth since position creation, so the
fees earned inside an epoch are the difference between the checkpoint in
force at the epoch end and the one in force at the epoch start. When the
checkpoints cannot answer the question, the result says so explicitly
through its variant and confidence instead of silently substituting.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from protocol import Checkpoint, Confidence, Position
from rewards.exceptions import MalformedHistoryError
from rewards.utils.math import FixedPointMath

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckpointDelta:
    """Fee growth taken from checkpoints.

    baseline is "checkpoint" when a start checkpoint was found and "zero"
    when the position was created inside the epoch.
    """
    fee_growth0: int
    fee_growth1: int
    liquidity: int
    baseline: str = "checkpoint"
    warnings: Tuple[str, ...] = ()
    source: str = "checkpoints"
    confidence: Confidence = Confidence.HIGH


@dataclass(frozen=True)
class PeriodField:
    """Fee growth taken from the indexer's period-scoped fields."""
    fee_growth0: int
    fee_growth1: int
    liquidity: int
    warnings: Tuple[str, ...] = ()
    source: str = "period_field"
    confidence: Confidence = Confidence.LOW


@dataclass(frozen=True)
class Unavailable:
    """No fee growth information for the epoch; treated as zero."""
    liquidity: int
    warnings: Tuple[str, ...] = ()
    fee_growth0: int = 0
    fee_growth1: int = 0
    source: str = "unavailable"
    confidence: Confidence = Confidence.LOW


FeeGrowthSource = Union[CheckpointDelta, PeriodField, Unavailable]


def _check_range(position_id: str, checkpoint: Checkpoint) -> None:
    for value in (checkpoint.fee_growth_inside0_x128, checkpoint.fee_growth_inside1_x128):
        if not FixedPointMath.is_int256(value):
            raise MalformedHistoryError(
                f"Checkpoint at block {checkpoint.block_number} holds fee growth "
                f"outside the int256 range",
                position_id=position_id,
            )


def _ordered(position: Position, warnings: List[str]) -> List[Checkpoint]:
    checkpoints = position.checkpoints
    blocks = [c.block_number for c in checkpoints]
    if any(later < earlier for earlier, later in zip(blocks, blocks[1:])):
        warnings.append("non-monotonic checkpoints: re-sorted by block number")
        logger.warning(f"Position {position.id}: checkpoints not ordered by block, re-sorting")
        # Stable sort keeps input order for checkpoints sharing a block
        checkpoints = sorted(checkpoints, key=lambda c: c.block_number)
    return checkpoints


def _latest_at_or_before(checkpoints: List[Checkpoint], block_number: int) -> Optional[Checkpoint]:
    for checkpoint in reversed(checkpoints):
        if checkpoint.block_number <= block_number:
            return checkpoint
    return None


def _clamp(position_id: str, label: str, value: int, warnings: List[str]) -> int:
    if value < 0:
        warnings.append(f"negative {label} ({value}) clamped to zero")
        logger.warning(f"Position {position_id}: negative {label} {value} clamped to zero")
        return 0
    return value


def resolve_epoch_fee_growth(
    position: Position,
    start_block: int,
    end_block: int,
) -> FeeGrowthSource:
    """
    Resolve the fee growth a position accrued within [start_block, end_block].

    1. Start checkpoint: greatest block <= start_block
    2. End checkpoint: greatest block <= end_block
    3. Both found: end - start per token, negatives clamped to zero
    4. Only end found: end values as-is (position created inside the epoch)
    5. Neither: period-scoped fields if present, else zero (low confidence)

    Args:
        position: Position with its checkpoint list
        start_block: Epoch start (inclusive)
        end_block: Epoch end (inclusive)

    Returns:
        One of CheckpointDelta, PeriodField or Unavailable

    Raises:
        MalformedHistoryError: If a checkpoint value is outside the int256 range
    """
    if start_block > end_block:
        raise ValueError(f"start_block {start_block} is after end_block {end_block}")

    warnings: List[str] = []
    checkpoints = _ordered(position, warnings)

    start_checkpoint = _latest_at_or_before(checkpoints, start_block)
    end_checkpoint = _latest_at_or_before(checkpoints, end_block)

    if end_checkpoint is not None:
        _check_range(position.id, end_checkpoint)
        liquidity = end_checkpoint.liquidity

        if start_checkpoint is not None:
            _check_range(position.id, start_checkpoint)
            delta0 = end_checkpoint.fee_growth_inside0_x128 - start_checkpoint.fee_growth_inside0_x128
            delta1 = end_checkpoint.fee_growth_inside1_x128 - start_checkpoint.fee_growth_inside1_x128
            return CheckpointDelta(
                fee_growth0=_clamp(position.id, "fee growth delta token0", delta0, warnings),
                fee_growth1=_clamp(position.id, "fee growth delta token1", delta1, warnings),
                liquidity=liquidity,
                baseline="checkpoint",
                warnings=tuple(warnings),
            )

        return CheckpointDelta(
            fee_growth0=_clamp(
                position.id, "fee growth token0", end_checkpoint.fee_growth_inside0_x128, warnings
            ),
            fee_growth1=_clamp(
                position.id, "fee growth token1", end_checkpoint.fee_growth_inside1_x128, warnings
            ),
            liquidity=liquidity,
            baseline="zero",
            warnings=tuple(warnings),
        )

    if position.has_period_fields:
        warnings.append("no checkpoint at or before epoch end: using period fee growth fields")
        logger.warning(
            f"Position {position.id}: no checkpoints in range, falling back to period fields"
        )
        return PeriodField(
            fee_growth0=_clamp(
                position.id, "period fee growth token0",
                position.fee_growth_inside_period0 or 0, warnings,
            ),
            fee_growth1=_clamp(
                position.id, "period fee growth token1",
                position.fee_growth_inside_period1 or 0, warnings,
            ),
            liquidity=position.liquidity,
            warnings=tuple(warnings),
        )

    warnings.append("no fee growth data for epoch: treated as zero")
    logger.warning(f"Position {position.id}: no fee growth data available for epoch")
    return Unavailable(liquidity=position.liquidity, warnings=tuple(warnings))
