"""
Tests for epoch fee growth resolution from checkpoints.
"""
import pytest

from protocol import Checkpoint, Confidence, Position
from rewards.exceptions import MalformedHistoryError
from rewards.services.checkpoints import (
    CheckpointDelta,
    PeriodField,
    Unavailable,
    resolve_epoch_fee_growth,
)
from rewards.utils.math import FixedPointMath


def make_position(checkpoints=(), **kwargs):
    return Position(
        id=kwargs.pop("id", "1"),
        owner=kwargs.pop("owner", "0xabc"),
        checkpoints=[
            Checkpoint(
                block_number=block,
                fee_growth_inside0_x128=fee0,
                fee_growth_inside1_x128=fee1,
                liquidity=liquidity,
            )
            for block, fee0, fee1, liquidity in checkpoints
        ],
        **kwargs,
    )


@pytest.fixture
def three_checkpoints():
    return make_position([
        (100, 0, 0, 10),
        (200, 50, 5, 20),
        (300, 120, 12, 30),
    ])


def test_delta_between_checkpoints(three_checkpoints):
    result = resolve_epoch_fee_growth(three_checkpoints, 150, 250)

    assert isinstance(result, CheckpointDelta)
    assert result.fee_growth0 == 50
    assert result.fee_growth1 == 5
    assert result.baseline == "checkpoint"
    assert result.confidence == Confidence.HIGH
    assert result.warnings == ()


def test_liquidity_taken_from_end_checkpoint(three_checkpoints):
    result = resolve_epoch_fee_growth(three_checkpoints, 150, 250)
    assert result.liquidity == 20


def test_checkpoint_exactly_at_boundaries(three_checkpoints):
    result = resolve_epoch_fee_growth(three_checkpoints, 200, 300)

    assert result.fee_growth0 == 70
    assert result.fee_growth1 == 7
    assert result.liquidity == 30


def test_checkpoints_after_epoch_ignored(three_checkpoints):
    result = resolve_epoch_fee_growth(three_checkpoints, 100, 299)
    assert result.fee_growth0 == 50


def test_created_inside_epoch_uses_zero_baseline():
    position = make_position([
        (100, 10, 1, 5),
        (200, 50, 2, 5),
        (300, 120, 3, 5),
    ])

    result = resolve_epoch_fee_growth(position, 50, 250)

    assert isinstance(result, CheckpointDelta)
    assert result.fee_growth0 == 50
    assert result.fee_growth1 == 2
    assert result.baseline == "zero"
    assert result.confidence == Confidence.HIGH


def test_negative_delta_clamped_to_zero():
    position = make_position([
        (100, 80, 10, 1),
        (200, 50, 30, 1),
    ])

    result = resolve_epoch_fee_growth(position, 150, 250)

    assert result.fee_growth0 == 0
    assert result.fee_growth1 == 20
    assert any("clamped" in w for w in result.warnings)


def test_negative_end_value_clamped_without_start():
    position = make_position([(200, -5, 7, 1)])

    result = resolve_epoch_fee_growth(position, 150, 250)

    assert result.baseline == "zero"
    assert result.fee_growth0 == 0
    assert result.fee_growth1 == 7


def test_wrapped_growth_handled_as_signed():
    """Fee growth stored as int256 may go negative after wrapping; the difference still holds."""
    position = make_position([
        (100, -100, 0, 1),
        (200, 25, 0, 1),
    ])

    result = resolve_epoch_fee_growth(position, 150, 250)
    assert result.fee_growth0 == 125


def test_period_field_fallback():
    position = make_position(
        [],
        liquidity=7,
        fee_growth_inside_period0=40,
        fee_growth_inside_period1=None,
    )

    result = resolve_epoch_fee_growth(position, 150, 250)

    assert isinstance(result, PeriodField)
    assert result.fee_growth0 == 40
    assert result.fee_growth1 == 0
    assert result.liquidity == 7
    assert result.source == "period_field"
    assert result.confidence == Confidence.LOW
    assert result.warnings


def test_period_field_used_when_checkpoints_only_after_epoch():
    position = make_position([(500, 99, 99, 1)], fee_growth_inside_period0=3)

    result = resolve_epoch_fee_growth(position, 150, 250)
    assert isinstance(result, PeriodField)
    assert result.fee_growth0 == 3


def test_unavailable_without_data():
    position = make_position([], liquidity=9)

    result = resolve_epoch_fee_growth(position, 150, 250)

    assert isinstance(result, Unavailable)
    assert result.fee_growth0 == 0
    assert result.fee_growth1 == 0
    assert result.liquidity == 9
    assert result.confidence == Confidence.LOW


def test_unordered_checkpoints_resorted():
    position = make_position([
        (300, 120, 0, 3),
        (100, 0, 0, 1),
        (200, 50, 0, 2),
    ])

    result = resolve_epoch_fee_growth(position, 150, 250)

    assert result.fee_growth0 == 50
    assert result.liquidity == 2
    assert any("non-monotonic" in w for w in result.warnings)


def test_out_of_range_value_rejected():
    position = make_position([(100, FixedPointMath.INT256_MAX + 1, 0, 1)])

    with pytest.raises(MalformedHistoryError) as exc_info:
        resolve_epoch_fee_growth(position, 50, 150)

    assert exc_info.value.position_id == "1"


def test_inverted_range_rejected(three_checkpoints):
    with pytest.raises(ValueError):
        resolve_epoch_fee_growth(three_checkpoints, 250, 150)


def test_resolution_is_deterministic(three_checkpoints):
    assert (
        resolve_epoch_fee_growth(three_checkpoints, 150, 250)
        == resolve_epoch_fee_growth(three_checkpoints, 150, 250)
    )
