"""
Position classification (Passive / Active / JIT).

Classification is an explicit fold over a position's ordered modification
log: `classify(state, event)` takes the running state and the next event
and returns the new label together with the new state. Nothing is mutated
in place, so replaying the same log always yields the same label.
"""
import logging
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Optional, Tuple

from protocol import Classification, LiquidityModification, Subscription
from rewards.exceptions import MalformedHistoryError
from rewards.utils.env import JIT_THRESHOLD_BLOCKS, LOOKBACK_BLOCKS

logger = logging.getLogger(__name__)

JIT_WEIGHT = 0
ACTIVE_WEIGHT = 0
PASSIVE_WEIGHT = 100

CLASSIFICATION_WEIGHTS = {
    Classification.JIT: JIT_WEIGHT,
    Classification.ACTIVE: ACTIVE_WEIGHT,
    Classification.PASSIVE: PASSIVE_WEIGHT,
}


@dataclass(frozen=True)
class ModificationEvent:
    """One update observed for a position."""
    block_number: int
    liquidity_changed: bool = True


@dataclass(frozen=True)
class ClassificationState:
    """Running state of the classification fold for one position."""
    classification: Classification = Classification.PASSIVE
    modification_count: int = 0
    last_modification_block: Optional[int] = None


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    weight: int
    reason: str


def classify(
    state: ClassificationState,
    event: ModificationEvent,
    jit_threshold_blocks: int = JIT_THRESHOLD_BLOCKS,
    lookback_blocks: int = LOOKBACK_BLOCKS,
) -> Tuple[Classification, ClassificationState]:
    """
    Apply one modification event to the running classification state.

    Args:
        state: State after all previous events
        event: The new event
        jit_threshold_blocks: Re-modifications within this many blocks are JIT
        lookback_blocks: Trailing window in which a prior modification makes
            the position Active

    Returns:
        Tuple of (new_label, new_state)

    Raises:
        MalformedHistoryError: If the event is older than the last recorded
            modification
    """
    current_block = event.block_number
    last_block = state.last_modification_block

    if current_block < 0:
        raise MalformedHistoryError(f"Negative block number {current_block}")
    if last_block is not None and current_block < last_block:
        raise MalformedHistoryError(
            f"Modification at block {current_block} precedes last modification "
            f"at block {last_block}",
            details={"block_number": current_block, "last_modification_block": last_block},
        )

    # Metadata-only update: label and counter are left alone
    if not event.liquidity_changed:
        return state.classification, state

    modification_count = state.modification_count + 1

    if modification_count == 1 or last_block is None:
        label = Classification.PASSIVE
    else:
        block_diff = current_block - last_block
        lookback_start = current_block - lookback_blocks

        if block_diff <= jit_threshold_blocks:
            label = Classification.JIT
        elif last_block >= lookback_start:
            label = Classification.ACTIVE
        else:
            label = Classification.PASSIVE

    new_state = ClassificationState(
        classification=label,
        modification_count=modification_count,
        last_modification_block=current_block,
    )
    return label, new_state


def replay(
    events: Iterable[ModificationEvent],
    initial: Optional[ClassificationState] = None,
    jit_threshold_blocks: int = JIT_THRESHOLD_BLOCKS,
    lookback_blocks: int = LOOKBACK_BLOCKS,
) -> ClassificationState:
    """Fold a full modification log into its final classification state."""
    return reduce(
        lambda state, event: classify(state, event, jit_threshold_blocks, lookback_blocks)[1],
        events,
        initial or ClassificationState(),
    )


def events_from_modifications(
    modifications: List[LiquidityModification],
) -> List[ModificationEvent]:
    return [
        ModificationEvent(block_number=m.block_number, liquidity_changed=m.liquidity_changed)
        for m in modifications
    ]


def classification_weight(classification: Classification) -> int:
    """Reward weight in percent for a classification label."""
    return CLASSIFICATION_WEIGHTS.get(classification, 0)


def is_subscription_aged(
    subscribed_at_block: int,
    evaluation_block: int,
    lookback_blocks: int = LOOKBACK_BLOCKS,
) -> bool:
    """Whether a subscription is at least `lookback_blocks` old at `evaluation_block`."""
    return evaluation_block - subscribed_at_block >= lookback_blocks


def binding_subscription(
    subscriptions: List[Subscription],
    start_block: int,
    end_block: int,
) -> Optional[Subscription]:
    """
    Subscription that owns a position's epoch score.

    Prefers the subscription active at `end_block`; otherwise the most
    recently started subscription that overlapped the epoch.
    """
    overlapping = [s for s in subscriptions if s.overlaps(start_block, end_block)]
    if not overlapping:
        return None

    # Sort by start block (desc) then wallet for a total order
    overlapping.sort(key=lambda s: (-s.subscribed_at_block, s.wallet))
    for subscription in overlapping:
        if subscription.is_active_at(end_block):
            return subscription
    return overlapping[0]


def eligibility(
    classification: Classification,
    subscription: Optional[Subscription],
    evaluation_block: int,
    lookback_blocks: int = LOOKBACK_BLOCKS,
    enforce_subscription_age: bool = True,
) -> Eligibility:
    """
    Decide whether a position earns score in an evaluation.

    The classification weight and the subscription-age gate are checked
    independently; both must pass.
    """
    weight = classification_weight(classification)

    if subscription is None:
        return Eligibility(False, weight, "Not subscribed during epoch")

    if weight == 0:
        return Eligibility(False, weight, f"{classification.value} ({weight}% weight)")

    if enforce_subscription_age and not is_subscription_aged(
        subscription.subscribed_at_block, evaluation_block, lookback_blocks
    ):
        return Eligibility(
            False,
            weight,
            f"Subscription younger than {lookback_blocks} blocks "
            f"(subscribed at {subscription.subscribed_at_block})",
        )

    return Eligibility(True, weight, f"{classification.value} ({weight}% weight)")
