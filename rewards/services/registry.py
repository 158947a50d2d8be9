"""
Position records built from raw PositionRegistry events.

The ledger is a fold over the ordered event log: each event maps the
current position record to a new one. Classification uses the same
`classify` step as evaluation, so a ledger built from events and an
indexer record carrying the same history agree on every label.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from protocol import Checkpoint, LiquidityModification, Position, Subscription
from rewards.exceptions import InputUnavailableError, MalformedHistoryError
from rewards.repositories.subgraph import DataSource
from rewards.services.classifier import ClassificationState, ModificationEvent, classify
from rewards.utils.env import JIT_THRESHOLD_BLOCKS, LOOKBACK_BLOCKS
from rewards.utils.web3 import ZERO_ADDRESS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionUpdatedEvent:
    token_id: str
    pool_id: str
    owner: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    block_number: int
    timestamp: int = 0


@dataclass(frozen=True)
class CheckpointEvent:
    token_id: str
    pool_id: str
    checkpoint_index: int
    fee_growth_inside0_x128: int
    fee_growth_inside1_x128: int
    block_number: int
    timestamp: int = 0


@dataclass(frozen=True)
class SubscribedEvent:
    token_id: str
    owner: str
    block_number: int
    timestamp: int = 0


@dataclass(frozen=True)
class UnsubscribedEvent:
    token_id: str
    owner: str
    block_number: int
    timestamp: int = 0


RegistryEvent = Union[PositionUpdatedEvent, CheckpointEvent, SubscribedEvent, UnsubscribedEvent]


def _new_position(token_id: str, pool_id: str, owner: str, block_number: int) -> Position:
    return Position(
        id=token_id,
        pool=pool_id,
        owner=owner,
        created_at_block=block_number,
        updated_at_block=block_number,
    )


def _check_order(position: Position, block_number: int) -> None:
    if block_number < position.updated_at_block:
        raise MalformedHistoryError(
            f"Event at block {block_number} precedes last update at block "
            f"{position.updated_at_block}",
            position_id=position.id,
        )


class PositionLedger:
    """
    Folds registry events into Position records.

    Rejected events (out of order, invalid intervals) are skipped, logged
    and kept in `rejected` so the caller can audit them.
    """

    def __init__(
        self,
        default_pool_id: str = "",
        jit_threshold_blocks: int = JIT_THRESHOLD_BLOCKS,
        lookback_blocks: int = LOOKBACK_BLOCKS,
    ):
        self.default_pool_id = default_pool_id
        self.jit_threshold_blocks = jit_threshold_blocks
        self.lookback_blocks = lookback_blocks
        self.positions: Dict[str, Position] = {}
        self.rejected: List[MalformedHistoryError] = []

    @classmethod
    def from_events(cls, events: Iterable[RegistryEvent], **kwargs) -> "PositionLedger":
        ledger = cls(**kwargs)
        ledger.apply_all(events)
        return ledger

    def apply_all(self, events: Iterable[RegistryEvent]) -> None:
        for event in events:
            try:
                self.apply(event)
            except MalformedHistoryError as e:
                logger.warning(f"Rejected registry event {event}: {e.message}")
                self.rejected.append(e)

    def apply(self, event: RegistryEvent) -> Position:
        """
        Apply one event and return the updated position record.

        Raises:
            MalformedHistoryError: If the event cannot be applied in order
        """
        current = self.positions.get(event.token_id)

        if isinstance(event, PositionUpdatedEvent):
            updated = self._on_position_updated(current, event)
        elif isinstance(event, CheckpointEvent):
            updated = self._on_checkpoint(current, event)
        elif isinstance(event, SubscribedEvent):
            updated = self._on_subscribed(current, event)
        elif isinstance(event, UnsubscribedEvent):
            if current is None:
                raise MalformedHistoryError(
                    f"Unsubscribe for unknown position {event.token_id}",
                    position_id=event.token_id,
                )
            updated = self._on_unsubscribed(current, event)
        else:
            raise TypeError(f"Unsupported registry event {type(event).__name__}")

        self.positions[event.token_id] = updated
        return updated

    def _on_position_updated(
        self, position: Optional[Position], event: PositionUpdatedEvent
    ) -> Position:
        if position is None:
            # Creation establishes liquidity; it is not a modification
            return _new_position(
                event.token_id, event.pool_id, event.owner, event.block_number
            ).model_copy(
                update={
                    "tick_lower": event.tick_lower,
                    "tick_upper": event.tick_upper,
                    "liquidity": event.liquidity,
                }
            )

        _check_order(position, event.block_number)

        previous_liquidity = position.liquidity
        liquidity_changed = event.liquidity != previous_liquidity and previous_liquidity > 0

        state = ClassificationState(
            classification=position.classification,
            modification_count=position.modification_count,
            last_modification_block=(
                position.modifications[-1].block_number if position.modifications else None
            ),
        )
        label, state = classify(
            state,
            ModificationEvent(event.block_number, liquidity_changed),
            self.jit_threshold_blocks,
            self.lookback_blocks,
        )

        modifications = list(position.modifications)
        if liquidity_changed:
            modifications.append(
                LiquidityModification(
                    block_number=event.block_number,
                    new_liquidity=event.liquidity,
                )
            )

        return position.model_copy(
            update={
                "owner": event.owner.lower(),
                "pool": event.pool_id or position.pool,
                "tick_lower": event.tick_lower,
                "tick_upper": event.tick_upper,
                "liquidity": event.liquidity,
                "updated_at_block": event.block_number,
                "classification": label,
                "modification_count": state.modification_count,
                "modifications": modifications,
            }
        )

    def _on_checkpoint(self, position: Optional[Position], event: CheckpointEvent) -> Position:
        if position is None:
            # Checkpoint seen before the position update; placeholder owner
            position = _new_position(
                event.token_id, event.pool_id, ZERO_ADDRESS, event.block_number
            )
        _check_order(position, event.block_number)

        if position.checkpoints and event.block_number < position.checkpoints[-1].block_number:
            raise MalformedHistoryError(
                f"Checkpoint at block {event.block_number} precedes previous checkpoint",
                position_id=position.id,
            )

        checkpoint = Checkpoint(
            block_number=event.block_number,
            timestamp=event.timestamp,
            fee_growth_inside0_x128=event.fee_growth_inside0_x128,
            fee_growth_inside1_x128=event.fee_growth_inside1_x128,
            liquidity=position.liquidity,
        )
        return position.model_copy(
            update={
                "checkpoints": [*position.checkpoints, checkpoint],
                "updated_at_block": event.block_number,
            }
        )

    def _on_subscribed(self, position: Optional[Position], event: SubscribedEvent) -> Position:
        wallet = event.owner.lower()
        if position is None:
            position = _new_position(
                event.token_id, self.default_pool_id, wallet, event.block_number
            )

        if any(s.wallet == wallet and s.unsubscribed_at_block is None for s in position.subscriptions):
            logger.warning(
                f"Position {position.id}: wallet {wallet} already subscribed, "
                f"ignoring duplicate subscribe at block {event.block_number}"
            )
            return position

        subscription = Subscription(
            wallet=wallet,
            subscribed_at_block=event.block_number,
            is_active=True,
        )
        return position.model_copy(
            update={"subscriptions": [*position.subscriptions, subscription]}
        )

    def _on_unsubscribed(self, position: Position, event: UnsubscribedEvent) -> Position:
        wallet = event.owner.lower()
        subscriptions = []
        closed = False
        for subscription in position.subscriptions:
            if subscription.wallet == wallet and subscription.unsubscribed_at_block is None:
                closed = True
                if event.block_number < subscription.subscribed_at_block:
                    raise MalformedHistoryError(
                        f"Unsubscribe at block {event.block_number} precedes subscribe "
                        f"at block {subscription.subscribed_at_block}",
                        position_id=position.id,
                    )
                if event.block_number == subscription.subscribed_at_block:
                    # Empty interval; never covered any block
                    continue
                subscription = Subscription(
                    wallet=wallet,
                    subscribed_at_block=subscription.subscribed_at_block,
                    unsubscribed_at_block=event.block_number,
                    is_active=False,
                )
            subscriptions.append(subscription)

        if not closed:
            logger.warning(
                f"Position {position.id}: unsubscribe from {wallet} without an active subscription"
            )
        return position.model_copy(update={"subscriptions": subscriptions})


class LedgerDataSource(DataSource):
    """DataSource serving positions folded from registry events."""

    def __init__(self, ledger: PositionLedger):
        self.ledger = ledger

    def get_fetch_warnings(self) -> List[str]:
        return [
            f"Registry event for position {e.position_id} rejected: {e.message}"
            for e in self.ledger.rejected
        ]

    async def get_epoch_positions(
        self,
        pool_id: str,
        start_block: int,
        end_block: int,
    ) -> List[Position]:
        positions = [
            position.model_copy(
                update={
                    "checkpoints": [
                        c for c in position.checkpoints if c.block_number <= end_block
                    ]
                }
            )
            for position in self.ledger.positions.values()
            if position.pool == pool_id
        ]
        if not positions:
            raise InputUnavailableError(f"No positions found for pool {pool_id}")
        return sorted(positions, key=lambda p: p.id)
