"""
Epoch evaluation for TELx pools.

Runs the full scoring pipeline for one pool and block range:
- fetch positions (indexer) and token prices (RPC) concurrently
- classify each position and resolve its epoch fee growth
- normalize fees to one common unit
- distribute the reward budget pro-rata to wallet scores

Every call recomputes from scratch; nothing is cached between calls.
"""
import logging
import asyncio
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from protocol import (
    Classification,
    Epoch,
    EpochResult,
    LiveSnapshot,
    LiveWalletShare,
    Position,
    PositionScore,
    PriceInputs,
)
from rewards.exceptions import InputUnavailableError, MalformedHistoryError
from rewards.repositories.subgraph import DataSource
from rewards.services.checkpoints import resolve_epoch_fee_growth
from rewards.services.classifier import (
    binding_subscription,
    eligibility,
    events_from_modifications,
    replay,
)
from rewards.services.normalizer import PriceNormalizer
from rewards.services.oracle import BlockHeightSource, PriceSource
from rewards.services.scorer import RewardScorer
from rewards.utils.env import (
    ENFORCE_SUBSCRIPTION_AGE,
    JIT_THRESHOLD_BLOCKS,
    LOOKBACK_BLOCKS,
)

logger = logging.getLogger(__name__)


class EvaluatorConfig(BaseModel):
    """Tunables for epoch evaluation."""
    jit_threshold_blocks: int = Field(JIT_THRESHOLD_BLOCKS, ge=0)
    lookback_blocks: int = Field(LOOKBACK_BLOCKS, ge=0)
    enforce_subscription_age: bool = Field(
        ENFORCE_SUBSCRIPTION_AGE,
        description="Require the binding subscription to be at least lookback_blocks old",
    )


class EpochEvaluator:
    """
    Computes reward tables for finalized epochs and live previews.

    Collaborators:
        data_source: indexer access (required)
        price_source: token prices (optional, falls back to unpriced sum)
        block_height_source: current chain height (required for live
            snapshots without an explicit end block)
    """

    def __init__(
        self,
        data_source: DataSource,
        price_source: Optional[PriceSource] = None,
        block_height_source: Optional[BlockHeightSource] = None,
        config: Optional[EvaluatorConfig] = None,
    ):
        self.data_source = data_source
        self.price_source = price_source
        self.block_height_source = block_height_source
        self.config = config or EvaluatorConfig()
        self.scorer = RewardScorer()

    async def _resolve_prices(
        self,
        pool_id: str,
        end_block: int,
        prices: Optional[PriceInputs],
    ) -> Optional[PriceInputs]:
        """Caller prices win; otherwise ask the price source at the epoch end block."""
        if prices is not None:
            return prices
        if self.price_source is None:
            logger.warning("No token prices supplied and no price source configured")
            return None

        try:
            return await self.price_source.get_token_prices(pool_id, end_block)
        except Exception as e:
            logger.warning(f"Price lookup failed, using unpriced fee sum: {e}")
            return None

    def _classification(self, position: Position, end_block: int) -> Classification:
        """
        Label used for scoring.

        Re-derived from the modification history when the record carries
        one, otherwise the indexer's label.
        """
        if not position.modifications:
            return position.classification

        history = [m for m in position.modifications if m.block_number <= end_block]
        state = replay(
            events_from_modifications(history),
            jit_threshold_blocks=self.config.jit_threshold_blocks,
            lookback_blocks=self.config.lookback_blocks,
        )
        return state.classification

    def _score_position(
        self,
        position: Position,
        epoch: Epoch,
        normalizer: PriceNormalizer,
    ) -> Optional[PositionScore]:
        """
        Score one position, or None when it was not subscribed during the epoch.

        Raises:
            MalformedHistoryError: If its history cannot be classified or resolved
        """
        subscription = binding_subscription(
            position.subscriptions, epoch.start_block, epoch.end_block
        )
        if subscription is None:
            return None

        try:
            classification = self._classification(position, epoch.end_block)
            fee_source = resolve_epoch_fee_growth(position, epoch.start_block, epoch.end_block)
        except MalformedHistoryError as e:
            e.position_id = e.position_id or position.id
            raise

        decision = eligibility(
            classification,
            subscription,
            epoch.end_block,
            lookback_blocks=self.config.lookback_blocks,
            enforce_subscription_age=self.config.enforce_subscription_age,
        )
        normalized = normalizer.normalize(
            fee_source.fee_growth0, fee_source.fee_growth1, fee_source.liquidity
        )

        row = PositionScore(
            position_id=position.id,
            wallet=subscription.wallet,
            classification=classification,
            weight=decision.weight,
            eligible=decision.eligible,
            reason=decision.reason,
            fee_source=fee_source.source,
            confidence=fee_source.confidence,
            fee_growth0=fee_source.fee_growth0,
            fee_growth1=fee_source.fee_growth1,
            liquidity=fee_source.liquidity,
            amount0=normalized.amount0,
            amount1=normalized.amount1,
            common_amount=normalized.common_amount,
            warnings=[*position.warnings, *fee_source.warnings],
        )
        return self.scorer.score_position(row)

    def _score_positions(
        self,
        positions: List[Position],
        epoch: Epoch,
        normalizer: PriceNormalizer,
    ) -> Tuple[List[PositionScore], List[str]]:
        scores: List[PositionScore] = []
        warnings: List[str] = []

        for position in sorted(positions, key=lambda p: p.id):
            try:
                score = self._score_position(position, epoch, normalizer)
            except MalformedHistoryError as e:
                message = f"Position {e.position_id} excluded: {e.message}"
                logger.warning(message)
                warnings.append(message)
                score = None

            # Unscored positions still report what was skipped in their records
            notes = score.warnings if score is not None else position.warnings
            for warning in notes:
                warnings.append(f"Position {position.id}: {warning}")
            if score is not None:
                scores.append(score)

        return scores, warnings

    async def evaluate(
        self,
        pool_id: str,
        start_block: int,
        end_block: int,
        total_reward: int,
        prices: Optional[PriceInputs] = None,
    ) -> EpochResult:
        """
        Evaluate one epoch.

        Args:
            pool_id: v4 PoolId (bytes32 hex string)
            start_block: Epoch start block (inclusive)
            end_block: Epoch end block (inclusive)
            total_reward: Reward budget in the smallest reward unit
            prices: Token prices; looked up from the price source when omitted

        Returns:
            EpochResult with the ranked per-wallet reward table

        Raises:
            InputUnavailableError: If positions cannot be fetched
            ValueError: If the epoch bounds or budget are invalid
        """
        epoch = Epoch(start_block=start_block, end_block=end_block, total_reward=total_reward)

        logger.info(
            f"Evaluating pool {pool_id} epoch [{epoch.start_block}, {epoch.end_block}] "
            f"budget={epoch.total_reward}"
        )

        positions, resolved_prices = await asyncio.gather(
            self.data_source.get_epoch_positions(pool_id, epoch.start_block, epoch.end_block),
            self._resolve_prices(pool_id, epoch.end_block, prices),
        )
        if positions is None:
            raise InputUnavailableError(f"No position data for pool {pool_id}")

        normalizer = PriceNormalizer(resolved_prices)
        scores, position_warnings = self._score_positions(positions, epoch, normalizer)
        warnings = [*self.data_source.get_fetch_warnings(), *position_warnings]
        if normalizer.approximate:
            warnings.append(
                "Token prices unavailable: fees summed without price weighting (approximate)"
            )

        distribution = self.scorer.distribute(scores, epoch.total_reward)

        counts = {label: 0 for label in Classification}
        for score in scores:
            counts[score.classification] += 1
        eligible_count = sum(1 for s in scores if s.eligible)

        result = EpochResult(
            pool_id=pool_id,
            start_block=epoch.start_block,
            end_block=epoch.end_block,
            per_wallet=distribution.per_wallet,
            positions=scores,
            total_score=distribution.total_score,
            total_budget=distribution.total_budget,
            total_distributed=distribution.total_distributed,
            undistributed=distribution.undistributed,
            approximate=normalizer.approximate,
            total_positions=len(positions),
            subscribed_count=len(scores),
            eligible_count=eligible_count,
            ineligible_count=len(scores) - eligible_count,
            passive_count=counts[Classification.PASSIVE],
            active_count=counts[Classification.ACTIVE],
            jit_count=counts[Classification.JIT],
            warnings=warnings,
        )

        logger.info(
            f"Epoch scored: {len(result.per_wallet)} wallets, "
            f"{eligible_count}/{len(scores)} eligible positions, "
            f"total_score={result.total_score}, distributed={result.total_distributed}"
        )
        return result

    async def evaluate_live(
        self,
        pool_id: str,
        start_block: int,
        total_reward: int,
        prices: Optional[PriceInputs] = None,
        end_block: Optional[int] = None,
    ) -> LiveSnapshot:
        """
        Provisional reward table as if the epoch ended at `end_block`
        (the current chain height when omitted).

        Raises:
            InputUnavailableError: If positions or the chain height cannot be fetched
            ValueError: If the epoch has not started yet
        """
        if end_block is None:
            if self.block_height_source is None:
                raise InputUnavailableError("No block height source configured for live snapshot")
            end_block = await self.block_height_source.get_block_number()
            logger.info(f"Live snapshot using current block {end_block}")

        if end_block < start_block:
            raise ValueError(
                f"Current block {end_block} is before epoch start block {start_block}"
            )

        result = await self.evaluate(pool_id, start_block, end_block, total_reward, prices)

        shares = [
            LiveWalletShare(
                address=wallet.address,
                reward=wallet.reward,
                reward_share=(
                    wallet.reward / result.total_distributed
                    if result.total_distributed > 0
                    else 0.0
                ),
            )
            for wallet in result.per_wallet
        ]
        return LiveSnapshot(result=result, shares=shares)
