"""
Weighted score aggregation and pro-rata reward distribution.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from protocol import PositionScore, WalletReward
from rewards.utils.math import FixedPointMath

logger = logging.getLogger(__name__)


@dataclass
class Distribution:
    per_wallet: List[WalletReward] = field(default_factory=list)
    total_score: int = 0
    total_budget: int = 0
    total_distributed: int = 0

    @property
    def undistributed(self) -> int:
        return self.total_budget - self.total_distributed


class RewardScorer:
    """
    Distributes a fixed reward budget pro-rata to weighted wallet scores.

    - Only eligible positions contribute weighted score
    - reward = floor(wallet_score * budget / total_score), multiply first
    - The floor remainder is reported, never redistributed
    - Output is ordered by reward (desc), then address (asc)
    """

    @staticmethod
    def weighted_score(common_amount: int, weight: int) -> int:
        """common_amount * weight / 100 (weight in percent)."""
        return FixedPointMath.mul_div(
            FixedPointMath.clamp_non_negative(common_amount),
            weight,
            FixedPointMath.PERCENT,
        )

    def score_position(self, position_score: PositionScore) -> PositionScore:
        """Fill in the weighted score of a position audit row."""
        weighted = (
            self.weighted_score(position_score.common_amount, position_score.weight)
            if position_score.eligible
            else 0
        )
        return position_score.model_copy(update={"weighted_score": weighted})

    def aggregate(self, position_scores: List[PositionScore]) -> Dict[str, WalletReward]:
        """
        Sum position scores per wallet.

        raw_score covers every subscribed position of the wallet;
        weighted_score only the eligible ones.
        """
        wallets: Dict[str, WalletReward] = {}
        for score in position_scores:
            wallet = wallets.get(score.wallet)
            if wallet is None:
                wallet = WalletReward(address=score.wallet, reward=0, raw_score=0, weighted_score=0)
                wallets[score.wallet] = wallet

            wallet.raw_score += FixedPointMath.clamp_non_negative(score.common_amount)
            wallet.weighted_score += score.weighted_score
            wallet.position_count += 1
            if score.eligible:
                wallet.eligible_position_count += 1

        return wallets

    @staticmethod
    def rank(per_wallet: List[WalletReward]) -> List[WalletReward]:
        return sorted(per_wallet, key=lambda w: (-w.reward, w.address))

    def distribute(
        self,
        position_scores: List[PositionScore],
        total_reward: int,
    ) -> Distribution:
        """
        Distribute `total_reward` across the wallets owning `position_scores`.

        Args:
            position_scores: Scored positions (weighted_score already set)
            total_reward: Budget in the smallest reward unit

        Returns:
            Distribution with the ranked per-wallet table and totals
        """
        if not FixedPointMath.is_uint256(total_reward):
            raise ValueError(f"total_reward {total_reward} is outside the uint256 range")

        wallets = self.aggregate(position_scores)
        total_score = sum(w.weighted_score for w in wallets.values())

        if total_score == 0:
            logger.warning("Total weighted score is zero - no rewards distributed")
            for wallet in wallets.values():
                wallet.reward = 0
        else:
            for wallet in wallets.values():
                wallet.reward = FixedPointMath.mul_div(
                    wallet.weighted_score, total_reward, total_score
                )

        per_wallet = self.rank(list(wallets.values()))
        total_distributed = sum(w.reward for w in per_wallet)

        distribution = Distribution(
            per_wallet=per_wallet,
            total_score=total_score,
            total_budget=total_reward,
            total_distributed=total_distributed,
        )

        if distribution.undistributed:
            logger.info(
                f"Distributed {total_distributed} of {total_reward} "
                f"({distribution.undistributed} left by rounding)"
            )
        return distribution
