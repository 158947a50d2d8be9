"""
TELx Epoch Rewards Package

Scores concentrated-liquidity positions over an epoch and distributes a
fixed reward budget pro-rata among eligible wallets.
"""
from rewards.epoch import EpochEvaluator, EvaluatorConfig
from rewards.repositories.subgraph import DataSource, SubgraphDataSource
from rewards.exceptions import (
    RewardsError,
    InputUnavailableError,
    PriceUnavailableError,
    MalformedHistoryError,
)

__all__ = [
    "EpochEvaluator",
    "EvaluatorConfig",
    "DataSource",
    "SubgraphDataSource",
    "RewardsError",
    "InputUnavailableError",
    "PriceUnavailableError",
    "MalformedHistoryError",
]
