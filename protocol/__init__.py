"""
Package containing the shared data models for TELx epoch reward scoring.

These models define the records exchanged with the indexer collaborator
and the reward tables returned to callers.
"""

from protocol.models import (
    Classification,
    Confidence,
    Checkpoint,
    Subscription,
    LiquidityModification,
    Position,
    Epoch,
    PriceInputs,
    PositionScore,
    WalletReward,
    EpochResult,
    LiveWalletShare,
    LiveSnapshot,
)

__all__ = [
    # Indexer records
    "Classification",
    "Confidence",
    "Checkpoint",
    "Subscription",
    "LiquidityModification",
    "Position",
    # Evaluation inputs
    "Epoch",
    "PriceInputs",
    # Results
    "PositionScore",
    "WalletReward",
    "EpochResult",
    "LiveWalletShare",
    "LiveSnapshot",
]
