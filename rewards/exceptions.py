"""
Error hierarchy for epoch reward evaluation.

InputUnavailableError is the only error that aborts an evaluation.
Price and history problems degrade the affected piece of the computation
and are reported as warnings on the result.
"""
from typing import Any, Dict, Optional


class RewardsError(Exception):
    """Base exception for all reward evaluation errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class InputUnavailableError(RewardsError):
    """The indexer or RPC endpoint could not be reached or returned no data."""


class PriceUnavailableError(RewardsError):
    """Token prices could not be read; scoring falls back to an unpriced sum."""


class MalformedHistoryError(RewardsError):
    """A position's history is out of order or holds out-of-range values."""

    def __init__(
        self,
        message: str,
        position_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.position_id = position_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["position_id"] = self.position_id
        return data
