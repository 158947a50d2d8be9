"""
Indexer access for epoch scoring.

Positions, their fee growth checkpoints and their subscriptions are read
from the TELx subgraph (GraphQL over HTTP). Includes retry logic for
transient network failures; callers never retry themselves.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError

from protocol import Checkpoint, Position, Subscription
from rewards.exceptions import InputUnavailableError
from rewards.utils.env import SUBGRAPH_PAGE_SIZE, SUBGRAPH_TIMEOUT, SUBGRAPH_URL

logger = logging.getLogger(__name__)


class DataSource(ABC):
    """
    Abstract base class for position data sources.

    This allows the epoch evaluator to work with different sources
    (subgraph, fixtures, replayed registry events) without being tied to
    a specific one.
    """

    @abstractmethod
    async def get_epoch_positions(
        self,
        pool_id: str,
        start_block: int,
        end_block: int,
    ) -> List[Position]:
        """
        Fetch every position of the pool with its full subscription list
        and, at minimum, the latest checkpoint at or before `start_block`
        and the latest at or before `end_block`. No checkpoint after
        `end_block` is returned.

        Raises:
            InputUnavailableError: If the source cannot be reached or has no
                data for the pool
        """
        pass

    def get_fetch_warnings(self) -> List[str]:
        """Records dropped by the most recent fetch, one message each."""
        return []


# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY_BASE = 1.0  # Base delay in seconds (exponential backoff)
RETRYABLE_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
)


def retry_on_request_error(func):
    """
    Decorator that retries async indexer requests on transient failures.
    Uses exponential backoff.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        last_exception = None
        for attempt in range(MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except RETRYABLE_ERRORS as e:
                last_exception = e
                delay = RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"Subgraph request failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
        # All retries exhausted
        logger.error(f"Subgraph request failed after {MAX_RETRIES} attempts")
        raise InputUnavailableError(
            f"Subgraph unreachable after {MAX_RETRIES} attempts: {last_exception}"
        ) from last_exception

    return wrapper


CHECKPOINT_FIELDS = """
      blockNumber
      timestamp
      feeGrowthInside0LastX128
      feeGrowthInside1LastX128
      liquidity
"""

# Only the checkpoint in force at each epoch bound is needed, so each bound
# is fetched as its own newest-first list of one. No cap on the number of
# checkpoints a position holds can hide the one in force.
EPOCH_POSITIONS_QUERY = """
query EpochScoring($poolId: String!, $startBlock: BigInt!, $endBlock: BigInt!, $first: Int!, $skip: Int!) {
  positionNFTs(
    where: { pool: $poolId }
    orderBy: id
    orderDirection: asc
    first: $first
    skip: $skip
  ) {
    id
    owner
    tickLower
    tickUpper
    liquidity
    classification
    isSubscribed
    createdAtBlock
    updatedAtBlock
    modificationCount
    feeGrowthInsidePeriod0
    feeGrowthInsidePeriod1
    startCheckpoint: checkpoints(
      where: { blockNumber_lte: $startBlock }
      orderBy: blockNumber
      orderDirection: desc
      first: 1
    ) {%s}
    endCheckpoint: checkpoints(
      where: { blockNumber_lte: $endBlock }
      orderBy: blockNumber
      orderDirection: desc
      first: 1
    ) {%s}
    subscriptions(
      orderBy: subscribedAtBlock
      orderDirection: desc
    ) {
      wallet
      subscribedAtBlock
      unsubscribedAtBlock
      isActive
    }
  }
}
""" % (CHECKPOINT_FIELDS, CHECKPOINT_FIELDS)


class SubgraphDataSource(DataSource):
    """
    GraphQL implementation of the DataSource interface.

    Features:
    - Pages through positionNFTs with first/skip
    - Fetches only the checkpoints in force at the epoch bounds
    - Automatic retry on transient connection failures
    - Maps subgraph camelCase records onto protocol models, skipping the
      malformed parts of a record rather than the whole position
    """

    def __init__(
        self,
        subgraph_url: Optional[str] = None,
        page_size: int = SUBGRAPH_PAGE_SIZE,
        timeout: int = SUBGRAPH_TIMEOUT,
    ):
        self.subgraph_url = subgraph_url or SUBGRAPH_URL
        self.page_size = page_size
        self.timeout = timeout
        self.fetch_warnings: List[str] = []

    def get_fetch_warnings(self) -> List[str]:
        return list(self.fetch_warnings)

    @retry_on_request_error
    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post one GraphQL query.

        Raises:
            InputUnavailableError: On HTTP errors or GraphQL errors
        """
        try:
            response = await asyncio.to_thread(
                requests.post,
                self.subgraph_url,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
        except RETRYABLE_ERRORS:
            raise
        except requests.RequestException as e:
            raise InputUnavailableError(f"Subgraph request failed: {e}") from e

        if response.status_code != 200:
            raise InputUnavailableError(
                f"Subgraph returned HTTP {response.status_code}",
                details={"url": self.subgraph_url},
            )

        result = response.json()
        if result.get("errors"):
            logger.error(f"GraphQL errors: {result['errors']}")
            raise InputUnavailableError(
                "Subgraph returned GraphQL errors",
                details={"errors": result["errors"]},
            )
        return result.get("data") or {}

    @staticmethod
    def _to_checkpoints(record: Dict[str, Any]) -> List[Checkpoint]:
        by_block: Dict[int, Checkpoint] = {}
        for c in (record.get("startCheckpoint") or []) + (record.get("endCheckpoint") or []):
            checkpoint = Checkpoint(
                block_number=c["blockNumber"],
                timestamp=c.get("timestamp") or 0,
                fee_growth_inside0_x128=c["feeGrowthInside0LastX128"],
                fee_growth_inside1_x128=c["feeGrowthInside1LastX128"],
                liquidity=c.get("liquidity") or record.get("liquidity") or 0,
            )
            by_block[checkpoint.block_number] = checkpoint
        return [by_block[block] for block in sorted(by_block)]

    @staticmethod
    def _to_subscriptions(record: Dict[str, Any]) -> Tuple[List[Subscription], List[str]]:
        """
        Map subscription records, skipping the ones that cannot bind a wallet.

        A subscription without a subscribe block, or whose interval is
        empty or inverted, is dropped with a warning. The position's other
        subscriptions are kept.
        """
        subscriptions: List[Subscription] = []
        warnings: List[str] = []
        for s in record.get("subscriptions") or []:
            wallet = s.get("wallet")
            if not wallet or s.get("subscribedAtBlock") is None:
                warnings.append(
                    f"subscription of {wallet or 'unknown wallet'} skipped: missing "
                    f"{'wallet' if not wallet else 'subscribedAtBlock'}"
                )
                continue
            try:
                subscriptions.append(
                    Subscription(
                        wallet=wallet,
                        subscribed_at_block=s["subscribedAtBlock"],
                        unsubscribed_at_block=s.get("unsubscribedAtBlock"),
                        is_active=bool(s.get("isActive")),
                    )
                )
            except ValidationError:
                warnings.append(
                    f"subscription of {wallet.lower()} skipped: empty or inverted interval "
                    f"[{s.get('subscribedAtBlock')}, {s.get('unsubscribedAtBlock')})"
                )
        return subscriptions, warnings

    @classmethod
    def _to_position(cls, record: Dict[str, Any], pool_id: str) -> Position:
        subscriptions, warnings = cls._to_subscriptions(record)
        for warning in warnings:
            logger.warning(f"Position {record.get('id')}: {warning}")

        return Position(
            id=str(record["id"]),
            pool=pool_id,
            owner=record.get("owner") or "",
            tick_lower=record.get("tickLower") or 0,
            tick_upper=record.get("tickUpper") or 0,
            liquidity=record.get("liquidity") or 0,
            created_at_block=record.get("createdAtBlock") or 0,
            updated_at_block=record.get("updatedAtBlock") or 0,
            modification_count=record.get("modificationCount") or 0,
            classification=record.get("classification") or "Passive",
            fee_growth_inside_period0=record.get("feeGrowthInsidePeriod0"),
            fee_growth_inside_period1=record.get("feeGrowthInsidePeriod1"),
            checkpoints=cls._to_checkpoints(record),
            subscriptions=subscriptions,
            warnings=warnings,
        )

    async def get_epoch_positions(
        self,
        pool_id: str,
        start_block: int,
        end_block: int,
    ) -> List[Position]:
        """
        Fetch all positions of a pool for epoch scoring.

        Args:
            pool_id: v4 PoolId (bytes32 hex string)
            start_block: Epoch start block; the checkpoint in force there is
                the delta baseline
            end_block: Epoch end block; later checkpoints are excluded

        Returns:
            List of positions ordered by id. Records that cannot be mapped
            at all are reported by get_fetch_warnings().
        """
        self.fetch_warnings = []
        records: List[Dict[str, Any]] = []
        skip = 0
        while True:
            data = await self._query(
                EPOCH_POSITIONS_QUERY,
                {
                    "poolId": pool_id,
                    "startBlock": str(start_block),
                    "endBlock": str(end_block),
                    "first": self.page_size,
                    "skip": skip,
                },
            )
            page = data.get("positionNFTs")
            if page is None:
                raise InputUnavailableError(
                    f"Subgraph returned no positionNFTs for pool {pool_id}"
                )
            records.extend(page)
            if len(page) < self.page_size:
                break
            skip += self.page_size

        if not records:
            raise InputUnavailableError(f"No positions found for pool {pool_id}")

        positions = []
        for record in records:
            try:
                positions.append(self._to_position(record, pool_id))
            except (ValidationError, KeyError, ValueError) as e:
                message = f"Position record {record.get('id')} skipped: malformed ({e})"
                logger.warning(message)
                self.fetch_warnings.append(message)

        logger.info(
            f"Fetched {len(positions)} positions for pool {pool_id} "
            f"(blocks {start_block}-{end_block})"
        )
        return positions
