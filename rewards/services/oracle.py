"""
RPC collaborators: token prices from the PositionRegistry and chain height.

Price reads are optional inputs. Any failure is logged and reported as
"no prices", and the caller falls back to unpriced normalization. Block
height is required for live snapshots, so its failures are hard errors.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from web3.contract import AsyncContract

from protocol import PriceInputs
from rewards.exceptions import InputUnavailableError, PriceUnavailableError
from rewards.utils.math import FixedPointMath
from rewards.utils.web3 import AsyncWeb3Helper

logger = logging.getLogger(__name__)

FULL_RANGE_TICK_LOWER = -887272
FULL_RANGE_TICK_UPPER = 887272


class PriceSource(ABC):
    """Source of token prices in common-denominator units (WAD-scaled)."""

    @abstractmethod
    async def get_token_prices(
        self, pool_id: str, block_number: Optional[int] = None
    ) -> Optional[PriceInputs]:
        """Prices at `block_number`, or None if they cannot be read."""
        pass


class BlockHeightSource(ABC):
    """Source of the current chain height."""

    @abstractmethod
    async def get_block_number(self) -> int:
        pass


class PositionRegistryPriceSource(PriceSource):
    """
    Reads the pool price through PositionRegistry.getAmountsForLiquidity.

    The call returns (amount0, amount1, sqrtPriceX96); only sqrtPriceX96
    is used. token1 is the common denominator (TEL), so:
        token0_price = sqrtPriceX96^2 * 10^18 / 2^192
        token1_price = 10^18
    The call encoding must be checked against the deployed registry ABI.
    """

    def __init__(
        self,
        chain_id: int,
        position_registry_address: str,
        rpc_url: Optional[str] = None,
    ):
        self.chain_id = chain_id
        self.registry: AsyncContract = AsyncWeb3Helper.make_web3(
            chain_id, rpc_url
        ).make_contract_by_name(
            name="PositionRegistry",
            addr=position_registry_address,
        )

    @staticmethod
    def _pool_id_bytes(pool_id: str) -> bytes:
        hex_id = pool_id[2:] if pool_id.startswith("0x") else pool_id
        if len(hex_id) > 64:
            raise ValueError(f"Invalid pool id {pool_id}")
        return bytes.fromhex(hex_id.rjust(64, "0"))

    async def _get_sqrt_price_x96(self, pool_id: str, block_number: Optional[int]) -> int:
        """
        Raises:
            PriceUnavailableError: If the registry call fails or returns no price
        """
        block_identifier = block_number if block_number is not None else "latest"
        try:
            result = await self.registry.functions.getAmountsForLiquidity(
                self._pool_id_bytes(pool_id),
                1,
                FULL_RANGE_TICK_LOWER,
                FULL_RANGE_TICK_UPPER,
            ).call(block_identifier=block_identifier)
        except Exception as e:
            raise PriceUnavailableError(
                f"Failed to read price from PositionRegistry {self.registry.address}: {e}",
                details={"pool_id": pool_id, "block_number": block_number},
            ) from e

        if not result or len(result) < 3 or not result[2]:
            raise PriceUnavailableError(
                f"Empty price result from PositionRegistry {self.registry.address}",
                details={"pool_id": pool_id, "block_number": block_number},
            )
        return int(result[2])

    async def get_token_prices(
        self, pool_id: str, block_number: Optional[int] = None
    ) -> Optional[PriceInputs]:
        try:
            sqrt_price_x96 = await self._get_sqrt_price_x96(pool_id, block_number)
        except PriceUnavailableError as e:
            logger.warning(f"{e.message}. Falling back to unpriced fee sum.")
            return None

        prices = PriceInputs(
            token0_price=FixedPointMath.price_from_sqrt_price_x96(sqrt_price_x96),
            token1_price=FixedPointMath.WAD,
        )
        logger.info(
            f"Token prices at block {block_number or 'latest'}: "
            f"token0={prices.token0_price}, token1={prices.token1_price}"
        )
        return prices


class Web3BlockHeightSource(BlockHeightSource):
    """Reads the latest block number over JSON-RPC."""

    def __init__(self, chain_id: int, rpc_url: Optional[str] = None):
        self.chain_id = chain_id
        self.helper = AsyncWeb3Helper.make_web3(chain_id, rpc_url)

    async def get_block_number(self) -> int:
        try:
            block_number = await self.helper.get_block_number()
        except Exception as e:
            logger.error(f"Failed to fetch latest block for chain {self.chain_id}: {e}")
            raise InputUnavailableError(
                f"Failed to fetch latest block: {e}",
                details={"chain_id": self.chain_id},
            ) from e

        if block_number is None or int(block_number) < 0:
            raise InputUnavailableError(f"Invalid block height {block_number}")
        return int(block_number)
