import json
from pathlib import Path
from typing import Any, List, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract

from rewards.utils.env import (
    MAINNET_RPC,
    BASE_RPC,
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ABI_DIR = Path(__file__).parent / "abis"
CHAIN_ID_TO_RPC = {
    1: MAINNET_RPC,
    8453: BASE_RPC,
}


def load_abi(name: str) -> List[Any]:
    """ABI entries bundled under utils/abis/<name>.json."""
    path = ABI_DIR / f"{name}.json"
    if not path.is_file():
        raise ValueError(f"No bundled ABI named {name}")
    with open(path, "r") as f:
        return json.load(f)["abi"]


class AsyncWeb3Helper:
    """Async RPC connection for one chain."""

    def __init__(self, web3: AsyncWeb3, chain_id: int) -> None:
        self.web3 = web3
        self.chain_id = chain_id

    @classmethod
    def make_web3(cls, chain_id: int, rpc_url: Optional[str] = None) -> "AsyncWeb3Helper":
        """Connect to a known chain, or to an explicit RPC URL."""
        if rpc_url is None:
            if chain_id not in CHAIN_ID_TO_RPC:
                raise ValueError(f"No RPC configured for chain id {chain_id}")
            rpc_url = CHAIN_ID_TO_RPC[chain_id]
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), chain_id)

    def make_contract_by_name(self, name: str, addr: str) -> AsyncContract:
        """Bind a bundled ABI to a deployed address."""
        return self.web3.eth.contract(address=Web3.to_checksum_address(addr), abi=load_abi(name))

    async def get_block_number(self) -> int:
        """Latest block height of the connected chain."""
        return await self.web3.eth.block_number
