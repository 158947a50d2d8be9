"""
Main entry point for TELx epoch reward evaluation.
"""
import sys
import asyncio
import logging
import argparse

from protocol import PriceInputs
from rewards.epoch import EpochEvaluator, EvaluatorConfig
from rewards.exceptions import RewardsError
from rewards.repositories.subgraph import SubgraphDataSource
from rewards.services.oracle import PositionRegistryPriceSource, Web3BlockHeightSource
from rewards.utils.env import CHAIN_ID, POOL_ID, POSITION_REGISTRY, SUBGRAPH_URL

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('rewards.log'),
            logging.StreamHandler(sys.stderr)
        ]
    )


def get_config(argv=None):
    """Load configuration from environment and arguments."""
    parser = argparse.ArgumentParser(description='TELx epoch reward evaluation')

    parser.add_argument('--pool-id', type=str, default=POOL_ID, help='v4 PoolId (bytes32 hex)')
    parser.add_argument('--start-block', type=int, required=True, help='Epoch start block')
    parser.add_argument('--end-block', type=int, help='Epoch end block (omit for a live snapshot)')
    parser.add_argument('--total-reward', type=int, required=True, help='Reward budget in smallest units')
    parser.add_argument('--token0-price', type=int, help='token0 price, common units per 1e18')
    parser.add_argument('--token1-price', type=int, help='token1 price, common units per 1e18')
    parser.add_argument('--subgraph-url', type=str, default=SUBGRAPH_URL, help='Subgraph GraphQL URL')
    parser.add_argument('--rpc-url', type=str, help='RPC URL (defaults to the chain RPC)')
    parser.add_argument('--chain-id', type=int, default=CHAIN_ID, help='Chain ID (Base = 8453)')
    parser.add_argument('--position-registry', type=str, default=POSITION_REGISTRY,
                        help='PositionRegistry contract address')
    parser.add_argument('--no-subscription-age', action='store_true',
                        help='Do not require subscriptions to be older than the lookback window')

    args = parser.parse_args(argv)

    if (args.token0_price is None) != (args.token1_price is None):
        parser.error('--token0-price and --token1-price must be given together')

    return args


async def run(args) -> str:
    prices = None
    if args.token0_price is not None:
        prices = PriceInputs(token0_price=args.token0_price, token1_price=args.token1_price)

    evaluator = EpochEvaluator(
        data_source=SubgraphDataSource(subgraph_url=args.subgraph_url),
        price_source=PositionRegistryPriceSource(
            args.chain_id, args.position_registry, args.rpc_url
        ),
        block_height_source=Web3BlockHeightSource(args.chain_id, args.rpc_url),
        config=EvaluatorConfig(enforce_subscription_age=not args.no_subscription_age),
    )

    if args.end_block is None:
        snapshot = await evaluator.evaluate_live(
            args.pool_id, args.start_block, args.total_reward, prices
        )
        return snapshot.model_dump_json(indent=2)

    result = await evaluator.evaluate(
        args.pool_id, args.start_block, args.end_block, args.total_reward, prices
    )
    return result.model_dump_json(indent=2)


def main(argv=None):
    """Evaluate one epoch and print the reward table as JSON."""
    configure_logging()
    args = get_config(argv)

    try:
        output = asyncio.run(run(args))
    except (RewardsError, ValueError) as e:
        logger.error(f"Evaluation failed: {e}")
        sys.exit(1)

    print(output)


if __name__ == '__main__':
    main()
