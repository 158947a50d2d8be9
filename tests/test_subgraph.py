import pytest
import requests
from unittest.mock import AsyncMock, MagicMock, patch

from protocol import Classification, PriceInputs
from rewards.epoch import EpochEvaluator, EvaluatorConfig
from rewards.exceptions import InputUnavailableError
from rewards.repositories.subgraph import (
    EPOCH_POSITIONS_QUERY,
    MAX_RETRIES,
    SubgraphDataSource,
)

SUBGRAPH_URL = "http://indexer.test/subgraphs/name/telx"
POOL_ID = "0x" + "ab" * 32


def make_record(position_id="1", **overrides):
    record = {
        "id": position_id,
        "owner": "0xAbC0000000000000000000000000000000000001",
        "tickLower": "-600",
        "tickUpper": "600",
        "liquidity": "1000",
        "classification": "Active",
        "isSubscribed": True,
        "createdAtBlock": "100",
        "updatedAtBlock": "200",
        "modificationCount": "2",
        "feeGrowthInsidePeriod0": None,
        "feeGrowthInsidePeriod1": None,
        "startCheckpoint": [],
        "endCheckpoint": [
            {
                "blockNumber": "150",
                "timestamp": "1700000000",
                "feeGrowthInside0LastX128": "340282366920938463463374607431768211456",
                "feeGrowthInside1LastX128": "0",
                "liquidity": "1000",
            }
        ],
        "subscriptions": [
            {
                "wallet": "0xAbC0000000000000000000000000000000000001",
                "subscribedAtBlock": "120",
                "unsubscribedAtBlock": None,
                "isActive": True,
            }
        ],
    }
    record.update(overrides)
    return record


def make_response(positions=None, errors=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    payload = {"data": {"positionNFTs": positions}}
    if errors:
        payload["errors"] = errors
    response.json.return_value = payload
    return response


@pytest.fixture
def mock_post():
    with patch("rewards.repositories.subgraph.requests.post") as mock:
        yield mock


@pytest.fixture
def mock_sleep():
    with patch("rewards.repositories.subgraph.asyncio.sleep", new_callable=AsyncMock) as mock:
        yield mock


@pytest.fixture
def source():
    return SubgraphDataSource(subgraph_url=SUBGRAPH_URL)


@pytest.mark.asyncio
async def test_maps_records_to_positions(source, mock_post):
    mock_post.return_value = make_response([make_record()])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert len(positions) == 1
    position = positions[0]
    assert position.id == "1"
    assert position.pool == POOL_ID
    assert position.owner == "0xabc0000000000000000000000000000000000001"
    assert position.tick_lower == -600
    assert position.liquidity == 1000
    assert position.classification == Classification.ACTIVE
    assert position.modification_count == 2
    assert position.checkpoints[0].fee_growth_inside0_x128 == 2 ** 128
    assert position.subscriptions[0].subscribed_at_block == 120
    assert position.subscriptions[0].is_active


@pytest.mark.asyncio
async def test_query_variables(source, mock_post):
    mock_post.return_value = make_response([make_record()])

    await source.get_epoch_positions(POOL_ID, 100, 300)

    args, kwargs = mock_post.call_args
    assert args[0] == SUBGRAPH_URL
    assert kwargs["json"]["query"] == EPOCH_POSITIONS_QUERY
    assert kwargs["json"]["variables"] == {
        "poolId": POOL_ID,
        "startBlock": "100",
        "endBlock": "300",
        "first": 1000,
        "skip": 0,
    }


@pytest.mark.asyncio
async def test_checkpoint_liquidity_falls_back_to_position(source, mock_post):
    record = make_record()
    record["endCheckpoint"][0]["liquidity"] = None
    mock_post.return_value = make_response([record])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert positions[0].checkpoints[0].liquidity == 1000


@pytest.mark.asyncio
async def test_pagination(mock_post):
    source = SubgraphDataSource(subgraph_url=SUBGRAPH_URL, page_size=2)
    mock_post.side_effect = [
        make_response([make_record("1"), make_record("2")]),
        make_response([make_record("3")]),
    ]

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert [p.id for p in positions] == ["1", "2", "3"]
    assert mock_post.call_count == 2
    assert mock_post.call_args.kwargs["json"]["variables"]["skip"] == 2


@pytest.mark.asyncio
async def test_malformed_record_skipped(source, mock_post):
    bad = make_record("2", createdAtBlock="500", updatedAtBlock="100")
    mock_post.return_value = make_response([make_record("1"), bad])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert [p.id for p in positions] == ["1"]
    warnings = source.get_fetch_warnings()
    assert len(warnings) == 1
    assert "Position record 2 skipped" in warnings[0]


@pytest.mark.asyncio
async def test_graphql_errors(source, mock_post):
    mock_post.return_value = make_response(None, errors=[{"message": "indexing error"}])

    with pytest.raises(InputUnavailableError) as exc_info:
        await source.get_epoch_positions(POOL_ID, 100, 300)

    assert exc_info.value.details["errors"] == [{"message": "indexing error"}]


@pytest.mark.asyncio
async def test_no_positions(source, mock_post):
    mock_post.return_value = make_response([])

    with pytest.raises(InputUnavailableError):
        await source.get_epoch_positions(POOL_ID, 100, 300)


@pytest.mark.asyncio
async def test_missing_field(source, mock_post):
    mock_post.return_value = make_response(None)

    with pytest.raises(InputUnavailableError):
        await source.get_epoch_positions(POOL_ID, 100, 300)


@pytest.mark.asyncio
async def test_http_error_not_retried(source, mock_post, mock_sleep):
    mock_post.return_value = make_response(status_code=502)

    with pytest.raises(InputUnavailableError):
        await source.get_epoch_positions(POOL_ID, 100, 300)

    assert mock_post.call_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_then_success(source, mock_post, mock_sleep):
    mock_post.side_effect = [
        requests.ConnectionError("connection reset"),
        make_response([make_record()]),
    ]

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert len(positions) == 1
    assert mock_post.call_count == 2
    mock_sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_retries_exhausted(source, mock_post, mock_sleep):
    mock_post.side_effect = requests.Timeout("read timed out")

    with pytest.raises(InputUnavailableError):
        await source.get_epoch_positions(POOL_ID, 100, 300)

    assert mock_post.call_count == MAX_RETRIES
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0, 4.0]


def make_checkpoint(block, fee0=0, fee1=0, liquidity="1"):
    return {
        "blockNumber": str(block),
        "timestamp": "0",
        "feeGrowthInside0LastX128": str(fee0),
        "feeGrowthInside1LastX128": str(fee1),
        "liquidity": liquidity,
    }


def make_subscription(wallet, subscribed_at, unsubscribed_at=None):
    return {
        "wallet": wallet,
        "subscribedAtBlock": None if subscribed_at is None else str(subscribed_at),
        "unsubscribedAtBlock": None if unsubscribed_at is None else str(unsubscribed_at),
        "isActive": unsubscribed_at is None,
    }


@pytest.mark.asyncio
async def test_empty_subscription_interval_skipped_not_position(source, mock_post):
    record = make_record(subscriptions=[
        make_subscription("0x" + "22" * 20, 5),
        make_subscription("0x" + "11" * 20, 10, 10),
    ])
    mock_post.return_value = make_response([record])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert len(positions) == 1
    assert [s.wallet for s in positions[0].subscriptions] == ["0x" + "22" * 20]
    assert len(positions[0].warnings) == 1
    assert "empty or inverted interval" in positions[0].warnings[0]
    assert source.get_fetch_warnings() == []


@pytest.mark.asyncio
async def test_subscription_without_block_skipped(source, mock_post):
    record = make_record(subscriptions=[
        make_subscription("0x" + "22" * 20, None),
        make_subscription("0x" + "33" * 20, 5),
    ])
    mock_post.return_value = make_response([record])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert [s.wallet for s in positions[0].subscriptions] == ["0x" + "33" * 20]
    assert "missing subscribedAtBlock" in positions[0].warnings[0]


@pytest.mark.asyncio
async def test_bound_checkpoints_mapped_in_block_order(source, mock_post):
    record = make_record(
        startCheckpoint=[make_checkpoint(1_100, fee0=40 * 2 ** 128)],
        endCheckpoint=[make_checkpoint(1_200, fee0=100 * 2 ** 128)],
    )
    mock_post.return_value = make_response([record])

    positions = await source.get_epoch_positions(POOL_ID, 1_100, 1_200)

    assert [c.block_number for c in positions[0].checkpoints] == [1_100, 1_200]


@pytest.mark.asyncio
async def test_shared_bound_checkpoint_not_duplicated(source, mock_post):
    checkpoint = make_checkpoint(90, fee0=7)
    record = make_record(startCheckpoint=[checkpoint], endCheckpoint=[dict(checkpoint)])
    mock_post.return_value = make_response([record])

    positions = await source.get_epoch_positions(POOL_ID, 100, 300)

    assert [c.block_number for c in positions[0].checkpoints] == [90]


def test_query_fetches_latest_checkpoint_per_bound():
    query = " ".join(EPOCH_POSITIONS_QUERY.split())

    assert "startCheckpoint: checkpoints( where: { blockNumber_lte: $startBlock }" in query
    assert "endCheckpoint: checkpoints( where: { blockNumber_lte: $endBlock }" in query
    assert query.count("orderDirection: desc first: 1 )") == 2


class TestEvaluationFromSubgraph:
    """Records mapped from the indexer flowing through a full evaluation."""

    @staticmethod
    def passive_record(position_id, subscriptions):
        return make_record(
            position_id,
            liquidity="1",
            classification="Passive",
            startCheckpoint=[make_checkpoint(50)],
            endCheckpoint=[make_checkpoint(250, fee0=10 * 2 ** 128)],
            subscriptions=subscriptions,
        )

    @pytest.mark.asyncio
    async def test_empty_interval_does_not_forfeit_valid_subscription(self, source, mock_post):
        mock_post.return_value = make_response([
            self.passive_record("1", [
                make_subscription("0x" + "22" * 20, 5),
                make_subscription("0x" + "11" * 20, 10, 10),
            ]),
            self.passive_record("2", [make_subscription("0x" + "33" * 20, 5)]),
        ])
        evaluator = EpochEvaluator(
            source, config=EvaluatorConfig(enforce_subscription_age=False)
        )

        result = await evaluator.evaluate(
            POOL_ID, 100, 300, 1000, PriceInputs(token0_price=10 ** 18, token1_price=10 ** 18)
        )

        assert [(w.address, w.reward) for w in result.per_wallet] == [
            ("0x" + "22" * 20, 500),
            ("0x" + "33" * 20, 500),
        ]
        assert result.total_positions == 2
        assert any(
            w.startswith("Position 1:") and "empty or inverted interval" in w
            for w in result.warnings
        )

    @pytest.mark.asyncio
    async def test_skipped_record_reported_in_result(self, source, mock_post):
        bad = make_record("2", createdAtBlock="500", updatedAtBlock="100")
        mock_post.return_value = make_response([
            self.passive_record("1", [make_subscription("0x" + "22" * 20, 5)]),
            bad,
        ])
        evaluator = EpochEvaluator(
            source, config=EvaluatorConfig(enforce_subscription_age=False)
        )

        result = await evaluator.evaluate(
            POOL_ID, 100, 300, 1000, PriceInputs(token0_price=10 ** 18, token1_price=10 ** 18)
        )

        assert result.per_wallet[0].reward == 1000
        assert any("Position record 2 skipped" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_delta_uses_checkpoints_in_force_at_bounds(self, source, mock_post):
        record = self.passive_record("1", [make_subscription("0x" + "22" * 20, 5)])
        record["startCheckpoint"] = [make_checkpoint(1_100, fee0=40 * 2 ** 128)]
        record["endCheckpoint"] = [make_checkpoint(1_200, fee0=100 * 2 ** 128)]
        mock_post.return_value = make_response([record])
        evaluator = EpochEvaluator(
            source, config=EvaluatorConfig(enforce_subscription_age=False)
        )

        result = await evaluator.evaluate(
            POOL_ID, 1_100, 1_200, 1000, PriceInputs(token0_price=10 ** 18, token1_price=10 ** 18)
        )

        assert result.positions[0].common_amount == 60
