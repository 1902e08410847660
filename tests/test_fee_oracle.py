"""
Tests for the tiered fee oracle.

Run with: pytest tests/ -v
"""

import sys
import random
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Config
from chain_client import FeeParameters, BlockInfo
from fee_oracle import (
    FeeCache,
    FeeOracle,
    FeeQuote,
    NetworkFeeStrategy,
    LatestBlockFeeStrategy,
    StaticFeeStrategy,
    SOURCE_NETWORK,
    SOURCE_LATEST_BLOCK,
    SOURCE_STATIC,
)
from utils import FeeEstimationError

GWEI = 10 ** 9


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return Config(
        gas_multiplier=1.0,
        min_gas_price_gwei=1,
        max_gas_price_gwei=50,
        fallback_priority_fee_gwei=2,
        fallback_max_fee_gwei=50,
        fee_cache_ttl_seconds=300,
    )


@pytest.fixture
def client():
    client = Mock()
    client.get_fee_parameters = Mock(return_value=FeeParameters(
        priority_fee=2 * GWEI,
        max_fee=3 * GWEI,
        gas_price=3 * GWEI,
        last_base_fee=4 * GWEI,
    ))
    client.get_latest_block = Mock(return_value=BlockInfo(number=100, base_fee=10 * GWEI))
    return client


def make_oracle(config, client, clock):
    return FeeOracle.from_config(config, client, clock=clock)


class TestNetworkTier:
    """Primary tier: node fee data with floor, multiplier and bounds."""

    def test_max_fee_raised_to_one_and_a_half_base_fee(self, config, client, clock):
        """maxFee 3 < 1.5 x baseFee 4, so it becomes 6; priority stays 2."""
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 2 * GWEI
        assert quote.max_fee == 6 * GWEI
        assert quote.source == SOURCE_NETWORK
        assert quote.observed_at == clock.now

    def test_max_fee_never_lowered_by_base_fee(self, config, client, clock):
        client.get_fee_parameters.return_value = FeeParameters(
            priority_fee=2 * GWEI, max_fee=20 * GWEI, last_base_fee=4 * GWEI
        )
        quote = make_oracle(config, client, clock).get_fee()
        assert quote.max_fee == 20 * GWEI

    def test_gas_price_used_without_eip1559(self, config, client, clock):
        client.get_fee_parameters.return_value = FeeParameters(gas_price=5 * GWEI)
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 5 * GWEI
        assert quote.max_fee == 5 * GWEI

    def test_multiplier_truncated_to_two_decimals(self, config, client, clock):
        config.gas_multiplier = 1.239
        config.max_gas_price_gwei = 1000
        client.get_fee_parameters.return_value = FeeParameters(
            priority_fee=10 * GWEI, max_fee=100 * GWEI
        )
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 10 * GWEI * 123 // 100
        assert quote.max_fee == 100 * GWEI * 123 // 100

    def test_values_clamped_into_bounds(self, config, client, clock):
        client.get_fee_parameters.return_value = FeeParameters(
            priority_fee=GWEI // 10, max_fee=80 * GWEI
        )
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 1 * GWEI
        assert quote.max_fee == 50 * GWEI

    def test_max_fee_not_below_priority_fee(self, config, client, clock):
        client.get_fee_parameters.return_value = FeeParameters(
            priority_fee=60 * GWEI, max_fee=40 * GWEI
        )
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 50 * GWEI
        assert quote.max_fee == 50 * GWEI

    def test_no_fee_data_is_a_failure(self, client):
        client.get_fee_parameters.return_value = FeeParameters()
        strategy = NetworkFeeStrategy(client, 1.0, GWEI, 50 * GWEI)

        estimate = strategy.attempt(0.0)
        assert not estimate.ok
        assert "Unable to get gas price" in estimate.error

    def test_results_always_within_bounds(self, config, clock):
        """Random node data never produces a quote outside the configured bounds."""
        rng = random.Random(1234)
        min_fee, max_cap = 1 * GWEI, 50 * GWEI

        for _ in range(300):
            config.gas_multiplier = rng.choice([0.5, 1.0, 1.1, 1.25, 3.0])
            params = FeeParameters(
                priority_fee=rng.choice([None, rng.randint(1, 200 * GWEI)]),
                max_fee=rng.choice([None, rng.randint(1, 200 * GWEI)]),
                gas_price=rng.randint(1, 200 * GWEI),
                last_base_fee=rng.choice([None, rng.randint(1, 200 * GWEI)]),
            )
            client = Mock(get_fee_parameters=Mock(return_value=params))
            quote = make_oracle(config, client, clock).get_fee()

            assert quote.source == SOURCE_NETWORK
            assert min_fee <= quote.priority_fee <= quote.max_fee <= max_cap


class TestFallbackTiers:
    """Secondary and static tiers."""

    def test_latest_block_tier_after_network_failure(self, config, client, clock):
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.source == SOURCE_LATEST_BLOCK
        assert quote.priority_fee == 10 * GWEI * 20 // 100
        assert quote.max_fee == 10 * GWEI * 150 // 100

    def test_latest_block_tier_skips_multiplier_and_bounds(self, config, client, clock):
        config.gas_multiplier = 2.0
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        client.get_latest_block.return_value = BlockInfo(number=1, base_fee=100 * GWEI)
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.priority_fee == 20 * GWEI
        assert quote.max_fee == 150 * GWEI

    def test_static_tier_when_block_has_no_base_fee(self, config, client, clock):
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        client.get_latest_block.return_value = BlockInfo(number=1, base_fee=None)
        quote = make_oracle(config, client, clock).get_fee()

        assert quote.source == SOURCE_STATIC
        assert quote.priority_fee == 2 * GWEI
        assert quote.max_fee == 50 * GWEI

    def test_static_tier_when_both_queries_fail(self, config, client, clock):
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        client.get_latest_block.side_effect = TimeoutError("timeout")
        oracle = make_oracle(config, client, clock)
        quote = oracle.get_fee()

        assert quote == FeeQuote(2 * GWEI, 50 * GWEI, clock.now, SOURCE_STATIC)
        assert [e.strategy for e in oracle.last_estimates] == [
            SOURCE_NETWORK, SOURCE_LATEST_BLOCK, SOURCE_STATIC
        ]
        assert [e.ok for e in oracle.last_estimates] == [False, False, True]

    def test_exhausted_strategy_list_raises(self, client, clock):
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        client.get_latest_block.side_effect = ConnectionError("rpc down")
        oracle = FeeOracle(
            [NetworkFeeStrategy(client, 1.0, GWEI, 50 * GWEI), LatestBlockFeeStrategy(client)],
            clock=clock,
        )

        with pytest.raises(FeeEstimationError):
            oracle.get_fee()

    def test_empty_strategy_list_rejected(self):
        with pytest.raises(ValueError):
            FeeOracle([])


class TestCache:
    """TTL cache behaviour."""

    def test_second_call_within_ttl_reuses_quote(self, config, client, clock):
        oracle = make_oracle(config, client, clock)
        first = oracle.get_fee()
        clock.now += 299
        second = oracle.get_fee()

        assert first == second
        assert client.get_fee_parameters.call_count == 1

    def test_quote_refreshed_after_ttl(self, config, client, clock):
        oracle = make_oracle(config, client, clock)
        oracle.get_fee()
        clock.now += 300
        refreshed = oracle.get_fee()

        assert client.get_fee_parameters.call_count == 2
        assert refreshed.observed_at == clock.now

    def test_fallback_quote_is_cached(self, config, client, clock):
        client.get_fee_parameters.side_effect = ConnectionError("rpc down")
        oracle = make_oracle(config, client, clock)
        first = oracle.get_fee()
        clock.now += 10
        second = oracle.get_fee()

        assert second is first
        assert client.get_fee_parameters.call_count == 1
        assert client.get_latest_block.call_count == 1

    def test_shared_cache_object_is_updated(self, config, client, clock):
        cache = FeeCache()
        oracle = FeeOracle.from_config(config, client, cache=cache, clock=clock)
        quote = oracle.get_fee()

        assert cache.quote is quote
        assert cache.updated_at == clock.now

    def test_invalidate_forces_new_query(self, config, client, clock):
        oracle = make_oracle(config, client, clock)
        oracle.get_fee()
        oracle.invalidate()
        oracle.get_fee()

        assert client.get_fee_parameters.call_count == 2


def test_static_strategy_returns_configured_values():
    quote = StaticFeeStrategy(3, 7).estimate(42.0)
    assert quote == FeeQuote(3, 7, 42.0, SOURCE_STATIC)
