"""
Fee Oracle Module

Produces EIP-1559 fee quotes (priority fee / max fee, in wei) that are safe
to submit with. Estimation walks an ordered list of strategies and returns
the first one that succeeds:

1. Network fee data (eth_maxPriorityFeePerGas / eth_gasPrice / base fee),
   with a base-fee floor, a safety multiplier and min/max bounds.
2. The latest block's base fee (20% tip, 150% cap).
3. Static fallback values from the configuration.

Whatever tier answers, the quote is cached for ``ttl_seconds``.
"""

import time
from decimal import Decimal
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from config import Config
from utils import logger, FeeEstimationError, gwei_to_wei, format_gwei


SOURCE_NETWORK = "network"
SOURCE_LATEST_BLOCK = "latest_block"
SOURCE_STATIC = "static"


@dataclass(frozen=True)
class FeeQuote:
    """Priority fee and max fee per gas, in wei."""
    priority_fee: int
    max_fee: int
    observed_at: float
    source: str = SOURCE_NETWORK

    def to_dict(self) -> dict:
        return {
            "priority_fee": format_gwei(self.priority_fee),
            "max_fee": format_gwei(self.max_fee),
            "observed_at": self.observed_at,
            "source": self.source,
        }


@dataclass
class FeeCache:
    """Last fee quote and when it was stored. Owned by one scheduler."""
    quote: Optional[FeeQuote] = None
    updated_at: float = 0.0

    def get(self, now: float, ttl_seconds: float) -> Optional[FeeQuote]:
        if self.quote is None:
            return None
        if now - self.quote.observed_at < ttl_seconds:
            return self.quote
        return None

    def put(self, quote: FeeQuote):
        self.quote = quote
        self.updated_at = quote.observed_at

    def clear(self):
        self.quote = None
        self.updated_at = 0.0


@dataclass(frozen=True)
class FeeEstimate:
    """Outcome of one strategy: either a quote or the error that stopped it."""
    strategy: str
    quote: Optional[FeeQuote] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.quote is not None


class FeeStrategy:
    """Base class for a single fee estimation tier."""

    name = "base"

    def estimate(self, now: float) -> FeeQuote:
        raise NotImplementedError

    def attempt(self, now: float) -> FeeEstimate:
        """Run the strategy, folding any failure into the returned estimate."""
        try:
            return FeeEstimate(self.name, quote=self.estimate(now))
        except Exception as e:
            return FeeEstimate(self.name, error=f"{type(e).__name__}: {e}")


class NetworkFeeStrategy(FeeStrategy):
    """
    Primary tier: current fee parameters reported by the node.

    Uses priority/max fee when the node supports EIP-1559, otherwise the
    legacy gas price for both. The max fee is raised to 1.5x the last base
    fee, both values are scaled by the safety multiplier (truncated to two
    decimals) and clamped into [min_fee, max_fee_cap].
    """

    name = SOURCE_NETWORK

    def __init__(self, client, multiplier: float, min_fee: int, max_fee_cap: int):
        self.client = client
        self.multiplier_pct = int(Decimal(str(multiplier)) * 100)
        self.min_fee = min_fee
        self.max_fee_cap = max_fee_cap

    def _clamp(self, value: int) -> int:
        return max(self.min_fee, min(value, self.max_fee_cap))

    def estimate(self, now: float) -> FeeQuote:
        params = self.client.get_fee_parameters()

        priority_fee = params.priority_fee
        max_fee = params.max_fee

        if not priority_fee or not max_fee:
            if not params.gas_price:
                raise FeeEstimationError("Unable to get gas price from network")
            priority_fee = params.gas_price
            max_fee = params.gas_price

        if params.last_base_fee:
            min_max_fee = params.last_base_fee * 150 // 100
            if max_fee < min_max_fee:
                max_fee = min_max_fee

        priority_fee = priority_fee * self.multiplier_pct // 100
        max_fee = max_fee * self.multiplier_pct // 100

        priority_fee = self._clamp(priority_fee)
        max_fee = self._clamp(max_fee)

        # A tip above the cap would be rejected by the node
        max_fee = max(max_fee, priority_fee)

        return FeeQuote(priority_fee, max_fee, now, self.name)


class LatestBlockFeeStrategy(FeeStrategy):
    """Secondary tier: 20% / 150% of the latest block's base fee."""

    name = SOURCE_LATEST_BLOCK

    def __init__(self, client):
        self.client = client

    def estimate(self, now: float) -> FeeQuote:
        block = self.client.get_latest_block()
        if block is None or not block.base_fee:
            raise FeeEstimationError("Latest block has no base fee")

        base_fee = block.base_fee
        return FeeQuote(base_fee * 20 // 100, base_fee * 150 // 100, now, self.name)


class StaticFeeStrategy(FeeStrategy):
    """Last tier: fixed values from the configuration."""

    name = SOURCE_STATIC

    def __init__(self, priority_fee: int, max_fee: int):
        self.priority_fee = priority_fee
        self.max_fee = max_fee

    def estimate(self, now: float) -> FeeQuote:
        return FeeQuote(self.priority_fee, self.max_fee, now, self.name)


def default_strategies(config: Config, client) -> List[FeeStrategy]:
    """Build the three-tier strategy list from configuration."""
    return [
        NetworkFeeStrategy(
            client,
            multiplier=config.gas_multiplier,
            min_fee=gwei_to_wei(config.min_gas_price_gwei),
            max_fee_cap=gwei_to_wei(config.max_gas_price_gwei),
        ),
        LatestBlockFeeStrategy(client),
        StaticFeeStrategy(
            gwei_to_wei(config.fallback_priority_fee_gwei),
            gwei_to_wei(config.fallback_max_fee_gwei),
        ),
    ]


class FeeOracle:
    """Cached, tiered fee estimation."""

    def __init__(
        self,
        strategies: Sequence[FeeStrategy],
        ttl_seconds: float = 300,
        cache: Optional[FeeCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not strategies:
            raise ValueError("FeeOracle needs at least one strategy")
        self.strategies = list(strategies)
        self.ttl_seconds = ttl_seconds
        self.cache = cache if cache is not None else FeeCache()
        self.clock = clock
        self.last_estimates: List[FeeEstimate] = []

    @classmethod
    def from_config(cls, config: Config, client, cache: Optional[FeeCache] = None,
                    clock: Callable[[], float] = time.time) -> "FeeOracle":
        return cls(
            default_strategies(config, client),
            ttl_seconds=config.fee_cache_ttl_seconds,
            cache=cache,
            clock=clock,
        )

    def get_fee(self) -> FeeQuote:
        """Return a cached quote when fresh, otherwise estimate a new one."""
        now = self.clock()

        cached = self.cache.get(now, self.ttl_seconds)
        if cached is not None:
            return cached

        self.last_estimates = []
        for strategy in self.strategies:
            estimate = strategy.attempt(now)
            self.last_estimates.append(estimate)

            if estimate.ok:
                quote = estimate.quote
                self.cache.put(quote)
                logger.info(
                    f"Gas price updated ({quote.source}) - "
                    f"Priority: {format_gwei(quote.priority_fee)}, Max: {format_gwei(quote.max_fee)}"
                )
                return quote

            logger.warning(f"Fee estimation via {estimate.strategy} failed: {estimate.error}")

        raise FeeEstimationError(
            "All fee estimation strategies failed: "
            + "; ".join(f"{e.strategy}: {e.error}" for e in self.last_estimates)
        )

    def invalidate(self):
        """Drop the cached quote so the next call queries the network."""
        self.cache.clear()
