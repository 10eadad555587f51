from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from market_map_updater.config import UpsertConfig  # noqa: E402
from market_map_updater.errors import DependencyError, InvalidMarketMapError, MarketNotFoundError  # noqa: E402
from market_map_updater.models import MarketMap  # noqa: E402
from market_map_updater.upserts import (  # noqa: E402
    UpsertGenerator,
    get_market_map_upserts,
    order_normalize_markets_first,
    prune_normalize_by_pairs,
    remove_restricted,
)
from tests.helpers import build_market, eth_usd_market, market_map, provider, usdt_usd_market  # noqa: E402


class PruneTests(unittest.TestCase):
    def test_drops_providers_normalizing_by_disabled_market(self) -> None:
        btc = build_market(
            "BTC/USD",
            provider("kraken", "XXBTZUSD"),
            provider("okx", "BTC-USDT", normalize="USDT/USD"),
            enabled=True,
        )
        pruned = prune_normalize_by_pairs(market_map(btc, usdt_usd_market(enabled=False)))
        self.assertEqual([p.name for p in pruned.markets["BTC/USD"].provider_configs], ["kraken"])

    def test_excludes_market_below_min_provider_count(self) -> None:
        pruned = prune_normalize_by_pairs(market_map(eth_usd_market(enabled=True), usdt_usd_market(enabled=False)))
        self.assertNotIn("ETH/USD", pruned)
        self.assertIn("USDT/USD", pruned)

    def test_disabled_markets_untouched(self) -> None:
        mm = market_map(eth_usd_market(enabled=False), usdt_usd_market(enabled=False))
        self.assertEqual(prune_normalize_by_pairs(mm), mm)

    def test_missing_normalize_market(self) -> None:
        with self.assertRaises(DependencyError) as ctx:
            prune_normalize_by_pairs(market_map(eth_usd_market(enabled=True)))
        self.assertIn("unable to find normalize for USDT/USD", str(ctx.exception))


class GetUpsertsTests(unittest.TestCase):
    def test_equal_maps_short_circuit(self) -> None:
        mm = market_map(build_market("BTC/USD"))
        self.assertEqual(get_market_map_upserts(mm, mm.copy()), [])

    def test_unchanged_markets_skipped(self) -> None:
        btc = build_market("BTC/USD")
        actual = market_map(btc)
        generated = market_map(btc, build_market("SOL/USD"))
        self.assertEqual([m.key for m in get_market_map_upserts(actual, generated)], ["SOL/USD"])

    def test_pulls_in_missing_normalize_dependency(self) -> None:
        generated = market_map(eth_usd_market(), usdt_usd_market())
        upserts = get_market_map_upserts(MarketMap(), generated)
        keys = [m.key for m in upserts]
        self.assertEqual(sorted(keys), ["ETH/USD", "USDT/USD"])
        self.assertEqual(len(keys), len(set(keys)))
        self.assertLess(keys.index("USDT/USD"), keys.index("ETH/USD"))

    def test_dependency_missing_everywhere(self) -> None:
        with self.assertRaises(MarketNotFoundError) as ctx:
            get_market_map_upserts(MarketMap(), market_map(eth_usd_market()))
        self.assertEqual(ctx.exception.ticker, "USDT/USD")

    def test_dependency_already_on_chain(self) -> None:
        actual = market_map(usdt_usd_market())
        upserts = get_market_map_upserts(actual, market_map(eth_usd_market(), usdt_usd_market()))
        self.assertEqual([m.key for m in upserts], ["ETH/USD"])


class OrderingTests(unittest.TestCase):
    def test_normalize_market_placed_first(self) -> None:
        ordered = order_normalize_markets_first([eth_usd_market(), build_market("BTC/USD"), usdt_usd_market()])
        self.assertEqual([m.key for m in ordered], ["USDT/USD", "ETH/USD", "BTC/USD"])

    def test_chained_targets(self) -> None:
        pepe = build_market("PEPE/USD", provider("okx", "PEPE-ETH", normalize="ETH/USD"))
        ordered = order_normalize_markets_first([pepe, eth_usd_market(), usdt_usd_market()])
        keys = [m.key for m in ordered]
        self.assertLess(keys.index("USDT/USD"), keys.index("ETH/USD"))
        self.assertLess(keys.index("ETH/USD"), keys.index("PEPE/USD"))

    def test_targets_not_in_list_ignored(self) -> None:
        ordered = order_normalize_markets_first([eth_usd_market(), build_market("BTC/USD")])
        self.assertEqual([m.key for m in ordered], ["ETH/USD", "BTC/USD"])

    def test_empty(self) -> None:
        self.assertEqual(order_normalize_markets_first([]), [])


class UpsertGeneratorTests(unittest.TestCase):
    def test_restricted_markets_removed(self) -> None:
        upserts = [build_market("BTC/USD"), build_market("SOL/USD")]
        self.assertEqual([m.key for m in remove_restricted(upserts, ["SOL/USD"])], ["BTC/USD"])

    def test_generate_orders_and_restricts(self) -> None:
        generated = market_map(eth_usd_market(), usdt_usd_market(), build_market("SOL/USD"))
        generator = UpsertGenerator(UpsertConfig(restricted_markets=("SOL/USD",)), generated, MarketMap())
        upserts = generator.generate_upserts()
        self.assertEqual([m.key for m in upserts], ["USDT/USD", "ETH/USD"])

    def test_invalid_markets_dropped_before_diff(self) -> None:
        broken = build_market("BTC/USD", provider("okx", "BTC-USDT"), min_provider_count=3)
        generated = market_map(broken, build_market("SOL/USD"))
        upserts = UpsertGenerator(UpsertConfig(), generated, MarketMap()).generate_upserts()
        self.assertEqual([m.key for m in upserts], ["SOL/USD"])

    def test_no_upserts(self) -> None:
        mm = market_map(build_market("BTC/USD"))
        self.assertEqual(UpsertGenerator(UpsertConfig(), mm, mm.copy()).generate_upserts(), [])

    def test_restricting_a_dependency_fails_validation(self) -> None:
        generated = market_map(eth_usd_market(), usdt_usd_market())
        generator = UpsertGenerator(UpsertConfig(restricted_markets=("USDT/USD",)), generated, MarketMap())
        with self.assertRaises(InvalidMarketMapError) as ctx:
            generator.generate_upserts()
        self.assertIn("generated invalid upserts in market map", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
