from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from market_map_updater.merge import Options, append_to_providers, combine_market_maps  # noqa: E402
from market_map_updater.models import MarketMap  # noqa: E402
from tests.helpers import build_market, market_map, provider  # noqa: E402


class CombineMarketMapsTests(unittest.TestCase):
    def test_disabled_actual_only_market_is_removed(self) -> None:
        actual = market_map(build_market("BTC/USD", provider("test", "BTC-USD")))
        combined, removals = combine_market_maps(actual, MarketMap(), Options())
        self.assertEqual(len(combined), 0)
        self.assertEqual(removals, ["BTC/USD"])

    def test_providers_appended_by_default(self) -> None:
        actual = market_map(build_market("BTC/USD", provider("test", "BTC-USD")))
        generated = market_map(build_market("BTC/USD", provider("test_new", "BTC-USD")))
        combined, removals = combine_market_maps(actual, generated, Options())
        names = [p.name for p in combined.markets["BTC/USD"].provider_configs]
        self.assertEqual(names, ["test", "test_new"])
        self.assertEqual(removals, [])

    def test_append_skips_known_provider_names(self) -> None:
        merged = append_to_providers(
            (provider("okx", "BTC-USDT"),),
            (provider("okx", "BTC-USDC"), provider("kraken", "XXBTZUSD")),
        )
        self.assertEqual([(p.name, p.off_chain_ticker) for p in merged], [("okx", "BTC-USDT"), ("kraken", "XXBTZUSD")])

    def test_overwrite_providers(self) -> None:
        actual = market_map(build_market("BTC/USD", provider("test", "BTC-USD")))
        generated = market_map(build_market("BTC/USD", provider("test_new", "BTC-USD")))
        combined, _ = combine_market_maps(actual, generated, Options(overwrite_providers=True))
        self.assertEqual([p.name for p in combined.markets["BTC/USD"].provider_configs], ["test_new"])

    def test_enabled_market_kept_without_update_enabled(self) -> None:
        on_chain = build_market("BTC/USD", provider("test", "BTC-USD"), enabled=True)
        generated = market_map(build_market("BTC/USD", provider("test_new", "BTC-USD"), decimals=5))
        combined, _ = combine_market_maps(market_map(on_chain), generated, Options())
        self.assertEqual(combined.markets["BTC/USD"], on_chain)

    def test_update_enabled_keeps_protected_ticker_fields(self) -> None:
        on_chain = build_market(
            "BTC/USD",
            provider("test", "BTC-USD"),
            enabled=True,
            decimals=8,
            min_provider_count=1,
            metadata_json="old",
        )
        generated = build_market(
            "BTC/USD",
            provider("test_new", "BTC-USD"),
            provider("other", "BTC-USD"),
            decimals=3,
            min_provider_count=2,
            metadata_json="new",
        )
        combined, _ = combine_market_maps(market_map(on_chain), market_map(generated), Options(update_enabled=True))
        ticker = combined.markets["BTC/USD"].ticker
        self.assertTrue(ticker.enabled)
        self.assertEqual(ticker.decimals, 8)
        self.assertEqual(ticker.min_provider_count, 1)
        self.assertEqual(ticker.metadata_json, "new")
        self.assertEqual(len(combined.markets["BTC/USD"].provider_configs), 3)

    def test_new_markets_are_disabled(self) -> None:
        generated = market_map(build_market("SOL/USD", enabled=True))
        combined, removals = combine_market_maps(MarketMap(), generated, Options())
        self.assertFalse(combined.markets["SOL/USD"].enabled)
        self.assertEqual(removals, [])

    def test_existing_only_skips_new_markets(self) -> None:
        actual = market_map(build_market("BTC/USD"))
        generated = market_map(build_market("BTC/USD"), build_market("SOL/USD"))
        combined, _ = combine_market_maps(actual, generated, Options(existing_only=True))
        self.assertEqual(sorted(combined.markets), ["BTC/USD"])

    def test_enabled_actual_only_market_is_kept(self) -> None:
        on_chain = build_market("BTC/USD", enabled=True)
        combined, removals = combine_market_maps(market_map(on_chain), MarketMap(), Options())
        self.assertEqual(combined.markets["BTC/USD"], on_chain)
        self.assertEqual(removals, [])

    def test_removals_sorted(self) -> None:
        actual = market_map(build_market("SOL/USD"), build_market("ADA/USD"), build_market("DOGE/USD"))
        _, removals = combine_market_maps(actual, MarketMap(), Options())
        self.assertEqual(removals, ["ADA/USD", "DOGE/USD", "SOL/USD"])

    def test_none_inputs_are_empty(self) -> None:
        combined, removals = combine_market_maps(None, None, Options())
        self.assertEqual(len(combined), 0)
        self.assertEqual(removals, [])

    def test_merge_is_idempotent(self) -> None:
        actual = market_map(build_market("BTC/USD", provider("test", "BTC-USD")), build_market("ETH/USD"))
        generated = market_map(build_market("BTC/USD", provider("test_new", "BTC-USD")), build_market("SOL/USD"))
        first, _ = combine_market_maps(actual, generated, Options())
        second, removals = combine_market_maps(first, generated, Options())
        self.assertEqual(first, second)
        self.assertEqual(removals, [])

    def test_inputs_not_mutated(self) -> None:
        actual = market_map(build_market("BTC/USD"))
        generated = market_map(build_market("SOL/USD"))
        combine_market_maps(actual, generated, Options())
        self.assertEqual(sorted(actual.markets), ["BTC/USD"])
        self.assertEqual(sorted(generated.markets), ["SOL/USD"])


if __name__ == "__main__":
    unittest.main()
