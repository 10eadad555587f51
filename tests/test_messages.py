from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from market_map_updater.config import VERSION_CONNECT, VERSION_SLINKY  # noqa: E402
from market_map_updater.errors import ConfigError, SizeLimitError  # noqa: E402
from market_map_updater.messages import (  # noqa: E402
    MsgRemoveMarkets,
    MsgUpsertMarkets,
    convert_removals_to_messages,
    convert_upserts_to_messages,
)
from market_map_updater.proto import MsgRemoveMarketsProto, MsgUpsertMarketsProto  # noqa: E402
from tests.helpers import build_market, dispatch_config  # noqa: E402


def _markets(count: int):
    return [build_market(f"COIN{i}/USD") for i in range(count)]


class ConvertUpsertsTests(unittest.TestCase):
    def test_zero_budget_rejects_market(self) -> None:
        tx_config = dispatch_config(max_bytes_per_tx=0).tx
        with self.assertRaises(SizeLimitError) as ctx:
            convert_upserts_to_messages(tx_config, VERSION_SLINKY, "authority", [build_market("BTC/USD")])
        self.assertEqual(ctx.exception.limit, 0)

    def test_all_fit_in_one_message(self) -> None:
        markets = _markets(3)
        msgs = convert_upserts_to_messages(dispatch_config().tx, VERSION_SLINKY, "authority", markets)
        self.assertEqual(len(msgs), 1)
        self.assertEqual(list(msgs[0].markets), markets)
        self.assertEqual(msgs[0].authority, "authority")

    def test_windows_respect_budget_and_order(self) -> None:
        markets = _markets(5)
        size = markets[0].size()
        self.assertTrue(all(m.size() == size for m in markets))
        tx_config = dispatch_config(max_bytes_per_tx=size * 2).tx
        msgs = convert_upserts_to_messages(tx_config, VERSION_SLINKY, "authority", markets)
        self.assertEqual([len(m.markets) for m in msgs], [2, 2, 1])
        flattened = [market for msg in msgs for market in msg.markets]
        self.assertEqual(flattened, markets)
        for msg in msgs:
            self.assertLessEqual(sum(m.size() for m in msg.markets), size * 2)

    def test_exact_fit_does_not_seal_early(self) -> None:
        markets = _markets(3)
        tx_config = dispatch_config(max_bytes_per_tx=markets[0].size() * 3).tx
        msgs = convert_upserts_to_messages(tx_config, VERSION_SLINKY, "authority", markets)
        self.assertEqual(len(msgs), 1)

    def test_empty_upserts(self) -> None:
        self.assertEqual(convert_upserts_to_messages(dispatch_config().tx, VERSION_SLINKY, "a", []), [])

    def test_type_urls_per_version(self) -> None:
        market = build_market("BTC/USD")
        slinky = convert_upserts_to_messages(dispatch_config().tx, VERSION_SLINKY, "a", [market])[0]
        connect = convert_upserts_to_messages(dispatch_config().tx, VERSION_CONNECT, "a", [market])[0]
        self.assertEqual(slinky.type_url, "/slinky.marketmap.v1.MsgUpsertMarkets")
        self.assertEqual(connect.type_url, "/connect.marketmap.v2.MsgUpsertMarkets")

    def test_unknown_version(self) -> None:
        with self.assertRaises(ConfigError):
            convert_upserts_to_messages(dispatch_config().tx, "oracle", "a", [build_market("BTC/USD")])

    def test_with_authority_copies(self) -> None:
        msg = MsgUpsertMarkets(version=VERSION_SLINKY, authority="", markets=())
        updated = msg.with_authority("cosmos1abc")
        self.assertEqual(updated.authority, "cosmos1abc")
        self.assertEqual(msg.authority, "")

    def test_encodes_authority_and_markets(self) -> None:
        msg = MsgUpsertMarkets(version=VERSION_CONNECT, authority="cosmos1abc", markets=tuple(_markets(2)))
        decoded = MsgUpsertMarketsProto.FromString(msg.encode())
        self.assertEqual(decoded.authority, "cosmos1abc")
        self.assertEqual([m.ticker.currency_pair.Base for m in decoded.markets], ["COIN0", "COIN1"])


class ConvertRemovalsTests(unittest.TestCase):
    def test_single_message_with_all_removals(self) -> None:
        msgs = convert_removals_to_messages(VERSION_CONNECT, "authority", ["ADA/USD", "DOGE/USD"])
        self.assertEqual(len(msgs), 1)
        self.assertIsInstance(msgs[0], MsgRemoveMarkets)
        self.assertEqual(msgs[0].type_url, "/connect.marketmap.v2.MsgRemoveMarkets")
        decoded = MsgRemoveMarketsProto.FromString(msgs[0].encode())
        self.assertEqual((decoded.authority, list(decoded.markets)), ("authority", ["ADA/USD", "DOGE/USD"]))

    def test_no_removals(self) -> None:
        self.assertEqual(convert_removals_to_messages(VERSION_SLINKY, "authority", []), [])


if __name__ == "__main__":
    unittest.main()
