from __future__ import annotations

from dataclasses import replace
import json
import logging
import threading

from market_map_updater.clients_dydx import DydxClient
from market_map_updater.config import ChainConfig
from market_map_updater.errors import CancelledError, OverrideError
from market_map_updater.merge import Options, combine_market_maps
from market_map_updater.models import (
    PERPETUAL_MARKET_TYPE_CROSS,
    CurrencyPair,
    Market,
    MarketMap,
    Perpetual,
)

LOGGER = logging.getLogger("market_map_updater")

VENUE_COINMARKETCAP = "coinmarketcap"


def aggregate_id(market: Market, venue: str = VENUE_COINMARKETCAP) -> str | None:
    raw = market.ticker.metadata_json
    if not raw:
        return None
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.debug("unparseable ticker metadata ticker=%s", market.key)
        return None
    if not isinstance(metadata, dict):
        return None
    for entry in metadata.get("aggregate_ids") or []:
        if not isinstance(entry, dict):
            continue
        if str(entry.get("venue") or "") != venue:
            continue
        ident = entry.get("ID", entry.get("id"))
        if ident is None or str(ident) == "":
            return None
        return str(ident)
    return None


def aggregate_id_mapping(market_map: MarketMap, include_defi: bool) -> dict[str, str]:
    """Map external aggregator ID -> market key, dropping IDs claimed by more than one key."""
    mapping: dict[str, str] = {}
    ambiguous: set[str] = set()
    for key in sorted(market_map.markets):
        market = market_map.markets[key]
        if market.ticker.currency_pair.is_defi and not include_defi:
            continue
        ident = aggregate_id(market)
        if ident is None:
            continue
        if ident in ambiguous:
            continue
        if ident in mapping:
            LOGGER.warning("ignoring aggregate id shared by multiple markets id=%s tickers=%s,%s", ident, mapping[ident], key)
            del mapping[ident]
            ambiguous.add(ident)
            continue
        mapping[ident] = key
    return mapping


def consolidate_defi_markets(actual: MarketMap, generated: MarketMap, include_defi: bool = True) -> MarketMap:
    actual_ids = aggregate_id_mapping(actual, include_defi)
    generated_ids = aggregate_id_mapping(generated, include_defi)

    consolidated = dict(generated.markets)
    for ident, generated_key in generated_ids.items():
        actual_key = actual_ids.get(ident)
        if actual_key is None or actual_key == generated_key:
            continue
        generated_pair = generated.markets[generated_key].ticker.currency_pair
        pair = actual.markets[actual_key].ticker.currency_pair
        # only a defi ticker and a plain ticker quoted in the same asset name one market
        if generated_pair.is_defi == pair.is_defi or generated_pair.quote != pair.quote:
            continue
        if actual_key in consolidated:
            LOGGER.warning(
                "cannot consolidate market, target key already generated generated=%s actual=%s",
                generated_key,
                actual_key,
            )
            continue
        market = consolidated.pop(generated_key)
        consolidated[actual_key] = replace(market, ticker=replace(market.ticker, currency_pair=pair))
        LOGGER.debug("consolidated ticker generated=%s actual=%s id=%s", generated_key, actual_key, ident)
    return MarketMap(markets=consolidated)


class MarketMapOverride:
    def override_generated_markets(
        self,
        actual: MarketMap,
        generated: MarketMap,
        options: Options,
        cancel: threading.Event | None = None,
    ) -> tuple[MarketMap, list[str]]:
        raise NotImplementedError


class CoreOverride(MarketMapOverride):
    def override_generated_markets(
        self,
        actual: MarketMap,
        generated: MarketMap,
        options: Options,
        cancel: threading.Event | None = None,
    ) -> tuple[MarketMap, list[str]]:
        LOGGER.info(
            "overriding markets update_enabled=%s overwrite_providers=%s existing_only=%s disable_defi_merging=%s",
            options.update_enabled,
            options.overwrite_providers,
            options.existing_only,
            options.disable_defi_market_merging,
        )
        actual = actual if actual is not None else MarketMap()
        generated = generated if generated is not None else MarketMap()
        consolidated = consolidate_defi_markets(
            actual,
            generated,
            include_defi=not options.disable_defi_market_merging,
        )
        return combine_market_maps(actual, consolidated, options)


class DydxOverride(CoreOverride):
    def __init__(self, client) -> None:
        if client is None:
            raise OverrideError("perpetuals client must not be None")
        self.client = client

    def override_generated_markets(
        self,
        actual: MarketMap,
        generated: MarketMap,
        options: Options,
        cancel: threading.Event | None = None,
    ) -> tuple[MarketMap, list[str]]:
        actual = actual if actual is not None else MarketMap()
        combined, removals = super().override_generated_markets(actual, generated, options, cancel)
        if cancel is not None and cancel.is_set():
            raise CancelledError("override cancelled before perpetuals lookup")

        perpetuals = self.client.all_perpetuals(cancel=cancel)
        if perpetuals is None:
            raise OverrideError("nil perpetuals response")
        LOGGER.info("fetched perpetuals count=%d", len(perpetuals))

        markets = dict(combined.markets)
        for perpetual in perpetuals:
            key = self._perpetual_key(perpetual)
            actual_market = actual.markets.get(key)
            if actual_market is None:
                LOGGER.error("actual market for perpetual not found ticker=%s", key)
                raise OverrideError(f"actual market for cross-margined perpetual {key} not found")
            combined_market = markets.get(key)
            if combined_market is None:
                LOGGER.debug("perpetual market not in combined map ticker=%s", key)
                continue
            if perpetual.market_type != PERPETUAL_MARKET_TYPE_CROSS:
                LOGGER.debug("perpetual market is not cross margined ticker=%s type=%s", key, perpetual.market_type)
                continue
            if combined_market != actual_market:
                LOGGER.debug("resetting cross margined market to on chain state ticker=%s", key)
            markets[key] = actual_market
        return MarketMap(markets=markets), removals

    @staticmethod
    def _perpetual_key(perpetual: Perpetual) -> str:
        try:
            pair: CurrencyPair = perpetual.currency_pair()
        except ValueError as exc:
            raise OverrideError(f"invalid perpetual ticker {perpetual.ticker!r}: {exc}") from exc
        return str(pair)


def new_override(chain_config: ChainConfig, client=None) -> MarketMapOverride:
    if not chain_config.dydx:
        return CoreOverride()
    if client is None:
        client = DydxClient(chain_config.rest_address)
    return DydxOverride(client)
