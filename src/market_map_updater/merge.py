from __future__ import annotations

from dataclasses import dataclass, replace
import logging

from market_map_updater.models import Market, MarketMap, ProviderConfig

LOGGER = logging.getLogger("market_map_updater")


@dataclass(frozen=True)
class Options:
    update_enabled: bool = False
    overwrite_providers: bool = False
    existing_only: bool = False
    disable_defi_market_merging: bool = False


def append_to_providers(
    actual: tuple[ProviderConfig, ...], generated: tuple[ProviderConfig, ...]
) -> tuple[ProviderConfig, ...]:
    seen = {provider.name for provider in actual}
    merged = list(actual)
    for provider in generated:
        if provider.name in seen:
            continue
        seen.add(provider.name)
        merged.append(provider)
    return tuple(merged)


def _merge_market(actual: Market, generated: Market, options: Options) -> Market:
    if actual.enabled and not options.update_enabled:
        return actual

    ticker = replace(
        generated.ticker,
        enabled=actual.ticker.enabled,
        min_provider_count=actual.ticker.min_provider_count,
        decimals=actual.ticker.decimals,
    )
    if options.overwrite_providers:
        providers = generated.provider_configs
    else:
        providers = append_to_providers(actual.provider_configs, generated.provider_configs)
    return Market(ticker=ticker, provider_configs=providers)


def combine_market_maps(
    actual: MarketMap | None,
    generated: MarketMap | None,
    options: Options,
) -> tuple[MarketMap, list[str]]:
    actual = actual if actual is not None else MarketMap()
    generated = generated if generated is not None else MarketMap()

    combined: dict[str, Market] = {}
    for key, generated_market in generated.markets.items():
        actual_market = actual.markets.get(key)
        if actual_market is None:
            if options.existing_only:
                LOGGER.debug("skipping market absent on chain ticker=%s existing_only=true", key)
                continue
            combined[key] = replace(
                generated_market,
                ticker=replace(generated_market.ticker, enabled=False),
            )
            continue
        combined[key] = _merge_market(actual_market, generated_market, options)

    removals: list[str] = []
    for key, actual_market in actual.markets.items():
        if key in generated.markets:
            continue
        if actual_market.enabled:
            LOGGER.warning("enabled market missing from generated map, keeping on chain state ticker=%s", key)
            combined[key] = actual_market
            continue
        removals.append(key)

    removals.sort()
    LOGGER.info(
        "combined market maps actual=%d generated=%d combined=%d removals=%d",
        len(actual),
        len(generated),
        len(combined),
        len(removals),
    )
    return MarketMap(markets=combined), removals
