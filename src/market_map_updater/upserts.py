from __future__ import annotations

from dataclasses import replace
import logging
from typing import Iterable

from market_map_updater.config import UpsertConfig
from market_map_updater.errors import (
    DependencyError,
    InvalidMarketMapError,
    MarketNotFoundError,
    SchemaValidationError,
)
from market_map_updater.models import Market, MarketMap

LOGGER = logging.getLogger("market_map_updater")


def prune_normalize_by_pairs(generated: MarketMap) -> MarketMap:
    pruned = dict(generated.markets)
    for key in sorted(generated.markets):
        market = generated.markets[key]
        if not market.enabled:
            continue
        kept = []
        for provider in market.provider_configs:
            if provider.normalize_by_pair is None:
                kept.append(provider)
                continue
            target_key = str(provider.normalize_by_pair)
            target = generated.markets.get(target_key)
            if target is None:
                raise DependencyError(f"unable to find normalize for {target_key}")
            if target.enabled:
                kept.append(provider)
            else:
                LOGGER.info("removing provider with disabled normalize pair market=%s provider=%s normalize=%s", key, provider.name, target_key)
        if len(kept) >= market.ticker.min_provider_count:
            pruned[key] = replace(market, provider_configs=tuple(kept))
        else:
            del pruned[key]
            LOGGER.debug(
                "excluding pruned market market=%s providers=%d required=%d",
                key,
                len(kept),
                market.ticker.min_provider_count,
            )
    return MarketMap(markets=pruned)


def get_market_map_upserts(actual: MarketMap, generated: MarketMap) -> list[Market]:
    upserts: list[Market] = []
    if actual == generated:
        LOGGER.info("generated market map equals current market map, nothing to upsert")
        return upserts

    working = actual.copy()
    generated = prune_normalize_by_pairs(generated)
    for key in sorted(generated.markets):
        market = generated.markets[key]
        current = working.markets.get(key)
        if current is not None and current == market:
            continue
        for target_key in market.normalize_targets():
            if target_key in working.markets:
                continue
            target = generated.markets.get(target_key)
            if target is None:
                LOGGER.error("normalize pair market missing from generated map market=%s normalize=%s", key, target_key)
                raise MarketNotFoundError(target_key)
            upserts.append(target)
            working.markets[target_key] = target
        upserts.append(market)
        working.markets[key] = market

    try:
        working.validate_basic()
    except InvalidMarketMapError as exc:
        LOGGER.error("updated market map is invalid err=%s", exc)
        raise InvalidMarketMapError(exc.errors, prefix="updated market map is invalid") from exc
    return upserts


def remove_restricted(upserts: list[Market], restricted: Iterable[str]) -> list[Market]:
    blocked = set(restricted)
    if not blocked:
        return list(upserts)
    kept = []
    for market in upserts:
        if market.key in blocked:
            LOGGER.info("dropping restricted market from upserts ticker=%s", market.key)
            continue
        kept.append(market)
    return kept


def order_normalize_markets_first(upserts: list[Market]) -> list[Market]:
    by_key = {market.key: market for market in upserts}
    targets: list[str] = []
    for market in upserts:
        for target_key in market.normalize_targets():
            if target_key in by_key and target_key not in targets:
                targets.append(target_key)

    output: list[Market] = []
    placed: set[str] = set()

    def place(key: str, visiting: set[str]) -> None:
        if key in placed or key in visiting:
            return
        visiting.add(key)
        # a target that itself normalizes by another target goes after it
        for target_key in by_key[key].normalize_targets():
            if target_key in by_key:
                place(target_key, visiting)
        visiting.discard(key)
        placed.add(key)
        output.append(by_key[key])

    for key in targets:
        place(key, set())
    for market in upserts:
        if market.key not in placed:
            placed.add(market.key)
            output.append(market)

    if len(output) != len(by_key):
        raise DependencyError(f"invalid reorder: expected {len(by_key)} outputs, got {len(output)}")
    return output


class UpsertGenerator:
    def __init__(self, config: UpsertConfig, generated: MarketMap, current: MarketMap) -> None:
        self.config = config
        self.generated = generated.valid_subset()
        self.current = current.valid_subset()
        dropped_generated = len(generated) - len(self.generated)
        dropped_current = len(current) - len(self.current)
        if dropped_generated or dropped_current:
            LOGGER.warning(
                "dropped invalid markets before diff generated=%d current=%d",
                dropped_generated,
                dropped_current,
            )

    def generate_upserts(self) -> list[Market]:
        upserts = get_market_map_upserts(self.current, self.generated)
        upserts = remove_restricted(upserts, self.config.restricted_markets)
        LOGGER.info("determined upserts count=%d", len(upserts))
        upserts = order_normalize_markets_first(upserts)
        if not upserts:
            LOGGER.info("no upserts found")
            return upserts

        errors: list[Exception] = []
        for market in upserts:
            try:
                market.validate_basic()
            except SchemaValidationError as exc:
                errors.append(exc)
        if errors:
            raise InvalidMarketMapError(errors, prefix=f"generated {len(errors)} invalid market(s)")

        merged = self.current.copy()
        for market in upserts:
            merged.markets[market.key] = market
        try:
            merged.validate_basic()
        except InvalidMarketMapError as exc:
            raise InvalidMarketMapError(exc.errors, prefix="generated invalid upserts in market map") from exc
        return upserts
