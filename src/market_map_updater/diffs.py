from __future__ import annotations

from typing import Any

from market_map_updater.models import Market, MarketMap

_TICKER_FIELDS = ("decimals", "min_provider_count", "enabled", "metadata_json")
_PROVIDER_FIELDS = ("off_chain_ticker", "normalize_by_pair", "invert", "metadata_json")


def _field_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, bool, float)):
        return value
    return str(value)


def filter_market_updates(current: Market, updated: Market) -> dict[str, Any]:
    """Only the ticker and provider fields of ``updated`` that differ from ``current``."""
    ticker_changes: dict[str, Any] = {}
    for name in _TICKER_FIELDS:
        before = getattr(current.ticker, name)
        after = getattr(updated.ticker, name)
        if before != after:
            ticker_changes[name] = {"old": _field_value(before), "new": _field_value(after)}

    current_providers = {provider.name: provider for provider in current.provider_configs}
    updated_names = set()
    provider_changes: dict[str, Any] = {}
    for provider in updated.provider_configs:
        updated_names.add(provider.name)
        existing = current_providers.get(provider.name)
        if existing is None:
            provider_changes[provider.name] = {"added": provider.to_dict()}
            continue
        changes = {}
        for name in _PROVIDER_FIELDS:
            before = getattr(existing, name)
            after = getattr(provider, name)
            if before != after:
                changes[name] = {"old": _field_value(before), "new": _field_value(after)}
        if changes:
            provider_changes[provider.name] = changes
    for name in current_providers:
        if name not in updated_names:
            provider_changes[name] = {"removed": current_providers[name].to_dict()}

    payload: dict[str, Any] = {}
    if ticker_changes:
        payload["ticker"] = ticker_changes
    if provider_changes:
        payload["provider_configs"] = provider_changes
    return payload


def diff_market_maps(old: MarketMap, new: MarketMap) -> dict[str, Any]:
    diff: dict[str, Any] = {}
    for key in sorted(set(old.markets) | set(new.markets)):
        before = old.markets.get(key)
        after = new.markets.get(key)
        if before is None and after is not None:
            diff[key] = {"status": "added", "market": after.to_dict()}
        elif after is None and before is not None:
            diff[key] = {"status": "removed", "market": before.to_dict()}
        elif before is not None and after is not None and before != after:
            diff[key] = {"status": "changed", "changes": filter_market_updates(before, after)}
    return diff
