from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from market_map_updater.errors import InvalidMarketMapError, SchemaValidationError
from market_map_updater.proto import encode_market


PERPETUAL_MARKET_TYPE_UNSPECIFIED = "PERPETUAL_MARKET_TYPE_UNSPECIFIED"
PERPETUAL_MARKET_TYPE_CROSS = "PERPETUAL_MARKET_TYPE_CROSS"
PERPETUAL_MARKET_TYPE_ISOLATED = "PERPETUAL_MARKET_TYPE_ISOLATED"


def parse_int(raw: Any, default: int = 0) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"expected integer, got {raw!r}") from exc


@dataclass(frozen=True)
class CurrencyPair:
    base: str
    quote: str

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"

    @staticmethod
    def from_string(raw: str) -> "CurrencyPair":
        parts = str(raw).split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"incorrectly formatted currency pair: {raw!r}")
        return CurrencyPair(base=parts[0].upper(), quote=parts[1].upper())

    @property
    def is_defi(self) -> bool:
        return "," in self.base

    def validate(self) -> None:
        if not self.base or not self.quote:
            raise ValueError(f"empty base or quote in {self}")
        if self.quote != self.quote.upper():
            raise ValueError(f"quote {self.quote} must be upper case")
        if not self.is_defi:
            if self.base != self.base.upper():
                raise ValueError(f"base {self.base} must be upper case")
            return
        # SYMBOL,VENUE,ADDRESS
        parts = self.base.split(",")
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"defi base {self.base} must have form SYMBOL,VENUE,ADDRESS")
        if parts[0] != parts[0].upper():
            raise ValueError(f"defi base symbol {parts[0]} must be upper case")

    def to_dict(self) -> dict[str, str]:
        return {"Base": self.base, "Quote": self.quote}

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "CurrencyPair":
        base = raw.get("Base", raw.get("base", ""))
        quote = raw.get("Quote", raw.get("quote", ""))
        return CurrencyPair(base=str(base or ""), quote=str(quote or ""))


@dataclass(frozen=True)
class Ticker:
    currency_pair: CurrencyPair
    decimals: int = 0
    min_provider_count: int = 1
    enabled: bool = False
    metadata_json: str = ""

    def __str__(self) -> str:
        return str(self.currency_pair)

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency_pair": self.currency_pair.to_dict(),
            "decimals": self.decimals,
            "min_provider_count": self.min_provider_count,
            "enabled": self.enabled,
            "metadata_JSON": self.metadata_json,
        }

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "Ticker":
        return Ticker(
            currency_pair=CurrencyPair.from_dict(raw.get("currency_pair") or {}),
            decimals=parse_int(raw.get("decimals")),
            min_provider_count=parse_int(raw.get("min_provider_count")),
            enabled=bool(raw.get("enabled", False)),
            metadata_json=str(raw.get("metadata_JSON") or ""),
        )


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    off_chain_ticker: str
    normalize_by_pair: CurrencyPair | None = None
    invert: bool = False
    metadata_json: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "off_chain_ticker": self.off_chain_ticker,
            "invert": self.invert,
            "metadata_JSON": self.metadata_json,
        }
        if self.normalize_by_pair is not None:
            payload["normalize_by_pair"] = self.normalize_by_pair.to_dict()
        return payload

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "ProviderConfig":
        normalize_raw = raw.get("normalize_by_pair")
        return ProviderConfig(
            name=str(raw.get("name") or ""),
            off_chain_ticker=str(raw.get("off_chain_ticker") or ""),
            normalize_by_pair=CurrencyPair.from_dict(normalize_raw) if normalize_raw else None,
            invert=bool(raw.get("invert", False)),
            metadata_json=str(raw.get("metadata_JSON") or ""),
        )


@dataclass(frozen=True)
class Market:
    ticker: Ticker
    provider_configs: tuple[ProviderConfig, ...] = ()

    @property
    def key(self) -> str:
        return str(self.ticker.currency_pair)

    @property
    def enabled(self) -> bool:
        return self.ticker.enabled

    def normalize_targets(self) -> list[str]:
        targets: list[str] = []
        for provider in self.provider_configs:
            if provider.normalize_by_pair is None:
                continue
            target = str(provider.normalize_by_pair)
            if target not in targets:
                targets.append(target)
        return targets

    def validate_basic(self) -> None:
        key = self.key
        try:
            self.ticker.currency_pair.validate()
        except ValueError as exc:
            raise SchemaValidationError(key, str(exc)) from exc
        if self.ticker.min_provider_count < 1:
            raise SchemaValidationError(key, "min provider count must be at least 1")
        if len(self.provider_configs) < self.ticker.min_provider_count:
            raise SchemaValidationError(
                key,
                f"provider count {len(self.provider_configs)} below min provider count "
                f"{self.ticker.min_provider_count}",
            )
        seen: set[tuple[str, str]] = set()
        for provider in self.provider_configs:
            if not provider.name:
                raise SchemaValidationError(key, "provider name must not be empty")
            if not provider.off_chain_ticker:
                raise SchemaValidationError(key, f"provider {provider.name} has empty off chain ticker")
            if provider.normalize_by_pair is not None:
                try:
                    provider.normalize_by_pair.validate()
                except ValueError as exc:
                    raise SchemaValidationError(key, f"provider {provider.name}: {exc}") from exc
            ident = (provider.name, provider.off_chain_ticker)
            if ident in seen:
                raise SchemaValidationError(key, f"duplicate provider config {provider.name} {provider.off_chain_ticker}")
            seen.add(ident)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticker": self.ticker.to_dict(),
            "provider_configs": [provider.to_dict() for provider in self.provider_configs],
        }

    def size(self) -> int:
        return len(encode_market(self))

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "Market":
        return Market(
            ticker=Ticker.from_dict(raw.get("ticker") or {}),
            provider_configs=tuple(ProviderConfig.from_dict(item) for item in raw.get("provider_configs") or []),
        )


@dataclass
class MarketMap:
    markets: dict[str, Market] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.markets)

    def __contains__(self, key: object) -> bool:
        return key in self.markets

    def get(self, key: str) -> Market | None:
        return self.markets.get(key)

    def copy(self) -> "MarketMap":
        return MarketMap(markets=dict(self.markets))

    def validation_errors(self) -> list[Exception]:
        errors: list[Exception] = []
        for key in sorted(self.markets):
            market = self.markets[key]
            try:
                market.validate_basic()
            except SchemaValidationError as exc:
                errors.append(exc)
                continue
            if key != market.key:
                errors.append(SchemaValidationError(key, f"key does not match ticker {market.key}"))
                continue
            for target in market.normalize_targets():
                target_market = self.markets.get(target)
                if target_market is None:
                    errors.append(SchemaValidationError(key, f"normalize pair {target} not found in market map"))
                elif market.enabled and not target_market.enabled:
                    errors.append(
                        SchemaValidationError(key, f"market is enabled but normalize pair {target} is not enabled")
                    )
        return errors

    def validate_basic(self) -> None:
        errors = self.validation_errors()
        if errors:
            raise InvalidMarketMapError(errors)

    def valid_subset(self) -> "MarketMap":
        subset: dict[str, Market] = {}
        for key, market in self.markets.items():
            try:
                market.validate_basic()
            except SchemaValidationError:
                continue
            if key == market.key:
                subset[key] = market

        # dropping one market can orphan another, so repeat until stable
        changed = True
        while changed:
            changed = False
            for key in list(subset):
                market = subset[key]
                for target in market.normalize_targets():
                    target_market = subset.get(target)
                    if target_market is None or (market.enabled and not target_market.enabled):
                        del subset[key]
                        changed = True
                        break
        return MarketMap(markets=subset)

    def to_dict(self) -> dict[str, Any]:
        return {"markets": {key: self.markets[key].to_dict() for key in sorted(self.markets)}}

    @staticmethod
    def from_dict(raw: dict[str, Any] | None) -> "MarketMap":
        if not raw:
            return MarketMap()
        markets_raw = raw.get("markets") or {}
        return MarketMap(markets={str(key): Market.from_dict(value) for key, value in markets_raw.items()})


def markets_to_list(markets: list[Market]) -> list[dict[str, Any]]:
    return [market.to_dict() for market in markets]


def markets_from_list(raw: list[dict[str, Any]] | None) -> list[Market]:
    return [Market.from_dict(item) for item in raw or []]


@dataclass(frozen=True)
class Perpetual:
    ticker: str
    market_type: str = PERPETUAL_MARKET_TYPE_UNSPECIFIED

    def currency_pair(self) -> CurrencyPair:
        parts = self.ticker.split("-")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"invalid perpetual ticker {self.ticker!r}")
        pair = CurrencyPair(base=parts[0].upper(), quote=parts[1].upper())
        pair.validate()
        return pair

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> "Perpetual":
        params = raw.get("params") or {}
        return Perpetual(
            ticker=str(params.get("ticker") or ""),
            market_type=str(params.get("market_type") or PERPETUAL_MARKET_TYPE_UNSPECIFIED),
        )


@dataclass(frozen=True)
class SigningAccount:
    address: str
    sequence: int
    account_number: int
    pubkey: bytes | None = None
