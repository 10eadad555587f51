from __future__ import annotations

from dataclasses import dataclass, replace
import logging

from market_map_updater.config import VERSION_CONNECT, VERSION_SLINKY, TransactionConfig
from market_map_updater.errors import ConfigError, SizeLimitError
from market_map_updater.models import Market
from market_map_updater.proto import encode_remove_markets, encode_upsert_markets

LOGGER = logging.getLogger("market_map_updater")

_MODULE_PACKAGES = {
    VERSION_SLINKY: "slinky.marketmap.v1",
    VERSION_CONNECT: "connect.marketmap.v2",
}


def _package_for(version: str) -> str:
    package = _MODULE_PACKAGES.get(version)
    if package is None:
        raise ConfigError(f"unsupported version {version}")
    return package


@dataclass(frozen=True)
class MsgUpsertMarkets:
    version: str
    authority: str
    markets: tuple[Market, ...]

    @property
    def type_url(self) -> str:
        return f"/{_package_for(self.version)}.MsgUpsertMarkets"

    def with_authority(self, authority: str) -> "MsgUpsertMarkets":
        return replace(self, authority=authority)

    def encode(self) -> bytes:
        return encode_upsert_markets(self.authority, self.markets)


@dataclass(frozen=True)
class MsgRemoveMarkets:
    version: str
    authority: str
    markets: tuple[str, ...]

    @property
    def type_url(self) -> str:
        return f"/{_package_for(self.version)}.MsgRemoveMarkets"

    def with_authority(self, authority: str) -> "MsgRemoveMarkets":
        return replace(self, authority=authority)

    def encode(self) -> bytes:
        return encode_remove_markets(self.authority, self.markets)


def _seal(version: str, authority: str, window: list[Market]) -> MsgUpsertMarkets:
    LOGGER.info("creating upsert msg markets=%d", len(window))
    return MsgUpsertMarkets(version=version, authority=authority, markets=tuple(window))


def convert_upserts_to_messages(
    tx_config: TransactionConfig,
    version: str,
    authority: str,
    upserts: list[Market],
) -> list[MsgUpsertMarkets]:
    _package_for(version)
    limit = tx_config.max_bytes_per_tx
    msgs: list[MsgUpsertMarkets] = []
    current_size = 0
    start = 0
    for i, market in enumerate(upserts):
        market.validate_basic()
        size = market.size()
        if size > limit:
            LOGGER.error("market size exceeds max tx size ticker=%s size=%d max=%d", market.key, size, limit)
            raise SizeLimitError(market.key, size, limit)
        if current_size + size > limit:
            msgs.append(_seal(version, authority, upserts[start:i]))
            current_size = 0
            start = i
        current_size += size
    if current_size > 0:
        msgs.append(_seal(version, authority, upserts[start:]))
    return msgs


def convert_removals_to_messages(version: str, authority: str, removals: list[str]) -> list[MsgRemoveMarkets]:
    _package_for(version)
    if not removals:
        return []
    LOGGER.info("created remove msg markets=%d", len(removals))
    return [MsgRemoveMarkets(version=version, authority=authority, markets=tuple(removals))]
