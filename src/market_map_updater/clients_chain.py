from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
import threading
from typing import Any

from market_map_updater.config import VERSION_CONNECT, VERSION_SLINKY, ChainConfig
from market_map_updater.errors import CancelledError, ConfigError
from market_map_updater.http_utils import get_json
from market_map_updater.models import MarketMap, SigningAccount, parse_int

LOGGER = logging.getLogger("market_map_updater")

_MARKET_MAP_PATHS = {
    VERSION_SLINKY: "/slinky/marketmap/v1/marketmap",
    VERSION_CONNECT: "/connect/marketmap/v2/marketmap",
}


def _check_cancel(cancel: threading.Event | None, what: str) -> None:
    if cancel is not None and cancel.is_set():
        raise CancelledError(f"{what} cancelled")


@dataclass
class MarketMapClient:
    rest_address: str
    version: str = VERSION_SLINKY
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.version not in _MARKET_MAP_PATHS:
            raise ConfigError(f"unsupported chain version: {self.version}")

    @classmethod
    def from_chain_config(cls, chain_config: ChainConfig) -> "MarketMapClient":
        return cls(rest_address=chain_config.rest_address, version=chain_config.version)

    def get_market_map(self, cancel: threading.Event | None = None) -> MarketMap:
        _check_cancel(cancel, "market map query")
        url = f"{self.rest_address.rstrip('/')}{_MARKET_MAP_PATHS[self.version]}"
        try:
            payload = get_json(url, timeout=self.timeout_seconds)
        except RuntimeError as exc:
            LOGGER.error("error fetching market map version=%s err=%s", self.version, exc)
            raise RuntimeError(f"error fetching market map from {self.version} x/marketmap: {exc}") from exc
        if not isinstance(payload, dict):
            raise RuntimeError("market map response must be a JSON object")
        return MarketMap.from_dict(payload.get("market_map") or {})


def _unwrap_account(raw: dict[str, Any]) -> dict[str, Any]:
    # vesting and module accounts nest the base account
    current = raw
    for _ in range(4):
        if "address" in current and "sequence" in current:
            return current
        nested = current.get("base_account") or current.get("base_vesting_account")
        if not isinstance(nested, dict):
            break
        current = nested
    return current


def account_from_payload(payload: dict[str, Any]) -> SigningAccount:
    account = payload.get("account")
    if not isinstance(account, dict):
        raise RuntimeError("failed to get account: nil response")
    base = _unwrap_account(account)
    pubkey: bytes | None = None
    pub_key_raw = base.get("pub_key")
    if isinstance(pub_key_raw, dict) and pub_key_raw.get("key"):
        pubkey = base64.b64decode(str(pub_key_raw["key"]))
    return SigningAccount(
        address=str(base.get("address") or ""),
        sequence=parse_int(base.get("sequence")),
        account_number=parse_int(base.get("account_number")),
        pubkey=pubkey,
    )


@dataclass
class AuthClient:
    rest_address: str
    timeout_seconds: float = 10.0

    def get_account(self, address: str, cancel: threading.Event | None = None) -> SigningAccount:
        _check_cancel(cancel, "account query")
        url = f"{self.rest_address.rstrip('/')}/cosmos/auth/v1beta1/accounts/{address}"
        try:
            payload = get_json(url, timeout=self.timeout_seconds)
        except RuntimeError as exc:
            raise RuntimeError(f"failed to get account {address}: {exc}") from exc
        if not isinstance(payload, dict):
            raise RuntimeError("failed to get account: response must be a JSON object")
        return account_from_payload(payload)
