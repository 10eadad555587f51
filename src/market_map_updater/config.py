from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import ROUND_CEILING, Decimal, InvalidOperation
import json
import os
from pathlib import Path
import re
from typing import Any

from market_map_updater.errors import ConfigError


VERSION_SLINKY = "slinky"
VERSION_CONNECT = "connect"
VALID_VERSIONS = (VERSION_SLINKY, VERSION_CONNECT)

_DENOM_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9/:._-]{2,127}$")
_COIN_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([a-zA-Z][a-zA-Z0-9/:._-]*)\s*$")
_DURATION_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)(ns|us|ms|s|m|h)")
_DURATION_UNITS = {"ns": 1e-9, "us": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(raw: Any) -> float:
    """Seconds from a number of seconds or a duration string such as "10s" or "1m30s"."""
    if isinstance(raw, bool):
        raise ConfigError(f"invalid duration {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    if not text:
        raise ConfigError("invalid duration ''")
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    pos = 0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            raise ConfigError(f"invalid duration {raw!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ConfigError(f"invalid duration {raw!r}")
    return total


@dataclass(frozen=True)
class GasPrice:
    amount: Decimal
    denom: str

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"

    def validate(self) -> None:
        if not _DENOM_RE.match(self.denom or ""):
            raise ConfigError(f"invalid tx fee: invalid denom {self.denom!r}")
        if self.amount < 0:
            raise ConfigError(f"invalid tx fee: negative amount {self.amount}")

    def fee_amount(self, gas: int) -> int:
        return int((self.amount * Decimal(gas)).to_integral_value(rounding=ROUND_CEILING))

    @staticmethod
    def parse(raw: Any) -> "GasPrice":
        if isinstance(raw, GasPrice):
            return raw
        if isinstance(raw, dict):
            try:
                amount = Decimal(str(raw.get("amount", "0")))
            except InvalidOperation as exc:
                raise ConfigError(f"invalid tx fee: {raw!r}") from exc
            return GasPrice(amount=amount, denom=str(raw.get("denom") or ""))
        match = _COIN_RE.match(str(raw))
        if not match:
            raise ConfigError(f"invalid tx fee: {raw!r}")
        return GasPrice(amount=Decimal(match.group(1)), denom=match.group(2))


@dataclass(frozen=True)
class TransactionConfig:
    max_bytes_per_tx: int
    max_gas: int
    gas_adjustment: float
    min_gas_price: GasPrice

    def validate(self) -> None:
        if self.max_bytes_per_tx <= 0:
            raise ConfigError(f"invalid max bytes per tx: {self.max_bytes_per_tx}")
        if self.max_gas <= 0:
            raise ConfigError(f"invalid max gas: {self.max_gas}")
        self.min_gas_price.validate()
        if self.gas_adjustment < 1:
            raise ConfigError(f"invalid gas adjustment: {self.gas_adjustment} must be >= 1")


def default_transaction_config() -> TransactionConfig:
    return TransactionConfig(
        max_bytes_per_tx=100_000,
        max_gas=800_000_000,
        gas_adjustment=1.5,
        min_gas_price=GasPrice(amount=Decimal("20000000000"), denom="utoken"),
    )


@dataclass(frozen=True)
class SigningConfig:
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if not self.type:
            raise ConfigError("signing type must not be empty")


@dataclass(frozen=True)
class SubmitterConfig:
    polling_frequency: float
    polling_duration: float

    def validate(self) -> None:
        if self.polling_frequency <= 0:
            raise ConfigError(f"invalid polling frequency: {self.polling_frequency}")
        if self.polling_duration <= 0:
            raise ConfigError(f"invalid polling duration: {self.polling_duration}")


def default_submitter_config() -> SubmitterConfig:
    return SubmitterConfig(polling_frequency=10.0, polling_duration=300.0)


@dataclass(frozen=True)
class DispatchConfig:
    tx: TransactionConfig
    signing: SigningConfig
    submitter: SubmitterConfig

    def validate(self) -> None:
        self.tx.validate()
        self.signing.validate()
        self.submitter.validate()


@dataclass(frozen=True)
class ChainConfig:
    rpc_address: str
    grpc_address: str
    rest_address: str
    chain_id: str
    dydx: bool
    version: str
    prefix: str

    def validate(self) -> None:
        if not self.grpc_address or not self.rest_address or not self.rpc_address:
            raise ConfigError(
                "invalid chain config: rest, rpc or grpc address is empty: "
                f"rpc={self.rpc_address!r} grpc={self.grpc_address!r} rest={self.rest_address!r}"
            )
        if self.version not in VALID_VERSIONS:
            raise ConfigError(f"version must be one of ({VERSION_CONNECT}, {VERSION_SLINKY})")
        if not self.chain_id:
            raise ConfigError("invalid chain config: chain_id is empty")
        if not self.prefix:
            raise ConfigError("invalid chain config: prefix is empty")


def default_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_address="http://localhost:26657",
        grpc_address="localhost:9090",
        rest_address="http://localhost:1317",
        chain_id="",
        dydx=False,
        version=VERSION_SLINKY,
        prefix="cosmos",
    )


@dataclass(frozen=True)
class UpsertConfig:
    restricted_markets: tuple[str, ...] = ()

    def validate(self) -> None:
        return


@dataclass(frozen=True)
class MmuConfig:
    dispatch: DispatchConfig | None = None
    chain: ChainConfig | None = None
    upsert: UpsertConfig | None = None

    def validate(self) -> None:
        for section in (self.dispatch, self.chain, self.upsert):
            if section is not None:
                section.validate()


def _int_field(raw: dict[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {key}: {value!r}") from exc


def _float_field(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {key}: {value!r}") from exc


def _parse_dispatch(raw: dict[str, Any]) -> DispatchConfig:
    tx_default = default_transaction_config()
    tx_raw = raw.get("tx") or {}
    tx = TransactionConfig(
        max_bytes_per_tx=_int_field(tx_raw, "max_bytes_per_tx", tx_default.max_bytes_per_tx),
        max_gas=_int_field(tx_raw, "max_gas", tx_default.max_gas),
        gas_adjustment=_float_field(tx_raw, "gas_adjustment", tx_default.gas_adjustment),
        min_gas_price=GasPrice.parse(tx_raw.get("min_gas_price", tx_default.min_gas_price)),
    )
    signing_raw = raw.get("signing") or {}
    signing = SigningConfig(
        type=str(signing_raw.get("type") or ""),
        config=dict(signing_raw.get("config") or {}),
    )
    submitter_default = default_submitter_config()
    submitter_raw = raw.get("submitter") or {}
    submitter = SubmitterConfig(
        polling_frequency=parse_duration(submitter_raw.get("polling_frequency", submitter_default.polling_frequency)),
        polling_duration=parse_duration(submitter_raw.get("polling_duration", submitter_default.polling_duration)),
    )
    return DispatchConfig(tx=tx, signing=signing, submitter=submitter)


def _parse_chain(raw: dict[str, Any]) -> ChainConfig:
    default = default_chain_config()
    return ChainConfig(
        rpc_address=str(raw.get("rpc_address", default.rpc_address) or ""),
        grpc_address=str(raw.get("grpc_address", default.grpc_address) or ""),
        rest_address=str(raw.get("rest_address", default.rest_address) or ""),
        chain_id=str(raw.get("chain_id", default.chain_id) or ""),
        dydx=bool(raw.get("dydx", default.dydx)),
        version=str(raw.get("version", default.version) or ""),
        prefix=str(raw.get("prefix", default.prefix) or ""),
    )


def _parse_upsert(raw: dict[str, Any]) -> UpsertConfig:
    return UpsertConfig(restricted_markets=tuple(str(item) for item in raw.get("restricted_markets") or []))


def parse_config(raw: dict[str, Any], validate: bool = True) -> MmuConfig:
    cfg = MmuConfig(
        dispatch=_parse_dispatch(raw["dispatch"]) if raw.get("dispatch") is not None else None,
        chain=_parse_chain(raw["chain"]) if raw.get("chain") is not None else None,
        upsert=_parse_upsert(raw["upsert"]) if raw.get("upsert") is not None else None,
    )
    if validate:
        cfg.validate()
    return cfg


def read_config(path: str | Path) -> MmuConfig:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"config file {path} is not valid json: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must hold a json object")
    # validated by load_config once environment overrides are applied
    return parse_config(raw, validate=False)


def load_config(path: str | None = None) -> MmuConfig:
    config_path = path or os.getenv("MMU_CONFIG", "").strip()
    cfg = read_config(config_path) if config_path else MmuConfig()
    if cfg.chain is None:
        cfg.validate()
        return cfg

    chain = cfg.chain
    chain_id = os.getenv("MMU_CHAIN_ID", "").strip()
    rpc_address = os.getenv("MMU_RPC_ADDRESS", "").strip()
    rest_address = os.getenv("MMU_REST_ADDRESS", "").strip()
    if chain_id:
        chain = replace(chain, chain_id=chain_id)
    if rpc_address:
        chain = replace(chain, rpc_address=rpc_address)
    if rest_address:
        chain = replace(chain, rest_address=rest_address)
    cfg = replace(cfg, chain=chain)
    cfg.validate()
    return cfg


def config_to_dict(cfg: MmuConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if cfg.dispatch is not None:
        payload["dispatch"] = {
            "tx": {
                "max_bytes_per_tx": cfg.dispatch.tx.max_bytes_per_tx,
                "max_gas": cfg.dispatch.tx.max_gas,
                "gas_adjustment": cfg.dispatch.tx.gas_adjustment,
                "min_gas_price": str(cfg.dispatch.tx.min_gas_price),
            },
            "signing": {"type": cfg.dispatch.signing.type, "config": dict(cfg.dispatch.signing.config)},
            "submitter": {
                "polling_frequency": cfg.dispatch.submitter.polling_frequency,
                "polling_duration": cfg.dispatch.submitter.polling_duration,
            },
        }
    if cfg.chain is not None:
        payload["chain"] = {
            "rpc_address": cfg.chain.rpc_address,
            "grpc_address": cfg.chain.grpc_address,
            "rest_address": cfg.chain.rest_address,
            "chain_id": cfg.chain.chain_id,
            "dydx": cfg.chain.dydx,
            "version": cfg.chain.version,
            "prefix": cfg.chain.prefix,
        }
    if cfg.upsert is not None:
        payload["upsert"] = {"restricted_markets": list(cfg.upsert.restricted_markets)}
    return payload
