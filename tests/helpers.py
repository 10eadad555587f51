from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from market_map_updater.config import (  # noqa: E402
    VERSION_SLINKY,
    ChainConfig,
    DispatchConfig,
    GasPrice,
    SigningConfig,
    SubmitterConfig,
    TransactionConfig,
)
from market_map_updater.models import (  # noqa: E402
    CurrencyPair,
    Market,
    MarketMap,
    ProviderConfig,
    SigningAccount,
    Ticker,
)
from market_map_updater.signing import SigningAgent  # noqa: E402
from market_map_updater.submitter import BroadcastResult, TransactionSubmitter  # noqa: E402
from market_map_updater.transactions import GasEstimator  # noqa: E402

TEST_PUBKEY = bytes.fromhex("02" + "11" * 32)


def provider(name: str, off_chain_ticker: str, normalize: str | None = None, invert: bool = False) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        off_chain_ticker=off_chain_ticker,
        normalize_by_pair=CurrencyPair.from_string(normalize) if normalize else None,
        invert=invert,
    )


def build_market(
    pair: str,
    *providers: ProviderConfig,
    enabled: bool = False,
    decimals: int = 8,
    min_provider_count: int = 1,
    metadata_json: str = "",
) -> Market:
    if not providers:
        providers = (provider("test", pair.replace("/", "-")),)
    return Market(
        ticker=Ticker(
            currency_pair=CurrencyPair.from_string(pair),
            decimals=decimals,
            min_provider_count=min_provider_count,
            enabled=enabled,
            metadata_json=metadata_json,
        ),
        provider_configs=tuple(providers),
    )


def cmc_metadata(ident: int | str) -> str:
    return json.dumps({"aggregate_ids": [{"venue": "coinmarketcap", "ID": str(ident)}]})


def market_map(*markets: Market) -> MarketMap:
    return MarketMap(markets={market.key: market for market in markets})


def usdt_usd_market(enabled: bool = False) -> Market:
    return build_market(
        "USDT/USD",
        provider("okx", "USDC-USDT", invert=True),
        provider("kraken", "USDTZUSD"),
        enabled=enabled,
        decimals=6,
    )


def eth_usd_market(enabled: bool = False) -> Market:
    return build_market(
        "ETH/USD",
        provider("binance", "ETHUSDT", normalize="USDT/USD"),
        provider("bybit", "ETHUSDT", normalize="USDT/USD"),
        provider("coinbase", "ETH-USDT", normalize="USDT/USD"),
        provider("okx", "ETH-USDT", normalize="USDT/USD"),
        enabled=enabled,
        decimals=11,
        min_provider_count=3,
    )


def chain_config(**kwargs) -> ChainConfig:
    cfg = ChainConfig(
        rpc_address="http://localhost:26657",
        grpc_address="localhost:9090",
        rest_address="http://localhost:1317",
        chain_id="test-chain",
        dydx=False,
        version=VERSION_SLINKY,
        prefix="cosmos",
    )
    return replace(cfg, **kwargs)


def dispatch_config(**tx_kwargs) -> DispatchConfig:
    tx = TransactionConfig(
        max_bytes_per_tx=100_000,
        max_gas=1_000_000,
        gas_adjustment=1.5,
        min_gas_price=GasPrice(amount=Decimal("0.025"), denom="utoken"),
    )
    return DispatchConfig(
        tx=replace(tx, **tx_kwargs),
        signing=SigningConfig(type="simulate_agent", config={"address": "cosmos1test"}),
        submitter=SubmitterConfig(polling_frequency=1.0, polling_duration=5.0),
    )


class FakeMarketMapClient:
    def __init__(self, market_map: MarketMap) -> None:
        self.market_map = market_map
        self.calls = 0

    def get_market_map(self, cancel=None) -> MarketMap:
        self.calls += 1
        return self.market_map


class FakePerpetualsClient:
    def __init__(self, perpetuals) -> None:
        self.perpetuals = perpetuals
        self.calls = 0

    def all_perpetuals(self, cancel=None):
        self.calls += 1
        return self.perpetuals


class FakeAuthClient:
    def __init__(self, account: SigningAccount) -> None:
        self.account = account
        self.addresses: list[str] = []

    def get_account(self, address: str, cancel=None) -> SigningAccount:
        self.addresses.append(address)
        return self.account


class FakeEstimator(GasEstimator):
    def __init__(self, gas_used: int | list[int] = 100_000) -> None:
        self.gas_used = gas_used
        self.calls: list[tuple] = []

    def estimate(self, factory, msgs, adjustment, cancel=None) -> int:
        self.calls.append((factory, list(msgs), adjustment))
        if isinstance(self.gas_used, list):
            used = self.gas_used[len(self.calls) - 1]
        else:
            used = self.gas_used
        return int(used * adjustment)


class FakeSigningAgent(SigningAgent):
    def __init__(self, account: SigningAccount | None = None, fail_at: int | None = None) -> None:
        self.account = account or SigningAccount(
            address="cosmos1signer",
            sequence=7,
            account_number=3,
            pubkey=TEST_PUBKEY,
        )
        self.fail_at = fail_at
        self.signed: list = []
        self.account_queries = 0

    def get_signing_account(self, cancel=None) -> SigningAccount:
        self.account_queries += 1
        return self.account

    def sign(self, unsigned_tx, cancel=None) -> bytes:
        if self.fail_at is not None and len(self.signed) == self.fail_at:
            raise RuntimeError("hardware signer unavailable")
        self.signed.append(unsigned_tx)
        return unsigned_tx.encode(signatures=[b"\x01" * 64])


class FakeRPCClient:
    def __init__(self, broadcast: BroadcastResult | Exception, tx_results: list | None = None) -> None:
        self.broadcast = broadcast
        self.tx_results = list(tx_results or [])
        self.broadcasts: list[bytes] = []
        self.queries: list[str] = []

    def broadcast_tx_sync(self, tx: bytes, timeout: float = 20.0) -> BroadcastResult:
        self.broadcasts.append(tx)
        if isinstance(self.broadcast, Exception):
            raise self.broadcast
        return self.broadcast

    def tx(self, hash_hex: str):
        self.queries.append(hash_hex)
        if not self.tx_results:
            raise RuntimeError(f"tx ({hash_hex}) not found")
        result = self.tx_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeSubmitter(TransactionSubmitter):
    def __init__(self, fail_at: int | None = None) -> None:
        self.fail_at = fail_at
        self.submitted: list[bytes] = []

    def submit(self, tx: bytes, cancel=None) -> str:
        if self.fail_at is not None and len(self.submitted) == self.fail_at:
            raise RuntimeError("broadcast rejected")
        self.submitted.append(tx)
        return f"HASH{len(self.submitted)}"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
