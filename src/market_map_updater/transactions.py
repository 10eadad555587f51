from __future__ import annotations

import base64
from dataclasses import dataclass, replace
import hashlib
import logging
import threading
from typing import Iterable

from market_map_updater.accounts import address_from_pubkey
from market_map_updater.config import ChainConfig, GasPrice, TransactionConfig
from market_map_updater.errors import (
    CancelledError,
    GasEstimationError,
    InvalidSignerPubkeyError,
    SigningError,
    TxGenerationError,
)
from market_map_updater.http_utils import post_json
from market_map_updater.models import parse_int
from market_map_updater.proto import encode_auth_info, encode_sign_doc, encode_tx_body, encode_tx_raw

LOGGER = logging.getLogger("market_map_updater")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def tx_hash(tx: bytes) -> str:
    return hashlib.sha256(tx).hexdigest().upper()


@dataclass(frozen=True)
class UnsignedTx:
    chain_id: str
    account_number: int
    sequence: int
    gas: int
    fee_amount: int
    fee_denom: str
    msgs: tuple
    pubkey: bytes | None = None
    memo: str = ""

    def body_bytes(self) -> bytes:
        return encode_tx_body([(msg.type_url, msg.encode()) for msg in self.msgs], memo=self.memo)

    def auth_info_bytes(self) -> bytes:
        return encode_auth_info(
            sequence=self.sequence,
            gas_limit=self.gas,
            fee_amount=self.fee_amount,
            fee_denom=self.fee_denom,
            pubkey=self.pubkey,
        )

    def sign_doc_bytes(self) -> bytes:
        return encode_sign_doc(self.body_bytes(), self.auth_info_bytes(), self.chain_id, self.account_number)

    def encode(self, signatures: Iterable[bytes] = ()) -> bytes:
        return encode_tx_raw(self.body_bytes(), self.auth_info_bytes(), signatures)


@dataclass(frozen=True)
class TxFactory:
    chain_id: str
    account_number: int = 0
    sequence: int = 0
    gas: int = 0
    gas_price: GasPrice | None = None
    pubkey: bytes | None = None
    memo: str = ""

    def build_unsigned(self, msgs: Iterable) -> UnsignedTx:
        fee_amount = self.gas_price.fee_amount(self.gas) if self.gas_price is not None else 0
        return UnsignedTx(
            chain_id=self.chain_id,
            account_number=self.account_number,
            sequence=self.sequence,
            gas=self.gas,
            fee_amount=fee_amount,
            fee_denom=self.gas_price.denom if self.gas_price is not None else "",
            msgs=tuple(msgs),
            pubkey=self.pubkey,
            memo=self.memo,
        )


class GasEstimator:
    def estimate(
        self,
        factory: TxFactory,
        msgs: list,
        adjustment: float,
        cancel: threading.Event | None = None,
    ) -> int:
        raise NotImplementedError


class SimulationGasEstimator(GasEstimator):
    def __init__(self, rest_address: str, timeout_seconds: float = 20.0) -> None:
        self.rest_address = rest_address.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def estimate(
        self,
        factory: TxFactory,
        msgs: list,
        adjustment: float,
        cancel: threading.Event | None = None,
    ) -> int:
        if cancel is not None and cancel.is_set():
            raise CancelledError("gas simulation cancelled")
        # simulation runs without a real signature
        tx_bytes = factory.build_unsigned(msgs).encode(signatures=[b""])
        try:
            payload = post_json(
                f"{self.rest_address}/cosmos/tx/v1beta1/simulate",
                {"tx_bytes": _b64(tx_bytes)},
                timeout=self.timeout_seconds,
            )
        except RuntimeError as exc:
            LOGGER.error("failed to calculate gas estimation err=%s", exc)
            raise GasEstimationError(f"failed to calculate gas: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("gas_info"), dict):
            raise GasEstimationError("nil response from gas simulation")
        gas_used = parse_int(payload["gas_info"].get("gas_used"))
        return int(gas_used * adjustment)


class SigningTransactionGenerator:
    def __init__(
        self,
        tx_config: TransactionConfig,
        chain_config: ChainConfig,
        estimator: GasEstimator,
        signing_agent,
    ) -> None:
        self.tx_config = tx_config
        self.chain_config = chain_config
        self.estimator = estimator
        self.signing_agent = signing_agent

    def _estimate_gas(self, factory: TxFactory, msg, cancel: threading.Event | None) -> int:
        LOGGER.info("estimating transaction gas msg=%s", msg.type_url)
        try:
            gas = int(self.estimator.estimate(factory, [msg], self.tx_config.gas_adjustment, cancel=cancel))
        except (GasEstimationError, CancelledError):
            raise
        except (RuntimeError, ValueError) as exc:
            raise GasEstimationError(f"failed to estimate gas: {exc}") from exc
        if gas > self.tx_config.max_gas:
            raise GasEstimationError(
                f"gas estimation of {gas} exceeds max gas: {self.tx_config.max_gas}",
                gas=gas,
                max_gas=self.tx_config.max_gas,
            )
        LOGGER.info("gas returned from tx simulation gas_estimation=%d", gas)
        return gas

    def generate_transactions(self, msgs: list, cancel: threading.Event | None = None) -> list[bytes]:
        if not msgs:
            return []
        try:
            account = self.signing_agent.get_signing_account(cancel=cancel)
        except (SigningError, CancelledError):
            raise
        except (RuntimeError, ValueError) as exc:
            raise SigningError(f"failed to get signing account: {exc}") from exc
        if account.pubkey is None:
            raise InvalidSignerPubkeyError(f"signing account {account.address} has no public key")
        try:
            authority = address_from_pubkey(self.chain_config.prefix, account.pubkey)
        except ValueError as exc:
            raise InvalidSignerPubkeyError(f"invalid signer public key: {exc}") from exc

        # the ledger has seen none of these yet, so every simulation uses the starting sequence
        sim_factory = TxFactory(
            chain_id=self.chain_config.chain_id,
            account_number=account.account_number,
            sequence=account.sequence,
            gas=self.tx_config.max_gas,
            pubkey=account.pubkey,
        )
        prepared: list[tuple[object, int]] = []
        for msg in msgs:
            if cancel is not None and cancel.is_set():
                raise CancelledError("transaction generation cancelled")
            msg = msg.with_authority(authority)
            prepared.append((msg, self._estimate_gas(sim_factory, msg, cancel)))

        sequence = account.sequence
        txs: list[bytes] = []
        for msg, gas in prepared:
            if cancel is not None and cancel.is_set():
                raise CancelledError("transaction generation cancelled")
            factory = replace(
                sim_factory,
                gas=gas,
                gas_price=self.tx_config.min_gas_price,
                sequence=sequence,
            )
            LOGGER.info(
                "transaction configuration chain_id=%s sequence=%d gas=%d gas_price=%s",
                factory.chain_id,
                factory.sequence,
                gas,
                factory.gas_price,
            )
            unsigned = factory.build_unsigned([msg])
            try:
                signed = self.signing_agent.sign(unsigned, cancel=cancel)
            except (SigningError, CancelledError):
                raise
            except (RuntimeError, ValueError) as exc:
                raise SigningError(f"failed to sign transaction sequence={sequence}: {exc}") from exc
            if not signed:
                raise TxGenerationError(f"signer returned empty transaction sequence={sequence}")
            txs.append(bytes(signed))
            sequence += 1
        LOGGER.info("generated transactions count=%d", len(txs))
        return txs
