from __future__ import annotations

from dataclasses import replace
import hashlib
import logging
from pathlib import Path
import threading
from typing import Any, Callable

from eth_account import Account
from eth_keys import keys

from market_map_updater.accounts import address_from_pubkey, decode_address
from market_map_updater.clients_chain import AuthClient
from market_map_updater.config import ChainConfig, SigningConfig
from market_map_updater.errors import SigningError
from market_map_updater.models import SigningAccount
from market_map_updater.transactions import UnsignedTx

LOGGER = logging.getLogger("market_map_updater")

LOCAL_AGENT_TYPE = "local_agent"
SIMULATE_AGENT_TYPE = "simulate_agent"

_SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class SigningAgent:
    def sign(self, unsigned_tx: UnsignedTx, cancel: threading.Event | None = None) -> bytes:
        raise NotImplementedError

    def get_signing_account(self, cancel: threading.Event | None = None) -> SigningAccount:
        raise NotImplementedError


SignerFactory = Callable[[dict[str, Any], ChainConfig, Any], SigningAgent]


class LocalSigningAgent(SigningAgent):
    def __init__(self, private_key_hex: str, chain_config: ChainConfig, account_client) -> None:
        raw = private_key_hex.strip()
        if raw.startswith(("0x", "0X")):
            raw = raw[2:]
        try:
            key_bytes = bytes.fromhex(raw)
            self._account = Account.from_key(key_bytes)
            self.pubkey = keys.PrivateKey(key_bytes).public_key.to_compressed_bytes()
        except ValueError as exc:
            raise SigningError(f"error importing private key: {exc}") from exc
        self.chain_config = chain_config
        self.account_client = account_client
        self.address = address_from_pubkey(chain_config.prefix, self.pubkey)
        LOGGER.info("local signer address=%s", self.address)

    def get_signing_account(self, cancel: threading.Event | None = None) -> SigningAccount:
        account = self.account_client.get_account(self.address, cancel=cancel)
        return replace(account, address=self.address, pubkey=self.pubkey)

    def sign(self, unsigned_tx: UnsignedTx, cancel: threading.Event | None = None) -> bytes:
        if unsigned_tx.pubkey is not None and unsigned_tx.pubkey != self.pubkey:
            raise SigningError("transaction signer pubkey does not match local key")
        digest = hashlib.sha256(unsigned_tx.sign_doc_bytes()).digest()
        try:
            signed = self._account.unsafe_sign_hash(digest)
        except ValueError as exc:
            raise SigningError(f"error signing transaction: {exc}") from exc
        r, s = int(signed.r), int(signed.s)
        if s > _SECP256K1_N // 2:
            s = _SECP256K1_N - s
        signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
        return unsigned_tx.encode(signatures=[signature])


class SimulateSigningAgent(SigningAgent):
    def __init__(self, address: str, account_client) -> None:
        self.address = address
        self.account_client = account_client

    def get_signing_account(self, cancel: threading.Event | None = None) -> SigningAccount:
        return self.account_client.get_account(self.address, cancel=cancel)

    def sign(self, unsigned_tx: UnsignedTx, cancel: threading.Event | None = None) -> bytes:
        return unsigned_tx.encode()


def new_local_signing_agent(config: dict[str, Any], chain_config: ChainConfig, account_client=None) -> SigningAgent:
    key_file = str(config.get("private_key_file") or "")
    if not key_file:
        raise SigningError("local agent config: private_key_file is required")
    path = Path(key_file)
    if not path.is_file():
        raise SigningError(f"local agent config: private key file {key_file} does not exist")
    client = account_client if account_client is not None else AuthClient(chain_config.rest_address)
    return LocalSigningAgent(path.read_text(encoding="utf-8"), chain_config, client)


def new_simulate_signing_agent(config: dict[str, Any], chain_config: ChainConfig, account_client=None) -> SigningAgent:
    address = str(config.get("address") or "")
    if not address:
        raise SigningError("simulate agent config: address is required")
    try:
        decode_address(address)
    except ValueError as exc:
        raise SigningError(f"failed to decode address: {exc}") from exc
    client = account_client if account_client is not None else AuthClient(chain_config.rest_address)
    return SimulateSigningAgent(address, client)


class Registry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, SignerFactory] = {}

    def register(self, name: str, factory: SignerFactory) -> None:
        with self._lock:
            if name in self._factories:
                raise SigningError(f"signer type already registered: {name}")
            self._factories[name] = factory

    def types(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def create_signer(
        self,
        signing_config: SigningConfig,
        chain_config: ChainConfig,
        account_client=None,
    ) -> SigningAgent:
        with self._lock:
            factory = self._factories.get(signing_config.type)
        if factory is None:
            raise SigningError(f"unknown signer type: {signing_config.type}")
        return factory(dict(signing_config.config), chain_config, account_client)


def default_registry() -> Registry:
    registry = Registry()
    registry.register(LOCAL_AGENT_TYPE, new_local_signing_agent)
    registry.register(SIMULATE_AGENT_TYPE, new_simulate_signing_agent)
    return registry
