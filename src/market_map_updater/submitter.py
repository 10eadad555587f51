from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
import threading
import time
from typing import Any, Callable

from web3 import HTTPProvider

from market_map_updater.errors import (
    CancelledError,
    CheckTxError,
    DeliverTxError,
    TxBroadcastError,
    TxTimeoutError,
)
from market_map_updater.models import parse_int
from market_map_updater.transactions import tx_hash

LOGGER = logging.getLogger("market_map_updater")

BROADCAST_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class BroadcastResult:
    code: int
    log: str
    hash: str


@dataclass(frozen=True)
class TxResult:
    code: int
    log: str
    height: int


class CometRPCClient:
    def __init__(self, rpc_address: str, timeout_seconds: float = 10.0) -> None:
        self.rpc_address = rpc_address
        self._query_provider = HTTPProvider(rpc_address, request_kwargs={"timeout": timeout_seconds})
        self._providers: dict[float, HTTPProvider] = {timeout_seconds: self._query_provider}

    def _provider(self, timeout: float) -> HTTPProvider:
        provider = self._providers.get(timeout)
        if provider is None:
            provider = HTTPProvider(self.rpc_address, request_kwargs={"timeout": timeout})
            self._providers[timeout] = provider
        return provider

    @staticmethod
    def _result(method: str, response: Any) -> dict[str, Any]:
        if not isinstance(response, dict):
            raise RuntimeError(f"rpc {method} returned non-object response")
        error = response.get("error")
        if error:
            raise RuntimeError(f"rpc {method} error: {error}")
        result = response.get("result")
        if not isinstance(result, dict):
            raise RuntimeError(f"rpc {method} returned no result")
        return result

    def broadcast_tx_sync(self, tx: bytes, timeout: float = BROADCAST_TIMEOUT_SECONDS) -> BroadcastResult:
        params = {"tx": base64.b64encode(tx).decode("ascii")}
        try:
            response = self._provider(timeout).make_request("broadcast_tx_sync", params)
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"rpc broadcast_tx_sync failed: {exc}") from exc
        result = self._result("broadcast_tx_sync", response)
        return BroadcastResult(
            code=parse_int(result.get("code")),
            log=str(result.get("log") or ""),
            hash=str(result.get("hash") or tx_hash(tx)).upper(),
        )

    def tx(self, hash_hex: str) -> TxResult:
        params = {"hash": base64.b64encode(bytes.fromhex(hash_hex)).decode("ascii"), "prove": False}
        try:
            response = self._query_provider.make_request("tx", params)
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"rpc tx failed: {exc}") from exc
        result = self._result("tx", response)
        tx_result = result.get("tx_result") or {}
        return TxResult(
            code=parse_int(tx_result.get("code")),
            log=str(tx_result.get("log") or ""),
            height=parse_int(result.get("height")),
        )


class TransactionSubmitter:
    def submit(self, tx: bytes, cancel: threading.Event | None = None) -> str:
        raise NotImplementedError


class CometTransactionSubmitter(TransactionSubmitter):
    def __init__(
        self,
        client,
        polling_frequency: float = 10.0,
        polling_duration: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.polling_frequency = polling_frequency
        self.polling_duration = polling_duration
        self._sleep = sleep
        self._clock = clock

    def _wait(self, seconds: float, cancel: threading.Event | None) -> None:
        if cancel is None:
            self._sleep(seconds)
            return
        if cancel.wait(seconds):
            raise CancelledError("tx inclusion polling cancelled")

    def submit(self, tx: bytes, cancel: threading.Event | None = None) -> str:
        if cancel is not None and cancel.is_set():
            raise CancelledError("tx broadcast cancelled")
        try:
            result = self.client.broadcast_tx_sync(tx, timeout=BROADCAST_TIMEOUT_SECONDS)
        except (RuntimeError, OSError) as exc:
            LOGGER.error("failed to broadcast tx err=%s", exc)
            raise TxBroadcastError(f"failed to broadcast tx: {exc}") from exc
        if result.code != 0:
            LOGGER.error("check tx failed hash=%s code=%d log=%s", result.hash, result.code, result.log)
            raise CheckTxError(result.code, result.log)
        LOGGER.info("broadcast tx hash=%s", result.hash)

        started = self._clock()
        deadline = started + self.polling_duration
        while True:
            if cancel is not None and cancel.is_set():
                raise CancelledError(f"tx {result.hash} polling cancelled")
            try:
                included = self.client.tx(result.hash)
            except (RuntimeError, OSError, ValueError) as exc:
                LOGGER.debug("tx not yet found hash=%s err=%s", result.hash, exc)
                included = None
            if included is not None:
                if included.code != 0:
                    LOGGER.error("deliver tx failed hash=%s code=%d log=%s", result.hash, included.code, included.log)
                    raise DeliverTxError(included.code, included.log, result.hash)
                LOGGER.info("tx included hash=%s height=%d", result.hash, included.height)
                return result.hash
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise TxTimeoutError(result.hash, self._clock() - started)
            self._wait(min(self.polling_frequency, remaining), cancel)
