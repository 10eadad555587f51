from __future__ import annotations

import logging
import threading

from market_map_updater.config import ChainConfig, DispatchConfig
from market_map_updater.submitter import CometRPCClient, CometTransactionSubmitter, TransactionSubmitter
from market_map_updater.transactions import (
    GasEstimator,
    SigningTransactionGenerator,
    SimulationGasEstimator,
    tx_hash,
)

LOGGER = logging.getLogger("market_map_updater")


class Dispatcher:
    def __init__(
        self,
        dispatch_config: DispatchConfig,
        chain_config: ChainConfig,
        signing_agent,
        estimator: GasEstimator | None = None,
        submitter: TransactionSubmitter | None = None,
    ) -> None:
        self.config = dispatch_config
        self.chain_config = chain_config
        estimator = estimator if estimator is not None else SimulationGasEstimator(chain_config.rest_address)
        self.generator = SigningTransactionGenerator(dispatch_config.tx, chain_config, estimator, signing_agent)
        if submitter is None:
            submitter = CometTransactionSubmitter(
                CometRPCClient(chain_config.rpc_address),
                polling_frequency=dispatch_config.submitter.polling_frequency,
                polling_duration=dispatch_config.submitter.polling_duration,
            )
        self.submitter = submitter

    def generate_transactions(self, msgs: list, cancel: threading.Event | None = None) -> list[bytes]:
        return self.generator.generate_transactions(msgs, cancel=cancel)

    def submit_transactions(self, txs: list[bytes], cancel: threading.Event | None = None) -> list[str]:
        hashes: list[str] = []
        for index, tx in enumerate(txs):
            LOGGER.info("submitting tx index=%d total=%d hash=%s", index + 1, len(txs), tx_hash(tx))
            try:
                hashes.append(self.submitter.submit(tx, cancel=cancel))
            except Exception:
                LOGGER.error(
                    "halting dispatch after failed tx index=%d submitted=%d remaining=%d",
                    index + 1,
                    len(hashes),
                    len(txs) - index - 1,
                )
                raise
        LOGGER.info("submitted transactions count=%d", len(hashes))
        return hashes
