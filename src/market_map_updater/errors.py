from __future__ import annotations


class MarketMapUpdaterError(RuntimeError):
    pass


class ConfigError(MarketMapUpdaterError):
    pass


class SchemaValidationError(MarketMapUpdaterError):
    def __init__(self, ticker: str, reason: str) -> None:
        super().__init__(f"invalid market {ticker}: {reason}")
        self.ticker = ticker
        self.reason = reason


class InvalidMarketMapError(MarketMapUpdaterError):
    def __init__(self, errors: list[Exception] | list[str], prefix: str = "invalid market map") -> None:
        self.errors = list(errors)
        joined = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{prefix}: {joined}" if joined else prefix)


class DependencyError(MarketMapUpdaterError):
    pass


class MarketNotFoundError(DependencyError):
    def __init__(self, ticker: str) -> None:
        super().__init__(f"market {ticker} not found")
        self.ticker = ticker


class OverrideError(MarketMapUpdaterError):
    pass


class SizeLimitError(MarketMapUpdaterError):
    def __init__(self, ticker: str, size: int, limit: int) -> None:
        super().__init__(f"market {ticker} size {size} exceeds max bytes per tx {limit}")
        self.ticker = ticker
        self.size = size
        self.limit = limit


class GasEstimationError(MarketMapUpdaterError):
    def __init__(self, message: str, gas: int | None = None, max_gas: int | None = None) -> None:
        super().__init__(message)
        self.gas = gas
        self.max_gas = max_gas


class SigningError(MarketMapUpdaterError):
    pass


class InvalidSignerPubkeyError(SigningError):
    pass


class TxGenerationError(MarketMapUpdaterError):
    pass


class SubmissionError(MarketMapUpdaterError):
    pass


class TxBroadcastError(SubmissionError):
    pass


class CheckTxError(SubmissionError):
    def __init__(self, code: int, log: str) -> None:
        super().__init__(f"check tx failed code={code} log={log}")
        self.code = code
        self.log = log


class DeliverTxError(SubmissionError):
    def __init__(self, code: int, log: str, tx_hash: str = "") -> None:
        super().__init__(f"deliver tx failed hash={tx_hash} code={code} log={log}")
        self.code = code
        self.log = log
        self.tx_hash = tx_hash


class TxTimeoutError(SubmissionError):
    def __init__(self, tx_hash: str, waited_seconds: float) -> None:
        super().__init__(f"tx {tx_hash} not included after {waited_seconds:.1f}s")
        self.tx_hash = tx_hash
        self.waited_seconds = waited_seconds


class CancelledError(MarketMapUpdaterError):
    pass
