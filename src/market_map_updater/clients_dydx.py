from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import TypedDict, cast

from market_map_updater.errors import CancelledError
from market_map_updater.http_utils import get_json
from market_map_updater.models import Perpetual

LOGGER = logging.getLogger("market_map_updater")


class PaginationPayload(TypedDict, total=False):
    next_key: str | None
    total: str


class PerpetualsPayload(TypedDict, total=False):
    perpetual: list[dict]
    pagination: PaginationPayload


@dataclass
class DydxClient:
    rest_address: str
    timeout_seconds: float = 10.0
    max_pages: int = 1000

    def _fetch(self, params: dict[str, str] | None) -> PerpetualsPayload:
        url = f"{self.rest_address.rstrip('/')}/dydxprotocol/perpetuals/perpetual"
        payload = get_json(url, params=params, timeout=self.timeout_seconds)
        if not isinstance(payload, dict):
            raise RuntimeError("perpetuals response must be a JSON object")
        return cast(PerpetualsPayload, payload)

    def all_perpetuals(self, cancel: threading.Event | None = None) -> list[Perpetual]:
        perpetuals: list[Perpetual] = []
        params: dict[str, str] | None = None
        last_key = ""
        for _ in range(self.max_pages):
            if cancel is not None and cancel.is_set():
                raise CancelledError("perpetuals query cancelled")
            payload = self._fetch(params)
            for item in payload.get("perpetual") or []:
                if isinstance(item, dict):
                    perpetuals.append(Perpetual.from_dict(item))
            pagination = payload.get("pagination") or {}
            next_key = str(pagination.get("next_key") or "")
            if not next_key:
                LOGGER.debug("fetched perpetuals count=%d", len(perpetuals))
                return perpetuals
            if next_key == last_key:
                raise RuntimeError(f"error saw repeat pagination key: {next_key}")
            last_key = next_key
            params = {"pagination.key": next_key}
        raise RuntimeError(f"perpetuals pagination exceeded {self.max_pages} pages")
