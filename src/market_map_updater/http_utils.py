from __future__ import annotations

import json
import os
import ssl
from functools import lru_cache
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import certifi

USER_AGENT = "market-map-updater/0.1"


def _resolve_ca_bundle() -> tuple[str | None, str | None]:
    env_cafile = os.getenv("SSL_CERT_FILE")
    if env_cafile:
        return env_cafile, None

    env_capath = os.getenv("SSL_CERT_DIR")
    if env_capath:
        return None, env_capath

    return certifi.where(), None


@lru_cache(maxsize=1)
def _ssl_context() -> ssl.SSLContext:
    cafile, capath = _resolve_ca_bundle()
    if cafile:
        return ssl.create_default_context(cafile=cafile)
    if capath:
        return ssl.create_default_context(capath=capath)
    return ssl.create_default_context()


def _with_query(url: str, params: dict[str, str] | None) -> str:
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def _open_json(request: Request, timeout: float):
    try:
        with urlopen(request, timeout=timeout, context=_ssl_context()) as response:
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        detail = ""
        try:
            detail = exc.read().decode("utf-8", errors="replace")[:512]
        except OSError:
            pass
        raise RuntimeError(f"unexpected status code {exc.code} url={request.full_url} body={detail}") from exc
    except URLError as exc:
        raise RuntimeError(f"request failed url={request.full_url} reason={exc.reason}") from exc
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"error decoding response url={request.full_url}: {exc}") from exc


def get_json(url: str, params: dict[str, str] | None = None, timeout: float = 10.0):
    request = Request(_with_query(url, params), headers={"User-Agent": USER_AGENT})
    return _open_json(request, timeout)


def post_json(url: str, payload: dict, timeout: float = 10.0):
    data = json.dumps(payload).encode("utf-8")
    request = Request(
        url,
        data=data,
        method="POST",
        headers={"User-Agent": USER_AGENT, "Content-Type": "application/json"},
    )
    return _open_json(request, timeout)
