from __future__ import annotations

import argparse
import base64
from dataclasses import replace
import json
import logging
import os
from pathlib import Path
import signal
import threading
from typing import Any, Iterable

from market_map_updater.clients_chain import MarketMapClient
from market_map_updater.config import (
    ChainConfig,
    DispatchConfig,
    MmuConfig,
    SigningConfig,
    UpsertConfig,
    config_to_dict,
    default_chain_config,
    default_submitter_config,
    default_transaction_config,
    load_config,
)
from market_map_updater.diffs import diff_market_maps
from market_map_updater.dispatcher import Dispatcher
from market_map_updater.errors import ConfigError, InvalidMarketMapError
from market_map_updater.merge import Options
from market_map_updater.messages import convert_removals_to_messages, convert_upserts_to_messages
from market_map_updater.models import Market, MarketMap, markets_from_list, markets_to_list
from market_map_updater.override import new_override
from market_map_updater.signing import SIMULATE_AGENT_TYPE, LOCAL_AGENT_TYPE, Registry, default_registry
from market_map_updater.upserts import UpsertGenerator

LOGGER = logging.getLogger("market_map_updater")

DEFAULT_CONFIG_PATH = "./local/config.json"
DEFAULT_GENERATED_MARKET_MAP = "./tmp/generated-market-map.json"
DEFAULT_OVERRIDE_MARKET_MAP = "./tmp/override-market-map.json"
DEFAULT_REMOVALS = "./tmp/generated-market-map-removals.json"
DEFAULT_UPSERTS = "./tmp/upserts.json"
DEFAULT_TRANSACTIONS = "transactions.json"


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3", "web3"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _read_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid json: {exc}") from exc


def _write_json(path: str, payload: Any) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _require(section, name: str):
    if section is None:
        raise ConfigError(f"{name} configuration missing from mmu config")
    return section


def _install_cancel_handlers(cancel: threading.Event) -> None:
    def _handle_signal(signum: int, _frame: object) -> None:
        if cancel.is_set():
            LOGGER.error("Received signal %s again, forcing exit now", signum)
            raise SystemExit(130)
        LOGGER.warning("Received signal %s, cancelling (press Ctrl+C again to force-exit)", signum)
        cancel.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)


def override_markets_from_config(
    chain_config: ChainConfig,
    generated: MarketMap,
    options: Options,
    market_map_client=None,
    perpetuals_client=None,
    cancel: threading.Event | None = None,
) -> tuple[MarketMap, list[str]]:
    client = market_map_client if market_map_client is not None else MarketMapClient.from_chain_config(chain_config)
    on_chain = client.get_market_map(cancel=cancel)
    LOGGER.info("fetched on chain market map markets=%d", len(on_chain))
    market_override = new_override(chain_config, client=perpetuals_client)
    return market_override.override_generated_markets(on_chain, generated, options, cancel=cancel)


def _checked_market_map(market_map: MarketMap, label: str, warn_on_invalid: bool) -> MarketMap:
    try:
        market_map.validate_basic()
    except InvalidMarketMapError as exc:
        if not warn_on_invalid:
            raise InvalidMarketMapError(exc.errors, prefix=f"failed to validate {label} market map") from exc
        LOGGER.warning("invalid %s market map, using valid subset err=%s", label, exc)
        return market_map.valid_subset()
    return market_map


def upserts_from_configs(
    generated: MarketMap,
    chain_config: ChainConfig,
    upsert_config: UpsertConfig,
    warn_on_invalid: bool = False,
    market_map_client=None,
    cancel: threading.Event | None = None,
) -> list[Market]:
    generated = _checked_market_map(generated, "generated", warn_on_invalid)
    client = market_map_client if market_map_client is not None else MarketMapClient.from_chain_config(chain_config)
    on_chain = client.get_market_map(cancel=cancel)
    on_chain = _checked_market_map(on_chain, "on chain", warn_on_invalid)
    LOGGER.info("fetched current market map markets=%d", len(on_chain))
    return UpsertGenerator(upsert_config, generated, on_chain).generate_upserts()


def _options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        update_enabled=bool(args.update_enabled),
        overwrite_providers=bool(args.overwrite_providers),
        existing_only=bool(args.existing_only),
        disable_defi_market_merging=bool(args.disable_defi_market_merging),
    )


def _override_command(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    chain = _require(cfg.chain, "chain")
    generated = MarketMap.from_dict(_read_json(args.market_map))
    LOGGER.info("read generated market map path=%s markets=%d", args.market_map, len(generated))
    combined, removals = override_markets_from_config(chain, generated, _options_from_args(args))
    _write_json(args.override_market_map_out, combined.to_dict())
    _write_json(args.removals_out, removals)
    LOGGER.info(
        "wrote overridden market map path=%s markets=%d removals=%d",
        args.override_market_map_out,
        len(combined),
        len(removals),
    )
    return 0


def _upserts_command(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    chain = _require(cfg.chain, "chain")
    upsert_config = _require(cfg.upsert, "upsert")
    generated = MarketMap.from_dict(_read_json(args.market_map))
    LOGGER.info("read generated market map path=%s markets=%d", args.market_map, len(generated))
    upserts = upserts_from_configs(generated, chain, upsert_config, args.warn_on_invalid_market_map)
    _write_json(args.upserts_out, markets_to_list(upserts))
    LOGGER.info("wrote upserts path=%s count=%d", args.upserts_out, len(upserts))
    return 0


def _generate_upserts_command(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    chain = _require(cfg.chain, "chain")
    upsert_config = _require(cfg.upsert, "upsert")
    generated = MarketMap.from_dict(_read_json(args.market_map))
    client = MarketMapClient.from_chain_config(chain)
    combined, removals = override_markets_from_config(
        chain,
        generated,
        _options_from_args(args),
        market_map_client=client,
    )
    upserts = upserts_from_configs(combined, chain, upsert_config, args.warn_on_invalid_market_map, market_map_client=client)
    _write_json(args.upserts_out, markets_to_list(upserts))
    _write_json(args.removals_out, removals)
    LOGGER.info("wrote upserts path=%s count=%d removals=%d", args.upserts_out, len(upserts), len(removals))
    return 0


def _dispatch_command(args: argparse.Namespace) -> int:
    if not args.upserts and not args.removals:
        LOGGER.error("must specify either --upserts and/or --removals")
        return 2
    cfg = load_config(args.config)
    dispatch = _require(cfg.dispatch, "dispatch")
    chain = _require(cfg.chain, "chain")
    registry: Registry = args.registry if args.registry is not None else default_registry()

    signing_config = dispatch.signing
    if args.simulate_address:
        signing_config = SigningConfig(type=SIMULATE_AGENT_TYPE, config={"address": args.simulate_address})
    signer = registry.create_signer(signing_config, chain)

    cancel = threading.Event()
    _install_cancel_handlers(cancel)
    dispatcher = Dispatcher(dispatch, chain, signer)
    # the generator stamps the signer address as authority on every message
    authority = ""

    msgs: list = []
    if args.upserts:
        upserts = markets_from_list(_read_json(args.upserts))
        msgs.extend(convert_upserts_to_messages(dispatch.tx, chain.version, authority, upserts))
    if args.removals:
        removals = [str(item) for item in _read_json(args.removals) or []]
        msgs.extend(convert_removals_to_messages(chain.version, authority, removals))
    if not msgs:
        LOGGER.info("nothing to dispatch")
        return 0

    txs = dispatcher.generate_transactions(msgs, cancel=cancel)
    _write_json(args.transactions_out, [base64.b64encode(tx).decode("ascii") for tx in txs])
    LOGGER.info("wrote transactions path=%s count=%d", args.transactions_out, len(txs))
    if args.simulate:
        return 0
    dispatcher.submit_transactions(txs, cancel=cancel)
    return 0


def _diff_command(args: argparse.Namespace) -> int:
    new = MarketMap.from_dict(_read_json(args.market_map))
    if args.compare:
        old = MarketMap.from_dict(_read_json(args.compare))
    else:
        chain = _require(load_config(args.config).chain, "chain")
        old = MarketMapClient.from_chain_config(chain).get_market_map()
    diff = diff_market_maps(old, new)
    LOGGER.info("market map diff markets=%d", len(diff))
    if args.out:
        _write_json(args.out, diff)
        return 0
    print(json.dumps(diff, indent=2))
    return 0


def _config_init_command(args: argparse.Namespace) -> int:
    chain = default_chain_config()
    if args.chain_id:
        chain = replace(chain, chain_id=args.chain_id)
    cfg = MmuConfig(
        dispatch=DispatchConfig(
            tx=default_transaction_config(),
            signing=SigningConfig(type=LOCAL_AGENT_TYPE, config={"private_key_file": "./local/priv_key.txt"}),
            submitter=default_submitter_config(),
        ),
        chain=chain,
        upsert=UpsertConfig(),
    )
    _write_json(args.out, config_to_dict(cfg))
    LOGGER.info("wrote default config path=%s", args.out)
    return 0


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=os.getenv("MMU_CONFIG", DEFAULT_CONFIG_PATH), help="Path to mmu config json")


def _add_option_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--update-enabled", action="store_true", help="Allow updates to enabled on chain markets")
    parser.add_argument("--overwrite-providers", action="store_true", help="Replace provider lists instead of appending")
    parser.add_argument("--existing-only", action="store_true", help="Only modify markets already on chain")
    parser.add_argument(
        "--disable-defi-market-merging",
        action="store_true",
        help="Do not consolidate DeFi markets by aggregator ID",
    )


def build_parser(registry: Registry | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mmu", description="Market map updater")
    parser.add_argument("--log-level", default=os.getenv("MMU_LOG_LEVEL", "INFO"))
    sub = parser.add_subparsers(dest="command", required=True)

    override = sub.add_parser("override", help="Override generated markets with the on chain market map")
    _add_config_arg(override)
    override.add_argument("--market-map", default=DEFAULT_GENERATED_MARKET_MAP)
    _add_option_args(override)
    override.add_argument("--override-market-map-out", default=DEFAULT_OVERRIDE_MARKET_MAP)
    override.add_argument("--removals-out", default=DEFAULT_REMOVALS)
    override.set_defaults(func=_override_command)

    upserts = sub.add_parser("upserts", help="Generate ordered upserts from a market map")
    _add_config_arg(upserts)
    upserts.add_argument("--market-map", default=DEFAULT_OVERRIDE_MARKET_MAP)
    upserts.add_argument("--warn-on-invalid-market-map", action="store_true")
    upserts.add_argument("--upserts-out", default=DEFAULT_UPSERTS)
    upserts.set_defaults(func=_upserts_command)

    composite = sub.add_parser("generate-upserts", help="Run override then upserts in one pass")
    _add_config_arg(composite)
    composite.add_argument("--market-map", default=DEFAULT_GENERATED_MARKET_MAP)
    _add_option_args(composite)
    composite.add_argument("--warn-on-invalid-market-map", action="store_true")
    composite.add_argument("--upserts-out", default=DEFAULT_UPSERTS)
    composite.add_argument("--removals-out", default=DEFAULT_REMOVALS)
    composite.set_defaults(func=_generate_upserts_command)

    dispatch = sub.add_parser("dispatch", help="Sign and submit upserts and/or removals")
    _add_config_arg(dispatch)
    dispatch.add_argument("--upserts", default="", help="Path to upserts json list")
    dispatch.add_argument("--removals", default="", help="Path to removals json list")
    dispatch.add_argument("--simulate", action="store_true", help="Stop after signing, do not broadcast")
    dispatch.add_argument("--simulate-address", default="", help="Sign with the simulate agent for this address")
    dispatch.add_argument("--transactions-out", default=DEFAULT_TRANSACTIONS)
    dispatch.set_defaults(func=_dispatch_command, registry=registry)

    diff = sub.add_parser("diff", help="Show per market differences between two market maps")
    _add_config_arg(diff)
    diff.add_argument("--market-map", required=True)
    diff.add_argument("--compare", default="", help="Market map file to compare against instead of the chain")
    diff.add_argument("--out", default="", help="Write the diff to this file instead of stdout")
    diff.set_defaults(func=_diff_command)

    init = sub.add_parser("config-init", help="Write a default config file")
    init.add_argument("--out", default=DEFAULT_CONFIG_PATH)
    init.add_argument("--chain-id", default="")
    init.set_defaults(func=_config_init_command)
    return parser


def cli(argv: Iterable[str] | None = None, registry: Registry | None = None) -> int:
    parser = build_parser(registry if registry is not None else default_registry())
    args = parser.parse_args(list(argv) if argv is not None else None)
    _setup_logging(args.log_level)
    try:
        return int(args.func(args))
    except (RuntimeError, OSError, ValueError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1


def main() -> None:
    raise SystemExit(cli())
