from __future__ import annotations

from typing import Any, Iterable

from google.protobuf import any_pb2, descriptor_pb2, descriptor_pool, message_factory

PUBKEY_TYPE_URL = "/cosmos.crypto.secp256k1.PubKey"
SIGN_MODE_DIRECT = 1

_Field = descriptor_pb2.FieldDescriptorProto

_STRING = _Field.TYPE_STRING
_BYTES = _Field.TYPE_BYTES
_BOOL = _Field.TYPE_BOOL
_UINT64 = _Field.TYPE_UINT64
_INT32 = _Field.TYPE_INT32
_MESSAGE = _Field.TYPE_MESSAGE
_REPEATED = _Field.LABEL_REPEATED
_OPTIONAL = _Field.LABEL_OPTIONAL

# (file name, package, dependencies, {message: [(field, number, type, repeated, type name)]})
_FILES = (
    (
        "cosmos/crypto/secp256k1/keys.proto",
        "cosmos.crypto.secp256k1",
        (),
        {"PubKey": [("key", 1, _BYTES, False, None)]},
    ),
    (
        "cosmos/base/v1beta1/coin.proto",
        "cosmos.base.v1beta1",
        (),
        {"Coin": [("denom", 1, _STRING, False, None), ("amount", 2, _STRING, False, None)]},
    ),
    (
        "cosmos/tx/v1beta1/tx.proto",
        "cosmos.tx.v1beta1",
        ("google/protobuf/any.proto", "cosmos/base/v1beta1/coin.proto"),
        {
            "TxRaw": [
                ("body_bytes", 1, _BYTES, False, None),
                ("auth_info_bytes", 2, _BYTES, False, None),
                ("signatures", 3, _BYTES, True, None),
            ],
            "SignDoc": [
                ("body_bytes", 1, _BYTES, False, None),
                ("auth_info_bytes", 2, _BYTES, False, None),
                ("chain_id", 3, _STRING, False, None),
                ("account_number", 4, _UINT64, False, None),
            ],
            "TxBody": [
                ("messages", 1, _MESSAGE, True, ".google.protobuf.Any"),
                ("memo", 2, _STRING, False, None),
            ],
            "AuthInfo": [
                ("signer_infos", 1, _MESSAGE, True, ".cosmos.tx.v1beta1.SignerInfo"),
                ("fee", 2, _MESSAGE, False, ".cosmos.tx.v1beta1.Fee"),
            ],
            "SignerInfo": [
                ("public_key", 1, _MESSAGE, False, ".google.protobuf.Any"),
                ("mode_info", 2, _MESSAGE, False, ".cosmos.tx.v1beta1.ModeInfo"),
                ("sequence", 3, _UINT64, False, None),
            ],
            "ModeInfo": [("single", 1, _MESSAGE, False, ".cosmos.tx.v1beta1.ModeInfoSingle")],
            # SignMode is an enum on chain; enums share the int32 varint encoding
            "ModeInfoSingle": [("mode", 1, _INT32, False, None)],
            "Fee": [
                ("amount", 1, _MESSAGE, True, ".cosmos.base.v1beta1.Coin"),
                ("gas_limit", 2, _UINT64, False, None),
            ],
        },
    ),
    (
        # slinky.marketmap.v1 and connect.marketmap.v2 share this layout; only the type URL differs
        "connect/marketmap/v2/tx.proto",
        "connect.marketmap.v2",
        (),
        {
            "CurrencyPair": [("Base", 1, _STRING, False, None), ("Quote", 2, _STRING, False, None)],
            "Ticker": [
                ("currency_pair", 1, _MESSAGE, False, ".connect.marketmap.v2.CurrencyPair"),
                ("decimals", 2, _UINT64, False, None),
                ("min_provider_count", 3, _UINT64, False, None),
                ("enabled", 14, _BOOL, False, None),
                ("metadata_JSON", 15, _STRING, False, None),
            ],
            "ProviderConfig": [
                ("name", 1, _STRING, False, None),
                ("off_chain_ticker", 2, _STRING, False, None),
                ("normalize_by_pair", 3, _MESSAGE, False, ".connect.marketmap.v2.CurrencyPair"),
                ("invert", 4, _BOOL, False, None),
                ("metadata_JSON", 15, _STRING, False, None),
            ],
            "Market": [
                ("ticker", 1, _MESSAGE, False, ".connect.marketmap.v2.Ticker"),
                ("provider_configs", 2, _MESSAGE, True, ".connect.marketmap.v2.ProviderConfig"),
            ],
            "MsgUpsertMarkets": [
                ("authority", 1, _STRING, False, None),
                ("markets", 2, _MESSAGE, True, ".connect.marketmap.v2.Market"),
            ],
            "MsgRemoveMarkets": [
                ("authority", 1, _STRING, False, None),
                ("markets", 2, _STRING, True, None),
            ],
        },
    ),
)


def _build_pool() -> descriptor_pool.DescriptorPool:
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(any_pb2.DESCRIPTOR.serialized_pb)
    for name, package, dependencies, messages in _FILES:
        file_proto = descriptor_pb2.FileDescriptorProto(name=name, package=package, syntax="proto3")
        file_proto.dependency.extend(dependencies)
        for message_name, fields in messages.items():
            message_proto = file_proto.message_type.add(name=message_name)
            for field_name, number, field_type, repeated, type_name in fields:
                field = message_proto.field.add(
                    name=field_name,
                    number=number,
                    type=field_type,
                    label=_REPEATED if repeated else _OPTIONAL,
                )
                if type_name:
                    field.type_name = type_name
        pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_POOL = _build_pool()


def _message_class(full_name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(full_name))


TxRaw = _message_class("cosmos.tx.v1beta1.TxRaw")
SignDoc = _message_class("cosmos.tx.v1beta1.SignDoc")
TxBody = _message_class("cosmos.tx.v1beta1.TxBody")
AuthInfo = _message_class("cosmos.tx.v1beta1.AuthInfo")
PubKey = _message_class("cosmos.crypto.secp256k1.PubKey")
MarketProto = _message_class("connect.marketmap.v2.Market")
MsgUpsertMarketsProto = _message_class("connect.marketmap.v2.MsgUpsertMarkets")
MsgRemoveMarketsProto = _message_class("connect.marketmap.v2.MsgRemoveMarkets")


def serialize(message) -> bytes:
    return message.SerializeToString(deterministic=True)


def _fill_pair(target, pair) -> None:
    target.Base = pair.base
    target.Quote = pair.quote


def _fill_market(target, market) -> None:
    ticker = market.ticker
    _fill_pair(target.ticker.currency_pair, ticker.currency_pair)
    target.ticker.decimals = ticker.decimals
    target.ticker.min_provider_count = ticker.min_provider_count
    target.ticker.enabled = ticker.enabled
    target.ticker.metadata_JSON = ticker.metadata_json
    for provider in market.provider_configs:
        config = target.provider_configs.add(
            name=provider.name,
            off_chain_ticker=provider.off_chain_ticker,
            invert=provider.invert,
            metadata_JSON=provider.metadata_json,
        )
        if provider.normalize_by_pair is not None:
            _fill_pair(config.normalize_by_pair, provider.normalize_by_pair)


def encode_market(market) -> bytes:
    message = MarketProto()
    _fill_market(message, market)
    return serialize(message)


def encode_upsert_markets(authority: str, markets: Iterable) -> bytes:
    message = MsgUpsertMarketsProto(authority=authority)
    for market in markets:
        _fill_market(message.markets.add(), market)
    return serialize(message)


def encode_remove_markets(authority: str, markets: Iterable[str]) -> bytes:
    return serialize(MsgRemoveMarketsProto(authority=authority, markets=list(markets)))


def encode_tx_body(messages: Iterable[tuple[str, bytes]], memo: str = "") -> bytes:
    body = TxBody(memo=memo)
    for type_url, value in messages:
        body.messages.add(type_url=type_url, value=value)
    return serialize(body)


def encode_auth_info(
    sequence: int,
    gas_limit: int,
    fee_amount: int,
    fee_denom: str,
    pubkey: bytes | None = None,
) -> bytes:
    auth_info = AuthInfo()
    signer = auth_info.signer_infos.add(sequence=sequence)
    signer.mode_info.single.mode = SIGN_MODE_DIRECT
    if pubkey is not None:
        signer.public_key.type_url = PUBKEY_TYPE_URL
        signer.public_key.value = serialize(PubKey(key=pubkey))
    auth_info.fee.gas_limit = gas_limit
    if fee_denom:
        auth_info.fee.amount.add(denom=fee_denom, amount=str(fee_amount))
    return serialize(auth_info)


def encode_sign_doc(body_bytes: bytes, auth_info_bytes: bytes, chain_id: str, account_number: int) -> bytes:
    return serialize(
        SignDoc(
            body_bytes=body_bytes,
            auth_info_bytes=auth_info_bytes,
            chain_id=chain_id,
            account_number=account_number,
        )
    )


def encode_tx_raw(body_bytes: bytes, auth_info_bytes: bytes, signatures: Iterable[bytes]) -> bytes:
    return serialize(TxRaw(body_bytes=body_bytes, auth_info_bytes=auth_info_bytes, signatures=list(signatures)))


def decode_tx(tx_bytes: bytes) -> dict[str, Any]:
    """Split raw tx bytes back into body, auth info and signatures for inspection."""
    raw = TxRaw.FromString(tx_bytes)
    return {
        "body": TxBody.FromString(raw.body_bytes),
        "auth_info": AuthInfo.FromString(raw.auth_info_bytes),
        "signatures": list(raw.signatures),
    }
