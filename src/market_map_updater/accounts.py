from __future__ import annotations

import hashlib

from bech32 import bech32_decode, bech32_encode, convertbits
from Crypto.Hash import RIPEMD160


def address_bytes(pubkey: bytes) -> bytes:
    if len(pubkey) != 33:
        raise ValueError(f"expected 33 byte compressed secp256k1 pubkey, got {len(pubkey)} bytes")
    sha = hashlib.sha256(pubkey).digest()
    return RIPEMD160.new(sha).digest()


def bech32_address(prefix: str, data: bytes) -> str:
    if not prefix:
        raise ValueError("bech32 prefix must not be empty")
    words = convertbits(data, 8, 5)
    if words is None:
        raise ValueError("unable to convert address bytes to bech32 words")
    return bech32_encode(prefix, words)


def address_from_pubkey(prefix: str, pubkey: bytes) -> str:
    return bech32_address(prefix, address_bytes(pubkey))


def decode_address(address: str) -> tuple[str, bytes]:
    prefix, words = bech32_decode(address)
    if prefix is None or words is None:
        raise ValueError(f"invalid bech32 address {address!r}")
    data = convertbits(words, 5, 8, False)
    if data is None:
        raise ValueError(f"invalid bech32 address payload {address!r}")
    return prefix, bytes(data)
