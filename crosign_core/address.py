"""
Account address codec.

A chain address is ``RIPEMD160(SHA256(compressed_pubkey))`` rendered as
bech32 with the network's human-readable prefix (``cro`` on mainnet,
``tcro`` on testnet).  The codec is a pure function of the public key
bytes and the prefix.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

import bech32
from Crypto.Hash import RIPEMD160

from crosign_core.config import MAINNET
from crosign_core.errors import InputError
from crosign_core.keys import PublicKey

ADDRESS_SIZE = 20


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def address_hash(public_key: PublicKey) -> bytes:
    """Raw 20-byte account hash for a public key."""
    bits = hash160(public_key.to_bytes())
    if len(bits) != ADDRESS_SIZE:
        raise InputError("invalid bits length to generate address")
    return bits


@dataclass(frozen=True)
class Address:
    """20-byte account identifier bound to a bech32 prefix."""
    raw: bytes
    prefix: str = MAINNET.address_prefix

    def __post_init__(self):
        if len(self.raw) != ADDRESS_SIZE:
            raise InputError(
                f"address must be {ADDRESS_SIZE} bytes, got {len(self.raw)}"
            )
        if not self.prefix:
            raise InputError("address prefix must not be empty")

    @classmethod
    def from_public_key(cls, public_key: PublicKey, prefix: str = MAINNET.address_prefix) -> Address:
        return cls(address_hash(public_key), prefix)

    @classmethod
    def from_bech32(cls, text: str, prefix: str | None = None) -> Address:
        """Decode a bech32 address, optionally requiring a given prefix."""
        hrp, data = bech32.bech32_decode(text)
        if hrp is None or data is None:
            raise InputError(f"invalid bech32 address: {text!r}")
        if prefix is not None and hrp != prefix:
            raise InputError(f"address prefix '{hrp}' does not match '{prefix}'")
        raw = bech32.convertbits(data, 5, 8, False)
        if raw is None:
            raise InputError(f"invalid bech32 payload in {text!r}")
        return cls(bytes(raw), hrp)

    def to_bech32(self, prefix: str | None = None) -> str:
        data = bech32.convertbits(self.raw, 8, 5)
        return bech32.bech32_encode(prefix or self.prefix, data)

    def __str__(self) -> str:
        return self.to_bech32()
