"""
secp256k1 key types for crosign.

``PrivateKey`` wraps the signing secret and deliberately offers no way to
export it: the only things that leave it are the public key and digest
signatures.  ``PublicKey`` is an immutable, hashable value holding the
33-byte compressed point; its text form is standard base64, which is how
the chain carries public keys in amino JSON.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_string, sigencode_string_canonize

from crosign_core.errors import CryptographicError, InputError

CURVE_ORDER = SECP256k1.order

PRIVATE_KEY_SIZE = 32
COMPRESSED_PUBLIC_KEY_SIZE = 33
SIGNATURE_SIZE = 64

PUBKEY_AMINO_TYPE = "tendermint/PubKeySecp256k1"


def compress_point(vk: VerifyingKey) -> bytes:
    """SEC1 compressed encoding (``0x02``/``0x03`` prefix + X)."""
    return vk.to_string("compressed")


class PrivateKey:
    """A 32-byte secp256k1 scalar in ``[1, n-1]``."""

    __slots__ = ("_sk",)

    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key

    @classmethod
    def from_bytes(cls, raw: bytes) -> PrivateKey:
        if len(raw) != PRIVATE_KEY_SIZE:
            raise InputError(f"private key must be {PRIVATE_KEY_SIZE} bytes, got {len(raw)}")
        secexp = int.from_bytes(raw, "big")
        if not 0 < secexp < CURVE_ORDER:
            raise InputError("private key scalar out of range")
        return cls(SigningKey.from_secret_exponent(secexp, curve=SECP256k1))

    def public_key(self) -> PublicKey:
        return PublicKey(compress_point(self._sk.get_verifying_key()))

    def sign_digest(self, digest: bytes) -> bytes:
        """
        RFC 6979 deterministic ECDSA over a 32-byte digest.

        Returns the 64-byte compact ``r || s`` form with ``s`` normalised
        to the lower half of the curve order, as the chain's verifier
        requires.
        """
        if len(digest) != 32:
            raise CryptographicError(f"digest must be 32 bytes, got {len(digest)}")
        try:
            return self._sk.sign_digest_deterministic(
                digest,
                hashfunc=hashlib.sha256,
                sigencode=sigencode_string_canonize,
            )
        except (ValueError, RuntimeError) as exc:
            raise CryptographicError(f"signing failed: {exc}") from exc

    def __repr__(self) -> str:
        return "PrivateKey(<redacted>)"

    def __reduce__(self):
        raise TypeError("PrivateKey cannot be serialised")


@dataclass(frozen=True)
class PublicKey:
    """Compressed secp256k1 public key."""
    raw: bytes

    def __post_init__(self):
        if len(self.raw) != COMPRESSED_PUBLIC_KEY_SIZE:
            raise InputError(
                f"public key must be {COMPRESSED_PUBLIC_KEY_SIZE} compressed bytes, "
                f"got {len(self.raw)}"
            )
        if self.raw[:1] not in (b"\x02", b"\x03"):
            raise InputError("public key must use the compressed SEC1 encoding")
        try:
            VerifyingKey.from_string(self.raw, curve=SECP256k1)
        except (MalformedPointError, ValueError) as exc:
            raise InputError(f"public key is not a secp256k1 point: {exc}") from exc

    # ---- explicit import ----

    @classmethod
    def from_bytes(cls, raw: bytes) -> PublicKey:
        """Import a compressed (33) or uncompressed (65) SEC1 point."""
        try:
            vk = VerifyingKey.from_string(bytes(raw), curve=SECP256k1)
        except (MalformedPointError, ValueError) as exc:
            raise InputError(f"invalid public key: {exc}") from exc
        return cls(compress_point(vk))

    @classmethod
    def from_base64(cls, text: str) -> PublicKey:
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InputError("invalid public key input") from exc
        return cls.from_bytes(raw)

    # ---- encodings ----

    def to_bytes(self) -> bytes:
        return self.raw

    def to_base64(self) -> str:
        return base64.b64encode(self.raw).decode("ascii")

    def to_amino(self) -> dict:
        """``{"type": "tendermint/PubKeySecp256k1", "value": <base64>}``"""
        return {"type": PUBKEY_AMINO_TYPE, "value": self.to_base64()}

    def verifying_key(self) -> VerifyingKey:
        return VerifyingKey.from_string(self.raw, curve=SECP256k1)

    def verify(self, message: bytes, signature: str) -> bool:
        """Check a base64 compact signature over ``SHA-256(message)``."""
        try:
            sig = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        if len(sig) != SIGNATURE_SIZE:
            return False
        digest = hashlib.sha256(message).digest()
        try:
            return self.verifying_key().verify_digest(
                sig, digest, sigdecode=sigdecode_string,
            )
        except BadSignatureError:
            return False

    def __str__(self) -> str:
        return self.to_base64()
