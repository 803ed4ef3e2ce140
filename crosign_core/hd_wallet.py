"""
Recovery phrase handling and hierarchical key derivation for crosign.

Provides:
  - BIP-39 phrase parsing with distinct word-count / word / checksum errors
  - BIP-39 phrase generation and seed expansion
  - BIP-32 HD derivation (hardened and normal children)
  - BIP-44 path parsing (``m/44'/394'/0'/0/0``)
  - ``KeyDeriver`` bundling the above for one chain configuration

Everything here except ``generate_phrase`` is a pure function of its
inputs: the same phrase, passphrase and path always give the same key.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass, field
from typing import Iterable, Union

from mnemonic import Mnemonic

from crosign_core.address import hash160
from crosign_core.config import MAINNET, ChainConfig
from crosign_core.errors import CryptographicError, InputError, PhraseError, PhraseErrorKind
from crosign_core.keys import CURVE_ORDER, PrivateKey

HARDENED = 0x80000000

VALID_WORD_COUNTS = (12, 15, 18, 21, 24)
VALID_STRENGTHS = (128, 160, 192, 224, 256)

SEED_SIZE = 64

_MNEMONIC = Mnemonic("english")
_WORD_INDEX: dict[str, int] = {w: i for i, w in enumerate(_MNEMONIC.wordlist)}


# ===================================================================
#  BIP-39 Recovery Phrase
# ===================================================================

@dataclass(frozen=True)
class Phrase:
    """A validated recovery phrase plus its optional passphrase."""
    words: tuple[str, ...] = field(repr=False)
    passphrase: str = field(default="", repr=False)

    def __repr__(self) -> str:
        return f"Phrase(<{len(self.words)} words>)"


def _split_words(words: Union[str, Iterable[str]]) -> list[str]:
    if isinstance(words, str):
        text = words
    else:
        text = " ".join(words)
    return Mnemonic.normalize_string(text).lower().split()


def _verify_checksum(words: list[str]) -> bool:
    """Re-derive the checksum bits from the entropy bits and compare."""
    bits = "".join(bin(_WORD_INDEX[w])[2:].zfill(11) for w in words)
    checksum_len = len(bits) // 33
    entropy_bits = bits[: len(bits) - checksum_len]
    entropy = int(entropy_bits, 2).to_bytes(len(entropy_bits) // 8, "big")
    h = hashlib.sha256(entropy).digest()
    expected = bin(int.from_bytes(h, "big"))[2:].zfill(256)[:checksum_len]
    return hmac.compare_digest(bits[-checksum_len:], expected)


def parse_phrase(words: Union[str, Iterable[str]], passphrase: str = "") -> Phrase:
    """
    Validate a recovery phrase.

    Raises ``PhraseError`` with kind ``WORD_COUNT``, ``INVALID_WORD`` or
    ``CHECKSUM``; no seed is computed for a rejected phrase.
    """
    parts = _split_words(words)
    if len(parts) not in VALID_WORD_COUNTS:
        raise PhraseError(
            PhraseErrorKind.WORD_COUNT,
            f"expected {'/'.join(map(str, VALID_WORD_COUNTS))} words, got {len(parts)}",
        )
    for position, word in enumerate(parts, start=1):
        if word not in _WORD_INDEX:
            raise PhraseError(
                PhraseErrorKind.INVALID_WORD,
                f"word #{position} is not in the wordlist",
            )
    if not _verify_checksum(parts):
        raise PhraseError(PhraseErrorKind.CHECKSUM, "checksum mismatch")
    return Phrase(tuple(parts), passphrase)


def generate_phrase(strength: int = 256) -> str:
    """Generate a new phrase from OS entropy (128/160/192/224/256 bits)."""
    if strength not in VALID_STRENGTHS:
        raise ValueError(f"unsupported phrase strength {strength} bits")
    return _MNEMONIC.generate(strength)


def expand(phrase: Phrase) -> bytes:
    """
    BIP-39 seed: PBKDF2-HMAC-SHA512, 2048 rounds, salt ``"mnemonic" + passphrase``.

    Deliberately slow and deliberately uncached.
    """
    seed = Mnemonic.to_seed(" ".join(phrase.words), phrase.passphrase)
    return bytes(seed)


# ===================================================================
#  HD Key Derivation (BIP-32 / BIP-44)
# ===================================================================

def parse_path(path: str) -> tuple[int, ...]:
    """
    Parse ``m/44'/394'/0'/0/0`` into child indices.

    Hardened components take a trailing ``'`` or ``h``.
    """
    path = path.strip()
    if path == "m":
        return ()
    if path.startswith("m/"):
        path = path[2:]
    indices = []
    for component in path.split("/"):
        hardened = component.endswith(("'", "h", "H"))
        digits = component[:-1] if hardened else component
        if not (digits.isascii() and digits.isdecimal()):
            raise InputError(f"invalid path component '{component}'")
        index = int(digits)
        if index >= HARDENED:
            raise InputError(f"path index {index} out of range")
        indices.append(index + HARDENED if hardened else index)
    return tuple(indices)


class HDNode:
    """
    One BIP-32 extended private key (key, chain code, depth, parent).

    Implements BIP-32 private-parent to private-child derivation with
    HMAC-SHA512.  Path notation: m/44'/394'/account'/0/index
    """

    HARDENED = HARDENED

    def __init__(self, private_key: bytes, chain_code: bytes, depth: int = 0,
                 index: int = 0, parent_fingerprint: bytes = b"\x00" * 4):
        self.private_key = private_key
        self.chain_code = chain_code
        self.depth = depth
        self.index = index
        self.parent_fingerprint = parent_fingerprint

    @classmethod
    def from_seed(cls, seed: bytes) -> HDNode:
        """Create master node from a BIP-39 seed."""
        I = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_int = int.from_bytes(I[:32], "big")
        if not 0 < key_int < CURVE_ORDER:
            raise CryptographicError("seed produced an invalid master key")
        return cls(private_key=I[:32], chain_code=I[32:])

    def _compressed_pub(self) -> bytes:
        return PrivateKey.from_bytes(self.private_key).public_key().to_bytes()

    @property
    def fingerprint(self) -> bytes:
        """First 4 bytes of Hash160 of the compressed public key."""
        return hash160(self._compressed_pub())[:4]

    def derive_child(self, index: int) -> HDNode:
        """Derive a child node at the given index."""
        if not 0 <= index <= 0xFFFFFFFF:
            raise InputError(f"child index {index} out of range")
        if index >= self.HARDENED:
            # Hardened: use private key
            data = b"\x00" + self.private_key + struct.pack(">I", index)
        else:
            # non-hardened children commit to the parent public key
            data = self._compressed_pub() + struct.pack(">I", index)

        I = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        tweak = int.from_bytes(I[:32], "big")
        if tweak >= CURVE_ORDER:
            raise CryptographicError(f"invalid child key at index {index}")
        child_key_int = (tweak + int.from_bytes(self.private_key, "big")) % CURVE_ORDER
        if child_key_int == 0:
            raise CryptographicError(f"invalid child key at index {index}")

        return HDNode(
            private_key=child_key_int.to_bytes(32, "big"),
            chain_code=I[32:],
            depth=self.depth + 1,
            index=index,
            parent_fingerprint=self.fingerprint,
        )

    def derive_path(self, path: str) -> HDNode:
        """Walk a BIP-44 path string like "m/44'/394'/0'/0/0"."""
        node = self
        for index in parse_path(path):
            node = node.derive_child(index)
        return node

    def to_private_key(self) -> PrivateKey:
        return PrivateKey.from_bytes(self.private_key)

    def __repr__(self) -> str:
        return f"HDNode(depth={self.depth}, index={self.index})"


class KeyDeriver:
    """Phrase → seed → leaf key for one chain configuration."""

    def __init__(self, chain: ChainConfig = MAINNET):
        self.chain = chain

    def parse(self, words: Union[str, Iterable[str]], passphrase: str = "") -> Phrase:
        return parse_phrase(words, passphrase)

    def expand(self, phrase: Phrase) -> bytes:
        return expand(phrase)

    def derive(self, seed: bytes, path: str | None = None) -> HDNode:
        """Derive the node at *path* (the chain's default account path if omitted)."""
        if len(seed) != SEED_SIZE:
            raise InputError(f"seed must be {SEED_SIZE} bytes, got {len(seed)}")
        return HDNode.from_seed(seed).derive_path(path or self.chain.hd_path())

    def private_key(self, words: Union[str, Iterable[str]], passphrase: str = "",
                    account: int = 0, index: int = 0) -> PrivateKey:
        phrase = self.parse(words, passphrase)
        seed = self.expand(phrase)
        return self.derive(seed, self.chain.hd_path(account, index)).to_private_key()
