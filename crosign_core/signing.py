"""
Signing backends for crosign.

``SigningBackend`` is the capability every transaction builder talks to:

    public_key() -> PublicKey
    address()    -> Address
    await sign(message) -> base64 compact signature

Two implementations exist and are chosen once by the caller:

  - ``SoftwareBackend`` (this module) holds a ``PrivateKey`` and signs
    in-process.  ``sign`` is a coroutine only so that callers can treat it
    exactly like the hardware path; it never awaits anything.
  - ``HardwareBackend`` (``crosign_core.ledger``) talks to a Ledger device
    and may wait on the user for as long as it takes.

There is no fallback from one backend to the other.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Union

from crosign_core.address import Address
from crosign_core.config import MAINNET, ChainConfig
from crosign_core.hd_wallet import KeyDeriver
from crosign_core.keys import PrivateKey, PublicKey

logger = logging.getLogger("crosign_signing")


class SigningBackend(ABC):
    """Uniform signing capability over software keys and devices."""

    chain: ChainConfig

    @abstractmethod
    def public_key(self) -> PublicKey:
        """Compressed public key; never fails once constructed."""

    def address(self) -> Address:
        """Account address derived from ``public_key()``."""
        return Address.from_public_key(self.public_key(), self.chain.address_prefix)

    @abstractmethod
    async def sign(self, message: bytes) -> str:
        """Sign ``SHA-256(message)``; return the base64 64-byte signature."""

    def verify(self, message: bytes, signature: str) -> bool:
        return self.public_key().verify(message, signature)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address()})"


class SoftwareBackend(SigningBackend):
    """In-process signer holding its own private key."""

    def __init__(self, private_key: PrivateKey, chain: ChainConfig = MAINNET):
        self._private_key = private_key
        self._public_key = private_key.public_key()
        self.chain = chain

    @classmethod
    def from_phrase(
        cls,
        words: Union[str, Iterable[str]],
        passphrase: str = "",
        chain: ChainConfig = MAINNET,
        account: int = 0,
        index: int = 0,
    ) -> SoftwareBackend:
        """Derive the key at ``m/44'/coin'/account'/0/index`` from a phrase."""
        private_key = KeyDeriver(chain).private_key(words, passphrase, account, index)
        backend = cls(private_key, chain)
        logger.debug("Software signer ready", extra={"address": str(backend.address())})
        return backend

    def public_key(self) -> PublicKey:
        return self._public_key

    def sign_sync(self, message: bytes) -> str:
        digest = hashlib.sha256(message).digest()
        raw = self._private_key.sign_digest(digest)
        return base64.b64encode(raw).decode("ascii")

    async def sign(self, message: bytes) -> str:
        logger.debug("Signing %d bytes in-process", len(message))
        return self.sign_sync(message)
