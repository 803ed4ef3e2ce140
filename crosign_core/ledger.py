"""
Ledger hardware signing backend (Cosmos app).

Speaks the Cosmos Ledger app APDU protocol over any ``Transport``:

    CLA 0x55
      INS 0x00  GET_VERSION
      INS 0x02  SIGN_SECP256K1   (payload chunked: init / add / last)
      INS 0x04  GET_ADDR_SECP256K1

The private key never leaves the device.  ``HardwareBackend.sign`` sends
the sign document, then waits (possibly for minutes) while the user
reviews it on the device screen.  One exchange at a time is allowed per
device; concurrent ``sign`` calls queue on an ``asyncio.Lock``.

Device answers are DER signatures; they are converted to the 64-byte
compact low-S form so the output is interchangeable with
``SoftwareBackend``.  Failures are raised as ``HardwareError`` with a kind
the caller can act on and are never retried here.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import struct
from dataclasses import dataclass

from ecdsa.der import UnexpectedDER
from ecdsa.util import sigdecode_der, sigencode_string_canonize

from crosign_core.address import Address
from crosign_core.config import MAINNET, ChainConfig
from crosign_core.errors import CryptographicError, HardwareError, HardwareErrorKind, InputError
from crosign_core.hd_wallet import parse_path
from crosign_core.keys import COMPRESSED_PUBLIC_KEY_SIZE, CURVE_ORDER, PublicKey
from crosign_core.signing import SigningBackend
from crosign_core.transport import SW_OK, Transport, split_status

logger = logging.getLogger("crosign_ledger")

CLA = 0x55
INS_GET_VERSION = 0x00
INS_SIGN_SECP256K1 = 0x02
INS_GET_ADDR_SECP256K1 = 0x04

P1_INIT = 0x00
P1_ADD = 0x01
P1_LAST = 0x02

CHUNK_SIZE = 250
PATH_COMPONENTS = 5

# status word -> (kind, description)
_STATUS_MAP: dict[int, tuple[HardwareErrorKind, str]] = {
    0x6986: (HardwareErrorKind.USER_REJECTED, "transaction rejected on device"),
    0x5515: (HardwareErrorKind.DEVICE_LOCKED, "device is locked"),
    0x6B0C: (HardwareErrorKind.DEVICE_LOCKED, "device is locked"),
    0x6E00: (HardwareErrorKind.APP_NOT_OPEN, "Cosmos app does not seem to be open"),
    0x6E01: (HardwareErrorKind.APP_NOT_OPEN, "Cosmos app does not seem to be open"),
    0x6511: (HardwareErrorKind.APP_NOT_OPEN, "Cosmos app does not seem to be open"),
    0x6D00: (HardwareErrorKind.APP_NOT_OPEN, "instruction not supported by the open app"),
}

_PROTOCOL_STATUS: dict[int, str] = {
    0x6400: "execution error",
    0x6700: "wrong length",
    0x6982: "empty buffer",
    0x6983: "output buffer too small",
    0x6984: "data is invalid",
    0x6985: "conditions not satisfied",
    0x6A80: "bad key handle",
    0x6B00: "invalid P1/P2",
    0x6F00: "unknown error",
    0x6F01: "sign/verify error",
}


def check_status(status_word: int) -> None:
    """Raise the ``HardwareError`` matching a non-OK status word."""
    if status_word == SW_OK:
        return
    if status_word in _STATUS_MAP:
        kind, detail = _STATUS_MAP[status_word]
    else:
        kind = HardwareErrorKind.PROTOCOL
        detail = _PROTOCOL_STATUS.get(status_word, "unexpected device status")
    raise HardwareError(kind, detail, status_word)


def serialize_path(path: str) -> bytes:
    """Cosmos app path encoding: five little-endian u32, hardened bit set."""
    indices = parse_path(path)
    if len(indices) != PATH_COMPONENTS:
        raise InputError(f"device path must have {PATH_COMPONENTS} components: {path}")
    return b"".join(struct.pack("<I", i) for i in indices)


def build_apdu(ins: int, p1: int, p2: int, data: bytes = b"") -> bytes:
    if len(data) > 255:
        raise InputError("APDU payload exceeds 255 bytes")
    return bytes([CLA, ins, p1, p2, len(data)]) + data


def sign_chunks(path: bytes, message: bytes) -> list[bytes]:
    """Path chunk followed by the message cut into CHUNK_SIZE pieces."""
    chunks = [path]
    for offset in range(0, len(message), CHUNK_SIZE):
        chunks.append(message[offset : offset + CHUNK_SIZE])
    return chunks


def der_to_compact(der: bytes) -> bytes:
    """DER ECDSA signature → 64-byte ``r || s`` with low S."""
    try:
        r, s = sigdecode_der(der, CURVE_ORDER)
    except UnexpectedDER as exc:
        raise HardwareError(
            HardwareErrorKind.PROTOCOL, f"malformed signature from device: {exc}",
        ) from exc
    return sigencode_string_canonize(r, s, CURVE_ORDER)


@dataclass(frozen=True)
class AppVersion:
    test_mode: bool
    major: int
    minor: int
    patch: int
    device_locked: bool

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class HardwareBackend(SigningBackend):
    """Signing backend that owns one Ledger device transport."""

    def __init__(self, transport: Transport, public_key: PublicKey,
                 chain: ChainConfig = MAINNET, account: int = 0, index: int = 0):
        self._transport = transport
        self._public_key = public_key
        self._lock = asyncio.Lock()
        self.chain = chain
        self.path = chain.hd_path(account, index)

    @classmethod
    async def connect(cls, transport: Transport, chain: ChainConfig = MAINNET,
                      account: int = 0, index: int = 0) -> HardwareBackend:
        """
        Query the device once and return a ready backend.

        Fails with ``DEVICE_LOCKED`` / ``APP_NOT_OPEN`` / ``DEVICE_ABSENT``
        before any backend exists, so ``public_key()`` cannot fail later.
        """
        path = chain.hd_path(account, index)
        version = await _get_version(transport)
        if version.device_locked:
            raise HardwareError(HardwareErrorKind.DEVICE_LOCKED, "device is locked")
        public_key, device_address = await _get_address(transport, chain, path, display=False)
        computed = Address.from_public_key(public_key, chain.address_prefix).to_bech32()
        if device_address != computed:
            raise HardwareError(
                HardwareErrorKind.PROTOCOL,
                f"device reported address {device_address}, expected {computed}",
            )
        logger.info(
            "Ledger Cosmos app %s ready", version,
            extra={"address": computed, "path": path, "chain_id": chain.chain_id},
        )
        return cls(transport, public_key, chain, account, index)

    def public_key(self) -> PublicKey:
        return self._public_key

    async def show_address(self) -> str:
        """Display the address on the device and wait for the user to confirm it."""
        async with self._lock:
            _, address = await _get_address(
                self._transport, self.chain, self.path, display=True,
            )
        return address

    async def sign(self, message: bytes) -> str:
        if not message:
            raise InputError("nothing to sign")
        chunks = sign_chunks(serialize_path(self.path), message)
        async with self._lock:
            logger.info(
                "Waiting for signature confirmation on device (%d bytes)", len(message),
                extra={"path": self.path},
            )
            answer = b""
            for i, chunk in enumerate(chunks):
                if i == 0:
                    p1 = P1_INIT
                elif i == len(chunks) - 1:
                    p1 = P1_LAST
                else:
                    p1 = P1_ADD
                response = await self._transport.exchange(
                    build_apdu(INS_SIGN_SECP256K1, p1, 0, chunk),
                )
                answer, status = split_status(response)
                if status != SW_OK:
                    logger.warning("Device refused to sign", extra={"status_word": status})
                check_status(status)
        compact = der_to_compact(answer)
        signature = base64.b64encode(compact).decode("ascii")
        if not self._public_key.verify(message, signature):
            raise CryptographicError("device signature does not verify against its public key")
        logger.debug("Device signature accepted")
        return signature

    async def close(self) -> None:
        await self._transport.close()


async def _get_version(transport: Transport) -> AppVersion:
    data, status = split_status(await transport.exchange(build_apdu(INS_GET_VERSION, 0, 0)))
    check_status(status)
    if len(data) < 4:
        raise HardwareError(HardwareErrorKind.PROTOCOL, "short version answer")
    locked = len(data) > 4 and data[4] == 1
    return AppVersion(bool(data[0]), data[1], data[2], data[3], locked)


async def _get_address(transport: Transport, chain: ChainConfig, path: str,
                       display: bool) -> tuple[PublicKey, str]:
    hrp = chain.address_prefix.encode("ascii")
    payload = bytes([len(hrp)]) + hrp + serialize_path(path)
    apdu = build_apdu(INS_GET_ADDR_SECP256K1, 1 if display else 0, 0, payload)
    data, status = split_status(await transport.exchange(apdu))
    check_status(status)
    if len(data) <= COMPRESSED_PUBLIC_KEY_SIZE:
        raise HardwareError(HardwareErrorKind.PROTOCOL, "short address answer")
    try:
        public_key = PublicKey.from_bytes(data[:COMPRESSED_PUBLIC_KEY_SIZE])
        address = data[COMPRESSED_PUBLIC_KEY_SIZE:].decode("ascii")
    except (InputError, UnicodeDecodeError) as exc:
        raise HardwareError(HardwareErrorKind.PROTOCOL, f"malformed address answer: {exc}") from exc
    return public_key, address
