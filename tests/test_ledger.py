"""
Tests for crosign_core.ledger — Ledger Cosmos app backend.

Runs against an in-memory fake device (tests.vectors.FakeLedgerDevice)
that speaks the same APDUs as the real app.

Covers:
  - Connection handshake (version, address, cross-check)
  - Signatures interchangeable with the software backend
  - Payload chunking (init / add / last)
  - Status word mapping to HardwareError kinds
  - One exchange in flight per device
  - DER → compact low-S conversion
"""

from __future__ import annotations

import asyncio
import base64
import struct

import pytest
from ecdsa.util import sigencode_der

from crosign_core.config import TESTNET
from crosign_core.errors import CryptographicError, HardwareError, HardwareErrorKind, InputError
from crosign_core.keys import CURVE_ORDER, PublicKey
from crosign_core.ledger import (
    CHUNK_SIZE,
    HardwareBackend,
    build_apdu,
    check_status,
    der_to_compact,
    serialize_path,
)
from tests.vectors import (
    GOLDEN_ADDRESS,
    GOLDEN_PUBKEY,
    GOLDEN_SIGN_DOC,
    FakeLedgerDevice,
)

OTHER_KEY = bytes.fromhex("11" * 32)


def _sign_apdus(device: FakeLedgerDevice) -> list[bytes]:
    return [a for a in device.apdus if a[1] == 0x02]


# ═══════════════════════════════════════════════════════════════════
#  Connection
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestConnect:

    async def test_connect_reads_public_key(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        assert backend.public_key().to_base64() == GOLDEN_PUBKEY
        assert str(backend.address()) == GOLDEN_ADDRESS
        assert [a[1] for a in fake_device.apdus] == [0x00, 0x04]

    async def test_connect_does_not_display(self, fake_device):
        await HardwareBackend.connect(fake_device)
        get_addr = fake_device.apdus[1]
        assert get_addr[2] == 0  # P1: no confirmation screen

    async def test_testnet_prefix_sent_to_device(self):
        device = FakeLedgerDevice()
        backend = await HardwareBackend.connect(device, chain=TESTNET)
        assert str(backend.address()).startswith("tcro1")
        assert b"tcro" in device.apdus[1]

    async def test_locked_device(self):
        with pytest.raises(HardwareError) as exc_info:
            await HardwareBackend.connect(FakeLedgerDevice(locked=True))
        assert exc_info.value.kind is HardwareErrorKind.DEVICE_LOCKED
        assert exc_info.value.retryable

    async def test_app_not_open(self):
        with pytest.raises(HardwareError) as exc_info:
            await HardwareBackend.connect(FakeLedgerDevice(app_open=False))
        assert exc_info.value.kind is HardwareErrorKind.APP_NOT_OPEN
        assert exc_info.value.status_word == 0x6E00

    async def test_address_mismatch_is_protocol_error(self):
        with pytest.raises(HardwareError) as exc_info:
            await HardwareBackend.connect(FakeLedgerDevice(lie_about_address=True))
        assert exc_info.value.kind is HardwareErrorKind.PROTOCOL
        assert not exc_info.value.retryable

    async def test_show_address(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        assert await backend.show_address() == GOLDEN_ADDRESS
        assert fake_device.apdus[-1][2] == 1

    async def test_close(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        await backend.close()
        assert fake_device.closed


# ═══════════════════════════════════════════════════════════════════
#  Signing
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestHardwareSign:

    async def test_signature_verifies_with_software_key(self, fake_device, software_backend):
        backend = await HardwareBackend.connect(fake_device)
        message = GOLDEN_SIGN_DOC.encode()
        sig = await backend.sign(message)
        assert software_backend.verify(message, sig)
        assert backend.public_key() == software_backend.public_key()

    async def test_signature_is_compact_low_s(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        for i in range(6):
            raw = base64.b64decode(await backend.sign(b"msg %d" % i))
            assert len(raw) == 64
            assert int.from_bytes(raw[32:], "big") <= CURVE_ORDER // 2

    async def test_short_message_two_chunks(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        await backend.sign(GOLDEN_SIGN_DOC.encode())
        apdus = _sign_apdus(fake_device)
        assert [a[2] for a in apdus] == [0, 2]
        assert apdus[0][5:] == serialize_path("m/44'/394'/0'/0/0")

    async def test_long_message_chunked(self, fake_device, software_backend):
        backend = await HardwareBackend.connect(fake_device)
        message = GOLDEN_SIGN_DOC.replace('"memo":""', '"memo":"' + "x" * 600 + '"').encode()
        sig = await backend.sign(message)
        apdus = _sign_apdus(fake_device)
        # path, then ceil(len / 250) payload chunks
        payload_chunks = -(-len(message) // CHUNK_SIZE)
        assert len(apdus) == 1 + payload_chunks
        assert [a[2] for a in apdus] == [0] + [1] * (payload_chunks - 1) + [2]
        assert all(a[4] <= CHUNK_SIZE for a in apdus)
        assert b"".join(a[5:] for a in apdus[1:]) == message
        assert software_backend.verify(message, sig)

    async def test_user_rejection(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        fake_device.reject = True
        with pytest.raises(HardwareError) as exc_info:
            await backend.sign(b"payload")
        assert exc_info.value.kind is HardwareErrorKind.USER_REJECTED
        assert exc_info.value.status_word == 0x6986

    async def test_retry_after_rejection(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        fake_device.reject = True
        with pytest.raises(HardwareError):
            await backend.sign(b"payload")
        fake_device.reject = False
        sig = await backend.sign(b"payload")
        assert backend.verify(b"payload", sig)

    async def test_locked_after_connect(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        fake_device.locked = True
        with pytest.raises(HardwareError) as exc_info:
            await backend.sign(b"payload")
        assert exc_info.value.kind is HardwareErrorKind.DEVICE_LOCKED

    async def test_empty_message_rejected(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        with pytest.raises(InputError):
            await backend.sign(b"")

    async def test_signature_from_wrong_key_rejected(self):
        # device claims the golden key but signs with another one
        backend = HardwareBackend(
            FakeLedgerDevice(OTHER_KEY), PublicKey.from_base64(GOLDEN_PUBKEY),
        )
        with pytest.raises(CryptographicError):
            await backend.sign(b"payload")

    async def test_concurrent_signs_are_serialised(self, fake_device):
        backend = await HardwareBackend.connect(fake_device)
        messages = [GOLDEN_SIGN_DOC.encode() + b" " * (300 * i) for i in range(3)]
        sigs = await asyncio.gather(*(backend.sign(m) for m in messages))
        assert fake_device.max_in_flight == 1
        for message, sig in zip(messages, sigs):
            assert backend.verify(message, sig)
        # each sign's chunks are contiguous: every init follows a last
        p1s = [a[2] for a in _sign_apdus(fake_device)]
        for i, p1 in enumerate(p1s):
            if p1 == 0 and i > 0:
                assert p1s[i - 1] == 2


# ═══════════════════════════════════════════════════════════════════
#  APDU helpers
# ═══════════════════════════════════════════════════════════════════

class TestApduHelpers:

    def test_serialize_path(self):
        data = serialize_path("m/44'/394'/0'/0/3")
        assert len(data) == 20
        assert struct.unpack("<5I", data) == (
            0x8000002C, 0x8000018A, 0x80000000, 0, 3,
        )

    def test_serialize_path_needs_five_components(self):
        with pytest.raises(InputError):
            serialize_path("m/44'/394'/0'")

    def test_build_apdu(self):
        assert build_apdu(0x02, 1, 0, b"\xaa\xbb") == bytes([0x55, 0x02, 1, 0, 2, 0xAA, 0xBB])

    def test_build_apdu_too_long(self):
        with pytest.raises(InputError):
            build_apdu(0x02, 1, 0, b"\x00" * 256)


class TestStatusWords:

    @pytest.mark.parametrize("sw,kind", [
        (0x6986, HardwareErrorKind.USER_REJECTED),
        (0x5515, HardwareErrorKind.DEVICE_LOCKED),
        (0x6B0C, HardwareErrorKind.DEVICE_LOCKED),
        (0x6E00, HardwareErrorKind.APP_NOT_OPEN),
        (0x6E01, HardwareErrorKind.APP_NOT_OPEN),
        (0x6511, HardwareErrorKind.APP_NOT_OPEN),
        (0x6D00, HardwareErrorKind.APP_NOT_OPEN),
        (0x6984, HardwareErrorKind.PROTOCOL),
        (0x1234, HardwareErrorKind.PROTOCOL),
    ])
    def test_mapping(self, sw, kind):
        with pytest.raises(HardwareError) as exc_info:
            check_status(sw)
        assert exc_info.value.kind is kind
        assert exc_info.value.status_word == sw
        assert f"0x{sw:04x}" in str(exc_info.value)

    def test_ok_passes(self):
        check_status(0x9000)


class TestDerToCompact:

    def test_high_s_normalised(self):
        r, s = 12345, CURVE_ORDER - 67890
        compact = der_to_compact(sigencode_der(r, s, CURVE_ORDER))
        assert int.from_bytes(compact[:32], "big") == r
        assert int.from_bytes(compact[32:], "big") == 67890

    def test_low_s_kept(self):
        compact = der_to_compact(sigencode_der(1, 2, CURVE_ORDER))
        assert compact == (1).to_bytes(32, "big") + (2).to_bytes(32, "big")

    def test_malformed_der(self):
        with pytest.raises(HardwareError) as exc_info:
            der_to_compact(b"\x30\x02\x01")
        assert exc_info.value.kind is HardwareErrorKind.PROTOCOL
