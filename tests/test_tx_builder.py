"""
Tests for crosign_core.tx_builder — signing sessions and assembly.

Covers:
  - Known-answer transaction envelope for a single software signer
  - Multi-signer sessions with per-signer nonces
  - Session state machine (draft → canonicalized → signed → assembled)
  - Failed device signing leaves the session untouched
  - Structural checks in TransactionAssembler
"""

from __future__ import annotations

import asyncio
import json

import pytest

from crosign_core.canonical import sign_bytes
from crosign_core.errors import AssemblyError, HardwareError, HardwareErrorKind
from crosign_core.keys import PrivateKey
from crosign_core.ledger import HardwareBackend
from crosign_core.messages import MsgSend
from crosign_core.signing import SoftwareBackend
from crosign_core.tx_builder import (
    SessionState,
    SigningSession,
    TransactionAssembler,
    build_signed_tx,
)
from crosign_core.types import AccountInfo, BroadcastMode, Coin, Fee, SignDoc
from tests.vectors import (
    GOLDEN_ADDRESS,
    GOLDEN_PUBKEY,
    GOLDEN_SIGN_DOC,
    GOLDEN_SIGNATURE,
    RECIPIENT,
    FakeLedgerDevice,
)

FEE = Fee([Coin("basecro", 100_000)], 300_000)


def _transfer() -> MsgSend:
    return MsgSend(GOLDEN_ADDRESS, RECIPIENT, [Coin("basecro", 1_000_000_000)])


def _second_backend() -> SoftwareBackend:
    return SoftwareBackend(PrivateKey.from_bytes(bytes.fromhex("22" * 32)))


# ═══════════════════════════════════════════════════════════════════
#  Single signer
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestBuildSignedTx:

    async def test_golden_envelope(self, software_backend):
        tx = await build_signed_tx(
            software_backend, "test", [_transfer()], AccountInfo(0, 0), FEE,
        )
        body = tx.to_dict()
        assert body["mode"] == "block"
        assert body["tx"]["memo"] == ""
        assert body["tx"]["fee"] == {
            "amount": [{"amount": "100000", "denom": "basecro"}],
            "gas": "300000",
        }
        assert body["tx"]["msg"] == [_transfer().to_dict()]
        assert body["tx"]["signatures"] == [{
            "signature": GOLDEN_SIGNATURE,
            "pub_key": {"type": "tendermint/PubKeySecp256k1", "value": GOLDEN_PUBKEY},
            "account_number": 0,
            "sequence": 0,
        }]

    async def test_json_is_compact_and_parseable(self, software_backend):
        tx = await build_signed_tx(
            software_backend, "test", [_transfer()], AccountInfo(3, 9), FEE,
            memo="hello", mode=BroadcastMode.SYNC,
        )
        text = tx.to_json()
        assert ": " not in text
        parsed = json.loads(text)
        assert parsed["mode"] == "sync"
        assert parsed["tx"]["signatures"][0]["account_number"] == 3
        assert parsed["tx"]["signatures"][0]["sequence"] == 9

    async def test_signature_covers_sign_doc(self, software_backend):
        account = AccountInfo(12, 4)
        tx = await build_signed_tx(software_backend, "test", [_transfer()], account, FEE)
        sig = tx.tx.signatures[0].signature
        doc = SignDoc.for_account(account, "test", FEE, [_transfer()])
        assert software_backend.verify(sign_bytes(doc), sig)

    async def test_hardware_and_software_interchangeable(self, software_backend):
        hw = await HardwareBackend.connect(FakeLedgerDevice())
        tx_hw = await build_signed_tx(hw, "test", [_transfer()], AccountInfo(0, 0), FEE)
        sig = tx_hw.tx.signatures[0]
        assert sig.pub_key == software_backend.public_key()
        assert software_backend.verify(GOLDEN_SIGN_DOC.encode(), sig.signature)


# ═══════════════════════════════════════════════════════════════════
#  Session state machine
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestSigningSession:

    async def test_state_progression(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()])
        assert session.state is SessionState.DRAFT
        assert session.canonical_bytes(AccountInfo(0, 0)) == GOLDEN_SIGN_DOC.encode()
        assert session.state is SessionState.CANONICALIZED
        await session.add_signature(software_backend, AccountInfo(0, 0))
        assert session.state is SessionState.SIGNED
        tx = session.assemble()
        assert session.state is SessionState.ASSEMBLED
        assert session.transaction is tx

    async def test_canonical_bytes_repeatable(self):
        session = SigningSession("test", FEE, [_transfer()])
        account = AccountInfo(1, 2)
        assert session.canonical_bytes(account) == session.canonical_bytes(account)

    async def test_multi_signer(self, software_backend):
        other = _second_backend()
        session = SigningSession("test", FEE, [_transfer()], expected_signers=2)
        first, second = AccountInfo(0, 5), AccountInfo(8, 1)

        sig_a = await session.add_signature(software_backend, first)
        assert session.state is SessionState.CANONICALIZED
        with pytest.raises(AssemblyError):
            session.assemble()

        sig_b = await session.add_signature(other, second)
        assert session.state is SessionState.SIGNED
        assert software_backend.verify(session.canonical_bytes(first), sig_a.signature)
        assert other.verify(session.canonical_bytes(second), sig_b.signature)

        tx = session.assemble()
        sigs = tx.to_dict()["tx"]["signatures"]
        assert [(s["account_number"], s["sequence"]) for s in sigs] == [(0, 5), (8, 1)]

    async def test_duplicate_signer_rejected(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()], expected_signers=2)
        await session.add_signature(software_backend, AccountInfo(0, 0))
        with pytest.raises(AssemblyError):
            await session.add_signature(software_backend, AccountInfo(0, 0))
        assert len(session.signatures) == 1

    async def test_concurrent_duplicate_signer_rejected(self):
        backend = await HardwareBackend.connect(FakeLedgerDevice())
        session = SigningSession("test", FEE, [_transfer()], expected_signers=2)
        results = await asyncio.gather(
            session.add_signature(backend, AccountInfo(0, 0)),
            session.add_signature(backend, AccountInfo(0, 0)),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, AssemblyError)]
        assert len(errors) == 1
        assert len(session.signatures) == 1

    async def test_concurrent_extra_signer_rejected(self):
        first = await HardwareBackend.connect(FakeLedgerDevice())
        second = await HardwareBackend.connect(FakeLedgerDevice(bytes.fromhex("22" * 32)))
        session = SigningSession("test", FEE, [_transfer()])
        results = await asyncio.gather(
            session.add_signature(first, AccountInfo(0, 0)),
            session.add_signature(second, AccountInfo(1, 0)),
            return_exceptions=True,
        )
        assert isinstance(results[1], AssemblyError)
        assert session.state is SessionState.SIGNED
        assert list(session.signatures) == [first.public_key()]
        tx = session.assemble()
        assert len(tx.to_dict()["tx"]["signatures"]) == 1

    async def test_no_signature_after_signed(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()])
        await session.add_signature(software_backend, AccountInfo(0, 0))
        with pytest.raises(AssemblyError):
            await session.add_signature(_second_backend(), AccountInfo(1, 0))

    async def test_assemble_twice_rejected(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()])
        await session.add_signature(software_backend, AccountInfo(0, 0))
        session.assemble()
        with pytest.raises(AssemblyError):
            session.assemble()

    async def test_assemble_without_signatures(self):
        session = SigningSession("test", FEE, [_transfer()])
        with pytest.raises(AssemblyError):
            session.assemble()
        assert session.state is SessionState.DRAFT

    async def test_rejected_device_leaves_session_untouched(self):
        device = FakeLedgerDevice(reject=True)
        backend = await HardwareBackend.connect(device)
        session = SigningSession("test", FEE, [_transfer()])
        session.canonical_bytes(AccountInfo(0, 0))

        with pytest.raises(HardwareError) as exc_info:
            await session.add_signature(backend, AccountInfo(0, 0))
        assert exc_info.value.kind is HardwareErrorKind.USER_REJECTED
        assert session.state is SessionState.CANONICALIZED
        assert session.signatures == {}

        device.reject = False
        await session.add_signature(backend, AccountInfo(0, 0))
        assert session.state is SessionState.SIGNED



class TestSessionConstruction:

    def test_needs_a_message(self):
        with pytest.raises(AssemblyError):
            SigningSession("test", FEE, [])

    def test_needs_a_signer(self):
        with pytest.raises(AssemblyError):
            SigningSession("test", FEE, [_transfer()], expected_signers=0)


# ═══════════════════════════════════════════════════════════════════
#  TransactionAssembler
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestTransactionAssembler:

    async def test_count_mismatch(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()])
        sig = await session.add_signature(software_backend, AccountInfo(0, 0))
        doc = session.sign_doc(AccountInfo(0, 0))
        with pytest.raises(AssemblyError):
            TransactionAssembler.assemble(doc, {sig.pub_key: sig}, expected_signers=2)

    async def test_key_mismatch(self, software_backend):
        session = SigningSession("test", FEE, [_transfer()])
        sig = await session.add_signature(software_backend, AccountInfo(0, 0))
        doc = session.sign_doc(AccountInfo(0, 0))
        wrong = _second_backend().public_key()
        with pytest.raises(AssemblyError):
            TransactionAssembler.assemble(doc, {wrong: sig}, expected_signers=1)

    async def test_zero_signers(self, software_backend):
        doc = SignDoc(0, 0, "test", FEE, [_transfer()])
        with pytest.raises(AssemblyError):
            TransactionAssembler.assemble(doc, {}, expected_signers=0)
