"""
Transaction assembly for crosign.

One signing attempt moves through four states:

    DRAFT          SignDoc fields known, nothing encoded yet
    CANONICALIZED  canonical bytes produced (pure, repeatable)
    SIGNED         one Signature per expected signer collected
    ASSEMBLED      Transaction built; terminal

Only CANONICALIZED → SIGNED touches a backend (and so may block on a
device).  A failed ``sign`` leaves the session exactly where it was, so the
caller can fix the device and call ``add_signature`` again.

``TransactionAssembler`` only checks structural completeness: the number of
signatures must equal the number of signers the caller declared.  Deciding
who must sign is the caller's business.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Sequence

from crosign_core.canonical import sign_bytes
from crosign_core.errors import AssemblyError
from crosign_core.keys import PublicKey
from crosign_core.signing import SigningBackend
from crosign_core.types import (
    AccountInfo,
    BroadcastMode,
    Fee,
    SignDoc,
    Signature,
    Transaction,
    Tx,
)

logger = logging.getLogger("crosign_tx")


class SessionState(Enum):
    DRAFT = "draft"
    CANONICALIZED = "canonicalized"
    SIGNED = "signed"
    ASSEMBLED = "assembled"


class TransactionAssembler:
    """Combine a payload and its signatures into a broadcast envelope."""

    @staticmethod
    def assemble(
        sign_doc: SignDoc,
        signatures: Mapping[PublicKey, Signature],
        expected_signers: int,
        mode: BroadcastMode = BroadcastMode.BLOCK,
    ) -> Transaction:
        if expected_signers < 1:
            raise AssemblyError("at least one signer is required")
        if len(signatures) != expected_signers:
            raise AssemblyError(
                f"expected {expected_signers} signature(s), got {len(signatures)}"
            )
        for pub_key, sig in signatures.items():
            if sig.pub_key != pub_key:
                raise AssemblyError(
                    f"signature filed under {pub_key} carries key {sig.pub_key}"
                )
        tx = Tx(
            messages=sign_doc.msgs,
            fee=sign_doc.fee,
            memo=sign_doc.memo,
            signatures=tuple(signatures.values()),
        )
        return Transaction(tx=tx, mode=BroadcastMode(mode))


class SigningSession:
    """
    One transaction attempt shared by one or more signers.

    Every signer signs the same messages, fee, memo and chain id, each
    with its own account number and sequence.
    """

    def __init__(self, chain_id: str, fee: Fee, msgs: Sequence[Any],
                 memo: str = "", expected_signers: int = 1):
        if expected_signers < 1:
            raise AssemblyError("at least one signer is required")
        if not msgs:
            raise AssemblyError("a transaction needs at least one message")
        self.chain_id = chain_id
        self.fee = fee
        self.msgs = tuple(msgs)
        self.memo = memo
        self.expected_signers = expected_signers
        self.state = SessionState.DRAFT
        self._signatures: dict[PublicKey, Signature] = {}
        self._pending: set[PublicKey] = set()
        self._transaction: Transaction | None = None

    # ---- DRAFT → CANONICALIZED ----

    def sign_doc(self, account: AccountInfo) -> SignDoc:
        return SignDoc.for_account(account, self.chain_id, self.fee, self.msgs, self.memo)

    def canonical_bytes(self, account: AccountInfo) -> bytes:
        """The bytes *account*'s signer must sign.  Safe to call repeatedly."""
        data = sign_bytes(self.sign_doc(account))
        if self.state is SessionState.DRAFT:
            self.state = SessionState.CANONICALIZED
        return data

    # ---- CANONICALIZED → SIGNED ----

    async def add_signature(self, backend: SigningBackend, account: AccountInfo) -> Signature:
        if self.state in (SessionState.SIGNED, SessionState.ASSEMBLED):
            raise AssemblyError(f"session is already {self.state.value}")
        pub_key = backend.public_key()
        if pub_key in self._signatures or pub_key in self._pending:
            raise AssemblyError(f"{backend.address()} has already signed")
        if len(self._signatures) + len(self._pending) >= self.expected_signers:
            raise AssemblyError(
                f"session already has {self.expected_signers} signer(s) collected or in progress"
            )
        message = self.canonical_bytes(account)
        self._pending.add(pub_key)
        try:
            raw = await backend.sign(message)
        finally:
            self._pending.discard(pub_key)
        signature = Signature(
            signature=raw,
            pub_key=pub_key,
            account_number=account.account_number,
            sequence=account.sequence,
        )
        self._signatures[pub_key] = signature
        logger.info(
            "Collected signature %d/%d", len(self._signatures), self.expected_signers,
            extra={"address": str(backend.address()), "chain_id": self.chain_id},
        )
        if len(self._signatures) == self.expected_signers:
            self.state = SessionState.SIGNED
        return signature

    @property
    def signatures(self) -> dict[PublicKey, Signature]:
        return dict(self._signatures)

    # ---- SIGNED → ASSEMBLED ----

    def assemble(self, mode: BroadcastMode = BroadcastMode.BLOCK) -> Transaction:
        if self.state is SessionState.ASSEMBLED:
            raise AssemblyError("transaction already assembled")
        # SignDoc nonces are per signer; the envelope only needs the shared body
        body = SignDoc(0, 0, self.chain_id, self.fee, self.msgs, self.memo)
        tx = TransactionAssembler.assemble(
            body, self._signatures, self.expected_signers, mode,
        )
        self.state = SessionState.ASSEMBLED
        self._transaction = tx
        return tx

    @property
    def transaction(self) -> Transaction | None:
        return self._transaction


async def build_signed_tx(
    backend: SigningBackend,
    chain_id: str,
    msgs: Sequence[Any],
    account: AccountInfo,
    fee: Fee,
    memo: str = "",
    mode: BroadcastMode = BroadcastMode.BLOCK,
) -> Transaction:
    """Single-signer shortcut: canonicalise, sign and assemble in one call."""
    session = SigningSession(chain_id, fee, msgs, memo)
    await session.add_signature(backend, account)
    return session.assemble(mode)
