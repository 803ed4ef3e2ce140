"""
Transaction data model for crosign.

Mirrors the legacy Cosmos SDK amino-JSON structures:
  - Coin / Fee: amounts and gas, serialised as decimal strings
  - SignDoc: the payload each signer signs
  - Signature: one signer's proof plus its own nonce snapshot
  - Tx / Transaction: the broadcast envelope

All types are frozen value objects; sequences are stored as tuples so a
built Transaction cannot be mutated after assembly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from crosign_core.canonical import to_value
from crosign_core.config import MAINNET, ChainConfig
from crosign_core.keys import PublicKey
from crosign_core.precision import Number, to_base_units


def _check_uint(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative int, got {value!r}")


class BroadcastMode(str, Enum):
    """How the network client waits for inclusion before returning."""
    BLOCK = "block"
    SYNC = "sync"
    ASYNC = "async"


@dataclass(frozen=True)
class Coin:
    """An integer amount of a base denomination."""
    denom: str
    amount: int

    def __post_init__(self):
        if not self.denom:
            raise ValueError("denom must not be empty")
        _check_uint("amount", self.amount)

    @classmethod
    def from_display(cls, value: Number, chain: ChainConfig = MAINNET) -> Coin:
        """``Coin.from_display("1.5")`` → 150000000 basecro."""
        return cls(chain.base_denom, to_base_units(value, chain))

    def to_dict(self) -> dict:
        return {"amount": str(self.amount), "denom": self.denom}


@dataclass(frozen=True)
class Fee:
    """Fee coins plus the gas limit."""
    amount: tuple[Coin, ...]
    gas: int

    def __post_init__(self):
        object.__setattr__(self, "amount", tuple(self.amount))
        _check_uint("gas", self.gas)

    def to_dict(self) -> dict:
        return {
            "amount": [c.to_dict() for c in self.amount],
            "gas": str(self.gas),
        }


@dataclass(frozen=True)
class AccountInfo:
    """Per-signer nonce pair, as reported by the network client."""
    account_number: int
    sequence: int

    def __post_init__(self):
        _check_uint("account_number", self.account_number)
        _check_uint("sequence", self.sequence)


@dataclass(frozen=True)
class SignDoc:
    """The payload a signer hashes and signs."""
    account_number: int
    sequence: int
    chain_id: str
    fee: Fee
    msgs: tuple[Any, ...]
    memo: str = ""

    def __post_init__(self):
        object.__setattr__(self, "msgs", tuple(self.msgs))
        _check_uint("account_number", self.account_number)
        _check_uint("sequence", self.sequence)

    @classmethod
    def for_account(cls, account: AccountInfo, chain_id: str, fee: Fee,
                    msgs: Any, memo: str = "") -> SignDoc:
        return cls(account.account_number, account.sequence, chain_id, fee, msgs, memo)

    def to_dict(self) -> dict:
        # nonces are decimal strings on the wire whatever their Python type
        return {
            "account_number": str(self.account_number),
            "sequence": str(self.sequence),
            "chain_id": self.chain_id,
            "memo": self.memo,
            "fee": self.fee.to_dict(),
            "msgs": [to_value(m) for m in self.msgs],
        }


@dataclass(frozen=True)
class Signature:
    """One signer's signature with the nonces it signed over."""
    signature: str
    pub_key: PublicKey
    account_number: int
    sequence: int

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "pub_key": self.pub_key.to_amino(),
            "account_number": self.account_number,
            "sequence": self.sequence,
        }


@dataclass(frozen=True)
class Tx:
    messages: tuple[Any, ...]
    fee: Fee
    memo: str
    signatures: tuple[Signature, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "signatures", tuple(self.signatures))

    def to_dict(self) -> dict:
        return {
            "msg": [to_value(m) for m in self.messages],
            "fee": self.fee.to_dict(),
            "memo": self.memo,
            "signatures": [s.to_dict() for s in self.signatures],
        }


@dataclass(frozen=True)
class Transaction:
    """Broadcast-ready envelope handed to the network client."""
    tx: Tx
    mode: BroadcastMode = BroadcastMode.BLOCK

    def to_dict(self) -> dict:
        return {"tx": self.tx.to_dict(), "mode": BroadcastMode(self.mode).value}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
