"""
Transaction message values.

The signing pipeline treats messages generically: anything exposing
``to_dict()`` (or a plain mapping) can be canonicalised and signed.
``MsgSend`` is the bank transfer used by wallets and by the test-suite.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from crosign_core.address import Address
from crosign_core.types import Coin


@runtime_checkable
class Msg(Protocol):
    """Anything that can contribute a structured value to a SignDoc."""

    def to_dict(self) -> dict:
        ...


@dataclass(frozen=True)
class MsgSend:
    """``cosmos-sdk/MsgSend``: move coins between two accounts."""
    from_address: str
    to_address: str
    amount: tuple[Coin, ...]

    TYPE = "cosmos-sdk/MsgSend"

    def __post_init__(self):
        object.__setattr__(self, "from_address", str(self.from_address))
        object.__setattr__(self, "to_address", str(self.to_address))
        object.__setattr__(self, "amount", tuple(self.amount))
        # both ends must be well-formed bech32
        Address.from_bech32(self.from_address)
        Address.from_bech32(self.to_address)
        if not self.amount:
            raise ValueError("MsgSend needs at least one coin")

    def to_dict(self) -> dict:
        return {
            "type": self.TYPE,
            "value": {
                "from_address": self.from_address,
                "to_address": self.to_address,
                "amount": [c.to_dict() for c in self.amount],
            },
        }
