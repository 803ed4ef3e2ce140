"""
Error taxonomy for crosign.

Every failure raised by the library derives from ``CroSignError`` so
callers can catch the whole family at one seam, while still being able to
tell bad user input (``PhraseError``, ``InputError``) apart from internal
defects (``CryptographicError``, ``CanonicalizationError``,
``AssemblyError``) and from device conditions the user can fix
(``HardwareError``).

Nothing in the library retries on any of these.
"""

from __future__ import annotations

from enum import Enum


class CroSignError(Exception):
    """Base class for all crosign errors."""


class PhraseErrorKind(str, Enum):
    WORD_COUNT = "word_count"
    INVALID_WORD = "invalid_word"
    CHECKSUM = "checksum"


class PhraseError(CroSignError, ValueError):
    """The recovery phrase is malformed. Terminal."""

    def __init__(self, kind: PhraseErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind


class InputError(CroSignError, ValueError):
    """Malformed key, address or path input. Terminal."""


class CryptographicError(CroSignError):
    """A signing, derivation or verification primitive failed."""


class CanonicalizationError(CroSignError):
    """A signing payload could not be serialised canonically."""


class HardwareErrorKind(str, Enum):
    DEVICE_ABSENT = "device_absent"
    DEVICE_LOCKED = "device_locked"
    USER_REJECTED = "user_rejected"
    TIMEOUT = "timeout"
    APP_NOT_OPEN = "app_not_open"
    PROTOCOL = "protocol"


class HardwareError(CroSignError):
    """
    The external signing device could not produce a result.

    ``kind`` tells the caller whether resolving a condition on the device
    (unlocking it, opening the app, approving) makes a fresh ``sign``
    call worthwhile.  ``status_word`` carries the raw APDU status when
    the device answered at all.
    """

    def __init__(
        self,
        kind: HardwareErrorKind,
        detail: str,
        status_word: int | None = None,
    ):
        msg = f"{kind.value}: {detail}"
        if status_word is not None:
            msg += f" (status 0x{status_word:04x})"
        super().__init__(msg)
        self.kind = kind
        self.status_word = status_word

    @property
    def retryable(self) -> bool:
        return self.kind is not HardwareErrorKind.PROTOCOL


class AssemblyError(CroSignError):
    """The transaction is structurally incomplete or assembled out of order."""
