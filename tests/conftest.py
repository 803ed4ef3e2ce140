"""
Shared pytest fixtures for the crosign test suite.
"""

import pytest

from crosign_core.keys import PrivateKey
from crosign_core.signing import SoftwareBackend
from tests.vectors import GOLDEN_PRIVKEY, FakeLedgerDevice


@pytest.fixture
def golden_key():
    return PrivateKey.from_bytes(GOLDEN_PRIVKEY)


@pytest.fixture
def software_backend(golden_key):
    """Software signer for the golden account (no PBKDF2 round-trip)."""
    return SoftwareBackend(golden_key)


@pytest.fixture
def fake_device():
    return FakeLedgerDevice()
