"""
crosign: offline key derivation and transaction signing for Crypto.org Chain.

    pip install .            # software signing
    pip install ".[hid]"     # plus USB Ledger support (ledgerblue)
    pip install ".[dev]"     # plus pytest / coverage / linters
"""

from setuptools import find_packages, setup

setup(
    name="crosign",
    version="0.3.0",
    description="Offline HD wallet and amino-JSON transaction signing for Crypto.org Chain",
    license="MIT",
    author="crosign Contributors",
    python_requires=">=3.10",
    packages=find_packages(include=["crosign_core", "crosign_core.*"]),
    install_requires=[
        "ecdsa>=0.18.0,<0.20",          # secp256k1, RFC 6979
        "pycryptodome>=3.21.0,<4",      # RIPEMD-160
        "mnemonic>=0.20,<1",            # BIP-39 wordlist and seed
        "bech32>=1.2.0,<2",             # account addresses
        "aiohttp>=3.9.0,<4",            # Speculos emulator transport
        "tomli>=2.0.0,<3;python_version<'3.11'",
    ],
    extras_require={
        "hid": ["ledgerblue>=0.1.48"],
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "pytest-cov>=4.0",
            "mypy>=1.5",
            "ruff>=0.1.0",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Topic :: Security :: Cryptography",
        "Topic :: Office/Business :: Financial",
    ],
)
