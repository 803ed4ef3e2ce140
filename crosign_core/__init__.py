"""
crosign - offline transaction signing for Crypto.org Chain.

Key features:
- BIP-39 recovery phrases and BIP-32/44 key derivation
- bech32 account addresses (RIPEMD160(SHA256(pubkey)))
- Canonical amino-JSON sign documents
- Interchangeable software and Ledger hardware signing backends
- Broadcast-ready transaction envelopes, single or multi-signer
"""

__version__ = "0.3.0"
__all__ = [
    "address",
    "canonical",
    "config",
    "errors",
    "hd_wallet",
    "keys",
    "ledger",
    "messages",
    "precision",
    "signing",
    "transport",
    "tx_builder",
    "types",
]
