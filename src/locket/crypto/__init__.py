"""Locket cryptographic primitives.

- RSA-OAEP (SHA-256) encryption key pairs, encrypt and decrypt
- Ed25519 signing key pairs, sign and verify
- PEM text for all key material at the boundary

Public exports:
    keys: Key generation, serialization and loading submodule
    encryption: encrypt, decrypt
    signing: sign, verify
"""

from locket.crypto import encryption
from locket.crypto import keys
from locket.crypto import signing
from locket.crypto.encryption import decrypt, encrypt, max_plaintext_length
from locket.crypto.keys import (
    generate_encryption_keypair,
    generate_signing_keypair,
    public_key_fingerprint,
)
from locket.crypto.signing import sign, verify

__all__ = [
    "encryption",
    "keys",
    "signing",
    "decrypt",
    "encrypt",
    "generate_encryption_keypair",
    "generate_signing_keypair",
    "max_plaintext_length",
    "public_key_fingerprint",
    "sign",
    "verify",
]
