"""RSA-OAEP encryption of secret names and values.

Payloads are encrypted in a single RSA block (no symmetric session key), so
the longest plaintext is bounded by the key size minus the OAEP overhead:
190 bytes for a 2048-bit key.
"""

import base64
import binascii

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from locket.crypto.keys import load_rsa_private_key, load_rsa_public_key
from locket.errors import DecryptionError, EncryptionError

_HASH_LENGTH = hashes.SHA256.digest_size


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def max_plaintext_length(public_key: rsa.RSAPublicKey) -> int:
    """Largest plaintext, in bytes, that fits one OAEP block under this key."""
    return public_key.key_size // 8 - 2 * _HASH_LENGTH - 2


def encrypt(public_key_pem: str, plaintext: str) -> str:
    """Encrypt plaintext under an RSA public key; returns base64 ciphertext.

    Raises:
        EncryptionError: If the key is malformed or the plaintext is too long
    """
    try:
        public_key = load_rsa_public_key(public_key_pem)
    except ValueError as e:
        raise EncryptionError(f"Invalid encryption public key: {e}") from e

    data = plaintext.encode("utf-8")
    limit = max_plaintext_length(public_key)
    if len(data) > limit:
        raise EncryptionError(
            f"Plaintext is {len(data)} bytes; "
            f"key of {public_key.key_size} bits holds at most {limit}",
            details={"length": len(data), "limit": limit},
        )
    try:
        ciphertext = public_key.encrypt(data, _oaep())
    except ValueError as e:
        raise EncryptionError(f"Encryption failed: {e}") from e
    return base64.b64encode(ciphertext).decode("ascii")


def decrypt(private_key_pem: str, ciphertext: str) -> str:
    """Decrypt base64 ciphertext with an RSA private key.

    Every failure raises the same DecryptionError.
    """
    try:
        private_key = load_rsa_private_key(private_key_pem)
        raw = base64.b64decode(ciphertext, validate=True)
        plaintext = private_key.decrypt(raw, _oaep())
        return plaintext.decode("utf-8")
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionError() from e
