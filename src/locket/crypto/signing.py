"""Ed25519 request signing.

Clients sign the plaintext secret name (not the ciphertext). The server can
therefore only authenticate a request after decrypting it.
"""

import base64
import binascii

from cryptography.exceptions import InvalidSignature

from locket.crypto.keys import load_ed25519_private_key, load_ed25519_public_key
from locket.errors import VerificationError

SIGNATURE_LENGTH = 64


def sign(private_key_pem: str, message: str) -> str:
    """Sign message with an Ed25519 private key; returns a base64 signature.

    Raises:
        VerificationError: If the private key cannot be decoded
    """
    try:
        private_key = load_ed25519_private_key(private_key_pem)
    except ValueError as e:
        raise VerificationError(f"Invalid signing private key: {e}") from e
    raw_signature = private_key.sign(message.encode("utf-8"))
    return base64.b64encode(raw_signature).decode("ascii")


def decode_signature(signature: str) -> bytes:
    """Base64 signature to raw bytes. Raises VerificationError if malformed."""
    try:
        raw = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError) as e:
        raise VerificationError(f"Invalid signature encoding (base64): {e}") from e
    if len(raw) != SIGNATURE_LENGTH:
        raise VerificationError(
            f"Ed25519 signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}",
            details={"signature_length": len(raw)},
        )
    return raw


def verify(public_key_pem: str, message: str, signature: str) -> bool:
    """Check signature over message against an Ed25519 public key.

    Returns False when the signature does not match.

    Raises:
        VerificationError: If the public key or signature encoding is malformed
    """
    try:
        public_key = load_ed25519_public_key(public_key_pem)
    except ValueError as e:
        raise VerificationError(f"Invalid verification key: {e}") from e
    raw_signature = decode_signature(signature)
    try:
        public_key.verify(raw_signature, message.encode("utf-8"))
    except InvalidSignature:
        return False
    return True
