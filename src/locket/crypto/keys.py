"""Key pair generation, PEM serialization, and loading for locket.

Two kinds of key pair are used:

- RSA encryption pairs, generated by every client and server at startup and
  never persisted.
- Ed25519 signing pairs, generated when a service is registered. The public
  half lives in the server's registry, the private half is handed to the
  client out of band.

All keys cross module and process boundaries as PEM text.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from locket.errors import KeyGenerationError
from locket.observability import get_logger

logger = get_logger(__name__)

DEFAULT_RSA_BITS = 2048
MIN_RSA_BITS = 1024
RSA_PUBLIC_EXPONENT = 65537
# Recommended mode for private key files (owner read/write only).
KEY_FILE_RECOMMENDED_MODE = 0o600
FINGERPRINT_LENGTH = 16


def generate_encryption_keypair(bits: int = DEFAULT_RSA_BITS) -> tuple[str, str]:
    """Generate an RSA key pair for OAEP encryption.

    Returns:
        (public_pem, private_pem)

    Raises:
        KeyGenerationError: If bits is too small or the backend fails
    """
    if bits < MIN_RSA_BITS:
        raise KeyGenerationError(
            f"RSA key size must be at least {MIN_RSA_BITS} bits, got {bits}",
            details={"bits": bits},
        )
    try:
        private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=bits)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyGenerationError(f"RSA key generation failed: {e}", details={"bits": bits}) from e
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return _public_pem(private_key.public_key()), private_pem.decode("ascii")


def generate_signing_keypair() -> tuple[str, str]:
    """Generate an Ed25519 key pair.

    Returns:
        (public_pem, private_pem); the private half is PKCS#8, unencrypted.
    """
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return _public_pem(private_key.public_key()), private_pem.decode("ascii")


def _public_pem(key: rsa.RSAPublicKey | Ed25519PublicKey) -> str:
    pem = key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return pem.decode("ascii")


def load_rsa_public_key(pem: str) -> rsa.RSAPublicKey:
    """From PEM text. Raises ValueError if invalid or not RSA."""
    key = _load_public(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Key is not an RSA public key")
    return key


def load_rsa_private_key(pem: str) -> rsa.RSAPrivateKey:
    """From PEM text. Raises ValueError if invalid or not RSA."""
    key = _load_private(pem)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("Key is not an RSA private key")
    return key


def load_ed25519_public_key(pem: str) -> Ed25519PublicKey:
    """From PEM text. Raises ValueError if invalid or not Ed25519."""
    key = _load_public(pem)
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Key is not an Ed25519 public key")
    return key


def load_ed25519_private_key(pem: str) -> Ed25519PrivateKey:
    """From PEM text. Raises ValueError if invalid or not Ed25519."""
    key = _load_private(pem)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError("Key is not an Ed25519 private key")
    return key


def _load_public(pem: str) -> object:
    try:
        return serialization.load_pem_public_key(pem.encode("utf-8"))
    except UnsupportedAlgorithm as e:
        raise ValueError(f"Unsupported public key type: {e}") from e


def _load_private(pem: str) -> object:
    try:
        return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (UnsupportedAlgorithm, TypeError) as e:
        raise ValueError(f"Unsupported or encrypted private key: {e}") from e


def signing_public_from_private(private_pem: str) -> str:
    """Derive the Ed25519 public key PEM from a private key PEM. Raises ValueError."""
    return _public_pem(load_ed25519_private_key(private_pem).public_key())


def public_key_fingerprint(public_pem: str) -> str:
    """Short SHA-256 hex digest of a PEM key, safe to put in logs."""
    digest = hashlib.sha256(public_pem.strip().encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def warn_if_key_file_permissions_loose(path: Path) -> None:
    """Warn when key file is group/other readable (recommend chmod 0600)."""
    try:
        mode = path.stat().st_mode
    except OSError:
        return
    if (mode & 0o77) != 0:
        logger.warning(
            "locket.keys.file_permissions_loose",
            path=str(path),
            mode=oct(mode),
            recommended=oct(KEY_FILE_RECOMMENDED_MODE),
        )


def read_signing_key_file(path: str | Path) -> str:
    """Read an Ed25519 private key PEM from disk (blocking I/O).

    Logs a warning if the file is readable by group or others. Raises
    ValueError if the file does not hold an Ed25519 private key.
    """
    path = Path(path)
    warn_if_key_file_permissions_loose(path)
    pem = path.read_text(encoding="utf-8")
    load_ed25519_private_key(pem)
    return pem

