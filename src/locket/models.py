"""Pydantic models for locket wire messages.

All models inherit from LocketBaseModel to ensure consistent behavior:
- Immutability (frozen=True) for thread-safety and predictability
- Strict validation (extra="forbid") to reject unexpected fields
"""

from pydantic import BaseModel, ConfigDict, Field


class LocketBaseModel(BaseModel):
    """Base model for all locket entities (frozen, extra fields forbidden)."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        validate_default=True,
    )


class SecretRequest(LocketBaseModel):
    """Body of ``POST /``.

    Attributes:
        payload: Base64 RSA-OAEP ciphertext of the secret name, under the server's key.
        signature: Base64 Ed25519 signature over the plaintext secret name.
        client_pubkey: PEM public key the response must be encrypted to.
    """

    payload: str = Field(..., min_length=1, description="Encrypted secret name (base64)")
    signature: str = Field(..., min_length=1, description="Signature over the plaintext name")
    client_pubkey: str = Field(..., min_length=1, description="Requester encryption key (PEM)")


class SecretResponse(LocketBaseModel):
    """Body of a successful ``POST /`` response."""

    payload: str = Field(..., min_length=1, description="Encrypted secret value (base64)")
