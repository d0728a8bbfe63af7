"""Locket Error Taxonomy.

This module defines the error hierarchy for locket, providing structured
error handling with specific error codes and context information.

Server-side errors never reach the wire as-is: the request handler maps them
to a short plain-text HTTP response and keeps ``details`` for the logs only.
"""

from __future__ import annotations

from typing import Any


class LocketError(Exception):
    """Base exception for all locket errors.

    Attributes:
        code: Error code following the locket:<area>/<reason> pattern
        message: Human-readable error message
        details: Optional additional error context
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{code, message, details}`` dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class KeyGenerationError(LocketError):
    """Raised when a key pair cannot be generated (bad parameters or backend failure)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="locket:crypto/keygen", message=message, details=details)


class EncryptionError(LocketError):
    """Raised when a public key is malformed or the plaintext exceeds its capacity."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="locket:crypto/encrypt", message=message, details=details)


class DecryptionError(LocketError):
    """Raised for every decryption failure.

    The message is the same whatever went wrong (bad encoding, wrong key,
    padding check) so callers cannot turn it into a padding oracle. The root
    cause is available as ``__cause__``.
    """

    MESSAGE = "decryption failed"

    def __init__(self, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="locket:crypto/decrypt", message=self.MESSAGE, details=details)


class VerificationError(LocketError):
    """Malformed key or signature encoding. A signature mismatch is not an error."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(code="locket:crypto/verify", message=message, details=details)


class RegistryReadError(LocketError):
    """Raised when a registry file is missing, unreadable, or malformed.

    Attributes:
        path: The registry file that failed to load
    """

    def __init__(self, path: str, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="locket:registry/read",
            message=f"Cannot read registry {path}: {reason}",
            details={"path": path, "reason": reason, **(details or {})},
        )
        self.path = path
        self.reason = reason


class RegistryWriteError(LocketError):
    """Raised when a registry cannot be persisted."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            code="locket:registry/write",
            message=f"Cannot write registry {path}: {reason}",
            details={"path": path, "reason": reason},
        )
        self.path = path
        self.reason = reason


class SourceError(LocketError):
    """Raised when a secret source cannot be loaded.

    Attributes:
        source: Short name of the source backend (env, dotenv, onepassword)
    """

    def __init__(self, source: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code="locket:source/load",
            message=f"{source}: {message}",
            details={"source": source, **(details or {})},
        )
        self.source = source


class SecretNotFoundError(LocketError):
    """Raised when a service, or a secret name within it, is unknown to the store."""

    def __init__(self, service: str) -> None:
        # The secret name is deliberately left out: it is request data.
        super().__init__(
            code="locket:store/not_found",
            message=f"Secret not found for service {service!r}",
            details={"service": service},
        )
        self.service = service


class InitializationError(LocketError):
    """Raised when a client cannot obtain the server's encryption key at startup."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(
            code="locket:client/init",
            message=message,
            details={"url": url} if url else {},
        )
        self.url = url


class RequestError(LocketError):
    """Client-side transport, encryption, or decryption failure."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(
            code="locket:client/request",
            message=message,
            details={"url": url} if url else {},
        )
        self.url = url


# Non-200 statuses the server is known to send, by client-facing reason.
REJECTION_REASONS: dict[int, str] = {
    400: "request-malformed",
    403: "forbidden",
    404: "not-found",
    405: "method-not-allowed",
    500: "server-error",
}


class ServerRejected(LocketError):
    """Raised when the server answers with a non-success status.

    Attributes:
        status_code: HTTP status returned by the server
        reason: One of REJECTION_REASONS values, or "unexpected-status"
        body: Short plain-text body sent by the server
    """

    def __init__(self, status_code: int, body: str = "", url: str | None = None) -> None:
        reason = REJECTION_REASONS.get(status_code, "unexpected-status")
        super().__init__(
            code=f"locket:server/{reason}",
            message=f"Server rejected request with status {status_code} ({reason})",
            details={"status_code": status_code, "body": body[:200], "url": url},
        )
        self.status_code = status_code
        self.reason = reason
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403
