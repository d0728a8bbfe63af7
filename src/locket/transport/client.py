"""Async HTTP client for fetching secrets from a locket server.

The LocketClient provides:
- Async context manager for connection lifecycle (``initialize()`` on enter)
- A fresh RSA key pair per client, used to receive encrypted values
- fetch_secret() for the encrypt, sign, post, decrypt round trip
- Structured logging that never includes secret names or values

Failures are raised, never retried: ``RequestError`` when the exchange could
not be completed locally (transport, encryption, decryption, bad JSON) and
``ServerRejected`` when the server answered with a non-200 status.

Example:
    >>> from locket.transport.client import LocketClient
    >>>
    >>> async with LocketClient.from_env() as client:
    ...     password = await client.fetch_secret("SVC_A_DB_PASSWORD")
"""

from __future__ import annotations

import time
from http import HTTPStatus
from typing import Any

import httpx
from pydantic import ValidationError

from locket.config import ClientConfig
from locket.crypto import (
    decrypt,
    encrypt,
    generate_encryption_keypair,
    public_key_fingerprint,
    sign,
)
from locket.crypto.keys import DEFAULT_RSA_BITS
from locket.errors import (
    DecryptionError,
    EncryptionError,
    InitializationError,
    LocketError,
    RequestError,
    ServerRejected,
    VerificationError,
)
from locket.models import SecretRequest, SecretResponse
from locket.observability import get_logger, sanitize_for_logging

logger = get_logger(__name__)

# Default timeout in seconds
DEFAULT_TIMEOUT = 10.0


class LocketClient:
    """Async client for one locket server.

    Attributes:
        server_address: Base URL of the server, without trailing slash
        timeout: Request timeout in seconds
        server_key: Last encryption key retrieved from the server (PEM)

    Example:
        >>> async with LocketClient(url, signing_public, signing_private) as client:
        ...     value = await client.fetch_secret("SVC_A_TOKEN")
    """

    def __init__(
        self,
        server_address: str,
        signing_public: str,
        signing_private: str,
        timeout: float = DEFAULT_TIMEOUT,
        bits: int = DEFAULT_RSA_BITS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            server_address: Base URL of the locket server (e.g. http://10.0.0.2:8080)
            signing_public: Ed25519 public key registered for this service (PEM)
            signing_private: Matching Ed25519 private key (PEM)
            timeout: Request timeout in seconds
            bits: Size of the client's RSA key pair
            transport: Optional custom async transport (for testing). Should be an
                instance of httpx.AsyncBaseTransport (e.g., httpx.MockTransport).
        """
        if not server_address:
            raise ValueError("server_address must not be empty")
        self.server_address = server_address.rstrip("/")
        self.timeout = timeout
        self.bits = bits
        self.server_key: str | None = None
        self._signing_public = signing_public
        self._signing_private = signing_private
        self._transport = transport
        self._public_key: str | None = None
        self._private_key: str | None = None
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_env(
        cls,
        transport: httpx.AsyncBaseTransport | None = None,
        **overrides: Any,
    ) -> LocketClient:
        """Build a client from LOCKET_* environment variables; overrides win."""
        config = ClientConfig.from_env(**overrides)
        logger.debug(
            "locket.client.configured", **sanitize_for_logging(config.model_dump())
        )
        return cls(
            server_address=config.server_url,
            signing_public=config.signing_public,
            signing_private=config.signing_private,
            timeout=config.timeout,
            bits=config.rsa_bits,
            transport=transport,
        )

    @property
    def is_connected(self) -> bool:
        """Check if client has an active connection."""
        return self._client is not None

    @property
    def public_key(self) -> str | None:
        """The client's encryption public key, sent with every request."""
        return self._public_key

    async def initialize(self) -> None:
        """Generate the client key pair, open the connection, fetch the server key.

        Raises:
            InitializationError: If any step fails or the server key is empty
        """
        try:
            self._public_key, self._private_key = generate_encryption_keypair(self.bits)
        except LocketError as e:
            raise InitializationError(f"Cannot generate client key pair: {e.message}") from e

        if self._client is None:
            if self._transport:
                self._client = httpx.AsyncClient(transport=self._transport, timeout=self.timeout)
            else:
                self._client = httpx.AsyncClient(timeout=self.timeout)

        try:
            server_key = await self.retrieve_server_key()
        except LocketError as e:
            await self.close()
            raise InitializationError(
                f"Cannot retrieve server key: {e.message}", url=self.server_address
            ) from e
        if not server_key.strip():
            await self.close()
            raise InitializationError("Server returned an empty key", url=self.server_address)

        logger.info(
            "locket.client.initialized",
            url=self.server_address,
            bits=self.bits,
            signing_fingerprint=public_key_fingerprint(self._signing_public),
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> LocketClient:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context and close connection."""
        await self.close()

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RequestError(
                "Client not connected. Use 'async with' context.", url=self.server_address
            )
        return self._client

    async def retrieve_server_key(self) -> str:
        """GET the server's encryption public key and cache it on ``server_key``.

        Raises:
            RequestError: On transport failure
            ServerRejected: On a non-200 status
        """
        client = self._require_client()
        url = f"{self.server_address}/"
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(
                "locket.client.server_key_failed", url=url, error_type=type(e).__name__
            )
            raise RequestError(
                f"Cannot reach server at {url}: {type(e).__name__}", url=url
            ) from e

        if response.status_code != HTTPStatus.OK:
            raise ServerRejected(response.status_code, response.text, url=url)

        self.server_key = response.text
        logger.debug("locket.client.server_key_retrieved", url=url)
        return self.server_key

    def _build_request(self, server_key: str, name: str) -> SecretRequest:
        if self._public_key is None:
            raise RequestError("Client not initialized", url=self.server_address)
        try:
            payload = encrypt(server_key, name)
        except EncryptionError as e:
            raise RequestError(
                f"Cannot encrypt request: {e.message}", url=self.server_address
            ) from e
        try:
            signature = sign(self._signing_private, name)
        except VerificationError as e:
            raise RequestError(
                f"Cannot sign request: {e.message}", url=self.server_address
            ) from e
        return SecretRequest(payload=payload, signature=signature, client_pubkey=self._public_key)

    async def fetch_secret(self, name: str) -> str:
        """Fetch one secret by name.

        The server key is retrieved again first, so a restarted server (new
        key pair) is picked up without recreating the client.

        Args:
            name: Secret name as known to the server's store

        Returns:
            The decrypted secret value

        Raises:
            RequestError: On transport, encryption, decryption or response parse failure
            ServerRejected: If the server answers with a non-200 status
        """
        if not name:
            raise ValueError("name must not be empty")
        client = self._require_client()
        if self._private_key is None:
            raise RequestError("Client not initialized", url=self.server_address)

        start_time = time.perf_counter()
        server_key = await self.retrieve_server_key()
        secret_request = self._build_request(server_key, name)

        url = f"{self.server_address}/"
        try:
            response = await client.post(
                url,
                content=secret_request.model_dump_json(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("locket.client.request_failed", url=url, error_type=type(e).__name__)
            raise RequestError(f"Request to {url} failed: {type(e).__name__}", url=url) from e

        if response.status_code != HTTPStatus.OK:
            logger.warning(
                "locket.client.rejected", url=url, status_code=response.status_code
            )
            raise ServerRejected(response.status_code, response.text, url=url)

        try:
            secret_response = SecretResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise RequestError("Invalid JSON in server response", url=url) from e

        try:
            value = decrypt(self._private_key, secret_response.payload)
        except DecryptionError as e:
            raise RequestError("Cannot decrypt server response", url=url) from e

        logger.info(
            "locket.client.secret_received",
            url=url,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return value

    async def fetch_secrets(self, names: list[str]) -> dict[str, str]:
        """Fetch several secrets one after another; the first failure is raised."""
        return {name: await self.fetch_secret(name) for name in names}
