"""FastAPI server implementation for locket.

This module provides the secrets server:
- GET / returns the server's encryption public key (PEM, text/plain)
- OPTIONS / advertises the allowed methods
- POST / exchanges an encrypted, signed secret name for the encrypted value
- any other method on / is answered with 405

A POST is processed as a fixed sequence; the first failing step ends the
request:

1. parse the JSON body                         -> 400
2. decrypt the secret name                     -> 400 (same body as 1)
3. check the peer address against allow_cidr   -> 403
4. authenticate the signature via the registry -> 403
5. resolve (service, name) in the secret store -> 404
6. encrypt the value to the client's key       -> 500

Error bodies are short fixed strings; causes are logged, never returned.

Example:
    >>> from locket.config import ServerConfig
    >>> from locket.registry import load_registry
    >>> from locket.sources import Dotenv, SecretStore
    >>> from locket.transport.server import create_app
    >>>
    >>> app = create_app(
    ...     load_registry("registry.yml"),
    ...     SecretStore.from_source(Dotenv("secrets.env", services=["svc-a"])),
    ...     ServerConfig(allow_cidr="10.0.0.0/24"),
    ... )
    >>> # Run with: uvicorn module:app
"""

from __future__ import annotations

import ipaddress
import time
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from ulid import ULID

from locket import __version__
from locket.config import ServerConfig
from locket.crypto import decrypt, encrypt, generate_encryption_keypair, public_key_fingerprint
from locket.errors import DecryptionError, EncryptionError, SecretNotFoundError, VerificationError
from locket.models import SecretRequest, SecretResponse
from locket.observability import bind_context, get_logger, is_debug_mode, unbind_context
from locket.registry import Registry, RegistryHolder, authenticate
from locket.sources import SecretStore

logger = get_logger(__name__)

ALLOWED_METHODS = "GET, POST"
REJECTED_METHODS = ["PUT", "PATCH", "DELETE", "HEAD", "TRACE"]

# Fixed response bodies; nothing request-specific is ever echoed.
BODY_BAD_REQUEST = "bad request"
BODY_FORBIDDEN = "forbidden"
BODY_NOT_FOUND = "not found"
BODY_METHOD_NOT_ALLOWED = "method not allowed"
BODY_SERVER_ERROR = "server error"


def _plain(status: HTTPStatus, body: str) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status)


class SecretRequestHandler:
    """Answers requests on ``/`` for one server process.

    Holds the server's encryption key pair (generated once, here), the
    registry holder, and the secret store. Requests share no other state.

    Attributes:
        registry_holder: Current trust registry snapshot
        store: Secrets loaded at startup
        config: Server settings
    """

    def __init__(
        self,
        registry_holder: RegistryHolder,
        store: SecretStore,
        config: ServerConfig,
    ) -> None:
        self.registry_holder = registry_holder
        self.store = store
        self.config = config
        self._allow_network = config.allow_network
        self._public_key, self._private_key = generate_encryption_keypair(config.rsa_bits)
        logger.info(
            "locket.server.keypair_generated",
            bits=config.rsa_bits,
            fingerprint=public_key_fingerprint(self._public_key),
        )

    @property
    def public_key(self) -> str:
        return self._public_key

    def handle_public_key(self) -> Response:
        return PlainTextResponse(self._public_key, status_code=HTTPStatus.OK)

    def handle_options(self) -> Response:
        return Response(status_code=HTTPStatus.OK, headers={"Allow": ALLOWED_METHODS})

    def handle_method_not_allowed(self, request: Request) -> Response:
        logger.warning(
            "locket.server.method_not_allowed",
            method=request.method,
            ip=self._peer_host(request),
        )
        return _plain(HTTPStatus.METHOD_NOT_ALLOWED, BODY_METHOD_NOT_ALLOWED)

    @staticmethod
    def _peer_host(request: Request) -> str | None:
        return request.client.host if request.client else None

    def is_allowed_peer(self, host: str | None) -> bool:
        """True if host is an IP address inside allow_cidr. Unparsable hosts are not."""
        if not host:
            return False
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return False
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
            address = address.ipv4_mapped
        return address in self._allow_network

    async def _read_request(self, request: Request) -> SecretRequest | None:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > self.config.max_request_size:
                logger.warning("locket.server.request_too_large", content_length=content_length)
                return None
        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > self.config.max_request_size:
                logger.warning(
                    "locket.server.request_too_large",
                    size=len(body),
                    max_size=self.config.max_request_size,
                )
                return None
        try:
            return SecretRequest.model_validate_json(body)
        except ValidationError as e:
            logger.warning("locket.server.malformed_request", errors=e.error_count())
            return None

    async def handle_secret_request(self, request: Request) -> Response:
        """Run the POST sequence; see module docstring."""
        start_time = time.perf_counter()
        peer = self._peer_host(request)

        secret_request = await self._read_request(request)
        if secret_request is None:
            return _plain(HTTPStatus.BAD_REQUEST, BODY_BAD_REQUEST)

        try:
            name = decrypt(self._private_key, secret_request.payload)
        except DecryptionError:
            # Same response as a malformed body: no decryption oracle.
            logger.warning("locket.server.decrypt_failed", ip=peer)
            return _plain(HTTPStatus.BAD_REQUEST, BODY_BAD_REQUEST)

        if not self.is_allowed_peer(peer):
            logger.warning(
                "locket.server.ip_rejected",
                ip=peer,
                allow_cidr=self.config.allow_cidr,
            )
            return _plain(HTTPStatus.FORBIDDEN, BODY_FORBIDDEN)

        try:
            service = authenticate(self.registry_holder.snapshot, name, secret_request.signature)
        except VerificationError as e:
            logger.warning("locket.server.signature_malformed", ip=peer, error=e.message)
            return _plain(HTTPStatus.FORBIDDEN, BODY_FORBIDDEN)
        if service is None:
            logger.warning("locket.server.signature_mismatch", ip=peer)
            return _plain(HTTPStatus.FORBIDDEN, BODY_FORBIDDEN)
        bind_context(identity=service)

        try:
            value = self.store.resolve(service, name)
        except SecretNotFoundError:
            logger.warning("locket.server.secret_not_found", identity=service)
            return _plain(HTTPStatus.NOT_FOUND, BODY_NOT_FOUND)

        try:
            ciphertext = encrypt(secret_request.client_pubkey, value)
        except EncryptionError as e:
            logger.error("locket.server.encrypt_failed", identity=service, error=e.message)
            return _plain(HTTPStatus.INTERNAL_SERVER_ERROR, BODY_SERVER_ERROR)

        logger.info(
            "locket.server.secret_sent",
            identity=service,
            ip=peer,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return JSONResponse(
            status_code=HTTPStatus.OK,
            content=SecretResponse(payload=ciphertext).model_dump(),
        )


def create_app(
    registry: Registry | RegistryHolder,
    store: SecretStore,
    config: ServerConfig | None = None,
) -> FastAPI:
    """Create and configure the locket FastAPI application.

    The server's encryption key pair is generated here, once per app.

    Args:
        registry: Trust registry snapshot, or a holder to allow live updates
        store: Secrets to serve
        config: Server settings; defaults to ServerConfig.from_env()

    Returns:
        Configured FastAPI application ready to run
    """
    if config is None:
        config = ServerConfig.from_env()
    holder = registry if isinstance(registry, RegistryHolder) else RegistryHolder(registry)

    handler = SecretRequestHandler(holder, store, config)
    logger.info(
        "locket.server.created",
        allow_cidr=config.allow_cidr,
        services=len(store),
        registered=len(holder.snapshot),
    )

    debug = is_debug_mode()
    app = FastAPI(
        title="Locket Secrets Server",
        version=__version__,
        docs_url="/docs" if debug else None,
        redoc_url="/redoc" if debug else None,
        openapi_url="/openapi.json" if debug else None,
    )
    app.state.handler = handler
    app.state.registry_holder = holder

    @app.middleware("http")
    async def request_context(request: Request, call_next):  # type: ignore[no-untyped-def]
        bind_context(request_id=str(ULID()))
        logger.debug(
            "locket.server.request_received",
            method=request.method,
            path=request.url.path,
            ip=SecretRequestHandler._peer_host(request),
        )
        try:
            return await call_next(request)
        finally:
            unbind_context("request_id", "identity")

    @app.get("/", include_in_schema=False)
    async def get_public_key() -> Response:
        return handler.handle_public_key()

    @app.options("/", include_in_schema=False)
    async def options() -> Response:
        return handler.handle_options()

    @app.post("/", include_in_schema=False)
    async def post_secret(request: Request) -> Response:
        return await handler.handle_secret_request(request)

    @app.api_route("/", methods=REJECTED_METHODS, include_in_schema=False)
    async def method_not_allowed(request: Request) -> Response:
        return handler.handle_method_not_allowed(request)

    @app.exception_handler(StarletteHTTPException)
    async def unrouted_method(request: Request, exc: StarletteHTTPException) -> Response:
        # Methods without a route on / (PROPFIND, custom verbs) land here.
        if exc.status_code == HTTPStatus.METHOD_NOT_ALLOWED:
            return handler.handle_method_not_allowed(request)
        return await http_exception_handler(request, exc)

    return app
