"""Tests for the locket FastAPI server.

POST requests run a fixed sequence of checks; these tests drive each step to
fail in turn and assert that later steps (in particular the secret store)
are never reached.
"""

from __future__ import annotations

import base64
import json
import logging
from unittest.mock import MagicMock

import httpx
import pytest

from locket.config import ServerConfig
from locket.crypto import decrypt, encrypt, sign
from locket.errors import DecryptionError
from locket.registry import Registry, RegistryEntry, RegistryHolder
from locket.sources import SecretStore
from locket.transport.server import (
    ALLOWED_METHODS,
    BODY_BAD_REQUEST,
    BODY_FORBIDDEN,
    BODY_METHOD_NOT_ALLOWED,
    BODY_NOT_FOUND,
    BODY_SERVER_ERROR,
    SecretRequestHandler,
    create_app,
)


def build_body(
    server_key: str,
    name: str,
    signing_private: str,
    client_pubkey: str,
    signed_name: str | None = None,
) -> dict[str, str]:
    return {
        "payload": encrypt(server_key, name),
        "signature": sign(signing_private, signed_name if signed_name is not None else name),
        "client_pubkey": client_pubkey,
    }


class TestPublicKey:
    @pytest.mark.asyncio
    async def test_get_returns_pem_text(
        self, http_client: httpx.AsyncClient, server_public_key: str
    ) -> None:
        response = await http_client.get("/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == server_public_key
        assert response.text.startswith("-----BEGIN PUBLIC KEY-----")

    @pytest.mark.asyncio
    async def test_get_is_not_ip_filtered(self, outside_client: httpx.AsyncClient) -> None:
        response = await outside_client.get("/")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_key_is_stable_for_app_lifetime(self, http_client: httpx.AsyncClient) -> None:
        first = (await http_client.get("/")).text
        second = (await http_client.get("/")).text
        assert first == second

    def test_each_app_has_its_own_key(self, registry_with_svc_a, server_config) -> None:
        store = SecretStore({})
        first = create_app(registry_with_svc_a, store, server_config)
        second = create_app(registry_with_svc_a, store, server_config)
        assert first.state.handler.public_key != second.state.handler.public_key


class TestMethods:
    @pytest.mark.asyncio
    async def test_options_advertises_allowed_methods(
        self, http_client: httpx.AsyncClient
    ) -> None:
        response = await http_client.options("/")
        assert response.status_code == 200
        assert response.headers["allow"] == ALLOWED_METHODS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["PUT", "PATCH", "DELETE", "TRACE", "PROPFIND"])
    async def test_other_methods_rejected(
        self, http_client: httpx.AsyncClient, store: MagicMock, method: str
    ) -> None:
        response = await http_client.request(method, "/")
        assert response.status_code == 405
        assert response.text == BODY_METHOD_NOT_ALLOWED
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_head_rejected(self, http_client: httpx.AsyncClient) -> None:
        response = await http_client.head("/")
        assert response.status_code == 405


class TestMalformedRequests:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        [
            b"not json",
            b"{}",
            b'{"payload": "x", "signature": "y"}',
            b'{"payload": "", "signature": "y", "client_pubkey": "z"}',
            b'{"payload": "x", "signature": "y", "client_pubkey": "z", "extra": 1}',
            b"[1, 2, 3]",
        ],
    )
    async def test_malformed_body_is_400(
        self, http_client: httpx.AsyncClient, store: MagicMock, content: bytes
    ) -> None:
        response = await http_client.post("/", content=content)
        assert response.status_code == 400
        assert response.text == BODY_BAD_REQUEST
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_oversize_body_is_400(
        self, http_client: httpx.AsyncClient, server_config: ServerConfig
    ) -> None:
        content = json.dumps(
            {
                "payload": "x" * server_config.max_request_size,
                "signature": "y",
                "client_pubkey": "z",
            }
        )
        response = await http_client.post("/", content=content)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_chunked_oversize_body_is_not_drained(
        self, http_client: httpx.AsyncClient, store: MagicMock, server_config: ServerConfig
    ) -> None:
        chunk = b"x" * 4096
        total_chunks = 200
        sent = 0

        async def body():
            nonlocal sent
            for _ in range(total_chunks):
                sent += 1
                yield chunk

        response = await http_client.post("/", content=body())
        assert response.status_code == 400
        assert response.text == BODY_BAD_REQUEST
        assert sent * len(chunk) <= server_config.max_request_size + 2 * len(chunk)
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_undecryptable_payload_is_400(
        self, http_client: httpx.AsyncClient, signing_keypair, encryption_keypair
    ) -> None:
        body = {
            "payload": base64.b64encode(b"\x00" * 256).decode("ascii"),
            "signature": sign(signing_keypair.private, "DB_PASSWORD"),
            "client_pubkey": encryption_keypair.public,
        }
        response = await http_client.post("/", json=body)
        assert response.status_code == 400
        assert response.text == BODY_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_payload_for_other_key_is_400(
        self,
        http_client: httpx.AsyncClient,
        signing_keypair,
        encryption_keypair,
        other_encryption_keypair,
    ) -> None:
        body = build_body(
            other_encryption_keypair.public,
            "DB_PASSWORD",
            signing_keypair.private,
            encryption_keypair.public,
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 400


class TestTamper:
    @pytest.mark.asyncio
    async def test_flipped_ciphertext_byte_looks_like_malformed_request(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = build_body(
            server_public_key, "DB_PASSWORD", signing_keypair.private, encryption_keypair.public
        )
        raw = bytearray(base64.b64decode(body["payload"]))
        raw[len(raw) // 2] ^= 0xFF
        body["payload"] = base64.b64encode(bytes(raw)).decode("ascii")

        tampered = await http_client.post("/", json=body)
        malformed = await http_client.post("/", content=b"not json")

        assert tampered.status_code == malformed.status_code == 400
        assert tampered.content == malformed.content
        store.resolve.assert_not_called()


class TestOriginFilter:
    @pytest.mark.asyncio
    async def test_outside_address_is_403_before_store(
        self,
        outside_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = build_body(
            server_public_key, "DB_PASSWORD", signing_keypair.private, encryption_keypair.public
        )
        response = await outside_client.post("/", json=body)
        assert response.status_code == 403
        assert response.text == BODY_FORBIDDEN
        store.resolve.assert_not_called()

    @pytest.mark.parametrize(
        ("host", "allowed"),
        [
            ("127.0.0.1", True),
            ("::ffff:127.0.0.1", True),
            ("127.0.0.2", False),
            ("10.0.0.1", False),
            ("::1", False),
            ("testclient", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_allowed_peer(self, app, host: str | None, allowed: bool) -> None:
        handler: SecretRequestHandler = app.state.handler
        assert handler.is_allowed_peer(host) is allowed


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_unregistered_key_is_403_before_store(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        other_signing_keypair,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = build_body(
            server_public_key,
            "DB_PASSWORD",
            other_signing_keypair.private,
            encryption_keypair.public,
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 403
        assert response.text == BODY_FORBIDDEN
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_signature_over_other_name_is_403(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = build_body(
            server_public_key,
            "DB_PASSWORD",
            signing_keypair.private,
            encryption_keypair.public,
            signed_name="API_TOKEN",
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 403
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_signature_is_403(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = {
            "payload": encrypt(server_public_key, "DB_PASSWORD"),
            "signature": base64.b64encode(b"short").decode("ascii"),
            "client_pubkey": encryption_keypair.public,
        }
        response = await http_client.post("/", json=body)
        assert response.status_code == 403
        store.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_registry_update_is_seen_by_next_request(
        self,
        store: MagicMock,
        server_config: ServerConfig,
        signing_keypair,
        encryption_keypair,
    ) -> None:
        holder = RegistryHolder(Registry())
        app = create_app(holder, store, server_config)
        transport = httpx.ASGITransport(app=app, client=("127.0.0.1", 1))
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            server_key = app.state.handler.public_key
            body = build_body(
                server_key, "DB_PASSWORD", signing_keypair.private, encryption_keypair.public
            )
            assert (await client.post("/", json=body)).status_code == 403

            holder.upsert(RegistryEntry(name="svc-a", keypub=signing_keypair.public))
            assert (await client.post("/", json=body)).status_code == 200


class TestResolution:
    @pytest.mark.asyncio
    async def test_success_returns_value_encrypted_to_client(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        store: MagicMock,
    ) -> None:
        body = build_body(
            server_public_key, "DB_PASSWORD", signing_keypair.private, encryption_keypair.public
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"payload"}
        assert decrypt(encryption_keypair.private, data["payload"]) == "s3cr3t"
        store.resolve.assert_called_once_with("svc-a", "DB_PASSWORD")

    @pytest.mark.asyncio
    async def test_unknown_name_is_404(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
    ) -> None:
        body = build_body(
            server_public_key, "DOES_NOT_EXIST", signing_keypair.private, encryption_keypair.public
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 404
        assert response.text == BODY_NOT_FOUND

    @pytest.mark.asyncio
    async def test_other_services_secret_is_404(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
    ) -> None:
        body = build_body(
            server_public_key, "OTHER_PASSWORD", signing_keypair.private, encryption_keypair.public
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unusable_client_key_is_500(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
    ) -> None:
        body = build_body(
            server_public_key, "DB_PASSWORD", signing_keypair.private, signing_keypair.public
        )
        response = await http_client.post("/", json=body)
        assert response.status_code == 500
        assert response.text == BODY_SERVER_ERROR

    @pytest.mark.asyncio
    async def test_response_cannot_be_read_with_other_key(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        other_encryption_keypair,
    ) -> None:
        body = build_body(
            server_public_key, "DB_PASSWORD", signing_keypair.private, encryption_keypair.public
        )
        payload = (await http_client.post("/", json=body)).json()["payload"]
        with pytest.raises(DecryptionError):
            decrypt(other_encryption_keypair.private, payload)


class TestLogging:
    @pytest.mark.asyncio
    async def test_secret_name_and_value_never_logged(
        self,
        http_client: httpx.AsyncClient,
        server_public_key: str,
        signing_keypair,
        encryption_keypair,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.DEBUG)
        for name in ("DB_PASSWORD", "DOES_NOT_EXIST"):
            body = build_body(
                server_public_key, name, signing_keypair.private, encryption_keypair.public
            )
            await http_client.post("/", json=body)

        assert "locket.server.secret_sent" in caplog.text
        assert "locket.server.secret_not_found" in caplog.text
        for sensitive in ("DB_PASSWORD", "DOES_NOT_EXIST", "s3cr3t"):
            assert sensitive not in caplog.text
