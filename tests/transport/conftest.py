"""Fixtures for server and client transport tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from locket.config import ServerConfig
from locket.registry import Registry
from locket.sources import SecretStore
from locket.transport.server import create_app

ALLOWED_PEER = ("127.0.0.1", 50000)
OUTSIDE_PEER = ("192.168.1.5", 50000)

SECRETS = {
    "svc-a": {"DB_PASSWORD": "s3cr3t", "API_TOKEN": "tok"},
    "svc-b": {"OTHER_PASSWORD": "not-for-a"},
}


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(allow_cidr="127.0.0.1/32", rsa_bits=2048, max_request_size=8192)


@pytest.fixture
def store() -> MagicMock:
    """SecretStore wrapped in a mock so tests can assert whether it was consulted."""
    return MagicMock(wraps=SecretStore(SECRETS))


@pytest.fixture
def app(registry_with_svc_a: Registry, store: MagicMock, server_config: ServerConfig) -> FastAPI:
    return create_app(registry_with_svc_a, store, server_config)


@pytest.fixture
def server_public_key(app: FastAPI) -> str:
    return app.state.handler.public_key


@pytest_asyncio.fixture
async def http_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Client whose requests arrive from an address inside allow_cidr."""
    transport = httpx.ASGITransport(app=app, client=ALLOWED_PEER)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture
async def outside_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Client whose requests arrive from an address outside allow_cidr."""
    transport = httpx.ASGITransport(app=app, client=OUTSIDE_PEER)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
