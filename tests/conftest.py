"""Shared pytest fixtures for locket tests.

RSA key generation is the slow part of most tests, so encryption key pairs
are generated once per session and shared.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from locket.crypto import generate_encryption_keypair, generate_signing_keypair
from locket.registry import Registry, RegistryEntry, persist_registry


@dataclass(frozen=True)
class KeyPair:
    """Public and private PEM halves of one key pair."""

    public: str
    private: str


@pytest.fixture(scope="session")
def encryption_keypair() -> KeyPair:
    """One RSA-2048 key pair for the whole session."""
    return KeyPair(*generate_encryption_keypair(2048))


@pytest.fixture(scope="session")
def other_encryption_keypair() -> KeyPair:
    """A second, unrelated RSA-2048 key pair."""
    return KeyPair(*generate_encryption_keypair(2048))


@pytest.fixture
def signing_keypair() -> KeyPair:
    """Fresh Ed25519 key pair."""
    return KeyPair(*generate_signing_keypair())


@pytest.fixture
def other_signing_keypair() -> KeyPair:
    """A second, unrelated Ed25519 key pair."""
    return KeyPair(*generate_signing_keypair())


@pytest.fixture
def registry_with_svc_a(signing_keypair: KeyPair) -> Registry:
    """Registry holding only ``svc-a``, keyed to signing_keypair."""
    return Registry((RegistryEntry(name="svc-a", keypub=signing_keypair.public),))


@pytest.fixture
def registry_file(tmp_path: Path, registry_with_svc_a: Registry) -> Path:
    """registry_with_svc_a persisted to a temporary YAML file."""
    path = tmp_path / "registry.yml"
    persist_registry(registry_with_svc_a, path)
    return path
