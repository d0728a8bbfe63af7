"""Trust registry: the server's list of services allowed to request secrets.

Each entry maps a service identity to the Ed25519 public key its requests
must be signed with. Signing key pairs are created ahead of deployment:

- ``register()`` generates a pair, upserts the public half into the registry
  file, and returns both halves; the private half goes to the client out of
  band (e.g. a dotenv file written by ``marshal_dotenv``).
- The server loads the registry file at startup and authenticates each
  request by finding the entry whose key verifies the request signature.

Snapshots are immutable. Updates build a new ``Registry`` and swap it into a
``RegistryHolder`` so concurrent readers never see a partial entry list.
"""

from __future__ import annotations

import os
import tempfile
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import Field, ValidationError, field_validator

from locket.crypto import keys, signing
from locket.errors import RegistryReadError, RegistryWriteError, VerificationError
from locket.models import LocketBaseModel
from locket.observability import get_logger

logger = get_logger(__name__)


class RegistryEntry(LocketBaseModel):
    """Single registered service.

    Attributes:
        name: Service identity; also the service key in the secret store.
        keypub: Ed25519 verification key (PEM).
    """

    name: str = Field(..., min_length=1, description="Service identity")
    keypub: str = Field(..., min_length=1, description="Ed25519 public key (PEM)")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


@dataclass(frozen=True)
class Registry:
    """Immutable, ordered snapshot of registry entries (one per identity)."""

    entries: tuple[RegistryEntry, ...] = ()

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, identity: str) -> RegistryEntry | None:
        for entry in self.entries:
            if entry.name == identity:
                return entry
        return None

    def names(self) -> list[str]:
        return [entry.name for entry in self.entries]

    def upsert(self, entry: RegistryEntry) -> Registry:
        """Return a new snapshot with entry replacing any prior one of the same name.

        A replaced entry keeps its position; a new one is appended.
        """
        replaced = False
        updated: list[RegistryEntry] = []
        for existing in self.entries:
            if existing.name == entry.name:
                updated.append(entry)
                replaced = True
            else:
                updated.append(existing)
        if not replaced:
            updated.append(entry)
        return Registry(tuple(updated))


class RegistryHolder:
    """Owns the current registry snapshot.

    Reads (``snapshot``) take no lock; writers serialize on a lock and publish
    a complete new snapshot with a single attribute assignment.
    """

    def __init__(self, registry: Registry | None = None) -> None:
        self._snapshot = registry or Registry()
        self._write_lock = threading.Lock()

    @property
    def snapshot(self) -> Registry:
        return self._snapshot

    def replace(self, registry: Registry) -> None:
        with self._write_lock:
            self._snapshot = registry
        logger.info("locket.registry.replaced", entries=len(registry))

    def upsert(self, entry: RegistryEntry) -> Registry:
        with self._write_lock:
            self._snapshot = self._snapshot.upsert(entry)
            snapshot = self._snapshot
        logger.info(
            "locket.registry.upserted",
            identity=entry.name,
            fingerprint=keys.public_key_fingerprint(entry.keypub),
        )
        return snapshot


def authenticate(registry: Registry, message: str, signature: str) -> str | None:
    """Return the identity of the first entry whose key verifies signature over message.

    Entries are tried in insertion order. Returns None when nothing matches.

    Raises:
        VerificationError: If the signature itself is malformed
    """
    signing.decode_signature(signature)
    for entry in registry:
        try:
            if signing.verify(entry.keypub, message, signature):
                return entry.name
        except VerificationError as e:
            # A corrupt stored key can never authenticate anyone.
            logger.error(
                "locket.registry.invalid_entry_key",
                identity=entry.name,
                error=e.message,
            )
    return None


def load_registry(path: str | Path) -> Registry:
    """Load a registry from a YAML list of ``{name, keypub}`` records.

    An empty file is an empty registry.

    Raises:
        RegistryReadError: If the file is missing, unreadable, or malformed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RegistryReadError(str(path), e.strerror or str(e)) from e
    except UnicodeDecodeError as e:
        raise RegistryReadError(str(path), "not valid UTF-8") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RegistryReadError(str(path), f"invalid YAML: {e}") from e
    if data is None:
        logger.warning("locket.registry.empty", path=str(path))
        return Registry()
    if not isinstance(data, list):
        raise RegistryReadError(str(path), f"expected a list, got {type(data).__name__}")

    entries: list[RegistryEntry] = []
    seen: set[str] = set()
    for index, item in enumerate(data):
        try:
            entry = RegistryEntry.model_validate(item)
        except ValidationError as e:
            raise RegistryReadError(
                str(path), f"invalid entry at index {index}", details={"index": index}
            ) from e
        if entry.name in seen:
            raise RegistryReadError(
                str(path), f"duplicate entry {entry.name!r}", details={"index": index}
            )
        seen.add(entry.name)
        entries.append(entry)

    logger.debug("locket.registry.loaded", path=str(path), entries=len(entries))
    return Registry(tuple(entries))


def persist_registry(registry: Registry, path: str | Path) -> None:
    """Write registry to path as YAML, replacing the file atomically.

    Raises:
        RegistryWriteError: On any I/O failure
    """
    path = Path(path)
    text = yaml.safe_dump(
        [entry.model_dump() for entry in registry],
        sort_keys=False,
        default_flow_style=False,
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise RegistryWriteError(str(path), e.strerror or str(e)) from e
    logger.debug("locket.registry.persisted", path=str(path), entries=len(registry))


def register(identity: str, path: str | Path) -> tuple[str, str]:
    """Create a signing key pair for identity and upsert it into the registry file.

    A missing registry file starts out empty; an existing one that cannot be
    read raises RegistryReadError rather than being overwritten.

    Returns:
        (signing_public_pem, signing_private_pem)
    """
    path = Path(path)
    registry = load_registry(path) if path.exists() else Registry()
    public_pem, private_pem = keys.generate_signing_keypair()
    entry = RegistryEntry(name=identity, keypub=public_pem)
    replaced = registry.get(entry.name) is not None
    persist_registry(registry.upsert(entry), path)
    logger.info(
        "locket.registry.registered",
        identity=entry.name,
        replaced=replaced,
        fingerprint=keys.public_key_fingerprint(public_pem),
        path=str(path),
    )
    return public_pem, private_pem


def bootstrap(identities: Iterable[str]) -> tuple[Registry, dict[str, str]]:
    """Generate signing key pairs for many services at once, in memory.

    Returns:
        (registry with one entry per identity, {identity: signing_private_pem})
    """
    registry = Registry()
    private_keys: dict[str, str] = {}
    for identity in identities:
        public_pem, private_pem = keys.generate_signing_keypair()
        entry = RegistryEntry(name=identity, keypub=public_pem)
        registry = registry.upsert(entry)
        private_keys[entry.name] = private_pem
    return registry, private_keys
