"""Secret source contract and the resolver the server reads from.

A source is anything with ``load() -> Secrets``: a mapping from service
identity to that service's flat ``{secret_name: value}`` mapping. Sources are
loaded once at server startup into a ``SecretStore``; the store is read-only
while the server runs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from locket.errors import SecretNotFoundError
from locket.observability import get_logger

logger = get_logger(__name__)

Secrets = dict[str, dict[str, str]]


@runtime_checkable
class SecretSource(Protocol):
    """Anything that can produce all secrets grouped by service."""

    def load(self) -> Secrets:
        """Return ``{service: {secret_name: value}}``. Raises SourceError on failure."""
        ...


def group_by_service(values: Mapping[str, str], services: Iterable[str]) -> Secrets:
    """Group flat ``NAME=value`` pairs under each service whose ``<SERVICE>_`` prefixes NAME.

    Secret names keep their full (prefixed) name, e.g. ``SVC1_DB_PASSWORD``
    is requested as ``SVC1_DB_PASSWORD`` by service ``SVC1``. Every listed
    service is present in the result, even with no secrets.
    """
    grouped: Secrets = {}
    for service in services:
        prefix = f"{service}_"
        grouped[service] = {k: v for k, v in values.items() if k.startswith(prefix)}
        if not grouped[service]:
            logger.warning("locket.source.service_without_secrets", identity=service)
    return grouped


class SecretStore:
    """Read-only view over loaded secrets, resolving (service, name) to a value."""

    def __init__(self, secrets: Mapping[str, Mapping[str, str]]) -> None:
        self._secrets: Secrets = {service: dict(kv) for service, kv in secrets.items()}

    @classmethod
    def from_source(cls, source: SecretSource) -> SecretStore:
        secrets = source.load()
        logger.info(
            "locket.store.loaded",
            source=type(source).__name__,
            services=len(secrets),
            secrets=sum(len(kv) for kv in secrets.values()),
        )
        return cls(secrets)

    def services(self) -> list[str]:
        return list(self._secrets)

    def __len__(self) -> int:
        return len(self._secrets)

    def resolve(self, service: str, name: str) -> str:
        """Return the value of secret ``name`` for ``service``.

        Raises:
            SecretNotFoundError: If the service or the name is unknown
        """
        kv = self._secrets.get(service)
        if kv is None or name not in kv:
            raise SecretNotFoundError(service)
        return kv[name]
