"""Secrets from a 1Password vault, via the 1Password Python SDK.

Each item in the vault is one service (item title = service identity), and
each field of the item is one secret (field title = secret name). A service
account token must be set in ``OP_SERVICE_ACCOUNT_TOKEN``.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any

from locket import __version__
from locket.errors import SourceError
from locket.observability import get_logger
from locket.sources.base import Secrets

logger = get_logger(__name__)

ENV_OP_TOKEN = "OP_SERVICE_ACCOUNT_TOKEN"
INTEGRATION_NAME = "locket"

ClientFactory = Callable[[str], Awaitable[Any]]


async def _authenticate(token: str) -> Any:
    from onepassword.client import Client

    return await Client.authenticate(
        auth=token,
        integration_name=INTEGRATION_NAME,
        integration_version=__version__,
    )


class OnePassword:
    """Load all services from the named vault.

    Args:
        vault: Title of the vault holding one item per service.
        client_factory: Coroutine taking the token and returning an SDK client
            (defaults to ``onepassword.client.Client.authenticate``).
    """

    def __init__(self, vault: str, client_factory: ClientFactory | None = None) -> None:
        self.vault = vault
        self._client_factory = client_factory or _authenticate

    def load(self) -> Secrets:
        """Blocking wrapper around ``load_async``; call outside any running event loop."""
        return asyncio.run(self.load_async())

    async def load_async(self) -> Secrets:
        token = os.environ.get(ENV_OP_TOKEN)
        if not token:
            raise SourceError("onepassword", f"required {ENV_OP_TOKEN!r} not set")

        start = time.perf_counter()
        try:
            client = await self._client_factory(token)
            vault_id = await self._find_vault(client)
            secrets: Secrets = {}
            for overview in await client.items.list(vault_id):
                item = await client.items.get(vault_id, overview.id)
                secrets[overview.title] = {field.title: field.value for field in item.fields}
                logger.debug(
                    "locket.source.onepassword_service_loaded",
                    identity=overview.title,
                    count=len(secrets[overview.title]),
                )
        except SourceError:
            raise
        except Exception as e:
            raise SourceError(
                "onepassword",
                f"loading vault {self.vault!r} failed: {type(e).__name__}",
                details={"vault": self.vault},
            ) from e

        if not secrets:
            raise SourceError("onepassword", f"no services found in vault {self.vault!r}")
        logger.info(
            "locket.source.onepassword_loaded",
            vault=self.vault,
            services=len(secrets),
            elapsed_seconds=round(time.perf_counter() - start, 3),
        )
        return secrets

    async def _find_vault(self, client: Any) -> str:
        for vault in await client.vaults.list():
            if vault.title == self.vault:
                return str(vault.id)
        raise SourceError("onepassword", f"vault {self.vault!r} not found")
