"""Secrets from the server's own environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence

from locket.sources.base import Secrets, group_by_service

# Service name used when no services are given: every variable, ungrouped.
DEFAULT_ENV_SERVICE = "env"


class Env:
    """Load ``<SERVICE>_NAME=value`` environment variables.

    Args:
        services: Service identities to group by prefix. If empty, the whole
            environment is returned under the ``"env"`` service.
        environ: Mapping to read instead of ``os.environ`` (tests).
    """

    def __init__(
        self,
        services: Sequence[str] = (),
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.services = list(services)
        self._environ = environ

    def load(self) -> Secrets:
        environ = dict(self._environ if self._environ is not None else os.environ)
        if not self.services:
            return {DEFAULT_ENV_SERVICE: environ}
        return group_by_service(environ, self.services)
