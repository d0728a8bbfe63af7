"""Secret sources.

Every source implements ``load() -> {service: {secret_name: value}}``:

- ``Env``: the server's environment variables
- ``Dotenv``: a ``KEY=value`` file
- ``OnePassword``: a 1Password vault

``SecretStore`` wraps the loaded mapping for the server.
"""

from locket.sources.base import SecretSource, Secrets, SecretStore, group_by_service
from locket.sources.dotenv import Dotenv, marshal_dotenv, parse_dotenv
from locket.sources.env import Env
from locket.sources.onepassword import OnePassword

__all__ = [
    "Dotenv",
    "Env",
    "OnePassword",
    "SecretSource",
    "SecretStore",
    "Secrets",
    "group_by_service",
    "marshal_dotenv",
    "parse_dotenv",
]
