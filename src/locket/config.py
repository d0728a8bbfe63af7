"""Server and client configuration.

Both models can be built directly or from ``LOCKET_*`` environment variables
via ``from_env()``; explicit keyword overrides win over the environment.
"""

from __future__ import annotations

import ipaddress
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

from locket.crypto.keys import DEFAULT_RSA_BITS, MIN_RSA_BITS

DEFAULT_ALLOW_CIDR = "10.0.0.0/24"
DEFAULT_MAX_REQUEST_SIZE = 64 * 1024
DEFAULT_REGISTRY_PATH = "registry.yml"
DEFAULT_CLIENT_TIMEOUT = 10.0

ENV_ALLOW_CIDR = "LOCKET_ALLOW_CIDR"
ENV_RSA_BITS = "LOCKET_RSA_BITS"
ENV_MAX_REQUEST_SIZE = "LOCKET_MAX_REQUEST_SIZE"
ENV_REGISTRY_PATH = "LOCKET_REGISTRY_PATH"
ENV_SERVER_URL = "LOCKET_SERVER_URL"
ENV_CLIENT_PUBKEY_SIGNING = "LOCKET_CLIENT_PUBKEY_SIGNING"
ENV_CLIENT_PRIVKEY_SIGNING = "LOCKET_CLIENT_PRIVKEY_SIGNING"
ENV_TIMEOUT = "LOCKET_TIMEOUT"


def _from_env(mapping: dict[str, str], overrides: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name, env_name in mapping.items():
        raw = os.environ.get(env_name)
        if raw:
            values[field_name] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})
    return values


class ServerConfig(BaseModel):
    """Server settings.

    Attributes:
        allow_cidr: Network range POST requests must come from
        rsa_bits: Size of the server's encryption key
        max_request_size: Largest accepted POST body in bytes
        registry_path: Registry file loaded at startup
    """

    allow_cidr: str = Field(default=DEFAULT_ALLOW_CIDR, description="Allowed client network")
    rsa_bits: int = Field(default=DEFAULT_RSA_BITS, ge=MIN_RSA_BITS)
    max_request_size: int = Field(default=DEFAULT_MAX_REQUEST_SIZE, ge=1)
    registry_path: str = Field(default=DEFAULT_REGISTRY_PATH)

    @field_validator("allow_cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        return str(ipaddress.ip_network(v.strip(), strict=False))

    @property
    def allow_network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        return ipaddress.ip_network(self.allow_cidr)

    @classmethod
    def from_env(cls, **overrides: Any) -> ServerConfig:
        return cls.model_validate(
            _from_env(
                {
                    "allow_cidr": ENV_ALLOW_CIDR,
                    "rsa_bits": ENV_RSA_BITS,
                    "max_request_size": ENV_MAX_REQUEST_SIZE,
                    "registry_path": ENV_REGISTRY_PATH,
                },
                overrides,
            )
        )


class ClientConfig(BaseModel):
    """Client settings: where the server is and the provisioned signing key pair."""

    server_url: str = Field(..., min_length=1)
    signing_public: str = Field(..., min_length=1, repr=False)
    signing_private: str = Field(..., min_length=1, repr=False)
    timeout: float = Field(default=DEFAULT_CLIENT_TIMEOUT, gt=0)
    rsa_bits: int = Field(default=DEFAULT_RSA_BITS, ge=MIN_RSA_BITS)

    @field_validator("server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("signing_public", "signing_private")
    @classmethod
    def restore_newlines(cls, v: str) -> str:
        # dotenv/systemd files carry PEM newlines escaped
        return v.replace("\\n", "\n")

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        return cls.model_validate(
            _from_env(
                {
                    "server_url": ENV_SERVER_URL,
                    "signing_public": ENV_CLIENT_PUBKEY_SIGNING,
                    "signing_private": ENV_CLIENT_PRIVKEY_SIGNING,
                    "timeout": ENV_TIMEOUT,
                    "rsa_bits": ENV_RSA_BITS,
                },
                overrides,
            )
        )
