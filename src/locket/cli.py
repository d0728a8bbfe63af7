"""Command-line interface for locket.

Example:
    >>> # From terminal:
    >>> # locket --version
    >>> # locket keys generate-signing [--out key.pem]
    >>> # locket register svc-a --registry registry.yml --env-out svc-a.env
    >>> # locket registry list --registry registry.yml
    >>> # locket serve --registry registry.yml --source dotenv --dotenv secrets.env -s svc-a
    >>> # locket fetch SVC_A_DB_PASSWORD --server http://10.0.0.2:8080
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer
import uvicorn

from locket import __version__
from locket.config import ENV_CLIENT_PRIVKEY_SIGNING, ENV_CLIENT_PUBKEY_SIGNING, ServerConfig
from locket.crypto.keys import (
    generate_signing_keypair,
    public_key_fingerprint,
    read_signing_key_file,
    signing_public_from_private,
)
from locket.errors import LocketError, ServerRejected
from locket.observability import configure_logging
from locket.registry import load_registry, register
from locket.sources import Dotenv, Env, OnePassword, SecretSource, SecretStore, marshal_dotenv
from locket.transport.client import LocketClient
from locket.transport.server import create_app

app = typer.Typer(help="Locket secrets server and client.")

keys_app = typer.Typer(help="Ed25519 signing key generation.")
app.add_typer(keys_app, name="keys")

registry_app = typer.Typer(help="Trust registry inspection.")
app.add_typer(registry_app, name="registry")

# Restrict private key files to owner read/write only
PRIVATE_KEY_FILE_MODE = 0o600

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class SourceKind(str, Enum):
    env = "env"
    dotenv = "dotenv"
    onepassword = "onepassword"


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _write_private(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    try:
        path.chmod(PRIVATE_KEY_FILE_MODE)
    except OSError as exc:
        typer.echo(
            f"Warning: could not set file permissions to 0600: {exc}. "
            "Ensure the key file is not readable by others.",
            err=True,
        )


@keys_app.command("generate-signing")
def keys_generate_signing(
    out: Annotated[
        Optional[Path],
        typer.Option("--out", "-o", help="Write the private key PEM here (mode 0600)."),
    ] = None,
) -> None:
    """Print a new Ed25519 signing key pair (public key first)."""
    if out is not None and out.is_dir():
        raise typer.BadParameter(f"Output path is a directory: {out}")
    public_pem, private_pem = generate_signing_keypair()
    typer.echo(public_pem, nl=False)
    if out is None:
        typer.echo(private_pem, nl=False)
    else:
        _write_private(out, private_pem)
        typer.echo(f"Private key written to {out}")


@app.command("register")
def register_service(
    name: Annotated[str, typer.Argument(help="Service identity to register.")],
    registry: Annotated[
        Path,
        typer.Option(..., "--registry", "-r", help="Registry YAML file (created if missing)."),
    ],
    env_out: Annotated[
        Optional[Path],
        typer.Option(
            "--env-out",
            help="Write the client's signing keys as a dotenv file (mode 0600).",
        ),
    ] = None,
) -> None:
    """Create a signing key pair for a service and upsert it into the registry."""
    try:
        public_pem, private_pem = register(name, registry)
    except LocketError as e:
        raise _fail(e.message) from e

    typer.echo(public_pem, nl=False)
    if env_out is not None:
        _write_private(
            env_out,
            marshal_dotenv(
                {
                    ENV_CLIENT_PUBKEY_SIGNING: public_pem,
                    ENV_CLIENT_PRIVKEY_SIGNING: private_pem,
                }
            ),
        )
        typer.echo(f"Signing keys for {name} written to {env_out}")


@registry_app.command("list")
def registry_list(
    registry: Annotated[
        Path,
        typer.Option(..., "--registry", "-r", help="Registry YAML file."),
    ],
) -> None:
    """List registered services with their key fingerprints."""
    try:
        loaded = load_registry(registry)
    except LocketError as e:
        raise _fail(e.message) from e
    for entry in loaded:
        typer.echo(f"{entry.name}\t{public_key_fingerprint(entry.keypub)}")


def _build_source(
    source: SourceKind,
    services: list[str],
    dotenv_path: Optional[Path],
    vault: Optional[str],
) -> SecretSource:
    if source is SourceKind.dotenv:
        if dotenv_path is None:
            raise typer.BadParameter("--dotenv is required with --source dotenv")
        return Dotenv(dotenv_path, services=services)
    if source is SourceKind.onepassword:
        if not vault:
            raise typer.BadParameter("--vault is required with --source onepassword")
        return OnePassword(vault)
    return Env(services=services)


@app.command("serve")
def serve(
    registry: Annotated[
        Optional[Path],
        typer.Option(
            "--registry", "-r", help="Registry YAML file (default: LOCKET_REGISTRY_PATH)."
        ),
    ] = None,
    source: Annotated[
        SourceKind,
        typer.Option("--source", help="Where secrets are loaded from."),
    ] = SourceKind.env,
    service: Annotated[
        Optional[list[str]],
        typer.Option(
            "--service", "-s", help="Service identity to group secrets for (repeatable)."
        ),
    ] = None,
    dotenv_path: Annotated[
        Optional[Path],
        typer.Option("--dotenv", help="Dotenv file for --source dotenv."),
    ] = None,
    vault: Annotated[
        Optional[str],
        typer.Option("--vault", help="1Password vault for --source onepassword."),
    ] = None,
    host: Annotated[str, typer.Option("--host", help="Bind address.")] = DEFAULT_HOST,
    port: Annotated[int, typer.Option("--port", "-p", help="Bind port.")] = DEFAULT_PORT,
    allow_cidr: Annotated[
        Optional[str],
        typer.Option(
            "--allow-cidr", help="Network allowed to POST (default: LOCKET_ALLOW_CIDR)."
        ),
    ] = None,
) -> None:
    """Load the registry and secrets, then serve them over HTTP."""
    try:
        config = ServerConfig.from_env(
            allow_cidr=allow_cidr,
            registry_path=str(registry) if registry is not None else None,
        )
    except ValueError as e:
        raise _fail(f"invalid configuration: {e}") from e

    secret_source = _build_source(source, service or [], dotenv_path, vault)
    try:
        trust_registry = load_registry(config.registry_path)
        store = SecretStore.from_source(secret_source)
    except LocketError as e:
        raise _fail(e.message) from e

    application = create_app(trust_registry, store, config)
    uvicorn.run(application, host=host, port=port, log_config=None)


async def _fetch(name: str, server: Optional[str], signing_private: Optional[str]) -> str:
    signing_public = signing_public_from_private(signing_private) if signing_private else None
    client = LocketClient.from_env(
        server_url=server,
        signing_public=signing_public,
        signing_private=signing_private,
    )
    async with client:
        return await client.fetch_secret(name)


@app.command("fetch")
def fetch(
    name: Annotated[str, typer.Argument(help="Secret name to fetch.")],
    server: Annotated[
        Optional[str],
        typer.Option("--server", help="Server URL (default: LOCKET_SERVER_URL)."),
    ] = None,
    signing_key: Annotated[
        Optional[Path],
        typer.Option(
            "--signing-key",
            help="Ed25519 private key PEM file (default: LOCKET_CLIENT_PRIVKEY_SIGNING).",
        ),
    ] = None,
) -> None:
    """Fetch one secret and print its value to stdout."""
    signing_private = None
    if signing_key is not None:
        try:
            signing_private = read_signing_key_file(signing_key)
        except (OSError, ValueError) as e:
            raise _fail(f"cannot read signing key {signing_key}: {e}") from e

    try:
        value = asyncio.run(_fetch(name, server, signing_private))
    except ValueError as e:
        raise _fail(f"invalid configuration: {e}") from e
    except ServerRejected as e:
        raise _fail(f"server rejected the request ({e.reason})") from e
    except LocketError as e:
        raise _fail(e.message) from e
    typer.echo(value)


def _version_callback(value: bool) -> None:
    """Print the version and exit when requested."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


VERSION_OPTION = typer.Option(
    False,
    "--version",
    help="Show locket version and exit.",
    callback=_version_callback,
    is_eager=True,
)


@app.callback()
def cli(
    version: bool = VERSION_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Locket CLI entrypoint."""
    if verbose:
        configure_logging(log_level="DEBUG", force=True)


def main() -> None:
    """Run the locket CLI."""
    app()


if __name__ == "__main__":
    main()
