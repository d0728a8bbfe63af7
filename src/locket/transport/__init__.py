"""HTTP transport layer for locket.

Public exports:
    create_app: FastAPI application factory for the secrets server
    SecretRequestHandler: Request handling for the server's single route
    LocketClient: Async client driver used by services to fetch secrets
"""

from locket.transport.client import LocketClient
from locket.transport.server import SecretRequestHandler, create_app

__all__ = [
    "LocketClient",
    "SecretRequestHandler",
    "create_app",
]
