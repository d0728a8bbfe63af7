"""Locket: minimal secrets distribution over HTTP.

Clients registered in a trust registry fetch named secrets from a server.
Requests are RSA-OAEP encrypted and Ed25519 signed; responses are encrypted
to a per-client key generated at startup.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
