"""Tests for wire models."""

import pytest
from pydantic import ValidationError

from locket.models import SecretRequest, SecretResponse


def test_secret_request_from_json() -> None:
    request = SecretRequest.model_validate_json(
        '{"payload": "cA==", "signature": "cw==", "client_pubkey": "pem"}'
    )
    assert request.payload == "cA=="
    assert request.client_pubkey == "pem"


def test_secret_request_is_frozen() -> None:
    request = SecretRequest(payload="p", signature="s", client_pubkey="k")
    with pytest.raises(ValidationError):
        request.payload = "other"  # type: ignore[misc]


@pytest.mark.parametrize(
    "data",
    [
        {"payload": "p", "signature": "s"},
        {"payload": "", "signature": "s", "client_pubkey": "k"},
        {"payload": "p", "signature": "s", "client_pubkey": "k", "extra": "x"},
        {"payload": 1, "signature": "s", "client_pubkey": "k"},
    ],
)
def test_secret_request_rejects_invalid(data: dict) -> None:
    with pytest.raises(ValidationError):
        SecretRequest.model_validate(data)


def test_secret_response_dump() -> None:
    assert SecretResponse(payload="c").model_dump() == {"payload": "c"}
