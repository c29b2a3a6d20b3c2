"""
Wire model for encrypted form submissions.

An envelope carries a hybrid-encrypted JSON payload:

  ciphertext    base64(AES-256-GCM output ‖ 16-byte tag)
  encryptedKey  base64(RSA-OAEP-SHA256(raw 32-byte AES key))
  iv            base64(12-byte GCM nonce)

parse_envelope() validates an untrusted request body and returns a tagged
result instead of raising, so routers decide how to surface the failure.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel


class EncryptedEnvelope(BaseModel):
    """Encrypted submission, field names exactly as sent by the browser."""

    ciphertext: str
    encryptedKey: str
    iv: str


class PublicKeyResponse(BaseModel):
    publicKey: str


class SubmissionResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Tagged parse result
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class EnvelopeSchemaError:
    """Per-field messages describing why a body is not a valid envelope."""

    field_errors: dict[str, list[str]] = field(default_factory=dict)
    form_errors: list[str] = field(default_factory=list)

    def to_details(self) -> dict[str, Any]:
        return {"formErrors": list(self.form_errors), "fieldErrors": dict(self.field_errors)}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: EnvelopeSchemaError


ParseResult = Union[Ok[EncryptedEnvelope], Err]

_REQUIRED_MESSAGES = {
    "ciphertext": "Encrypted payload is required",
    "encryptedKey": "Encrypted key is required",
    "iv": "Initialization vector is required",
}


def parse_envelope(body: Any) -> ParseResult:
    """
    Validate that ``body`` is an object with three non-empty string fields.

    Extra keys are ignored. Returns Ok(EncryptedEnvelope) or
    Err(EnvelopeSchemaError); never raises.
    """
    if not isinstance(body, dict):
        return Err(EnvelopeSchemaError(form_errors=["Request body must be a JSON object"]))

    field_errors: dict[str, list[str]] = {}
    for name, required_message in _REQUIRED_MESSAGES.items():
        value = body.get(name)
        if value is None:
            field_errors[name] = [required_message]
        elif not isinstance(value, str):
            field_errors[name] = ["Expected a string"]
        elif not value:
            field_errors[name] = [required_message]

    if field_errors:
        return Err(EnvelopeSchemaError(field_errors=field_errors))

    return Ok(
        EncryptedEnvelope(
            ciphertext=body["ciphertext"],
            encryptedKey=body["encryptedKey"],
            iv=body["iv"],
        )
    )
