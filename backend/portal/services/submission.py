"""
Shared pipeline for encrypted form submissions.

Every form endpoint follows the same steps:

  1. private key configured?            -> 500 otherwise
  2. body is a well-formed envelope?    -> 400 with field details
  3. envelope decrypts?                 -> generic 400 (no detail, see below)
  4. plaintext matches the form schema? -> 400 with field details
  5. notification recipients set?       -> 500 otherwise
  6. email delivered?                   -> 502 otherwise

Decrypt failures (bad RSA unwrap, bad GCM tag, truncated ciphertext, bad
JSON) all produce the same client message so the endpoint cannot be used as
a padding or tamper oracle. Setting PORTAL_DEBUG_DECRYPT_ERRORS=true adds
the failure class to the response for local debugging.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError

from portal.config import TenantContext, env_flag, format_recipients, resolve_tenant_env
from portal.models.email import EmailMessageInput, EmailSendResult
from portal.models.envelope import Err, parse_envelope
from portal.services.envelope import DecryptionError, decrypt_payload
from portal.services.pem import InvalidPemFormat, normalize_pem
from portal.services.smtp import SmtpConfigurationError, SmtpError, send_email

logger = logging.getLogger(__name__)

FormT = TypeVar("FormT", bound=BaseModel)


@dataclass(frozen=True)
class FormSpec:
    """
    Static description of one encrypted form.

    env_prefix selects the variables <PREFIX>_PUBLIC_KEY, <PREFIX>_PRIVATE_KEY,
    <PREFIX>_EMAIL_TO and <PREFIX>_EMAIL_FROM.
    """

    label: str
    env_prefix: str

    @property
    def public_key_var(self) -> str:
        return f"{self.env_prefix}_PUBLIC_KEY"

    @property
    def private_key_var(self) -> str:
        return f"{self.env_prefix}_PRIVATE_KEY"

    @property
    def recipients_var(self) -> str:
        return f"{self.env_prefix}_EMAIL_TO"

    @property
    def sender_var(self) -> str:
        return f"{self.env_prefix}_EMAIL_FROM"


class KeyNotConfigured(RuntimeError):
    """The RSA key for a form is not present in the environment."""


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def get_public_key(spec: FormSpec) -> str:
    """Return the form's public key PEM with escaped newlines restored."""
    value = resolve_tenant_env(spec.public_key_var)
    if not value:
        raise KeyNotConfigured(f"{spec.label} public key is not configured")
    return normalize_pem(value)


def public_key_or_500(spec: FormSpec) -> dict[str, str]:
    try:
        return {"publicKey": get_public_key(spec)}
    except KeyNotConfigured as exc:
        logger.error("%s", exc)
        raise HTTPException(status_code=500, detail=str(exc))


def get_private_key(spec: FormSpec) -> str:
    value = resolve_tenant_env(spec.private_key_var)
    if not value:
        raise KeyNotConfigured(f"{spec.label} private key is not configured")
    return normalize_pem(value)


# ---------------------------------------------------------------------------
# Decrypt + validate
# ---------------------------------------------------------------------------

def flatten_validation_error(exc: ValidationError) -> dict[str, Any]:
    """Collapse pydantic errors into {"formErrors": [...], "fieldErrors": {field: [...]}}."""
    field_errors: dict[str, list[str]] = {}
    form_errors: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "Invalid value")
        if location:
            field_errors.setdefault(location, []).append(message)
        else:
            form_errors.append(message)
    return {"formErrors": form_errors, "fieldErrors": field_errors}


def decrypt_submission(
    body: Any,
    private_key: str,
    schema: type[FormT],
    spec: FormSpec,
) -> FormT:
    """
    Run steps 2-4 of the pipeline and return the validated form.

    Raises:
        HTTPException: 400 for anything the client sent, 500 when the
            configured private key cannot be loaded.
    """
    parsed = parse_envelope(body)
    if isinstance(parsed, Err):
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid request payload", "details": parsed.error.to_details()},
        )

    try:
        payload = decrypt_payload(parsed.value, private_key)
    except InvalidPemFormat as exc:
        logger.error("%s private key is not usable: %s", spec.label, exc)
        raise HTTPException(status_code=500, detail=f"{spec.label} private key is not configured")
    except DecryptionError as exc:
        logger.warning("Failed to decrypt %s payload: %s: %s", spec.label, type(exc).__name__, exc)
        detail: Any = f"Unable to decrypt {spec.label} payload"
        if env_flag("PORTAL_DEBUG_DECRYPT_ERRORS"):
            detail = {"error": detail, "reason": type(exc).__name__}
        raise HTTPException(status_code=400, detail=detail)

    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": f"Invalid {spec.label} payload", "details": flatten_validation_error(exc)},
        )


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

def resolve_recipients(spec: FormSpec, tenant: Optional[TenantContext]) -> list[str]:
    recipients = format_recipients(resolve_tenant_env(spec.recipients_var, tenant))
    if not recipients:
        logger.error("%s is not configured", spec.recipients_var)
        raise HTTPException(status_code=500, detail=f"{spec.recipients_var} is not configured")
    return recipients


def resolve_sender(spec: FormSpec, tenant: Optional[TenantContext]) -> Optional[str]:
    return resolve_tenant_env(spec.sender_var, tenant)


async def deliver(
    message: EmailMessageInput,
    tenant: Optional[TenantContext],
    spec: FormSpec,
) -> EmailSendResult:
    """
    Send one notification in a worker thread (the SMTP client blocks).

    Raises:
        HTTPException: 500 when SMTP is not configured, 502 on any delivery
            failure. Relay details are logged, never returned.
    """
    try:
        return await run_in_threadpool(send_email, message, tenant)
    except SmtpConfigurationError as exc:
        logger.error("Cannot send %s notification: %s", spec.label, exc)
        raise HTTPException(status_code=500, detail="Email delivery is not configured")
    except SmtpError:
        logger.exception("Failed to send %s email", spec.label)
        raise HTTPException(status_code=502, detail=f"Failed to send {spec.label} notification")
