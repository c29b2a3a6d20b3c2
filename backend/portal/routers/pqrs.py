"""
PQRS (petitions, complaints, claims and suggestions) endpoints.

Endpoints:
  GET  /public-key  - RSA public key the browser encrypts with
  POST /            - encrypted PQRS submission, forwarded by email to staff

Environment variables
---------------------
PQRS_PUBLIC_KEY    PEM (SPKI or PKCS#1), "\\n" escapes allowed.
PQRS_PRIVATE_KEY   Matching private key PEM.
PQRS_EMAIL_TO      Staff recipients (comma / semicolon / whitespace separated).
PQRS_EMAIL_FROM    Optional sender override.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from portal.config import TenantContext, get_tenant_context
from portal.models.email import EmailMessageInput
from portal.models.envelope import PublicKeyResponse, SubmissionResponse
from portal.models.submissions import PqrsForm
from portal.routers.utils import read_json_body
from portal.services.notifications import render_pqrs_notification
from portal.services.submission import (
    FormSpec,
    KeyNotConfigured,
    decrypt_submission,
    deliver,
    get_private_key,
    public_key_or_500,
    resolve_recipients,
    resolve_sender,
)

logger = logging.getLogger(__name__)

router = APIRouter()

PQRS_FORM = FormSpec(label="PQRS", env_prefix="PQRS")


@router.get("/public-key", response_model=PublicKeyResponse)
async def get_pqrs_public_key():
    return public_key_or_500(PQRS_FORM)


@router.post("", response_model=SubmissionResponse)
async def submit_pqrs(
    request: Request,
    tenant: Optional[TenantContext] = Depends(get_tenant_context),
):
    """Decrypt a PQRS envelope, validate it and email the request to staff."""
    try:
        private_key = get_private_key(PQRS_FORM)
    except KeyNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    body = await read_json_body(request)
    form = decrypt_submission(body, private_key, PqrsForm, PQRS_FORM)
    recipients = resolve_recipients(PQRS_FORM, tenant)

    rendered = render_pqrs_notification(form)
    result = await deliver(
        EmailMessageInput(
            to=recipients,
            subject=f"Nueva solicitud PQRS - {form.subject}",
            text=rendered.text,
            html=rendered.html,
            from_=resolve_sender(PQRS_FORM, tenant),
        ),
        tenant,
        PQRS_FORM,
    )

    logger.info("PQRS submission forwarded (message %s)", result.messageId)
    return {"status": "ok"}
