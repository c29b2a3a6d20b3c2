"""
Wellness (bienestar) appointment request endpoints.

Endpoints:
  GET  /public-key  - RSA public key the browser encrypts with
  POST /            - encrypted appointment request, emailed to staff

Environment variables
---------------------
BIENESTAR_PUBLIC_KEY    PEM (SPKI or PKCS#1), "\\n" escapes allowed.
BIENESTAR_PRIVATE_KEY   Matching private key PEM.
BIENESTAR_EMAIL_TO      Staff recipients.
BIENESTAR_EMAIL_FROM    Optional sender override.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from portal.config import TenantContext, get_tenant_context
from portal.models.email import EmailMessageInput
from portal.models.envelope import PublicKeyResponse, SubmissionResponse
from portal.models.submissions import BienestarForm
from portal.routers.utils import read_json_body
from portal.services.notifications import render_bienestar_notification
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

BIENESTAR_FORM = FormSpec(label="bienestar", env_prefix="BIENESTAR")


@router.get("/public-key", response_model=PublicKeyResponse)
async def get_bienestar_public_key():
    return public_key_or_500(BIENESTAR_FORM)


@router.post("", response_model=SubmissionResponse)
async def submit_bienestar(
    request: Request,
    tenant: Optional[TenantContext] = Depends(get_tenant_context),
):
    try:
        private_key = get_private_key(BIENESTAR_FORM)
    except KeyNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    body = await read_json_body(request)
    form = decrypt_submission(body, private_key, BienestarForm, BIENESTAR_FORM)
    recipients = resolve_recipients(BIENESTAR_FORM, tenant)

    rendered = render_bienestar_notification(form)
    await deliver(
        EmailMessageInput(
            to=recipients,
            subject=f"Nueva solicitud de bienestar - {form.service}",
            text=rendered.text,
            html=rendered.html,
            from_=resolve_sender(BIENESTAR_FORM, tenant),
        ),
        tenant,
        BIENESTAR_FORM,
    )

    logger.info("Bienestar request for service %r forwarded", form.service)
    return {"status": "ok"}
