"""
Training-course (formación) signup endpoints.

Endpoints:
  GET  /public-key  - RSA public key the browser encrypts with
  POST /            - encrypted signup; emails staff, then the participant

Environment variables
---------------------
FORMACION_PUBLIC_KEY    PEM (SPKI or PKCS#1), "\\n" escapes allowed.
FORMACION_PRIVATE_KEY   Matching private key PEM.
FORMACION_EMAIL_TO      Staff recipients.
FORMACION_EMAIL_FROM    Optional sender override (used for both emails).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from portal.config import TenantContext, get_tenant_context
from portal.models.email import EmailMessageInput
from portal.models.envelope import PublicKeyResponse, SubmissionResponse
from portal.models.submissions import FormacionForm
from portal.routers.utils import read_json_body
from portal.services.notifications import (
    find_course,
    render_formacion_confirmation,
    render_formacion_notification,
)
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

FORMACION_FORM = FormSpec(label="formación", env_prefix="FORMACION")


@router.get("/public-key", response_model=PublicKeyResponse)
async def get_formacion_public_key():
    return public_key_or_500(FORMACION_FORM)


@router.post("", response_model=SubmissionResponse)
async def submit_formacion(
    request: Request,
    tenant: Optional[TenantContext] = Depends(get_tenant_context),
):
    """
    Decrypt a course signup and send two emails: the staff notification and
    a confirmation to the participant. Either failing yields 502.
    """
    try:
        private_key = get_private_key(FORMACION_FORM)
    except KeyNotConfigured as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    body = await read_json_body(request)
    form = decrypt_submission(body, private_key, FormacionForm, FORMACION_FORM)
    recipients = resolve_recipients(FORMACION_FORM, tenant)
    sender = resolve_sender(FORMACION_FORM, tenant)

    staff_email = render_formacion_notification(form)
    await deliver(
        EmailMessageInput(
            to=recipients,
            subject=f"Nueva inscripción curso - {form.course}",
            text=staff_email.text,
            html=staff_email.html,
            from_=sender,
        ),
        tenant,
        FORMACION_FORM,
    )

    confirmation = render_formacion_confirmation(form, find_course(form.course))
    await deliver(
        EmailMessageInput(
            to=[form.email],
            subject=f"Inscripción Pendiente - {form.course}",
            text=confirmation.text,
            html=confirmation.html,
            from_=sender,
        ),
        tenant,
        FORMACION_FORM,
    )

    logger.info("Formación signup for course %r forwarded", form.course)
    return {"status": "ok"}
