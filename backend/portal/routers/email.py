"""
Authenticated endpoint for sending arbitrary notification email.

Endpoints:
  POST /send  - send an email through the configured relay (auth: Bearer JWT)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from portal.auth import get_current_user
from portal.config import TenantContext, get_tenant_context
from portal.models.email import EmailMessageInput, SendEmailRequest, normalize_recipient_field
from portal.routers.utils import read_json_body
from portal.services.smtp import SmtpConfigurationError, SmtpError, send_email
from portal.services.submission import flatten_validation_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/send", response_model=dict)
async def send_email_endpoint(
    request: Request,
    user_id: str = Depends(get_current_user),
    tenant: Optional[TenantContext] = Depends(get_tenant_context),
):
    """
    Send an email to ``to`` (+ ``cc``/``bcc``).

    Returns the synthesized Message-ID and the SMTP envelope. Delivery
    failures return 502.
    """
    body = await read_json_body(request)
    try:
        payload = SendEmailRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"error": "Invalid request payload", "details": flatten_validation_error(exc)},
        )

    to = normalize_recipient_field(payload.to)
    if not to:
        raise HTTPException(status_code=400, detail="At least one recipient is required")

    message = EmailMessageInput(
        to=to,
        subject=payload.subject,
        text=payload.text,
        html=payload.html,
        from_=payload.from_,
        cc=normalize_recipient_field(payload.cc),
        bcc=normalize_recipient_field(payload.bcc),
    )

    try:
        result = await run_in_threadpool(send_email, message, tenant)
    except SmtpConfigurationError as exc:
        logger.error("Email requested by %s not sent: %s", user_id, exc)
        raise HTTPException(status_code=500, detail="Email delivery is not configured")
    except SmtpError:
        logger.exception("Failed to send email requested by %s", user_id)
        raise HTTPException(status_code=502, detail="Failed to send email")

    logger.info("Email %s sent on behalf of %s", result.messageId, user_id)
    return result.model_dump(by_alias=True)
