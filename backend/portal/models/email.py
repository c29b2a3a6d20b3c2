"""
Pydantic models for outgoing notification email.

Models:
  EmailMessageInput  - what callers hand to send_email()
  EmailEnvelope      - SMTP envelope actually used (MAIL FROM / RCPT TO)
  EmailSendResult    - synthesized Message-ID plus the envelope
  SendEmailRequest   - body of POST /api/email/send
"""

from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class EmailMessageInput(BaseModel):
    """
    A message to deliver.

    ``to``, ``cc`` and ``bcc`` are all delivered to; only ``to`` and ``cc``
    appear in headers.
    """
    model_config = {"populate_by_name": True}

    to: list[str]
    subject: str
    text: Optional[str] = None
    html: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    cc: Optional[list[str]] = None
    bcc: Optional[list[str]] = None


class EmailEnvelope(BaseModel):
    model_config = {"populate_by_name": True}

    from_: str = Field(alias="from")
    to: list[str]


class EmailSendResult(BaseModel):
    model_config = {"populate_by_name": True}

    messageId: str
    envelope: EmailEnvelope


# ---------------------------------------------------------------------------
# Request body for the authenticated send endpoint
# ---------------------------------------------------------------------------

RecipientField = Union[str, list[str]]

_FORBIDDEN_ADDRESS_CHARS = ("\r", "\n", "<", ">")


class SendEmailRequest(BaseModel):
    """
    Request body for POST /api/email/send.

    Recipient fields accept either a comma-separated string or a list.
    """
    model_config = {"populate_by_name": True}

    to: RecipientField
    subject: str = Field(..., min_length=1)
    text: Optional[str] = None
    html: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    cc: Optional[RecipientField] = None
    bcc: Optional[RecipientField] = None

    @field_validator("to", "cc", "bcc", "from_")
    @classmethod
    def _reject_unsafe_addresses(cls, value):
        """Addresses end up in SMTP commands and headers; line breaks and angle brackets are refused."""
        if value is None:
            return value
        entries = value if isinstance(value, list) else [value]
        for entry in entries:
            if any(char in entry for char in _FORBIDDEN_ADDRESS_CHARS):
                raise ValueError("Email addresses must not contain line breaks or angle brackets")
        return value

    @model_validator(mode="after")
    def _require_body(self) -> "SendEmailRequest":
        if not self.text and not self.html:
            raise ValueError("Either text or html content must be provided")
        return self


def normalize_recipient_field(value: Optional[RecipientField]) -> Optional[list[str]]:
    """Split/trim a recipient field; None when nothing usable was given."""
    if not value:
        return None
    entries = value if isinstance(value, list) else value.split(",")
    cleaned = [entry.strip() for entry in entries if entry and entry.strip()]
    return cleaned or None
