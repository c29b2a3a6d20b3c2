"""
RFC 5322 message builder for notification email.

Produces the raw text handed to the SMTP DATA phase. Header lines are
CRLF-joined; bodies may still contain bare LF, which the SMTP client
normalizes while dot-stuffing.
"""

import base64
import re
import secrets
import time
from dataclasses import dataclass
from email.utils import formatdate

from portal.models.email import EmailMessageInput

CRLF = "\r\n"

_PRINTABLE_ASCII = re.compile(r"^[\x20-\x7E]*$")


@dataclass(frozen=True)
class MimeMessage:
    payload: str
    message_id: str
    recipients: list[str]


def encode_header_value(value: str) -> str:
    """Printable ASCII passes verbatim, anything else becomes an RFC 2047 word."""
    if _PRINTABLE_ASCII.match(value):
        return value
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


def create_message_id(domain: str) -> str:
    timestamp = int(time.time() * 1000)
    return f"<{timestamp}.{secrets.token_hex(16)}@{domain}>"


def create_boundary() -> str:
    return f"ALT-{secrets.token_hex(8)}"


def _address_list(addresses: list[str]) -> str:
    return ", ".join(addresses)


def build_mime_message(
    message: EmailMessageInput,
    from_address: str,
    smtp_host: str,
) -> MimeMessage:
    """
    Compose headers and body for ``message``.

    Envelope recipients are to + cc + bcc in that order; bcc addresses never
    appear in a header. Body selection:
      text and html -> multipart/alternative (text part first)
      html only     -> text/html
      otherwise     -> text/plain (empty when no text was given)
    """
    recipients = list(message.to)
    if message.cc:
        recipients.extend(message.cc)
    if message.bcc:
        recipients.extend(message.bcc)

    message_id = create_message_id(smtp_host)
    headers = [
        f"From: {encode_header_value(from_address)}",
        f"To: {_address_list(message.to)}",
        f"Subject: {encode_header_value(message.subject)}",
        f"Message-ID: {message_id}",
        f"Date: {formatdate(usegmt=True)}",
        "MIME-Version: 1.0",
    ]

    if message.cc:
        headers.append(f"Cc: {_address_list(message.cc)}")

    parts: list[str] = []
    if message.text and message.html:
        boundary = create_boundary()
        headers.append(f'Content-Type: multipart/alternative; boundary="{boundary}"')
        parts.extend([
            f"--{boundary}",
            "Content-Type: text/plain; charset=UTF-8",
            "Content-Transfer-Encoding: 8bit",
            "",
            message.text,
            "",
            f"--{boundary}",
            "Content-Type: text/html; charset=UTF-8",
            "Content-Transfer-Encoding: 8bit",
            "",
            message.html,
            "",
            f"--{boundary}--",
            "",
        ])
    elif message.html:
        headers.append("Content-Type: text/html; charset=UTF-8")
        headers.append("Content-Transfer-Encoding: 8bit")
        parts.append(message.html)
    else:
        headers.append("Content-Type: text/plain; charset=UTF-8")
        headers.append("Content-Transfer-Encoding: 8bit")
        parts.append(message.text or "")

    payload = CRLF.join(headers) + CRLF + CRLF + CRLF.join(parts)
    return MimeMessage(payload=payload, message_id=message_id, recipients=recipients)
