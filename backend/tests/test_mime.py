"""
Tests for the RFC 5322 message builder.
"""

import re
from unittest.mock import patch

from portal.models.email import EmailMessageInput
from portal.services.mime import (
    build_mime_message,
    create_boundary,
    create_message_id,
    encode_header_value,
)


def _headers(payload: str) -> dict[str, str]:
    head = payload.split("\r\n\r\n", 1)[0]
    return dict(line.split(": ", 1) for line in head.split("\r\n"))


class TestEncodeHeaderValue:
    def test_ascii_passes_through(self):
        assert encode_header_value("Nueva solicitud PQRS - Queja") == "Nueva solicitud PQRS - Queja"

    def test_non_ascii_becomes_encoded_word(self):
        assert encode_header_value("Inscripción") == "=?UTF-8?B?SW5zY3JpcGNpw7Nu?="

    def test_control_characters_are_encoded(self):
        assert encode_header_value("a\tb").startswith("=?UTF-8?B?")


class TestIdentifiers:
    def test_message_id_shape(self):
        assert re.fullmatch(r"<\d+\.[0-9a-f]{32}@mail\.example\.com>", create_message_id("mail.example.com"))

    def test_message_ids_are_unique(self):
        assert create_message_id("h") != create_message_id("h")

    def test_boundary_shape(self):
        assert re.fullmatch(r"ALT-[0-9a-f]{16}", create_boundary())


class TestBuildMimeMessage:
    def test_plain_text_message(self):
        message = EmailMessageInput(to=["a@example.com", "b@example.com"], subject="Hola", text="Cuerpo")
        mime = build_mime_message(message, "portal@example.com", "mail.example.com")

        headers = _headers(mime.payload)
        assert headers["From"] == "portal@example.com"
        assert headers["To"] == "a@example.com, b@example.com"
        assert headers["Subject"] == "Hola"
        assert headers["Message-ID"] == mime.message_id
        assert headers["MIME-Version"] == "1.0"
        assert headers["Content-Type"] == "text/plain; charset=UTF-8"
        assert headers["Content-Transfer-Encoding"] == "8bit"
        assert headers["Date"].endswith("GMT")
        assert "Cc" not in headers
        assert mime.payload.endswith("\r\n\r\nCuerpo")
        assert mime.message_id.endswith("@mail.example.com>")

    def test_html_only_message(self):
        message = EmailMessageInput(to=["a@example.com"], subject="Hola", html="<p>Hola</p>")
        mime = build_mime_message(message, "portal@example.com", "mail.example.com")
        assert _headers(mime.payload)["Content-Type"] == "text/html; charset=UTF-8"
        assert mime.payload.endswith("\r\n\r\n<p>Hola</p>")

    def test_multipart_alternative_puts_text_first(self):
        message = EmailMessageInput(to=["a@example.com"], subject="Hola", text="plain", html="<p>html</p>")
        with patch("portal.services.mime.create_boundary", return_value="ALT-0123456789abcdef"):
            mime = build_mime_message(message, "portal@example.com", "mail.example.com")

        assert _headers(mime.payload)["Content-Type"] == (
            'multipart/alternative; boundary="ALT-0123456789abcdef"'
        )
        body = mime.payload.split("\r\n\r\n", 1)[1]
        assert body.index("text/plain") < body.index("text/html")
        assert body.count("--ALT-0123456789abcdef\r\n") == 2
        assert body.endswith("--ALT-0123456789abcdef--\r\n")

    def test_recipients_include_cc_and_bcc_but_headers_hide_bcc(self):
        message = EmailMessageInput(
            to=["to@example.com"],
            cc=["cc@example.com"],
            bcc=["bcc@example.com"],
            subject="Hola",
            text="x",
        )
        mime = build_mime_message(message, "portal@example.com", "mail.example.com")

        assert mime.recipients == ["to@example.com", "cc@example.com", "bcc@example.com"]
        headers = _headers(mime.payload)
        assert headers["Cc"] == "cc@example.com"
        assert "Bcc" not in headers
        assert "bcc@example.com" not in mime.payload

    def test_non_ascii_subject_and_sender_are_encoded(self):
        message = EmailMessageInput(to=["a@example.com"], subject="Inscripción", text="x")
        mime = build_mime_message(message, "Formación <f@example.com>", "mail.example.com")
        headers = _headers(mime.payload)
        assert headers["Subject"] == "=?UTF-8?B?SW5zY3JpcGNpw7Nu?="
        assert headers["From"].startswith("=?UTF-8?B?")

    def test_message_without_body_is_empty_plain_text(self):
        message = EmailMessageInput(to=["a@example.com"], subject="Hola")
        mime = build_mime_message(message, "portal@example.com", "mail.example.com")
        assert mime.payload.endswith("Content-Transfer-Encoding: 8bit\r\n\r\n")
