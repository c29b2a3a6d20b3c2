"""
Minimal SMTP client driven over a raw socket.

One connection per message, no pooling and no retries:

  connect (220) -> EHLO (250) -> [STARTTLS (220), TLS handshake, EHLO (250)]
  -> AUTH LOGIN (334) -> username (334) -> password (235)
  -> MAIL FROM (250) -> RCPT TO (250/251) per recipient -> DATA (354)
  -> dot-stuffed message + "." (250) -> QUIT (221)

SmtpConnection keeps the allowed transitions in a table; sending a command
the current state does not allow raises SmtpProtocolError before anything
reaches the wire. Every read is bounded by SmtpConfig.timeout.

Environment variables (all honour the ``__<TENANT_ID>`` override)
-----------------------------------------------------------------
SMTP_HOST                  Relay host (required).
SMTP_PORT                  Relay port (default: 25).
SMTP_USER                  AUTH LOGIN username (required).
SMTP_PASSWORD              AUTH LOGIN password (required; SMTP_PASS is accepted too).
SMTP_CLIENT_NAME           Name sent with EHLO (default: portal-application).
SMTP_STARTTLS              Upgrade with STARTTLS (default: true).
SMTP_REJECT_UNAUTHORIZED   Verify the relay certificate unless "false".
SMTP_DEFAULT_FROM          Sender used when a message has none (default: SMTP_USER).
SMTP_TIMEOUT               Connect/read timeout in seconds (default: 30).
"""

import base64
import logging
import re
import socket
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from portal.config import TenantContext, env_flag, resolve_tenant_env
from portal.models.email import EmailEnvelope, EmailMessageInput, EmailSendResult
from portal.services.mime import build_mime_message

logger = logging.getLogger(__name__)

CRLF = "\r\n"

DEFAULT_PORT = 25
DEFAULT_TIMEOUT = 30.0
DEFAULT_CLIENT_NAME = "portal-application"

_RESPONSE_LINE = re.compile(r"^\d{3}(?:[ -]|$)")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SmtpError(Exception):
    """Base class for delivery failures (surfaced to clients as 502)."""


class UnexpectedSmtpResponse(SmtpError):
    def __init__(self, code: int, expected_codes: Iterable[int], response_text: str):
        self.code = code
        self.expected_codes = tuple(expected_codes)
        self.response_text = response_text
        expected = ", ".join(str(c) for c in self.expected_codes)
        super().__init__(
            f"Unexpected SMTP response code {code}. Expected {expected}. Response: {response_text}"
        )


class SmtpConnectionClosed(SmtpError):
    """The relay closed the connection before a complete response arrived."""


class SmtpTimeout(SmtpError):
    """No complete response arrived within the configured timeout."""


class SmtpSocketError(SmtpError):
    """Network-level failure (connect refused, reset, TLS handshake...)."""


class SmtpProtocolError(SmtpError):
    """A command was malformed or issued in a state that does not allow it."""


class SmtpConfigurationError(RuntimeError):
    """Relay settings are missing or invalid (server misconfiguration)."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    client_name: str = DEFAULT_CLIENT_NAME
    start_tls: bool = True
    min_tls_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    verify_certificate: bool = True
    default_from: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def from_address(self) -> str:
        return self.default_from or self.user


def resolve_smtp_config(tenant: Optional[TenantContext] = None) -> SmtpConfig:
    """
    Build an SmtpConfig from the environment.

    Raises:
        SmtpConfigurationError: host, user or password is missing, or the
            port / timeout is not a number.
    """
    host = resolve_tenant_env("SMTP_HOST", tenant)
    user = resolve_tenant_env("SMTP_USER", tenant)
    password = resolve_tenant_env("SMTP_PASSWORD", tenant) or resolve_tenant_env("SMTP_PASS", tenant)

    missing = [
        name
        for name, value in (("SMTP_HOST", host), ("SMTP_USER", user), ("SMTP_PASSWORD", password))
        if not value
    ]
    if missing:
        raise SmtpConfigurationError(f"SMTP is not configured: missing {', '.join(missing)}")

    port_value = resolve_tenant_env("SMTP_PORT", tenant) or str(DEFAULT_PORT)
    try:
        port = int(port_value)
    except ValueError as exc:
        raise SmtpConfigurationError("Invalid SMTP_PORT value. It must be a valid number.") from exc

    timeout_value = resolve_tenant_env("SMTP_TIMEOUT", tenant)
    try:
        timeout = float(timeout_value) if timeout_value else DEFAULT_TIMEOUT
    except ValueError as exc:
        raise SmtpConfigurationError("Invalid SMTP_TIMEOUT value. It must be a number of seconds.") from exc

    reject_unauthorized = resolve_tenant_env("SMTP_REJECT_UNAUTHORIZED", tenant) or "true"

    return SmtpConfig(
        host=host,
        port=port,
        user=user,
        password=password,
        client_name=resolve_tenant_env("SMTP_CLIENT_NAME", tenant) or DEFAULT_CLIENT_NAME,
        start_tls=env_flag("SMTP_STARTTLS", default=True, tenant=tenant),
        verify_certificate=reject_unauthorized.lower() != "false",
        default_from=resolve_tenant_env("SMTP_DEFAULT_FROM", tenant),
        timeout=timeout,
    )


# ---------------------------------------------------------------------------
# DATA transparency
# ---------------------------------------------------------------------------

def normalize_for_smtp(message: str) -> str:
    """
    Prepare a message for the DATA phase.

    Line endings become CRLF, the text ends with CRLF, and every line that
    starts with "." gets a second one so the relay cannot mistake it for the
    end-of-data marker.
    """
    normalized = re.sub(r"\r?\n", CRLF, message)
    if not normalized.endswith(CRLF):
        normalized += CRLF
    return re.sub(r"(^|\r\n)\.", r"\1..", normalized)


def unstuff_data(data: str) -> str:
    """
    Receiving side of normalize_for_smtp(): drop the terminating "." line and
    remove one leading dot from every stuffed line.
    """
    lines = data.split(CRLF)
    if lines and lines[-1] == "":
        lines.pop()
    if lines and lines[-1] == ".":
        lines.pop()
    restored = [line[1:] if line.startswith(".") else line for line in lines]
    return CRLF.join(restored) + CRLF if restored else ""


# ---------------------------------------------------------------------------
# Connection state machine
# ---------------------------------------------------------------------------

class SmtpState(str, Enum):
    INIT = "init"
    CONNECTED = "connected"
    GREETED = "greeted"
    TLS_UPGRADED = "tls_upgraded"
    SECURE = "secure"
    AUTH_USERNAME = "auth_username"
    AUTH_PASSWORD = "auth_password"
    AUTHENTICATED = "authenticated"
    MAIL = "mail"
    RCPT = "rcpt"
    DATA = "data"
    SENT = "sent"
    CLOSED = "closed"


# (state, verb) -> next state. USERNAME / PASSWORD / END_DATA are the
# non-command lines of AUTH LOGIN and the DATA terminator. QUIT is accepted
# from any open state and handled by SmtpConnection.quit().
TRANSITIONS: dict[tuple[SmtpState, str], SmtpState] = {
    (SmtpState.CONNECTED, "EHLO"): SmtpState.GREETED,
    (SmtpState.GREETED, "STARTTLS"): SmtpState.TLS_UPGRADED,
    (SmtpState.TLS_UPGRADED, "EHLO"): SmtpState.SECURE,
    (SmtpState.GREETED, "AUTH"): SmtpState.AUTH_USERNAME,
    (SmtpState.SECURE, "AUTH"): SmtpState.AUTH_USERNAME,
    (SmtpState.AUTH_USERNAME, "USERNAME"): SmtpState.AUTH_PASSWORD,
    (SmtpState.AUTH_PASSWORD, "PASSWORD"): SmtpState.AUTHENTICATED,
    (SmtpState.AUTHENTICATED, "MAIL"): SmtpState.MAIL,
    (SmtpState.MAIL, "RCPT"): SmtpState.RCPT,
    (SmtpState.RCPT, "RCPT"): SmtpState.RCPT,
    (SmtpState.RCPT, "DATA"): SmtpState.DATA,
    (SmtpState.DATA, "END_DATA"): SmtpState.SENT,
}

_SECRET_VERBS = {"USERNAME", "PASSWORD"}
_ENVELOPE_ADDRESS_FORBIDDEN = re.compile(r"[\r\n<>]")

ExpectedCodes = Union[int, Iterable[int]]


@dataclass(frozen=True)
class SmtpResponse:
    code: int
    lines: list[str]

    @property
    def text(self) -> str:
        return " ".join(self.lines)


def _as_code_tuple(expected: ExpectedCodes) -> tuple[int, ...]:
    if isinstance(expected, int):
        return (expected,)
    return tuple(expected)


def _default_ssl_context(config: SmtpConfig) -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.minimum_version = config.min_tls_version
    if not config.verify_certificate:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class SmtpConnection:
    """A single SMTP session against one relay."""

    def __init__(
        self,
        config: SmtpConfig,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        self.config = config
        self.state = SmtpState.INIT
        self._ssl_context = ssl_context
        self._sock: Optional[socket.socket] = None
        self._buffer = b""

    # -- transport ---------------------------------------------------------

    def connect(self) -> SmtpResponse:
        if self.state is not SmtpState.INIT:
            raise SmtpProtocolError(f"Cannot connect from state {self.state.value}")

        try:
            self._sock = socket.create_connection(
                (self.config.host, self.config.port),
                timeout=self.config.timeout,
            )
        except socket.timeout as exc:
            self.state = SmtpState.CLOSED
            raise SmtpTimeout(f"Timed out connecting to {self.config.host}:{self.config.port}") from exc
        except OSError as exc:
            self.state = SmtpState.CLOSED
            raise SmtpSocketError(f"Could not connect to {self.config.host}:{self.config.port}: {exc}") from exc

        try:
            greeting = self._expect(220)
        except SmtpError:
            self._close_socket()
            raise

        self.state = SmtpState.CONNECTED
        logger.debug("Connected to SMTP relay %s:%s", self.config.host, self.config.port)
        return greeting

    def _write(self, data: bytes) -> None:
        if self._sock is None:
            raise SmtpConnectionClosed("SMTP connection is not open")
        try:
            self._sock.sendall(data)
        except socket.timeout as exc:
            raise SmtpTimeout("Timed out writing to SMTP relay") from exc
        except OSError as exc:
            raise SmtpSocketError(f"Failed to write to SMTP relay: {exc}") from exc

    def _read_line(self) -> str:
        while b"\n" not in self._buffer:
            if self._sock is None:
                raise SmtpConnectionClosed("SMTP connection is not open")
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout as exc:
                raise SmtpTimeout(
                    f"No response from SMTP relay within {self.config.timeout} seconds"
                ) from exc
            except OSError as exc:
                raise SmtpSocketError(f"Failed to read from SMTP relay: {exc}") from exc
            if not chunk:
                raise SmtpConnectionClosed("SMTP connection closed unexpectedly")
            self._buffer += chunk

        raw, _, self._buffer = self._buffer.partition(b"\n")
        return raw.rstrip(b"\r").decode("utf-8", errors="replace")

    def read_response(self) -> SmtpResponse:
        """
        Read one (possibly multi-line) reply.

        Lines are collected until one has a space (or nothing) after the
        3-digit code; that line's code is the status. Lines that do not start
        with a code are ignored.
        """
        lines: list[str] = []
        while True:
            line = self._read_line()
            if not _RESPONSE_LINE.match(line):
                continue
            lines.append(line[4:].strip())
            if len(line) == 3 or line[3] == " ":
                return SmtpResponse(code=int(line[:3]), lines=lines)

    def _expect(self, expected: ExpectedCodes) -> SmtpResponse:
        codes = _as_code_tuple(expected)
        response = self.read_response()
        if response.code not in codes:
            raise UnexpectedSmtpResponse(response.code, codes, response.text)
        return response

    def _close_socket(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                logger.debug("Error closing SMTP socket", exc_info=True)
        self._sock = None
        self._buffer = b""
        self.state = SmtpState.CLOSED

    # -- state machine -----------------------------------------------------

    def _next_state(self, verb: str) -> SmtpState:
        try:
            return TRANSITIONS[(self.state, verb)]
        except KeyError:
            raise SmtpProtocolError(
                f"Command {verb} is not allowed in state {self.state.value}"
            ) from None

    def send(
        self,
        command: str,
        expected: ExpectedCodes,
        verb: Optional[str] = None,
    ) -> SmtpResponse:
        """
        Send one command line and check the reply code.

        ``verb`` defaults to the command keyword ("MAIL FROM:<a>" -> "MAIL").
        The state only advances once the expected reply arrives.
        """
        if "\r" in command or "\n" in command:
            raise SmtpProtocolError("SMTP commands must not contain CR or LF characters")
        verb = verb or re.split(r"[ :]", command, maxsplit=1)[0].upper()
        next_state = self._next_state(verb)

        logger.debug("SMTP >> %s", verb if verb in _SECRET_VERBS else command)
        self._write(f"{command}{CRLF}".encode("utf-8"))
        response = self._expect(expected)
        self.state = next_state
        return response

    def ehlo(self) -> SmtpResponse:
        return self.send(f"EHLO {self.config.client_name}", 250)

    def start_tls(self) -> None:
        self.send("STARTTLS", 220)
        context = self._ssl_context or _default_ssl_context(self.config)
        try:
            self._sock = context.wrap_socket(self._sock, server_hostname=self.config.host)
        except (ssl.SSLError, OSError) as exc:
            raise SmtpSocketError(f"TLS handshake with {self.config.host} failed: {exc}") from exc
        # Anything buffered before the handshake must not be trusted.
        self._buffer = b""

    def authenticate(self) -> None:
        def _b64(value: str) -> str:
            return base64.b64encode(value.encode("utf-8")).decode("ascii")

        self.send("AUTH LOGIN", 334)
        self.send(_b64(self.config.user), 334, verb="USERNAME")
        self.send(_b64(self.config.password), 235, verb="PASSWORD")

    def send_mail(self, from_address: str, recipients: list[str], message: str) -> SmtpResponse:
        for address in (from_address, *recipients):
            if _ENVELOPE_ADDRESS_FORBIDDEN.search(address):
                raise SmtpProtocolError(f"Invalid envelope address: {address!r}")
        self.send(f"MAIL FROM:<{from_address}>", 250)
        for recipient in recipients:
            self.send(f"RCPT TO:<{recipient}>", (250, 251))
        self.send("DATA", 354)
        return self.send_data(message)

    def send_data(self, message: str) -> SmtpResponse:
        next_state = self._next_state("END_DATA")
        self._write(normalize_for_smtp(message).encode("utf-8") + f".{CRLF}".encode("ascii"))
        response = self._expect(250)
        self.state = next_state
        return response

    def quit(self) -> None:
        """Best-effort QUIT; the socket is always closed afterwards."""
        if self.state in (SmtpState.INIT, SmtpState.CLOSED) or self._sock is None:
            self._close_socket()
            return

        try:
            self._write(f"QUIT{CRLF}".encode("ascii"))
            self._expect(221)
        except SmtpError as exc:
            logger.warning("Failed to complete QUIT command: %s", exc)
        finally:
            self._close_socket()


# ---------------------------------------------------------------------------
# High level delivery
# ---------------------------------------------------------------------------

ConnectionFactory = Callable[[SmtpConfig], SmtpConnection]


def send_email(
    message: EmailMessageInput,
    tenant: Optional[TenantContext] = None,
    config: Optional[SmtpConfig] = None,
    connection_factory: ConnectionFactory = SmtpConnection,
) -> EmailSendResult:
    """
    Deliver ``message`` over a fresh SMTP connection.

    On any failure the connection is QUIT/closed before the triggering error is
    re-raised; nothing is retried.

    Raises:
        SmtpConfigurationError: relay settings or sender address missing.
        SmtpError: any protocol or network failure.
    """
    config = config or resolve_smtp_config(tenant)
    from_address = message.from_ or config.from_address
    if not from_address:
        raise SmtpConfigurationError(
            "Sender address is required. Provide it in the request or via SMTP_DEFAULT_FROM."
        )

    connection = connection_factory(config)
    connection.connect()
    try:
        connection.ehlo()
        if config.start_tls:
            connection.start_tls()
            connection.ehlo()
        connection.authenticate()

        mime = build_mime_message(message, from_address, config.host)
        connection.send_mail(from_address, mime.recipients, mime.payload)
        connection.quit()
    except Exception:
        connection.quit()
        raise

    logger.info(
        "Email %s delivered via %s to %d recipient(s)",
        mime.message_id,
        config.host,
        len(mime.recipients),
    )
    return EmailSendResult(
        messageId=mime.message_id,
        envelope=EmailEnvelope(from_=from_address, to=mime.recipients),
    )
