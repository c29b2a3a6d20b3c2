"""
PEM handling for the RSA key pairs that protect form submissions.

Keys are provisioned through environment variables, so they frequently
arrive with literal ``\\n`` sequences instead of line breaks, and public keys
are sometimes exported in the legacy PKCS#1 form (``RSA PUBLIC KEY``) rather
than SubjectPublicKeyInfo (``PUBLIC KEY``). Everything here converts those
variants into SPKI DER, which is the only public-key format browsers'
WebCrypto ``importKey("spki", ...)`` and ``load_der_public_key`` both accept.
"""

import base64
import binascii
import re

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


class InvalidPemFormat(ValueError):
    """Key material is malformed or uses an unsupported PEM label."""


_PEM_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END ([A-Z0-9 ]+)-----",
    re.DOTALL,
)

_SPKI_LABEL = "PUBLIC KEY"
_PKCS1_LABEL = "RSA PUBLIC KEY"

# AlgorithmIdentifier ::= SEQUENCE { rsaEncryption OID 1.2.840.113549.1.1.1, NULL }
_RSA_ALGORITHM_IDENTIFIER = bytes.fromhex("300d06092a864886f70d0101010500")

_ASN1_SEQUENCE = 0x30
_ASN1_BIT_STRING = 0x03


def normalize_pem(value: str) -> str:
    """Turn literal ``\\n`` escape sequences into real newlines."""
    return value.replace("\\n", "\n")


def encode_der_length(length: int) -> bytes:
    """
    Encode a DER definite length.

    Lengths below 0x80 use the short form (a single byte). Longer values use
    the long form: ``0x80 | n`` followed by the length in ``n`` big-endian
    bytes.
    """
    if length < 0:
        raise ValueError("DER length cannot be negative")
    if length < 0x80:
        return bytes([length])

    size = (length.bit_length() + 7) // 8
    return bytes([0x80 | size]) + length.to_bytes(size, "big")


def _der_element(tag: int, content: bytes) -> bytes:
    return bytes([tag]) + encode_der_length(len(content)) + content


def pkcs1_to_spki(pkcs1_der: bytes) -> bytes:
    """Wrap a bare PKCS#1 RSAPublicKey in a SubjectPublicKeyInfo structure."""
    # The leading zero is the "unused bits" count of the BIT STRING.
    bit_string = _der_element(_ASN1_BIT_STRING, b"\x00" + pkcs1_der)
    return _der_element(_ASN1_SEQUENCE, _RSA_ALGORITHM_IDENTIFIER + bit_string)


def _decode_base64(body: str) -> bytes:
    cleaned = re.sub(r"\s+", "", body)
    if not cleaned:
        raise InvalidPemFormat("PEM body is empty")
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidPemFormat("PEM body is not valid base64") from exc


def pem_to_spki_der(pem: str) -> bytes:
    """
    Convert public key text into SPKI DER bytes.

    Accepted inputs:
      - ``-----BEGIN PUBLIC KEY-----`` blocks (already SPKI, passed through)
      - ``-----BEGIN RSA PUBLIC KEY-----`` blocks (PKCS#1, re-wrapped)
      - bare base64 without any markers (assumed to be SPKI DER)

    Raises:
        InvalidPemFormat: markers are malformed, the label is not one of the
            two supported ones, the body is not base64, or there is nothing
            left to decode.
    """
    text = normalize_pem(pem).strip()
    has_markers = "-----BEGIN" in text or "-----END" in text

    if not has_markers:
        if not text:
            raise InvalidPemFormat("No key material provided")
        return _decode_base64(text)

    match = _PEM_BLOCK.search(text)
    if not match:
        raise InvalidPemFormat("PEM boundary markers are malformed")

    begin_label, body, end_label = match.group(1), match.group(2), match.group(3)
    if begin_label != end_label:
        raise InvalidPemFormat(
            f"PEM labels do not match: BEGIN {begin_label!r} / END {end_label!r}"
        )

    der = _decode_base64(body)
    if begin_label == _SPKI_LABEL:
        return der
    if begin_label == _PKCS1_LABEL:
        return pkcs1_to_spki(der)

    raise InvalidPemFormat(f"Unsupported PEM key type {begin_label!r}")


def spki_der_to_pem(der: bytes) -> str:
    encoded = base64.b64encode(der).decode("ascii")
    lines = [encoded[i:i + 64] for i in range(0, len(encoded), 64)]
    return "-----BEGIN PUBLIC KEY-----\n" + "\n".join(lines) + "\n-----END PUBLIC KEY-----\n"


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    """Import public key text (any format accepted by pem_to_spki_der)."""
    der = pem_to_spki_der(pem)
    try:
        key = serialization.load_der_public_key(der)
    except ValueError as exc:
        raise InvalidPemFormat("Key bytes are not a valid SubjectPublicKeyInfo") from exc

    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidPemFormat("Public key is not an RSA key")
    return key


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
    """Import a PKCS#8 (``PRIVATE KEY``) or PKCS#1 (``RSA PRIVATE KEY``) key."""
    try:
        key = serialization.load_pem_private_key(
            normalize_pem(pem).strip().encode("ascii"),
            password=None,
        )
    except (ValueError, TypeError, UnicodeEncodeError) as exc:
        raise InvalidPemFormat("Private key could not be loaded") from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidPemFormat("Private key is not an RSA key")
    return key
