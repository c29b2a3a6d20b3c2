"""
Hybrid RSA-OAEP / AES-256-GCM envelope codec.

Encrypt (browser side, mirrored here for tests and dev tooling):
  1. UTF-8 encode the compact JSON serialization of the payload.
  2. Generate a fresh 256-bit AES key and a fresh 12-byte IV.
  3. AES-256-GCM encrypt -> encrypted bytes ‖ 16-byte tag.
  4. RSA-OAEP(SHA-256) wrap the raw AES key with the recipient public key.
  5. base64 everything into an EncryptedEnvelope.

Decrypt (server side) reverses the steps. A fresh key is generated for every
message, so an IV is never reused with the same key.
"""

import base64
import binascii
import json
import os
from typing import Any, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from portal.models.envelope import EncryptedEnvelope
from portal.services.pem import load_private_key, load_public_key

AES_KEY_LENGTH = 32
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16


class DecryptionError(Exception):
    """Base class for every decrypt-stage failure."""


class EnvelopeDecodingError(DecryptionError):
    """A field is not valid base64 or has the wrong decoded size."""


class KeyUnwrapFailed(DecryptionError):
    """RSA-OAEP could not recover the AES content key."""


class CiphertextTooShort(DecryptionError):
    """Decoded ciphertext is not longer than the authentication tag."""


class AuthenticationFailed(DecryptionError):
    """GCM tag mismatch: ciphertext, tag, IV or key was altered."""


class InvalidJsonPayload(DecryptionError):
    """Plaintext is not UTF-8 encoded JSON."""


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EnvelopeDecodingError(f"{field_name} is not valid base64") from exc


# ---------------------------------------------------------------------------
# Encrypt
# ---------------------------------------------------------------------------

def encrypt_payload(
    public_key: Union[rsa.RSAPublicKey, str],
    payload: Any,
) -> EncryptedEnvelope:
    """
    Encrypt any JSON-serializable payload for the holder of ``public_key``.

    ``public_key`` may be an imported key or PEM / bare base64 text in SPKI
    or PKCS#1 form.
    """
    if isinstance(public_key, str):
        public_key = load_public_key(public_key)

    plaintext = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    aes_key = os.urandom(AES_KEY_LENGTH)
    iv = os.urandom(IV_LENGTH)

    encryptor = Cipher(algorithms.AES(aes_key), modes.GCM(iv)).encryptor()
    encrypted = encryptor.update(plaintext) + encryptor.finalize()
    ciphertext = encrypted + encryptor.tag

    encrypted_key = public_key.encrypt(aes_key, _oaep())

    return EncryptedEnvelope(
        ciphertext=_b64encode(ciphertext),
        encryptedKey=_b64encode(encrypted_key),
        iv=_b64encode(iv),
    )


# ---------------------------------------------------------------------------
# Decrypt
# ---------------------------------------------------------------------------

def _unwrap_key(encrypted_key: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    try:
        aes_key = private_key.decrypt(encrypted_key, _oaep())
    except ValueError as exc:
        raise KeyUnwrapFailed("RSA-OAEP unwrap of the content key failed") from exc

    if len(aes_key) != AES_KEY_LENGTH:
        raise KeyUnwrapFailed(f"Content key must be {AES_KEY_LENGTH} bytes, got {len(aes_key)}")
    return aes_key


def decrypt_payload_text(
    envelope: EncryptedEnvelope,
    private_key: Union[rsa.RSAPrivateKey, str],
) -> str:
    """Recover the plaintext JSON text of an envelope (no JSON parsing)."""
    if isinstance(private_key, str):
        private_key = load_private_key(private_key)

    aes_key = _unwrap_key(_b64decode(envelope.encryptedKey, "encryptedKey"), private_key)

    ciphertext = _b64decode(envelope.ciphertext, "ciphertext")
    if len(ciphertext) <= AUTH_TAG_LENGTH:
        raise CiphertextTooShort("Ciphertext is too short")

    encrypted = ciphertext[:-AUTH_TAG_LENGTH]
    auth_tag = ciphertext[-AUTH_TAG_LENGTH:]

    iv = _b64decode(envelope.iv, "iv")
    if len(iv) != IV_LENGTH:
        raise EnvelopeDecodingError(f"iv must be {IV_LENGTH} bytes, got {len(iv)}")

    decryptor = Cipher(algorithms.AES(aes_key), modes.GCM(iv, auth_tag)).decryptor()
    try:
        plaintext = decryptor.update(encrypted) + decryptor.finalize()
    except InvalidTag as exc:
        raise AuthenticationFailed("Authentication tag mismatch") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidJsonPayload("Decrypted payload is not valid UTF-8") from exc


def decrypt_payload(
    envelope: EncryptedEnvelope,
    private_key: Union[rsa.RSAPrivateKey, str],
) -> Any:
    """
    Decrypt an envelope and parse the JSON it carries.

    The returned value is untrusted: callers validate it against their own
    schema.

    Raises:
        InvalidPemFormat: the private key cannot be loaded.
        DecryptionError: any decrypt-stage failure (see subclasses).
    """
    text = decrypt_payload_text(envelope, private_key)
    try:
        return json.loads(text)
    except ValueError as exc:
        raise InvalidJsonPayload("Decrypted payload is not valid JSON") from exc
