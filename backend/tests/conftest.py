"""
Shared fixtures: RSA key material and a fake SMTP relay.

Key generation is slow enough that the pairs are created once per session.
"""

import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Never pick up a developer's .env-provided relay or keys during tests.
for _name in list(os.environ):
    if _name.startswith(("SMTP_", "PQRS_", "FORMACION_", "BIENESTAR_", "AUTH0_")):
        del os.environ[_name]

from fake_smtp import FakeSmtpRelay  # noqa: E402


class KeyPair:
    """An RSA key pair plus the PEM encodings the portal deals with."""

    def __init__(self, key_size: int = 2048):
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        self.public_key = self.private_key.public_key()

        self.private_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        self.public_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        self.pkcs1_public_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.PKCS1,
        ).decode("ascii")
        self.spki_der = self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self.pkcs1_der = self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.PKCS1,
        )


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    return KeyPair()


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    return KeyPair()


@pytest.fixture()
def smtp_relay():
    """A running fake relay on 127.0.0.1; stopped after the test."""
    relay = FakeSmtpRelay()
    relay.start()
    try:
        yield relay
    finally:
        relay.stop()


@pytest.fixture()
def relay_env(monkeypatch, smtp_relay):
    """Point the SMTP settings at the fake relay (no STARTTLS)."""
    monkeypatch.setenv("SMTP_HOST", "127.0.0.1")
    monkeypatch.setenv("SMTP_PORT", str(smtp_relay.port))
    monkeypatch.setenv("SMTP_USER", "portal-user")
    monkeypatch.setenv("SMTP_PASSWORD", "s3cret!")
    monkeypatch.setenv("SMTP_DEFAULT_FROM", "no-reply@portal.example.com")
    monkeypatch.setenv("SMTP_STARTTLS", "false")
    monkeypatch.setenv("SMTP_TIMEOUT", "5")
    return smtp_relay
