#!/usr/bin/env python3
"""
Dev helper: encrypt a form submission and POST it to a running portal backend.

Fetches the form's public key from /api/<form>/public-key (or reads one from
disk), encrypts the payload with the same RSA-OAEP / AES-256-GCM envelope the
browser produces, and POSTs the envelope to /api/<form>.

Usage
-----
# Sample formación signup against localhost:8000
python scripts/submit_encrypted.py formacion

# PQRS request with your own payload
python scripts/submit_encrypted.py pqrs --payload my_request.json

# Encrypt with a local key instead of fetching it, and only print the envelope
python scripts/submit_encrypted.py bienestar --key-file public.pem --dry-run

# Target a different backend URL
python scripts/submit_encrypted.py pqrs --url https://staging.example.com

Requires the backend package to be installed (pip install -e .) so that
portal.services.envelope is importable.
"""

import argparse
import json
import sys
from pathlib import Path

import httpx

from portal.services.envelope import encrypt_payload
from portal.services.pem import InvalidPemFormat

# ---------------------------------------------------------------------------
# Sample payloads
# ---------------------------------------------------------------------------

SAMPLE_PAYLOADS = {
    "pqrs": {
        "fullName": "Carlos Pérez",
        "email": "carlos@example.com",
        "phone": "3001234567",
        "documentType": "CC",
        "documentNumber": "1020304050",
        "requestType": "Petición",
        "subject": "Certificado laboral",
        "description": "Solicito un certificado laboral.\nGracias.",
    },
    "formacion": {
        "fullName": "Ana",
        "email": "ana@example.com",
        "course": "Marketing Digital",
    },
    "bienestar": {
        "fullName": "Luis Gómez",
        "identification": "987654",
        "email": "luis@example.com",
        "phone": "3110000000",
        "service": "Psicología",
        "serviceCatalog": "SIA-01",
        "preferredDate": "2026-11-02",
        "preferredTime": "10:00",
    },
}


def _print_response(response: httpx.Response) -> None:
    status = "OK" if response.status_code == 200 else "FAIL"
    print(f"\n[{status}] HTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2, ensure_ascii=False))
    except ValueError:
        print(response.text)


def _fetch_public_key(client: httpx.Client, base_url: str, form: str) -> str:
    response = client.get(f"{base_url}/api/{form}/public-key")
    if response.status_code != 200:
        _print_response(response)
        raise SystemExit(1)
    return response.json()["publicKey"]


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit an encrypted form to the portal backend.")
    parser.add_argument("form", choices=sorted(SAMPLE_PAYLOADS), help="Form endpoint to target")
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument("--payload", help="JSON file with the plaintext payload (default: built-in sample)")
    parser.add_argument("--key-file", help="Encrypt with this public key instead of fetching it")
    parser.add_argument("--dry-run", action="store_true", help="Print the envelope without posting it")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    base_url = args.url.rstrip("/")

    if args.payload:
        payload_path = Path(args.payload)
        if not payload_path.exists():
            print(f"ERROR: File not found: {payload_path}", file=sys.stderr)
            return 1
        payload = json.loads(payload_path.read_text(encoding="utf-8"))
    else:
        payload = SAMPLE_PAYLOADS[args.form]

    endpoint = f"{base_url}/api/{args.form}"
    print(f"Endpoint : {endpoint}")
    print(f"Payload  : {json.dumps(payload, ensure_ascii=False)}")

    try:
        with httpx.Client(timeout=30) as client:
            if args.key_file:
                public_key = Path(args.key_file).read_text(encoding="utf-8")
            else:
                public_key = _fetch_public_key(client, base_url, args.form)

            envelope = encrypt_payload(public_key, payload).model_dump()

            if args.dry_run:
                print("\n[DRY RUN] Envelope:")
                print(json.dumps(envelope, indent=2))
                return 0

            response = client.post(endpoint, json=envelope)
    except InvalidPemFormat as exc:
        print(f"\nERROR: Public key is not usable: {exc}", file=sys.stderr)
        return 1
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {base_url}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn portal.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
