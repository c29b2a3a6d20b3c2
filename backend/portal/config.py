"""
Environment configuration with per-tenant overrides.

The portal is served from several host names and each deployment host can
override any variable by suffixing it with ``__<TENANT_ID>``, where the tenant
id is the request host upper-cased with every non-alphanumeric run collapsed
to an underscore:

    SMTP_HOST=mail.example.com
    SMTP_HOST__PORTAL_EXAMPLE_CO=mail.example.co   # used for portal.example.co

Values are read from the process environment, populated from a .env file at
import time.
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from fastapi import Request

load_dotenv()


@dataclass(frozen=True)
class TenantContext:
    """Deployment host that received the request."""

    id: str
    host: str


def _sanitize_tenant_id(value: str) -> Optional[str]:
    normalized = re.sub(r"[^A-Z0-9]+", "_", value.upper()).strip("_")
    return normalized or None


def _extract_host(request: Request) -> Optional[str]:
    """
    Return the host the client used, preferring X-Forwarded-Host.

    Only the first entry of a comma-separated forwarded list is used and the
    port is dropped.
    """
    raw_host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if not raw_host:
        return None

    host = raw_host.split(",")[0].strip()
    if not host:
        return None

    return re.sub(r":\d+$", "", host).lower()


def build_tenant_context(host: Optional[str]) -> Optional[TenantContext]:
    if not host:
        return None
    tenant_id = _sanitize_tenant_id(host)
    if not tenant_id:
        return None
    return TenantContext(id=tenant_id, host=host)


def get_tenant_context(request: Request) -> Optional[TenantContext]:
    """
    Resolve (and cache on request.state) the tenant for an incoming request.

    Usable directly as a FastAPI dependency.
    """
    if hasattr(request.state, "tenant"):
        return request.state.tenant

    tenant = build_tenant_context(_extract_host(request))
    request.state.tenant = tenant
    return tenant


def _normalize_env_value(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def resolve_tenant_env(key: str, tenant: Optional[TenantContext] = None) -> Optional[str]:
    """
    Read ``key`` from the environment, honouring the tenant-scoped override.

    Whitespace-only values are treated as unset so an empty override falls
    back to the default.
    """
    if tenant is not None:
        tenant_value = _normalize_env_value(os.environ.get(f"{key}__{tenant.id}"))
        if tenant_value is not None:
            return tenant_value

    return _normalize_env_value(os.environ.get(key))


def env_flag(key: str, default: bool = False, tenant: Optional[TenantContext] = None) -> bool:
    value = resolve_tenant_env(key, tenant)
    if value is None:
        return default
    return value.lower() in {"true", "1", "yes", "y", "on"}


def format_recipients(value: Optional[str]) -> list[str]:
    """Split a recipient list delimited by commas, semicolons or whitespace."""
    if not value:
        return []
    return [entry.strip() for entry in re.split(r"[\s,;]+", value) if entry.strip()]
