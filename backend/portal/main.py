"""
Benefits Portal Backend API
FastAPI application that receives encrypted form submissions and forwards
them as notification email.
"""

import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal.config import resolve_tenant_env
from portal.routers import bienestar, email, formacion, pqrs
from portal.routers.bienestar import BIENESTAR_FORM
from portal.routers.formacion import FORMACION_FORM
from portal.routers.pqrs import PQRS_FORM

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Benefits Portal API",
    description="Encrypted PQRS, training and wellness submissions delivered by email",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Origins are read from the CORS_ORIGINS environment variable as a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://portal.example.com,https://preview.example.com

    When the variable is unset every origin is allowed, since the portal's
    public endpoints carry no cookies. Duplicates are removed while
    preserving order.
    """
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if not cors_env:
        return ["*"]

    seen: set = set()
    origins: List[str] = []
    for origin in (o.strip() for o in cors_env.split(",")):
        if origin and origin not in seen:
            seen.add(origin)
            origins.append(origin)
    return origins


_cors_origins = get_cors_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials="*" not in _cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Requested-With"],
)

# Include routers
app.include_router(pqrs.router, prefix="/api/pqrs", tags=["pqrs"])
app.include_router(formacion.router, prefix="/api/formacion", tags=["formacion"])
app.include_router(bienestar.router, prefix="/api/bienestar", tags=["bienestar"])
app.include_router(email.router, prefix="/api/email", tags=["email"])


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while processing %s %s", request.method, request.url)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
async def log_configuration_summary() -> None:
    """
    Log which forms and integrations are configured, without secret values.

    Example output:

        Portal configuration:
          PQRS: public key yes, private key yes, recipients yes
          formación: public key no, private key no, recipients no
          SMTP relay: mail.example.com:587
    """
    lines = ["Portal configuration:"]
    for spec in (PQRS_FORM, FORMACION_FORM, BIENESTAR_FORM):
        flags = [
            ("public key", spec.public_key_var),
            ("private key", spec.private_key_var),
            ("recipients", spec.recipients_var),
        ]
        summary = ", ".join(
            f"{label} {'yes' if resolve_tenant_env(var) else 'no'}" for label, var in flags
        )
        lines.append(f"  {spec.label}: {summary}")

    smtp_host = resolve_tenant_env("SMTP_HOST")
    smtp_port = resolve_tenant_env("SMTP_PORT") or "25"
    lines.append(f"  SMTP relay: {smtp_host}:{smtp_port}" if smtp_host else "  SMTP relay: (not configured)")
    lines.append(f"  Auth0 domain: {resolve_tenant_env('AUTH0_DOMAIN') or '(not configured)'}")
    logger.info("\n".join(lines))


@app.get("/")
async def root():
    return {"message": "Benefits Portal API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/ping")
async def ping():
    return {"message": os.getenv("PING_MESSAGE", "ping")}
