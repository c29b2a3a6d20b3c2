"""Helpers shared by the form routers."""

from typing import Any

from fastapi import HTTPException, Request


async def read_json_body(request: Request) -> Any:
    """
    Return the parsed JSON body, or raise 400 when it is not JSON.

    Bodies are read by hand rather than declared as a pydantic parameter so
    that malformed envelopes produce the same 400 shape as other client
    errors instead of FastAPI's 422.
    """
    raw = await request.body()
    if not raw:
        return None
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
