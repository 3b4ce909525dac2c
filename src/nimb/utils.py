"""Utility functions for the NIMB proxy."""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import Request, Response

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
REASONING_SEPARATOR = "\n\n"


def inline_reasoning(reasoning: str, content: Optional[str]) -> str:
    """
    Prefix content with the reasoning wrapped in think tags.

    Returns just the bracketed block when content is empty.
    """
    block = f"{THINK_OPEN}{reasoning}{THINK_CLOSE}"
    if content:
        return f"{block}{REASONING_SEPARATOR}{content}"
    return block


def error_body(message: str, error_type: str, code: int) -> Dict[str, Any]:
    return {"error": {"message": message, "type": error_type, "code": code}}


def error_response(message: str, error_type: str, code: int) -> Response:
    """Client-facing error envelope with HTTP status equal to code."""
    return Response(
        content=json.dumps(error_body(message, error_type, code)),
        status_code=code,
        media_type="application/json",
    )


async def read_json_object(request: Request) -> Optional[Dict[str, Any]]:
    """Parse the request body as a JSON object, or return None."""
    body = await request.body()
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None
