"""
Error envelope shared by every router, used for OpenAPI documentation of
4xx/5xx responses. Rendering happens in cadence.core.errors.
"""
from typing import Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """`{code, message, details}`; `code` is stable, `message` is for humans."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
