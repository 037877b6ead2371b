"""Map domain errors onto HTTP exceptions with a consistent payload."""

from __future__ import annotations

from fastapi import HTTPException

from sophia.errors import SophiaError


def to_http_exception(err: SophiaError) -> HTTPException:
    """Convert SophiaError to HTTPException with consistent payload."""
    return HTTPException(
        status_code=err.status_code,
        detail={"error": err.error, "detail": str(err)},
    )


__all__ = ["to_http_exception"]
