"""Conversion of PostgREST errors into HTTP errors."""

import logging
from typing import Any

from fastapi import HTTPException, status
from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)

# PostgREST code returned by .single() when no row matches
NO_ROWS_FOUND = "PGRST116"

STATUS_CODE_MAP: dict[str, int] = {
    NO_ROWS_FOUND: status.HTTP_404_NOT_FOUND,
    "23505": status.HTTP_409_CONFLICT,  # unique violation
    "23503": status.HTTP_409_CONFLICT,  # foreign key violation
    "42P01": status.HTTP_500_INTERNAL_SERVER_ERROR,  # undefined table
    "42703": status.HTTP_500_INTERNAL_SERVER_ERROR,  # undefined column
}


def is_postgrest_error(error: Any) -> bool:
    """Tell whether an object is an error raised by PostgREST."""
    return isinstance(error, APIError) and bool(getattr(error, "code", None))


def is_not_found_error(error: Any) -> bool:
    """Tell whether a PostgREST error means "no row matched"."""
    return is_postgrest_error(error) and error.code == NO_ROWS_FOUND


def handle_supabase_error(error: APIError, context: str | None = None) -> HTTPException:
    """
    Convert a PostgREST APIError into an HTTPException.

    Args:
        error: The error raised by the Supabase client
        context: Where it happened, e.g. "releases.paginated"

    Returns:
        HTTPException with a status code derived from the PostgREST code

    Example:
        >>> try:
        ...     await db.list_records("artists")
        ... except APIError as e:
        ...     raise handle_supabase_error(e, "artists.select") from e
    """
    logger.error(
        f"Supabase error{f' - {context}' if context else ''}: {error.message}",
        extra={
            "code": error.code,
            "details": error.details,
            "hint": error.hint,
            "context": context,
        },
    )

    status_code = STATUS_CODE_MAP.get(error.code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "message": error.hint or error.details or "Database operation failed",
            "code": error.code,
            "context": context,
        },
    )


def not_found_error(resource: str, record_id: str | None = None) -> HTTPException:
    """Build a 404 for a missing resource."""
    detail = f"{resource} not found"
    if record_id:
        detail = f'{resource} with ID "{record_id}" does not exist'
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def bad_request_error(message: str) -> HTTPException:
    """Build a 400 with the given message."""
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def internal_error(message: str, error: Exception | None = None) -> HTTPException:
    """Build a 500, logging the original error when given."""
    if error is not None:
        logger.error(f"Internal error: {message}: {error}", exc_info=error)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)
