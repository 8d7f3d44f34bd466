"""
Execution helper for Supabase query builders.

Every select/insert in the repositories goes through run_query so that the
timeout and the mapping of PostgREST failures onto the chat error taxonomy
live in one place.
"""
import asyncio
import logging
from typing import Any, List, Optional

from postgrest.exceptions import APIError

from family_chat.config import settings
from family_chat.core.exceptions import (
    BackendError, NotFoundError, PermissionDeniedError, RequestTimeoutError
)

logger = logging.getLogger(__name__)

# PostgreSQL insufficient_privilege, raised when an RLS policy rejects a write
RLS_DENIED_CODE = "42501"
# PostgREST: .single() matched zero rows
NO_ROWS_CODE = "PGRST116"


async def run_query(query: Any, operation: str, timeout: Optional[float] = None) -> List[dict]:
    """Execute a query builder and return its rows, bounded by request_timeout_sec."""
    timeout = settings.request_timeout_sec if timeout is None else timeout
    try:
        result = await asyncio.wait_for(query.execute(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{operation} timed out after {timeout}s")
        raise RequestTimeoutError(f"{operation} timed out")
    except APIError as e:
        if e.code == RLS_DENIED_CODE:
            logger.warning(f"{operation} denied by row-level security: {e.message}")
            raise PermissionDeniedError()
        if e.code == NO_ROWS_CODE:
            raise NotFoundError(f"{operation}: no matching row")
        logger.error(f"{operation} failed: {e.message}")
        raise BackendError(f"{operation} failed")
    except Exception as e:
        logger.error(f"{operation} failed: {e}")
        raise BackendError(f"{operation} failed") from e
    data = result.data
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return data
