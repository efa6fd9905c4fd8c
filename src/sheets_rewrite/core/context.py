"""Request-scoped context for error enrichment.

Holds the request id and endpoint label of the request currently being
served so that error records created deep inside the scheduler or retry
loop can still be tied back to it.

Example:
    async with request_context(request_id="abc", endpoint="/api/rewrite"):
        await service.rewrite(request)
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Optional

from ulid import ULID

# Context variables for request-scoped state
current_request_id: ContextVar[str] = ContextVar("request_id", default="")
current_endpoint: ContextVar[str] = ContextVar("endpoint", default="")


def new_request_id(prefix: str = "req") -> str:
    """Generate a sortable unique id such as ``req_01J9...``."""
    return f"{prefix}_{ULID()}"


def get_request_id() -> str:
    return current_request_id.get()


def get_endpoint() -> str:
    return current_endpoint.get()


@asynccontextmanager
async def request_context(
    request_id: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> AsyncIterator[str]:
    """Bind a request id (generated if omitted) and endpoint for the block.

    Yields:
        The bound request id.
    """
    rid = request_id or new_request_id()
    rid_token = current_request_id.set(rid)
    endpoint_token = current_endpoint.set(endpoint or "")
    try:
        yield rid
    finally:
        current_endpoint.reset(endpoint_token)
        current_request_id.reset(rid_token)
