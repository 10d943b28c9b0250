from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request (or background job) ID from context."""
    return request_id_context.get()


@contextmanager
def request_scope(request_id: str) -> Iterator[str]:
    """
    Bind a request ID for the duration of a block and restore the previous one.

    Listener workers and the health monitor run outside of any HTTP request,
    so they open a scope per unit of work to keep log lines attributable.
    """
    token = request_id_context.set(request_id)
    try:
        yield request_id
    finally:
        request_id_context.reset(token)
