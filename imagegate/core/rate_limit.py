"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def user_or_ip_key(request: Request) -> str:
    """Per-user key for authenticated routes; falls back to the client address."""
    user_id = request.headers.get("x-user-id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


# Default key is the remote address; authenticated routes pass key_func=user_or_ip_key
limiter = Limiter(key_func=get_remote_address)
