"""Rate limiting for PaperSmith.

Uses slowapi for per-user request throttling.
Limits are keyed by user ID extracted from the JWT token,
falling back to IP address for unauthenticated requests.
"""

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def get_user_identifier(request: Request) -> str:
    """Extract user identifier for rate limiting.

    Paper generation is billed per user, so limits follow the account
    rather than the client address when a valid token is present.
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        from .auth import decode_access_token

        token = auth_header.split(" ", 1)[1]
        try:
            payload = decode_access_token(token)
        except HTTPException:
            return f"ip:{get_remote_address(request)}"
        return f"user:{payload['user_id']}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=get_user_identifier)
