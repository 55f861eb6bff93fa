"""Rate limiting configuration using slowapi.

Authenticated calls are counted per employee (the bearer token subject), so
several employees behind one proxy address do not share a budget. Anonymous
calls fall back to the client IP.
"""

from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_key(request: Request) -> str:
    """Rate-limit bucket for a request: ``employee:<sub>`` or the remote IP."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            # Signature is checked by get_current_user; here it only picks a bucket
            subject = jwt.get_unverified_claims(auth_header[7:]).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"employee:{subject}"
    return get_remote_address(request)


# Routes override the default with @limiter.limit("N/period")
limiter = Limiter(
    key_func=client_key,
    default_limits=["60/minute"],
)
