"""Authentication helpers for request-scoped operator context."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bankrecon.security import decode_access_token
from bankrecon.services.reconciliation_store import Actor
from bankrecon.utils.exceptions import raise_unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    """Resolve the operator from the bearer token claims (``sub`` and ``name``)."""
    if credentials is None:
        raise_unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise_unauthorized("Could not validate credentials")

    subject = payload.get("sub")
    if not subject or not isinstance(subject, str):
        raise_unauthorized("Token missing subject")

    name = payload.get("name")
    return Actor(user_id=subject, name=name if isinstance(name, str) else None)
