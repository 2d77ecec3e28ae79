"""
Authentication dependencies.

Resolves the verified user identity for a request. The identity comes from
the managed auth service's access token, read from:
- the standard `Authorization: Bearer <jwt>` header, or
- the browser auth cookie (`sb-<project-ref>-auth-token`), whose value is a
  JSON document carrying `access_token`.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.exceptions import UnauthorizedError
from core.security import decode_access_token

logger = logging.getLogger(__name__)

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)

AUTH_COOKIE_PATTERN = re.compile(r"^sb-.*-auth-token$")


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None


def token_from_cookies(request: Request) -> Optional[str]:
    """Return the access token stored in the auth cookie, if any."""
    for name, raw in request.cookies.items():
        if not AUTH_COOKIE_PATTERN.match(name):
            continue
        try:
            parsed = json.loads(unquote(raw))
        except ValueError:
            logger.debug(f"Ignoring unparseable auth cookie {name}")
            continue
        if isinstance(parsed, dict) and isinstance(parsed.get("access_token"), str):
            return parsed["access_token"]
    return None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Get the current authenticated user from the access token.

    Raises UnauthorizedError if the token is missing, invalid or has no subject.
    """
    token = credentials.credentials if credentials else token_from_cookies(request)
    if not token:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(token)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    return CurrentUser(id=str(user_id), email=payload.get("email"))
