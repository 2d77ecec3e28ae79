"""
Access token verification.

Tokens are issued by the managed auth service (Supabase GoTrue) and signed
with HS256 using the project's JWT secret. This service never issues tokens
in production; `create_access_token` exists for tooling and tests.

SECURITY REQUIREMENTS:
- SUPABASE_JWT_SECRET must be set via environment variable
- SUPABASE_JWT_SECRET must NEVER be committed to source control
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
from core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a token shaped like the auth service's access tokens."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.setdefault("aud", settings.SUPABASE_JWT_AUDIENCE)
    to_encode.setdefault("role", "authenticated")
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SUPABASE_JWT_SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token. Returns None when invalid or expired."""
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        return None

