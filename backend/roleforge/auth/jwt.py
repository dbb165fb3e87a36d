"""JWT access token creation and validation."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from roleforge.config import settings

ALGORITHM = "HS256"


def create_access_token(person_id: int, email: str, tenant_id: str | None, role_type: str) -> str:
    """Create a short-lived access token for a person acting as `role_type`."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(person_id),
        "email": email,
        "tenant_id": tenant_id,
        "role": role_type,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    if not str(payload.get("sub", "")).isdigit():
        raise JWTError("Invalid subject")
    return payload
