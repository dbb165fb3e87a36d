"""Password hashing (passlib + bcrypt)."""

from passlib.context import CryptContext

_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8


def hash_password(plain: str) -> str:
    return _ctx.hash(plain)


def verify_password(plain: str, hashed: str | None) -> bool:
    # Accounts without a password (seeded placeholders) cannot log in
    if not hashed:
        return False
    return _ctx.verify(plain, hashed)
