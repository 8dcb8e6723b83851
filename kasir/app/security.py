import hmac
from typing import Optional

from passlib.context import CryptContext

BCRYPT_PREFIX = "$2"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def is_plaintext(stored: Optional[str]) -> bool:
    # Users created before hashing was introduced have the password itself in password_hash.
    return bool(stored) and not stored.startswith(BCRYPT_PREFIX)


def verify_password(password: str, stored: Optional[str]) -> bool:
    """Check a login attempt against users.password_hash (bcrypt or a legacy plaintext value)."""
    if not stored or password is None:
        return False
    if is_plaintext(stored):
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))
    try:
        return pwd_context.verify(password, stored)
    except ValueError:
        # Malformed bcrypt string in the row.
        return False


def needs_rehash(stored: Optional[str]) -> bool:
    """True when a successful login should rewrite the stored value with a fresh bcrypt hash."""
    if not stored:
        return False
    return is_plaintext(stored) or pwd_context.needs_update(stored)
