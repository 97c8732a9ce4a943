import hashlib
import secrets
from typing import Optional

from anyio import to_thread
from passlib.context import CryptContext

# Password hashing context using argon2 (memory-hard)
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# Verified against when the username does not exist, so unknown users
# cost the same as a wrong password.
_DUMMY_HASH = pwd_context.hash("not-a-real-password")


def hash_password(password: str) -> str:
    """Hash a password using argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash. Malformed hashes never verify."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


async def hash_password_async(password: str) -> str:
    """Hash off the event loop; argon2 is deliberately slow."""
    return await to_thread.run_sync(hash_password, password)


async def verify_password_async(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify off the event loop.

    A missing hash is checked against a dummy hash so the timing of
    "user not found" matches "wrong password".
    """
    if hashed_password is None:
        await to_thread.run_sync(verify_password, plain_password, _DUMMY_HASH)
        return False
    return await to_thread.run_sync(verify_password, plain_password, hashed_password)


def generate_oauth_state() -> str:
    """Random CSRF state for the OAuth authorization-code flow."""
    return secrets.token_hex(16)


def generate_session_id() -> str:
    """Opaque session identifier for the session cookie."""
    return secrets.token_urlsafe(32)


def hash_user_agent(user_agent: Optional[str]) -> str:
    """SHA-256 of the User-Agent header, used to bind a session to a client."""
    return hashlib.sha256((user_agent or "").encode("utf-8")).hexdigest()


def states_match(received: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of OAuth state values; missing values never match."""
    if not received or not expected:
        return False
    return secrets.compare_digest(received, expected)
