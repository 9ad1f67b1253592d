"""Password hashing utilities (extracted to avoid circular imports)."""

import asyncio

import bcrypt

BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6


def _encode(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


async def hash_password_async(password: str) -> str:
    """hash_password off the event loop; 12 rounds take a noticeable while."""
    return await asyncio.to_thread(hash_password, password)


async def verify_password_async(password: str, password_hash: str) -> bool:
    """verify_password off the event loop."""
    return await asyncio.to_thread(verify_password, password, password_hash)
