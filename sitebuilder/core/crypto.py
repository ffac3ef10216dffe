import hmac
import os
from base64 import b64decode, b64encode

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import KDF_ITERATIONS

SALT_BYTES = 16
HASH_BYTES = 32


def new_salt() -> str:
    """Random salt, base64 encoded for storage in a text column."""
    return b64encode(os.urandom(SALT_BYTES)).decode()


def hash_password(password: str, salt: str, iterations: int = KDF_ITERATIONS) -> str:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=HASH_BYTES,
        salt=b64decode(salt),
        iterations=iterations,
    )
    return b64encode(kdf.derive(password.encode("utf-8"))).decode()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    candidate = hash_password(password, salt)
    return hmac.compare_digest(candidate, password_hash)
