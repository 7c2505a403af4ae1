"""Argon2id password hashing for the auth routes"""

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password(password: str, encoded: str) -> bool:
    try:
        return _pwd_hasher.verify(encoded, password)
    except (InvalidHash, VerifyMismatchError, VerificationError):
        return False
