"""
Security primitives for the storefront.

- Signed session cookies
- Session-bound anti-forgery tokens
- Password hashing

The request pipeline composes these; nothing here does I/O.
"""

from .csrf import create_token, generate_secret, verify_token
from .signing import sign_value, unsign_value
from .passwords import hash_password, verify_password

__all__ = [
    'create_token',
    'generate_secret',
    'verify_token',
    'sign_value',
    'unsign_value',
    'hash_password',
    'verify_password'
]
