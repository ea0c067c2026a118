# accvault Auth Module - Server-side credentials
#
# PBKDF2 password hashes, hashed single-use bearer tokens, and the
# login / logout / reset flows built on them.

from .passwords import PasswordHasher
from .service import AuthService, LoginResult, UserSummary, require_admin
from .tokens import generate_token, hash_token

__all__ = [
    "PasswordHasher",
    "generate_token",
    "hash_token",
    "AuthService",
    "LoginResult",
    "UserSummary",
    "require_admin",
]
