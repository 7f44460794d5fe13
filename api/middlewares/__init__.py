"""HTTP middlewares and auth helpers."""
from api.middlewares.auth import Principal, create_token, decode_token, require_admin, require_auth
from api.middlewares.errors import error_middleware, logging_middleware

__all__ = [
    "Principal",
    "create_token",
    "decode_token",
    "require_admin",
    "require_auth",
    "error_middleware",
    "logging_middleware",
]
