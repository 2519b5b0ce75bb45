from .gate import (
    ALLOWED_HEADERS,
    ALLOWED_METHODS,
    CORSGateMiddleware,
    CORSPolicy,
    FIXED_ORIGIN_ALLOWLIST,
    REFLECT_ORIGIN,
)

__all__ = [
    "ALLOWED_HEADERS",
    "ALLOWED_METHODS",
    "CORSGateMiddleware",
    "CORSPolicy",
    "FIXED_ORIGIN_ALLOWLIST",
    "REFLECT_ORIGIN",
]
