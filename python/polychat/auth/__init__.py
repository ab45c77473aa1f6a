"""Authentication and authorization module.

This module provides:
- Token verification (JWKS verifier)
- Auth middleware for FastAPI
- Request state with viewer identity

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from polychat.auth.middleware import AuthMiddleware, Viewer, get_viewer
from polychat.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "JwksTokenVerifier",
    "TokenVerifier",
]
