"""ETDS API middleware components.

This module provides middleware for:
- Request ID tracking for request correlation
- Consistent error response formatting
- Bearer token identity
"""

from etds.api.middleware.auth import (
    Identity,
    IdentityMiddleware,
    get_current_identity,
    require_identity,
    require_roles,
    set_current_identity,
)
from etds.api.middleware.errors import ErrorHandlerMiddleware
from etds.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "Identity",
    "IdentityMiddleware",
    "RequestIDMiddleware",
    "get_current_identity",
    "require_identity",
    "require_roles",
    "set_current_identity",
]
