"""Identity middleware and route-level auth dependencies.

Tokens are issued elsewhere (the login service); this module only verifies
them. A token arrives as ``Authorization: Bearer <jwt>`` or in the
``auth-token`` cookie, is HMAC-signed, and carries the claims:

    {"id": ..., "email": ..., "name": ..., "role": "AGENCY",
     "state": "Sindh", "agency": "SPECIAL_BRANCH_SINDH", "exp": ...}

``region`` is accepted as an alias for ``state``.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any

from authlib.jose import JoseError, JsonWebToken
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.middleware.base import BaseHTTPMiddleware

from etds.db.models.base import Agency, UserRole
from etds.services.authz import Actor

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from starlette.responses import Response

    from etds.core.config import AuthSettings

logger = logging.getLogger(__name__)

# Context variable for the current caller
current_identity_ctx: ContextVar[Identity | None] = ContextVar("current_identity", default=None)

# Bearer token security scheme for OpenAPI docs
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Identity:
    """The verified caller of the current request.

    Attributes:
        user_id: Stable user identifier (``id`` claim).
        role: Caller's role.
        email: Email address, informational.
        name: Display name, informational.
        region: Region/province claim, used for agency routing.
        agency: Explicit agency claim.
    """

    user_id: str
    role: UserRole
    email: str | None = None
    name: str | None = None
    region: str | None = None
    agency: Agency | None = None

    def to_actor(self) -> Actor:
        """Convert to the workflow services' view of the caller."""
        return Actor(
            user_id=self.user_id,
            role=self.role,
            region=self.region,
            agency=self.agency,
        )


def get_current_identity() -> Identity | None:
    """Get the current caller from context."""
    return current_identity_ctx.get()


def set_current_identity(identity: Identity | None) -> None:
    """Set the current caller in context."""
    current_identity_ctx.set(identity)


def identity_from_claims(claims: Mapping[str, Any]) -> Identity | None:
    """Build an Identity from verified token claims.

    Returns None when the claims do not describe a usable caller: no user
    id, an unknown role, or an unknown agency.
    """
    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        return None

    try:
        role = UserRole(str(claims.get("role", "")).upper())
    except ValueError:
        logger.warning("Token carries unknown role", extra={"role": claims.get("role")})
        return None

    agency = None
    if claims.get("agency"):
        try:
            agency = Agency(str(claims["agency"]).upper())
        except ValueError:
            logger.warning("Token carries unknown agency", extra={"agency": claims.get("agency")})
            return None

    return Identity(
        user_id=str(user_id),
        role=role,
        email=claims.get("email"),
        name=claims.get("name"),
        region=claims.get("state") or claims.get("region"),
        agency=agency,
    )


class IdentityMiddleware(BaseHTTPMiddleware):
    """Middleware that verifies the bearer token and sets the caller context.

    The middleware never blocks a request; route dependencies decide whether
    a caller is required. With no secret configured every request is
    anonymous.
    """

    def __init__(self, app: Any, *, settings: AuthSettings) -> None:
        super().__init__(app)
        self._secret = settings.jwt_secret.get_secret_value().encode("utf-8")
        self._cookie_name = settings.cookie_name
        self._leeway = settings.leeway_seconds
        self._jwt = JsonWebToken([settings.jwt_algorithm])

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        set_current_identity(None)

        token = self._extract_token(request)
        if token and self._secret:
            identity = self._verify(token)
            if identity is not None:
                set_current_identity(identity)
                request.state.identity = identity

        return await call_next(request)

    def _extract_token(self, request: Request) -> str | None:
        """Extract the token from the Authorization header, then the cookie."""
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return auth_header[7:].strip() or None
        return request.cookies.get(self._cookie_name)

    def _verify(self, token: str) -> Identity | None:
        try:
            claims = self._jwt.decode(
                token, self._secret, claims_options={"exp": {"essential": True}}
            )
            claims.validate(leeway=self._leeway)
        except (JoseError, ValueError) as e:
            logger.info("Rejected bearer token: %s", type(e).__name__)
            return None
        return identity_from_claims(claims)


# ---------------------------------------------------------------------------
# FastAPI Dependencies for route-level auth
# ---------------------------------------------------------------------------


async def require_identity(
    request: Request,
    _credentials: Annotated[
        HTTPAuthorizationCredentials | None,
        Depends(bearer_scheme),
    ] = None,
) -> Identity:
    """Dependency that requires a verified caller.

    The _credentials parameter documents the bearer scheme in OpenAPI; the
    token itself is verified by IdentityMiddleware.

    Raises:
        HTTPException: 401 if the request carries no valid token.
    """
    identity = get_current_identity()
    if identity is None:
        identity = getattr(request.state, "identity", None)

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_roles(*roles: UserRole) -> Callable:
    """Factory for role-checking dependencies.

    Usage:
        @router.get("/verify")
        async def verify(identity: Identity = Depends(require_roles(UserRole.ADMIN))):
            ...

    Args:
        roles: Roles allowed through.

    Returns:
        A FastAPI dependency function.
    """
    allowed = frozenset(roles)

    async def _check_roles(
        identity: Annotated[Identity, Depends(require_identity)],
    ) -> Identity:
        if identity.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role required: {', '.join(sorted(r.value for r in allowed))}",
            )
        return identity

    return _check_roles
