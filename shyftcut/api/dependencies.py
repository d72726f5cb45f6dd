"""
API Dependencies

FastAPI dependency injection for authentication and the entitlement services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
The verified ``sub`` claim is trusted as the user identity from then on.
"""

import logging
import secrets
from typing import Annotated, Optional
from uuid import UUID

import jwt
from jwt import PyJWKClient
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shyftcut.config.settings import get_settings
from shyftcut.infrastructure.db.dependencies import (
    SubscriptionRepoDep,
    UsageCounterStoreDep,
)
from shyftcut.domain.usage import CounterKind
from shyftcut.services.subscription_resolver import SubscriptionResolver
from shyftcut.services.usage_service import MeteredResult, UsageService


logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# Every access token Supabase issues to a signed-in user carries these
TOKEN_AUDIENCE = "authenticated"
REQUIRED_CLAIMS = ["exp", "sub", "iss"]

_jwks_client: Optional[PyJWKClient] = None


def _token_issuer() -> str:
    return f"{get_settings().supabase_url}/auth/v1"


def _jwks() -> PyJWKClient:
    """Lazily built JWKS client; keys are cached and refetched on rotation."""
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = PyJWKClient(f"{_token_issuer()}/.well-known/jwks.json", cache_keys=True)
    return _jwks_client


def _decode(token: str, key, algorithm: str) -> dict:
    return jwt.decode(
        token,
        key,
        algorithms=[algorithm],
        audience=TOKEN_AUDIENCE,
        issuer=_token_issuer(),
        options={"require": REQUIRED_CLAIMS},
    )


def _decode_with_jwks(token: str) -> dict:
    """ES256 verification against the project's published signing keys."""
    return _decode(token, _jwks().get_signing_key_from_jwt(token).key, "ES256")


def _decode_with_secret(token: str, secret: str) -> dict:
    """HS256 verification with the legacy shared JWT secret."""
    return _decode(token, secret, "HS256")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Authenticated user id (``sub`` claim) from the bearer token.

    The token is checked against the JWKS keys first and, when that fails,
    against ``SUPABASE_JWT_SECRET``. A token neither accepts is a 401; an
    expired one gets its own message so clients know to refresh. The
    subject must be a Supabase user UUID.
    """
    if not credentials:
        raise _unauthorized("Missing authorization token")

    token = credentials.credentials

    try:
        claims = _decode_with_jwks(token)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as e:
        logger.debug(f"JWKS verification failed, falling back to HS256: {e}")
        claims = None

    secret = get_settings().supabase_jwt_secret
    if claims is None and secret:
        try:
            claims = _decode_with_secret(token, secret)
        except jwt.ExpiredSignatureError:
            raise _unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected bearer token: {e}")

    if claims is None:
        raise _unauthorized("Invalid or unverifiable token")

    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token: missing user ID")

    try:
        UUID(str(user_id))
    except ValueError:
        logger.warning(f"Rejected bearer token with non-UUID subject: {user_id!r}")
        raise _unauthorized("Invalid token: subject is not a user ID")

    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


# =============================================================================
# Admin API Key Authentication
# =============================================================================

async def verify_admin_api_key(
    x_admin_key: str = Header(..., description="Support tooling key (ADMIN_API_KEY)"),
) -> None:
    """Guard for the admin router. 503 when no key is configured, 403 on mismatch."""
    expected = get_settings().admin_api_key

    if not expected:
        logger.error("Admin route called but ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured",
        )

    if not secrets.compare_digest(x_admin_key.encode(), expected.encode()):
        logger.warning("Admin route called with a wrong X-Admin-Key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )


# =============================================================================
# Service providers
# =============================================================================

def get_subscription_resolver(repo: SubscriptionRepoDep) -> SubscriptionResolver:
    return SubscriptionResolver(repo)


def get_usage_service(
    store: UsageCounterStoreDep,
    resolver: SubscriptionResolver = Depends(get_subscription_resolver),
) -> UsageService:
    """A fresh UsageService per request; nothing tier-related is cached."""
    return UsageService(resolver, store)


SubscriptionResolverDep = Annotated[SubscriptionResolver, Depends(get_subscription_resolver)]
UsageServiceDep = Annotated[UsageService, Depends(get_usage_service)]


def require_capacity(kind: CounterKind):
    """
    Route dependency that refuses the request when ``kind`` is out of allowance.

    Raises UsageLimitExceeded (rendered as 403 with the upgrade payload).
    Passing the gate does not record usage; the route records it after
    its action succeeded.

    Usage:
        @router.post("/roadmaps", dependencies=[Depends(require_capacity(CounterKind.ROADMAPS))])
    """
    async def _gate(user_id: CurrentUserId, service: UsageServiceDep) -> MeteredResult:
        decision = await service.check(user_id, kind)
        decision.raise_for_limit()
        return decision

    return _gate


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
__all__ = [
    "get_current_user_id",
    "CurrentUserId",
    "verify_admin_api_key",
    "get_subscription_resolver",
    "get_usage_service",
    "SubscriptionResolverDep",
    "UsageServiceDep",
    "require_capacity",
    "SubscriptionRepoDep",
    "UsageCounterStoreDep",
]
