"""Principal resolution for human JWTs and agent API keys."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.infrastructure.database.models import Agent, User
from marketplace.infrastructure.database.session import get_db
from marketplace.security.config import get_security_settings
from marketplace.shared.exceptions import (
    ForbiddenError,
    MarketplaceError,
    UnauthorizedError,
    raise_http_exception,
)
from marketplace.shared.schemas.base import AgentStatus, UserRole
from marketplace.shared.utils.logging import bind_request_context, get_logger

logger = get_logger(__name__)

AGENT_KEY_HEADER = "X-Agent-Key"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request.

    ``agent_id`` is set when the caller authenticated with an agent API key;
    ``user_id`` is then the agent's seller account.
    """

    user_id: UUID
    role: str
    agent_id: UUID | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


# ---------------------------------------------------------------------------
# Tokens and keys
# ---------------------------------------------------------------------------


def create_access_token(user_id: UUID | str, role: str = UserRole.HUMAN.value) -> str:
    """Create a signed access token for a user account."""
    settings = get_security_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": str(user_id), "role": role, "exp": expire, "type": "access"}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. Raises UnauthorizedError on failure."""
    settings = get_security_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")
    if claims.get("type") != "access" or not claims.get("sub"):
        raise UnauthorizedError("Invalid token")
    return claims


def generate_agent_api_key() -> str:
    """Generate a new agent API key with the configured prefix."""
    return f"{get_security_settings().agent_key_prefix}{secrets.token_hex(32)}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage using SHA-256."""
    return hashlib.sha256(api_key.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


async def _principal_from_agent_key(db: AsyncSession, api_key: str) -> Principal:
    if not api_key.startswith(get_security_settings().agent_key_prefix):
        raise UnauthorizedError("Invalid agent API key")
    result = await db.execute(select(Agent).where(Agent.api_key_hash == hash_api_key(api_key)))
    agent = result.scalar_one_or_none()
    if agent is None:
        raise UnauthorizedError("Invalid agent API key")
    if agent.status == AgentStatus.SUSPENDED.value:
        raise ForbiddenError("Agent is suspended")
    return Principal(user_id=agent.seller_id, role=UserRole.AGENT.value, agent_id=agent.id)


async def _principal_from_token(db: AsyncSession, token: str) -> Principal:
    claims = decode_access_token(token)
    try:
        user_id = UUID(claims["sub"])
    except ValueError:
        raise UnauthorizedError("Invalid token subject")
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("Account not found or disabled")
    return Principal(user_id=user.id, role=user.role)


async def authenticate(request: Request, db: AsyncSession) -> Principal:
    """Resolve the caller from an ``X-Agent-Key`` header or a Bearer token."""
    api_key = request.headers.get(AGENT_KEY_HEADER)
    if api_key:
        return await _principal_from_agent_key(db, api_key.strip())

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise UnauthorizedError("Missing or invalid Authorization header")
    token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise UnauthorizedError("Empty token")
    return await _principal_from_token(db, token)


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """FastAPI dependency: authenticate the caller or raise 401/403."""
    try:
        principal = await authenticate(request, db)
    except MarketplaceError as e:
        logger.info("authentication_failed", reason=e.message, path=request.url.path)
        raise_http_exception(e)
    request.state.principal = principal
    bind_request_context(
        request_id=getattr(request.state, "request_id", ""),
        user_id=str(principal.user_id),
    )
    return principal


async def require_agent(principal: Principal = Depends(get_current_principal)) -> Principal:
    """FastAPI dependency: the caller must authenticate with an agent API key."""
    if principal.agent_id is None:
        raise_http_exception(ForbiddenError("Agent API key required"))
    return principal


def require_role(*roles: str):
    """Build a dependency that admits only principals with one of ``roles``."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise_http_exception(ForbiddenError(f"Requires role: {', '.join(roles)}"))
        return principal

    return dependency


require_admin = require_role(UserRole.ADMIN.value)
