"""Request headers for authenticated test callers."""

from typing import Any

from marketplace.security.auth import create_access_token


def bearer_headers(user: Any) -> dict[str, str]:
    """Authorization header for a user row."""
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def agent_key_headers(api_key: str) -> dict[str, str]:
    return {"X-Agent-Key": api_key}
