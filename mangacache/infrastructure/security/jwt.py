"""JWT verification for the admin surface and per-user cache variants.

Tokens are issued by the host application with the shared SECRET_KEY; this
service only verifies them. The role claims authorize admin routes and the
sub claim identifies the caller for per-user HTTP cache keys.
"""

from typing import Any

from jose import JWTError, jwt

from mangacache.core.config import get_settings


def verify_token(token: str) -> dict[str, Any]:
    """Decode a bearer token and return its claims.

    exp and sub are required. Verification is refused outright while no
    SECRET_KEY is configured, which keeps the admin surface closed.

    Raises:
        ValueError: If no secret is set, or the token is malformed, expired,
            signed with another key, or lacks a required claim.
    """
    settings = get_settings()
    secret = settings.secret_key.get_secret_value()
    if not secret:
        raise ValueError("Token verification is disabled: SECRET_KEY is not set")
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[settings.algorithm],
            options={"require_exp": True, "require_sub": True},
        )
    except JWTError as e:
        raise ValueError(f"Invalid token: {e!s}") from e


def token_roles(payload: dict[str, Any]) -> set[str]:
    """Roles granted by a token: the 'role' claim and/or the 'roles' list."""
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    role = payload.get("role")
    return {str(r) for r in [*roles, role] if r}


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def caller_identity(authorization: str | None) -> str | None:
    """Return the sub of a valid bearer token, else None (anonymous)."""
    token = bearer_token(authorization)
    if token is None:
        return None
    try:
        return str(verify_token(token)["sub"])
    except ValueError:
        return None
