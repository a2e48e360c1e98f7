"""
Who is calling: an Auth0-signed user, the dev user, or nobody.

FF_USE_AUTH0 on  → bearer tokens are verified against the tenant's JWKS.
FF_USE_AUTH0 off → any caller that sends an Authorization header is DEV_USER.

Onboarding chat starts before signup, so a missing header is a normal
anonymous caller (get_optional_user → None). A header that is present but
does not verify is always a PermissionError.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from jose import jwt, JWTError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

JWKS_TTL_SECONDS = 600


@dataclass
class AuthenticatedUser:
    user_id: str
    email: str = ""


DEV_USER = AuthenticatedUser(user_id="dev-user", email="dev@local")


# ── JWKS ─────────────────────────────────────────────────────────────

_jwks: Optional[dict] = None
_jwks_fetched_at: float = 0.0


async def _signing_key(domain: str, kid: Optional[str]) -> dict:
    """The JWKS entry for `kid`, refetching the key set once it is stale."""
    global _jwks, _jwks_fetched_at
    now = time.time()
    if _jwks is None or now - _jwks_fetched_at >= JWKS_TTL_SECONDS:
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"https://{domain}/.well-known/jwks.json", timeout=10)
            resp.raise_for_status()
        _jwks, _jwks_fetched_at = resp.json(), now
        logger.info("Fetched JWKS for %s (%d keys)", domain, len(_jwks.get("keys", [])))

    for key in _jwks.get("keys", []):
        if key.get("kid") == kid:
            return {k: key[k] for k in ("kty", "kid", "use", "n", "e")}
    raise JWTError("Unable to find matching key in JWKS")


async def verify_token(token: str) -> AuthenticatedUser:
    settings = get_settings()
    key = await _signing_key(settings.auth0_domain, jwt.get_unverified_header(token).get("kid"))
    claims = jwt.decode(
        token,
        key,
        algorithms=[settings.auth0_algorithm],
        audience=settings.auth0_audience,
        issuer=f"https://{settings.auth0_domain}/",
    )
    if not claims.get("sub"):
        raise JWTError("Token missing sub claim")
    return AuthenticatedUser(user_id=claims["sub"], email=claims.get("email", ""))


# ── Resolution ───────────────────────────────────────────────────────

async def get_current_user(authorization: str = "") -> AuthenticatedUser:
    """The signed-in caller. Raises PermissionError when there is none."""
    if not get_flags().use_auth0:
        return DEV_USER

    scheme, _, token = (authorization or "").partition(" ")
    if not authorization:
        raise PermissionError("Missing Authorization header")
    if scheme.lower() != "bearer" or not token:
        raise PermissionError("Invalid Authorization header. Use: Bearer <token>")

    try:
        return await verify_token(token)
    except JWTError as e:
        raise PermissionError(f"Invalid token: {e}")


async def get_optional_user(authorization: str = "") -> Optional[AuthenticatedUser]:
    """Like get_current_user, but no header at all means an anonymous caller."""
    if not authorization:
        return None
    return await get_current_user(authorization)
