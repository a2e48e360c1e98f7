"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "deckhand"}


# ── Auth config (no auth) ───────────────────────────────────────────

@router.get("/auth/config")
async def auth_config():
    from ..core.config import get_settings
    from ..core.flags import get_flags

    flags = get_flags()
    if not flags.use_auth0:
        return {"auth_enabled": False, "message": "Dev mode, no auth required"}

    settings = get_settings()
    return {
        "auth_enabled": True,
        "domain": settings.auth0_domain,
        "audience": settings.auth0_audience,
    }


# ── V1 routes ────────────────────────────────────────────────────────
# Onboarding chat is reachable anonymously; each route declares its own
# user dependency.

from .onboarding import onboarding_router
from .consent import consent_router
from .auth import auth_router

router.include_router(onboarding_router, prefix="/v1")
router.include_router(consent_router, prefix="/v1")
router.include_router(auth_router, prefix="/v1")
