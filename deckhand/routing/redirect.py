"""
Redirect decision engine.

Pure and total: given a RedirectContext it returns exactly one decision and
never raises. Checks run in priority order, lowest number first:

    1    pending onboarding session        → /welcome/<role>
    2    profile completion triggered      → /welcome/<role>?profile_completion=true
    3    referral from an onboarding page  → /welcome/<role>?profile_completion=true
    4    established role                  → /owner/boats, /owner/boats/new, /crew
    5    signed-in, no profile or username → /crew
    999  fallback                          → /crew

When both roles match at the same priority, role_precedence decides.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode

DEFAULT_ROLE_PRECEDENCE = ("owner", "crew")

WELCOME_PATHS = {"owner": "/welcome/owner", "crew": "/welcome/crew"}
OWNER_BOATS_PATH = "/owner/boats"
OWNER_NEW_BOAT_PATH = "/owner/boats/new"
CREW_HOME_PATH = "/crew"
LANDING_PATH = "/"

# Referral sources and session roles both map onto redirect roles
_ROLE_ALIASES = {"owner": "owner", "crew": "crew", "prospect": "crew"}


@dataclass(frozen=True)
class RedirectContext:
    user_id: Optional[str] = None
    referral_source: Optional[str] = None
    has_pending_owner_session: bool = False
    has_pending_prospect_session: bool = False
    owner_profile_completion_triggered: bool = False
    prospect_profile_completion_triggered: bool = False
    profile_roles: tuple[str, ...] = ()
    profile_has_username: bool = False
    has_owned_asset: bool = False
    has_profile: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RedirectContext":
        """Build from a loose mapping. Unknown keys are ignored, bad values count as negative."""
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in ("user_id", "referral_source"):
                kwargs[f.name] = value if isinstance(value, str) and value else None
            elif f.name == "profile_roles":
                if isinstance(value, (list, tuple, set, frozenset)):
                    kwargs[f.name] = tuple(str(r).lower() for r in value if isinstance(r, str))
            else:
                kwargs[f.name] = value is True
        return cls(**kwargs)


@dataclass(frozen=True)
class RedirectDecision:
    path: str
    reason: str
    priority: int
    query_params: dict = field(default_factory=dict)

    @property
    def url(self) -> str:
        if not self.query_params:
            return self.path
        return f"{self.path}?{urlencode(self.query_params)}"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "url": self.url,
            "reason": self.reason,
            "priority": self.priority,
            "query_params": dict(self.query_params),
        }


def landing(reason: str) -> RedirectDecision:
    """Generic landing page, used outside the decision table (e.g. AI consent declined)."""
    return RedirectDecision(path=LANDING_PATH, reason=reason, priority=0)


def welcome(role: str, reason: str, priority: int, profile_completion: bool = False) -> RedirectDecision:
    role = _ROLE_ALIASES.get(role, "crew")
    params = {"profile_completion": "true"} if profile_completion else {}
    return RedirectDecision(path=WELCOME_PATHS[role], reason=reason, priority=priority, query_params=params)


def _normalize_precedence(role_precedence) -> tuple[str, ...]:
    roles = []
    for r in role_precedence or ():
        role = _ROLE_ALIASES.get(str(r).strip().lower())
        if role and role not in roles:
            roles.append(role)
    for r in DEFAULT_ROLE_PRECEDENCE:
        if r not in roles:
            roles.append(r)
    return tuple(roles)


def _first(matches: dict[str, bool], precedence: tuple[str, ...]) -> Optional[str]:
    for role in precedence:
        if matches.get(role):
            return role
    return None


def decide(
    context: Union[RedirectContext, Mapping[str, Any], None],
    role_precedence=DEFAULT_ROLE_PRECEDENCE,
) -> RedirectDecision:
    if isinstance(context, RedirectContext):
        ctx = context
    elif isinstance(context, Mapping):
        ctx = RedirectContext.from_mapping(context)
    else:
        ctx = RedirectContext()
    precedence = _normalize_precedence(role_precedence)

    # 1. Pending onboarding session
    role = _first(
        {"owner": ctx.has_pending_owner_session, "crew": ctx.has_pending_prospect_session},
        precedence,
    )
    if role:
        return welcome(role, f"pending_{role}_onboarding", 1)

    # 2. Profile completion was triggered and not finished
    role = _first(
        {
            "owner": ctx.owner_profile_completion_triggered,
            "crew": ctx.prospect_profile_completion_triggered,
        },
        precedence,
    )
    if role:
        return welcome(role, f"{role}_profile_completion_triggered", 2, profile_completion=True)

    # 3. Arrived from an onboarding page
    referral = _ROLE_ALIASES.get((ctx.referral_source or "").lower())
    if referral:
        return welcome(referral, f"referral_from_{referral}_onboarding", 3, profile_completion=True)

    # 4. Established role
    roles = set(ctx.profile_roles)
    role = _first({"owner": "owner" in roles, "crew": "crew" in roles}, precedence)
    if role == "owner":
        if ctx.has_owned_asset:
            return RedirectDecision(OWNER_BOATS_PATH, "owner_with_vessel", 4)
        return RedirectDecision(OWNER_NEW_BOAT_PATH, "owner_without_vessel", 4)
    if role == "crew":
        return RedirectDecision(CREW_HOME_PATH, "established_crew", 4)

    # 5. Known user with an incomplete profile. Without a user there is
    #    nothing to say about the profile, so an empty context falls through.
    if ctx.user_id and (not ctx.has_profile or not ctx.profile_has_username):
        return RedirectDecision(CREW_HOME_PATH, "incomplete_profile", 5)

    return RedirectDecision(CREW_HOME_PATH, "default", 999)
