"""
Profile operation. Available in the profile_pending step.

update_profile is an upsert keyed by user, so calling it twice is never a
duplicate: the second call updates the same row.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..core.errors import ErrorKind, OperationError
from ..models.profile import Profile
from .registry import operation, OperationContext, ToolRisk

logger = logging.getLogger(__name__)

ROLE_FOR_SESSION = {"owner": "owner", "prospect": "crew"}


class UpdateProfileArgs(BaseModel):
    full_name: str = Field(min_length=1, max_length=200, description="The user's full name.")
    username: Optional[str] = Field(
        default=None, min_length=3, max_length=40, pattern=r"^[A-Za-z0-9_.-]+$",
        description="Public handle. Letters, digits, dot, dash, underscore.",
    )
    bio: Optional[str] = Field(default=None, max_length=2000, description="Short self-description.")
    experience_level: Optional[int] = Field(
        default=None, ge=1, le=4,
        description="1 beginner, 2 competent crew, 3 coastal skipper, 4 offshore skipper.",
    )
    certifications: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    risk_level: list[str] = Field(
        default_factory=list,
        description="Comfort zones, any of: coastal, offshore, extreme.",
    )


@operation(
    name="update_profile",
    description=(
        "Save the user's profile. "
        "\n\nWhen to use: after you have shown the user a profile summary and they confirmed it. "
        "\n\nProvide every field you collected. Returns the saved profile."
    ),
    args_model=UpdateProfileArgs,
    risk=ToolRisk.WRITE,
)
async def update_profile(args: UpdateProfileArgs, ctx: OperationContext) -> dict:
    user_id = ctx.identity.user_id
    if not user_id:
        raise OperationError(ErrorKind.VALIDATION, "The user must sign in before a profile can be saved")

    db = ctx.db
    if args.username:
        taken = await db.execute(
            select(Profile.id).where(Profile.username == args.username, Profile.user_id != user_id)
        )
        if taken.scalar_one_or_none():
            raise OperationError(
                ErrorKind.VALIDATION, f"username '{args.username}' is taken, ask the user for another"
            )

    result = await db.execute(select(Profile).where(Profile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        profile = Profile(user_id=user_id, roles=[])
        db.add(profile)

    profile.full_name = args.full_name.strip()
    if args.username:
        profile.username = args.username
    if args.bio is not None:
        profile.bio = args.bio
    if args.experience_level is not None:
        profile.experience_level = args.experience_level
    if args.certifications:
        profile.certifications = args.certifications
    if args.skills:
        profile.skills = args.skills
    if args.risk_level:
        profile.risk_level = args.risk_level

    role = ROLE_FOR_SESSION.get(ctx.role, "crew")
    roles = list(profile.roles or [])
    if role not in roles:
        # Reassign so the JSON column is flagged dirty
        profile.roles = roles + [role]

    await db.flush()
    logger.info("Profile saved for user=%s roles=%s", user_id, profile.roles)

    return {
        "profile_id": profile.id,
        "full_name": profile.full_name,
        "username": profile.username,
        "experience_level": profile.experience_level,
        "roles": profile.roles,
    }
