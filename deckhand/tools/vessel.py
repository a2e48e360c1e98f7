"""
Vessel operations. Available in the boat_pending step.

fetch_reference_details  look up published specs for a make/model (read only)
create_vessel            save the owner's vessel

A vessel with the same name or the same make/model as one the owner already
has is a duplicate: the step counts as done and nothing new is written.
"""

import json
import logging
import re
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, func, or_

from ..core.errors import ErrorKind, OperationError
from ..core.flags import get_flags
from ..models.profile import Vessel
from ..services import llm
from .registry import operation, OperationContext, ToolRisk

logger = logging.getLogger(__name__)


# ── Reference lookup ─────────────────────────────────────────────────

class FetchReferenceArgs(BaseModel):
    make_model: str = Field(min_length=2, max_length=120, description="Make and model, e.g. 'Beneteau Oceanis 38'.")


REFERENCE_PROMPT = """Give the published specifications of the sailboat "{make_model}".
Respond with a single JSON object and nothing else, using these keys when known:
vessel_type, length_m, beam_m, draft_m, displacement_kg, capacity, year_introduced, designer, description.
If you do not recognise this boat, respond with {{"found": false}}."""

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _extract_json(text: str) -> Optional[dict]:
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


@operation(
    name="fetch_reference_details",
    description=(
        "Look up published specifications for a boat make and model. "
        "\n\nWhen to use: the owner told you the make/model and you want to fill in "
        "length, type and capacity before showing a summary. "
        "\n\nReturns the specs, or found=false. Never saves anything."
    ),
    args_model=FetchReferenceArgs,
    risk=ToolRisk.EXTERNAL,
)
async def fetch_reference_details(args: FetchReferenceArgs, ctx: OperationContext) -> dict:
    if not get_flags().use_reference_lookup:
        return {"found": False, "make_model": args.make_model, "reason": "reference lookup disabled"}

    try:
        raw = await llm.chat_simple(
            prompt=REFERENCE_PROMPT.format(make_model=args.make_model),
            system="You are a sailboat reference database. Output only JSON.",
            temperature=0,
            max_tokens=600,
        )
    except Exception as e:
        # Lookup is a convenience; the owner can still type the details in
        logger.warning("Reference lookup failed for %s: %s", args.make_model, e)
        return {"found": False, "make_model": args.make_model, "reason": "lookup unavailable"}

    data = _extract_json(raw)
    if not data or data.get("found") is False:
        return {"found": False, "make_model": args.make_model}

    data.pop("found", None)
    return {"found": True, "make_model": args.make_model, "details": data}


# ── Create vessel ────────────────────────────────────────────────────

class CreateVesselArgs(BaseModel):
    name: str = Field(min_length=1, max_length=120, description="The boat's name.")
    make_model: Optional[str] = Field(default=None, max_length=120)
    vessel_type: Optional[str] = Field(default=None, max_length=60, description="e.g. sloop, catamaran, ketch.")
    length_m: Optional[float] = Field(default=None, gt=0, le=150, description="Length overall in metres.")
    capacity: Optional[int] = Field(default=None, ge=1, le=100, description="Berths / people on board.")
    home_port: Optional[str] = Field(default=None, max_length=120)
    year_built: Optional[int] = Field(default=None, ge=1850, le=2100)
    details: dict = Field(default_factory=dict, description="Any further specs from fetch_reference_details.")


async def find_duplicate_vessel(db, owner_id: str, name: str, make_model: Optional[str]) -> Optional[Vessel]:
    conditions = [func.lower(Vessel.name) == name.strip().lower()]
    if make_model and make_model.strip():
        conditions.append(func.lower(Vessel.make_model) == make_model.strip().lower())
    result = await db.execute(
        select(Vessel).where(Vessel.owner_id == owner_id, or_(*conditions)).limit(1)
    )
    return result.scalar_one_or_none()


@operation(
    name="create_vessel",
    description=(
        "Save the owner's boat. "
        "\n\nWhen to use: after you have shown the owner a boat summary and they confirmed it. "
        "\n\nInclude every detail you collected. If the boat already exists this reports a "
        "duplicate, which means the step is already done."
    ),
    args_model=CreateVesselArgs,
    risk=ToolRisk.WRITE,
)
async def create_vessel(args: CreateVesselArgs, ctx: OperationContext) -> dict:
    owner_id = ctx.identity.user_id
    if not owner_id:
        raise OperationError(ErrorKind.VALIDATION, "The user must sign in before a boat can be saved")

    db = ctx.db
    existing = await find_duplicate_vessel(db, owner_id, args.name, args.make_model)
    if existing:
        raise OperationError(
            ErrorKind.DUPLICATE,
            f"vessel '{existing.name}' is already in the owner's fleet",
            payload={"vessel_id": existing.id, "name": existing.name},
        )

    vessel = Vessel(
        owner_id=owner_id,
        name=args.name.strip(),
        make_model=args.make_model,
        vessel_type=args.vessel_type,
        length_m=args.length_m,
        capacity=args.capacity,
        home_port=args.home_port,
        year_built=args.year_built,
        details=args.details,
    )
    db.add(vessel)
    await db.flush()
    logger.info("Vessel created: %s (%s) owner=%s", vessel.id, vessel.name, owner_id)

    return {"vessel_id": vessel.id, "name": vessel.name, "make_model": vessel.make_model}
