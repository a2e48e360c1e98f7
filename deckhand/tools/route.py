"""
Journey operation. Available in the journey_pending step.

generate_route saves a journey for one of the owner's vessels and splits the
waypoints into legs with great-circle distances in nautical miles.
"""

import logging
import math
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select, func

from ..core.errors import ErrorKind, OperationError
from ..models.profile import Journey, JourneyLeg, Vessel
from .registry import operation, OperationContext, ToolRisk

logger = logging.getLogger(__name__)

EARTH_RADIUS_NM = 3440.065


class Waypoint(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class GenerateRouteArgs(BaseModel):
    name: str = Field(min_length=1, max_length=160, description="Journey name, e.g. 'Summer in the Cyclades'.")
    waypoints: list[Waypoint] = Field(
        min_length=2,
        description="Ordered stops from start to end, with coordinates.",
    )
    vessel_id: Optional[str] = Field(default=None, description="Defaults to the owner's most recent boat.")
    description: Optional[str] = Field(default=None, max_length=4000)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    risk_level: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dates_in_order(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


def haversine_nm(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_NM * math.asin(math.sqrt(a))


def build_legs(waypoints: list[Waypoint]) -> list[dict]:
    legs = []
    for i, (start, end) in enumerate(zip(waypoints, waypoints[1:]), start=1):
        legs.append({
            "sequence": i,
            "start_name": start.name,
            "start_lat": start.lat,
            "start_lng": start.lng,
            "end_name": end.name,
            "end_lat": end.lat,
            "end_lng": end.lng,
            "distance_nm": round(haversine_nm(start.lat, start.lng, end.lat, end.lng), 1),
        })
    return legs


async def _resolve_vessel(db, owner_id: str, vessel_id: Optional[str]) -> Vessel:
    query = select(Vessel).where(Vessel.owner_id == owner_id)
    if vessel_id:
        query = query.where(Vessel.id == vessel_id)
    else:
        query = query.order_by(Vessel.created_at.desc())
    result = await db.execute(query.limit(1))
    vessel = result.scalar_one_or_none()
    if vessel is None:
        raise OperationError(
            ErrorKind.VALIDATION,
            "no matching boat found for this owner; a journey needs one of the owner's boats",
        )
    return vessel


@operation(
    name="generate_route",
    description=(
        "Save the owner's first journey and split it into legs. "
        "\n\nWhen to use: after you have shown the owner the journey summary (name, dates, "
        "ordered stops with coordinates) and they confirmed it. "
        "\n\nReturns the journey with its legs and total distance."
    ),
    args_model=GenerateRouteArgs,
    risk=ToolRisk.WRITE,
)
async def generate_route(args: GenerateRouteArgs, ctx: OperationContext) -> dict:
    owner_id = ctx.identity.user_id
    if not owner_id:
        raise OperationError(ErrorKind.VALIDATION, "The user must sign in before a journey can be saved")

    db = ctx.db
    vessel = await _resolve_vessel(db, owner_id, args.vessel_id)

    result = await db.execute(
        select(Journey).where(
            Journey.owner_id == owner_id,
            func.lower(Journey.name) == args.name.strip().lower(),
        ).limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing:
        raise OperationError(
            ErrorKind.DUPLICATE,
            f"journey '{existing.name}' already exists",
            payload={"journey_id": existing.id, "name": existing.name},
        )

    legs = build_legs(args.waypoints)
    journey = Journey(
        vessel_id=vessel.id,
        owner_id=owner_id,
        name=args.name.strip(),
        description=args.description,
        start_date=args.start_date,
        end_date=args.end_date,
        risk_level=args.risk_level,
        waypoints=[w.model_dump() for w in args.waypoints],
        legs=[JourneyLeg(**leg) for leg in legs],
    )
    db.add(journey)
    await db.flush()

    total = round(sum(leg["distance_nm"] for leg in legs), 1)
    logger.info("Journey created: %s (%d legs, %.1f nm) owner=%s", journey.id, len(legs), total, owner_id)

    return {
        "journey_id": journey.id,
        "vessel_id": vessel.id,
        "name": journey.name,
        "legs": len(legs),
        "total_distance_nm": total,
    }
