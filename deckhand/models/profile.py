"""
Profiles, vessels, journeys and legs. Written by the onboarding operations.
"""

from datetime import date
from typing import Optional

from sqlalchemy import String, Text, Integer, Float, Date, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import RecordBase


class Profile(RecordBase):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    experience_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-4
    certifications: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    skills: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    risk_level: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    roles: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # owner, crew


class Vessel(RecordBase):
    __tablename__ = "vessels"

    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    make_model: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    vessel_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    length_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    home_port: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class Journey(RecordBase):
    __tablename__ = "journeys"

    vessel_id: Mapped[str] = mapped_column(
        String, ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False, index=True
    )
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    risk_level: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    waypoints: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    legs: Mapped[list["JourneyLeg"]] = relationship(
        back_populates="journey",
        cascade="all, delete-orphan",
        order_by="JourneyLeg.sequence",
    )


class JourneyLeg(RecordBase):
    __tablename__ = "journey_legs"

    journey_id: Mapped[str] = mapped_column(
        String, ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    start_name: Mapped[str] = mapped_column(String, nullable=False)
    start_lat: Mapped[float] = mapped_column(Float, nullable=False)
    start_lng: Mapped[float] = mapped_column(Float, nullable=False)
    end_name: Mapped[str] = mapped_column(String, nullable=False)
    end_lat: Mapped[float] = mapped_column(Float, nullable=False)
    end_lng: Mapped[float] = mapped_column(Float, nullable=False)
    distance_nm: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    journey: Mapped["Journey"] = relationship(back_populates="legs")
