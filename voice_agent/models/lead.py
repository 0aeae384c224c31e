"""Pydantic model of the lead: what we've learned about the person on the call."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field

PropertyType = Literal["house", "condo", "apartment", "townhouse", "land", "commercial"]
Financing = Literal["cash", "mortgage", "undecided"]

# Weighted presence of lead fields; sums to 100
QUALIFICATION_WEIGHTS: dict[str, int] = {
    "has_name": 10,
    "has_email": 15,
    "has_phone": 10,
    "has_budget": 20,
    "has_timeline": 15,
    "has_property_type": 10,
    "has_location": 10,
    "has_preferences": 10,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PropertyPreferences(BaseModel):
    type: Optional[PropertyType] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    locations: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    must_haves: list[str] = Field(default_factory=list)
    deal_breakers: list[str] = Field(default_factory=list)


class BudgetRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"
    financing: Optional[Financing] = None


class LeadInfo(BaseModel):
    """Mutable lead record for a single session.

    Fields are populated progressively by the ``capture_lead_info`` tool as
    the agent learns about the caller.  ``qualification_score`` is derived
    from which fields are present and cannot be assigned directly.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    property_preferences: PropertyPreferences = Field(default_factory=PropertyPreferences)
    budget: Optional[BudgetRange] = None
    timeline: Optional[str] = None
    notes: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def qualification_score(self) -> int:
        return calculate_qualification_score(self)

    def touch(self) -> None:
        self.updated_at = _utcnow()


def calculate_qualification_score(lead: LeadInfo) -> int:
    """Sum the weights of the lead fields that are populated (0-100)."""
    prefs = lead.property_preferences
    score = 0

    if lead.name:
        score += QUALIFICATION_WEIGHTS["has_name"]
    if lead.email:
        score += QUALIFICATION_WEIGHTS["has_email"]
    if lead.phone:
        score += QUALIFICATION_WEIGHTS["has_phone"]
    if lead.budget and (lead.budget.min or lead.budget.max):
        score += QUALIFICATION_WEIGHTS["has_budget"]
    if lead.timeline:
        score += QUALIFICATION_WEIGHTS["has_timeline"]
    if prefs.type:
        score += QUALIFICATION_WEIGHTS["has_property_type"]
    if prefs.locations:
        score += QUALIFICATION_WEIGHTS["has_location"]
    if prefs.features:
        score += QUALIFICATION_WEIGHTS["has_preferences"]

    return score
