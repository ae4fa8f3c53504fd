from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel
from typing import Literal
from uuid import UUID
from datetime import datetime

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# --- check-in
class Coords(BaseModel):
    lat: float | None = None
    lng: float | None = None

class CheckinCreate(BaseModel):
    coords: Coords | None = None

class CheckinPerk(CamelModel):
    title: str
    token: str | None = None
    status: Literal["reserved", "redeemed"] | None = None
    too_far: bool | None = None
    distance_m: int | None = None
    radius_m: int | None = None
    sold_out: bool | None = None
    already_claimed: bool | None = None
    inactive: bool | None = None
    outside_window: bool | None = None
    order: int | None = None
    total: int | None = None

class CheckinResponse(CamelModel):
    checked_in: bool = True
    perk: CheckinPerk

# --- staff redemption
class RedeemByToken(CamelModel):
    token: str | None = None
    perk_id: UUID | None = None

class RedeemResponse(CamelModel):
    ok: bool = True
    already_redeemed: bool | None = None
    redeemed: int

# --- public / admin reads
class ProgressRead(BaseModel):
    claimed: int
    redeemed: int
    total: int

class PerkRead(CamelModel):
    id: UUID
    title: str
    venue_name: str | None = None
    neighborhood: str | None = None
    kind: Literal["checkin", "code"]
    sponsor_tag: str | None = None
    fine_print: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_claims: int
    active: bool
    has_geofence: bool = False
    claimed_count: int = 0
    redeemed_count: int = 0
    status: Literal["inactive", "soldout", "soon", "live", "ended"]

class MyClaimRead(CamelModel):
    perk_id: UUID
    perk_title: str
    token: str
    status: Literal["reserved", "redeemed"]
    created_at: datetime
    redeemed_at: datetime | None = None

# --- admin
class PerkCreate(BaseModel):
    # snake_case like the admin form posts it
    plan_id: UUID | None = None
    venue_name: str | None = Field(default=None, max_length=160)
    neighborhood: str | None = Field(default=None, max_length=120)
    title: str | None = Field(default=None, max_length=160)
    kind: str | None = None
    max_claims: float | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    sponsor_tag: str | None = Field(default=None, max_length=64)
    fine_print: str | None = None
    geofence_lat: float | None = Field(default=None, ge=-90, le=90)
    geofence_lng: float | None = Field(default=None, ge=-180, le=180)
    geofence_radius_m: int | None = Field(default=None, gt=0, le=2**31 - 1)
    active: bool | None = None

class PerkCreated(CamelModel):
    ok: bool = True
    id: UUID
    staff_unlock_token: str

class ActiveUpdate(BaseModel):
    active: StrictBool | None = None

class UnlockRegenerated(CamelModel):
    ok: bool = True
    staff_unlock_token: str

class OkResponse(BaseModel):
    ok: bool = True

class ClaimRead(CamelModel):
    id: UUID
    user_id: str
    status: Literal["reserved", "redeemed"]
    created_at: datetime
    redeemed_at: datetime | None = None
    redeemed_by: str | None = None

class AdminPerkRead(PerkRead):
    staff_unlock_token: str
    staff_unlock_url: str
    created_at: datetime

class AdminPerkDetail(CamelModel):
    perk: AdminPerkRead
    claims: list[ClaimRead]
