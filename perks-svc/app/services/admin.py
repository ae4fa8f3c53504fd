from __future__ import annotations
import logging
import math
import uuid
from datetime import datetime
from typing import Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.tokens import new_token
from ..models import Perk, PerkKind, Claim, as_utc

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_CLAIMS_LIMIT = 2**31 - 1  # int4 column

class PerkValidationError(ValueError):
    pass

def _max_claims(raw: Any) -> int:
    try:
        n = float(raw)
    except (TypeError, ValueError):
        return settings.default_max_claims
    if not math.isfinite(n) or n < 1:
        return settings.default_max_claims
    if n > MAX_CLAIMS_LIMIT:
        raise PerkValidationError(f"max_claims must be at most {MAX_CLAIMS_LIMIT}")
    return int(math.floor(n))

async def get_perk(db: AsyncSession, perk_id: uuid.UUID) -> Perk | None:
    return (await db.execute(select(Perk).where(Perk.id == perk_id))).scalar_one_or_none()

async def create_perk(
    db: AsyncSession,
    *,
    title: str | None,
    kind: str | None = None,
    max_claims: Any = None,
    venue_name: str | None = None,
    neighborhood: str | None = None,
    plan_id: uuid.UUID | None = None,
    start_at: datetime | None = None,
    end_at: datetime | None = None,
    sponsor_tag: str | None = None,
    fine_print: str | None = None,
    geofence_lat: float | None = None,
    geofence_lng: float | None = None,
    geofence_radius_m: int | None = None,
    active: bool | None = None,
) -> Perk:
    title = (title or "").strip()
    if not title:
        raise PerkValidationError("title is required")
    fence = (geofence_lat, geofence_lng, geofence_radius_m)
    if any(v is not None for v in fence) and any(v is None for v in fence):
        raise PerkValidationError("geofence needs lat, lng and radius together")
    start_at, end_at = as_utc(start_at), as_utc(end_at)
    if start_at and end_at and end_at < start_at:
        raise PerkValidationError("end_at must be after start_at")

    perk = Perk(
        title=title,
        kind=PerkKind.CODE if kind == PerkKind.CODE.value else PerkKind.CHECKIN,
        max_claims=_max_claims(max_claims),
        venue_name=venue_name,
        neighborhood=neighborhood,
        plan_id=plan_id,
        start_at=start_at,
        end_at=end_at,
        sponsor_tag=sponsor_tag,
        fine_print=fine_print,
        geofence_lat=geofence_lat,
        geofence_lng=geofence_lng,
        geofence_radius_m=geofence_radius_m,
        active=active if isinstance(active, bool) else True,
        staff_unlock_token=new_token(),
    )
    db.add(perk)
    await db.commit()
    await db.refresh(perk)
    logger.info("perk %s created (max_claims=%d)", perk.id, perk.max_claims)
    return perk

async def set_active(db: AsyncSession, perk_id: uuid.UUID, active: bool) -> Perk | None:
    perk = await get_perk(db, perk_id)
    if perk is None:
        return None
    perk.active = active
    await db.commit(); await db.refresh(perk)
    logger.info("perk %s active=%s", perk_id, active)
    return perk

async def regenerate_unlock(db: AsyncSession, perk_id: uuid.UUID) -> str | None:
    """
    Replace the staff unlock token. Old unlock links stop minting sessions;
    sessions already minted stay valid until they expire.
    """
    perk = await get_perk(db, perk_id)
    if perk is None:
        return None
    perk.staff_unlock_token = new_token()
    await db.commit(); await db.refresh(perk)
    logger.info("perk %s staff unlock token regenerated", perk_id)
    return perk.staff_unlock_token

async def list_perks(db: AsyncSession, *, limit: int = 300) -> list[Perk]:
    q = select(Perk).order_by(Perk.created_at.desc()).limit(limit)
    return list((await db.execute(q)).scalars().all())

async def list_claims(db: AsyncSession, perk_id: uuid.UUID) -> list[Claim]:
    q = select(Claim).where(Claim.perk_id == perk_id).order_by(Claim.created_at.desc())
    return list((await db.execute(q)).scalars().all())

def staff_unlock_url(perk: Perk) -> str:
    return f"{settings.public_base_url}/perks/{perk.id}/staff/unlock?t={perk.staff_unlock_token}"
