from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, require_admin, no_store
from ..models import Perk, utcnow
from ..schemas import (
    PerkCreate, PerkCreated, ActiveUpdate, UnlockRegenerated, OkResponse,
    AdminPerkRead, AdminPerkDetail, ClaimRead,
)
from ..services import admin as perks_admin
from ..services.progress import Progress, perk_progress, progress_for, perk_status, filter_and_sort

# every route here goes through the same admin gate before touching the store
router = APIRouter(prefix="/admin/perks", tags=["admin"], dependencies=[Depends(require_admin), Depends(no_store)])

def _admin_read(p: Perk, prog: Progress, now) -> AdminPerkRead:
    return AdminPerkRead(
        id=p.id, title=p.title, venue_name=p.venue_name, neighborhood=p.neighborhood,
        kind=p.kind.value, sponsor_tag=p.sponsor_tag, fine_print=p.fine_print,
        start_at=p.start_at, end_at=p.end_at, max_claims=p.max_claims, active=p.active,
        has_geofence=p.has_geofence, claimed_count=prog.claimed, redeemed_count=prog.redeemed,
        status=perk_status(p, prog.claimed, now),
        staff_unlock_token=p.staff_unlock_token, staff_unlock_url=perks_admin.staff_unlock_url(p),
        created_at=p.created_at,
    )

@router.get("", response_model=list[AdminPerkRead])
async def list_perks(
    q: str = Query(default=""),
    status_: str = Query(default="all", alias="status", pattern="^(all|inactive|live|soon|soldout|ended)$"),
    neigh: str | None = Query(default=None),
    sort: str = Query(default="start", pattern="^(start|title|claimed|timeleft)$"),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    perks = await perks_admin.list_perks(db)
    prog = await progress_for(db, [p.id for p in perks])
    rows = filter_and_sort(perks, prog, now, q=q, status=status_, neighborhood=neigh, sort=sort)
    return [_admin_read(p, prog.get(p.id, Progress()), now) for p in rows]

@router.post("/new", response_model=PerkCreated)
async def create_perk(payload: PerkCreate, db: AsyncSession = Depends(get_db)):
    try:
        p = await perks_admin.create_perk(db, **payload.model_dump())
    except perks_admin.PerkValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PerkCreated(id=p.id, staff_unlock_token=p.staff_unlock_token)

@router.get("/{perk_id}", response_model=AdminPerkDetail)
async def perk_detail(perk_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    p = await perks_admin.get_perk(db, perk_id)
    if not p:
        raise HTTPException(status_code=404, detail="Perk not found")
    prog = await perk_progress(db, perk_id)
    rows = await perks_admin.list_claims(db, perk_id)
    return AdminPerkDetail(
        perk=_admin_read(p, prog, utcnow()),
        claims=[ClaimRead(
            id=c.id, user_id=c.user_id, status=c.status.value, created_at=c.created_at,
            redeemed_at=c.redeemed_at, redeemed_by=c.redeemed_by,
        ) for c in rows],
    )

@router.post("/{perk_id}/active", response_model=OkResponse)
async def set_active(perk_id: uuid.UUID, payload: ActiveUpdate, db: AsyncSession = Depends(get_db)):
    if payload.active is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="active(boolean) required")
    if not await perks_admin.set_active(db, perk_id, payload.active):
        raise HTTPException(status_code=404, detail="Perk not found")
    return OkResponse()

@router.post("/{perk_id}/regenerate-unlock", response_model=UnlockRegenerated)
async def regenerate_unlock(perk_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    token = await perks_admin.regenerate_unlock(db, perk_id)
    if token is None:
        raise HTTPException(status_code=404, detail="Perk not found")
    return UnlockRegenerated(staff_unlock_token=token)
