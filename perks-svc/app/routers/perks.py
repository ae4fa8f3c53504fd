from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, no_store, rate_limited
from ..core.geo import within_fence, distance_meters
from ..core.nats import publish_claimed
from ..core.qr import render_png, render_svg
from ..models import Perk, utcnow
from ..schemas import CheckinCreate, CheckinPerk, CheckinResponse, PerkRead, ProgressRead, MyClaimRead
from ..services.admin import get_perk, list_perks
from ..services.ledger import claim, claim_by_token, in_window, user_claims, Reserved, ClaimRejection
from ..services.progress import Progress, perk_progress, progress_for, perk_status, filter_and_sort

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/perks", tags=["perks"], dependencies=[Depends(no_store)])

def perk_read(p: Perk, prog: Progress, now) -> PerkRead:
    return PerkRead(
        id=p.id, title=p.title, venue_name=p.venue_name, neighborhood=p.neighborhood,
        kind=p.kind.value, sponsor_tag=p.sponsor_tag, fine_print=p.fine_print,
        start_at=p.start_at, end_at=p.end_at, max_claims=p.max_claims, active=p.active,
        has_geofence=p.has_geofence, claimed_count=prog.claimed, redeemed_count=prog.redeemed,
        status=perk_status(p, prog.claimed, now),
    )

# --- 1) Members browse perks with live progress
@router.get("", response_model=list[PerkRead])
async def browse_perks(
    q: str = Query(default=""),
    status: str = Query(default="all", pattern="^(all|live|soon|soldout|ended)$"),
    sort: str = Query(default="timeleft", pattern="^(timeleft|start|title)$"),
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    now = utcnow()
    perks = await list_perks(db)
    prog = await progress_for(db, [p.id for p in perks])
    rows = filter_and_sort(perks, prog, now, q=q, status=status, sort=sort)
    return [perk_read(p, prog.get(p.id, Progress()), now) for p in rows]

# --- 2) Attendee's own passes
@router.get("/claims/me", response_model=list[MyClaimRead])
async def my_claims(claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    rows = await user_claims(db, str(claims["sub"]))
    return [MyClaimRead(
        perk_id=p.id, perk_title=p.title, token=c.redeem_token, status=c.status.value,
        created_at=c.created_at, redeemed_at=c.redeemed_at,
    ) for c, p in rows]

# --- 3) Scannable pass for the staff device (owner only)
async def _owned_token(db: AsyncSession, token: str, claims: dict) -> str:
    c = await claim_by_token(db, token)
    if not c or c.user_id != str(claims["sub"]):
        raise HTTPException(status_code=404, detail="Pass not found")
    return c.redeem_token

@router.get("/claims/{token}/qr.png")
async def pass_qr_png(token: str, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    data = await _owned_token(db, token, claims)
    return Response(content=render_png(data), media_type="image/png", headers={"Cache-Control": "no-store"})

@router.get("/claims/{token}/qr.svg")
async def pass_qr_svg(token: str, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    data = await _owned_token(db, token, claims)
    return Response(content=render_svg(data), media_type="image/svg+xml", headers={"Cache-Control": "no-store"})

# --- 4) Single perk + progress bar ("12/25 claimed")
@router.get("/{perk_id}", response_model=PerkRead)
async def read_perk(perk_id: uuid.UUID, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    p = await get_perk(db, perk_id)
    if not p:
        raise HTTPException(status_code=404, detail="Perk not found")
    return perk_read(p, await perk_progress(db, perk_id), utcnow())

@router.get("/{perk_id}/progress", response_model=ProgressRead)
async def read_progress(perk_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    p = await get_perk(db, perk_id)
    if not p:
        raise HTTPException(status_code=404, detail="Perk not found")
    prog = await perk_progress(db, perk_id)
    return ProgressRead(claimed=prog.claimed, redeemed=prog.redeemed, total=p.max_claims)

# --- 5) "I'm here": geofence pre-check, then atomic claim
@router.post("/{perk_id}/checkin", response_model=CheckinResponse, response_model_exclude_none=True)
async def checkin(
    perk_id: uuid.UUID,
    request: Request,
    payload: CheckinCreate | None = None,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    await rate_limited(request, "perks.checkin")
    user_id = str(claims["sub"])
    now = utcnow()

    perk = await get_perk(db, perk_id)
    if not perk:
        raise HTTPException(status_code=404, detail="Perk not found")
    title, total = perk.title, perk.max_claims

    # fence only matters for a perk that could otherwise be claimed
    coords = payload.coords if payload else None
    if perk.active and in_window(perk, now) and perk.has_geofence and coords is not None:
        point = (coords.lat, coords.lng)
        center = (perk.geofence_lat, perk.geofence_lng)
        inside = within_fence(point, center, perk.geofence_radius_m)
        if inside is False:
            d = distance_meters(coords.lat, coords.lng, perk.geofence_lat, perk.geofence_lng)
            radius = perk.geofence_radius_m
            await db.rollback()
            return CheckinResponse(perk=CheckinPerk(
                title=title, too_far=True, distance_m=round(d), radius_m=radius,
            ))

    result = await claim(db, perk_id=perk_id, user_id=user_id, now=now)

    if isinstance(result, Reserved):
        prog = await perk_progress(db, perk_id)
        await db.rollback()
        if result.created:
            await publish_claimed({
                "perk_id": str(perk_id),
                "user_id": user_id,
                "claimed_at": now.isoformat().replace("+00:00", "Z"),
                "idempotency_key": f"{perk_id}:{user_id}",
            })
        return CheckinResponse(perk=CheckinPerk(
            title=title, token=result.token, status=result.status.value,
            already_claimed=None if result.created else True,
            order=prog.claimed, total=total,
        ))

    reason = result.reason
    logger.debug("check-in for perk %s by %s: %s", perk_id, user_id, reason.value)
    if reason == ClaimRejection.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Perk not found")
    return CheckinResponse(perk=CheckinPerk(
        title=title,
        total=total,
        sold_out=True if reason == ClaimRejection.SOLD_OUT else None,
        inactive=True if reason == ClaimRejection.INACTIVE else None,
        outside_window=True if reason == ClaimRejection.OUTSIDE_WINDOW else None,
    ))
