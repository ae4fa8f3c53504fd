from __future__ import annotations
import hmac
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, no_store, rate_limited
from ..core.config import get_settings
from ..core.nats import publish_redeemed
from ..core.staff_session import mint_session
from ..models import utcnow
from ..schemas import RedeemByToken, RedeemResponse
from ..services.admin import get_perk
from ..services.redemption import redeem, Redeemed, AlreadyRedeemed, RedeemRejection

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/perks", tags=["staff"], dependencies=[Depends(no_store)])

MIN_TOKEN_LENGTH = 12

_REJECTIONS = {
    RedeemRejection.SESSION_EXPIRED: (status.HTTP_401_UNAUTHORIZED, "Staff session expired. Scan the unlock QR again."),
    RedeemRejection.INVALID_TOKEN: (status.HTTP_404_NOT_FOUND, "Invalid or expired pass"),
    RedeemRejection.WRONG_PERK: (status.HTTP_409_CONFLICT, "This pass is for a different perk"),
}

# --- 1) Staff device opens the unlock link (QR printed for the venue)
@router.get("/{perk_id}/staff/unlock")
async def staff_unlock(
    perk_id: uuid.UUID,
    request: Request,
    t: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
):
    await rate_limited(request, "perks.staff.unlock")
    perk = await get_perk(db, perk_id)
    if not perk or not t or not hmac.compare_digest(t.encode("utf-8"), perk.staff_unlock_token.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid unlock")

    ttl = settings.staff_session_ttl_minutes
    res = RedirectResponse(url=f"{settings.staff_scan_base_url}/staff/{perk.id}/scan", status_code=status.HTTP_303_SEE_OTHER)
    res.set_cookie(
        key=settings.staff_cookie_name,
        value=mint_session(perk.id, ttl),
        max_age=ttl * 60,
        httponly=True,
        samesite="lax",
        secure=settings.staff_cookie_secure,
        path="/",
    )
    logger.info("staff session minted for perk %s", perk.id)
    return res

# --- 2) Staff device scans a pass
@router.post("/redeem-by-token", response_model=RedeemResponse, response_model_exclude_none=True)
async def redeem_by_token(
    payload: RedeemByToken,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    await rate_limited(request, "perks.redeem")
    token = (payload.token or "").strip()
    if len(token) < MIN_TOKEN_LENGTH:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or invalid token")
    if payload.perk_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing perkId")

    result = await redeem(
        db,
        perk_id=payload.perk_id,
        token=token,
        staff_session=request.cookies.get(settings.staff_cookie_name),
    )

    if isinstance(result, Redeemed):
        await publish_redeemed({
            "perk_id": str(payload.perk_id),
            "redeemed": result.redeemed,
            "redeemed_at": utcnow().isoformat().replace("+00:00", "Z"),
            "idempotency_key": f"redeem:{result.claim_id}",
        })
        return RedeemResponse(redeemed=result.redeemed)
    if isinstance(result, AlreadyRedeemed):
        return RedeemResponse(already_redeemed=True, redeemed=result.redeemed)

    code, msg = _REJECTIONS[result.reason]
    raise HTTPException(status_code=code, detail=msg)
