from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.staff_session import verify_session
from ..models import Claim, ClaimStatus, utcnow
from .ledger import claim_by_token
from .progress import redeemed_count

logger = logging.getLogger(__name__)

class RedeemRejection(str, Enum):
    SESSION_EXPIRED = "session_expired"
    INVALID_TOKEN = "invalid_token"
    WRONG_PERK = "wrong_perk"

@dataclass(frozen=True)
class Redeemed:
    redeemed: int
    claim_id: uuid.UUID | None = field(default=None, compare=False)

@dataclass(frozen=True)
class AlreadyRedeemed:
    redeemed: int

@dataclass(frozen=True)
class RedeemRejected:
    reason: RedeemRejection

async def redeem(
    db: AsyncSession,
    *,
    perk_id: uuid.UUID,
    token: str,
    staff_session: str | None,
    redeemed_by: str = "staff",
    now: datetime | None = None,
) -> Redeemed | AlreadyRedeemed | RedeemRejected:
    """
    Move the claim holding ``token`` from reserved to redeemed, at most once.

    Double scans, including two devices racing on the same pass, come back as
    AlreadyRedeemed rather than an error.
    """
    if not verify_session(staff_session, perk_id, now=now):
        return RedeemRejected(RedeemRejection.SESSION_EXPIRED)

    try:
        c = await claim_by_token(db, token)
        if c is None:
            await db.rollback()
            return RedeemRejected(RedeemRejection.INVALID_TOKEN)
        if c.perk_id != perk_id:
            await db.rollback()
            return RedeemRejected(RedeemRejection.WRONG_PERK)
        if c.status == ClaimStatus.REDEEMED:
            count = await redeemed_count(db, perk_id)
            await db.rollback()
            return AlreadyRedeemed(count)

        claim_id = c.id
        # compare-and-set: only a still-reserved row flips
        res = await db.execute(
            update(Claim)
            .where(Claim.id == claim_id, Claim.status == ClaimStatus.RESERVED)
            .values(status=ClaimStatus.REDEEMED, redeemed_at=now or utcnow(), redeemed_by=redeemed_by)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            await db.rollback()
            return AlreadyRedeemed(await _committed_redeemed_count(db, perk_id))

        count = await redeemed_count(db, perk_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("claim %s for perk %s redeemed (%d redeemed)", claim_id, perk_id, count)
    return Redeemed(count, claim_id)

async def _committed_redeemed_count(db: AsyncSession, perk_id: uuid.UUID) -> int:
    count = await redeemed_count(db, perk_id)
    await db.rollback()
    return count
