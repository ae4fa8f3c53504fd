from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.tokens import new_token
from ..models import Perk, Claim, ClaimStatus, utcnow, as_utc

logger = logging.getLogger(__name__)

class ClaimRejection(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    OUTSIDE_WINDOW = "outside_window"
    SOLD_OUT = "sold_out"

@dataclass(frozen=True)
class Reserved:
    token: str
    status: ClaimStatus
    created: bool  # False when the caller already held a claim

@dataclass(frozen=True)
class Rejected:
    reason: ClaimRejection

def in_window(perk: Perk, now: datetime) -> bool:
    start, end = as_utc(perk.start_at), as_utc(perk.end_at)
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True

async def _existing_claim(db: AsyncSession, perk_id: uuid.UUID, user_id: str) -> Reserved | None:
    # plain values: the caller rolls back right after, which expires ORM rows
    row = (await db.execute(
        select(Claim.redeem_token, Claim.status).where(Claim.perk_id == perk_id, Claim.user_id == user_id)
    )).first()
    if row is None:
        return None
    return Reserved(token=row.redeem_token, status=ClaimStatus(row.status), created=False)

async def claim(db: AsyncSession, *, perk_id: uuid.UUID, user_id: str, now: datetime | None = None) -> Reserved | Rejected:
    """
    Reserve one unit of a perk's inventory for ``user_id``.

    Runs in a single transaction with the perk row locked, so the
    existing-claim lookup, the capacity count and the insert are serialized
    per perk. Re-claiming returns the caller's existing token. Business
    rejections are returned, not raised.
    """
    now = now or utcnow()
    try:
        perk = (await db.execute(
            select(Perk).where(Perk.id == perk_id).with_for_update()
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if perk is None:
            await db.rollback()
            return Rejected(ClaimRejection.NOT_FOUND)
        if not perk.active:
            await db.rollback()
            return Rejected(ClaimRejection.INACTIVE)
        if not in_window(perk, now):
            await db.rollback()
            return Rejected(ClaimRejection.OUTSIDE_WINDOW)

        existing = await _existing_claim(db, perk_id, user_id)
        if existing:
            await db.rollback()
            return existing

        count = (await db.execute(
            select(func.count()).select_from(Claim).where(Claim.perk_id == perk_id)
        )).scalar_one()
        if count >= perk.max_claims:
            await db.rollback()
            return Rejected(ClaimRejection.SOLD_OUT)

        capacity = perk.max_claims
        token = new_token()
        db.add(Claim(perk_id=perk_id, user_id=user_id, status=ClaimStatus.RESERVED, redeem_token=token))
        await db.commit()
    except IntegrityError:
        # lost a race on (perk_id, user_id): hand back the winner's token
        await db.rollback()
        existing = await _existing_claim(db, perk_id, user_id)
        await db.rollback()
        if existing is None:
            raise
        return existing
    except Exception:
        await db.rollback()
        raise

    logger.info("perk %s claimed by %s (%d/%d)", perk_id, user_id, count + 1, capacity)
    return Reserved(token=token, status=ClaimStatus.RESERVED, created=True)

async def user_claims(db: AsyncSession, user_id: str) -> list[tuple[Claim, Perk]]:
    rows = (await db.execute(
        select(Claim, Perk).join(Perk, Perk.id == Claim.perk_id)
        .where(Claim.user_id == user_id)
        .order_by(Claim.created_at.desc())
    )).all()
    return [(c, p) for c, p in rows]

async def claim_by_token(db: AsyncSession, token: str) -> Claim | None:
    return (await db.execute(select(Claim).where(Claim.redeem_token == token))).scalar_one_or_none()
