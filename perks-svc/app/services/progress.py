from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Perk, Claim, ClaimStatus, as_utc

@dataclass(frozen=True)
class Progress:
    claimed: int = 0
    redeemed: int = 0

async def claimed_count(db: AsyncSession, perk_id: uuid.UUID) -> int:
    q = select(func.count()).select_from(Claim).where(Claim.perk_id == perk_id)
    return (await db.execute(q)).scalar_one()

async def redeemed_count(db: AsyncSession, perk_id: uuid.UUID) -> int:
    q = select(func.count()).select_from(Claim).where(
        Claim.perk_id == perk_id, Claim.status == ClaimStatus.REDEEMED
    )
    return (await db.execute(q)).scalar_one()

async def perk_progress(db: AsyncSession, perk_id: uuid.UUID) -> Progress:
    return (await progress_for(db, [perk_id])).get(perk_id, Progress())

async def progress_for(db: AsyncSession, perk_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Progress]:
    ids = list(perk_ids)
    if not ids:
        return {}
    redeemed = func.sum(case((Claim.status == ClaimStatus.REDEEMED, 1), else_=0))
    rows = (await db.execute(
        select(Claim.perk_id, func.count(), redeemed)
        .where(Claim.perk_id.in_(ids))
        .group_by(Claim.perk_id)
    )).all()
    return {pid: Progress(claimed=c or 0, redeemed=int(r or 0)) for pid, c, r in rows}

# --- listing status (live / soon / sold out / ended), same rules the perks page shows

STATUS_KEYS = ("inactive", "soldout", "soon", "live", "ended")

def perk_status(perk: Perk, claimed: int, now: datetime) -> str:
    start, end = as_utc(perk.start_at), as_utc(perk.end_at)
    if not perk.active:
        return "inactive"
    if perk.max_claims > 0 and claimed >= perk.max_claims:
        return "soldout"
    if start is not None and now < start:
        return "soon"
    if (start is None or now >= start) and (end is None or now <= end):
        return "live"
    return "ended"

def _timeleft_key(perk: Perk, claimed: int, now: datetime):
    st = perk_status(perk, claimed, now)
    inf = float("inf")
    start = as_utc(perk.start_at)
    end = as_utc(perk.end_at)
    start_ts = start.timestamp() if start else inf
    end_ts = end.timestamp() if end else inf
    if st == "live":
        return (0, max(0.0, end_ts - now.timestamp()), perk.title)
    if st in ("soon", "soldout"):
        return (1, max(0.0, start_ts - now.timestamp()), perk.title)
    if st == "ended":
        return (3, start_ts, perk.title)
    return (2, start_ts, perk.title)

def filter_and_sort(
    perks: list[Perk],
    progress: dict[uuid.UUID, Progress],
    now: datetime,
    *,
    q: str = "",
    status: str = "all",
    neighborhood: str | None = None,
    sort: str = "timeleft",
) -> list[Perk]:
    needle = (q or "").strip().lower()

    def claimed(p: Perk) -> int:
        return progress.get(p.id, Progress()).claimed

    out = []
    for p in perks:
        if needle:
            hay = " ".join(x for x in (p.title, p.venue_name, p.neighborhood) if x).lower()
            if needle not in hay:
                continue
        if status and status != "all" and perk_status(p, claimed(p), now) != status:
            continue
        if neighborhood and (p.neighborhood or "") != neighborhood:
            continue
        out.append(p)

    if sort == "title":
        out.sort(key=lambda p: p.title.lower())
    elif sort == "start":
        out.sort(key=lambda p: (as_utc(p.start_at) is None, as_utc(p.start_at) or now))
    elif sort == "claimed":
        out.sort(key=lambda p: -claimed(p))
    else:
        out.sort(key=lambda p: _timeleft_key(p, claimed(p), now))
    return out
