"""Redemption state machine: single transition, double scans, wrong perk, sessions."""
import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.staff_session import mint_session
from app.models import Claim, ClaimStatus, utcnow
from app.services import redemption
from app.services.ledger import claim, Reserved, Rejected, ClaimRejection
from app.services.progress import perk_progress
from app.services.redemption import (
    redeem, Redeemed, AlreadyRedeemed, RedeemRejected, RedeemRejection,
)


async def _claim(session_maker, perk_id, user_id):
    async with session_maker() as s:
        return await claim(s, perk_id=perk_id, user_id=user_id)


async def _redeem(session_maker, perk_id, token, session=None):
    async with session_maker() as s:
        return await redeem(s, perk_id=perk_id, token=token,
                            staff_session=session if session is not None else mint_session(perk_id))


async def _claim_row(session_maker, token) -> Claim:
    async with session_maker() as s:
        return (await s.execute(select(Claim).where(Claim.redeem_token == token))).scalar_one()


@pytest.mark.asyncio
async def test_full_scenario(session_maker, make_perk):
    p = await make_perk(max_claims=2)
    a = await _claim(session_maker, p.id, "A")
    b = await _claim(session_maker, p.id, "B")
    assert isinstance(a, Reserved) and isinstance(b, Reserved)
    assert await _claim(session_maker, p.id, "C") == Rejected(ClaimRejection.SOLD_OUT)

    assert await _redeem(session_maker, p.id, a.token) == Redeemed(1)
    assert await _redeem(session_maker, p.id, a.token) == AlreadyRedeemed(1)
    assert await _redeem(session_maker, p.id, b.token) == Redeemed(2)

    async with session_maker() as s:
        prog = await perk_progress(s, p.id)
    assert (prog.claimed, prog.redeemed) == (2, 2)


@pytest.mark.asyncio
async def test_transition_is_recorded(session_maker, make_perk):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    before = utcnow()
    res = await _redeem(session_maker, p.id, r.token)
    assert isinstance(res, Redeemed)
    row = await _claim_row(session_maker, r.token)
    assert row.status == ClaimStatus.REDEEMED
    assert row.redeemed_by == "staff"
    assert row.redeemed_at is not None
    assert row.redeemed_at.replace(tzinfo=None) >= before.replace(tzinfo=None, microsecond=0)
    assert res.claim_id == row.id


@pytest.mark.asyncio
async def test_concurrent_double_scan(session_maker, make_perk):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    results = await asyncio.gather(*[_redeem(session_maker, p.id, r.token) for _ in range(10)])
    assert sum(isinstance(x, Redeemed) for x in results) == 1
    assert sum(isinstance(x, AlreadyRedeemed) for x in results) == 9
    assert {x.redeemed for x in results} == {1}


@pytest.mark.asyncio
async def test_stale_read_loses_compare_and_set(session_maker, make_perk, monkeypatch):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    assert isinstance(await _redeem(session_maker, p.id, r.token), Redeemed)
    first = await _claim_row(session_maker, r.token)

    # another device redeemed between our read and our update
    stale = Claim(id=first.id, perk_id=p.id, user_id="A", status=ClaimStatus.RESERVED, redeem_token=r.token)

    async def stale_lookup(db, token):
        return stale

    monkeypatch.setattr(redemption, "claim_by_token", stale_lookup)
    res = await _redeem(session_maker, p.id, r.token)
    assert res == AlreadyRedeemed(1)

    after = await _claim_row(session_maker, r.token)
    assert after.status == ClaimStatus.REDEEMED
    assert after.redeemed_at == first.redeemed_at
    assert after.redeemed_by == first.redeemed_by


@pytest.mark.asyncio
async def test_wrong_perk_never_mutates(session_maker, make_perk):
    pa = await make_perk(title="A")
    pb = await make_perk(title="B")
    r = await _claim(session_maker, pa.id, "A")
    res = await _redeem(session_maker, pb.id, r.token)
    assert res == RedeemRejected(RedeemRejection.WRONG_PERK)
    row = await _claim_row(session_maker, r.token)
    assert row.status == ClaimStatus.RESERVED
    assert row.redeemed_at is None


@pytest.mark.asyncio
async def test_unknown_token(session_maker, make_perk):
    p = await make_perk()
    res = await _redeem(session_maker, p.id, "NoSuchTokenAtAll1234")
    assert res == RedeemRejected(RedeemRejection.INVALID_TOKEN)


@pytest.mark.asyncio
async def test_session_for_other_perk(session_maker, make_perk):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    res = await _redeem(session_maker, p.id, r.token, session=mint_session(uuid.uuid4()))
    assert res == RedeemRejected(RedeemRejection.SESSION_EXPIRED)
    assert (await _claim_row(session_maker, r.token)).status == ClaimStatus.RESERVED


@pytest.mark.asyncio
async def test_expired_session(session_maker, make_perk):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    stale = mint_session(p.id, 10, now=utcnow() - timedelta(minutes=30))
    res = await _redeem(session_maker, p.id, r.token, session=stale)
    assert res == RedeemRejected(RedeemRejection.SESSION_EXPIRED)


@pytest.mark.asyncio
async def test_missing_session(session_maker, make_perk):
    p = await make_perk()
    r = await _claim(session_maker, p.id, "A")
    res = await _redeem(session_maker, p.id, r.token, session="")
    assert res == RedeemRejected(RedeemRejection.SESSION_EXPIRED)
