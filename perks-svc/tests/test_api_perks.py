"""HTTP surface for members: check-in, listing, progress and passes."""
import uuid

import pytest

from conftest import auth, hours, now

# ~1.1 km north of the fence center
CENTER = {"geofence_lat": 30.2672, "geofence_lng": -97.7431, "geofence_radius_m": 150}
FAR = {"lat": 30.2772, "lng": -97.7431}
NEAR = {"lat": 30.2675, "lng": -97.7430}


@pytest.mark.asyncio
async def test_checkin_requires_auth(client, make_perk):
    p = await make_perk()
    res = await client.post(f"/perks/{p.id}/checkin", json={})
    assert res.status_code == 401
    assert res.json() == {"error": "Not authenticated"}


@pytest.mark.asyncio
async def test_checkin_unknown_perk(client):
    res = await client.post(f"/perks/{uuid.uuid4()}/checkin", json={}, headers=auth("alice"))
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_checkin_reserves_and_is_idempotent(client, make_perk):
    p = await make_perk(title="Free taco", max_claims=3)
    res = await client.post(f"/perks/{p.id}/checkin", json={}, headers=auth("alice"))
    assert res.status_code == 200
    assert res.headers["cache-control"] == "no-store"
    body = res.json()
    assert body["checkedIn"] is True
    perk = body["perk"]
    assert perk["title"] == "Free taco"
    assert perk["status"] == "reserved"
    assert perk["order"] == 1 and perk["total"] == 3
    assert "alreadyClaimed" not in perk and "soldOut" not in perk

    again = (await client.post(f"/perks/{p.id}/checkin", headers=auth("alice"))).json()["perk"]
    assert again["token"] == perk["token"]
    assert again["alreadyClaimed"] is True
    assert again["order"] == 1


@pytest.mark.asyncio
async def test_checkin_sold_out_is_a_200(client, make_perk):
    p = await make_perk(max_claims=1)
    await client.post(f"/perks/{p.id}/checkin", json={}, headers=auth("alice"))
    res = await client.post(f"/perks/{p.id}/checkin", json={}, headers=auth("bob"))
    assert res.status_code == 200
    assert res.json()["perk"] == {"title": "Free espresso", "soldOut": True, "total": 1}


@pytest.mark.asyncio
async def test_checkin_inactive_and_outside_window(client, make_perk):
    off = await make_perk(active=False)
    later = await make_perk(start_at=now() + hours(2))
    r1 = await client.post(f"/perks/{off.id}/checkin", json={}, headers=auth("alice"))
    r2 = await client.post(f"/perks/{later.id}/checkin", json={}, headers=auth("alice"))
    assert r1.status_code == r2.status_code == 200
    assert r1.json()["perk"]["inactive"] is True
    assert r2.json()["perk"]["outsideWindow"] is True
    assert "token" not in r1.json()["perk"] and "token" not in r2.json()["perk"]


@pytest.mark.asyncio
async def test_checkin_too_far_does_not_consume_inventory(client, make_perk):
    p = await make_perk(max_claims=1, **CENTER)
    res = await client.post(f"/perks/{p.id}/checkin", json={"coords": FAR}, headers=auth("alice"))
    perk = res.json()["perk"]
    assert res.status_code == 200
    assert perk["tooFar"] is True
    assert perk["radiusM"] == 150
    assert perk["distanceM"] > 1000
    assert "token" not in perk

    near = (await client.post(f"/perks/{p.id}/checkin", json={"coords": NEAR}, headers=auth("bob"))).json()["perk"]
    assert near["status"] == "reserved"


@pytest.mark.asyncio
async def test_checkin_without_coords_skips_fence(client, make_perk):
    p = await make_perk(**CENTER)
    perk = (await client.post(f"/perks/{p.id}/checkin", json={}, headers=auth("alice"))).json()["perk"]
    assert perk["status"] == "reserved"


@pytest.mark.asyncio
async def test_browse_and_progress(client, make_perk):
    live = await make_perk(title="Live one", max_claims=2)
    await make_perk(title="Later one", start_at=now() + hours(3))
    await client.post(f"/perks/{live.id}/checkin", json={}, headers=auth("alice"))

    rows = (await client.get("/perks", headers=auth("bob"))).json()
    assert [r["title"] for r in rows] == ["Live one", "Later one"]
    assert rows[0]["claimedCount"] == 1 and rows[0]["status"] == "live"
    assert rows[1]["status"] == "soon"

    only_soon = (await client.get("/perks?status=soon", headers=auth("bob"))).json()
    assert [r["title"] for r in only_soon] == ["Later one"]

    bad = await client.get("/perks?status=whatever", headers=auth("bob"))
    assert bad.status_code == 400

    prog = (await client.get(f"/perks/{live.id}/progress")).json()
    assert prog == {"claimed": 1, "redeemed": 0, "total": 2}

    one = (await client.get(f"/perks/{live.id}", headers=auth("bob"))).json()
    assert one["maxClaims"] == 2 and one["claimedCount"] == 1


@pytest.mark.asyncio
async def test_my_claims_and_qr(client, make_perk):
    p = await make_perk(title="Pass me")
    token = (await client.post(f"/perks/{p.id}/checkin", json={}, headers=auth("alice"))).json()["perk"]["token"]

    mine = (await client.get("/perks/claims/me", headers=auth("alice"))).json()
    assert [(c["perkTitle"], c["token"], c["status"]) for c in mine] == [("Pass me", token, "reserved")]
    assert (await client.get("/perks/claims/me", headers=auth("bob"))).json() == []

    png = await client.get(f"/perks/claims/{token}/qr.png", headers=auth("alice"))
    assert png.status_code == 200
    assert png.headers["content-type"] == "image/png"
    assert png.content.startswith(b"\x89PNG")

    svg = await client.get(f"/perks/claims/{token}/qr.svg", headers=auth("alice"))
    assert svg.status_code == 200
    assert b"svg" in svg.content

    # someone else's pass
    assert (await client.get(f"/perks/claims/{token}/qr.png", headers=auth("bob"))).status_code == 404
