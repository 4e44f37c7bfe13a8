import pytest

from conftest import ADMIN

AS_ADMIN = {"x-user-email": ADMIN}


async def test_events_sorted_by_date(client, feed):
    for title, on in [("Finale", "2026-11-20"), ("Kickoff", "2026-11-01"),
                      ("Rehearsal", "2026-11-10")]:
        resp = await client.post("/api/events", json={
            "title": title, "date": on, "description": "",
        })
        assert resp.status_code == 201
    items = (await client.get("/api/events")).json()["items"]
    assert [e["title"] for e in items] == ["Kickoff", "Rehearsal", "Finale"]
    assert items[0]["description"] is None
    assert sum(1 for t, k, _ in feed.events if t == "events") == 3


@pytest.mark.parametrize("payload", [
    {"title": "", "date": "2026-11-01"},
    {"title": "Kickoff"},
    {"title": "Kickoff", "date": "next friday"},
])
async def test_event_validation(client, payload):
    resp = await client.post("/api/events", json=payload)
    assert resp.status_code == 400


async def test_event_delete(client):
    ev = (await client.post("/api/events", json={
        "title": "Kickoff", "date": "2026-11-01T18:00:00",
    })).json()
    assert ev["date"] == "2026-11-01"
    assert (await client.delete(f"/api/events/{ev['id']}")).status_code == 204
    assert (await client.get("/api/events")).json()["items"] == []


async def test_out_of_range_ids_are_not_found(client):
    big = 2**63
    assert (await client.delete(f"/api/events/{big}")).status_code == 404
    resp = await client.delete(f"/api/planning/{big}", headers=AS_ADMIN)
    assert resp.status_code == 404


async def test_planning_summary(client):
    for name, amount, kind in [("DJ", 8000, "expense"),
                               ("Catering", 12000, "expense"),
                               ("Sponsor", 15000, "income")]:
        resp = await client.post("/api/planning", headers=AS_ADMIN, json={
            "name": name, "amount": amount, "type": kind,
        })
        assert resp.status_code == 201
    body = (await client.get("/api/planning")).json()
    assert [i["name"] for i in body["items"]] == ["Sponsor", "Catering", "DJ"]
    assert body["income"] == 15000
    assert body["expenses"] == 20000
    assert body["net"] == -5000


async def test_planning_writes_need_admin(client):
    payload = {"name": "DJ", "amount": 8000, "type": "expense"}
    assert (await client.post("/api/planning", json=payload)).status_code == 403
    resp = await client.post("/api/planning", json=payload,
                             headers={"x-user-email": "viewer@fund.test"})
    assert resp.status_code == 403

    item = (await client.post("/api/planning", json=payload,
                              headers=AS_ADMIN)).json()
    assert (await client.delete(f"/api/planning/{item['id']}")).status_code == 403
    resp = await client.delete(f"/api/planning/{item['id']}", headers=AS_ADMIN)
    assert resp.status_code == 204


@pytest.mark.parametrize("payload", [
    {"name": " ", "amount": 10, "type": "expense"},
    {"name": "DJ", "amount": -1, "type": "expense"},
    {"name": "DJ", "amount": 10**400, "type": "expense"},
    {"name": "DJ", "amount": 10, "type": "donation"},
])
async def test_planning_validation(client, payload):
    resp = await client.post("/api/planning", json=payload, headers=AS_ADMIN)
    assert resp.status_code == 400
