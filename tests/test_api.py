import pytest
from fastapi.testclient import TestClient

import main
from state.errors import StoreUnavailableError
from tests.fixtures import reset_and_seed

client = TestClient(main.app)

LEADER = {"X-User-Id": "mem_leader_worship", "X-User-Role": "lider_ministerio", "X-Church-Id": "church_dev"}
VOLUNTEER = {"X-User-Id": "vol_003", "X-User-Role": "voluntario", "X-Church-Id": "church_dev"}
FINANCE = {"X-User-Id": "mem_finance", "X-User-Role": "financeiro", "X-Church-Id": "church_dev"}


@pytest.fixture(autouse=True)
def seeded():
    reset_and_seed()


def test_health():
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["ok"] is True


def test_capability_endpoints():
    catalog = client.get("/capabilities").json()["capabilities"]
    assert catalog[0] == {"id": "member-management", "label": "Member management"}

    admin = client.get("/roles/admin/capabilities").json()
    assert admin["known"] is True
    assert len(admin["capabilities"]) == len(catalog)

    unknown = client.get("/roles/bishop/capabilities").json()
    assert unknown == {"role": "bishop", "known": False, "capabilities": []}

    mine = client.get("/me/capabilities", headers=FINANCE).json()
    assert mine["data"]["capabilities"] == ["financial-panel"]


def test_identity_headers_required():
    assert client.get("/me/capabilities").status_code == 401


def test_request_id_becomes_correlation_id():
    res = client.get("/me/schedules", headers={**VOLUNTEER, "X-Request-ID": "req-42"})
    assert res.json()["correlation_id"] == "req-42"


def test_demand_flow_over_http(stub_mail):
    res = client.post(
        "/ministries/min_worship/demands",
        json={"title": "Order new strings", "responsible_id": "vol_003", "priority": "urgent"},
        headers=LEADER,
    )
    assert res.status_code == 201
    body = res.json()
    demand_id = body["data"]["id"]
    assert body["data"]["priority"] == 4
    assert body["warnings"] == []
    assert stub_mail.recipients() == ["volunteer003@connectvida.example"]

    res = client.patch(f"/demands/{demand_id}/status", json={"status": "archived"}, headers=LEADER)
    assert res.status_code == 400
    assert res.json()["error"] == "validation_error"

    res = client.patch(f"/demands/{demand_id}/status", json={"status": "in_progress"}, headers=LEADER)
    assert res.json()["data"]["status"] == "in_progress"

    board = client.get("/ministries/min_worship/demands/board", headers=VOLUNTEER).json()["data"]
    assert demand_id in [d["id"] for d in board["in_progress"]]

    assert client.delete(f"/demands/{demand_id}", headers=LEADER).status_code == 200
    assert client.delete(f"/demands/{demand_id}", headers=LEADER).status_code == 404


def test_ministry_writes_need_capability():
    res = client.post("/ministries/min_worship/demands", json={"title": "x"}, headers=FINANCE)
    assert res.status_code == 403
    assert "missing_capability" in res.json()["detail"]
    res = client.post("/schedules/esc_worship_01/volunteers", json={"volunteer_id": "vol_009"}, headers=VOLUNTEER)
    assert res.status_code == 403


def test_other_tenant_cannot_reach_ministry():
    headers = {**LEADER, "X-Church-Id": "another_church"}
    assert client.get("/ministries/min_worship/demands", headers=headers).status_code == 404
    assert client.get("/ministries/min_worship/demands/board", headers=headers).status_code == 404
    assert client.get("/ministries/min_worship/schedules", headers=headers).status_code == 404


def test_schedule_flow_over_http(stub_mail):
    res = client.post("/ministries/min_kids/schedules", json={"service_date": "2025-03-02"}, headers=LEADER)
    assert res.status_code == 201
    schedule_id = res.json()["data"]["id"]
    assert res.json()["data"]["status"] == "draft"

    res = client.post(f"/schedules/{schedule_id}/volunteers", json={"volunteer_id": "vol_012"}, headers=LEADER)
    assert res.status_code == 201
    assignment_id = res.json()["data"]["id"]
    # vol_012 has no email on file
    assert res.json()["warnings"]

    res = client.post(f"/schedules/{schedule_id}/volunteers", json={"volunteer_id": "vol_012"}, headers=LEADER)
    assert res.status_code == 409

    listed = client.get("/ministries/min_kids/schedules", headers=LEADER).json()["data"]
    assert listed[0]["assignments"][0]["member"]["name"] == "Volunteer 012"

    vol12 = {"X-User-Id": "vol_012", "X-User-Role": "voluntario", "X-Church-Id": "church_dev"}
    assert client.post(f"/assignments/{assignment_id}/confirmation", json={"confirmed": True}, headers=VOLUNTEER).status_code == 403
    res = client.post(f"/assignments/{assignment_id}/confirmation", json={"confirmed": True}, headers=vol12)
    assert res.json()["data"]["confirmation_status"] == "confirmed"

    mine = client.get("/me/schedules", headers=vol12).json()["data"]
    assert [m["schedule"]["id"] for m in mine] == [schedule_id]

    assert client.post(f"/schedules/{schedule_id}/publish", headers=LEADER).json()["data"]["status"] == "published"
    assert client.patch(f"/schedules/{schedule_id}/status", json={"status": "cancelled"}, headers=LEADER).status_code == 200
    assert client.delete(f"/assignments/{assignment_id}", headers=LEADER).status_code == 200
    assert client.delete(f"/assignments/{assignment_id}", headers=LEADER).status_code == 404
    assert client.delete(f"/schedules/{schedule_id}", headers=LEADER).status_code == 200


def test_inbox_over_http():
    client.post("/schedules/esc_worship_04/volunteers", json={"volunteer_id": "vol_003"}, headers=LEADER)
    inbox = client.get("/me/notifications", headers=VOLUNTEER).json()["data"]
    assert len(inbox) == 1
    notification_id = inbox[0]["id"]

    # someone else's notification looks missing
    assert client.post(f"/notifications/{notification_id}/read", headers=FINANCE).status_code == 404
    res = client.post(f"/notifications/{notification_id}/read", headers=VOLUNTEER)
    assert res.json()["data"]["read"] is True


def test_store_outage_maps_to_503(monkeypatch):
    def down(*args, **kwargs):
        raise StoreUnavailableError("connection refused")

    monkeypatch.setattr(main.GLOBAL_DB, "query", down)
    res = client.get("/me/schedules", headers=VOLUNTEER)
    assert res.status_code == 503
    assert res.json()["error"] == "store_unavailable"


def test_other_tenant_cannot_touch_records_by_id():
    outsider = {"X-User-Id": "someone", "X-User-Role": "admin", "X-Church-Id": "another_church"}
    assignment_id = "esc_worship_02_vol_003"

    attempts = [
        client.patch("/demands/dem_worship_01/status", json={"status": "done"}, headers=outsider),
        client.post("/demands/dem_worship_01/assign", json={"responsible_id": "someone"}, headers=outsider),
        client.delete("/demands/dem_worship_01", headers=outsider),
        client.post("/schedules/esc_media_02/volunteers", json={"volunteer_id": "someone"}, headers=outsider),
        client.patch("/schedules/esc_media_02/status", json={"status": "cancelled"}, headers=outsider),
        client.post("/schedules/esc_media_02/publish", headers=outsider),
        client.delete("/schedules/esc_media_02", headers=outsider),
        client.delete(f"/assignments/{assignment_id}", headers=outsider),
        client.post(
            f"/assignments/{assignment_id}/confirmation",
            json={"confirmed": False},
            headers={**outsider, "X-User-Id": "vol_003"},
        ),
    ]
    assert [r.status_code for r in attempts] == [404] * len(attempts)

    # nothing changed for the owning church
    demand = main.DEMANDS.get_demand("dem_worship_01")
    assert demand.status == "pending"
    assert demand.responsible_id == "vol_001"
    schedule = main.SCHEDULES.get_schedule("esc_media_02")
    assert schedule.status == "published"
    assert len(main.GLOBAL_DB.query("schedule_assignments", {"schedule_id": "esc_media_02"})) == 2
    assert main.SCHEDULES.get_assignment(assignment_id).confirmation_status == "pending"
