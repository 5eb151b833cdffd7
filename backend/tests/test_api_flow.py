"""
Integration tests for the HTTP API.

Verifies Create group -> Add members -> Record expense -> Balances -> Settle
-> Delete, plus the error envelope of every failure kind.
"""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from backend.app.main import app
from backend.tests.conftest import ALICE, BOB, CAROL, DAVE, auth_headers


async def _create_group(client, members=(BOB, CAROL), **fields):
    response = await client.post("/v1/groups", json={"name": "Goa", **fields}, headers=auth_headers(ALICE))
    assert response.status_code == 201
    group = response.json()
    for user_id in members:
        response = await client.post(
            f"/v1/groups/{group['id']}/members", json={"user_id": user_id}, headers=auth_headers(ALICE)
        )
        assert response.status_code == 201
        group = response.json()
    return group


def _expense_body(group_id, amount="90.00", users=(ALICE, BOB, CAROL), **fields):
    return {
        "group_id": group_id,
        "description": "Dinner",
        "amount": amount,
        "paid_by": ALICE,
        "participants": [{"user_id": uid} for uid in users],
        **fields,
    }


async def _balances(client, group_id):
    response = await client.get(f"/v1/groups/{group_id}/balances", headers=auth_headers(ALICE))
    assert response.status_code == 200
    return {row["user_id"]: row for row in response.json()["balances"]}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers

    response = await client.get("/health", headers={"X-Correlation-ID": "trace-42"})
    assert response.headers["X-Correlation-ID"] == "trace-42"


@pytest.mark.asyncio
async def test_full_expense_lifecycle(client):
    group = await _create_group(client)
    gid = group["id"]
    assert [(m["user_id"], m["role"]) for m in group["members"]] == [(ALICE, "admin"), (BOB, "member"), (CAROL, "member")]
    assert group["settings"]["currency"] == "INR"

    # 1. Record an equal split
    response = await client.post("/v1/expenses", json=_expense_body(gid), headers=auth_headers(ALICE))
    assert response.status_code == 201
    expense = response.json()
    assert [p["share"] for p in expense["participants"]] == ["30.00", "30.00", "30.00"]
    assert expense["is_settled"] is False

    # 2. Balances
    balances = await _balances(client, gid)
    assert balances[ALICE]["balance"] == "60.00"
    assert balances[ALICE]["owed"] == [{"from_user": BOB, "amount": "30.00"}, {"from_user": CAROL, "amount": "30.00"}]
    assert balances[BOB]["owes"] == [{"to": ALICE, "amount": "30.00"}]
    assert balances[CAROL]["balance"] == "-30.00"

    # 3. Listing and activity pagination
    response = await client.get(f"/v1/expenses/group/{gid}", params={"limit": 1}, headers=auth_headers(BOB))
    assert response.status_code == 200
    assert response.json()["pagination"] == {"page": 1, "limit": 1, "total": 1, "pages": 1}

    response = await client.get(
        f"/v1/groups/{gid}/activity", params={"page": 2, "limit": 2}, headers=auth_headers(CAROL)
    )
    assert response.status_code == 200
    activity = response.json()
    assert activity["pagination"] == {"page": 2, "limit": 2, "total": 4, "pages": 2}
    assert [a["action"] for a in activity["activities"]] == ["MEMBER_ADDED", "GROUP_CREATED"]

    # 4. Group cannot be deleted while unsettled
    response = await client.delete(f"/v1/groups/{gid}", headers=auth_headers(ALICE))
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_UNSETTLED_EXPENSES"
    assert response.json()["kind"] == "INVALID_STATE"

    # 5. Settle
    response = await client.post(f"/v1/expenses/{expense['id']}/settle", headers=auth_headers(BOB))
    assert response.status_code == 200
    assert response.json()["is_settled"] is True
    assert response.json()["settled_by"] == BOB

    balances = await _balances(client, gid)
    assert {row["balance"] for row in balances.values()} == {"0.00"}

    response = await client.get(f"/v1/groups/{gid}/summary", headers=auth_headers(ALICE))
    assert response.status_code == 200
    summary = response.json()
    assert summary["total_settled"] == "90.00"
    assert summary["outstanding_balance"] == "0.00"

    # 6. Delete
    response = await client.delete(f"/v1/groups/{gid}", headers=auth_headers(ALICE))
    assert response.status_code == 200
    response = await client.get(f"/v1/groups/{gid}", headers=auth_headers(ALICE))
    assert response.status_code == 404
    assert response.json()["kind"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_update_and_delete_expense(client):
    group = await _create_group(client)
    response = await client.post("/v1/expenses", json=_expense_body(group["id"]), headers=auth_headers(ALICE))
    expense_id = response.json()["id"]

    response = await client.put(
        f"/v1/expenses/{expense_id}",
        json={"amount": "60.00", "participants": [{"user_id": ALICE}, {"user_id": BOB}]},
        headers=auth_headers(ALICE),
    )
    assert response.status_code == 200
    assert [(p["user_id"], p["share"]) for p in response.json()["participants"]] == [(ALICE, "30.00"), (BOB, "30.00")]
    assert len(response.json()["edits"]) == 1

    balances = await _balances(client, group["id"])
    assert balances[ALICE]["balance"] == "30.00"
    assert balances[CAROL]["balance"] == "0.00"

    response = await client.delete(f"/v1/expenses/{expense_id}", headers=auth_headers(BOB))
    assert response.status_code == 403
    response = await client.delete(f"/v1/expenses/{expense_id}", headers=auth_headers(ALICE))
    assert response.status_code == 200

    balances = await _balances(client, group["id"])
    assert balances[ALICE]["balance"] == "0.00"


@pytest.mark.asyncio
async def test_partial_settlements_over_http(client):
    group = await _create_group(client, members=(BOB,))
    response = await client.post(
        "/v1/expenses", json=_expense_body(group["id"], users=(ALICE, BOB)), headers=auth_headers(ALICE)
    )
    expense_id = response.json()["id"]

    body = {"from_user_id": BOB, "to_user_id": ALICE, "amount": "45.00", "method": "upi"}
    response = await client.post(f"/v1/expenses/{expense_id}/settlements", json=body, headers=auth_headers(BOB))
    assert response.status_code == 201
    assert response.json()["is_settled"] is False

    response = await client.post(f"/v1/expenses/{expense_id}/settlements", json=body, headers=auth_headers(BOB))
    assert response.json()["is_settled"] is True
    assert [s["method"] for s in response.json()["settlements"]] == ["upi", "upi"]


@pytest.mark.asyncio
async def test_user_expenses_across_groups(client):
    trip = await _create_group(client)
    solo = await _create_group(client, members=())
    body = _expense_body(trip["id"], tags=["beach"], location={"name": "Shack", "lat": 15.5, "lng": 73.8})
    response = await client.post("/v1/expenses", json=body, headers=auth_headers(ALICE))
    assert response.status_code == 201
    assert response.json()["tags"] == ["beach"]
    assert response.json()["location"]["name"] == "Shack"
    await client.post("/v1/expenses", json=_expense_body(solo["id"], users=(ALICE,)), headers=auth_headers(ALICE))

    response = await client.get("/v1/expenses/user", params={"limit": 1}, headers=auth_headers(ALICE))
    assert response.status_code == 200
    assert response.json()["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert response.json()["expenses"][0]["group_id"] == solo["id"]

    response = await client.get("/v1/expenses/user", headers=auth_headers(BOB))
    assert [e["group_id"] for e in response.json()["expenses"]] == [trip["id"]]


@pytest.mark.asyncio
async def test_join_by_invite_and_leave(client):
    group = await _create_group(client, members=())

    response = await client.post(f"/v1/groups/join/{group['invite_code']}", headers=auth_headers(DAVE))
    assert response.status_code == 200
    assert DAVE in [m["user_id"] for m in response.json()["members"]]

    response = await client.get("/v1/groups", headers=auth_headers(DAVE))
    assert [g["id"] for g in response.json()] == [group["id"]]

    response = await client.delete(f"/v1/groups/{group['id']}/members/{DAVE}", headers=auth_headers(DAVE))
    assert response.status_code == 200
    assert response.json()["message"] == "Left group successfully"

    response = await client.get("/v1/groups", headers=auth_headers(DAVE))
    assert response.json() == []


@pytest.mark.asyncio
async def test_requests_without_valid_token_are_rejected(client):
    response = await client.get("/v1/groups")
    assert response.status_code in (401, 403)

    response = await client.get("/v1/groups", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"
    assert response.json()["kind"] == "AUTHENTICATION"


@pytest.mark.asyncio
async def test_non_member_is_forbidden(client):
    group = await _create_group(client)
    response = await client.get(f"/v1/groups/{group['id']}/balances", headers=auth_headers(DAVE))
    assert response.status_code == 403
    assert response.json()["kind"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_validation_errors(client):
    group = await _create_group(client)

    response = await client.post(
        "/v1/expenses", json=_expense_body(group["id"], amount="-5"), headers=auth_headers(ALICE)
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"
    assert response.json()["kind"] == "VALIDATION_FAILURE"

    body = _expense_body(group["id"], split_method="exact")
    body["participants"] = [{"user_id": ALICE, "share": "50.00"}, {"user_id": BOB, "share": "30.00"}]
    response = await client.post("/v1/expenses", json=body, headers=auth_headers(ALICE))
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_SHARE_MISMATCH"
    assert response.json()["details"]["expected"] == "90.00"


@pytest.mark.asyncio
async def test_amounts_beyond_storage_range_are_rejected(client):
    group = await _create_group(client)

    for amount in ("1e30", "10000000000.00"):
        response = await client.post(
            "/v1/expenses", json=_expense_body(group["id"], amount=amount), headers=auth_headers(ALICE)
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "ERR_INVALID_AMOUNT"
        assert response.json()["kind"] == "VALIDATION_FAILURE"

    # The group counter is bounded too
    response = await client.post(
        "/v1/expenses", json=_expense_body(group["id"], amount="9999999999.99"), headers=auth_headers(ALICE)
    )
    assert response.status_code == 201
    response = await client.post(
        "/v1/expenses", json=_expense_body(group["id"], amount="1.00"), headers=auth_headers(ALICE)
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_INVALID_AMOUNT"

    response = await client.get(f"/v1/expenses/group/{group['id']}", headers=auth_headers(ALICE))
    assert response.json()["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_busy_group_returns_conflict(client, ledger):
    group = await _create_group(client, members=())
    ledger.sequencer.locks.timeout = 0.05

    async with ledger.sequencer.locks.exclusive(group["id"]):
        response = await client.post(
            f"/v1/groups/{group['id']}/members", json={"user_id": BOB}, headers=auth_headers(ALICE)
        )

    assert response.status_code == 409
    assert response.json()["kind"] == "CONFLICT"
    assert response.json()["error_code"] == "ERR_GROUP_BUSY"


def test_event_socket_rejects_invalid_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/v1/groups/1/events?token=not-a-token") as websocket:
            websocket.receive_json()
    assert exc_info.value.code == 1008
