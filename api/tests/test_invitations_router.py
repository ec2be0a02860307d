"""End-to-end invitation flow over HTTP."""

from __future__ import annotations

import pytest
from helpers import signup_and_login
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_acme_founder_invites_independent_user(client: AsyncClient) -> None:
    alice = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    bob = await signup_and_login(client, "independent", "bob@example.com")

    resp = await client.post("/api/v1/invitations", json={"email": "bob@example.com"}, headers=alice)
    assert resp.status_code == 201
    token = resp.json()["token"]

    mine = (await client.get("/api/v1/invitations/mine", headers=bob)).json()
    assert [(i["company_name"], i["status"]) for i in mine] == [("Acme", "pending")]

    resp = await client.post(f"/api/v1/invitations/{token}/accept", headers=bob)
    assert resp.status_code == 200
    assert resp.json()["company_name"] == "Acme"

    me = (await client.get("/api/v1/auth/me", headers=bob)).json()
    assert me["profile"]["role"] == "company_member"
    assert me["tenant"]["company_name"] == "Acme"

    resp = await client.post(f"/api/v1/invitations/{token}/accept", headers=bob)
    assert resp.status_code == 409
    assert resp.json()["code"] == "already_resolved"

    listed = (await client.get("/api/v1/invitations", headers=alice)).json()
    assert listed[0]["status"] == "accepted"
    members = (await client.get("/api/v1/profiles/members", headers=alice)).json()
    assert {m["email"] for m in members} == {"alice@example.com", "bob@example.com"}


@pytest.mark.asyncio
async def test_duplicate_live_invitation(client: AsyncClient) -> None:
    alice = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    await client.post("/api/v1/invitations", json={"email": "bob@example.com"}, headers=alice)
    resp = await client.post("/api/v1/invitations", json={"email": "Bob@example.com"}, headers=alice)
    assert resp.status_code == 409
    assert resp.json()["code"] == "duplicate_invitation"


@pytest.mark.asyncio
async def test_decline_then_reinvite(client: AsyncClient) -> None:
    alice = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    bob = await signup_and_login(client, "independent", "bob@example.com")
    token = (await client.post("/api/v1/invitations", json={"email": "bob@example.com"}, headers=alice)).json()["token"]

    assert (await client.post(f"/api/v1/invitations/{token}/decline", headers=bob)).status_code == 204
    assert (await client.get("/api/v1/invitations/mine", headers=bob)).json() == []

    resp = await client.post("/api/v1/invitations", json={"email": "bob@example.com"}, headers=alice)
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_member_cannot_invite(client: AsyncClient) -> None:
    alice = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    tenant_id = (await client.get("/api/v1/tenants/current", headers=alice)).json()["id"]
    bob = await signup_and_login(client, "member", "bob@example.com", tenant_id=tenant_id)
    resp = await client.post("/api/v1/invitations", json={"email": "eve@example.com"}, headers=bob)
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"


@pytest.mark.asyncio
async def test_unknown_token(client: AsyncClient) -> None:
    bob = await signup_and_login(client, "independent", "bob@example.com")
    resp = await client.post("/api/v1/invitations/not-a-token/accept", headers=bob)
    assert resp.status_code == 404
    assert resp.json()["code"] == "invalid_token"


@pytest.mark.asyncio
async def test_invitation_for_someone_else(client: AsyncClient) -> None:
    alice = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    eve = await signup_and_login(client, "independent", "eve@example.com")
    token = (await client.post("/api/v1/invitations", json={"email": "bob@example.com"}, headers=alice)).json()["token"]
    assert (await client.post(f"/api/v1/invitations/{token}/accept", headers=eve)).status_code == 403
