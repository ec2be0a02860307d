"""Tests for the note endpoints."""

from __future__ import annotations

import pytest
import pytest_asyncio
from helpers import signup_and_login
from httpx import AsyncClient


@pytest_asyncio.fixture
async def headers(client: AsyncClient) -> dict[str, str]:
    return await signup_and_login(client, "independent", "carol@example.com")


@pytest.mark.asyncio
async def test_crud_roundtrip(client: AsyncClient, headers: dict[str, str]) -> None:
    resp = await client.post("/api/v1/notes", json={"title": "Plan", "tags": ["Work"]}, headers=headers)
    assert resp.status_code == 201
    note = resp.json()
    assert note["tags"] == ["Work"]

    resp = await client.patch(f"/api/v1/notes/{note['id']}", json={"content": "step 1"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["content"] == "step 1"

    resp = await client.post(f"/api/v1/notes/{note['id']}/favorite", headers=headers)
    assert resp.json()["is_favorite"] is True

    listed = (await client.get("/api/v1/notes", headers=headers)).json()
    assert [n["id"] for n in listed] == [note["id"]]

    assert (await client.delete(f"/api/v1/notes/{note['id']}", headers=headers)).status_code == 204
    assert (await client.get("/api/v1/notes", headers=headers)).json() == []
    fetched = await client.get(f"/api/v1/notes/{note['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["deleted_at"] is not None


@pytest.mark.asyncio
async def test_quota_enforced_over_http(client: AsyncClient, headers: dict[str, str]) -> None:
    for i in range(3):
        resp = await client.post("/api/v1/notes", json={"title": f"n{i}"}, headers=headers)
        assert resp.status_code == 201

    resp = await client.post("/api/v1/notes", json={"title": "n3"}, headers=headers)
    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "quota_exceeded"
    assert body["context"]["limit"] == 3

    stats = (await client.get("/api/v1/notes/stats", headers=headers)).json()
    assert stats == {
        "total_notes": 3,
        "favorite_notes": 0,
        "max_notes": 3,
        "can_create_more": False,
        "subscription_type": "standard",
    }


@pytest.mark.asyncio
async def test_other_users_note_is_not_found(client: AsyncClient, headers: dict[str, str]) -> None:
    note = (await client.post("/api/v1/notes", json={"title": "Mine"}, headers=headers)).json()
    other = await signup_and_login(client, "independent", "dave@example.com")
    assert (await client.get(f"/api/v1/notes/{note['id']}", headers=other)).status_code == 404
    assert (await client.delete(f"/api/v1/notes/{note['id']}", headers=other)).status_code == 404


@pytest.mark.asyncio
async def test_admin_views_member_notes(client: AsyncClient) -> None:
    admin = await signup_and_login(client, "company", "alice@example.com", company_name="Acme")
    tenant_id = (await client.get("/api/v1/tenants/current", headers=admin)).json()["id"]
    member = await signup_and_login(client, "member", "bob@example.com", tenant_id=tenant_id)
    member_id = (await client.get("/api/v1/profiles/me", headers=member)).json()["id"]
    await client.post("/api/v1/notes", json={"title": "Weekly"}, headers=member)

    resp = await client.get(f"/api/v1/notes/members/{member_id}", headers=admin)
    assert resp.status_code == 200
    assert [n["title"] for n in resp.json()] == ["Weekly"]
    stats = await client.get(f"/api/v1/notes/members/{member_id}/stats", headers=admin)
    assert stats.json()["total_notes"] == 1

    admin_id = (await client.get("/api/v1/profiles/me", headers=admin)).json()["id"]
    resp = await client.get(f"/api/v1/notes/members/{admin_id}", headers=member)
    assert resp.status_code == 403
