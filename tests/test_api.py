"""Service tests: auth endpoints, the /rest table endpoints, and the HTTP client."""
import asyncio
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from apolo.database import get_db
from apolo.main import app
from apolo.remote import HttpTableStore, RemoteError, SQLTableStore, UniqueViolation
from apolo.remote.http import to_json
from apolo.routers.auth import create_access_token
from apolo.routers.tables import get_table_store
from apolo.schemas import TaskStatus
from apolo.state import Workspace


@pytest.fixture
def api(engine):
    store = SQLTableStore(engine)

    def override_db():
        db = Session(engine)
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_table_store] = lambda: store
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api):
    return TestClient(api)


@pytest.fixture
def auth_headers(alice):
    return {"Authorization": f"Bearer {create_access_token({'sub': alice.email})}"}


# -- auth -------------------------------------------------------------------

def test_signup_then_me(client):
    response = client.post("/api/auth/signup", json={
        "email": "carol@example.com", "password": "secret", "full_name": "Carol",
    })
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["full_name"] == "Carol"
    assert "hashed_password" not in body["user"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "carol@example.com"


def test_signup_twice_is_rejected(client):
    payload = {"email": "dave@example.com", "password": "secret"}
    assert client.post("/api/auth/signup", json=payload).status_code == 200
    assert client.post("/api/auth/signup", json=payload).status_code == 400


def test_signin_with_wrong_password(client):
    client.post("/api/auth/signup", json={"email": "erin@example.com", "password": "right"})
    fresh = TestClient(app)
    assert fresh.post("/api/auth/signin", json={"email": "erin@example.com", "password": "wrong"}).status_code == 401
    assert fresh.post("/api/auth/signin", json={"email": "erin@example.com", "password": "right"}).status_code == 200


def test_rest_requires_authentication(client):
    assert client.get("/api/rest/projects").status_code == 401
    assert client.get("/api/rest/projects", headers={"Authorization": "Bearer nonsense"}).status_code == 401


# -- /rest ------------------------------------------------------------------

def test_rest_crud_round(client, alice, auth_headers):
    created = []
    for title, position in (("A", 3), ("B", 1), ("C", 2)):
        response = client.post("/api/rest/projects", headers=auth_headers, json={
            "owner_id": alice.id, "title": title, "position": position,
        })
        assert response.status_code == 201
        created.append(response.json())

    listed = client.get("/api/rest/projects", headers=auth_headers,
                        params=[("owner_id", alice.id), ("order", "position.desc")])
    assert [row["title"] for row in listed.json()] == ["A", "C", "B"]

    picked = client.get("/api/rest/projects", headers=auth_headers, params=[
        ("id", f"in.{created[0]['id']},{created[1]['id']}"), ("order", "position.asc"), ("limit", "1"),
    ])
    assert [row["title"] for row in picked.json()] == ["B"]

    patched = client.patch("/api/rest/projects", headers=auth_headers,
                           params={"id": created[0]["id"]}, json={"title": "A2"})
    assert patched.status_code == 204
    row = client.get("/api/rest/projects", headers=auth_headers, params={"id": created[0]["id"]}).json()[0]
    assert row["title"] == "A2"

    deleted = client.delete("/api/rest/projects", headers=auth_headers, params={"id": created[0]["id"]})
    assert deleted.status_code == 204
    remaining = client.get("/api/rest/projects", headers=auth_headers).json()
    assert sorted(row["title"] for row in remaining) == ["B", "C"]


def test_rest_null_filter(client, alice, auth_headers):
    project = client.post("/api/rest/projects", headers=auth_headers,
                          json={"owner_id": alice.id, "title": "P"}).json()
    root = client.post("/api/rest/tasks", headers=auth_headers,
                       json={"project_id": project["id"], "title": "root"}).json()
    client.post("/api/rest/tasks", headers=auth_headers,
                json={"project_id": project["id"], "parent_id": root["id"], "title": "child"})

    roots = client.get("/api/rest/tasks", headers=auth_headers, params={"parent_id": "is.null"}).json()
    assert [row["title"] for row in roots] == ["root"]


def test_profiles_never_expose_password_hash(client, auth_headers):
    rows = client.get("/api/rest/profiles", headers=auth_headers).json()
    assert rows
    assert all("hashed_password" not in row for row in rows)


def test_duplicate_membership_is_conflict(client, alice, bob, auth_headers):
    project = client.post("/api/rest/projects", headers=auth_headers,
                          json={"owner_id": bob.id, "title": "Team"}).json()
    member = {"project_id": project["id"], "user_id": alice.id}
    assert client.post("/api/rest/project_members", headers=auth_headers, json=member).status_code == 201

    response = client.post("/api/rest/project_members", headers=auth_headers, json=member)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "23505"


def test_rest_client_errors(client, auth_headers):
    assert client.get("/api/rest/secrets", headers=auth_headers).status_code == 404
    assert client.get("/api/rest/projects", headers=auth_headers, params={"nope": "1"}).status_code == 400
    assert client.get("/api/rest/projects", headers=auth_headers, params={"position": "high"}).status_code == 400
    assert client.delete("/api/rest/projects", headers=auth_headers).status_code == 400
    assert client.get("/api/rest/projects", headers=auth_headers, params={"order": "title.sideways"}).status_code == 422


# -- HttpTableStore -----------------------------------------------------------

def _http_store(api, user):
    token = create_access_token({"sub": user.email})
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=api),
        base_url="http://test/api",
        headers={"Authorization": f"Bearer {token}"},
    )
    return HttpTableStore(client=client)


def test_http_store_maps_errors(api, alice, bob):
    async def scenario():
        remote = _http_store(api, alice)
        try:
            project = await remote.insert("projects", {"owner_id": bob.id, "title": "Team"})
            await remote.insert("project_members", {"project_id": project["id"], "user_id": alice.id})
            with pytest.raises(UniqueViolation):
                await remote.insert("project_members", {"project_id": project["id"], "user_id": alice.id})
            with pytest.raises(RemoteError) as excinfo:
                await remote.select("secrets")
            assert excinfo.value.code == "42P01"
        finally:
            await remote.aclose()

    asyncio.run(scenario())


def test_workspace_over_http(api, alice):
    async def scenario():
        remote = _http_store(api, alice)
        try:
            ws = Workspace(remote)
            assert await ws.set_identity(alice)

            project = await ws.add_project("Over the wire").result()
            ws.set_active_project(project.value)
            parent = ws.add_task(None, "Parent")
            ws.add_task(parent.value.id, "Child")
            await ws.drain()
            parent_id = ws.active_project.tasks[0].id
            ws.toggle_task_status(parent_id)
            ws.add_activity(parent_id, "shipped")
            await ws.drain()

            assert await ws.reload()
            (loaded,) = ws.active_project.tasks
            assert loaded.status is TaskStatus.COMPLETED
            assert [t.title for t in loaded.subtasks] == ["Child"]
            assert [log.content for log in loaded.activity] == ["shipped"]
        finally:
            await remote.aclose()

    asyncio.run(scenario())


def test_request_bodies_are_plain_json():
    body = to_json({"updated_at": datetime(2024, 1, 2, 3, 4, 5), "activity": [{"id": "x"}], "is_read": True})
    assert body == {"updated_at": "2024-01-02T03:04:05", "activity": [{"id": "x"}], "is_read": True}
