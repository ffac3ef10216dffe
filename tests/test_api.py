"""Tests for HTTP endpoints."""

import time
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from sitebuilder import web
from sitebuilder.core import security


class TestAuthEndpoints:
    def test_register_and_login(self, client):
        response = client.post(
            "/register", json={"username": "dana", "email": "dana@example.com", "password": "pw"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["username"] == "dana"
        assert "password_hash" not in body and "salt" not in body

        response = client.post("/login", json={"username_or_email": "dana@example.com", "password": "pw"})
        assert response.status_code == 200
        assert response.json()["user"]["username"] == "dana"
        assert response.json()["csrf_token"]
        assert "session_id" in response.cookies

        assert client.get("/me").json()["email"] == "dana@example.com"

    def test_register_duplicate_is_conflict(self, client, alice):
        response = client.post(
            "/register", json={"username": "Alice", "email": "x@example.com", "password": "pw"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_register_invalid_email(self, client):
        response = client.post("/register", json={"username": "e", "email": "nope", "password": "pw"})
        assert response.status_code == 400

    def test_bad_login(self, client, alice):
        response = client.post("/login", json={"username_or_email": "alice", "password": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid username/email or password"

    def test_login_rate_limited(self, client, alice):
        for _ in range(web.MAX_LOGIN_ATTEMPTS):
            client.post("/login", json={"username_or_email": "alice", "password": "wrong"})

        response = client.post("/login", json={"username_or_email": "alice", "password": "alice-pw"})
        assert response.status_code == 429

    def test_me_requires_login(self, client):
        assert client.get("/me").status_code == 401

    def test_mutation_requires_csrf(self, client, alice, login):
        login(client, "alice", "alice-pw")
        response = client.post("/projects", json={"name": "No token"})
        assert response.status_code == 403

    def test_logout(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")
        assert client.post("/logout", headers=headers).status_code == 200
        assert web.sessions == {}

    def test_change_password(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")

        bad = client.post(
            "/me/password", json={"current_password": "nope", "new_password": "x"}, headers=headers,
        )
        assert bad.status_code == 401

        ok = client.post(
            "/me/password", json={"current_password": "alice-pw", "new_password": "fresh"}, headers=headers,
        )
        assert ok.status_code == 200

        other = TestClient(web.app)
        login(other, "alice", "fresh")

    def test_change_password_ends_other_sessions(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")
        laptop = TestClient(web.app)
        login(laptop, "alice", "alice-pw")

        response = client.post(
            "/me/password", json={"current_password": "alice-pw", "new_password": "fresh"}, headers=headers,
        )
        assert response.status_code == 200

        assert laptop.get("/me").status_code == 401
        assert client.get("/me").status_code == 200

    def test_session_rejected_after_deactivation_elsewhere(self, client, db_session, alice, login):
        login(client, "alice", "alice-pw")
        assert client.get("/me").status_code == 200

        security.deactivate_user(db_session, alice.id)

        assert client.get("/me").status_code == 401
        assert web.sessions == {}

    def test_expired_sessions_pruned_on_login(self, client, alice, bob, login):
        login(client, "alice", "alice-pw")
        for s in web.sessions.values():
            s["expires"] = datetime.now(timezone.utc) - timedelta(minutes=1)

        login(TestClient(web.app), "bob", "bob-pw")

        assert [s["user_id"] for s in web.sessions.values()] == [bob.id]

    def test_stale_login_attempts_pruned(self, client, alice):
        old = time.time() - web.LOGIN_WINDOW_SECONDS - 1
        web.login_attempts[("mallory", "10.0.0.1")] = [old, old]

        client.post("/login", json={"username_or_email": "alice", "password": "wrong"})

        assert ("mallory", "10.0.0.1") not in web.login_attempts
        assert len(web.login_attempts) == 1

    def test_update_profile(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")
        response = client.put("/me/profile", json={"bio": "Designer"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["bio"] == "Designer"

    def test_deactivate_self_ends_sessions(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")

        assert client.post("/me/deactivate", headers=headers).status_code == 200
        assert web.sessions == {}

        response = client.post("/login", json={"username_or_email": "alice", "password": "alice-pw"})
        assert response.status_code == 401

    def test_security_headers(self, client):
        response = client.get("/palette")
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAdminEndpoints:
    def test_list_users_requires_admin(self, client, alice, login):
        login(client, "alice", "alice-pw")
        assert client.get("/users").status_code == 403

    def test_admin_lists_and_deactivates(self, client, admin, alice, login):
        headers = login(client, "root", "root-pw")

        users = client.get("/users").json()
        assert {u["username"] for u in users} == {"root", "alice"}

        response = client.post(f"/users/{alice.id}/deactivate", headers=headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

    def test_deactivate_unknown_user(self, client, admin, login):
        headers = login(client, "root", "root-pw")
        assert client.post("/users/ghost/deactivate", headers=headers).status_code == 404

    def test_admin_copies_settings(self, client, admin, alice, bob, login):
        alice_client = TestClient(web.app)
        alice_headers = login(alice_client, "alice", "alice-pw")
        alice_client.put("/settings/theme", json={"value": '"dark"'}, headers=alice_headers)

        headers = login(client, "root", "root-pw")
        response = client.post(
            f"/users/{alice.id}/settings/copy", json={"target_user_id": bob.id}, headers=headers,
        )
        assert response.json() == {"copied": 1}

        bob_client = TestClient(web.app)
        login(bob_client, "bob", "bob-pw")
        assert bob_client.get("/settings/theme").json()["value"] == '"dark"'


class TestProjectEndpoints:
    @pytest.fixture
    def alice_client(self, client, alice, login):
        return client, login(client, "alice", "alice-pw")

    def test_project_lifecycle(self, alice_client):
        client, headers = alice_client

        created = client.post(
            "/projects", json={"name": "Portfolio", "tags": ["personal"]}, headers=headers,
        )
        assert created.status_code == 201
        project = created.json()
        assert project["tags"] == ["personal"]
        assert '"isCanvas":true' in project["content"]

        listed = client.get("/projects").json()
        assert [p["id"] for p in listed] == [project["id"]]

        updated = client.put(
            f"/projects/{project['id']}",
            json={"name": "Portfolio v2", "content": '{"nodes":{"a":1}}', "is_public": True},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["content"] == '{"nodes":{"a":1}}'
        assert updated.json()["created_at"] == project["created_at"]

        exported = client.get(f"/projects/{project['id']}/export").json()
        assert exported["component_name"] == "PortfolioV2"
        assert "Portfolio v2" in exported["source"]

        assert client.delete(f"/projects/{project['id']}", headers=headers).status_code == 204
        assert client.get(f"/projects/{project['id']}").status_code == 404

    def test_public_project_visible_anonymously(self, alice_client):
        client, headers = alice_client
        project = client.post("/projects", json={"name": "Open", "is_public": True}, headers=headers).json()

        anonymous = TestClient(web.app)
        assert anonymous.get(f"/projects/{project['id']}").status_code == 200
        assert [p["id"] for p in anonymous.get("/projects/public").json()] == [project["id"]]

    def test_private_project_hidden(self, alice_client):
        client, headers = alice_client
        project = client.post("/projects", json={"name": "Secret"}, headers=headers).json()

        anonymous = TestClient(web.app)
        assert anonymous.get(f"/projects/{project['id']}").status_code == 404

    def test_sharing(self, alice_client, bob, login):
        client, headers = alice_client
        project = client.post("/projects", json={"name": "Team"}, headers=headers).json()

        shared = client.post(
            f"/projects/{project['id']}/members",
            json={"user_id": bob.id, "role": "editor", "can_edit": True},
            headers=headers,
        )
        assert shared.status_code == 200
        assert shared.json()["role"] == "editor"

        bob_client = TestClient(web.app)
        bob_headers = login(bob_client, "bob", "bob-pw")
        assert [p["id"] for p in bob_client.get("/projects").json()] == [project["id"]]

        edit = bob_client.put(
            f"/projects/{project['id']}", json={"name": "Team (bob)", "content": "{}"}, headers=bob_headers,
        )
        assert edit.status_code == 200

        denied = bob_client.delete(f"/projects/{project['id']}", headers=bob_headers)
        assert denied.status_code == 403

        members = client.get(f"/projects/{project['id']}/members").json()
        assert {m["role"] for m in members} == {"owner", "editor"}

        removed = client.delete(f"/projects/{project['id']}/members/{bob.id}", headers=headers)
        assert removed.status_code == 204
        assert bob_client.get("/projects").json() == []

    def test_share_invalid_role(self, alice_client, bob):
        client, headers = alice_client
        project = client.post("/projects", json={"name": "Team"}, headers=headers).json()
        response = client.post(
            f"/projects/{project['id']}/members", json={"user_id": bob.id, "role": "god"}, headers=headers,
        )
        assert response.status_code == 400

    def test_content_must_be_string(self, alice_client):
        client, headers = alice_client
        response = client.post("/projects", json={"name": "X", "content": {"root": {}}}, headers=headers)
        assert response.status_code == 422


class TestComponentEndpoints:
    def test_component_flow(self, client, alice, bob, login):
        headers = login(client, "alice", "alice-pw")

        created = client.post(
            "/components",
            json={"name": "Navbar", "content": '{"type":"container"}', "is_public": True},
            headers=headers,
        )
        assert created.status_code == 201
        component = created.json()
        assert component["usage_count"] == 0

        used = client.post(f"/components/{component['id']}/use", headers=headers)
        assert used.json()["usage_count"] == 1

        bob_client = TestClient(web.app)
        bob_headers = login(bob_client, "bob", "bob-pw")
        clone = bob_client.post(
            f"/components/{component['id']}/clone", json={"name": "My navbar"}, headers=bob_headers,
        )
        assert clone.status_code == 201
        assert clone.json()["owner_id"] == bob.id
        assert clone.json()["is_public"] is False

        assert client.get(f"/components/{component['id']}").json()["usage_count"] == 2

        denied = bob_client.delete(f"/components/{component['id']}", headers=bob_headers)
        assert denied.status_code == 403

        assert {c["name"] for c in bob_client.get("/components").json()} == {"Navbar", "My navbar"}

        updated = client.put(
            f"/components/{component['id']}",
            json={"name": "Navbar", "content": "{}", "is_public": False},
            headers=headers,
        )
        assert updated.json()["usage_count"] == 2

        assert client.delete(f"/components/{component['id']}", headers=headers).status_code == 204

    def test_clone_private_component_denied(self, client, alice, bob, login):
        headers = login(client, "alice", "alice-pw")
        component = client.post(
            "/components", json={"name": "Private", "content": "{}"}, headers=headers,
        ).json()

        bob_client = TestClient(web.app)
        bob_headers = login(bob_client, "bob", "bob-pw")
        response = bob_client.post(
            f"/components/{component['id']}/clone", json={"name": "Mine"}, headers=bob_headers,
        )
        assert response.status_code == 403


class TestSettingsEndpoints:
    def test_settings_crud(self, client, alice, login):
        headers = login(client, "alice", "alice-pw")

        assert client.get("/settings/theme").status_code == 404

        put = client.put("/settings/theme", json={"value": '"dark"'}, headers=headers)
        assert put.status_code == 200
        assert put.json()["key"] == "theme"

        client.put("/settings/grid", json={"value": "true"}, headers=headers)
        assert [s["key"] for s in client.get("/settings").json()] == ["grid", "theme"]

        assert client.delete("/settings/theme", headers=headers).status_code == 204
        assert client.delete("/settings/theme", headers=headers).status_code == 204

        assert client.delete("/settings", headers=headers).json() == {"deleted": 1}
        assert client.get("/settings").json() == []


class TestPaletteEndpoints:
    def test_palette(self, client):
        items = client.get("/palette").json()
        assert [i["type"] for i in items] == ["text", "button", "image", "container", "card"]

    def test_unknown_palette_item(self, client):
        response = client.get("/palette/video")
        assert response.status_code == 400


def test_root_serves_shell(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "Site Builder" in response.text
