import pytest

from growi_api.core.security import get_password_hash
from growi_api.models.audit import AuditEvent
from growi_api.models.security import RefreshToken
from growi_api.models.task import BackgroundTask
from growi_api.models.user import User
from growi_api.services.token_service import token_service
from growi_api.services.user_service import UserService

ADMIN_PASSWORD = "rootbeer99"


def _create_user(db, email, role="USER", status="ACTIVE", first_name=None, last_name=None):
    user = User(
        email=email,
        password_hash=get_password_hash(ADMIN_PASSWORD),
        role=role,
        status=status,
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _create_user(db, "admin@example.com", role="ADMIN")


@pytest.fixture
def admin_headers(client, admin):
    response = client.post(
        "/api/v1/auth/login", json={"email": admin.email, "password": ADMIN_PASSWORD}
    )
    return {"Authorization": f"Bearer {response.json()['tokens']['accessToken']}"}


def test_admin_routes_require_admin_role(client, db):
    user = _create_user(db, "alice@example.com")
    token = client.post(
        "/api/v1/auth/login", json={"email": user.email, "password": ADMIN_PASSWORD}
    ).json()["tokens"]["accessToken"]

    assert client.get("/api/v1/admin/users").status_code == 401
    forbidden = client.get("/api/v1/admin/users", headers={"Authorization": f"Bearer {token}"})
    assert forbidden.status_code == 403


def test_list_users_filters_and_paginates(client, db, admin_headers):
    _create_user(db, "alice@example.com", first_name="Alice")
    _create_user(db, "bob@example.com", status="SUSPENDED", last_name="Builder")
    _create_user(db, "carol@example.com", role="EDITOR")

    response = client.get(
        "/api/v1/admin/users",
        params={"limit": 2, "page": 1, "sort": "email:asc"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert [user["email"] for user in body["users"]] == ["admin@example.com", "alice@example.com"]
    assert body["pagination"] == {"total": 4, "page": 1, "limit": 2, "totalPages": 2}

    suspended = client.get("/api/v1/admin/users", params={"status": "SUSPENDED"}, headers=admin_headers)
    assert [user["email"] for user in suspended.json()["users"]] == ["bob@example.com"]

    editors = client.get("/api/v1/admin/users", params={"role": "EDITOR"}, headers=admin_headers)
    assert [user["email"] for user in editors.json()["users"]] == ["carol@example.com"]

    search = client.get("/api/v1/admin/users", params={"search": "build"}, headers=admin_headers)
    assert [user["email"] for user in search.json()["users"]] == ["bob@example.com"]


def test_list_users_rejects_unknown_sort_field(client, admin_headers):
    response = client.get("/api/v1/admin/users", params={"sort": "passwordHash:asc"}, headers=admin_headers)
    assert response.status_code == 400


def test_user_stats(client, db, admin_headers):
    _create_user(db, "alice@example.com")
    _create_user(db, "bob@example.com", status="SUSPENDED")
    _create_user(db, "carol@example.com", status="PENDING", role="EDITOR")

    body = client.get("/api/v1/admin/users/stats", headers=admin_headers).json()

    assert body["total"] == 4
    assert body["byStatus"] == {"active": 2, "suspended": 1, "pending": 1}
    assert body["byRole"] == {"ADMIN": 1, "USER": 2, "EDITOR": 1}


def test_get_user(client, db, admin_headers):
    user = _create_user(db, "alice@example.com")

    assert client.get(f"/api/v1/admin/users/{user.id}", headers=admin_headers).json()["email"] == user.email
    assert client.get("/api/v1/admin/users/9999", headers=admin_headers).status_code == 404


def test_create_user_with_invitation(client, db, admin, admin_headers):
    response = client.post(
        "/api/v1/admin/users",
        params={"sendInvitation": "true"},
        json={"email": "Dave@Example.com", "password": "garden123", "role": "EDITOR", "status": "PENDING"},
        headers=admin_headers,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "dave@example.com"
    assert body["role"] == "EDITOR"
    assert body["status"] == "PENDING"
    assert db.query(BackgroundTask).one().idempotency_key == f"welcome:{body['id']}"

    event = db.query(AuditEvent).filter(AuditEvent.action == "create_user").one()
    assert event.actor_id == admin.id
    assert event.target_user_id == body["id"]


def test_create_user_without_invitation_queues_nothing(client, db, admin_headers):
    client.post(
        "/api/v1/admin/users",
        json={"email": "dave@example.com", "password": "garden123"},
        headers=admin_headers,
    )
    assert db.query(BackgroundTask).count() == 0


def test_create_user_conflict_and_weak_password(client, db, admin_headers):
    _create_user(db, "alice@example.com")

    duplicate = client.post(
        "/api/v1/admin/users",
        json={"email": "alice@example.com", "password": "garden123"},
        headers=admin_headers,
    )
    weak = client.post(
        "/api/v1/admin/users",
        json={"email": "erin@example.com", "password": "garden"},
        headers=admin_headers,
    )

    assert duplicate.status_code == 409
    assert weak.status_code == 400


def test_create_user_racing_a_duplicate_email_is_a_conflict(client, db, admin_headers, monkeypatch):
    _create_user(db, "alice@example.com")
    # The pre-check misses the row, as when another request inserts it first
    monkeypatch.setattr(UserService, "get_user_by_email", staticmethod(lambda db, email: None))

    response = client.post(
        "/api/v1/admin/users",
        json={"email": "alice@example.com", "password": "garden123"},
        headers=admin_headers,
    )

    assert response.status_code == 409
    assert db.query(User).filter(User.email == "alice@example.com").count() == 1


def test_suspending_a_user_revokes_their_sessions(client, db, admin_headers):
    user = _create_user(db, "alice@example.com")
    token_service.issue_for_user(db, user)
    token_service.issue_for_user(db, user)

    response = client.patch(
        f"/api/v1/admin/users/{user.id}",
        json={"status": "SUSPENDED", "firstName": "Al"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "SUSPENDED"
    assert response.json()["firstName"] == "Al"
    live = db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id, RefreshToken.revoked == False  # noqa: E712
    )
    assert live.count() == 0


def test_toggle_status(client, db, admin_headers):
    user = _create_user(db, "alice@example.com")

    first = client.post(f"/api/v1/admin/users/{user.id}/toggle-status", headers=admin_headers)
    second = client.post(f"/api/v1/admin/users/{user.id}/toggle-status", headers=admin_headers)

    assert first.json()["status"] == "SUSPENDED"
    assert second.json()["status"] == "ACTIVE"


def test_reset_password_issues_temporary_password(client, db, admin_headers):
    user = _create_user(db, "alice@example.com")
    old = token_service.issue_for_user(db, user)

    response = client.post(f"/api/v1/admin/users/{user.id}/reset-password", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Temporary password generated"
    login = client.post(
        "/api/v1/auth/login", json={"email": user.email, "password": body["temporaryPassword"]}
    )
    assert login.status_code == 200
    assert client.post("/api/v1/auth/refresh", json={"refreshToken": old.refresh_token}).status_code == 401


def test_delete_user(client, db, admin, admin_headers):
    user = _create_user(db, "alice@example.com")
    token_service.issue_for_user(db, user)
    user_id, admin_id = user.id, admin.id

    assert client.delete(f"/api/v1/admin/users/{user_id}", headers=admin_headers).status_code == 204
    assert client.delete(f"/api/v1/admin/users/{user_id}", headers=admin_headers).status_code == 404
    assert client.delete(f"/api/v1/admin/users/{admin_id}", headers=admin_headers).status_code == 400
    db.expire_all()
    assert db.query(User).filter(User.email == "alice@example.com").count() == 0
    assert db.query(RefreshToken).filter(RefreshToken.user_id == user_id).count() == 0


def test_audit_events_are_listed_newest_first(client, db, admin_headers):
    user = _create_user(db, "alice@example.com")
    client.post(f"/api/v1/admin/users/{user.id}/toggle-status", headers=admin_headers)
    client.post(f"/api/v1/admin/users/{user.id}/reset-password", headers=admin_headers)

    events = client.get("/api/v1/admin/audit-events", headers=admin_headers).json()

    assert [event["action"] for event in events] == ["reset_user_password", "toggle_user_status"]
    assert events[0]["actorEmail"] == "admin@example.com"
    assert events[0]["metadata"] == {"emailed": False}

    filtered = client.get(
        "/api/v1/admin/audit-events", params={"action": "toggle_user_status"}, headers=admin_headers
    ).json()
    assert len(filtered) == 1
    assert filtered[0]["targetUserId"] == user.id
