import pytest

from biblioteca import db, identity
from biblioteca.models import Account, AuditLog, User

from conftest import login, make_account


@pytest.fixture
def tokens(app):
    with app.app_context():
        admin = make_account("admin@example.org", role="Admin", uid="admin",
                             name="Admin", with_profile=True)
        editor = make_account("editor@example.org", role="Editor", uid="editor",
                              with_profile=True)
        plain = make_account("user@example.org", uid="user", with_profile=True)
        return {
            "admin": identity.issue_id_token(admin),
            "editor": identity.issue_id_token(editor),
            "user": identity.issue_id_token(plain),
        }


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


# ── /api/admin/users ───────────────────────────────────────────────────────


def test_list_users_requires_a_token(client, tokens):
    response = client.post("/api/admin/users", json={})
    assert response.status_code == 401
    assert response.get_json() == {"error": "unauthenticated", "message": "No token provided"}


def test_list_users_rejects_forged_token(client, tokens):
    response = client.post("/api/admin/users", json={"idToken": tokens["admin"] + "x"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid ID token."


def test_list_users_rejects_expired_token(app, client, tokens):
    app.config["ID_TOKEN_MAX_AGE"] = -1
    response = client.post("/api/admin/users", json={"idToken": tokens["admin"]})
    assert response.status_code == 401
    assert response.get_json()["error"] == "token-expired"


@pytest.mark.parametrize("who", ["editor", "user"])
def test_list_users_is_admin_only(client, tokens, who):
    response = client.post("/api/admin/users", json={"idToken": tokens[who]})
    assert response.status_code == 403
    assert response.get_json()["message"] == "Forbidden: User is not an admin."


def test_admin_lists_users(client, tokens):
    response = client.post("/api/admin/users", json={"idToken": tokens["admin"]})

    assert response.status_code == 200
    users = response.get_json()["users"]
    assert {u["id"] for u in users} == {"admin", "editor", "user"}
    admin = next(u for u in users if u["id"] == "admin")
    assert admin["role"] == "Admin"
    assert set(admin) == {"id", "name", "email", "role", "avatarUrl", "createdAt", "lastActivity"}


def test_list_users_honours_limit(client, tokens):
    response = client.post("/api/admin/users", json={"idToken": tokens["admin"], "limit": 2})
    assert len(response.get_json()["users"]) == 2


@pytest.mark.parametrize("limit", [0, -3, "10", True])
def test_list_users_rejects_bad_limit(client, tokens, limit):
    response = client.post("/api/admin/users", json={"idToken": tokens["admin"], "limit": limit})
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid-argument"


# ── /api/set-role ──────────────────────────────────────────────────────────


def test_set_role_requires_authentication(client, tokens):
    response = client.post("/api/set-role", json={"uid": "user", "role": "Editor"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthenticated"


@pytest.mark.parametrize("who", ["editor", "user"])
def test_set_role_requires_admin_claim(app, client, tokens, who):
    response = client.post(
        "/api/set-role", json={"uid": "user", "role": "Admin"}, headers=_bearer(tokens[who])
    )

    assert response.status_code == 403
    assert response.get_json()["message"] == "Only admins can set user roles."
    with app.app_context():
        assert db.session.get(Account, "user").claims == {}


@pytest.mark.parametrize(
    "payload", [{"uid": "user", "role": "Owner"}, {"uid": "", "role": "Editor"}, {"role": "Editor"}]
)
def test_set_role_validates_payload(client, tokens, payload):
    response = client.post("/api/set-role", json=payload, headers=_bearer(tokens["admin"]))
    assert response.status_code == 400
    assert response.get_json()["message"] == "The data provided is not valid."


def test_set_role_for_unknown_account_is_internal_error(client, tokens):
    response = client.post(
        "/api/set-role", json={"uid": "ghost", "role": "Editor"}, headers=_bearer(tokens["admin"])
    )
    assert response.status_code == 500
    assert response.get_json() == {
        "error": "internal",
        "message": "An internal error occurred while setting the user role.",
    }


def test_admin_sets_role(app, client, tokens):
    response = client.post(
        "/api/set-role", json={"uid": "user", "role": "Editor"}, headers=_bearer(tokens["admin"])
    )

    assert response.status_code == 200
    assert response.get_json() == {
        "status": "success",
        "message": "Successfully set user user to the role of Editor.",
    }
    with app.app_context():
        assert db.session.get(Account, "user").claims["role"] == "Editor"
        assert db.session.get(User, "user").role == "Editor"
        entry = AuditLog.query.one()
        assert (entry.action, entry.user_id, entry.entity_id) == ("role_change", "admin", "user")


# ── /api/id-token ──────────────────────────────────────────────────────────


def test_id_token_carries_current_claims(app, client, tokens):
    login(client, "editor@example.org")

    token = client.get("/api/id-token").get_json()["idToken"]

    with app.app_context():
        claims = identity.verify_id_token(token)
    assert claims["uid"] == "editor"
    assert claims["role"] == "Editor"
