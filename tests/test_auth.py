import pytest
from flask_jwt_extended import decode_token

from tests.conftest import ADMIN_CODE, login, register


def test_register_with_matching_admin_code_creates_admin(client, db):
    response = register(client, "owner@example.com", admin_code=ADMIN_CODE)

    assert response.status_code == 201
    assert response.get_json() == {"message": "User registered successfully."}
    assert db.users.find_one({"email": "owner@example.com"})["isAdmin"] is True


def test_register_with_other_or_missing_code_creates_regular_user(client, db):
    register(client, "wrong@example.com", admin_code="guess")
    register(client, "nocode@example.com")

    assert db.users.find_one({"email": "wrong@example.com"})["isAdmin"] is False
    assert db.users.find_one({"email": "nocode@example.com"})["isAdmin"] is False


def test_unset_admin_code_never_grants_admin(make_app, db):
    client = make_app(ADMIN_CODE="").test_client()

    register(client, "blank@example.com", admin_code="")

    assert db.users.find_one({"email": "blank@example.com"})["isAdmin"] is False


def test_register_hashes_password_and_normalizes_email(client, db):
    register(client, "  Mixed@Example.COM ", password="plain-text")

    user = db.users.find_one({"email": "mixed@example.com"})
    assert user is not None
    assert user["password"] != "plain-text"
    assert login(client, "mixed@example.com", "plain-text").status_code == 200


def test_register_rejects_duplicate_email(client):
    assert register(client, "dup@example.com").status_code == 201

    response = register(client, "DUP@example.com")

    assert response.status_code == 400
    assert "already exists" in response.get_json()["message"]


def test_register_requires_email_and_password(client):
    assert client.post("/api/register", json={"email": "x@example.com"}).status_code == 400
    assert client.post("/api/register", json={"password": "pw"}).status_code == 400


def test_login_returns_token_for_stored_user_expiring_in_one_hour(app, client, db):
    register(client, "buyer@example.com", password="hunter22")

    response = login(client, "buyer@example.com", "hunter22")

    assert response.status_code == 200
    token = response.get_json()["token"]
    stored = db.users.find_one({"email": "buyer@example.com"})
    with app.app_context():
        claims = decode_token(token)
    assert claims["userId"] == str(stored["_id"])
    assert claims["isAdmin"] is False
    assert claims["exp"] - claims["iat"] == 3600
    assert "password" not in response.get_json()["user"]


def test_login_with_wrong_password_is_unauthorized(client):
    register(client, "buyer@example.com", password="hunter22")

    response = login(client, "buyer@example.com", "not-it")

    assert response.status_code == 401
    assert "token" not in response.get_json()


def test_login_with_unknown_email_is_unauthorized(client):
    response = login(client, "ghost@example.com", "whatever")

    assert response.status_code == 401
    assert "token" not in response.get_json()


def test_admin_users_listing_requires_admin(client, user_token, admin_token):
    denied = client.get(
        "/api/admin/users", headers={"Authorization": f"Bearer {user_token}"}
    )
    allowed = client.get(
        "/api/admin/users", headers={"Authorization": f"Bearer {admin_token}"}
    )

    assert denied.status_code == 403
    assert allowed.status_code == 200
    users = allowed.get_json()["users"]
    assert {user["email"] for user in users} == {
        "customer@example.com",
        "admin@example.com",
    }
    assert all("password" not in user for user in users)


def test_admin_routes_require_a_token(client):
    assert client.get("/api/admin/users").status_code == 401


@pytest.mark.parametrize(
    "path",
    ["/api/register", "/api/login", "/api/products", "/api/contact", "/api/payment"],
)
@pytest.mark.parametrize("body", [["email", "password"], "text", 42])
def test_json_bodies_that_are_not_objects_are_rejected(client, path, body):
    response = client.post(path, json=body)

    assert response.status_code == 400
