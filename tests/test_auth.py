from datetime import timedelta

from storefront.models.activity_log import ActivityLog, ActivityType
from storefront.models.token_blacklist import TokenBlacklist
from storefront.models.user import User
from storefront.tasks.security_tasks import purge_blacklisted_tokens
from storefront.utils.clock import utcnow


def _register(client, username="carol", email="carol@example.com", password="StrongPass1"):
    return client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": email, "password": password},
    )


def test_register_creates_customer_and_logs(client, db_session):
    response = _register(client)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["username"] == "carol"
    assert data["role"] == "customer"
    assert "password_hash" not in data

    entry = db_session.query(ActivityLog).one()
    assert entry.activity_type == ActivityType.REGISTER
    assert entry.username == "carol"


def test_register_duplicate(client):
    _register(client)

    response = _register(client, email="other@example.com")

    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "DuplicateAccount"


def test_register_weak_password(client):
    response = _register(client, password="short")

    assert response.status_code == 422


def test_login_me_logout(client, db_session):
    _register(client)

    response = client.post("/api/v1/auth/login", json={"username": "carol", "password": "StrongPass1"})
    assert response.status_code == 200
    token = response.json()["data"]["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    response = client.get("/api/v1/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["username"] == "carol"
    assert response.json()["data"]["last_login"] is not None

    client.cookies.clear()
    response = client.post("/api/v1/auth/logout", headers=headers)
    assert response.status_code == 200
    assert db_session.query(TokenBlacklist).count() == 1

    response = client.get("/api/v1/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["errors"][0]["code"] == "SessionRevoked"

    types = [e.activity_type for e in db_session.query(ActivityLog).order_by(ActivityLog.id).all()]
    assert types == [ActivityType.REGISTER, ActivityType.LOGIN, ActivityType.LOGOUT]


def test_login_sets_cookie(client):
    _register(client)

    response = client.post("/api/v1/auth/login", json={"username": "carol", "password": "StrongPass1"})

    assert "access_token" in response.cookies
    assert client.get("/api/v1/auth/me").status_code == 200


def test_login_wrong_password(client):
    _register(client)

    response = client.post("/api/v1/auth/login", json={"username": "carol", "password": "WrongPass9"})

    assert response.status_code == 401
    assert response.json()["errors"][0]["code"] == "InvalidCredentials"


def test_invalid_token(client):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_stale_session_version_is_rejected(client, db_session, customer, auth_for):
    headers = auth_for(customer)
    customer.session_version += 1
    db_session.commit()

    response = client.get("/api/v1/auth/me", headers=headers)

    assert response.status_code == 401
    assert response.json()["errors"][0]["code"] == "SessionRevoked"


def test_inactive_user_cannot_authenticate(client, db_session, customer, auth_for):
    headers = auth_for(customer)
    db_session.query(User).filter(User.id == customer.id).update({"is_active": False})
    db_session.commit()

    assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


def test_purge_blacklisted_tokens_keeps_live_entries(db_session, customer):
    now = utcnow()
    db_session.add_all([
        TokenBlacklist(jti="old", user_id=customer.id, expires_at=now - timedelta(hours=1)),
        TokenBlacklist(jti="live", user_id=customer.id, expires_at=now + timedelta(hours=1)),
    ])
    db_session.commit()

    assert purge_blacklisted_tokens(db_session) == 1
    assert [row.jti for row in db_session.query(TokenBlacklist).all()] == ["live"]
