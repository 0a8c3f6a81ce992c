"""Tests for password hashing, bearer tokens and the signup/login endpoints."""
import pytest

from chatbox.auth.service import AuthService, PasswordHasher, TokenService
from chatbox.errors import AuthFailure, Conflict, InvalidPayload, NotFound


SECRET = "unit-test-secret-key-that-is-long-enough"


class TestPasswordHasher:
    def test_hash_verifies(self):
        hasher = PasswordHasher(iterations=1000)
        stored = hasher.hash("s3cret")
        assert stored.startswith("pbkdf2_sha256$1000$")
        assert hasher.verify("s3cret", stored)
        assert not hasher.verify("wrong", stored)

    def test_salt_differs_per_hash(self):
        hasher = PasswordHasher(iterations=1000)
        assert hasher.hash("same") != hasher.hash("same")

    @pytest.mark.parametrize("stored", ["", "plain", "md5$1$salt$abc", "pbkdf2_sha256$x$salt$abc"])
    def test_malformed_hash_never_verifies(self, stored):
        assert not PasswordHasher(iterations=1000).verify("pw", stored)


class TestTokenService:
    def test_round_trip_subject(self):
        tokens = TokenService(SECRET)
        assert tokens.verify(tokens.issue("user-1")) == "user-1"

    def test_expired_token_rejected(self):
        tokens = TokenService(SECRET, expire_days=-1)
        with pytest.raises(AuthFailure, match="expired"):
            tokens.verify(tokens.issue("user-1"))

    def test_foreign_signature_rejected(self):
        token = TokenService(SECRET + "-other").issue("user-1")
        with pytest.raises(AuthFailure, match="Invalid token"):
            TokenService(SECRET).verify(token)

    def test_garbage_rejected(self):
        with pytest.raises(AuthFailure):
            TokenService(SECRET).verify("not-a-jwt")


class TestAuthService:
    @pytest.fixture
    def service(self, store):
        return AuthService(
            store=store,
            hasher=PasswordHasher(iterations=1000),
            tokens=TokenService(SECRET),
            default_avatar_url="http://default",
            password_min_length=3,
        )

    def test_signup_applies_default_avatar(self, service):
        user = service.signup("alice", "pass")
        assert user.avatarUrl == "http://default"
        assert user.passwordHash != "pass"

    def test_signup_rejects_duplicate(self, service):
        service.signup("alice", "pass")
        with pytest.raises(Conflict):
            service.signup("alice", "pass")

    def test_signup_validates_input(self, service):
        with pytest.raises(InvalidPayload):
            service.signup("   ", "pass")
        with pytest.raises(InvalidPayload):
            service.signup("bob", "pw")

    def test_login(self, service):
        created = service.signup("alice", "pass")
        user, token = service.login("alice", "pass")
        assert user.id == created.id
        assert service.tokens.verify(token) == created.id

    def test_login_failures(self, service):
        service.signup("alice", "pass")
        with pytest.raises(NotFound):
            service.login("nobody", "pass")
        with pytest.raises(AuthFailure):
            service.login("alice", "nope")


class TestAuthEndpoints:
    def test_signup_and_login(self, api_client):
        resp = api_client.post("/signup", json={"username": "alice", "password": "pw"})
        assert resp.status_code == 201
        assert resp.json()["message"] == "User registered successfully."
        user_id = resp.json()["userId"]

        resp = api_client.post("/login", json={"username": "alice", "password": "pw"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["userId"] == user_id
        assert body["username"] == "alice"
        assert body["token"]

    def test_duplicate_signup_is_400(self, api_client):
        api_client.post("/signup", json={"username": "alice", "password": "pw"})
        resp = api_client.post("/signup", json={"username": "alice", "password": "pw"})
        assert resp.status_code == 400
        assert resp.json() == {"message": "User already exists."}

    def test_signup_missing_password_is_422(self, api_client):
        resp = api_client.post("/signup", json={"username": "alice"})
        assert resp.status_code == 422
        assert "message" in resp.json()

    def test_login_unknown_user_is_404(self, api_client):
        resp = api_client.post("/login", json={"username": "ghost", "password": "pw"})
        assert resp.status_code == 404
        assert resp.json() == {"message": "User not found"}

    def test_login_wrong_password_is_401(self, api_client):
        api_client.post("/signup", json={"username": "alice", "password": "pw"})
        resp = api_client.post("/login", json={"username": "alice", "password": "bad"})
        assert resp.status_code == 401

    def test_protected_route_without_token_is_400(self, api_client):
        resp = api_client.get("/dashboard")
        assert resp.status_code == 400
        assert resp.json() == {"message": "Missing token"}

    def test_protected_route_with_bad_token_is_401(self, api_client):
        resp = api_client.get("/dashboard", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401

    def test_token_without_bearer_scheme_is_401(self, api_client, make_user):
        _, headers = make_user("alice")
        token = headers["Authorization"].split(" ", 1)[1]

        assert api_client.get("/dashboard", headers={"Authorization": token}).status_code == 401
        resp = api_client.get("/dashboard", headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401
        assert api_client.get("/dashboard", headers={"Authorization": f"bearer {token}"}).status_code == 200

    def test_bearer_without_token_is_400(self, api_client):
        resp = api_client.get("/dashboard", headers={"Authorization": "Bearer "})
        assert resp.status_code == 400
