"""Credential verification and bearer-token issuance.

Implements the two capabilities the chat core consumes:
1. ``issue(user_id) -> token``
2. ``verify(token) -> user_id`` (raises AuthFailure)

plus the signup/login flow that sits on top of the store.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from chatbox.errors import AuthFailure, Conflict, InvalidPayload, NotFound
from chatbox.store import ChatStore, User

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"


class PasswordHasher:
    """PBKDF2-HMAC-SHA256 with a per-password random salt.

    Hashes are stored as ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``
    so the iteration count can be raised later without breaking old rows.
    """

    def __init__(self, iterations: int = 200_000):
        self.iterations = iterations

    def hash(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = self._derive(password, salt, self.iterations)
        return f"{HASH_SCHEME}${self.iterations}${salt}${digest}"

    def verify(self, password: str, stored: str) -> bool:
        try:
            scheme, iterations, salt, digest = stored.split("$")
            rounds = int(iterations)
        except ValueError:
            return False
        if scheme != HASH_SCHEME:
            return False
        candidate = self._derive(password, salt, rounds)
        return hmac.compare_digest(candidate, digest)

    @staticmethod
    def _derive(password: str, salt: str, iterations: int) -> str:
        return hashlib.pbkdf2_hmac(
            "sha256", password.encode(), salt.encode(), iterations
        ).hex()


class TokenService:
    """Issues and validates HS256 JWTs whose subject is the user id."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_days: int = 30):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days

    def issue(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(days=self.expire_days),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """Return the user id carried by *token*.

        Raises:
            AuthFailure: If the token is expired, malformed or has no subject.
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthFailure("Token expired") from exc
        except InvalidTokenError as exc:
            raise AuthFailure("Invalid token") from exc

        user_id = payload.get("sub")
        if not user_id:
            raise AuthFailure("Invalid token")
        return user_id


class AuthService:
    """Signup and login against the store."""

    def __init__(
        self,
        store: ChatStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        default_avatar_url: str = "",
        password_min_length: int = 1,
    ):
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.default_avatar_url = default_avatar_url
        self.password_min_length = password_min_length

    def signup(self, username: str, password: str, avatar_url: Optional[str] = None) -> User:
        """Create an account.

        Raises:
            InvalidPayload: Empty username or too-short password.
            Conflict: Username already taken.
        """
        username = username.strip()
        if not username:
            raise InvalidPayload("Username is required")
        if len(password) < self.password_min_length:
            raise InvalidPayload(
                f"Password must be at least {self.password_min_length} characters"
            )

        if self.store.get_user_by_username(username) is not None:
            raise Conflict("User already exists.")

        user = self.store.create_user(
            username=username,
            password_hash=self.hasher.hash(password),
            avatar_url=avatar_url or self.default_avatar_url,
        )
        logger.info("[Auth] Registered user %s (%s)", user.username, user.id)
        return user

    def login(self, username: str, password: str) -> tuple[User, str]:
        """Check credentials and issue a token.

        Returns:
            Tuple of (user, token).

        Raises:
            NotFound: Unknown username.
            AuthFailure: Wrong password.
        """
        user = self.store.get_user_by_username(username.strip())
        if user is None:
            raise NotFound("User not found")
        if not self.hasher.verify(password, user.passwordHash):
            logger.info("[Auth] Rejected password for %s", username)
            raise AuthFailure("Invalid password")
        return user, self.tokens.issue(user.id)
