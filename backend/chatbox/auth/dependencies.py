"""Process-wide auth services and the bearer-token FastAPI dependency."""
import logging
from typing import Optional

from fastapi import Header

from chatbox.config import get_config
from chatbox.errors import AuthFailure, MissingToken
from chatbox.store import get_store

from .service import AuthService, PasswordHasher, TokenService

logger = logging.getLogger(__name__)

_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    """Return the shared token service, building it from config on first use."""
    global _token_service
    if _token_service is None:
        config = get_config()
        _token_service = TokenService(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.secrets.jwt.algorithm,
            expire_days=config.auth.token_expire_days,
        )
    return _token_service


def set_token_service(service: Optional[TokenService]) -> None:
    global _token_service
    _token_service = service


def get_auth_service() -> AuthService:
    config = get_config()
    return AuthService(
        store=get_store(),
        hasher=PasswordHasher(config.auth.password_hash_iterations),
        tokens=get_token_service(),
        default_avatar_url=config.auth.default_avatar_url,
        password_min_length=config.auth.password_min_length,
    )


def current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """Resolve ``Authorization: Bearer <token>`` to a user id.

    Raises:
        MissingToken: Header absent, or ``Bearer`` with no token (400).
        AuthFailure: Not a bearer credential, or token invalid or expired (401).
    """
    if not authorization or not authorization.strip():
        raise MissingToken("Missing token")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise AuthFailure("Authorization must use the Bearer scheme")
    if not token.strip():
        raise MissingToken("Missing token")
    return get_token_service().verify(token.strip())
