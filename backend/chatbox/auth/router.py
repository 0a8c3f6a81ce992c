"""Auth router for account endpoints.

Endpoints:
    POST /signup  - Create an account
    POST /login   - Exchange username/password for a bearer token
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .dependencies import get_auth_service
from .service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


class SignupRequest(BaseModel):
    """Request body for account creation."""
    username: str = Field(..., min_length=1, max_length=64)
    password: str
    avatarUrl: Optional[str] = None


class LoginRequest(BaseModel):
    """Request body for login."""
    username: str
    password: str


@router.post("/signup", status_code=201)
def signup(
    request: SignupRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Register a new user.

    Returns:
        201 on success; 400 if the username exists.
    """
    user = service.signup(request.username, request.password, request.avatarUrl)
    return JSONResponse(
        {"message": "User registered successfully.", "userId": user.id},
        status_code=201,
    )


@router.post("/login")
def login(
    request: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Verify credentials and issue a bearer token.

    Returns:
        ``{token, username, userId}``; 404 unknown user, 401 wrong password.
    """
    user, token = service.login(request.username, request.password)
    logger.info("[Auth] %s logged in", user.username)
    return {"token": token, "username": user.username, "userId": user.id}
