"""Registration and login routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from snapsecure_api.container import SecurityContainer
from snapsecure_api.routes.deps import client_ip, current_user_id, get_container
from snapsecure_api.services.accounts import AuthResult

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    """Registration request."""

    username: str = Field(min_length=3, max_length=50)
    email: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=8, max_length=72)


class LoginRequest(BaseModel):
    """Login request."""

    username: str
    password: str


class AuthResponse(BaseModel):
    """Auth response."""

    success: bool
    message: str
    user: Optional[dict] = None
    token: Optional[str] = None
    verification_required: bool = False


def _respond(result: AuthResult, success_status: int, failure_status: int) -> JSONResponse:
    body = AuthResponse(
        success=result.success,
        message=result.message,
        user=result.user,
        token=result.token,
        verification_required=result.verification_required,
    )
    return JSONResponse(
        status_code=success_status if result.success else failure_status,
        content=body.model_dump(),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    container: SecurityContainer = Depends(get_container),
):
    """Register a new user."""
    result = container.accounts.register(body.username, body.email, body.password, client_ip(request))
    return _respond(result, status.HTTP_201_CREATED, status.HTTP_400_BAD_REQUEST)


@router.post("/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    request: Request,
    container: SecurityContainer = Depends(get_container),
):
    """Log in and receive a session token."""
    result = container.accounts.login(body.username, body.password, client_ip(request))
    return _respond(result, status.HTTP_200_OK, status.HTTP_401_UNAUTHORIZED)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    user_id: int = Depends(current_user_id),
    container: SecurityContainer = Depends(get_container),
):
    """Record a logout."""
    container.accounts.logout(user_id)
