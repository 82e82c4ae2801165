"""
User router: signup, signin, signout, info.
"""
import time

from fastapi import APIRouter, Depends, HTTPException, Request, status

from cloudstorage.config import get_settings
from cloudstorage.dependencies.auth import get_current_active_user
from cloudstorage.dependencies.services import get_auth_service
from cloudstorage.exceptions import InvalidArgument
from cloudstorage.middlewares.rate_limit_middleware import get_rate_limit_decorator
from cloudstorage.models.user import User
from cloudstorage.schemas.common import Envelope, ok
from cloudstorage.schemas.user import SigninResponse, UserCreate, UserLogin, UserResponse
from cloudstorage.services.auth import AuthService
from cloudstorage.utils.prometheus_metrics import (
    login_duration_seconds,
    user_login_total,
    user_registration_total,
)

router = APIRouter(prefix="/user", tags=["User"])

settings = get_settings()


@router.post(
    "/signup",
    response_model=Envelope[UserResponse],
    summary="Register a new user",
)
@get_rate_limit_decorator(settings.auth_rate_limit)
async def signup(
    request: Request,
    user_data: UserCreate,
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    """
    Register a new user account.

    - **username**: 3-64 characters, must be unique
    - **password**: at least 5 characters
    """
    try:
        user = await auth_service.register(user_data)
    except ValueError as e:
        user_registration_total.labels(result="failure").inc()
        raise InvalidArgument(str(e))

    user_registration_total.labels(result="success").inc()
    return ok(UserResponse.model_validate(user).model_dump())


@router.post(
    "/signin",
    response_model=Envelope[SigninResponse],
    summary="Login to get access token",
)
@get_rate_limit_decorator(settings.auth_rate_limit)
async def signin(
    request: Request,
    login_data: UserLogin,
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    """
    Login with username and password.

    Returns a JWT that must be sent as `Authorization: Bearer <token>`. Signing in
    again replaces the previous token.
    """
    start = time.perf_counter()
    token = await auth_service.login(login_data.username, login_data.password)
    result = "success" if token else "failure"
    login_duration_seconds.labels(result=result).observe(time.perf_counter() - start)
    user_login_total.labels(result=result).inc()

    if not token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Wrong username or password",
        )

    payload = SigninResponse(
        file_loc=str(request.base_url),
        username=login_data.username,
        access_token=token,
    )
    return ok(payload.model_dump())


@router.post("/signout", response_model=Envelope[None], summary="Revoke the current token")
async def signout(
    current_user: User = Depends(get_current_active_user),
    auth_service: AuthService = Depends(get_auth_service),
) -> dict:
    await auth_service.logout(current_user.username)
    return ok()


@router.get("/info", response_model=Envelope[UserResponse], summary="Get current user info")
async def user_info(current_user: User = Depends(get_current_active_user)) -> dict:
    return ok(UserResponse.model_validate(current_user).model_dump())
