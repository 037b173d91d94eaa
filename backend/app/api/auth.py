"""Authentication API endpoints."""

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.api.deps import (
    get_account_service,
    get_current_profile,
    get_identity_verifier,
    get_reset_notifier,
)
from app.config import get_settings
from app.core.security import create_access_token
from app.schemas import (
    FederatedLoginRequest,
    LoginRequest,
    OwnProfileRead,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    Token,
)
from app.services.accounts import AccountService, GoogleIdentityVerifier, PasswordResetNotifier

router = APIRouter()
settings = get_settings()


def _issue_token(profile: dict[str, Any]) -> Token:
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token({"sub": profile["id"]}, expires_delta=access_token_expires)
    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=int(access_token_expires.total_seconds()),
        user_id=profile["id"],
    )


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> Token:
    """Create an account and sign the new user in."""

    profile = await accounts.register(
        email=payload.email,
        password=payload.password,
        confirm_password=payload.confirm_password,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return _issue_token(profile)


@router.post("/login", response_model=Token)
async def login_user(
    credentials: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
) -> Token:
    """Authenticate with e-mail and password and return a JWT access token."""

    profile = await accounts.authenticate(credentials.email, credentials.password)
    return _issue_token(profile)


@router.post("/federated", response_model=Token)
async def federated_login(
    payload: FederatedLoginRequest,
    accounts: AccountService = Depends(get_account_service),
    verifier: GoogleIdentityVerifier = Depends(get_identity_verifier),
) -> Token:
    """Sign in with a Google ID token, creating the profile on first use."""

    identity = await verifier.verify(payload.id_token)
    profile = await accounts.federated_sign_in(identity)
    return _issue_token(profile)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout_user(
    current_profile: dict[str, Any] = Depends(get_current_profile),
    accounts: AccountService = Depends(get_account_service),
) -> None:
    await accounts.sign_out(current_profile["id"])


@router.get("/me", response_model=OwnProfileRead)
async def read_current_profile(current_profile: dict[str, Any] = Depends(get_current_profile)) -> dict[str, Any]:
    return current_profile


@router.post("/password-reset", status_code=status.HTTP_202_ACCEPTED)
async def request_password_reset(
    payload: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    accounts: AccountService = Depends(get_account_service),
    notifier: PasswordResetNotifier = Depends(get_reset_notifier),
) -> dict[str, str]:
    """Start a password reset; the response does not reveal whether the address exists."""

    token = await accounts.request_password_reset(payload.email)
    if token is not None:
        background_tasks.add_task(notifier.notify, payload.email, token)
    return {"status": "accepted"}


@router.post("/password-reset/confirm", status_code=status.HTTP_204_NO_CONTENT)
async def confirm_password_reset(
    payload: PasswordResetConfirm,
    accounts: AccountService = Depends(get_account_service),
) -> None:
    await accounts.confirm_password_reset(payload.token, payload.password, payload.confirm_password)
