"""FastAPI dependencies for the API layer."""

from typing import Any

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.config import get_settings
from app.core.security import decode_access_token
from app.services.accounts import PROFILES, AccountService, GoogleIdentityVerifier, PasswordResetNotifier
from app.services.assistant import CareerAssistant, CompletionClient, SearchClient
from app.services.groups import GroupMembershipManager

from guidelight.store import DocumentStore

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_store(request: Request) -> DocumentStore:
    """Return the document store attached to the application on startup."""

    return request.app.state.store


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_current_profile(
    token: str = Depends(oauth2_scheme),
    store: DocumentStore = Depends(get_store),
) -> dict[str, Any]:
    """Retrieve the profile of the authenticated user from the JWT token."""

    return await get_profile_from_token(token, store)


async def get_profile_from_token(token: str, store: DocumentStore) -> dict[str, Any]:
    """Resolve a profile from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    snapshot = await store.get(PROFILES, str(sub))
    if not snapshot.exists:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return snapshot.to_dict()


def get_account_service(store: DocumentStore = Depends(get_store)) -> AccountService:
    return AccountService(store, password_min_length=settings.password_min_length)


def get_group_manager(store: DocumentStore = Depends(get_store)) -> GroupMembershipManager:
    return GroupMembershipManager(store)


def get_identity_verifier(client: httpx.AsyncClient = Depends(get_http_client)) -> GoogleIdentityVerifier:
    return GoogleIdentityVerifier(settings.google_client_id, client)


def get_reset_notifier(client: httpx.AsyncClient = Depends(get_http_client)) -> PasswordResetNotifier:
    url = str(settings.password_reset_webhook_url) if settings.password_reset_webhook_url else None
    return PasswordResetNotifier(url, client)


def get_assistant(client: httpx.AsyncClient = Depends(get_http_client)) -> CareerAssistant:
    search = SearchClient(
        client,
        api_key=settings.google_search_api_key,
        engine_id=settings.google_search_cx_id,
        url=settings.google_search_url,
    )
    completion = CompletionClient(
        client,
        api_key=settings.llm_api_key,
        url=settings.llm_api_url,
        model=settings.llm_model,
    )
    return CareerAssistant(search, completion)
