"""Identity flows: registration, sign-in, role selection and password reset."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from email_validator import EmailNotValidError, validate_email

from app.core.security import (
    ResetTokenError,
    consume_password_reset_token,
    create_password_reset_token,
    get_password_hash,
    verify_password,
)
from app.models import ProfileRole
from app.monitoring.metrics import auth_events_total
from app.services.errors import (
    AuthenticationError,
    NotFoundError,
    UsernameTakenError,
    ValidationError,
)

from guidelight.store.base import DocumentExistsError, DocumentStore


logger = logging.getLogger(__name__)

PROFILES = "profiles"
USERNAMES = "usernames"
CREDENTIALS = "credentials"

USERNAME_PATTERN = re.compile(r"^[a-z0-9_.]{3,20}$")
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


@dataclass(slots=True)
class FederatedIdentity:
    """What the identity provider vouches for after a federated sign-in."""

    provider: str
    subject: str
    email: str | None
    display_name: str | None = None
    avatar_url: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError("Please enter a valid email address") from exc


def normalize_username(username: str) -> str:
    handle = username.strip().lower()
    if not USERNAME_PATTERN.fullmatch(handle):
        raise ValidationError(
            "Username must be 3-20 characters of lowercase letters, digits, '_' or '.'"
        )
    return handle


def handle_base(display_name: str | None, email: str | None) -> str:
    """Derive a handle candidate from a display name or e-mail local part."""

    raw = ""
    if display_name:
        raw = re.sub(r"\s+", "", display_name).lower()
    if not raw and email:
        raw = email.split("@", 1)[0].lower()
    base = re.sub(r"[^a-z0-9_.]", "", raw)[:16]
    return base if len(base) >= 3 else (base + "user")[:16]


class AccountService:
    """Profiles, handle reservations and credentials kept in the document store."""

    def __init__(self, store: DocumentStore, *, password_min_length: int = 8) -> None:
        self._store = store
        self._password_min_length = password_min_length

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_password(self, password: str, confirm_password: str) -> None:
        if password != confirm_password:
            raise ValidationError("Passwords do not match")
        if len(password) < self._password_min_length:
            raise ValidationError(
                f"Password must be at least {self._password_min_length} characters"
            )

    async def _reserve(self, handle: str, user_id: str) -> None:
        try:
            await self._store.create(USERNAMES, handle, {"uid": user_id})
        except DocumentExistsError as exc:
            raise UsernameTakenError("Username is already taken") from exc

    async def _reserve_generated(self, base: str, user_id: str) -> str:
        candidate, counter = base, 1
        while True:
            try:
                await self._store.create(USERNAMES, candidate, {"uid": user_id})
            except DocumentExistsError:
                candidate = f"{base}{counter}"
                counter += 1
                continue
            return candidate

    async def _release(self, collection: str, doc_id: str) -> None:
        try:
            await self._store.delete(collection, doc_id)
        except Exception:
            logger.exception("Failed to release %s/%s", collection, doc_id)

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        snapshot = await self._store.get(PROFILES, user_id)
        if not snapshot.exists:
            raise NotFoundError("Profile not found")
        return snapshot.to_dict()

    async def _mark_presence(self, user_id: str, online: bool) -> None:
        await self._store.set(PROFILES, user_id, {"online": online, "last_seen": _now()}, merge=True)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------
    async def register(
        self,
        *,
        email: str,
        password: str,
        confirm_password: str,
        username: str | None = None,
        first_name: str = "",
        last_name: str = "",
    ) -> dict[str, Any]:
        """Create credentials and a profile; every check runs before the first write."""

        normalized_email = normalize_email(email)
        self._check_password(password, confirm_password)
        handle = normalize_username(username) if username and username.strip() else None
        display_name = (username or "").strip() or f"{first_name} {last_name}".strip()

        user_id = uuid.uuid4().hex
        if handle is not None:
            await self._reserve(handle, user_id)
        else:
            handle = await self._reserve_generated(handle_base(None, normalized_email), user_id)

        try:
            await self._store.create(
                CREDENTIALS,
                normalized_email,
                {"user_id": user_id, "password_hash": get_password_hash(password)},
            )
        except DocumentExistsError as exc:
            await self._release(USERNAMES, handle)
            auth_events_total.labels("register", "email_taken").inc()
            raise ValidationError("An account with this email already exists") from exc

        now = _now()
        profile = {
            "username": (username or "").strip() or handle,
            "username_lower": handle,
            "display_name": display_name or handle,
            "email": normalized_email,
            "first_name": first_name.strip(),
            "last_name": last_name.strip(),
            "avatar_url": None,
            "bio": "",
            "skills": [],
            "role": None,
            "online": True,
            "last_seen": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self._store.set(PROFILES, user_id, profile)
        except Exception:
            await self._release(CREDENTIALS, normalized_email)
            await self._release(USERNAMES, handle)
            auth_events_total.labels("register", "error").inc()
            raise
        auth_events_total.labels("register", "ok").inc()
        logger.info("Registered profile", extra={"user_id": user_id})
        return {"id": user_id, **profile}

    async def authenticate(self, email: str, password: str) -> dict[str, Any]:
        try:
            normalized_email = normalize_email(email)
        except ValidationError as exc:
            raise AuthenticationError("Invalid email or password") from exc
        credentials = await self._store.get(CREDENTIALS, normalized_email)
        if not credentials.exists or not verify_password(password, credentials.get("password_hash", "")):
            auth_events_total.labels("login", "rejected").inc()
            raise AuthenticationError("Invalid email or password")
        user_id = credentials.get("user_id")
        await self._mark_presence(user_id, True)
        auth_events_total.labels("login", "ok").inc()
        return await self.get_profile(user_id)

    async def federated_sign_in(self, identity: FederatedIdentity) -> dict[str, Any]:
        """Sign in through an external identity provider, creating the profile on first use."""

        user_id = f"{identity.provider}:{identity.subject}"
        existing = await self._store.get(PROFILES, user_id)
        if existing.exists:
            await self._mark_presence(user_id, True)
            auth_events_total.labels("federated", "ok").inc()
            return await self.get_profile(user_id)

        handle = await self._reserve_generated(handle_base(identity.display_name, identity.email), user_id)
        now = _now()
        profile = {
            "username": handle,
            "username_lower": handle,
            "display_name": identity.display_name or handle,
            "email": identity.email,
            "first_name": "",
            "last_name": "",
            "avatar_url": identity.avatar_url,
            "bio": "",
            "skills": [],
            "role": None,
            "online": True,
            "last_seen": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self._store.set(PROFILES, user_id, profile)
        except Exception:
            await self._release(USERNAMES, handle)
            auth_events_total.labels("federated", "error").inc()
            raise
        auth_events_total.labels("federated", "created").inc()
        return {"id": user_id, **profile}

    async def sign_out(self, user_id: str) -> None:
        await self._mark_presence(user_id, False)

    async def select_role(self, user_id: str, role: ProfileRole | str) -> dict[str, Any]:
        try:
            selected = ProfileRole(role)
        except ValueError as exc:
            raise ValidationError("Role must be student, teacher or professional") from exc
        await self.get_profile(user_id)
        await self._store.update(PROFILES, user_id, {"role": selected.value, "updated_at": _now()})
        return await self.get_profile(user_id)

    async def request_password_reset(self, email: str) -> str | None:
        """Issue a reset token; unknown addresses return ``None`` without an error."""

        normalized_email = normalize_email(email)
        credentials = await self._store.get(CREDENTIALS, normalized_email)
        if not credentials.exists:
            auth_events_total.labels("password_reset", "unknown").inc()
            return None
        token, _ = create_password_reset_token(normalized_email)
        auth_events_total.labels("password_reset", "issued").inc()
        return token

    async def confirm_password_reset(self, token: str, password: str, confirm_password: str) -> None:
        self._check_password(password, confirm_password)
        try:
            data = consume_password_reset_token(token)
        except ResetTokenError as exc:
            auth_events_total.labels("password_reset", "rejected").inc()
            raise AuthenticationError(str(exc)) from exc
        await self._store.update(
            CREDENTIALS, data.subject, {"password_hash": get_password_hash(password)}
        )
        auth_events_total.labels("password_reset", "completed").inc()


class GoogleIdentityVerifier:
    """Validates Google ID tokens against the tokeninfo endpoint."""

    def __init__(self, client_id: str | None, client: httpx.AsyncClient, *, url: str = GOOGLE_TOKENINFO_URL) -> None:
        self._client_id = client_id
        self._client = client
        self._url = url

    async def verify(self, id_token: str) -> FederatedIdentity:
        if not self._client_id:
            raise AuthenticationError("Federated sign-in is not configured")
        try:
            response = await self._client.get(self._url, params={"id_token": id_token})
            response.raise_for_status()
            claims = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Identity token verification failed: %s", exc)
            raise AuthenticationError("Could not verify identity token") from exc
        if claims.get("aud") != self._client_id or not claims.get("sub"):
            raise AuthenticationError("Identity token was issued for another client")
        return FederatedIdentity(
            provider="google",
            subject=str(claims["sub"]),
            email=claims.get("email"),
            display_name=claims.get("name"),
            avatar_url=claims.get("picture"),
        )


class PasswordResetNotifier:
    """Forwards reset tokens to an external mail relay; a no-op without a URL."""

    def __init__(self, url: str | None, client: httpx.AsyncClient) -> None:
        self._url = url
        self._client = client

    async def notify(self, email: str, token: str) -> bool:
        if not self._url:
            logger.info("Password reset requested but no webhook is configured")
            return False
        try:
            response = await self._client.post(self._url, json={"email": email, "token": token})
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Password reset webhook failed")
            return False
        return True
