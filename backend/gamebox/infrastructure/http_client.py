"""Outbound HTTP access to the reservation API.

A long-lived client session holds one credential. Many requests can fail with
401 at the same moment when the token expires; only one of them refreshes and
the others reuse the refreshed token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import httpx

from ..config import get_settings
from ..domain.errors import (
    AccessDeniedError,
    CapacityExceededError,
    CapacityViolationError,
    InvalidTransitionError,
    NotFoundError,
    ReservationError,
    SlotConflictError,
)
from ..schemas import ReservationRead

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSession:
    token: str
    expiry: Optional[datetime] = None
    refresh_token: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiry is None:
            return False
        return self.expiry <= (now or datetime.now(timezone.utc))


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str]
    email_confirmed: bool


class AuthRefreshError(Exception):
    """The identity service refused to issue a new token."""


class AuthProvider(Protocol):
    async def get_current_session(self) -> AuthSession | None: ...

    async def refresh_session(self) -> AuthSession: ...

    async def get_current_user(self) -> CurrentUser | None: ...


class CredentialHolder:
    """Owns the current credential and runs at most one refresh at a time.

    Callers that ask for a refresh while one is running await that same
    refresh and get its token or its AuthRefreshError.
    """

    def __init__(self, provider: AuthProvider) -> None:
        self.provider = provider
        self._session: AuthSession | None = None
        self._loaded = False
        self._lock = asyncio.Lock()
        self._refreshing: asyncio.Task[str] | None = None

    async def token(self) -> str | None:
        if not self._loaded:
            async with self._lock:
                if not self._loaded:
                    self._session = await self.provider.get_current_session()
                    self._loaded = True
        session = self._session
        if session is not None and session.is_expired():
            return await self.refresh(session.token)
        return session.token if session is not None else None

    async def refresh(self, stale_token: str | None) -> str:
        """Refresh unless another caller already replaced `stale_token`."""
        current = self._session
        if current is not None and current.token != stale_token and not current.is_expired():
            return current.token
        if self._refreshing is None:
            self._refreshing = asyncio.create_task(self._run_refresh())
        # Cancelling one waiter leaves the shared refresh running.
        return await asyncio.shield(self._refreshing)

    async def _run_refresh(self) -> str:
        try:
            logger.info("refreshing access token")
            session = await self.provider.refresh_session()
            self._session = session
            self._loaded = True
            return session.token
        finally:
            self._refreshing = None


class AuthenticatedClient:
    def __init__(
        self,
        base_url: str,
        credentials: CredentialHolder,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()

    async def _send(self, method: str, url: str, token: str | None, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await self._http.request(method, url, headers=headers, **kwargs)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send once; on 401 refresh the credential and retry exactly once."""
        token = await self.credentials.token()
        response = await self._send(method, url, token, **kwargs)
        if response.status_code != httpx.codes.UNAUTHORIZED:
            return response

        fresh = await self.credentials.refresh(token)
        return await self._send(method, url, fresh, **kwargs)


_ERRORS_BY_CODE: dict[str, type[ReservationError]] = {
    error_cls.code: error_cls
    for error_cls in (
        SlotConflictError,
        CapacityExceededError,
        InvalidTransitionError,
        CapacityViolationError,
        AccessDeniedError,
        NotFoundError,
    )
}


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail.get("code")
    return None


def raise_for_reservation_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    code = _error_code(response)
    message = f"{response.request.method} {response.request.url.path} -> {response.status_code}"
    if response.status_code == httpx.codes.NOT_FOUND:
        raise NotFoundError(message)
    if response.status_code == httpx.codes.FORBIDDEN:
        raise AccessDeniedError(message)
    if response.status_code == httpx.codes.CONFLICT:
        raise _ERRORS_BY_CODE.get(code or "", SlotConflictError)(message)
    if code in _ERRORS_BY_CODE:
        raise _ERRORS_BY_CODE[code](message)
    response.raise_for_status()


class ReservationApiClient:
    """Typed calls against the reservation REST surface."""

    def __init__(self, client: AuthenticatedClient) -> None:
        self.client = client

    async def _call(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = await self.client.request(method, url, **kwargs)
        raise_for_reservation_error(response)
        return response

    async def create_reservation(
        self,
        *,
        day: date,
        slot_time: str,
        game_mode: str,
        participants: list[dict[str, Any]] | None = None,
        **fields: Any,
    ) -> ReservationRead:
        payload = {
            "date": day.isoformat(),
            "slot_time": slot_time,
            "game_mode": game_mode,
            "participants": participants or [],
            **fields,
        }
        response = await self._call("POST", "/reservations", json=payload)
        return ReservationRead.model_validate(response.json())

    async def list_reservations(self) -> list[ReservationRead]:
        response = await self._call("GET", "/reservations")
        return [ReservationRead.model_validate(item) for item in response.json()]

    async def get_reservation(self, reservation_id: str) -> ReservationRead:
        response = await self._call("GET", f"/reservations/{reservation_id}")
        return ReservationRead.model_validate(response.json())

    async def check_availability(self, day: date, slot_time: str) -> bool:
        response = await self._call(
            "GET", "/reservations/availability/check", params={"date": day.isoformat(), "time": slot_time}
        )
        return bool(response.json()["available"])

    async def join(self, reservation_id: str, *, email: str, name: str | None = None) -> ReservationRead:
        response = await self._call(
            "POST", f"/reservations/share/{reservation_id}/confirm", json={"email": email, "name": name}
        )
        return ReservationRead.model_validate(response.json())

    async def set_participant_confirmation(
        self, reservation_id: str, *, email: str, confirmed: bool
    ) -> ReservationRead:
        response = await self._call(
            "POST",
            f"/reservations/{reservation_id}/participant/confirm",
            json={"email": email, "confirmed": confirmed},
        )
        return ReservationRead.model_validate(response.json())

    async def cancel_reservation(self, reservation_id: str) -> ReservationRead:
        response = await self._call("PATCH", f"/reservations/{reservation_id}", json={"status": "cancelled"})
        return ReservationRead.model_validate(response.json())


class RemoteAuthProvider:
    """Identity service speaking the `/token?grant_type=refresh_token` and `/user` endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        session: AuthSession | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls, *, session: AuthSession | None = None, transport: httpx.AsyncBaseTransport | None = None
    ) -> "RemoteAuthProvider":
        return cls(get_settings().auth_service_url, session=session, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def get_current_session(self) -> AuthSession | None:
        return self._session

    async def refresh_session(self) -> AuthSession:
        if self._session is None or not self._session.refresh_token:
            raise AuthRefreshError("no refresh token available")
        try:
            response = await self._http.post(
                "/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": self._session.refresh_token},
            )
        except httpx.HTTPError as exc:
            raise AuthRefreshError("identity service unreachable") from exc
        if response.status_code != httpx.codes.OK:
            logger.warning("token refresh rejected: %s", response.status_code)
            raise AuthRefreshError(f"token refresh rejected with {response.status_code}")

        data = response.json()
        expires_in = int(data.get("expires_in", 0))
        self._session = AuthSession(
            token=data["access_token"],
            expiry=datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None,
            refresh_token=data.get("refresh_token") or self._session.refresh_token,
        )
        return self._session

    async def get_current_user(self) -> CurrentUser | None:
        if self._session is None:
            return None
        response = await self._http.get("/user", headers={"Authorization": f"Bearer {self._session.token}"})
        if response.status_code == httpx.codes.UNAUTHORIZED:
            return None
        response.raise_for_status()
        data = response.json()
        return CurrentUser(
            id=str(data["id"]),
            email=data.get("email"),
            email_confirmed=bool(data.get("email_confirmed_at")),
        )
