# src/oidc_drive_bff/sessions.py

import asyncio
import logging
import time
import typing

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .config import settings
from .security import generate_random_value, sign_value, unsign_value
from .session_data import SessionData

logger = logging.getLogger(__name__)

SESSION_ID_LENGTH = 32
SESSION_SECRET_LENGTH = 24
EVICTION_INTERVAL_SECONDS = 60


class InMemorySessionStore:
    """
    Server-side session records keyed by an opaque session id.
    Sessions end only by idle expiry; there is no explicit logout.
    """

    def __init__(
        self,
        max_age_seconds: int = settings.SESSION_COOKIE_MAX_AGE,
        eviction_interval_seconds: float = EVICTION_INTERVAL_SECONDS,
    ):
        self.max_age_seconds = max_age_seconds
        self.eviction_interval_seconds = eviction_interval_seconds
        self._last_evicted = time.monotonic()
        self._sessions: typing.Dict[str, SessionData] = {}
        self._last_seen: typing.Dict[str, float] = {}
        self._refresh_locks: typing.Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _new_session_id(self) -> str:
        return generate_random_value(SESSION_ID_LENGTH)

    def get(self, session_id: typing.Optional[str]) -> typing.Optional[SessionData]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: typing.Optional[str]) -> typing.Tuple[str, SessionData]:
        """Resumes the session for `session_id`, or creates one under a fresh id."""
        now = time.monotonic()
        if now - self._last_evicted >= self.eviction_interval_seconds:
            self.evict_expired(now)
        session = self.get(session_id)
        if session is None:
            session_id = self._new_session_id()
            session = SessionData()
            self._sessions[session_id] = session
            logger.debug("get_or_create - Created new session.")
        else:
            session.touch()
        self._last_seen[session_id] = now
        return session_id, session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        self._refresh_locks.pop(session_id, None)

    def evict_expired(self, now: typing.Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        self._last_evicted = now
        expired = [
            session_id for session_id, last_seen in self._last_seen.items()
            if now - last_seen > self.max_age_seconds
        ]
        for session_id in expired:
            self.delete(session_id)
        if expired:
            logger.info(f"evict_expired - Evicted {len(expired)} idle session(s).")
        return len(expired)

    def refresh_lock(self, session_id: str) -> asyncio.Lock:
        """One lock per session so concurrent requests share a single token refresh."""
        lock = self._refresh_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[session_id] = lock
        return lock


session_store = InMemorySessionStore()

def resolve_session_secret(configured: typing.Optional[str]) -> str:
    """Returns the configured secret, or one generated for the lifetime of this process."""
    if configured:
        return configured
    logger.warning("SESSION_SECRET_KEY not set; sessions will not survive a restart.")
    return generate_random_value(SESSION_SECRET_LENGTH)


SESSION_SECRET = resolve_session_secret(settings.SESSION_SECRET_KEY)


class SessionMiddlewareCustom(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        store: InMemorySessionStore = session_store,
        secret: str = SESSION_SECRET,
        cookie_name: str = settings.SESSION_COOKIE_NAME,
        max_age: int = settings.SESSION_COOKIE_MAX_AGE,
        secure: bool = settings.SESSION_COOKIE_SECURE,
    ):
        super().__init__(app)
        self.store = store
        self.secret = secret
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    async def dispatch(self, request, call_next):
        cookie_session_id = unsign_value(request.cookies.get(self.cookie_name), self.secret)
        session_id, session = self.store.get_or_create(cookie_session_id)
        request.state.session_id = session_id
        request.state.session = session
        request.state.session_store = self.store
        response: StarletteResponse = await call_next(request)
        response.set_cookie(
            self.cookie_name,
            sign_value(session_id, self.secret),
            max_age=self.max_age,
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
        return response


def get_session(request: Request) -> SessionData:
    return request.state.session


def get_session_lock(request: Request) -> asyncio.Lock:
    return request.state.session_store.refresh_lock(request.state.session_id)
