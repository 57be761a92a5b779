"""Server-side sessions behind a signed session-id cookie.

The cookie carries only a random session id signed with the configured secret
(itsdangerous, as Starlette's own ``SessionMiddleware`` does). The session
data (user, tokens, OAuth state) stays in a ``SessionStore`` on the server.
Handlers get a ``SessionHandle`` through the ``get_session`` dependency
instead of reaching into ``request.session``.
"""
from __future__ import annotations
import logging
import secrets
import time
from typing import Any, Dict, Optional, Tuple

import itsdangerous
from fastapi import Request
from itsdangerous.exc import BadSignature
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from daybrief.errors import NotAuthenticated

log = logging.getLogger(__name__)

USER_KEY = "user"
TOKENS_KEY = "tokens"
STATE_KEY = "oauth_state"

SESSION_ID_SCOPE_KEY = "session_id"
SESSION_STORE_SCOPE_KEY = "session_store"


class SessionStore:
    """Session data keyed by session id."""

    def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def write(self, session_id: str, data: Dict[str, Any], max_age: int) -> None:
        raise NotImplementedError

    def remove(self, session_id: str) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Single-process store; entries expire ``max_age`` seconds after their last write."""

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def read(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        expires_at, data = entry
        if expires_at < time.time():
            self._entries.pop(session_id, None)
            return None
        return dict(data)

    def write(self, session_id: str, data: Dict[str, Any], max_age: int) -> None:
        self._entries[session_id] = (time.time() + max_age, dict(data))

    def remove(self, session_id: str) -> None:
        self._entries.pop(session_id, None)


class ServerSessionMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        secret_key: str,
        session_cookie: str = "session",
        max_age: int = 14 * 24 * 60 * 60,
        path: str = "/",
        same_site: str = "lax",
        https_only: bool = False,
    ) -> None:
        self.app = app
        self.store = store
        self.signer = itsdangerous.TimestampSigner(str(secret_key))
        self.session_cookie = session_cookie
        self.max_age = max_age
        self.path = path
        self.security_flags = "httponly; samesite=" + same_site
        if https_only:
            self.security_flags += "; secure"

    def _load(self, cookie: Optional[str]) -> Tuple[Optional[str], Dict[str, Any]]:
        if not cookie:
            return None, {}
        try:
            session_id = self.signer.unsign(cookie.encode("utf-8"), max_age=self.max_age).decode("utf-8")
        except BadSignature:
            return None, {}
        data = self.store.read(session_id)
        if data is None:
            # destroyed or expired on the server
            return None, {}
        return session_id, data

    def _cookie_header(self, value: str) -> str:
        return "%s=%s; path=%s; Max-Age=%d; %s" % (
            self.session_cookie, value, self.path, self.max_age, self.security_flags,
        )

    def _expired_cookie_header(self) -> str:
        return "%s=null; path=%s; expires=Thu, 01 Jan 1970 00:00:00 GMT; %s" % (
            self.session_cookie, self.path, self.security_flags,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        session_id, data = self._load(connection.cookies.get(self.session_cookie))
        scope["session"] = data
        scope[SESSION_ID_SCOPE_KEY] = session_id
        scope[SESSION_STORE_SCOPE_KEY] = self.store

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                session = scope["session"]
                current_id = scope.get(SESSION_ID_SCOPE_KEY)
                if session:
                    if current_id is None:
                        current_id = secrets.token_urlsafe(32)
                    self.store.write(current_id, session, self.max_age)
                    signed = self.signer.sign(current_id.encode("utf-8")).decode("utf-8")
                    headers.append("Set-Cookie", self._cookie_header(signed))
                elif session_id is not None:
                    try:
                        self.store.remove(session_id)
                    except Exception as e:
                        log.error("Error removing session from store: %s", e)
                    headers.append("Set-Cookie", self._expired_cookie_header())
            await send(message)

        await self.app(scope, receive, send_wrapper)


class SessionHandle:
    def __init__(self, data: Dict[str, Any], store: Optional[SessionStore] = None,
                 session_id: Optional[str] = None, scope: Optional[Scope] = None):
        self._data = data
        self._store = store
        self._session_id = session_id
        self._scope = scope

    def get(self) -> Dict[str, Any]:
        return dict(self._data)

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        user = self._data.get(USER_KEY)
        return user or None

    @property
    def tokens(self) -> Optional[Dict[str, Any]]:
        tokens = self._data.get(TOKENS_KEY)
        return tokens or None

    def set(self, user: Dict[str, Any], tokens: Dict[str, Any]) -> None:
        self._data[USER_KEY] = user
        self._data[TOKENS_KEY] = tokens

    def update_access_token(self, access_token: str) -> None:
        tokens = dict(self.tokens or {})
        tokens["access_token"] = access_token
        self._data[TOKENS_KEY] = tokens

    def remember_state(self, state: str) -> None:
        self._data[STATE_KEY] = state

    def pop_state(self) -> Optional[str]:
        return self._data.pop(STATE_KEY, None)

    def destroy(self) -> bool:
        """Drop the session data and its server-side entry."""
        self._data.clear()
        if self._store is None or self._session_id is None:
            return True
        try:
            self._store.remove(self._session_id)
        except Exception as e:
            log.error("Error destroying session: %s", e)
            return False
        if self._scope is not None:
            # a later write in this request starts a new session id
            self._scope[SESSION_ID_SCOPE_KEY] = None
        return True

    def require_tokens(self) -> Dict[str, Any]:
        tokens = self.tokens
        if not tokens or not tokens.get("access_token"):
            raise NotAuthenticated()
        return tokens


def get_session(request: Request) -> SessionHandle:
    return SessionHandle(
        request.session,
        store=request.scope.get(SESSION_STORE_SCOPE_KEY),
        session_id=request.scope.get(SESSION_ID_SCOPE_KEY),
        scope=request.scope,
    )
