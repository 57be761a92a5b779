from __future__ import annotations

import logging
import os
from typing import Optional
from urllib.parse import urlencode

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from daybrief.config import Config, load_config
from daybrief.errors import NotAuthenticated, install_handlers
from daybrief.services import gcal, google_oauth
from daybrief.services.annotator import Annotator, gemini_generator
from daybrief.services.storage import AnnotationCache
from daybrief.session import (
    InMemorySessionStore,
    ServerSessionMiddleware,
    SessionHandle,
    SessionStore,
    get_session,
)

log = logging.getLogger(__name__)


class AnnotateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    time: Optional[str] = None
    eventId: Optional[str] = None


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_annotator(request: Request) -> Annotator:
    return request.app.state.annotator


def _auth_error_redirect(reason: str) -> RedirectResponse:
    return RedirectResponse(url="/?" + urlencode({"auth_error": reason}))


async def _calendar_call(cfg: Config, session: SessionHandle, fn, *args, **kwargs):
    """Run a blocking Calendar API call with the session's credentials.

    A refreshed access token is written back to the session.
    """
    tokens = session.require_tokens()
    creds = google_oauth.credentials_from_tokens(cfg, tokens)
    service = gcal.build_service(creds)
    try:
        return await run_in_threadpool(fn, service, cfg.tz, *args, **kwargs)
    finally:
        if creds.token and creds.token != tokens.get("access_token"):
            session.update_access_token(creds.token)


def create_app(cfg: Optional[Config] = None, annotator: Optional[Annotator] = None,
               session_store: Optional[SessionStore] = None) -> FastAPI:
    if cfg is None:
        load_dotenv()
        cfg = load_config()
    if annotator is None:
        annotator = Annotator(
            AnnotationCache(cfg.ai_cache_dir, cfg.ai_cache_ttl_sec),
            gemini_generator(cfg.gemini_api_key, cfg.gemini_model),
        )

    app = FastAPI(title="Daybrief")
    app.state.config = cfg
    app.state.annotator = annotator
    app.add_middleware(
        ServerSessionMiddleware,
        store=session_store or InMemorySessionStore(),
        secret_key=cfg.session_secret,
        max_age=cfg.session_max_age,
        https_only=cfg.session_https_only,
    )
    install_handlers(app)

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.get("/me")
    async def me(session: SessionHandle = Depends(get_session)):
        if not session.user:
            raise NotAuthenticated()
        return session.user

    # --------- OAuth ---------
    @app.get("/auth/logout")
    async def logout(session: SessionHandle = Depends(get_session)):
        if not session.destroy():
            log.error("Logout could not clear the session")
        return RedirectResponse(url="/")

    @app.get("/auth/google")
    async def auth_google(session: SessionHandle = Depends(get_session), cfg: Config = Depends(get_config)):
        url, state = google_oauth.authorization_url(cfg)
        session.remember_state(state)
        return RedirectResponse(url)

    @app.get("/auth/google/callback")
    async def auth_google_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        session: SessionHandle = Depends(get_session),
        cfg: Config = Depends(get_config),
    ):
        expected_state = session.pop_state()
        if error:
            log.warning("Google returned an OAuth error: %s", error)
            return _auth_error_redirect(error)
        if not code:
            return _auth_error_redirect("missing_code")
        if not expected_state or state != expected_state:
            log.warning("OAuth state mismatch")
            return _auth_error_redirect("invalid_state")

        result = await run_in_threadpool(google_oauth.complete_callback, cfg, code, state)
        if isinstance(result, google_oauth.OAuthFailure):
            return _auth_error_redirect(result.reason)
        session.set(result.user, result.tokens)
        return RedirectResponse(url="/")

    # --------- Calendar ---------
    @app.get("/calendar/today")
    async def calendar_today(
        days: int = Query(1, ge=1, le=31),
        session: SessionHandle = Depends(get_session),
        cfg: Config = Depends(get_config),
    ):
        return await _calendar_call(cfg, session, gcal.fetch_window, days)

    @app.get("/calendar/four-days")
    async def calendar_four_days(session: SessionHandle = Depends(get_session), cfg: Config = Depends(get_config)):
        return await _calendar_call(cfg, session, gcal.fetch_four_day_view)

    @app.get("/calendar/debug")
    async def calendar_debug(session: SessionHandle = Depends(get_session), cfg: Config = Depends(get_config)):
        return await _calendar_call(cfg, session, gcal.list_calendars_with_sample)

    # --------- AI annotations ---------
    @app.post("/ai")
    async def ai(body: AnnotateRequest, annotator: Annotator = Depends(get_annotator)):
        return await annotator.annotate(
            event_id=body.eventId,
            title=body.title,
            description=body.description,
            time=body.time,
        )

    if os.path.isdir(cfg.static_dir):
        app.mount("/", StaticFiles(directory=cfg.static_dir, html=True), name="static")

    return app
