"""Shared fixtures: a test Config, an in-memory session and a TestClient.

Google and Gemini are never reached; the annotator gets a fake generator and
calendar tests patch ``build_service``.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from daybrief.config import Config
from daybrief.main import create_app
from daybrief.services.annotator import Annotator
from daybrief.services.storage import AnnotationCache
from daybrief.session import SessionHandle, get_session


@pytest.fixture
def cfg(tmp_path):
    return Config(
        google_client_id="client-id",
        google_client_secret="client-secret",
        redirect_uri="http://localhost:3000/auth/google/callback",
        session_secret="test-secret",
        session_https_only=False,
        session_max_age=3600,
        gemini_api_key="fake-gemini-key",
        gemini_model="gemini-2.0-flash",
        tz="America/Los_Angeles",
        ai_cache_dir=str(tmp_path / "ai_cache"),
        ai_cache_ttl_sec=None,
        static_dir=str(tmp_path / "no-static"),
        host="127.0.0.1",
        port=3000,
        log_level="INFO",
    )


@pytest.fixture
def generate():
    """Fake Gemini call returning a response with a direct ``text`` field."""
    return AsyncMock(return_value=SimpleNamespace(text="Prepare the slides."))


@pytest.fixture
def annotator(cfg, generate):
    return Annotator(AnnotationCache(cfg.ai_cache_dir), generate)


@pytest.fixture
def session_data():
    """Backing dict of the session seen by every request in a test."""
    return {}


@pytest.fixture
def app(cfg, annotator, session_data):
    app = create_app(cfg, annotator=annotator)
    app.dependency_overrides[get_session] = lambda: SessionHandle(session_data)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def logged_in(session_data):
    session_data["user"] = {
        "id": "1234",
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "picture": "https://example.com/ada.png",
    }
    session_data["tokens"] = {"access_token": "ya29.test", "refresh_token": "1//refresh"}
    return session_data
