from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union
import logging

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from daybrief.config import Config

log = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/calendar.readonly",
]

@dataclass(frozen=True)
class OAuthSuccess:
    user: Dict[str, Any]
    tokens: Dict[str, Any]

@dataclass(frozen=True)
class OAuthFailure:
    reason: str
    detail: str = ""

OAuthResult = Union[OAuthSuccess, OAuthFailure]

def _client_config(cfg: Config) -> dict:
    return {
        "web": {
            "client_id": cfg.google_client_id,
            "client_secret": cfg.google_client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
        }
    }

def _flow(cfg: Config, state: str | None = None) -> Flow:
    # Confidential web client: the client secret authenticates the exchange, no PKCE verifier to carry over.
    return Flow.from_client_config(
        _client_config(cfg),
        scopes=SCOPES,
        redirect_uri=cfg.redirect_uri,
        state=state,
        autogenerate_code_verifier=False,
    )

def authorization_url(cfg: Config) -> Tuple[str, str]:
    """Return ``(url, state)`` for the consent screen.

    ``access_type=offline`` together with ``prompt=consent`` makes Google issue
    a refresh token on every login, not only the first one.
    """
    url, state = _flow(cfg).authorization_url(access_type="offline", prompt="consent")
    return url, state

def _exchange_code(cfg: Config, code: str, state: str | None) -> Credentials:
    flow = _flow(cfg, state=state)
    flow.fetch_token(code=code)
    return flow.credentials

def _fetch_profile(creds: Credentials) -> Dict[str, Any]:
    service = build("oauth2", "v2", credentials=creds, cache_discovery=False)
    return service.userinfo().get().execute()

def complete_callback(cfg: Config, code: str, state: str | None = None) -> OAuthResult:
    """Exchange the authorization code and load the user's profile.

    Blocking; run it off the event loop.
    """
    try:
        creds = _exchange_code(cfg, code, state)
    except Exception as e:
        log.warning("Token exchange failed: %s", e)
        return OAuthFailure("token_exchange", str(e))
    if not creds.token:
        return OAuthFailure("token_exchange", "no access token in response")

    try:
        info = _fetch_profile(creds)
    except Exception as e:
        log.warning("Profile fetch failed: %s", e)
        return OAuthFailure("profile_fetch", str(e))

    user = {
        "id": info.get("id"),
        "name": info.get("name"),
        "email": info.get("email"),
        "picture": info.get("picture"),
    }
    tokens = {"access_token": creds.token, "refresh_token": creds.refresh_token}
    log.info("Signed in Google user %s", user["id"])
    return OAuthSuccess(user=user, tokens=tokens)

def credentials_from_tokens(cfg: Config, tokens: Dict[str, Any]) -> Credentials:
    """Rebuild refreshable credentials from the tokens kept in the session."""
    return Credentials(
        token=tokens.get("access_token"),
        refresh_token=tokens.get("refresh_token"),
        token_uri=TOKEN_URI,
        client_id=cfg.google_client_id,
        client_secret=cfg.google_client_secret,
        scopes=SCOPES,
    )
