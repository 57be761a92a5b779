from __future__ import annotations
import os
from dataclasses import dataclass

def _parse_bool(s: str) -> bool:
    return s.strip().lower() in ("1", "true", "yes", "on")

def _parse_ttl(s: str | None) -> int | None:
    if not s:
        return None
    ttl = int(s)
    return ttl if ttl > 0 else None

@dataclass(frozen=True)
class Config:
    google_client_id: str
    google_client_secret: str
    redirect_uri: str
    session_secret: str
    session_https_only: bool
    session_max_age: int
    gemini_api_key: str
    gemini_model: str
    tz: str
    ai_cache_dir: str
    ai_cache_ttl_sec: int | None
    static_dir: str
    host: str
    port: int
    log_level: str

def load_config() -> Config:
    return Config(
        google_client_id=os.getenv("GOOGLE_CLIENT_ID", ""),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", ""),
        redirect_uri=os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:3000/auth/google/callback"),
        session_secret=os.getenv("SESSION_SECRET", "super-secret-key"),
        session_https_only=_parse_bool(os.getenv("SESSION_HTTPS_ONLY", "false")),
        session_max_age=int(os.getenv("SESSION_MAX_AGE_SEC", str(14 * 24 * 60 * 60))),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        tz=os.getenv("TIMEZONE", "America/Los_Angeles"),
        ai_cache_dir=os.getenv("AI_CACHE_DIR", "ai_cache"),
        ai_cache_ttl_sec=_parse_ttl(os.getenv("AI_CACHE_TTL_SEC")),
        static_dir=os.getenv("STATIC_DIR", "public"),
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
