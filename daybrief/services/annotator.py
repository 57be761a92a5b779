from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union
import logging

import google.generativeai as genai

from daybrief.errors import UpstreamFailure, ValidationFailed
from daybrief.services.storage import AnnotationCache, sanitize_event_id

log = logging.getLogger(__name__)

NO_TITLE = "(no title)"
NO_TIME = "(no time given)"
NO_DESCRIPTION = "(no description)"

PROMPT = (
    "You are a friendly personal assistant looking at one event on the user's calendar.\n"
    "Title: {title}\n"
    "Time: {time}\n"
    "Description: {description}\n\n"
    "In two or three short sentences, say what this event is likely about and "
    "suggest one concrete thing the user could do to prepare for it. "
    "Reply in plain text, no markdown."
)

# --------- Known Gemini response shapes ---------
@dataclass(frozen=True)
class DirectText:
    text: str

@dataclass(frozen=True)
class ResponseText:
    text: str

@dataclass(frozen=True)
class CandidateParts:
    text: str

@dataclass(frozen=True)
class NoText:
    text: str = ""

GeminiReply = Union[DirectText, ResponseText, CandidateParts, NoText]

def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except (ValueError, AttributeError, IndexError):
        # the SDK's ``.text`` accessor raises when the reply has no text part
        return None

def _as_text(value: Any) -> Optional[str]:
    if callable(value):
        try:
            value = value()
        except (ValueError, AttributeError, IndexError):
            return None
    return value if isinstance(value, str) else None

def _candidate_text(resp: Any) -> Optional[str]:
    candidates = _field(resp, "candidates")
    if not candidates:
        return None
    parts = _field(_field(candidates[0], "content"), "parts") or []
    texts = [t for t in (_as_text(_field(p, "text")) for p in parts) if t]
    return "".join(texts) if texts else None

def decode_reply(resp: Any) -> GeminiReply:
    """Classify a generation response by where its text lives.

    Checked in order: a direct ``text`` field, a nested ``response.text``,
    then ``candidates[0].content.parts``.
    """
    text = _as_text(_field(resp, "text"))
    if text is not None:
        return DirectText(text)
    nested = _field(resp, "response")
    if nested is not None:
        text = _as_text(_field(nested, "text"))
        if text is not None:
            return ResponseText(text)
    text = _candidate_text(resp)
    if text is not None:
        return CandidateParts(text)
    return NoText()

def build_prompt(title: Optional[str], time: Optional[str], description: Optional[str]) -> str:
    return PROMPT.format(
        title=title or NO_TITLE,
        time=time or NO_TIME,
        description=description or NO_DESCRIPTION,
    )

Generate = Callable[[str], Awaitable[Any]]

def gemini_generator(api_key: str, model_name: str) -> Generate:
    genai.configure(api_key=api_key)
    model = genai.GenerativeModel(model_name)

    async def generate(prompt: str) -> Any:
        return await model.generate_content_async(prompt)

    return generate

class Annotator:
    def __init__(self, cache: AnnotationCache, generate: Generate):
        self.cache = cache
        self.generate = generate

    async def annotate(self, event_id: Optional[str] = None, title: Optional[str] = None,
                       description: Optional[str] = None, time: Optional[str] = None) -> Dict[str, Any]:
        """Return ``{"text": ..., "cached": bool}`` for one calendar event."""
        if not (title or description or time):
            raise ValidationFailed("At least one of title, description or time is required")

        token = sanitize_event_id(event_id) if event_id else ""
        if token:
            hit = self.cache.get(token)
            if hit is not None:
                log.info("Annotation cache hit for %s", token)
                return {"text": hit, "cached": True}

        try:
            resp = await self.generate(build_prompt(title, time, description))
        except Exception as e:
            log.error("Gemini generation failed: %s", e)
            raise UpstreamFailure(str(e) or e.__class__.__name__) from e
        text = decode_reply(resp).text.strip()

        if token and text:
            self.cache.put(token, text, {"title": title, "time": time, "description": description})
        return {"text": text, "cached": False}
