"""Tests for daybrief.services.annotator: Gemini reply decoding and the cache-then-generate flow."""

import json
import re
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from daybrief.errors import UpstreamFailure, ValidationFailed
from daybrief.services.annotator import (
    Annotator,
    CandidateParts,
    DirectText,
    NoText,
    ResponseText,
    build_prompt,
    decode_reply,
)
from daybrief.services.storage import AnnotationCache


def _candidates(*texts):
    parts = [SimpleNamespace(text=t) for t in texts]
    return [SimpleNamespace(content=SimpleNamespace(parts=parts))]


class _SdkReply:
    """Mimics the SDK object whose ``text`` accessor raises when there is no text part."""

    def __init__(self, candidates):
        self.candidates = candidates

    @property
    def text(self):
        raise ValueError("The `response.text` quick accessor requires a valid Part")


# ---------------------------------------------------------------------------
# decode_reply
# ---------------------------------------------------------------------------


class TestDecodeReply:
    def test_direct_text(self):
        assert decode_reply(SimpleNamespace(text="hi")) == DirectText("hi")

    def test_direct_text_in_dict(self):
        assert decode_reply({"text": "hi"}) == DirectText("hi")

    def test_nested_response_text_accessor(self):
        resp = SimpleNamespace(response=SimpleNamespace(text=lambda: "nested"))
        assert decode_reply(resp) == ResponseText("nested")

    def test_candidate_parts(self):
        resp = {"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]}
        assert decode_reply(resp) == CandidateParts("ab")

    def test_sdk_reply_falls_back_to_candidates(self):
        assert decode_reply(_SdkReply(_candidates("from parts"))) == CandidateParts("from parts")

    def test_direct_text_wins_over_candidates(self):
        resp = SimpleNamespace(text="direct", candidates=_candidates("parts"))
        assert decode_reply(resp) == DirectText("direct")

    def test_unknown_shape(self):
        assert decode_reply({"something": "else"}) == NoText()
        assert decode_reply(_SdkReply([])).text == ""


class TestBuildPrompt:
    def test_placeholders(self):
        prompt = build_prompt(None, None, None)
        assert "(no title)" in prompt
        assert "(no time given)" in prompt
        assert "(no description)" in prompt

    def test_embeds_fields(self):
        prompt = build_prompt("Dentist", "Tue 3pm", "Cleaning")
        assert "Title: Dentist" in prompt
        assert "Time: Tue 3pm" in prompt
        assert "Description: Cleaning" in prompt


# ---------------------------------------------------------------------------
# Annotator.annotate
# ---------------------------------------------------------------------------


def _annotator(tmp_path, reply="Bring your notes."):
    generate = AsyncMock(return_value=SimpleNamespace(text=reply))
    cache = AnnotationCache(str(tmp_path / "ai_cache"))
    return Annotator(cache, generate), generate, cache


class TestAnnotate:
    @pytest.mark.asyncio
    async def test_requires_some_content(self, tmp_path):
        annotator, generate, _ = _annotator(tmp_path)
        with pytest.raises(ValidationFailed):
            await annotator.annotate(event_id="abc-1")
        generate.assert_not_awaited()
        assert not (tmp_path / "ai_cache").exists()

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self, tmp_path):
        annotator, generate, _ = _annotator(tmp_path)
        first = await annotator.annotate(event_id="abc-1", title="Standup")
        second = await annotator.annotate(event_id="abc-1", title="Standup")
        assert first == {"text": "Bring your notes.", "cached": False}
        assert second == {"text": "Bring your notes.", "cached": True}
        assert generate.await_count == 1

    @pytest.mark.asyncio
    async def test_without_event_id_never_caches(self, tmp_path):
        annotator, generate, _ = _annotator(tmp_path)
        await annotator.annotate(title="Standup")
        result = await annotator.annotate(title="Standup")
        assert result["cached"] is False
        assert generate.await_count == 2
        assert not (tmp_path / "ai_cache").exists()

    @pytest.mark.asyncio
    async def test_traversal_id_stays_in_cache_dir(self, tmp_path):
        annotator, _, _ = _annotator(tmp_path)
        await annotator.annotate(event_id="../../etc", title="Standup")
        files = list((tmp_path / "ai_cache").iterdir())
        assert [f.name for f in files] == ["etc.json"]
        assert re.fullmatch(r"[A-Za-z0-9_-]+\.json", files[0].name)

    @pytest.mark.asyncio
    async def test_empty_text_is_not_cached(self, tmp_path):
        annotator, generate, cache = _annotator(tmp_path, reply="   ")
        result = await annotator.annotate(event_id="abc-1", time="9am")
        assert result == {"text": "", "cached": False}
        assert cache.get("abc-1") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_regenerated(self, tmp_path):
        annotator, generate, cache = _annotator(tmp_path)
        (tmp_path / "ai_cache").mkdir()
        cache.path_for("abc-1").write_text("{{{")
        result = await annotator.annotate(event_id="abc-1", description="Quarterly review")
        assert result["cached"] is False
        generate.assert_awaited_once()
        assert cache.get("abc-1") == "Bring your notes."

    @pytest.mark.asyncio
    async def test_generation_failure(self, tmp_path):
        annotator, generate, cache = _annotator(tmp_path)
        generate.side_effect = RuntimeError("quota exceeded")
        with pytest.raises(UpstreamFailure, match="quota exceeded"):
            await annotator.annotate(event_id="abc-1", title="Standup")
        assert cache.get("abc-1") is None

    @pytest.mark.asyncio
    async def test_meta_is_stored(self, tmp_path):
        annotator, _, cache = _annotator(tmp_path)
        await annotator.annotate(event_id="abc-1", title="Standup", time="9am", description="daily")
        entry = json.loads(cache.path_for("abc-1").read_text())
        assert entry["meta"]["title"] == "Standup"
        assert entry["meta"]["time"] == "9am"
        assert entry["meta"]["description"] == "daily"
        assert "generatedAt" in entry["meta"]

    @pytest.mark.asyncio
    async def test_odd_metadata_with_ttl_is_regenerated(self, tmp_path):
        generate = AsyncMock(return_value=SimpleNamespace(text="Fresh note."))
        cache = AnnotationCache(str(tmp_path / "ai_cache"), ttl_sec=60)
        annotator = Annotator(cache, generate)
        (tmp_path / "ai_cache").mkdir()
        cache.path_for("abc-1").write_text(json.dumps({"text": "old", "meta": {"generatedAt": "2026-01-01T00:00:00"}}))
        cache.path_for("abc-2").write_text(json.dumps({"text": "old", "meta": ["x"]}))
        assert await annotator.annotate(event_id="abc-1", title="x") == {"text": "Fresh note.", "cached": False}
        assert await annotator.annotate(event_id="abc-2", title="x") == {"text": "Fresh note.", "cached": False}
