"""Tests for livetable.narrator: HttpNarrator, EchoNarrator and build_context."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import FakeSocket
from livetable.app import build_narrator
from livetable.commands import CommandRouter
from livetable.config import Settings
from livetable.narrator import EchoNarrator, HttpNarrator, NarratorError, build_context

URL = "https://router.example/v1/chat/completions"


def _mock_response(body, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _chat(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# ---------------------------------------------------------------------------
# build_context
# ---------------------------------------------------------------------------

class TestBuildContext:
    def test_full_character(self) -> None:
        char = {"location": "Hueco Mundo", "species": "Arrancar", "hp": 40, "maxHp": 120}
        assert build_context(char, 3) == (
            "Location: Hueco Mundo. Round 3. Species: Arrancar. Health: 40/120."
        )

    def test_missing_fields_fall_back(self) -> None:
        ctx = build_context({}, 1)
        assert "Location: Karakura Town." in ctx
        assert "Species: Unknown." in ctx
        assert "Health" not in ctx


# ---------------------------------------------------------------------------
# EchoNarrator
# ---------------------------------------------------------------------------

class TestEchoNarrator:
    async def test_echoes_action(self) -> None:
        narrator = EchoNarrator()
        assert await narrator.generate("ctx", "Ichigo", "I swing") == "Ichigo: I swing"

    async def test_too_short_is_none(self) -> None:
        assert await EchoNarrator().generate("", "A", "b") is None


# ---------------------------------------------------------------------------
# HttpNarrator
# ---------------------------------------------------------------------------

class TestHttpNarrator:
    @pytest.fixture
    def narrator(self) -> HttpNarrator:
        return HttpNarrator(api_key="secret", url=URL, model="mistral-7b")

    async def test_happy_path(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat("  The ground trembles beneath you.  ")))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await narrator.generate("ctx", "Ichigo", "I stomp")
        assert result == "The ground trembles beneath you."

    async def test_posts_to_url_with_bearer(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat("Something happens.")))
        with patch("httpx.AsyncClient.post", mock_post):
            await narrator.generate("ctx", "Ichigo", "I stomp")
        assert mock_post.call_args[0][0] == URL
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

    async def test_request_body(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat("Something happens.")))
        with patch("httpx.AsyncClient.post", mock_post):
            await narrator.generate("Location: Seireitei.", "Rukia", "I cast Hado 33")
        body = mock_post.call_args.kwargs["json"]
        assert body["model"] == "mistral-7b"
        assert body["max_tokens"] == 500
        assert body["temperature"] == 0.8
        system, user = body["messages"]
        assert system["role"] == "system"
        assert "Rukia" in system["content"]
        assert "Location: Seireitei." in system["content"]
        assert user == {"role": "user", "content": "Action by Rukia: I cast Hado 33"}

    async def test_text_generation_shape(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response([{"generated_text": "A hollow screams."}]))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await narrator.generate("ctx", "Ichigo", "I wait") == "A hollow screams."

    async def test_short_reply_is_discarded(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response(_chat("ok.")))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await narrator.generate("ctx", "Ichigo", "I wait") is None

    async def test_empty_action_skips_call(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            assert await narrator.generate("ctx", "Ichigo", "") is None
        mock_post.assert_not_called()

    async def test_connect_error(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(NarratorError, match="Cannot connect"):
                await narrator.complete("ctx", "Ichigo", "I wait")
            assert await narrator.generate("ctx", "Ichigo", "I wait") is None

    async def test_timeout(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(NarratorError, match="timed out"):
                await narrator.complete("ctx", "Ichigo", "I wait")

    async def test_http_error_status(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"error": "unauthorized"}, status=401))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(NarratorError, match="HTTP 401"):
                await narrator.complete("ctx", "Ichigo", "I wait")
            assert await narrator.generate("ctx", "Ichigo", "I wait") is None

    async def test_invalid_json(self, narrator: HttpNarrator) -> None:
        resp = _mock_response(None)
        resp.json.side_effect = ValueError("not json")
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=resp)):
            with pytest.raises(NarratorError, match="invalid JSON"):
                await narrator.complete("ctx", "Ichigo", "I wait")

    async def test_malformed_response(self, narrator: HttpNarrator) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(NarratorError, match="Unexpected response format"):
                await narrator.complete("ctx", "Ichigo", "I wait")


# ---------------------------------------------------------------------------
# Wired into the command router
# ---------------------------------------------------------------------------

async def test_short_reply_posts_no_narration(store) -> None:
    router = CommandRouter(store, narrator=HttpNarrator(api_key="k", url=URL, model="m"))
    sock = FakeSocket()
    cid = router.connect(sock)
    await router.dispatch(cid, "addPlayer", {"name": "Ichigo"})
    mock_post = AsyncMock(return_value=_mock_response(_chat("ok.")))
    with patch("httpx.AsyncClient.post", mock_post):
        await router.dispatch(cid, "sendMessage", {"text": "I nod", "characterIndex": 0})
        await router.drain()
    mock_post.assert_awaited_once()
    assert [m["kind"] for m in sock.of("chatMessage")] == ["player"]
    assert sock.of("aiTyping") == [True, False]


# ---------------------------------------------------------------------------
# Selection from settings
# ---------------------------------------------------------------------------

class TestBuildNarrator:
    def test_disabled_without_key(self) -> None:
        assert build_narrator(Settings()) is None

    def test_http_with_key(self) -> None:
        assert isinstance(build_narrator(Settings(narrator_api_key="hf_x")), HttpNarrator)

    def test_echo_backend_needs_no_key(self) -> None:
        assert isinstance(build_narrator(Settings(narrator_backend="echo")), EchoNarrator)

    def test_backend_read_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("NARRATOR_BACKEND", " Echo ")
        assert Settings.from_env().narrator_backend == "echo"
