"""Narrator client: optional AI game-master replies to player actions.

The command router depends only on the protocol:

    async def generate(self, context: str, actor: str, action: str) -> str | None: ...

None means "no narration": the service is unreachable, answered with an
error status, returned something unparseable, or produced a reply too
short to be worth posting. None is never an error for the caller.

Two implementations are provided:

    HttpNarrator:  OpenAI-compatible chat-completions client (the
                   Hugging Face router by default).
    EchoNarrator:  echoes the action back as narration; no network calls.
                   Selected with NARRATOR_BACKEND=echo or main.py --echo-narrator.

Tests use their own stubs or patch httpx.AsyncClient.post.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

MIN_REPLY_LENGTH = 6

GM_PERSONA = """\
You are the Game Master (GM) of a roleplay set in the world of Bleach.
Reply in an immersive, descriptive voice.

RULES:
- Describe the surroundings, the reactions of NPCs and the consequences of actions
- NEVER speak for the players or their characters
- Never make decisions on behalf of player characters
- Narrate in the third person
- Be concise but atmospheric (2-4 sentences at most)
- Stay true to the world of Bleach
- The acting character is: {actor}

Current context: {context}"""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class Narrator(Protocol):
    async def generate(self, context: str, actor: str, action: str) -> str | None: ...


def build_context(character: dict[str, Any] | None, round_number: int) -> str:
    """Short situational summary of the acting character for the GM prompt."""
    character = character or {}
    location = character.get("location") or "Karakura Town"
    species = character.get("species") or "Unknown"
    parts = [f"Location: {location}.", f"Round {round_number}.", f"Species: {species}."]
    hp, max_hp = character.get("hp"), character.get("maxHp")
    if hp is not None and max_hp is not None:
        parts.append(f"Health: {hp}/{max_hp}.")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# HttpNarrator
# ---------------------------------------------------------------------------

class HttpNarrator:
    """Async chat-completions client.

    Request:  POST {url}  {"model", "messages": [system, user], "max_tokens", "temperature"}
    Response: {"choices": [{"message": {"content": "..."}}]}
              or the text-generation shape [{"generated_text": "..."}]

    Args:
        api_key:     Bearer token. Required; without one, narration is disabled upstream.
        url:         Full chat-completions endpoint URL.
        model:       Model identifier.
        timeout:     HTTP timeout in seconds. Defaults to 60.
    """

    def __init__(
        self,
        api_key: str,
        url: str,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.8,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _build_body(self, context: str, actor: str, action: str) -> dict:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": GM_PERSONA.format(actor=actor, context=context)},
                {"role": "user", "content": f"Action by {actor}: {action}"},
            ],
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }

    def _parse_response(self, data: Any) -> str:
        if isinstance(data, dict):
            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError):
                content = None
            if isinstance(content, str):
                return content.strip()
        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = data[0].get("generated_text")
            if isinstance(text, str):
                return text.strip()
        raise NarratorError("Unexpected response format from narrator backend")

    async def complete(self, context: str, actor: str, action: str) -> str:
        """Raw call. Raises NarratorError on every transport or protocol failure."""
        body = self._build_body(context, actor, action)
        logger.debug("narrator call actor=%s url=%s action_len=%d", actor, self._url, len(action))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise NarratorError(f"Cannot connect to narrator backend at {self._url}") from e
        except httpx.HTTPStatusError as e:
            raise NarratorError(
                f"Narrator backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise NarratorError(f"Narrator backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise NarratorError(f"Narrator request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise NarratorError("Narrator backend returned invalid JSON") from e

        text = self._parse_response(data)
        logger.debug("narrator response actor=%s len=%d", actor, len(text))
        return text

    async def generate(self, context: str, actor: str, action: str) -> str | None:
        if not isinstance(action, str) or not action:
            return None
        if not isinstance(actor, str) or not actor:
            actor = "Character"
        try:
            text = await self.complete(context or "The world of Bleach", actor, action)
        except NarratorError as e:
            logger.warning("Narration unavailable: %s", e)
            return None
        if len(text) < MIN_REPLY_LENGTH:
            logger.info("Narration discarded: reply too short (%d chars)", len(text))
            return None
        return text


# ---------------------------------------------------------------------------
# EchoNarrator: no network calls
# ---------------------------------------------------------------------------

class EchoNarrator:
    """Narrates the action back verbatim. No network calls."""

    async def generate(self, context: str, actor: str, action: str) -> str | None:
        logger.debug("EchoNarrator actor=%s action_len=%d", actor, len(action))
        text = f"{actor}: {action}"
        return text if len(text) >= MIN_REPLY_LENGTH else None


# ---------------------------------------------------------------------------
# NarratorError: raised by HttpNarrator.complete for all failures
# ---------------------------------------------------------------------------

class NarratorError(RuntimeError):
    """Raised when the narrator backend cannot be reached or returns an error."""
