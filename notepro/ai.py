"""
AI note processing over OpenAI's chat API.

The rest of notepro treats this as an opaque async function: hand it a note
and an instruction, get back new text (or an error) to feed through an
UpdateNote. Nothing here raises; failures come back as ``AIResult`` with
``success=False``.

Requires: an API key, passed explicitly, saved in settings, or (when the
"use built-in key" preference is set) NOTEPRO_OPENAI_API_KEY / OPENAI_API_KEY.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from .cache import SettingsCache
from .types import Note, note_text

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TEMPERATURE = 0.7

NOTE_EDIT_SYSTEM_PROMPT = (
    "You are an AI assistant helping with note editing. You will be given note "
    "content and instructions on how to modify it. Return ONLY the modified "
    "content without explanations or additional text."
)

MISSING_KEY_ERROR = (
    "API key is required. Please add your API key in settings "
    "or configure it in the environment."
)


@dataclass
class ChatMessage:
    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class AIResult:
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None
    debug: Optional[dict[str, Any]] = None


def env_api_key() -> Optional[str]:
    return os.environ.get("NOTEPRO_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")


def resolve_api_key(
    api_key: Optional[str] = None,
    settings: Optional[SettingsCache] = None,
) -> Optional[str]:
    """
    Pick the API key to use.

    Priority: explicit key, key saved in settings, environment (only when
    the settings prefer the built-in key, or when there are no settings).
    """
    if api_key:
        return api_key
    if settings is not None:
        saved = settings.get_api_key()
        if saved:
            return saved
        if not settings.get_use_env_api_key():
            return None
    return env_api_key()


class OpenAIChat:
    """Thin synchronous wrapper over ``client.chat.completions.create``."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: Any = None):
        self.model = model
        if client is not None:
            self._client = client
            return
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("AI note processing requires the 'openai' library")
        self._client = OpenAI(api_key=api_key)

    def complete(self, messages: list[ChatMessage], temperature: float = DEFAULT_TEMPERATURE) -> AIResult:
        logger.debug("Calling %s with %d messages", self.model, len(messages))
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                temperature=temperature,
            )
        except Exception as e:
            logger.warning("AI request failed: %s", e)
            return AIResult(success=False, error=str(e) or type(e).__name__,
                            debug={"exception": type(e).__name__})

        if not response.choices:
            return AIResult(success=False, error="The model returned no choices",
                            debug={"id": getattr(response, "id", None)})
        usage = getattr(response, "usage", None)
        return AIResult(
            success=True,
            data=response.choices[0].message.content,
            debug={
                "id": getattr(response, "id", None),
                "model": getattr(response, "model", self.model),
                "usage": usage.model_dump() if hasattr(usage, "model_dump") else usage,
            },
        )


async def chat_completion(
    messages: list[ChatMessage],
    api_key: Optional[str],
    model: str = DEFAULT_MODEL,
    temperature: float = DEFAULT_TEMPERATURE,
    *,
    client: Any = None,
) -> AIResult:
    """Run one chat completion in a worker thread."""
    if not api_key and client is None:
        return AIResult(success=False, error=MISSING_KEY_ERROR)
    try:
        chat = OpenAIChat(api_key, model=model, client=client)
    except RuntimeError as e:
        return AIResult(success=False, error=str(e))
    return await asyncio.to_thread(chat.complete, messages, temperature)


def build_note_messages(note: Note, instruction: str) -> list[ChatMessage]:
    text = note_text(note, sep="\n\n")
    return [
        ChatMessage("system", NOTE_EDIT_SYSTEM_PROMPT),
        ChatMessage(
            "user",
            f"Here is my note content:\n\n{text}\n\nInstruction: {instruction}\n\n"
            "Modify the content based on the instruction and return only the result.",
        ),
    ]


async def process_note_with_ai(
    note: Note,
    instruction: str,
    api_key: Optional[str] = None,
    model: str = DEFAULT_MODEL,
    *,
    temperature: float = DEFAULT_TEMPERATURE,
    client: Any = None,
) -> AIResult:
    """
    Ask the model to rewrite a note's text.

    Returns:
        AIResult whose ``data`` is the new text for the note's first text block
    """
    if not instruction or not instruction.strip():
        return AIResult(success=False, error="An instruction is required")
    result = await chat_completion(
        build_note_messages(note, instruction), api_key, model, temperature, client=client
    )
    if result.success and not result.data:
        return AIResult(success=False, error="The model returned no content", debug=result.debug)
    return result
