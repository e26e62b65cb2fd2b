"""Tests for AI note processing, using a fake OpenAI client."""

from dataclasses import replace
from types import SimpleNamespace

import pytest

from conftest import make_note
from notepro.ai import (
    MISSING_KEY_ERROR,
    NOTE_EDIT_SYSTEM_PROMPT,
    ChatMessage,
    build_note_messages,
    chat_completion,
    process_note_with_ai,
    resolve_api_key,
)
from notepro.cache import KeyValueStore, SettingsCache
from notepro.types import ImageBlock, TextBlock


class FakeCompletions:
    def __init__(self, reply="rewritten", error=None, choices=True):
        self.reply = reply
        self.error = error
        self.choices = choices
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        choices = [SimpleNamespace(message=SimpleNamespace(content=self.reply))] if self.choices else []
        return SimpleNamespace(id="chatcmpl-1", model=kwargs["model"], choices=choices, usage=None)


class FakeClient:
    def __init__(self, **kwargs):
        self.completions = FakeCompletions(**kwargs)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def settings(tmp_path):
    kv = KeyValueStore(tmp_path / "cache.db")
    yield SettingsCache(kv)
    kv.close()


@pytest.fixture
def no_env_key(monkeypatch):
    monkeypatch.delenv("NOTEPRO_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


class TestPrompt:

    def test_text_blocks_joined_with_blank_lines(self):
        note = replace(make_note("n1"), content=(
            TextBlock("t1", "first"),
            ImageBlock("i1", "data:x"),
            TextBlock("t2", "second"),
        ))
        system, user = build_note_messages(note, "shorten it")
        assert system == ChatMessage("system", NOTE_EDIT_SYSTEM_PROMPT)
        assert user.role == "user"
        assert user.content == (
            "Here is my note content:\n\nfirst\n\nsecond\n\nInstruction: shorten it\n\n"
            "Modify the content based on the instruction and return only the result."
        )


class TestChatCompletion:

    @pytest.mark.asyncio
    async def test_success(self):
        client = FakeClient(reply="done")
        result = await chat_completion([ChatMessage("user", "hi")], "sk-test", client=client)
        assert result.success
        assert result.data == "done"
        assert result.debug["id"] == "chatcmpl-1"
        request = client.completions.requests[0]
        assert request["model"] == "gpt-4o"
        assert request["temperature"] == 0.7
        assert request["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_missing_key(self):
        result = await chat_completion([ChatMessage("user", "hi")], None)
        assert not result.success
        assert result.error == MISSING_KEY_ERROR

    @pytest.mark.asyncio
    async def test_client_error_becomes_result(self):
        client = FakeClient(error=RuntimeError("rate limited"))
        result = await chat_completion([ChatMessage("user", "hi")], "sk-test", client=client)
        assert not result.success
        assert result.error == "rate limited"
        assert result.debug == {"exception": "RuntimeError"}

    @pytest.mark.asyncio
    async def test_no_choices(self):
        client = FakeClient(choices=False)
        result = await chat_completion([ChatMessage("user", "hi")], "sk-test", client=client)
        assert not result.success


class TestProcessNote:

    @pytest.mark.asyncio
    async def test_returns_new_text(self):
        client = FakeClient(reply="- milk\n- eggs")
        note = make_note("n1", text="milk, eggs")
        result = await process_note_with_ai(note, "make a list", "sk-test",
                                            model="gpt-4o-mini", client=client)
        assert result.success
        assert result.data == "- milk\n- eggs"
        assert client.completions.requests[0]["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_instruction_required(self):
        client = FakeClient()
        result = await process_note_with_ai(make_note("n1"), "  ", "sk-test", client=client)
        assert not result.success
        assert client.completions.requests == []

    @pytest.mark.asyncio
    async def test_empty_reply_is_failure(self):
        client = FakeClient(reply="")
        result = await process_note_with_ai(make_note("n1"), "do it", "sk-test", client=client)
        assert not result.success


class TestResolveApiKey:

    def test_explicit_key_wins(self, settings, no_env_key):
        settings.set_api_key("sk-saved")
        assert resolve_api_key("sk-explicit", settings) == "sk-explicit"

    def test_saved_key(self, settings, no_env_key):
        settings.set_api_key("sk-saved")
        assert resolve_api_key(None, settings) == "sk-saved"

    def test_env_key_only_when_preferred(self, settings, monkeypatch):
        monkeypatch.delenv("NOTEPRO_OPENAI_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert resolve_api_key(None, settings) is None
        settings.set_use_env_api_key(True)
        assert resolve_api_key(None, settings) == "sk-env"

    def test_notepro_env_var_preferred(self, monkeypatch):
        monkeypatch.setenv("NOTEPRO_OPENAI_API_KEY", "sk-notepro")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert resolve_api_key() == "sk-notepro"

    def test_nothing_configured(self, settings, no_env_key):
        settings.set_use_env_api_key(True)
        assert resolve_api_key(None, settings) is None
