# =============================================================================
# Unit Tests — LLM Providers, Prompts and complete_with_context
# =============================================================================
#
# SDK clients are never contacted: the provider's `_client` call is replaced
# with an AsyncMock returning real SDK response models.
# =============================================================================

import asyncio
from dataclasses import dataclass
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest
from anthropic.types import Message
from openai.types.chat import ChatCompletion

from library.config import Settings
from library.errors import CompletionFailure
from library.services.llm import (
    AnthropicProvider,
    LLMResponse,
    OpenAICompatibleProvider,
    build_user_message,
    complete_with_context,
    get_llm_provider,
)
from library.services.prompts import (
    book_system_prompt,
    library_summary,
    library_system_prompt,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


@dataclass
class FakeBook:
    title: str
    author: str


def _chat_completion(content: str | None) -> ChatCompletion:
    return ChatCompletion.model_validate({
        "id": "gen-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "google/gemini-pro",
        "choices": [{
            "index": 0,
            "finish_reason": "stop",
            "message": {"role": "assistant", "content": content},
        }],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    })


def _claude_message(text: str) -> Message:
    return Message.model_validate({
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude-test",
        "content": [{"type": "text", "text": text}] if text else [],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 10, "output_tokens": 2},
    })


def _settings(**overrides) -> Settings:
    values = {"llm_api_key": "test-key", "llm_temperature": 0.7, "llm_max_tokens": 300}
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# OpenAI-compatible (OpenRouter)
# ---------------------------------------------------------------------------


class TestOpenAICompatibleProvider:
    """Tests for OpenAICompatibleProvider.complete()."""

    def _make_provider(self, create: AsyncMock) -> OpenAICompatibleProvider:
        provider = OpenAICompatibleProvider(config=_settings())
        provider._client.chat.completions.create = create
        return provider

    def test_sends_system_then_user_message(self):
        create = AsyncMock(return_value=_chat_completion("Dune is about spice."))
        provider = self._make_provider(create)

        response = _run(provider.complete(
            messages=[{"role": "user", "content": "What is Dune about?"}],
            system="You are helpful.",
        ))

        assert response.content == "Dune is about spice."
        assert response.input_tokens == 12
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "google/gemini-pro"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 300
        assert kwargs["messages"] == [
            {"role": "system", "content": "You are helpful."},
            {"role": "user", "content": "What is Dune about?"},
        ]

    def test_zero_temperature_is_respected(self):
        create = AsyncMock(return_value=_chat_completion("ok"))
        provider = self._make_provider(create)
        _run(provider.complete(messages=[], temperature=0.0))
        assert create.call_args.kwargs["temperature"] == 0.0

    def test_empty_answer_raises(self):
        provider = self._make_provider(AsyncMock(return_value=_chat_completion(None)))
        with pytest.raises(CompletionFailure, match="did not contain an answer"):
            _run(provider.complete(messages=[{"role": "user", "content": "hi"}]))

    def test_status_error_carries_status_and_body(self):
        request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
        error = openai.APIStatusError(
            "rate limited",
            response=httpx.Response(429, text="slow down", request=request),
            body=None,
        )
        provider = self._make_provider(AsyncMock(side_effect=error))

        with pytest.raises(CompletionFailure) as exc_info:
            _run(provider.complete(messages=[{"role": "user", "content": "hi"}]))

        assert exc_info.value.status_code == 429
        assert exc_info.value.body == "slow down"

    def test_missing_api_key_raises(self):
        with pytest.raises(ValueError, match="LLM_API_KEY"):
            OpenAICompatibleProvider(config=Settings(llm_api_key=None))


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    """Tests for AnthropicProvider.complete()."""

    def _make_provider(self, create: AsyncMock) -> AnthropicProvider:
        provider = AnthropicProvider(config=_settings(llm_model="claude-test"))
        provider._client.messages.create = create
        return provider

    def test_system_prompt_is_top_level_kwarg(self):
        create = AsyncMock(return_value=_claude_message("Hello."))
        provider = self._make_provider(create)

        response = _run(provider.complete(
            messages=[{"role": "user", "content": "hi"}],
            system="Be brief.",
        ))

        assert response.content == "Hello."
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    def test_no_text_block_raises(self):
        provider = self._make_provider(AsyncMock(return_value=_claude_message("")))
        with pytest.raises(CompletionFailure):
            _run(provider.complete(messages=[{"role": "user", "content": "hi"}]))

    def test_connection_error_is_wrapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIConnectionError(request=request)
        provider = self._make_provider(AsyncMock(side_effect=error))

        with pytest.raises(CompletionFailure) as exc_info:
            _run(provider.complete(messages=[{"role": "user", "content": "hi"}]))
        assert exc_info.value.status_code is None


class TestGetLLMProvider:
    """Tests for the provider factory."""

    def test_default_is_openai_compatible(self):
        assert isinstance(get_llm_provider(_settings()), OpenAICompatibleProvider)

    def test_anthropic(self):
        provider = get_llm_provider(_settings(llm_provider="anthropic"))
        assert isinstance(provider, AnthropicProvider)

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown llm_provider"):
            get_llm_provider(_settings(llm_provider="local"))


# ---------------------------------------------------------------------------
# complete_with_context and prompts
# ---------------------------------------------------------------------------


class TestCompleteWithContext:
    """Tests for complete_with_context()."""

    def test_user_message_format(self):
        assert build_user_message("Who?", "Some context.") == (
            "Context:\nSome context.\n\nQuestion: Who?"
        )

    def test_sends_context_and_system_prompt(self):
        llm = AsyncMock()
        llm.complete.return_value = LLMResponse(
            content="Paul.", model="m", input_tokens=1, output_tokens=1,
        )

        answer = _run(complete_with_context(llm, "SYSTEM", "Who?", "Paul arrives."))

        assert answer == "Paul."
        llm.complete.assert_awaited_once_with(
            messages=[{
                "role": "user",
                "content": "Context:\nPaul arrives.\n\nQuestion: Who?",
            }],
            system="SYSTEM",
        )

    def test_failure_propagates(self):
        llm = AsyncMock()
        llm.complete.side_effect = CompletionFailure("boom", status_code=500)
        with pytest.raises(CompletionFailure):
            _run(complete_with_context(llm, "S", "Q", ""))


class TestPrompts:
    """Tests for the system prompt builders."""

    def test_library_summary_lists_books(self):
        books = [FakeBook("Dune", "Frank Herbert"), FakeBook("Emma", "Jane Austen")]
        assert library_summary(books) == (
            "- Dune by Frank Herbert\n- Emma by Jane Austen"
        )

    def test_library_prompt_asks_for_title_links(self):
        prompt = library_system_prompt([FakeBook("Dune", "Frank Herbert")])
        assert "- Dune by Frank Herbert" in prompt
        assert "[[Book Title]]" in prompt

    def test_book_prompt_names_the_book(self):
        prompt = book_system_prompt(FakeBook("Emma", "Jane Austen"))
        assert '"Emma" by Jane Austen' in prompt
