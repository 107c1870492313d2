# =============================================================================
# Multi-Provider LLM Abstraction — Chat Completion Client
# =============================================================================
#
# Provides a common interface for chat completions, with concrete
# implementations for OpenAI-compatible APIs (OpenRouter by default) and
# Anthropic (Claude).
#
# DESIGN DECISION: Native SDKs with SDK-level retries disabled.
# One non-streaming request per question. A non-2xx response, a transport
# error, or an empty answer raises CompletionFailure; nothing is retried.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── OpenAICompatibleProvider — system prompt as a message role
#   ├── AnthropicProvider        — system prompt as top-level kwarg
#   ├── get_llm_provider()       — factory, reads from config
#   └── complete_with_context()  — context + question → answer text
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from library.config import Settings, settings
from library.errors import CompletionFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Normalised response from any LLM provider."""

    content: str           # The generated text
    model: str             # Model identifier (e.g., "google/gemini-pro")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol defining the LLM provider interface.

    Implementations raise CompletionFailure for every upstream problem.
    """

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (pass the system prompt via the system param).
            system: System prompt for the LLM.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...

    async def aclose(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: OpenAI-Compatible (OpenRouter, OpenAI, DeepSeek, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat-completions spec.

    Defaults to OpenRouter:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://openrouter.ai/api/v1
        LLM_API_KEY=your-key
        LLM_MODEL=google/gemini-pro
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        config: Settings | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        config = config or settings
        resolved_key = api_key or config.llm_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        resolved_base_url = base_url or config.llm_base_url
        client_kwargs: dict = {
            "api_key": resolved_key,
            "max_retries": 0,
            "timeout": config.http_timeout_seconds,
        }
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        # OpenRouter attribution headers; other providers ignore them
        headers: dict[str, str] = {"X-Title": config.openrouter_title}
        if config.openrouter_referer:
            headers["HTTP-Referer"] = config.openrouter_referer
        client_kwargs["default_headers"] = headers

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or config.llm_model
        self._temperature = config.llm_temperature
        self._max_tokens = config.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        import openai

        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=all_messages,
                max_tokens=max_tokens or self._max_tokens,
                temperature=(
                    temperature if temperature is not None else self._temperature
                ),
            )
        except openai.APIStatusError as exc:
            raise CompletionFailure(
                "Chat completion was rejected",
                status_code=exc.status_code,
                body=exc.response.text,
            ) from exc
        except openai.APIError as exc:
            raise CompletionFailure(f"Chat completion failed: {exc}") from exc

        choices = response.choices or []
        content = choices[0].message.content if choices and choices[0].message else None
        if not content:
            raise CompletionFailure(
                "Chat completion response did not contain an answer",
                body=response.model_dump_json(),
            )

        usage = response.usage
        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Implementation 2: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system".
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        config: Settings | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        config = config or settings
        resolved_key = api_key or config.llm_api_key or config.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(
            api_key=resolved_key,
            max_retries=0,
            timeout=config.http_timeout_seconds,
        )
        self._model = model or config.llm_model
        self._temperature = config.llm_temperature
        self._max_tokens = config.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        import anthropic

        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": (
                temperature if temperature is not None else self._temperature
            ),
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise CompletionFailure(
                "Claude completion was rejected",
                status_code=exc.status_code,
                body=exc.response.text,
            ) from exc
        except anthropic.APIError as exc:
            raise CompletionFailure(f"Claude completion failed: {exc}") from exc

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        if not content:
            raise CompletionFailure(
                "Claude response did not contain a text block",
            )

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_llm_provider(
    config: Settings | None = None,
) -> OpenAICompatibleProvider | AnthropicProvider:
    """
    Build the configured LLM provider.

    Reads `llm_provider` from settings:
    - "openai_compatible" → OpenAICompatibleProvider (default)
    - "anthropic" → AnthropicProvider
    """
    config = config or settings
    if config.llm_provider == "anthropic":
        return AnthropicProvider(config=config)
    if config.llm_provider == "openai_compatible":
        return OpenAICompatibleProvider(config=config)

    raise ValueError(
        f"Unknown llm_provider '{config.llm_provider}'. "
        "Supported types: ['anthropic', 'openai_compatible']"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_user_message(question: str, context: str) -> str:
    return f"Context:\n{context}\n\nQuestion: {question}"


async def complete_with_context(
    llm: LLMProvider,
    system_prompt: str,
    question: str,
    context: str,
) -> str:
    """
    Answer ``question`` grounded in ``context``.

    An empty context is still sent; the system prompt tells the model what
    to do when the answer is not in the context.

    Raises:
        CompletionFailure: Upstream error or missing answer.
    """
    response = await llm.complete(
        messages=[{"role": "user", "content": build_user_message(question, context)}],
        system=system_prompt,
    )

    logger.info(
        "Completion done: model=%s, tokens=%d+%d, context_chars=%d",
        response.model, response.input_tokens, response.output_tokens,
        len(context),
    )
    return response.content
