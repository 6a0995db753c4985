"""
LLM generation providers — OpenRouter, OpenAI and Anthropic implementations.

Implements the ``GenerationProvider`` protocol from core using the OpenAI
and Anthropic SDKs. OpenRouter exposes an OpenAI-compatible API, so it
reuses the OpenAI client with a different base URL and defaults to a
multimodal model that can listen to the uploaded audio. Lives in
ingestion/ because it performs network I/O (core/ must remain pure).

Usage::

    provider = create_generation_provider()  # reads LLM_PROVIDER env var
    response = provider.generate(request)
"""

import logging
import os
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

from core.generation.base import GenerationRequest, GenerationResponse, Message

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_MODEL = "google/gemini-2.5-pro"
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"

SUPPORTED_PROVIDERS: tuple[str, ...] = ("openrouter", "openai", "anthropic")


def _chat_messages(request: GenerationRequest) -> list[dict[str, str]]:
    return [{"role": m.role, "content": m.content} for m in request.resolved_messages()]


class OpenAIGenerationProvider:
    """Chat-completions provider for any OpenAI-compatible endpoint.

    The API key comes from ``key_env`` (``OPENAI_API_KEY`` by default)
    unless passed in. The media URL travels inside the last user message,
    so text-only models still receive it.
    """

    _label = "OpenAI"

    def __init__(
        self,
        model: str = DEFAULT_OPENAI_MODEL,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        key_env: str = "OPENAI_API_KEY",
    ) -> None:
        load_dotenv()
        resolved_key = api_key or os.environ.get(key_env, "")
        if not resolved_key:
            raise ValueError(f"{key_env} must be set in the environment or passed explicitly")
        client_kwargs: dict[str, Any] = {"api_key": resolved_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = openai.OpenAI(**client_kwargs)
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        """One chat completion; ``request.timeout_seconds`` is the network timeout.

        Raises:
            RuntimeError: The call failed or produced no choices.
        """
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _chat_messages(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.timeout_seconds is not None:
            kwargs["timeout"] = request.timeout_seconds

        try:
            response = self._client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise RuntimeError(f"{self._label} generation failed: {exc}") from exc

        if not response.choices:
            raise RuntimeError(f"{self._label} generation returned no choices")
        choice = response.choices[0]
        usage = response.usage

        return GenerationResponse(
            content=choice.message.content or "",
            model=response.model or self._model,
            usage_input_tokens=usage.prompt_tokens if usage else 0,
            usage_output_tokens=usage.completion_tokens if usage else 0,
        )


class OpenRouterGenerationProvider(OpenAIGenerationProvider):
    """
    Generation provider backed by OpenRouter.

    Reads ``OPENROUTER_API_KEY`` from the environment. Defaults to
    ``google/gemini-2.5-pro``, which accepts audio by URL.
    """

    _label = "OpenRouter"

    def __init__(
        self,
        model: str = DEFAULT_OPENROUTER_MODEL,
        *,
        api_key: str | None = None,
        base_url: str = OPENROUTER_BASE_URL,
    ) -> None:
        super().__init__(model, api_key=api_key, base_url=base_url, key_env="OPENROUTER_API_KEY")


class AnthropicGenerationProvider:
    """Messages-API provider (``ANTHROPIC_API_KEY``).

    System messages go in the separate ``system`` parameter. Claude cannot
    fetch audio, so its commentary leans on the technical digest alone.
    """

    def __init__(
        self,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        *,
        api_key: str | None = None,
    ) -> None:
        load_dotenv()
        resolved_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not resolved_key:
            raise ValueError(
                "ANTHROPIC_API_KEY must be set in the environment or passed explicitly"
            )
        self._client = anthropic.Anthropic(api_key=resolved_key)
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        system_text, conversation = _split_system_messages(request.resolved_messages())
        messages = [{"role": m.role, "content": m.content} for m in conversation]

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if system_text:
            kwargs["system"] = system_text
        if request.timeout_seconds is not None:
            kwargs["timeout"] = request.timeout_seconds

        try:
            response = self._client.messages.create(**kwargs)
        except Exception as exc:
            raise RuntimeError(f"Anthropic generation failed: {exc}") from exc

        content = "".join(block.text for block in response.content if block.type == "text")

        return GenerationResponse(
            content=content,
            model=response.model,
            usage_input_tokens=response.usage.input_tokens,
            usage_output_tokens=response.usage.output_tokens,
        )


def _split_system_messages(
    messages: tuple[Message, ...],
) -> tuple[str, tuple[Message, ...]]:
    """Separate system messages from conversation messages.

    Returns:
        Tuple of (system_text, remaining_messages). System messages are
        joined with blank lines.
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    conversation = tuple(m for m in messages if m.role != "system")
    return "\n\n".join(system_parts), conversation


def create_generation_provider(
    provider: str | None = None,
    *,
    model: str | None = None,
    api_key: str | None = None,
) -> OpenRouterGenerationProvider | OpenAIGenerationProvider | AnthropicGenerationProvider:
    """Factory: create a generation provider based on configuration.

    Reads ``LLM_PROVIDER`` from the environment if *provider* is not
    specified (default ``"openrouter"``), and ``ANNOTATION_MODEL`` if
    *model* is not specified.

    Args:
        provider: ``"openrouter"``, ``"openai"`` or ``"anthropic"``.
        model: Optional model override. Uses provider defaults if omitted.
        api_key: Optional API key override. Reads from env if omitted.

    Returns:
        A concrete generation provider satisfying ``GenerationProvider``.

    Raises:
        ValueError: If provider name is not recognized or its key is missing.
    """
    load_dotenv()
    resolved_provider = (
        (provider or os.environ.get("LLM_PROVIDER", "openrouter")).lower().strip()
    )
    resolved_model = model or os.environ.get("ANNOTATION_MODEL") or None

    kwargs: dict[str, Any] = {}
    if resolved_model:
        kwargs["model"] = resolved_model
    if api_key:
        kwargs["api_key"] = api_key

    if resolved_provider == "openrouter":
        return OpenRouterGenerationProvider(**kwargs)
    if resolved_provider == "openai":
        return OpenAIGenerationProvider(**kwargs)
    if resolved_provider == "anthropic":
        return AnthropicGenerationProvider(**kwargs)

    raise ValueError(
        f"Unknown LLM_PROVIDER: {resolved_provider!r}. "
        f"Supported values: {', '.join(repr(p) for p in SUPPORTED_PROVIDERS)}."
    )
