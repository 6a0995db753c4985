"""
core/generation/base.py — Language-model contract for creative audio commentary.

The creative stage only needs "messages plus an audio URL in, text out".
Concrete clients (OpenRouter, OpenAI, Anthropic) live in ingestion/generation.py;
test doubles just implement ``generate``.
"""

from dataclasses import dataclass, replace
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Message:
    """A single message in a conversation.

    Attributes:
        role: One of ``"system"``, ``"user"``, or ``"assistant"``.
        content: The text content of the message.
    """

    role: str
    content: str

    def __post_init__(self) -> None:
        """Validate that role is one of the allowed values."""
        allowed = {"system", "user", "assistant"}
        if self.role not in allowed:
            raise ValueError(f"role must be one of {allowed}, got {self.role!r}")
        if not self.content:
            raise ValueError("content must be a non-empty string")


@dataclass(frozen=True)
class GenerationRequest:
    """Request to generate a completion from a list of messages.

    Attributes:
        messages: Ordered messages forming the conversation. At least one.
        temperature: Sampling temperature, between 0.0 and 2.0.
        max_tokens: Maximum tokens in the generated response.
        media_url: Optional URL of a media file the model should listen to.
        timeout_seconds: Optional per-call network timeout for the client.
    """

    messages: tuple[Message, ...]
    temperature: float = 0.7
    max_tokens: int = 1500
    media_url: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Validate request parameters."""
        if not self.messages:
            raise ValueError("messages must contain at least one Message")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be a positive integer, got {self.max_tokens}")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")

    def resolved_messages(self) -> tuple[Message, ...]:
        """Messages with the media reference placed in the last user message.

        Text-only models cannot take an attachment, so the URL travels as an
        ``Audio: <url>`` header line. Messages already mentioning the URL are
        left untouched.
        """
        if not self.media_url:
            return self.messages
        for idx in range(len(self.messages) - 1, -1, -1):
            msg = self.messages[idx]
            if msg.role != "user":
                continue
            if self.media_url in msg.content:
                return self.messages
            updated = replace(msg, content=f"Audio: {self.media_url}\n\n{msg.content}")
            return self.messages[:idx] + (updated,) + self.messages[idx + 1 :]
        return self.messages


@dataclass(frozen=True)
class GenerationResponse:
    """Model reply plus token usage, logged by the creative stage."""

    content: str
    model: str
    usage_input_tokens: int
    usage_output_tokens: int


@runtime_checkable
class GenerationProvider(Protocol):
    """Anything with a ``generate(request) -> GenerationResponse`` method."""

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Return the model's reply to ``request.resolved_messages()``.

        Raises:
            RuntimeError: The provider call failed.
        """
        ...
