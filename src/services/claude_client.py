"""Claude client for answer synthesis and speaker annotation."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Literal

from anthropic import APIStatusError, AsyncAnthropic, RateLimitError
from anthropic.types import MessageParam, TextBlock

from src.core.config import Settings, get_settings
from src.services.embedding_client import parse_retry_after

logger = logging.getLogger(__name__)


class ClaudeError(Exception):
    """Error from Claude API.

    Attributes:
        is_retryable: The same request may succeed later
        retry_after: Server-suggested wait in seconds, when rate limited
        quota_exhausted: The account is out of credit; retrying will not help
        rate_limited: Retries ran out while being rate limited
    """

    def __init__(
        self,
        message: str,
        is_retryable: bool = False,
        retry_after: float | None = None,
        quota_exhausted: bool = False,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(message)
        self.is_retryable = is_retryable
        self.retry_after = retry_after
        self.quota_exhausted = quota_exhausted
        self.rate_limited = rate_limited


@dataclass
class Message:
    """A chat message."""

    role: Literal["user", "assistant"]
    content: str


@dataclass
class ChatResponse:
    """Response from Claude chat completion."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str | None = None


@dataclass
class ChatRequest:
    """Request for Claude chat completion."""

    messages: list[Message]
    system_prompt: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.7


def is_quota_error(error: APIStatusError) -> bool:
    """Whether an API error means the account has run out of credit."""
    return error.status_code == 402 or "credit balance" in str(error).lower()


class ClaudeClient:
    """Client for Claude API chat completions with bounded rate-limit retries."""

    MAX_RETRIES = 3
    BASE_DELAY = 2.0  # seconds

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize Claude client.

        Args:
            settings: Application settings. If None, loads from environment.
            model: Claude model to use; defaults to the configured model.
        """
        self.settings = settings or get_settings()
        self.model = model or self.settings.anthropic_model
        self._client: AsyncAnthropic | None = None

    @property
    def client(self) -> AsyncAnthropic:
        """Get or create Anthropic client (lazy initialization)."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        return self._client

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def chat(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> ChatResponse:
        """Generate a chat response.

        Args:
            messages: List of conversation messages
            system_prompt: Optional system prompt to guide responses
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0-1)

        Returns:
            ChatResponse with generated content

        Raises:
            ClaudeError: If chat completion fails
        """
        request = ChatRequest(
            messages=messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return await self._chat_with_retry(request)

    async def _chat_with_retry(self, request: ChatRequest) -> ChatResponse:
        """Execute chat, backing off on rate limits and server errors.

        Raises:
            ClaudeError: If all retries fail or the error is terminal
        """
        last_error: Exception | None = None
        retry_after: float | None = None

        anthropic_messages: list[MessageParam] = [
            {"role": msg.role, "content": msg.content}
            for msg in request.messages
        ]

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=request.max_tokens,
                    system=request.system_prompt or "",
                    messages=anthropic_messages,
                    temperature=request.temperature,
                )
            except RateLimitError as e:
                last_error = e
                retry_after = parse_retry_after(e.response.headers.get("retry-after"))
                if attempt == self.MAX_RETRIES - 1:
                    break
                delay = self._calculate_backoff(attempt, retry_after)
                logger.warning(
                    f"Rate limited by Claude, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
                continue
            except APIStatusError as e:
                if is_quota_error(e):
                    raise ClaudeError(
                        f"Claude credit exhausted: {e}",
                        quota_exhausted=True,
                    ) from e
                if e.status_code >= 500 and attempt < self.MAX_RETRIES - 1:
                    last_error = e
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"Server error, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.MAX_RETRIES}): {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ClaudeError(
                    f"Failed to get chat response: {e}",
                    is_retryable=e.status_code >= 500,
                ) from e
            except Exception as e:
                raise ClaudeError(
                    f"Failed to get chat response: {e}",
                    is_retryable=False,
                ) from e

            content = ""
            if response.content and isinstance(response.content[0], TextBlock):
                content = response.content[0].text

            return ChatResponse(
                content=content,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                stop_reason=response.stop_reason,
            )

        raise ClaudeError(
            f"Failed to get chat response after {self.MAX_RETRIES} attempts: {last_error}",
            is_retryable=True,
            retry_after=retry_after,
            rate_limited=isinstance(last_error, RateLimitError),
        )

    def _calculate_backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Exponential backoff with ±25% jitter, seeded by a server hint if given."""
        if retry_after is not None:
            return retry_after
        delay: float = self.BASE_DELAY * (2**attempt)
        jitter: float = delay * 0.25 * (random.random() * 2 - 1)
        return delay + jitter
