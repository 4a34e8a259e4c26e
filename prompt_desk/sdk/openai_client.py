"""
OpenAI chat client wrapper.

Sends a single user prompt and returns the text, either whole or as a
stream of chunks. Provider failures are translated into ProviderError
subclasses by upstream status. Nothing is retried.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import openai
from openai import OpenAI

from ..core.token_counter import TokenUsage


class ProviderError(Exception):
    """Raised when the provider call fails."""
    user_message = "Request failed."

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ProviderError):
    """Provider refused the call because of rate limiting (HTTP 429)."""
    user_message = "Rate limit reached. Wait a moment, then submit again."


class UnauthorizedError(ProviderError):
    """Provider rejected the credentials (HTTP 401/403)."""
    user_message = "The provider rejected the API key. Check OPENAI_API_KEY and restart."


class UpstreamError(ProviderError):
    """Any other provider or network failure."""

    @property
    def user_message(self) -> str:
        return f"Request failed: {self}"


def classify_error(exc: Exception) -> ProviderError:
    """Map a provider exception onto the error taxonomy by HTTP status."""
    status_code = getattr(exc, "status_code", None)
    message = str(exc) or exc.__class__.__name__

    if status_code == 429:
        return RateLimitedError(message, status_code)
    if status_code in (401, 403):
        return UnauthorizedError(message, status_code)
    return UpstreamError(message, status_code)


def _usage_from(raw_usage: Any) -> Optional[TokenUsage]:
    if raw_usage is None:
        return None
    return TokenUsage(
        input_tokens=raw_usage.prompt_tokens,
        output_tokens=raw_usage.completion_tokens
    )


@dataclass(frozen=True)
class CompletionResult:
    """Full response text plus whatever metadata the provider reported."""
    text: str
    model: str
    usage: Optional[TokenUsage] = None
    request_id: Optional[str] = None


class CompletionStream:
    """Iterable of response text chunks in arrival order.

    ``usage`` and ``request_id`` are filled in as the provider sends them,
    so they are only meaningful once iteration has finished.
    """

    def __init__(self, raw_stream: Any, model: str):
        self._raw_stream = raw_stream
        self.model = model
        self.usage: Optional[TokenUsage] = None
        self.request_id: Optional[str] = None

    def __iter__(self) -> Iterator[str]:
        try:
            for chunk in self._raw_stream:
                if getattr(chunk, "id", None):
                    self.request_id = chunk.id
                if getattr(chunk, "model", None):
                    self.model = chunk.model
                usage = _usage_from(getattr(chunk, "usage", None))
                if usage is not None:
                    self.usage = usage
                # The trailing usage chunk carries no choices
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as e:
            raise classify_error(e) from e

    def close(self) -> None:
        """Abort the underlying HTTP response."""
        close = getattr(self._raw_stream, "close", None)
        if close is not None:
            close()


class PromptClient:
    """OpenAI client wrapper for single-prompt requests."""

    def __init__(self, api_key: str, timeout: Optional[float] = None):
        """Initialize the provider client.

        Args:
            api_key: Provider API key (required)
            timeout: Optional request timeout in seconds

        Raises:
            ValueError: If api_key is missing/empty
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        options: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if timeout is not None:
            options["timeout"] = timeout
        self.client = OpenAI(**options)

    def _request_args(self, prompt: str, model: str, temperature: Optional[float]) -> Dict[str, Any]:
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")

        args: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}]
        }
        if temperature is not None:
            args["temperature"] = temperature
        return args

    def complete(self, prompt: str, model: str, temperature: Optional[float] = None) -> CompletionResult:
        """Send the prompt and wait for the full response.

        Raises:
            ValueError: If prompt is empty
            ProviderError: If the provider call fails
        """
        args = self._request_args(prompt, model, temperature)
        try:
            response = self.client.chat.completions.create(**args)
        except openai.OpenAIError as e:
            raise classify_error(e) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""

        return CompletionResult(
            text=text,
            model=response.model or model,
            usage=_usage_from(response.usage),
            request_id=response.id
        )

    def stream(self, prompt: str, model: str, temperature: Optional[float] = None) -> CompletionStream:
        """Send the prompt and return a stream of response chunks.

        Raises:
            ValueError: If prompt is empty
            ProviderError: If the provider call fails
        """
        args = self._request_args(prompt, model, temperature)
        try:
            raw_stream = self.client.chat.completions.create(
                stream=True,
                stream_options={"include_usage": True},
                **args
            )
        except openai.OpenAIError as e:
            raise classify_error(e) from e

        return CompletionStream(raw_stream, model)
