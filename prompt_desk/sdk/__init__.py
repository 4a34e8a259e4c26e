"""
SDK for Prompt Desk.

Provides the provider client used by the request orchestrator.
"""

from .openai_client import (
    CompletionResult,
    CompletionStream,
    PromptClient,
    ProviderError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
)

__all__ = [
    "CompletionResult",
    "CompletionStream",
    "PromptClient",
    "ProviderError",
    "RateLimitedError",
    "UnauthorizedError",
    "UpstreamError",
]
