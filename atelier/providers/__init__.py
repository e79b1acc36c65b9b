"""
Model Providers
===============

One adapter per vendor, all behind the same send() contract so the agent
loop never sees a vendor wire format.

    claude -> AnthropicAdapter  (Messages API, tool_use blocks)
    openai -> OpenAIAdapter     (Chat Completions, function_call)
    grok   -> GrokAdapter       (OpenAI-compatible endpoint, tool_calls)

Use create_adapter() to build one from the configuration.
"""

from atelier.providers.anthropic_provider import AnthropicAdapter
from atelier.providers.base import (
    PROVIDERS,
    ProviderAdapter,
    ProviderInfo,
    call_with_retry,
    get_provider_info,
)
from atelier.providers.errors import (
    MissingCredentialError,
    ModelAccessError,
    ProviderAPIError,
    ProviderError,
    RateLimitError,
    RequestCancelledError,
)
from atelier.providers.grok_provider import GrokAdapter
from atelier.providers.openai_provider import OpenAIAdapter
from atelier.utils.config import Config, get_config

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "claude": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "grok": GrokAdapter,
}


def create_adapter(
    provider_id: str,
    model: str | None = None,
    config: Config | None = None,
    api_key: str | None = None,
    **kwargs
) -> ProviderAdapter:
    """
    Build the adapter for a provider from the configuration.

    A missing key does not fail here; the adapter raises
    MissingCredentialError on its first send.

    Args:
        provider_id: "claude", "openai" or "grok"
        model: Model id (defaults to the configured one, then the vendor's first)
        config: Configuration (defaults to get_config())
        api_key: Overrides the configured key
        **kwargs: Passed to the adapter (client, sleep...)

    Raises:
        KeyError: For an unknown provider id
    """
    if provider_id not in ADAPTERS:
        raise KeyError(f"Unknown provider: {provider_id}")

    config = config or get_config()
    if model is None and config.models.default_provider == provider_id:
        model = config.models.default_model

    return ADAPTERS[provider_id](
        api_key=api_key if api_key is not None else config.keys.for_provider(provider_id),
        model=model,
        max_tokens=config.models.max_output_tokens,
        summary_max_tokens=config.models.summary_max_tokens,
        timeout_seconds=config.models.request_timeout_seconds,
        rate_limit_retries=config.retry.rate_limit_retries,
        backoff_seconds=config.retry.backoff_seconds,
        **kwargs
    )


__all__ = [
    "ADAPTERS",
    "PROVIDERS",
    "AnthropicAdapter",
    "GrokAdapter",
    "MissingCredentialError",
    "ModelAccessError",
    "OpenAIAdapter",
    "ProviderAPIError",
    "ProviderAdapter",
    "ProviderError",
    "ProviderInfo",
    "RateLimitError",
    "RequestCancelledError",
    "call_with_retry",
    "create_adapter",
    "get_provider_info",
]
