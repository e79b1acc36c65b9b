"""
Provider Errors
===============

Failures at the vendor boundary. Each carries a user_message suitable for
showing in the conversation.

    ProviderError
    ├── MissingCredentialError   no key for the vendor; no request was made
    ├── RateLimitError           transient; retried before it reaches callers
    ├── ModelAccessError         key lacks access to the model; never retried
    ├── RequestCancelledError    the owner cancelled while a retry was pending
    └── ProviderAPIError         anything else the vendor or transport reported

Tool failures are not exceptions; see atelier.tools.ToolResult.
"""


class ProviderError(Exception):
    """Base class for adapter failures."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider

    @property
    def user_message(self) -> str:
        return f"Error: {self}"


class MissingCredentialError(ProviderError):
    """No API key is configured for the selected vendor."""

    def __init__(self, provider_name: str, provider: str | None = None):
        super().__init__(f"No API key configured for {provider_name}", provider)
        self.provider_name = provider_name

    @property
    def user_message(self) -> str:
        return f"No API key configured for {self.provider_name}. Add one in the API keys settings."


class RateLimitError(ProviderError):
    """The vendor rejected the request for rate or quota reasons."""

    @property
    def user_message(self) -> str:
        return f"Rate limited by the provider, giving up for this turn: {self}"


class ModelAccessError(ProviderError):
    """The key is valid but may not use the requested model."""

    def __init__(self, message: str, provider: str | None = None, model: str | None = None):
        super().__init__(message, provider)
        self.model = model

    @property
    def user_message(self) -> str:
        model = f" '{self.model}'" if self.model else ""
        return (
            f"Model access error: {self}. Check that the API key in use has access "
            f"to the selected model{model}, or pick another model."
        )


class ProviderAPIError(ProviderError):
    """Any other vendor or transport failure."""
    pass


class RequestCancelledError(ProviderError):
    """The caller cancelled during a rate-limit wait; no further request was sent."""

    def __init__(self, provider: str | None = None):
        super().__init__("Request cancelled", provider)

    @property
    def user_message(self) -> str:
        return "Request cancelled."
