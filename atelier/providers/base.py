"""
Provider Adapter Base
=====================

The contract every vendor adapter implements, plus the parts they share:
credential precondition, rate-limit retry, error classification and the
provider catalog.

    send(messages, system_prompt, tools=None, stream=False, on_text=None)
        -> ProviderResponse

Streamed calls (chat, no tools) report every text delta through on_text and
return the accumulated text. Non-streamed calls carry the tool catalog; a
reply containing tool calls has stop_reason "tool_use", a reply with text
only and a natural stop has "end_turn".

Retry policy:
    rate limit  -> wait backoff * attempt (15s, 30s), at most 2 extra tries
    model access -> raised immediately
    other        -> raised immediately

Each adapter builds its SDK client once, with its own key, and disables the
SDK's built-in retries so this policy is the only one in effect.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from atelier.messages import END_TURN, TOOL_USE, Message, ProviderResponse, TextBlock, ToolUseBlock
from atelier.providers.errors import (
    MissingCredentialError,
    ModelAccessError,
    ProviderAPIError,
    ProviderError,
    RateLimitError,
    RequestCancelledError,
)
from atelier.tools import ToolDefinition
from atelier.utils.logger import Logger

logger = Logger("Provider")

TextCallback = Callable[[str, str], Awaitable[None] | None]
RetryCallback = Callable[[int, float], Awaitable[None] | None]
Sleep = Callable[[float], Awaitable[None]]
AbortCheck = Callable[[], bool]

SUMMARY_SYSTEM_PROMPT = "You produce a very concise summary. Reply only with the summary."

_MODEL_ACCESS_MARKERS = (
    "does not have access to model",
    "access denied",
    "model_not_found",
    "not allowed to use model",
)


@dataclass(frozen=True)
class ProviderInfo:
    """A selectable vendor and its models."""
    id: str
    name: str
    models: tuple[str, ...]

    @property
    def default_model(self) -> str:
        return self.models[0]


PROVIDERS: dict[str, ProviderInfo] = {
    "claude": ProviderInfo(
        id="claude",
        name="Claude",
        models=("claude-sonnet-4-6", "claude-opus-4-6", "claude-haiku-4-5-20251001"),
    ),
    "openai": ProviderInfo(
        id="openai",
        name="ChatGPT",
        models=("gpt-4o", "gpt-4o-mini", "gpt-4-turbo"),
    ),
    "grok": ProviderInfo(
        id="grok",
        name="Grok",
        models=("grok-3", "grok-3-fast", "grok-2"),
    ),
}


def get_provider_info(provider_id: str) -> ProviderInfo:
    """
    Raises:
        KeyError: For an unknown provider id
    """
    try:
        return PROVIDERS[provider_id]
    except KeyError:
        raise KeyError(f"Unknown provider: {provider_id}") from None


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable (callbacks may be sync or async)."""
    if inspect.isawaitable(value):
        return await value
    return value


def normalize_stop_reason(vendor_reason: str | None, has_tool_calls: bool, natural: tuple[str, ...]) -> str:
    """
    Map a vendor stop value to the neutral vocabulary.

    Tool calls win; a natural stop becomes end_turn; anything else
    (max_tokens, length, content_filter...) passes through unchanged.
    """
    if has_tool_calls:
        return TOOL_USE
    if vendor_reason is None or vendor_reason in natural:
        return END_TURN
    return vendor_reason


def classify_by_message(exc: BaseException, provider: str, model: str | None) -> ProviderError:
    """Fallback classification from the error text."""
    text = str(exc)
    lowered = text.lower()
    if "rate_limit" in lowered or "rate limit" in lowered:
        return RateLimitError(text, provider)
    if any(marker in lowered for marker in _MODEL_ACCESS_MARKERS):
        return ModelAccessError(text, provider, model)
    if isinstance(exc, httpx.TimeoutException):
        return ProviderAPIError(f"Request timed out: {text}", provider)
    return ProviderAPIError(text or type(exc).__name__, provider)


async def call_with_retry(
    operation: Callable[[], Awaitable[Any]],
    classify: Callable[[BaseException], ProviderError],
    retries: int = 2,
    backoff_seconds: float = 15.0,
    on_retry: RetryCallback | None = None,
    sleep: Sleep = asyncio.sleep,
    should_abort: AbortCheck | None = None
) -> Any:
    """
    Run operation, retrying rate-limit failures with linear backoff.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        classify: Turns a raw SDK exception into a ProviderError
        retries: Extra attempts after the first
        backoff_seconds: Delay unit; attempt n waits n * backoff_seconds
        on_retry: Told (attempt, delay) before each wait
        sleep: Injected for tests
        should_abort: Checked after every wait; True stops before the next request

    Raises:
        RequestCancelledError: should_abort returned True after a wait
        ProviderError: The classified failure once retries are exhausted,
            or immediately for anything but a rate limit
    """
    waits = 0

    async def attempt_once() -> Any:
        if waits and should_abort is not None and should_abort():
            raise RequestCancelledError()
        try:
            return await operation()
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001 - every SDK failure is classified
            raise classify(exc) from exc

    async def pause(delay: float) -> None:
        nonlocal waits
        waits += 1
        logger.warning(f"Rate limited, retrying in {delay:g}s", {"attempt": waits})
        if on_retry is not None:
            await maybe_await(on_retry(waits, delay))
        await sleep(delay)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_incrementing(start=backoff_seconds, increment=backoff_seconds),
        retry=retry_if_exception_type(RateLimitError),
        sleep=pause,
        reraise=True,
    )
    return await retrying(attempt_once)


class ProviderAdapter:
    """
    Base class for vendor adapters.

    Subclasses implement _build_client, _create, _stream, _complete_text
    and _classify.

    Example:
        adapter = AnthropicAdapter(api_key=key, model="claude-sonnet-4-6")
        response = await adapter.send(
            messages=[Message.user("List the project files")],
            system_prompt=prompt,
            tools=AGENT_TOOLS,
        )
        for call in response.tool_calls:
            ...
    """

    provider_id: ClassVar[str] = ""
    supports_images: ClassVar[bool] = False
    natural_stop_reasons: ClassVar[tuple[str, ...]] = (END_TURN,)

    def __init__(
        self,
        api_key: str | None,
        model: str | None = None,
        max_tokens: int = 4096,
        summary_max_tokens: int = 300,
        timeout_seconds: float = 600.0,
        rate_limit_retries: int = 2,
        backoff_seconds: float = 15.0,
        client: Any = None,
        sleep: Sleep = asyncio.sleep
    ):
        """
        Args:
            api_key: Vendor key; None leaves the adapter unusable until set
            model: Model id (defaults to the vendor's first model)
            max_tokens: Output cap per request
            summary_max_tokens: Output cap for summarization requests
            timeout_seconds: Transport timeout per request
            rate_limit_retries: Extra attempts on rate limits
            backoff_seconds: Linear backoff unit
            client: Pre-built SDK client (tests inject fakes here)
            sleep: Injected for tests
        """
        self.info = get_provider_info(self.provider_id)
        self.api_key = api_key
        self.model = model or self.info.default_model
        self.max_tokens = max_tokens
        self.summary_max_tokens = summary_max_tokens
        self.timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self.rate_limit_retries = rate_limit_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.logger = logger.child(self.info.name)

        self.client = client
        if self.client is None and api_key:
            self.client = self._build_client(api_key)

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)

    def require_credential(self) -> None:
        """
        Raises:
            MissingCredentialError: When no key is configured
        """
        if not self.api_key:
            raise MissingCredentialError(self.info.name, self.provider_id)

    async def send(
        self,
        messages: list[Message],
        system_prompt: str,
        tools: list[ToolDefinition] | tuple[ToolDefinition, ...] | None = None,
        stream: bool = False,
        on_text: TextCallback | None = None,
        on_retry: RetryCallback | None = None,
        should_abort: AbortCheck | None = None
    ) -> ProviderResponse:
        """
        Send one request and translate the reply.

        Args:
            messages: Vendor-neutral history, oldest first
            system_prompt: Instructions for this call
            tools: Tool catalog (non-streamed calls only)
            stream: Stream text deltas through on_text
            on_text: Called with (delta, accumulated_text)
            on_retry: Called with (attempt, delay) before a rate-limit wait
            should_abort: Checked after each wait, before the retried request

        Raises:
            MissingCredentialError: Before any network call, without a key
            RequestCancelledError: should_abort became true during a wait
            RateLimitError: After retries are exhausted
            ModelAccessError: Immediately
            ProviderAPIError: Any other failure
        """
        self.require_credential()

        if stream:
            if tools:
                raise ValueError("Tool calls are not supported on streamed requests")
            operation = lambda: self._stream(messages, system_prompt, on_text)  # noqa: E731
        else:
            operation = lambda: self._create(messages, system_prompt, list(tools or []))  # noqa: E731

        self.logger.debug(
            f"Request to {self.model}",
            {"messages": len(messages), "tools": len(tools or []), "stream": stream}
        )
        return await call_with_retry(
            operation,
            classify=self._classify,
            retries=self.rate_limit_retries,
            backoff_seconds=self.backoff_seconds,
            on_retry=on_retry,
            sleep=self._sleep,
            should_abort=should_abort,
        )

    async def summarize(self, prompt: str, system: str = SUMMARY_SYSTEM_PROMPT) -> str:
        """
        One short, non-streamed completion used for summaries.

        Same credential check and retry policy as send().
        """
        self.require_credential()
        text = await call_with_retry(
            lambda: self._complete_text(prompt, system, self.summary_max_tokens),
            classify=self._classify,
            retries=self.rate_limit_retries,
            backoff_seconds=self.backoff_seconds,
            sleep=self._sleep,
        )
        return (text or "").strip()

    def _response(self, blocks: list[TextBlock | ToolUseBlock], vendor_reason: str | None) -> ProviderResponse:
        has_calls = any(isinstance(b, ToolUseBlock) for b in blocks)
        return ProviderResponse(
            content_blocks=blocks,
            stop_reason=normalize_stop_reason(vendor_reason, has_calls, self.natural_stop_reasons),
            vendor_stop_reason=vendor_reason,
        )

    # ==========================================================================
    # Vendor hooks
    # ==========================================================================

    def _build_client(self, api_key: str) -> Any:
        raise NotImplementedError

    async def _create(
        self,
        messages: list[Message],
        system_prompt: str,
        tools: list[ToolDefinition]
    ) -> ProviderResponse:
        raise NotImplementedError

    async def _stream(
        self,
        messages: list[Message],
        system_prompt: str,
        on_text: TextCallback | None
    ) -> ProviderResponse:
        raise NotImplementedError

    async def _complete_text(self, prompt: str, system: str, max_tokens: int) -> str:
        raise NotImplementedError

    def _classify(self, exc: BaseException) -> ProviderError:
        return classify_by_message(exc, self.provider_id, self.model)
