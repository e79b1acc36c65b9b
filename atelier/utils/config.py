"""
Configuration Management
========================

Centralized configuration for the engine. All environment variables are
read, typed and defaulted here.

API keys are optional at load time: the user may only have configured one
vendor. A missing key for the selected vendor is reported per turn by the
provider adapter, before any network call is made.

Usage:
    from atelier.utils.config import get_config

    config = get_config()
    print(config.models.default_provider)
    print(config.keys.for_provider("claude"))
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from atelier.utils.logger import Logger

logger = Logger("Config")


def _optional(name: str, default: str) -> str:
    """
    Get an optional environment variable with a default.

    Args:
        name: The environment variable name
        default: Default value if not set

    Returns:
        The value or the default
    """
    return os.getenv(name, default)


def _secret(name: str) -> str | None:
    """Get a credential, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _optional_int(name: str, default: int) -> int:
    """
    Get an optional integer environment variable.

    Invalid values are reported and replaced by the default.
    """
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Get an optional float environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"{name} is not a valid number, using default: {default}")
        return default


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class ProviderKeysConfig:
    """API keys, one per vendor. None means not configured."""
    claude: str | None   # Anthropic key
    openai: str | None   # OpenAI key
    grok: str | None     # xAI key

    def for_provider(self, provider_id: str) -> str | None:
        """Return the key for a provider id, or None."""
        return getattr(self, provider_id, None)


@dataclass(frozen=True)
class ModelConfig:
    """Default provider/model selection and request sizing."""
    default_provider: str
    default_model: str | None
    max_output_tokens: int
    summary_max_tokens: int
    request_timeout_seconds: float


@dataclass(frozen=True)
class RetryConfig:
    """Rate-limit retry policy."""
    rate_limit_retries: int           # Extra attempts after the first
    backoff_seconds: float            # Multiplied by the attempt number


@dataclass(frozen=True)
class AgentConfig:
    """Agent loop limits."""
    max_iterations: int


@dataclass(frozen=True)
class PersistenceConfig:
    """Where conversations, project memory and the audit log live."""
    data_dir: Path
    conversation_save_delay: float     # Debounce for conversation saves
    memory_save_delay: float           # Debounce for project memory saves
    memory_refresh_delay: float        # Quiet period before re-summarizing memory
    audit_max_bytes: int
    audit_backups: int

    @property
    def conversations_file(self) -> Path:
        return self.data_dir / "conversations.json"

    @property
    def project_memory_file(self) -> Path:
        return self.data_dir / "project_memory.json"

    @property
    def audit_log_file(self) -> Path:
        return self.data_dir / "audit.log"


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

    Access via:
        config = get_config()
        config.keys.claude
        config.retry.backoff_seconds
        config.persistence.data_dir
    """
    keys: ProviderKeysConfig
    models: ModelConfig
    retry: RetryConfig
    agent: AgentConfig
    persistence: PersistenceConfig
    log_level: str


def load_config() -> Config:
    """
    Load configuration from the environment (and a .env file if present).

    Returns:
        Config: The typed configuration
    """
    load_dotenv()

    data_dir = Path(_optional("ATELIER_DATA_DIR", str(Path.home() / ".atelier"))).expanduser()

    return Config(
        keys=ProviderKeysConfig(
            claude=_secret("ANTHROPIC_API_KEY"),
            openai=_secret("OPENAI_API_KEY"),
            grok=_secret("XAI_API_KEY"),
        ),
        models=ModelConfig(
            default_provider=_optional("ATELIER_PROVIDER", "claude"),
            default_model=os.getenv("ATELIER_MODEL") or None,
            max_output_tokens=_optional_int("MAX_OUTPUT_TOKENS", 4096),
            summary_max_tokens=_optional_int("SUMMARY_MAX_TOKENS", 300),
            request_timeout_seconds=_optional_float("REQUEST_TIMEOUT_SECONDS", 600.0),
        ),
        retry=RetryConfig(
            rate_limit_retries=_optional_int("RATE_LIMIT_RETRIES", 2),
            backoff_seconds=_optional_float("RATE_LIMIT_BACKOFF_SECONDS", 15.0),
        ),
        agent=AgentConfig(
            max_iterations=_optional_int("AGENT_MAX_ITERATIONS", 20),
        ),
        persistence=PersistenceConfig(
            data_dir=data_dir,
            conversation_save_delay=_optional_float("CONVERSATION_SAVE_DELAY", 0.8),
            memory_save_delay=_optional_float("PROJECT_MEMORY_SAVE_DELAY", 0.6),
            memory_refresh_delay=_optional_float("PROJECT_MEMORY_REFRESH_DELAY", 4.5),
            audit_max_bytes=_optional_int("AUDIT_LOG_MAX_BYTES", 5 * 1024 * 1024),
            audit_backups=_optional_int("AUDIT_LOG_BACKUPS", 5),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """
    Get the singleton configuration instance.

    Loaded on first access and cached afterwards.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None


# ==============================================================================
# Helper Functions
# ==============================================================================

def is_provider_configured(provider_id: str) -> bool:
    """Check if a key is configured for the given provider."""
    return get_config().keys.for_provider(provider_id) is not None
