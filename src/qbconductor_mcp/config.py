"""Configuration for the Conductor MCP server.

Values come from the environment (a ``.env`` file is loaded first). The
secret key may instead be kept in the credential store managed by
``python -m qbconductor_mcp.auth``.
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "https://api.conductor.is/v1"
DEFAULT_LOG_LEVEL = "INFO"

logger = logging.getLogger(__name__)


def _parse_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_int(name: str, value: str | None, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class Settings:
    """Runtime settings.

    Args:
        secret_key: Conductor secret key, sent as the bearer token.
        default_end_user_id: End-user used when a tool call names none.
        publishable_key: Conductor publishable key (auth sessions).
        api_base_url: Conductor API base URL.
        cache_ttl_minutes: Default cache entry lifetime.
        cache_max_size: Maximum number of cached responses.
        timeout: Per-request timeout in seconds.
        max_retries: Retries for idempotent reads (0 disables).
    """

    secret_key: str
    default_end_user_id: str
    publishable_key: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    cache_ttl_minutes: int = 1440
    cache_max_size: int = 1000
    timeout: float = 30.0
    max_retries: int = 0

    @property
    def cache_ttl_seconds(self) -> int:
        return self.cache_ttl_minutes * 60

    @classmethod
    def from_env(cls, secret_key: str | None = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            secret_key: Secret key to use when CONDUCTOR_SECRET_KEY is unset
                (typically loaded from the credential store).

        Raises:
            ValueError: If required variables are missing or malformed.
        """
        load_dotenv()

        secret = os.getenv("CONDUCTOR_SECRET_KEY") or secret_key or ""
        end_user_id = os.getenv("CONDUCTOR_END_USER_ID", "")

        missing = []
        if not secret:
            missing.append("CONDUCTOR_SECRET_KEY")
        if not end_user_id:
            missing.append("CONDUCTOR_END_USER_ID")
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        return cls(
            secret_key=secret,
            default_end_user_id=end_user_id,
            publishable_key=os.getenv("CONDUCTOR_API_KEY", ""),
            api_base_url=os.getenv("CONDUCTOR_API_BASE_URL") or DEFAULT_API_BASE_URL,
            cache_ttl_minutes=_parse_int(
                "CACHE_TTL_MINUTES", os.getenv("CACHE_TTL_MINUTES"), 1440
            ),
            cache_max_size=_parse_int("CACHE_MAX_SIZE", os.getenv("CACHE_MAX_SIZE"), 1000),
            timeout=float(_parse_int("CONDUCTOR_TIMEOUT", os.getenv("CONDUCTOR_TIMEOUT"), 30)),
            max_retries=_parse_int(
                "CONDUCTOR_MAX_RETRIES", os.getenv("CONDUCTOR_MAX_RETRIES"), 0
            ),
        )


def disabled_tools_from_env() -> list[str]:
    """Read DISABLED_TOOLS without requiring credentials."""
    load_dotenv()
    return _parse_list(os.getenv("DISABLED_TOOLS"))


def log_level_from_env() -> str:
    """Read LOG_LEVEL, falling back to INFO for names logging does not know."""
    load_dotenv()
    level = (os.getenv("LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
    # getLevelName maps known names to their numeric level
    if not isinstance(logging.getLevelName(level), int):
        logger.warning(f"Unknown LOG_LEVEL {level!r}, using {DEFAULT_LOG_LEVEL}")
        return DEFAULT_LOG_LEVEL
    return level
