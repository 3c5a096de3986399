"""Inbox configuration model.

This module provides the Pydantic-based configuration for the inbox core and
its remote API adapter, with support for CLI argument parsing and environment
variable loading.

Configuration Sources (in order of precedence, highest first):
    1. Explicit constructor arguments
    2. CLI arguments (via from_cli_args)
    3. Environment variables (automatic via pydantic-settings)
    4. Default values

Environment Variables:
    Environment variables are prefixed with "INBOX_". Variable names are
    derived from field names in SCREAMING_SNAKE_CASE.

    Examples:
        INBOX_API_BASE_URL=https://mail.example.com
        INBOX_DELETE_GRACE_WINDOW=5
        INBOX_LOG_LEVEL=debug

Example:
    >>> from src.common.mailbox.config import InboxConfig
    >>> config = InboxConfig()
    >>> config.delete_grace_window
    3.0
    >>> config = InboxConfig.from_cli_args(['--send-undo-window', '10'])
    >>> config.send_undo_window
    10.0
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Literal, Self, Sequence
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class InboxConfig(BaseSettings):
    """Configuration for the inbox core and its remote API adapter.

    Attributes:
        api_base_url: Base URL of the remote mutation API.
        api_token: Bearer token for the remote API. Stored as SecretStr to
            prevent accidental logging.
        api_prefix: Route prefix of the mutation endpoints.
        request_timeout: Transport timeout of the HTTP adapter in seconds.
            The inbox core itself never times out a remote call.
        delete_grace_window: Undo window for destructive actions in seconds.
        send_undo_window: Undo window for message transmission in seconds.
            Zero sends immediately.
        optimistic_send_ttl: Seconds after which an optimistic sent message
            is retracted even if the feed never confirms it.
        chord_window: Seconds within which R then A means reply-all.
        notification_ttl: Auto-hide delay of info and undo toasts.
        max_notifications: Number of notifications kept in history.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Example:
        >>> config = InboxConfig(chord_window=0.5)
        >>> config.chord_window
        0.5
    """

    model_config = SettingsConfigDict(
        env_prefix="INBOX_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the remote mutation API",
    )
    api_token: SecretStr | None = Field(
        default=None,
        description="Bearer token for the remote API",
    )
    api_prefix: str = Field(
        default="/api",
        description="Route prefix of the mutation endpoints",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP adapter timeout in seconds",
    )
    delete_grace_window: float = Field(
        default=3.0,
        ge=0.0,
        description="Undo window for destructive actions in seconds",
    )
    send_undo_window: float = Field(
        default=8.0,
        ge=0.0,
        description="Undo window for message transmission in seconds",
    )
    optimistic_send_ttl: float = Field(
        default=60.0,
        gt=0,
        description="Safety retraction delay of optimistic sent messages",
    )
    chord_window: float = Field(
        default=0.3,
        gt=0,
        description="Seconds within which R then A means reply-all",
    )
    notification_ttl: float = Field(
        default=3.0,
        gt=0,
        description="Auto-hide delay of info and undo toasts",
    )
    max_notifications: int = Field(
        default=5,
        ge=1,
        description="Number of notifications kept in history",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Drop a trailing slash so paths can be appended directly."""
        return v.rstrip("/")

    @field_validator("api_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Ensure the prefix starts with a slash and has none at the end."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @classmethod
    def from_cli_args(
        cls,
        args: Sequence[str] | None = None,
        **overrides: Any,
    ) -> Self:
        """Create configuration from CLI arguments.

        Parses command-line arguments and combines them with environment
        variables and defaults. Explicit overrides take highest precedence.

        Args:
            args: Command-line arguments to parse. If None, uses sys.argv[1:].
            **overrides: Additional keyword arguments that override all other
                sources.

        Returns:
            A new configuration instance.
        """
        parser = cls._create_argument_parser()
        parsed, _ = parser.parse_known_args(args)
        cli_values = cls._parsed_args_to_dict(parsed)

        # None means "not given on the command line"
        cli_values = {k: v for k, v in cli_values.items() if v is not None}

        merged = {**cli_values, **overrides}
        return cls(**merged)

    @classmethod
    def _create_argument_parser(cls) -> argparse.ArgumentParser:
        """Create the argument parser for this config class.

        Returns:
            An ArgumentParser configured with all inbox arguments.
        """
        parser = argparse.ArgumentParser(
            description="Inbox Overlay Configuration",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
        parser.add_argument(
            "--api-base-url",
            type=str,
            default=None,
            dest="api_base_url",
            help="Base URL of the remote mutation API",
        )
        parser.add_argument(
            "--api-prefix",
            type=str,
            default=None,
            dest="api_prefix",
            help="Route prefix of the mutation endpoints",
        )
        parser.add_argument(
            "--request-timeout",
            type=float,
            default=None,
            dest="request_timeout",
            help="HTTP adapter timeout in seconds",
        )
        parser.add_argument(
            "--delete-grace-window",
            type=float,
            default=None,
            dest="delete_grace_window",
            help="Undo window for destructive actions (seconds)",
        )
        parser.add_argument(
            "--send-undo-window",
            type=float,
            default=None,
            dest="send_undo_window",
            help="Undo window for message transmission (seconds)",
        )
        parser.add_argument(
            "--chord-window",
            type=float,
            default=None,
            dest="chord_window",
            help="Seconds within which R then A means reply-all",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            default=None,
            dest="log_level",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Logging level",
        )
        return parser

    @classmethod
    def _parsed_args_to_dict(cls, parsed: argparse.Namespace) -> dict[str, Any]:
        """Convert parsed arguments to a dictionary.

        Args:
            parsed: The parsed argument namespace.

        Returns:
            Dictionary of configuration values from CLI arguments.
        """
        return {
            "api_base_url": parsed.api_base_url,
            "api_prefix": parsed.api_prefix,
            "request_timeout": parsed.request_timeout,
            "delete_grace_window": parsed.delete_grace_window,
            "send_undo_window": parsed.send_undo_window,
            "chord_window": parsed.chord_window,
            "log_level": parsed.log_level,
        }


# =============================================================================
# Configuration Utilities
# =============================================================================


def merge_configs(base: InboxConfig, overrides: dict[str, Any]) -> InboxConfig:
    """Create a new configuration with overrides applied.

    The base configuration is not modified.

    Args:
        base: The base configuration to copy.
        overrides: Dictionary of values to override.

    Returns:
        A new configuration instance with overrides applied.

    Example:
        >>> base = InboxConfig(chord_window=0.3)
        >>> merge_configs(base, {"chord_window": 0.5}).chord_window
        0.5
    """
    base_dict = base.model_dump()
    merged = {**base_dict, **overrides}
    return type(base)(**merged)


def validate_config(config: InboxConfig) -> list[str]:
    """Validate a configuration and return any warnings.

    Performs checks beyond Pydantic's built-in validation for values that do
    not prevent operation but are likely mistakes.

    Args:
        config: The configuration to validate.

    Returns:
        A list of warning messages. Empty if no issues found.

    Example:
        >>> warnings = validate_config(InboxConfig(delete_grace_window=0.5))
        >>> "undo window" in warnings[0].lower()
        True
    """
    warnings: list[str] = []

    if 0 < config.delete_grace_window < 1.0:
        warnings.append(
            f"Delete undo window of {config.delete_grace_window}s is very short "
            "and leaves little time to undo"
        )
    if config.send_undo_window > 60.0:
        warnings.append(
            f"Send undo window of {config.send_undo_window}s delays every "
            "outgoing message by more than a minute"
        )
    if config.api_token is None:
        warnings.append(
            "No API token configured. Remote mutation calls will be "
            "unauthenticated."
        )

    parsed = urlparse(config.api_base_url)
    if parsed.scheme == "http" and parsed.hostname not in (
        "localhost",
        "127.0.0.1",
        "::1",
    ):
        warnings.append(
            f"API URL {config.api_base_url} uses plain HTTP for a non-local host"
        )

    return warnings


def configure_logging(config: InboxConfig) -> None:
    """Apply the configured log level to the root logger.

    Intended for host applications; library modules only create loggers.

    Args:
        config: The configuration whose ``log_level`` is applied.
    """
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
