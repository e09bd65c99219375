"""Centralized configuration for the approval gate."""

import json
import os
import tempfile
from typing import Any, Dict


def _env_flag(name: str, default: bool) -> bool:
    """Parse a boolean flag the way the agent runtime sets them."""
    value = os.getenv(name)
    if value is None:
        return default
    if default:
        return value.strip().lower() != "false"
    return value.strip().lower() == "true"


class Config:
    """
    Approval gate configuration with environment variable overrides.

    All configuration values are centralized here with sensible defaults.
    Values can be overridden via environment variables.
    """

    # ========================================================================
    # Permission Prompt Behaviour
    # ========================================================================
    DEFAULT_SCOPE: str = os.getenv("PERMISSION_DEFAULT_SCOPE", "action")
    SHOW_DETAILS: bool = _env_flag("PERMISSION_SHOW_DETAILS", True)
    AUTO_APPROVE_LOW_RISK: bool = _env_flag("PERMISSION_AUTO_APPROVE_LOW_RISK", False)

    # ========================================================================
    # Approval Store & Broker
    # ========================================================================
    APPROVALS_FILE: str = os.getenv(
        "APPROVALS_FILE",
        os.path.join(tempfile.gettempdir(), "approval_gate_approvals.json"),
    )
    MAILBOX_DIR: str = os.getenv("APPROVAL_MAILBOX_DIR", tempfile.gettempdir())
    APPROVAL_TIMEOUT: float = float(os.getenv("APPROVAL_TIMEOUT", "300"))  # 5 minutes
    APPROVAL_POLL_INTERVAL: float = float(os.getenv("APPROVAL_POLL_INTERVAL", "0.1"))
    APPROVAL_TRANSPORT: str = os.getenv("APPROVAL_TRANSPORT", "file")

    # ========================================================================
    # Local Policy Discovery
    # ========================================================================
    POLICY_DIR_NAME: str = os.getenv("POLICY_DIR_NAME", ".claude")
    TEAM_SETTINGS_FILE: str = "settings.json"
    PERSONAL_SETTINGS_FILE: str = "settings.local.json"
    LOCAL_CONFIG_CACHE_TTL: float = 5 * 60  # 5 minutes
    LOCAL_CONFIG_TIMEOUT: float = 5.0
    LOCAL_CONFIG_MAX_LEVELS: int = 10
    MAX_CONFIG_FILE_SIZE: int = 1024 * 1024  # 1MB

    # ========================================================================
    # Redis Configuration (message-bus transport)
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "20"))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(
        os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    )
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_RETRIES: int = int(os.getenv("REDIS_CONNECT_RETRIES", "3"))
    REDIS_CONNECT_RETRY_DELAY: float = float(os.getenv("REDIS_CONNECT_RETRY_DELAY", "0.2"))
    REDIS_CONNECT_RETRY_MAX_DELAY: float = 2.0

    # ========================================================================
    # Audit & Logging
    # ========================================================================
    AUDIT_LOG_PATH: str = os.getenv("AUDIT_LOG_PATH", "./audit.jsonl")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    # Context passed by the agent runtime when it launches the gate
    REQUEST_CONTEXT_ENV: str = "PERMISSION_CONTEXT"

    VALID_SCOPES = ("tool", "action", "command")
    VALID_TRANSPORTS = ("file", "queue", "redis")

    @classmethod
    def request_context(cls) -> Dict[str, Any]:
        """
        Read the request context the agent runtime placed in the environment.

        Returns:
            Parsed context dict, or empty dict if unset or malformed
        """
        raw = os.getenv(cls.REQUEST_CONTEXT_ENV)
        if not raw:
            return {}
        try:
            context = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return context if isinstance(context, dict) else {}

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        if cls.DEFAULT_SCOPE not in cls.VALID_SCOPES:
            errors.append(
                f"DEFAULT_SCOPE must be one of {', '.join(cls.VALID_SCOPES)}, "
                f"got {cls.DEFAULT_SCOPE!r}"
            )

        if cls.APPROVAL_TRANSPORT not in cls.VALID_TRANSPORTS:
            errors.append(
                f"APPROVAL_TRANSPORT must be one of {', '.join(cls.VALID_TRANSPORTS)}, "
                f"got {cls.APPROVAL_TRANSPORT!r}"
            )

        if cls.APPROVAL_TIMEOUT <= 0:
            errors.append(f"APPROVAL_TIMEOUT must be > 0, got {cls.APPROVAL_TIMEOUT}")

        if cls.APPROVAL_POLL_INTERVAL <= 0:
            errors.append(
                f"APPROVAL_POLL_INTERVAL must be > 0, got {cls.APPROVAL_POLL_INTERVAL}"
            )
        elif cls.APPROVAL_POLL_INTERVAL >= cls.APPROVAL_TIMEOUT:
            errors.append("APPROVAL_POLL_INTERVAL must be shorter than APPROVAL_TIMEOUT")

        if cls.LOCAL_CONFIG_CACHE_TTL <= 0:
            errors.append(
                f"LOCAL_CONFIG_CACHE_TTL must be > 0, got {cls.LOCAL_CONFIG_CACHE_TTL}"
            )

        if cls.LOCAL_CONFIG_TIMEOUT <= 0:
            errors.append(f"LOCAL_CONFIG_TIMEOUT must be > 0, got {cls.LOCAL_CONFIG_TIMEOUT}")

        if not cls.POLICY_DIR_NAME or "/" in cls.POLICY_DIR_NAME:
            errors.append(f"POLICY_DIR_NAME must be a plain directory name, got {cls.POLICY_DIR_NAME!r}")

        if cls.REDIS_MAX_CONNECTIONS <= 0:
            errors.append(
                f"REDIS_MAX_CONNECTIONS must be > 0, got {cls.REDIS_MAX_CONNECTIONS}"
            )

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True
