"""Structured JSON audit trail for permission decisions."""

import json
import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from loguru import logger

# Constants
AUDIT_RETENTION_DAYS = int(os.getenv("AUDIT_RETENTION_DAYS", "30"))
AUDIT_ROTATION_BYTES = int(os.getenv("AUDIT_ROTATION_BYTES", str(10 * 1024 * 1024)))
MAX_CONTENT_LENGTH = 1000  # Truncate large content to prevent log bloat


class AuditEvent(str, Enum):
    """Audit event types for permission decisions."""

    AUTO_APPROVED_LOW_RISK = "auto_approved_low_risk"
    PRE_APPROVED = "pre_approved"
    BLOCKED_BY_CONFIG = "blocked_by_config"
    REMEMBERED_DECISION = "remembered_decision"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    APPROVAL_TIMEOUT = "approval_timeout"
    APPROVAL_INVALID = "approval_invalid"
    GATE_ERROR = "gate_error"
    APPROVALS_CLEARED = "approvals_cleared"


class AuditLogger:
    """
    Structured JSON audit logger for permission decisions.

    Features:
    - JSON Lines format (one JSON object per line)
    - ISO 8601 UTC timestamps
    - Automatic content truncation
    - Size-based rotation with timestamped backups
    - Retention cleanup based on AUDIT_RETENTION_DAYS

    Write failures are logged and swallowed; auditing never changes a decision.
    """

    def __init__(self, log_path: Optional[str] = None):
        """
        Initialize audit logger.

        Args:
            log_path: Path to audit log file (defaults to AUDIT_LOG_PATH env var or ./audit.jsonl)
        """
        if log_path is None:
            log_path = os.getenv("AUDIT_LOG_PATH", "./audit.jsonl")
        self.log_path = Path(log_path)
        self.retention_days = AUDIT_RETENTION_DAYS
        self.rotation_bytes = AUDIT_ROTATION_BYTES
        self._last_cleanup: Optional[datetime] = None

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < self.rotation_bytes:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        rotated_path = self.log_path.with_name(f"{self.log_path.name}.{timestamp}")
        counter = 1
        while rotated_path.exists():
            rotated_path = self.log_path.with_name(
                f"{self.log_path.name}.{timestamp}.{counter}"
            )
            counter += 1
        self.log_path.replace(rotated_path)

    def _cleanup_old_logs(self) -> None:
        """Remove rotated audit files older than the retention window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.retention_days)
        for path in self.log_path.parent.glob(f"{self.log_path.name}.*"):
            if not path.is_file():
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
            if modified < cutoff:
                path.unlink()
        self._last_cleanup = datetime.now(timezone.utc)

    def _maybe_cleanup(self) -> None:
        if self.retention_days <= 0:
            return
        now = datetime.now(timezone.utc)
        if self._last_cleanup is None or now - self._last_cleanup >= timedelta(days=1):
            self._cleanup_old_logs()

    @staticmethod
    def _truncate_content(value: Any, max_length: int = MAX_CONTENT_LENGTH) -> Any:
        """
        Truncate large string values to prevent log bloat.

        Args:
            value: Value to potentially truncate
            max_length: Maximum length for string values

        Returns:
            Truncated value if string exceeds max_length, otherwise original value
        """
        if isinstance(value, str) and len(value) > max_length:
            return value[:max_length] + f"... [truncated, {len(value)} total chars]"
        elif isinstance(value, dict):
            return {k: AuditLogger._truncate_content(v, max_length) for k, v in value.items()}
        elif isinstance(value, list):
            return [AuditLogger._truncate_content(item, max_length) for item in value]
        return value

    def log(
        self,
        event: AuditEvent,
        request_id: Optional[str] = None,
        approval_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """
        Write a structured audit record.

        Args:
            event: Audit event type
            request_id: Agent runtime request id for correlation
            approval_id: Approval id when a human prompt is involved
            **kwargs: Additional fields to include in the audit record
        """
        audit_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event.value,
            "request_id": request_id,
            "approval_id": approval_id,
            **self._truncate_content(kwargs),
        }

        try:
            json_line = json.dumps(audit_record, ensure_ascii=False, default=str)
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._maybe_cleanup()
            self._rotate_if_needed()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json_line + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write audit record {event.value}: {e}")

    def log_decision(
        self,
        event: AuditEvent,
        tool_name: str,
        tool_input: Any,
        user: Optional[str],
        channel: Optional[str],
        behavior: str,
        request_id: Optional[str] = None,
        approval_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """
        Log a final allow/deny decision.

        Args:
            event: Which path produced the decision
            tool_name: Tool being gated
            tool_input: Tool input (truncated if large)
            user: Requesting user
            channel: Conversation channel
            behavior: ``allow`` or ``deny``
            request_id: Agent runtime request id
            approval_id: Approval id, for prompted decisions
            **details: Extra fields (match_type, scope, risk_level, reason...)
        """
        self.log(
            event,
            request_id=request_id,
            approval_id=approval_id,
            tool_name=tool_name,
            input=tool_input,
            user=user,
            channel=channel,
            behavior=behavior,
            **details,
        )

    def log_approval_requested(
        self,
        tool_name: str,
        approval_id: str,
        user: str,
        channel: str,
        scope: str,
        risk_level: str,
        request_id: Optional[str] = None,
    ) -> None:
        """Log that a human prompt was issued."""
        self.log(
            AuditEvent.APPROVAL_REQUESTED,
            request_id=request_id,
            approval_id=approval_id,
            tool_name=tool_name,
            user=user,
            channel=channel,
            scope=scope,
            risk_level=risk_level,
        )

    def log_approvals_cleared(self, removed: int, cleared_by: str) -> None:
        self.log(AuditEvent.APPROVALS_CLEARED, removed=removed, cleared_by=cleared_by)
