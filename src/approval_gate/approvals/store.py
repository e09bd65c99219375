"""Durable store of remembered human decisions."""

import json
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..config import Config
from ..models import ApprovalScope, Behavior, RiskLevel, StoredApproval
from ..policy.scope import scope_hierarchy, scope_key

# (scope, is_high_risk) -> how long a remembered decision stays valid
MAX_AGE: Dict[tuple, timedelta] = {
    (ApprovalScope.TOOL, True): timedelta(days=3),
    (ApprovalScope.TOOL, False): timedelta(days=7),
    (ApprovalScope.ACTION, True): timedelta(hours=12),
    (ApprovalScope.ACTION, False): timedelta(days=2),
    (ApprovalScope.COMMAND, True): timedelta(hours=6),
    (ApprovalScope.COMMAND, False): timedelta(days=1),
}


def max_age(scope: ApprovalScope, risk_level: RiskLevel) -> timedelta:
    """Validity window for a decision recorded at ``scope`` with ``risk_level``."""
    return MAX_AGE[(ApprovalScope(scope), RiskLevel(risk_level) == RiskLevel.HIGH)]


def approval_key(tool_name: str, user: str, channel: str, key: str) -> str:
    """Store key: ``<tool>:<user>:<channel>:<scope key>``."""
    return f"{tool_name}:{user}:{channel}:{key}"


class ApprovalStore:
    """
    In-memory map of decisions hydrated from, and persisted to, a JSON file.

    Features:
    - Hierarchical lookup (a broader approval covers narrower requests)
    - Scope/risk-aware expiration, evicted lazily on lookup
    - Whole-file overwrite on every write

    The gate usually runs as a fresh process per check, so the file (not
    process memory) is what makes a remembered decision survive. Concurrent
    writers from different processes race; the last write wins.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path or Config.APPROVALS_FILE)
        self._clock = clock
        self._lock = threading.RLock()
        self._approvals: Dict[str, StoredApproval] = {}
        self.reload()

    def __len__(self) -> int:
        return len(self._approvals)

    def reload(self) -> None:
        """Replace the in-memory map with the file contents (empty if missing/corrupt)."""
        approvals: Dict[str, StoredApproval] = {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            data = {}
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to load persistent approvals from {self.path}: {e}")
            data = {}

        if isinstance(data, dict):
            for key, raw in data.items():
                try:
                    approvals[key] = StoredApproval.from_dict(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logger.debug(f"Skipping malformed stored approval {key}: {e}")

        with self._lock:
            self._approvals = approvals
        logger.debug(f"Loaded persistent approvals (count={len(approvals)})")

    def _save(self) -> None:
        data = {key: approval.to_dict() for key, approval in self._approvals.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data), encoding="utf-8")
            logger.debug(f"Saved persistent approvals (count={len(data)})")
        except OSError as e:
            logger.error(f"Failed to save persistent approvals to {self.path}: {e}")

    def lookup(
        self,
        tool_name: str,
        user: str,
        channel: str,
        tool_input: Any,
        requested_scope: ApprovalScope,
    ) -> Optional[StoredApproval]:
        """
        Find a live decision covering the request.

        Candidate scopes are checked broadest first. Expired entries found on
        the way are deleted and persisted.

        Args:
            tool_name: Tool being invoked
            user: Requesting user
            channel: Conversation channel
            tool_input: Tool input
            requested_scope: Scope the request is classified at

        Returns:
            First non-expired StoredApproval, or None
        """
        now = self._clock()
        with self._lock:
            for candidate in scope_hierarchy(requested_scope):
                key = approval_key(
                    tool_name, user, channel, scope_key(tool_name, candidate, tool_input)
                )
                existing = self._approvals.get(key)
                if existing is None:
                    continue

                limit = max_age(existing.scope, existing.risk_level).total_seconds()
                if now - existing.timestamp > limit:
                    logger.debug(f"Evicting expired approval {key}")
                    del self._approvals[key]
                    self._save()
                    continue

                return existing
        return None

    def record(
        self,
        tool_name: str,
        user: str,
        channel: str,
        tool_input: Any,
        scope: ApprovalScope,
        risk_level: RiskLevel,
        behavior: Behavior,
    ) -> StoredApproval:
        """
        Remember a human decision at exactly ``scope`` and persist the store.

        Returns:
            The StoredApproval written
        """
        scope = ApprovalScope(scope)
        key_for_scope = scope_key(tool_name, scope, tool_input)
        approval = StoredApproval(
            tool_name=tool_name,
            user=user,
            channel=channel,
            behavior=Behavior(behavior),
            timestamp=self._clock(),
            scope_key=key_for_scope,
            scope=scope,
            risk_level=RiskLevel(risk_level),
        )
        key = approval_key(tool_name, user, channel, key_for_scope)
        with self._lock:
            self._approvals[key] = approval
            self._save()

        logger.info(
            f"Stored persistent approval {key} "
            f"(behavior={approval.behavior.value}, scope={scope.value}, "
            f"risk={approval.risk_level.value})"
        )
        return approval

    def list(self) -> List[StoredApproval]:
        with self._lock:
            return list(self._approvals.values())

    def clear(self) -> int:
        """Remove every stored decision; returns how many were removed."""
        with self._lock:
            removed = len(self._approvals)
            self._approvals.clear()
            self._save()
        logger.info(f"Cleared all stored approvals (removed={removed})")
        return removed
