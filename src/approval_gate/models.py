"""Value types shared by the policy, approval and gate layers."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Behavior(str, Enum):
    """Outcome of a permission decision."""

    ALLOW = "allow"
    DENY = "deny"


class RiskLevel(str, Enum):
    """Risk classification of a tool invocation."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ApprovalScope(str, Enum):
    """Granularity of an approval: tool (broadest) > action > command."""

    TOOL = "tool"
    ACTION = "action"
    COMMAND = "command"


class ConfigSource(str, Enum):
    """Which local policy files contributed to a resolved config."""

    TEAM = "team"
    PERSONAL = "personal"
    MERGED = "merged"


class MatchType(str, Enum):
    """How a local policy rule matched a request."""

    EXACT = "exact"
    TOOL = "tool"
    PATTERN = "pattern"


@dataclass
class PermissionRequest:
    """Inbound request from the agent runtime.

    Attributes:
        tool_name: Name of the tool the agent wants to run
        input: Tool input (string or JSON object)
        channel: Conversation channel the request belongs to
        thread_ts: Thread identifier inside the channel
        user: User the agent acts for
        working_directory: Directory used for local policy discovery
        request_id: Correlation id assigned by the agent runtime
    """

    tool_name: str
    input: Any
    channel: Optional[str] = None
    thread_ts: Optional[str] = None
    user: Optional[str] = None
    working_directory: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class PermissionResponse:
    """Allow/deny answer returned to the agent runtime.

    ``decided`` marks a response parsed from a human decision; it is never
    serialized.
    """

    behavior: Behavior
    updated_input: Any = None
    message: Optional[str] = None
    decided: bool = field(default=False, compare=False)

    @property
    def allowed(self) -> bool:
        return self.behavior == Behavior.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire field names (``updatedInput``)."""
        payload: Dict[str, Any] = {"behavior": self.behavior.value}
        if self.updated_input is not None:
            payload["updatedInput"] = self.updated_input
        if self.message is not None:
            payload["message"] = self.message
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionResponse":
        """Parse a decision payload; anything but ``allow`` is a denial."""
        behavior = Behavior.ALLOW if data.get("behavior") == "allow" else Behavior.DENY
        return cls(
            behavior=behavior,
            updated_input=data.get("updatedInput"),
            message=data.get("message"),
        )


@dataclass
class FormattedPermission:
    """Risk classification plus the human-readable summary of a request."""

    title: str
    description: str
    scope: ApprovalScope
    risk_level: RiskLevel
    icon: str
    details: Optional[str] = None


@dataclass
class StoredApproval:
    """A remembered human decision, keyed by identity and scope."""

    tool_name: str
    user: str
    channel: str
    behavior: Behavior
    timestamp: float
    scope_key: str
    scope: ApprovalScope
    risk_level: RiskLevel

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["behavior"] = self.behavior.value
        data["scope"] = self.scope.value
        data["risk_level"] = self.risk_level.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredApproval":
        return cls(
            tool_name=str(data["tool_name"]),
            user=str(data["user"]),
            channel=str(data["channel"]),
            behavior=Behavior(data["behavior"]),
            timestamp=float(data["timestamp"]),
            scope_key=str(data["scope_key"]),
            scope=ApprovalScope(data["scope"]),
            risk_level=RiskLevel(data["risk_level"]),
        )


@dataclass
class PendingApproval:
    """Context captured when a prompt is issued, consumed on resolution."""

    approval_id: str
    tool_name: str
    user: str
    channel: str
    input: Any
    risk_level: RiskLevel
    scope: ApprovalScope
    thread_ts: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        data["scope"] = self.scope.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingApproval":
        return cls(
            approval_id=str(data["approval_id"]),
            tool_name=str(data["tool_name"]),
            user=str(data["user"]),
            channel=str(data["channel"]),
            input=data.get("input"),
            risk_level=RiskLevel(data["risk_level"]),
            scope=ApprovalScope(data["scope"]),
            thread_ts=data.get("thread_ts"),
            request_id=data.get("request_id"),
        )


@dataclass
class LocalConfigResult:
    """Merged local policy plus where it came from."""

    config: Dict[str, Any]
    source: ConfigSource
    loaded_from: List[str] = field(default_factory=list)


@dataclass
class PermissionCheckResult:
    """Outcome of evaluating a request against local policy."""

    is_approved: bool
    source: str = "none"  # "local-config" or "none"
    match_type: Optional[MatchType] = None
    config_path: Optional[str] = None

    @property
    def is_decisive(self) -> bool:
        """True when local policy explicitly allowed or blocked the request."""
        return self.source == "local-config"
