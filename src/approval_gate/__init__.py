"""Approval Gate - permission decisions for agent tool use."""

__version__ = "0.1.0"

from .gate import PolicyGate, create_policy_gate
from .models import (
    ApprovalScope,
    Behavior,
    PermissionRequest,
    PermissionResponse,
    RiskLevel,
)

__all__ = [
    "PolicyGate",
    "create_policy_gate",
    "PermissionRequest",
    "PermissionResponse",
    "Behavior",
    "RiskLevel",
    "ApprovalScope",
    "__version__",
]
