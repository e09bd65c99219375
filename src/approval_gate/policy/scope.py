"""Scope keys, scope hierarchy and request classification."""

import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple

from ..config import Config
from ..models import ApprovalScope, FormattedPermission
from .formatter import base_tool_name, format_permission

# Broadest first: an approval at an earlier scope covers the later ones
SCOPE_HIERARCHY: Dict[ApprovalScope, Tuple[ApprovalScope, ...]] = {
    ApprovalScope.COMMAND: (ApprovalScope.TOOL, ApprovalScope.ACTION, ApprovalScope.COMMAND),
    ApprovalScope.ACTION: (ApprovalScope.TOOL, ApprovalScope.ACTION),
    ApprovalScope.TOOL: (ApprovalScope.TOOL,),
}

# (substring in the command, action type), first match wins
GITHUB_ACTIONS: Tuple[Tuple[str, str], ...] = (
    ("issue create", "github:create_issue"),
    ("pr create", "github:create_pr"),
    ("issue", "github:manage_issues"),
    ("repo", "github:manage_repo"),
)

# (substring in the tool name, action type), first match wins
FILESYSTEM_ACTIONS: Tuple[Tuple[str, str], ...] = (
    ("read", "filesystem:read"),
    ("write", "filesystem:write"),
    ("delete", "filesystem:delete"),
)


def input_hash(tool_input: Any) -> str:
    """
    Deterministic 16-hex-char hash of a tool input.

    Object keys are sorted before hashing so key order does not matter.
    """
    serialized = json.dumps(
        tool_input, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]


def _command_field(tool_input: Any) -> str:
    if isinstance(tool_input, dict):
        command = tool_input.get("command")
        if isinstance(command, str):
            return command
    return ""


def extract_action_type(tool_name: str, tool_input: Any) -> str:
    """
    Classify a request into a named action type.

    Args:
        tool_name: Full tool name
        tool_input: Tool input

    Returns:
        Action type such as ``github:create_pr`` or ``filesystem:read``;
        the raw tool name for tools without an action table
    """
    if "github" in tool_name:
        command = _command_field(tool_input)
        for needle, action in GITHUB_ACTIONS:
            if needle in command:
                return action
        return "github:general"

    if "filesystem" in tool_name:
        for needle, action in FILESYSTEM_ACTIONS:
            if needle in tool_name:
                return action
        return "filesystem:general"

    return tool_name


def scope_key(tool_name: str, scope: ApprovalScope, tool_input: Any) -> str:
    """
    Compute the scope identifier for a request.

    Returns:
        ``tool:<base>``, ``action:<type>`` or ``command:<hash16>``
    """
    scope = ApprovalScope(scope)
    if scope == ApprovalScope.TOOL:
        return f"tool:{base_tool_name(tool_name)}"
    if scope == ApprovalScope.ACTION:
        return f"action:{extract_action_type(tool_name, tool_input)}"
    return f"command:{input_hash(tool_input)}"


def scope_hierarchy(requested_scope: ApprovalScope) -> List[ApprovalScope]:
    """Candidate scopes to check for a request, broadest first."""
    return list(SCOPE_HIERARCHY[ApprovalScope(requested_scope)])


class ScopeEngine:
    """
    Classifies requests and computes their scope keys.

    The default scope is the scope requested when a tool family does not
    pin one itself (e.g. shell commands are always command-scoped).
    """

    def __init__(self, default_scope: Optional[ApprovalScope] = None):
        self.default_scope = ApprovalScope(default_scope or Config.DEFAULT_SCOPE)

    def classify(
        self, tool_name: str, tool_input: Any, scope: Optional[ApprovalScope] = None
    ) -> FormattedPermission:
        """Risk level, effective scope and summary for a request."""
        return format_permission(tool_name, tool_input, scope or self.default_scope)

    def scope_key(self, tool_name: str, scope: ApprovalScope, tool_input: Any) -> str:
        return scope_key(tool_name, scope, tool_input)

    def scope_hierarchy(self, requested_scope: ApprovalScope) -> List[ApprovalScope]:
        return scope_hierarchy(requested_scope)
