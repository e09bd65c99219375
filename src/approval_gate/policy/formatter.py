"""Risk classification and human-readable summaries for permission prompts."""

import json
from typing import Any, Callable, Dict, Optional, Tuple

from ..models import ApprovalScope, FormattedPermission, RiskLevel

MCP_PREFIX = "mcp__"

# Substring patterns for shell commands, checked high before medium
HIGH_RISK_COMMAND_PATTERNS: Tuple[str, ...] = (
    "rm ",
    "delete",
    "sudo",
    "chmod",
    "chown",
    "curl",
    "wget",
    "git push",
)
MEDIUM_RISK_COMMAND_PATTERNS: Tuple[str, ...] = (
    "npm install",
    "git",
    "mv ",
    "cp ",
    "mkdir",
    "touch",
)

RISK_ICONS = {
    RiskLevel.HIGH: "🔴",
    RiskLevel.MEDIUM: "🟡",
    RiskLevel.LOW: "🟢",
}

SCOPE_ICONS = {
    ApprovalScope.TOOL: "🔧",
    ApprovalScope.ACTION: "⚙️",
    ApprovalScope.COMMAND: "📝",
}


def base_tool_name(tool_name: str) -> str:
    """
    Strip the MCP prefix from a tool name.

    ``mcp__github__create_issue`` becomes ``github``; other names are
    returned unchanged.
    """
    if tool_name.startswith(MCP_PREFIX):
        parts = tool_name.split("__")
        if len(parts) > 1 and parts[1]:
            return parts[1]
    return tool_name


def assess_command_risk(command: str) -> RiskLevel:
    """Classify a shell command by substring patterns."""
    lowered = command.lower()
    if any(pattern in lowered for pattern in HIGH_RISK_COMMAND_PATTERNS):
        return RiskLevel.HIGH
    if any(pattern in lowered for pattern in MEDIUM_RISK_COMMAND_PATTERNS):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def truncate(text: str, max_length: int = 60) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def shorten_path(path: str) -> str:
    if len(path) <= 30:
        return path
    parts = path.split("/")
    if len(parts) > 3:
        return ".../" + "/".join(parts[-2:])
    return path


def _field(tool_input: Any, *names: str) -> str:
    if not isinstance(tool_input, dict):
        return ""
    for name in names:
        value = tool_input.get(name)
        if isinstance(value, str) and value:
            return value
    return ""


def _pretty(tool_input: Any) -> str:
    return json.dumps(tool_input, indent=2, default=str, ensure_ascii=False)


def _format_github(tool_name: str, tool_input: Any, scope: ApprovalScope) -> FormattedPermission:
    command = _field(tool_input, "command")

    if scope == ApprovalScope.TOOL:
        return FormattedPermission(
            title="GitHub CLI Access",
            description="Allow the agent to use GitHub CLI for repository operations",
            scope=ApprovalScope.TOOL,
            risk_level=RiskLevel.MEDIUM,
            icon="🐙",
            details=(
                "This grants access to all GitHub CLI operations including creating "
                "issues, PRs, and repository management."
            ),
        )

    if scope == ApprovalScope.ACTION:
        if "issue create" in command:
            return FormattedPermission(
                title="Create GitHub Issue",
                description="Allow the agent to create issues in GitHub repositories",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.LOW,
                icon="📝",
                details="This will create a new issue with the specified title and description.",
            )
        if "pr create" in command:
            return FormattedPermission(
                title="Create Pull Request",
                description="Allow the agent to create pull requests in GitHub repositories",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.MEDIUM,
                icon="🔀",
                details="This will create a new pull request with changes from the current branch.",
            )
        if "repo" in command:
            return FormattedPermission(
                title="Repository Management",
                description="Allow the agent to manage GitHub repository settings",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.HIGH,
                icon="⚙️",
                details="This may modify repository settings, collaborators, or other configuration.",
            )
        if "issue" in command:
            return FormattedPermission(
                title="GitHub Issues",
                description="Allow the agent to manage GitHub issues",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.LOW,
                icon="🐛",
                details="This includes viewing, creating, updating, or closing issues.",
            )

    return FormattedPermission(
        title="GitHub CLI Command",
        description=truncate(command),
        scope=ApprovalScope.COMMAND,
        risk_level=RiskLevel.MEDIUM,
        icon="🐙",
        details=f"Full command: {command}",
    )


def _format_filesystem(tool_name: str, tool_input: Any, scope: ApprovalScope) -> FormattedPermission:
    if scope == ApprovalScope.TOOL:
        return FormattedPermission(
            title="File System Access",
            description="Allow the agent to read and write files in the working directory",
            scope=ApprovalScope.TOOL,
            risk_level=RiskLevel.HIGH,
            icon="📁",
            details="This grants broad file system access for reading, writing, and managing files.",
        )

    if scope == ApprovalScope.ACTION:
        path = _field(tool_input, "path")
        operation = _field(tool_input, "operation")
        where = f" in {shorten_path(path)}" if path else ""
        if "read" in tool_name or operation == "read":
            return FormattedPermission(
                title="Read Files",
                description=f"Allow the agent to read files{where}",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.LOW,
                icon="👁️",
                details=f"Reading files{f' from: {path}' if path else ''}",
            )
        if "write" in tool_name or operation == "write":
            return FormattedPermission(
                title="Write Files",
                description=f"Allow the agent to create/modify files{where}",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.MEDIUM,
                icon="✏️",
                details=f"Writing files{f' to: {path}' if path else ''}",
            )
        if "delete" in tool_name or operation == "delete":
            return FormattedPermission(
                title="Delete Files",
                description=f"Allow the agent to delete files{where}",
                scope=ApprovalScope.ACTION,
                risk_level=RiskLevel.HIGH,
                icon="🗑️",
                details=f"Deleting files{f' from: {path}' if path else ''}",
            )

    return FormattedPermission(
        title="File Operation",
        description=f"File system operation: {tool_name}",
        scope=ApprovalScope.COMMAND,
        risk_level=RiskLevel.MEDIUM,
        icon="📁",
        details=_pretty(tool_input),
    )


def _format_web_search(tool_name: str, tool_input: Any, scope: ApprovalScope) -> FormattedPermission:
    if scope == ApprovalScope.TOOL:
        return FormattedPermission(
            title="Web Search Access",
            description="Allow the agent to search the web for information",
            scope=ApprovalScope.TOOL,
            risk_level=RiskLevel.LOW,
            icon="🔍",
            details="This enables the agent to search for current information online.",
        )

    query = _field(tool_input, "query", "q")
    return FormattedPermission(
        title="Web Search",
        description=f'Search for: "{truncate(query, 50)}"' if query else "Perform web search",
        scope=ApprovalScope.ACTION if scope == ApprovalScope.ACTION else ApprovalScope.COMMAND,
        risk_level=RiskLevel.LOW,
        icon="🔍",
        details=f"Search query: {query}" if query else "Web search operation",
    )


def _format_bash(tool_name: str, tool_input: Any, scope: ApprovalScope) -> FormattedPermission:
    if scope == ApprovalScope.TOOL:
        return FormattedPermission(
            title="Command Line Access",
            description="Allow the agent to execute command line operations",
            scope=ApprovalScope.TOOL,
            risk_level=RiskLevel.HIGH,
            icon="💻",
            details="This grants broad access to execute terminal commands.",
        )

    command = tool_input if isinstance(tool_input, str) else _field(tool_input, "command")
    return FormattedPermission(
        title="Execute Command",
        description=f"Run: {truncate(command)}",
        scope=ApprovalScope.COMMAND,
        risk_level=assess_command_risk(command),
        icon="💻",
        details=f"Full command: {command}",
    )


def _format_generic(tool_name: str, tool_input: Any, scope: ApprovalScope) -> FormattedPermission:
    return FormattedPermission(
        title=f"{tool_name} Tool",
        description=f"Allow the agent to use the {tool_name} tool",
        scope=scope,
        risk_level=RiskLevel.MEDIUM,
        icon="🔧",
        details=_pretty(tool_input),
    )


Formatter = Callable[[str, Any, ApprovalScope], FormattedPermission]

# Tool family (lower-cased base tool name) -> formatter
FAMILY_FORMATTERS: Dict[str, Formatter] = {
    "github": _format_github,
    "filesystem": _format_filesystem,
    "web-search": _format_web_search,
    "bash": _format_bash,
}


def format_permission(
    tool_name: str, tool_input: Any, scope: ApprovalScope = ApprovalScope.ACTION
) -> FormattedPermission:
    """
    Classify a request and describe it for a human reviewer.

    The returned scope may differ from the requested one: shell commands are
    always command-scoped unless tool scope was requested, and unknown github
    or filesystem actions fall back to command scope.

    Args:
        tool_name: Full tool name (``mcp__<server>__<action>`` or built-in)
        tool_input: Tool input
        scope: Requested approval scope

    Returns:
        FormattedPermission with risk level and effective scope
    """
    scope = ApprovalScope(scope)
    family = base_tool_name(tool_name).lower()
    formatter = FAMILY_FORMATTERS.get(family, _format_generic)
    return formatter(tool_name, tool_input, scope)


def render_prompt(
    tool_name: str,
    formatted: FormattedPermission,
    user: Optional[str] = None,
    show_details: bool = True,
) -> str:
    """
    Build the Markdown summary handed to the presentation layer.

    Args:
        tool_name: Full tool name
        formatted: Classification from ``format_permission``
        user: Requesting user, if known
        show_details: Include the details block

    Returns:
        Summary text
    """
    lines = [
        "🔐 *Permission Request*",
        "",
        f"{formatted.icon} **{formatted.title}**",
        formatted.description,
        "",
        f"{RISK_ICONS.get(formatted.risk_level, '⚪')} Risk Level: {formatted.risk_level.value}",
        f"{SCOPE_ICONS.get(formatted.scope, '❓')} Scope: {formatted.scope.value}",
    ]

    if show_details and formatted.details:
        lines.extend(["", "*Details:*", formatted.details])

    requester = f"<@{user}>" if user else "unknown"
    lines.extend(["", f"Requested by: {requester} | Tool: {tool_name}"])
    return "\n".join(lines)
