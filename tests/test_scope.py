"""Tests for scope keys, the scope hierarchy and request classification."""

import hashlib
import json

import pytest

from approval_gate.models import ApprovalScope, RiskLevel
from approval_gate.policy.scope import (
    ScopeEngine,
    extract_action_type,
    input_hash,
    scope_hierarchy,
    scope_key,
)


# ============================================================================
# SCOPE KEYS
# ============================================================================


def test_tool_key_strips_mcp_prefix():
    assert scope_key("mcp__github__create_issue", ApprovalScope.TOOL, {}) == "tool:github"
    assert scope_key("Bash", ApprovalScope.TOOL, "ls") == "tool:Bash"


@pytest.mark.parametrize(
    "command,expected",
    [
        ("gh issue create --title x", "action:github:create_issue"),
        ("gh pr create --fill", "action:github:create_pr"),
        ("gh issue list", "action:github:manage_issues"),
        ("gh repo view", "action:github:manage_repo"),
        ("gh run list", "action:github:general"),
    ],
)
def test_github_action_keys(command, expected):
    assert scope_key("mcp__github__run", ApprovalScope.ACTION, {"command": command}) == expected


@pytest.mark.parametrize(
    "tool_name,expected",
    [
        ("mcp__filesystem__read_file", "filesystem:read"),
        ("mcp__filesystem__write_file", "filesystem:write"),
        ("mcp__filesystem__delete_file", "filesystem:delete"),
        ("mcp__filesystem__list_directory", "filesystem:general"),
    ],
)
def test_filesystem_action_types(tool_name, expected):
    assert extract_action_type(tool_name, {"path": "/tmp"}) == expected


def test_unknown_family_action_falls_back_to_tool_name():
    assert scope_key("WebFetch", ApprovalScope.ACTION, {"url": "x"}) == "action:WebFetch"


def test_command_key_is_sorted_key_sha256_prefix():
    tool_input = {"b": 2, "a": "é"}
    serialized = json.dumps(tool_input, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    expected = hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]

    assert input_hash(tool_input) == expected
    assert scope_key("Bash", ApprovalScope.COMMAND, tool_input) == f"command:{expected}"


def test_command_key_ignores_key_order():
    assert input_hash({"a": 1, "b": [1, 2]}) == input_hash({"b": [1, 2], "a": 1})
    assert input_hash({"a": 1}) != input_hash({"a": 2})
    assert len(input_hash("ls -la")) == 16


# ============================================================================
# HIERARCHY
# ============================================================================


def test_hierarchy_is_broadest_first():
    assert scope_hierarchy(ApprovalScope.COMMAND) == [
        ApprovalScope.TOOL,
        ApprovalScope.ACTION,
        ApprovalScope.COMMAND,
    ]
    assert scope_hierarchy(ApprovalScope.ACTION) == [ApprovalScope.TOOL, ApprovalScope.ACTION]
    assert scope_hierarchy(ApprovalScope.TOOL) == [ApprovalScope.TOOL]


@pytest.mark.parametrize(
    "granted,requested,expected",
    [
        (ApprovalScope.TOOL, ApprovalScope.TOOL, True),
        (ApprovalScope.TOOL, ApprovalScope.ACTION, True),
        (ApprovalScope.TOOL, ApprovalScope.COMMAND, True),
        (ApprovalScope.ACTION, ApprovalScope.ACTION, True),
        (ApprovalScope.ACTION, ApprovalScope.COMMAND, True),
        (ApprovalScope.ACTION, ApprovalScope.TOOL, False),
        (ApprovalScope.COMMAND, ApprovalScope.COMMAND, True),
        (ApprovalScope.COMMAND, ApprovalScope.ACTION, False),
        (ApprovalScope.COMMAND, ApprovalScope.TOOL, False),
    ],
)
def test_broader_scope_satisfies_narrower_request(granted, requested, expected):
    assert (granted in scope_hierarchy(requested)) is expected


# ============================================================================
# CLASSIFICATION
# ============================================================================


def test_engine_uses_default_scope_for_generic_tools():
    engine = ScopeEngine("tool")
    formatted = engine.classify("WebFetch", {"url": "https://example.com"})

    assert formatted.scope == ApprovalScope.TOOL
    assert formatted.risk_level == RiskLevel.MEDIUM


def test_engine_pins_shell_commands_to_command_scope():
    engine = ScopeEngine("action")
    formatted = engine.classify("Bash", {"command": "rm -rf build"})

    assert formatted.scope == ApprovalScope.COMMAND
    assert formatted.risk_level == RiskLevel.HIGH


def test_engine_rejects_unknown_default_scope():
    with pytest.raises(ValueError):
        ScopeEngine("everything")
