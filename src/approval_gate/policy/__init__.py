"""Local policy resolution, scope keys and risk classification."""

from .formatter import assess_command_risk, base_tool_name, format_permission, render_prompt
from .local_config import ConfigResolver, command_text, merge_configs, validate_config
from .scope import ScopeEngine, input_hash, scope_hierarchy, scope_key

__all__ = [
    "ConfigResolver",
    "validate_config",
    "merge_configs",
    "command_text",
    "ScopeEngine",
    "scope_key",
    "scope_hierarchy",
    "input_hash",
    "format_permission",
    "render_prompt",
    "assess_command_risk",
    "base_tool_name",
]
