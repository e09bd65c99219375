"""Hierarchical local policy discovery, validation, merging and caching.

Policy lives in a policy directory (``.claude`` by default) next to the code
the agent works on. Each directory level may carry two files:

- ``settings.json``: team policy, checked into the repository
- ``settings.local.json``: personal overrides, not shared

Discovery walks from the working directory toward the filesystem root. Files
found further up are merged as overrides on top of files found closer to the
working directory, and personal files always override team files.
"""

import asyncio
import copy
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..config import Config
from ..models import (
    ConfigSource,
    LocalConfigResult,
    MatchType,
    PermissionCheckResult,
)

# Array caps applied during validation
MAX_AUTO_APPROVE = 100
MAX_TOOL_COMMANDS = 50
MAX_BLOCKED_COMMANDS = 100
MAX_ALLOWED_PATHS = 20

LOCAL_CONFIG_SOURCE = "local-config"


@dataclass
class ConfigCacheEntry:
    """Resolved config for one absolute directory."""

    result: LocalConfigResult
    timestamp: float


def _string_list(value: Any, limit: int) -> Optional[List[str]]:
    """Keep non-empty strings from a list, truncated to ``limit``."""
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str) and item][:limit]


def validate_config(raw: Any) -> Dict[str, Any]:
    """
    Project untrusted JSON onto the recognized policy fields.

    Accepts both the flat shape (``autoApprove``/``tools`` at the top level)
    and the on-disk shape that nests them under ``permissions``. Fields with
    the wrong type are dropped, oversized arrays are truncated and unknown
    keys are ignored. Never raises.

    Args:
        raw: Parsed JSON document

    Returns:
        Validated config dict (possibly empty)
    """
    validated: Dict[str, Any] = {}
    if not isinstance(raw, dict):
        return validated

    permissions = raw.get("permissions")
    sections = [raw]
    if isinstance(permissions, dict):
        sections.append(permissions)

    for section in sections:
        auto_approve = _string_list(section.get("autoApprove"), MAX_AUTO_APPROVE)
        if auto_approve is not None:
            validated["autoApprove"] = auto_approve

        tools = section.get("tools")
        if isinstance(tools, dict):
            validated_tools = validated.setdefault("tools", {})
            for tool_name, tool_config in tools.items():
                if not isinstance(tool_name, str) or not isinstance(tool_config, dict):
                    continue
                validated_tool: Dict[str, Any] = {}
                if isinstance(tool_config.get("enabled"), bool):
                    validated_tool["enabled"] = tool_config["enabled"]
                if isinstance(tool_config.get("autoApprove"), bool):
                    validated_tool["autoApprove"] = tool_config["autoApprove"]
                commands = _string_list(tool_config.get("commands"), MAX_TOOL_COMMANDS)
                if commands is not None:
                    validated_tool["commands"] = commands
                validated_tools[tool_name] = validated_tool

    security = raw.get("security")
    if isinstance(security, dict):
        validated_security: Dict[str, Any] = {}

        max_size = security.get("maxConfigFileSize")
        # bool is an int subclass
        if isinstance(max_size, (int, float)) and not isinstance(max_size, bool) and max_size > 0:
            validated_security["maxConfigFileSize"] = min(max_size, Config.MAX_CONFIG_FILE_SIZE)

        allowed_paths = _string_list(security.get("allowedPaths"), MAX_ALLOWED_PATHS)
        if allowed_paths is not None:
            validated_security["allowedPaths"] = allowed_paths

        blocked = _string_list(security.get("blockedCommands"), MAX_BLOCKED_COMMANDS)
        if blocked is not None:
            validated_security["blockedCommands"] = blocked

        validated["security"] = validated_security

    return validated


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two validated configs with ``override`` winning.

    - ``autoApprove`` lists are concatenated (duplicates kept)
    - per-tool settings are merged field by field
    - ``security`` keys are replaced whole

    Args:
        base: Config being overridden (not mutated)
        override: Config taking precedence

    Returns:
        New merged config
    """
    merged = copy.deepcopy(base)

    if "autoApprove" in override:
        merged["autoApprove"] = merged.get("autoApprove", []) + list(override["autoApprove"])

    if "tools" in override:
        tools = merged.setdefault("tools", {})
        for tool_name, tool_config in override["tools"].items():
            tools[tool_name] = {**tools.get(tool_name, {}), **copy.deepcopy(tool_config)}

    if "security" in override:
        merged["security"] = {**merged.get("security", {}), **copy.deepcopy(override["security"])}

    return merged


def command_text(tool_input: Any) -> str:
    """
    Text a policy rule is compared against.

    Strings are used verbatim, mappings with a string ``command`` use that
    field, anything else is compared as sorted-key JSON.
    """
    if isinstance(tool_input, str):
        return tool_input
    if isinstance(tool_input, dict) and isinstance(tool_input.get("command"), str):
        return tool_input["command"]
    return json.dumps(tool_input, sort_keys=True, default=str)


class ConfigResolver:
    """
    Discovers and caches local policy for working directories.

    Features:
    - Upward directory traversal bounded to ``max_levels``
    - Team + personal files per level, merged into one config
    - Per-directory cache with TTL
    - Concurrent load timeout; timeouts and failures resolve to None

    Security:
    - Files above ``max_file_size`` are ignored
    - Only ``<policy-dir>/settings[.local].json`` paths are read
    - Paths containing ``..`` or ``~`` are rejected
    """

    def __init__(
        self,
        policy_dir_name: Optional[str] = None,
        cache_ttl: Optional[float] = None,
        load_timeout: Optional[float] = None,
        max_levels: Optional[int] = None,
        max_file_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy_dir_name = policy_dir_name or Config.POLICY_DIR_NAME
        self.cache_ttl = cache_ttl if cache_ttl is not None else Config.LOCAL_CONFIG_CACHE_TTL
        self.load_timeout = (
            load_timeout if load_timeout is not None else Config.LOCAL_CONFIG_TIMEOUT
        )
        self.max_levels = max_levels if max_levels is not None else Config.LOCAL_CONFIG_MAX_LEVELS
        self.max_file_size = (
            max_file_size if max_file_size is not None else Config.MAX_CONFIG_FILE_SIZE
        )
        self._clock = clock
        self._cache: Dict[str, ConfigCacheEntry] = {}

    async def load_local_permissions(self, working_directory: str) -> Optional[LocalConfigResult]:
        """
        Resolve the effective local policy for a directory.

        Args:
            working_directory: Directory to start discovery from

        Returns:
            LocalConfigResult, or None if nothing was found, loading timed
            out or failed
        """
        try:
            cache_key = str(Path(working_directory).resolve())
        except (OSError, RuntimeError, ValueError) as e:
            logger.error(f"Invalid working directory {working_directory!r}: {e}")
            return None

        cached = self._cache.get(cache_key)
        if cached is not None:
            if self._clock() - cached.timestamp < self.cache_ttl:
                logger.debug(f"Using cached local config for {cache_key}")
                return cached.result
            del self._cache[cache_key]

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._load_with_traversal, cache_key),
                timeout=self.load_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Local config loading timed out after {self.load_timeout}s for {cache_key}")
            return None
        except Exception as e:
            logger.error(f"Error loading local config for {cache_key}: {e}")
            return None

        if result is not None:
            self._cache[cache_key] = ConfigCacheEntry(result=result, timestamp=self._clock())
        return result

    def _load_with_traversal(self, start_dir: str) -> Optional[LocalConfigResult]:
        loaded_from: List[str] = []
        team_config: Dict[str, Any] = {}
        personal_config: Dict[str, Any] = {}
        found_team = False
        found_personal = False

        current = Path(start_dir)
        for _ in range(self.max_levels):
            policy_dir = current / self.policy_dir_name
            if policy_dir.is_dir():
                team_path = policy_dir / Config.TEAM_SETTINGS_FILE
                team = self.load_config_file(team_path)
                if team is not None:
                    team_config = merge_configs(team_config, team)
                    loaded_from.append(str(team_path))
                    found_team = True

                personal_path = policy_dir / Config.PERSONAL_SETTINGS_FILE
                personal = self.load_config_file(personal_path)
                if personal is not None:
                    personal_config = merge_configs(personal_config, personal)
                    loaded_from.append(str(personal_path))
                    found_personal = True

            parent = current.parent
            if parent == current:
                break
            current = parent

        if not loaded_from:
            return None

        if found_team and found_personal:
            source = ConfigSource.MERGED
        elif found_personal:
            source = ConfigSource.PERSONAL
        else:
            source = ConfigSource.TEAM

        return LocalConfigResult(
            config=merge_configs(team_config, personal_config),
            source=source,
            loaded_from=loaded_from,
        )

    def _is_valid_config_path(self, file_path: Path) -> bool:
        resolved = str(file_path.resolve())
        if ".." in resolved or "~" in resolved:
            return False
        return file_path.parent.name == self.policy_dir_name and file_path.name in {
            Config.TEAM_SETTINGS_FILE,
            Config.PERSONAL_SETTINGS_FILE,
        }

    def load_config_file(self, file_path: Path) -> Optional[Dict[str, Any]]:
        """
        Load and validate a single policy file.

        Args:
            file_path: Path to a settings file

        Returns:
            Validated config, or None if missing, oversized, misplaced or invalid
        """
        file_path = Path(file_path)
        try:
            size = file_path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Error reading config file {file_path}: {e}")
            return None

        if size > self.max_file_size:
            logger.warning(f"Config file too large: {file_path} ({size} bytes)")
            return None

        if not self._is_valid_config_path(file_path):
            logger.warning(f"Invalid config path: {file_path}")
            return None

        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading config from {file_path}: {e}")
            return None

        logger.debug(f"Loaded config from {file_path}")
        return validate_config(raw)

    async def is_pre_approved(
        self, command: str, tool_name: str, working_directory: str
    ) -> PermissionCheckResult:
        """
        Evaluate a command against local policy.

        Order: blocked substring, exact global auto-approve, disabled tool,
        tool-level auto-approve, exact per-tool command.

        Args:
            command: Command text (see ``command_text``)
            tool_name: Tool being invoked
            working_directory: Directory to resolve policy for

        Returns:
            PermissionCheckResult; ``source == "none"`` means policy is silent
        """
        config_result = await self.load_local_permissions(working_directory)
        if config_result is None:
            return PermissionCheckResult(is_approved=False)

        config = config_result.config
        config_path = config_result.loaded_from[0]

        def _decision(approved: bool, match_type: MatchType) -> PermissionCheckResult:
            return PermissionCheckResult(
                is_approved=approved,
                source=LOCAL_CONFIG_SOURCE,
                match_type=match_type,
                config_path=config_path,
            )

        blocked = config.get("security", {}).get("blockedCommands", [])
        if any(pattern in command for pattern in blocked):
            logger.warning(f"Command blocked by security config: {command}")
            return _decision(False, MatchType.PATTERN)

        if command in config.get("autoApprove", []):
            logger.info(f"Command pre-approved (exact match): {command}")
            return _decision(True, MatchType.EXACT)

        tool_config = config.get("tools", {}).get(tool_name)
        if tool_config:
            if tool_config.get("enabled") is False:
                logger.info(f"Tool disabled by config: {tool_name}")
                return _decision(False, MatchType.TOOL)

            if tool_config.get("autoApprove") is True:
                logger.info(f"Tool auto-approved: {tool_name}")
                return _decision(True, MatchType.TOOL)

            if command in tool_config.get("commands", []):
                logger.info(f"Command pre-approved for tool {tool_name}: {command}")
                return _decision(True, MatchType.EXACT)

        return PermissionCheckResult(is_approved=False)

    def clear_cache(self) -> None:
        """Drop every cached config."""
        self._cache.clear()
        logger.debug("Local config cache cleared")

    def cache_stats(self) -> Dict[str, Any]:
        return {"size": len(self._cache), "keys": list(self._cache.keys())}
