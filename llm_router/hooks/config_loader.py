"""
Hook Configuration Loader
=========================

Loads and merges hook configuration from multiple sources.

Sources, in increasing precedence:
1. ~/.llm-router/hooks.json          (user global)
2. <cwd>/.llm-router/hooks.local.json (project local override)
3. <cwd>/.llm-router/hooks.json      (project)

Scalars are overridden by later sources, hook lists are concatenated and
`disabledHooks` is the union of every source.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import (
    ExternalHookDefinition,
    HookDefinition,
    HookEventType,
    HookPriority,
)

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"

DEFAULT_HOOK_CONFIG: Dict[str, Any] = {
    "version": CONFIG_VERSION,
    "enabled": True,
    "hooks": {},
    "externalHooks": {},
    "disabledHooks": [],
}

_TOOL_EVENTS = {HookEventType.TOOL_CALL, HookEventType.TOOL_RESULT}
_EXPERT_EVENTS = {HookEventType.EXPERT_CALL, HookEventType.EXPERT_RESULT, HookEventType.RATE_LIMIT}


def config_paths(cwd: Path, home: Optional[Path] = None) -> List[Path]:
    """Config file locations, lowest precedence first."""
    home = home if home is not None else Path.home()
    return [
        home / ".llm-router" / "hooks.json",
        cwd / ".llm-router" / "hooks.local.json",
        cwd / ".llm-router" / "hooks.json",
    ]


def read_config_file(path: Path) -> Optional[Dict[str, Any]]:
    """Read one config file. Missing, unreadable or malformed files yield None."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to load hook config file %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring hook config file %s: not a JSON object", path)
        return None
    logger.debug("Loaded hook config file %s", path)
    return data


def merge_configs(*configs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge configs; later ones override earlier ones."""
    result = copy.deepcopy(DEFAULT_HOOK_CONFIG)

    for config in configs:
        if not config:
            continue

        if config.get("version"):
            result["version"] = config["version"]
        if isinstance(config.get("enabled"), bool):
            result["enabled"] = config["enabled"]

        for section in ("hooks", "externalHooks"):
            for event_name, entries in (config.get(section) or {}).items():
                result[section].setdefault(event_name, []).extend(entries or [])

        disabled = result["disabledHooks"]
        for hook_id in config.get("disabledHooks") or []:
            if hook_id not in disabled:
                disabled.append(hook_id)

    return result


def load_hook_config(cwd: Path, home: Optional[Path] = None) -> Dict[str, Any]:
    """Load and merge hook configuration from all sources."""
    merged = merge_configs(*(read_config_file(p) for p in config_paths(cwd, home)))
    logger.info(
        "Hook configuration loaded (enabled=%s, external event types=%d, disabled=%d)",
        merged["enabled"], len(merged["externalHooks"]), len(merged["disabledHooks"]),
    )
    return merged


def _parse_event_type(name: str) -> Optional[HookEventType]:
    try:
        return HookEventType(name)
    except ValueError:
        logger.warning("Unknown hook event type in config: %s", name)
        return None


def _parse_priority(value: Optional[str], default: HookPriority = HookPriority.NORMAL) -> HookPriority:
    if not value:
        return default
    try:
        return HookPriority(value)
    except ValueError:
        logger.warning("Unknown hook priority in config: %s", value)
        return default


def external_hook_id(event_name: str, index: int, name: str) -> str:
    slug = re.sub(r"\s+", "_", name)
    return f"external_{event_name}_{index}_{slug}"


def build_external_hooks(config: Dict[str, Any]) -> List[ExternalHookDefinition]:
    """Turn the `externalHooks` section into hook definitions."""
    hooks = []
    for event_name, entries in (config.get("externalHooks") or {}).items():
        event_type = _parse_event_type(event_name)
        if event_type is None:
            continue

        for i, entry in enumerate(entries or []):
            if not entry.get("command"):
                logger.warning("External hook %s[%d] has no command, skipping", event_name, i)
                continue
            name = entry.get("name") or f"hook{i}"
            pattern = entry.get("pattern")
            timeout_ms = entry.get("timeoutMs") or 30000
            hooks.append(ExternalHookDefinition(
                id=external_hook_id(event_name, i, name),
                event_type=event_type,
                command=entry["command"],
                name=name,
                description=f"External hook: {entry['command']}",
                timeout_seconds=timeout_ms / 1000.0,
                priority=_parse_priority(entry.get("priority")),
                tool_pattern=pattern if event_type in _TOOL_EVENTS else None,
                expert_pattern=pattern if event_type in _EXPERT_EVENTS else None,
            ))
    return hooks


def apply_hook_overrides(manager: HookManager, config: Dict[str, Any]) -> int:
    """
    Apply the `hooks` section to already-registered internal hooks.

    Each entry is {id, enabled, priority?}. Entries naming an
    unknown hook are logged and skipped. Returns the number applied.
    """
    applied = 0
    for event_name, entries in (config.get("hooks") or {}).items():
        for entry in entries or []:
            hook = manager.get_hook(entry.get("id", ""))
            if not isinstance(hook, HookDefinition):
                logger.warning("Hook override for unknown hook %s (%s)", entry.get("id"), event_name)
                continue
            updated = replace(
                hook,
                enabled=bool(entry.get("enabled", hook.enabled)),
                priority=_parse_priority(entry.get("priority"), hook.priority),
            )
            manager.register_hook(updated)
            applied += 1
    return applied


def initialize_hook_system(manager: HookManager, cwd: Path, home: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration and apply it to `manager`.

    Internal hooks should be registered before this runs so that
    overrides can find them.
    """
    config = load_hook_config(cwd, home)

    manager.set_enabled(config["enabled"])
    manager.disabled_hooks = set(config["disabledHooks"])
    apply_hook_overrides(manager, config)

    external = build_external_hooks(config)
    for hook in external:
        manager.register_external_hook(hook)
    if external:
        logger.info("%d external hook(s) registered from config", len(external))

    return config


def save_hook_config(config: Dict[str, Any], path: Path) -> bool:
    """Write a hook config file, creating parent directories."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        logger.error("Failed to save hook config %s: %s", path, e)
        return False
    logger.info("Hook config saved to %s", path)
    return True


def create_default_config_if_needed(cwd: Path) -> bool:
    """Create <cwd>/.llm-router/hooks.json if it does not exist."""
    path = cwd / ".llm-router" / "hooks.json"
    if path.exists():
        return False

    default_config = copy.deepcopy(DEFAULT_HOOK_CONFIG)
    default_config["hooks"] = {
        HookEventType.SERVER_START.value: [],
        HookEventType.TOOL_CALL.value: [],
        HookEventType.EXPERT_CALL.value: [],
        HookEventType.ERROR.value: [],
    }
    return save_hook_config(default_config, path)
