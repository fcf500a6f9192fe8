"""Workspace-aware configuration loading for Tether."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
WORKSPACE_ENV = "TETHER_WORKSPACE"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]

DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    "state/*",
    "logs/*",
    "config/*",
    ".git/*",
    "*.tmp",
]


CONFIG_SCHEMA: SchemaSpec = {
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "structured": {"type": bool, "default": False},
        },
        "default": {},
    },
    "ui": {
        "type": dict,
        "schema": {
            "verbose": {"type": bool, "default": True},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "enabled": {"type": bool, "default": False},
            "owner": {"type": str, "default": ""},
            "repo": {"type": str, "default": ""},
            "branch": {"type": str, "default": "main"},
            "api_url": {"type": str, "default": "https://api.github.com"},
            "token_env": {"type": str, "default": "GITHUB_TOKEN"},
            "user_agent": {"type": str, "default": "Tether-Sync/1.0"},
            "timeout": {"type": (int, float), "default": 30.0},
            "max_parallel_blobs": {"type": int, "default": 8},
            "commit_message": {"type": str, "default": "Sync from Tether"},
            "content_dir": {"type": str, "default": "."},
            "scratch_dir": {"type": str, "default": "state/sync"},
            "local_manifest": {"type": str, "default": "state/local_manifest.json"},
            "exclude_patterns": {
                "type": list,
                "item_type": str,
                "default_factory": lambda: list(DEFAULT_EXCLUDE_PATTERNS),
            },
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data Tether needs at runtime."""

    workspace_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    workspace_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None


def resolve_workspace_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = ".",
) -> Path:
    """Resolve the workspace path from ``TETHER_WORKSPACE``."""

    env_source = env or os.environ
    raw = env_source.get(WORKSPACE_ENV, default)
    return Path(raw).expanduser().resolve()


def load_runtime_configuration(
    workspace_dir: Optional[Path] = None,
    defaults_dir: Optional[Path] = None,
) -> ConfigurationBundle:
    """Merge shipped defaults with ``<workspace>/config`` and validate the result.

    Problems never raise; they are collected as diagnostics and reflected in
    the bundle status so the CLI can still start and report them.
    """

    workspace = workspace_dir or resolve_workspace_dir()
    diagnostics: List[Diagnostic] = []

    repo_defaults, files_loaded = _read_config_dir(
        defaults_dir or DEFAULT_CONFIG_DIR, "repo defaults", diagnostics
    )

    status = _check_workspace(workspace, diagnostics)
    workspace_overrides: Dict[str, Any] = {}
    overrides_dir = workspace / "config"
    if status == "ready" and overrides_dir.exists():
        workspace_overrides, override_files = _read_config_dir(
            overrides_dir, "workspace overrides", diagnostics
        )
        files_loaded = files_loaded + override_files

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, workspace_overrides)
    _apply_schema(merged, CONFIG_SCHEMA, "config", diagnostics)
    _check_sync_section(merged.get("sync"), diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        workspace_dir=workspace,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        workspace_overrides=workspace_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _check_workspace(workspace: Path, diagnostics: List[Diagnostic]) -> ConfigurationStatus:
    if not workspace.exists():
        diagnostics.append(
            Diagnostic(level="error", message=f"Workspace directory '{workspace}' does not exist.")
        )
        return "missing"
    if not workspace.is_dir():
        diagnostics.append(
            Diagnostic(level="error", message=f"Workspace path '{workspace}' is not a directory.")
        )
        return "invalid"
    return "ready"


def _read_config_dir(
    directory: Path,
    label: str,
    diagnostics: List[Diagnostic],
) -> Tuple[Dict[str, Any], List[Path]]:
    """Merge every ``*.yml``/``*.yaml`` file under ``directory`` in name order."""

    data: Dict[str, Any] = {}
    loaded: List[Path] = []

    if not directory.is_dir():
        exists = directory.exists()
        diagnostics.append(
            Diagnostic(
                level="error" if exists else "warning",
                message=(
                    f"Configuration path '{directory}' ({label}) is not a directory."
                    if exists
                    else f"No configuration directory found at '{directory}' ({label})."
                ),
                source=directory,
            )
        )
        return data, loaded

    for yaml_file in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        content = _read_yaml(yaml_file, diagnostics)
        if content is None:
            continue
        _deep_merge_dicts(data, content)
        loaded.append(yaml_file)

    if not loaded:
        diagnostics.append(
            Diagnostic(
                level="info",
                message=f"No YAML files found under '{directory}' ({label}).",
                source=directory,
            )
        )
    return data, loaded


def _read_yaml(path: Path, diagnostics: List[Diagnostic]) -> Optional[Dict[str, Any]]:
    """Parse one file; ``None`` means it was rejected and a diagnostic recorded."""

    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        diagnostics.append(
            Diagnostic(level="error", message=f"Failed to parse '{path}': {exc}", source=path)
        )
        return None

    if content is None:
        return {}
    if not isinstance(content, MutableMapping):
        diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Ignoring '{path}' because it does not contain a mapping.",
                source=path,
            )
        )
        return None
    return dict(content)


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(dest.get(key), MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    factory = spec.get("default_factory")
    if callable(factory):
        return factory()
    return deepcopy(spec.get("default"))


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return ", ".join(t.__name__ for t in expected)
    return expected.__name__


def _apply_schema(
    section: Any,
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    """Fill defaults into ``section`` and replace values of the wrong type in place."""

    if not isinstance(section, dict):
        diagnostics.append(
            Diagnostic(level="error", message=f"Configuration section '{path}' must be a mapping.")
        )
        return

    for key in section:
        if key not in schema:
            diagnostics.append(
                Diagnostic(level="warning", message=f"Unknown configuration key '{path}.{key}'.")
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key in section:
            section[key] = _coerce(section[key], spec, child_path, diagnostics)
        elif "default" in spec or "default_factory" in spec:
            section[key] = _default_from_spec(spec)
            if spec.get("type") is dict:
                _apply_schema(section[key], spec.get("schema", {}), child_path, diagnostics)


def _coerce(value: Any, spec: SchemaSpec, path: str, diagnostics: List[Diagnostic]) -> Any:
    """Return ``value`` if it fits ``spec``, otherwise report it and return the default."""

    expected = spec.get("type")
    if expected is None:
        return value

    # bool is an int subclass; only accept it where bool is asked for.
    wrong_type = not isinstance(value, expected) or (
        isinstance(value, bool) and expected is not bool
    )
    if wrong_type:
        kind = {dict: "a mapping", list: "a list"}.get(expected, f"of type {_type_name(expected)}")
        diagnostics.append(Diagnostic(level="error", message=f"'{path}' must be {kind}."))
        value = _default_from_spec(spec)
        if expected is dict:
            value = value or {}
        elif expected is list:
            return value or []

    if expected is dict:
        _apply_schema(value, spec.get("schema", {}), path, diagnostics)
    elif expected is list and spec.get("item_type") is not None:
        value = _filter_items(value, spec["item_type"], path, diagnostics)
    return value


def _filter_items(items: List[Any], item_type: type, path: str, diagnostics: List[Diagnostic]) -> List[Any]:
    kept: List[Any] = []
    for index, item in enumerate(items):
        if isinstance(item, item_type):
            kept.append(item)
        else:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{path}[{index}]' must be of type {item_type.__name__}.",
                )
            )
    return kept


def _check_sync_section(sync: Any, diagnostics: List[Diagnostic]) -> None:
    """Range and consistency checks the type schema cannot express."""

    if not isinstance(sync, dict):
        return
    if sync["max_parallel_blobs"] < 1:
        diagnostics.append(
            Diagnostic(level="error", message="'config.sync.max_parallel_blobs' must be at least 1.")
        )
        sync["max_parallel_blobs"] = 1
    if sync["timeout"] <= 0:
        diagnostics.append(Diagnostic(level="error", message="'config.sync.timeout' must be positive."))
        sync["timeout"] = 30.0
    if sync["enabled"] and not (sync["owner"] and sync["repo"]):
        diagnostics.append(
            Diagnostic(
                level="warning",
                message="Sync is enabled but 'sync.owner' or 'sync.repo' is not set.",
            )
        )


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_EXCLUDE_PATTERNS",
    "Diagnostic",
    "WORKSPACE_ENV",
    "load_runtime_configuration",
    "resolve_workspace_dir",
]
