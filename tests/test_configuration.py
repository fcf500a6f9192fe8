"""Tests for the workspace-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from tether import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "logging:\n  level: INFO\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "10-default.yml").write_text(content, encoding="utf-8")
    return config_dir


def _write_override(workspace_dir: Path, content: str, name: str = "20-overrides.yml") -> None:
    overrides_dir = workspace_dir / "config"
    overrides_dir.mkdir(parents=True, exist_ok=True)
    (overrides_dir / name).write_text(content, encoding="utf-8")


def test_resolve_workspace_dir_uses_env_expansion(tmp_path: Path):
    env = {"TETHER_WORKSPACE": str(tmp_path / "workspace")}
    path = configuration.resolve_workspace_dir(env=env)
    assert path == (tmp_path / "workspace").resolve()


def test_load_runtime_configuration_merges_repo_and_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(
        tmp_path, content="sync:\n  branch: main\n  owner: acme\n"
    )
    workspace_dir = tmp_path / "workspace"
    _write_override(workspace_dir, "sync:\n  branch: content\n  repo: docs\n")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "ready"
    assert bundle.merged["sync"]["branch"] == "content"
    assert bundle.merged["sync"]["owner"] == "acme"
    assert bundle.merged["sync"]["repo"] == "docs"
    assert len(bundle.files_loaded) == 2


def test_schema_fills_sync_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    workspace_dir = tmp_path / "workspace"
    workspace_dir.mkdir()
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    sync = bundle.merged["sync"]
    assert sync["api_url"] == "https://api.github.com"
    assert sync["token_env"] == "GITHUB_TOKEN"
    assert sync["max_parallel_blobs"] == 8
    assert "state/*" in sync["exclude_patterns"]
    assert bundle.merged["ui"]["verbose"] is True


def test_load_runtime_configuration_reports_missing_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    missing_workspace = tmp_path / "missing"
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(missing_workspace)

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    workspace_dir = tmp_path / "workspace"
    _write_override(workspace_dir, "sync: [\n", name="broken.yml")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_wrong_types_are_reported_and_replaced(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    workspace_dir = tmp_path / "workspace"
    _write_override(
        workspace_dir,
        "sync:\n  timeout: fast\n  exclude_patterns:\n    - '*.log'\n    - 7\n",
    )
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "invalid"
    assert bundle.merged["sync"]["timeout"] == 30.0
    assert bundle.merged["sync"]["exclude_patterns"] == ["*.log"]
    messages = [diag.message for diag in bundle.diagnostics]
    assert any("config.sync.timeout" in message for message in messages)
    assert any("config.sync.exclude_patterns[1]" in message for message in messages)


def test_parallelism_below_one_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    workspace_dir = tmp_path / "workspace"
    _write_override(workspace_dir, "sync:\n  max_parallel_blobs: 0\n")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "invalid"
    assert bundle.merged["sync"]["max_parallel_blobs"] == 1


def test_enabled_without_repository_warns(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    workspace_dir = tmp_path / "workspace"
    _write_override(workspace_dir, "sync:\n  enabled: true\n")
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "ready"
    assert any(
        diag.level == "warning" and "sync.owner" in diag.message for diag in bundle.diagnostics
    )


def test_shipped_defaults_validate_cleanly(tmp_path: Path):
    workspace_dir = tmp_path / "workspace"
    workspace_dir.mkdir()

    bundle = configuration.load_runtime_configuration(workspace_dir)

    assert bundle.status == "ready"
    assert not [diag for diag in bundle.diagnostics if diag.level != "info"]
    assert bundle.merged["sync"]["scratch_dir"] == "state/sync"
