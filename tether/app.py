# tether/app.py
"""
Command-line entry point for Tether.

Runs a single slash command given on the command line, or an interactive
``> /command`` loop when started without arguments.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
import sys
from typing import List, Optional, Sequence

from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_workspace_dir,
)
from .logging_utils import setup_logging
from .slash_commands import CommandRouter

REPO_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("tether")
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def _log_path_within_workspace(log_path: Path, workspace_dir: Path) -> bool:
    try:
        log_path.relative_to(workspace_dir)
        return True
    except ValueError:
        return False


def _parse_env_flag(value: str, *, default: bool = True) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    return default


def _resolve_ui_verbose(config_bundle: ConfigurationBundle) -> bool:
    """Resolve whether the CLI should print startup details."""

    env_value = os.environ.get("TETHER_UI_VERBOSE")
    if env_value is not None:
        return _parse_env_flag(env_value)

    merged = config_bundle.merged or {}
    ui_cfg = merged.get("ui") or {}
    verbose_setting = ui_cfg.get("verbose")
    if verbose_setting is None:
        return True
    return bool(verbose_setting)


def build_router(config: ConfigurationBundle) -> CommandRouter:
    """Create a router with every shipped slash command registered."""

    router = CommandRouter(
        config,
        metadata={"repo_root": str(REPO_ROOT)},
    )
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    if not config.diagnostics:
        print(
            f"[config] Loaded {len(config.files_loaded)} file(s) "
            f"from repo and workspace config directories."
        )
        return

    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        prefix = diag.source or config.workspace_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for slash commands."""

    if readline is None:
        return

    commands = list(router.command_names)

    def completer(text: str, state: int):
        buffer = readline.get_line_buffer()
        if not buffer.startswith("/"):
            return None
        fragment = text[1:] if text.startswith("/") else text
        matches = [f"/{cmd}" for cmd in commands if cmd.startswith(fragment)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Run one slash command line, print its output and return it."""

    result = router.handle_line(command_line)
    if result is None:
        return ""
    print(result)
    logger.info("Executed CLI command: %s", command_line.strip())
    return result


def bootstrap(workspace_dir: Optional[Path] = None) -> ConfigurationBundle:
    """Load configuration and initialise logging."""

    config_bundle = load_runtime_configuration(workspace_dir or resolve_workspace_dir())
    logging_cfg = (config_bundle.merged.get("logging", {}) or {}) if config_bundle.merged else {}
    env_level = os.environ.get("TETHER_LOG_LEVEL")
    log_level_name = (env_level or logging_cfg.get("level") or "WARNING").upper()
    log_path = setup_logging(
        config_bundle.workspace_dir,
        log_level_name,
        structured=bool(logging_cfg.get("structured", False)),
        console=False,
    )
    config_bundle.log_path = log_path
    if not _log_path_within_workspace(log_path, config_bundle.workspace_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=(
                    "Workspace log directory is not writable; "
                    f"logging to fallback path '{log_path}'."
                ),
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)
    return config_bundle


def run_interactive(router: CommandRouter) -> None:
    configure_autocomplete(router)
    while True:
        try:
            raw_line = input("> ")
        except (EOFError, KeyboardInterrupt):
            print("\n[Exiting Tether]")
            break

        line = raw_line.strip()
        if not line:
            continue
        if line.lstrip("/").lower() in {"quit", "exit"}:
            print("[Goodbye]")
            break
        if not line.startswith("/"):
            print("[tether] Commands start with '/'. Try /help.")
            continue
        execute_cli_command(line, router)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for `tether` and `python -m tether`."""

    args: List[str] = list(sys.argv[1:] if argv is None else argv)
    config_bundle = bootstrap()
    ui_verbose = _resolve_ui_verbose(config_bundle)
    if ui_verbose or config_bundle.status != "ready":
        emit_configuration_report(config_bundle)

    router = build_router(config_bundle)
    if args:
        name = args[0].lstrip("/")
        print(router.handle(name, args[1:]))
        logger.info("Executed CLI command: /%s", " ".join([name, *args[1:]]))
        return 0

    if ui_verbose:
        print(f"[Tether] workspace {config_bundle.workspace_dir}")
    run_interactive(router)
    return 0


__all__ = ["bootstrap", "build_router", "execute_cli_command", "main"]
