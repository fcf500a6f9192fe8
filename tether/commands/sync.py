"""Slash command for content synchronization."""

from __future__ import annotations

from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..errors import NotFoundError, SyncError
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    Subcommand,
    render_rich,
)
from ..sync import SyncClient, SyncResult, SyncSettings

MAX_ROWS = 50

CONFIG_HELP = """Configuration (in workspace config/*.yml):
  sync:
    enabled: true
    owner: my-org
    repo: my-content
    branch: main
    token_env: GITHUB_TOKEN
    content_dir: .
    exclude_patterns:
      - "state/*"
      - "logs/*"
      - "*.tmp\""""


def _make_client(context: SlashCommandContext) -> SyncClient:
    settings = SyncSettings.from_config(context.config.merged)
    return SyncClient(context.config.workspace_dir, settings)


def _show_status(context: SlashCommandContext, _: List[str]) -> str:
    """Show sync status."""
    client = _make_client(context)
    status = client.get_status()
    settings = client.settings

    def _render(console: Console) -> None:
        table = Table(title="Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Enabled", str(status["enabled"]))
        table.add_row("Repository", status["repository"] or "(not configured)")
        table.add_row("Branch", status["branch"])
        table.add_row("Content Dir", status["content_dir"])
        token_state = "present" if status["token_present"] else "missing"
        table.add_row("Token", f"${status['token_env']} ({token_state})")

        exclude = list(settings.exclude_patterns)
        table.add_row("Exclude", ", ".join(exclude[:5]) + ("..." if len(exclude) > 5 else ""))

        manifest = status["local_manifest"]
        if manifest is None:
            table.add_row("Local Manifest", "(none yet)")
        elif "error" in manifest:
            table.add_row("Manifest Error", manifest["error"])
        else:
            table.add_row("Tracked Files", str(manifest["total_files"]))
            table.add_row("Manifest Built", manifest["created_date"])

        changes = status["changes"]
        if changes is None:
            table.add_row("Last Analysis", "(none yet)")
        elif "error" in changes:
            table.add_row("Change List Error", changes["error"])
        else:
            table.add_row("Last Analysis", f"{changes['analysis_date']} ({changes['summary']})")

        console.print(table)

    return render_rich(_render)


def _run_sync(context: SlashCommandContext, mode: str, message: Optional[str] = None) -> str:
    """Run one sync cycle and render its result."""
    sync_config = context.config.merged.get("sync", {}) if context.config.merged else {}

    if not sync_config.get("enabled", False):
        return "[sync] Sync is disabled. Enable it in configuration first."

    client = _make_client(context)
    if not client.settings.configured:
        return "[sync] No repository configured. Set sync.owner and sync.repo in configuration."

    result = client.run_sync(mode, message)
    return _render_result(result)


def _analyze(context: SlashCommandContext, _: List[str]) -> str:
    return _run_sync(context, "analyze")


def _pull(context: SlashCommandContext, _: List[str]) -> str:
    return _run_sync(context, "pull")


def _push(context: SlashCommandContext, args: List[str]) -> str:
    return _run_sync(context, "push", " ".join(args) or None)


def _render_result(result: SyncResult) -> str:
    if not result.success:
        lines = [f"[sync] {result.mode.capitalize()} failed: {result.message}"]
        if result.failed_phase:
            phase = result.failed_phase
            if result.pipeline_phase:
                phase = f"{phase} ({result.pipeline_phase})"
            lines.append(f"  Phase: {phase}")
        if result.error_kind:
            lines.append(f"  Error: {result.error_kind}")
        for error in result.errors[:10]:
            lines.append(f"  - {error}")
        return "\n".join(lines)

    def _render(console: Console) -> None:
        table = Table(title=f"Sync {result.mode.capitalize()}", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")
        table.add_row("Result", result.message)
        if result.head_sha:
            table.add_row("Remote Head", result.head_sha[:12])
        table.add_row("Added", str(result.added))
        table.add_row("Updated", str(result.updated))
        table.add_row("Removed", str(result.removed))
        if result.mode != "analyze":
            table.add_row("Applied", str(result.applied))
        if result.commit_sha:
            table.add_row("Commit", result.commit_sha)
        console.print(table)

    return render_rich(_render)


def _show_manifest(context: SlashCommandContext, _: List[str]) -> str:
    """Rebuild and show the local manifest."""
    client = _make_client(context)
    try:
        manifest = client.build_local_manifest()
    except SyncError as e:
        return f"[sync] Error building manifest: {e}"

    files = manifest.flatten()

    def _render(console: Console) -> None:
        console.print(
            f"[bold]Local Manifest[/bold] ({manifest.total_files} files "
            f"in {len(manifest.directories)} directories)\n"
        )

        table = Table(show_header=True)
        table.add_column("Path", style="cyan")
        table.add_column("Hash", style="dim", max_width=16)

        for path in sorted(files)[:MAX_ROWS]:
            table.add_row(path, files[path][:12] + "...")

        if len(files) > MAX_ROWS:
            console.print(f"(showing first {MAX_ROWS} of {len(files)} files)")

        console.print(table)

    return render_rich(_render)


def _show_diff(context: SlashCommandContext, _: List[str]) -> str:
    """Show the change list written by the last analysis."""
    client = _make_client(context)
    try:
        changes = client.load_changes()
    except NotFoundError:
        return "[sync] No analysis yet. Run /sync analyze first."
    except SyncError as e:
        return f"[sync] Error reading change list: {e}"

    if not changes.has_changes:
        return f"[sync] No differences as of {changes.analysis_date}."

    def _render(console: Console) -> None:
        console.print(f"[bold]Changes as of {changes.analysis_date}:[/bold]")
        console.print(f"Summary: {changes.summary()}\n")

        table = Table(show_header=True)
        table.add_column("Action", style="bold")
        table.add_column("Path", style="cyan")
        table.add_column("Reason", style="dim")
        table.add_column("Priority")
        styles = {"ADD": "green", "UPDATE": "yellow", "REMOVE": "red"}
        for record in changes.records[:MAX_ROWS]:
            action = record.action.value
            table.add_row(f"[{styles[action]}]{action}[/]", record.path, record.reason.value, record.priority.value)
        console.print(table)

        if len(changes) > MAX_ROWS:
            console.print(f"... and {len(changes) - MAX_ROWS} more")

    return render_rich(_render)


COMMAND = SlashCommand(
    name="sync",
    description="Sync content with a GitHub branch.",
    subcommands=[
        Subcommand("status", "Show sync status", _show_status),
        Subcommand("analyze", "Compare local content with the branch, change nothing", _analyze),
        Subcommand("pull", "Make local content match the branch", _pull),
        Subcommand("push", "Publish local content as one commit on the branch", _push, args="[message]"),
        Subcommand("manifest", "Rebuild and show the local manifest", _show_manifest),
        Subcommand("diff", "Show the change list from the last analysis", _show_diff),
    ],
    default_subcommand="status",
    usage_footer=CONFIG_HELP,
)
