"""Unit tests for slash command registry."""

from __future__ import annotations

from pathlib import Path

from tether.configuration import ConfigurationBundle
from tether.slash_commands import (
    CommandRouter,
    SlashCommand,
    SlashCommandContext,
    Subcommand,
    parse_command_line,
    render_help_table,
    render_rich,
)


def test_router_handles_registered_command(tmp_path: Path):
    config = ConfigurationBundle(workspace_dir=tmp_path, status="ready")
    router = CommandRouter(config)
    captured = {}

    def handler(context: SlashCommandContext, args: list) -> str:
        captured["context"] = context
        return f"echo:{' '.join(args)}"

    router.register(SlashCommand(name="echo", description="Echo args", handler=handler))
    result = router.handle("echo", ["hello", "world"])

    assert result == "echo:hello world"
    assert captured["context"].config is config
    assert "echo" in router.command_names


def test_unknown_command_points_at_help(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(workspace_dir=tmp_path, status="ready"))

    result = router.handle("nope", [])

    assert "Unknown command '/nope'" in result
    assert "/help" in result


def test_handle_line_keeps_quoted_arguments(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(workspace_dir=tmp_path, status="ready"))
    router.register(
        SlashCommand(name="echo", description="Echo args", handler=lambda _ctx, args: "|".join(args))
    )

    assert router.handle_line('/echo push "fix typos in intro"') == "push|fix typos in intro"
    assert router.handle_line("   ") is None


def test_parse_command_line_strips_slash():
    assert parse_command_line("/sync status") == ("sync", ["status"])
    assert parse_command_line("help") == ("help", [])


def test_render_help_table_lists_commands(tmp_path: Path):
    config = ConfigurationBundle(workspace_dir=tmp_path, status="ready")
    router = CommandRouter(config)
    router.register(SlashCommand(name="sync", description="Sync content", handler=lambda *_: ""))
    router.register(SlashCommand(name="help", description="Show help", handler=lambda *_: ""))

    output = render_help_table(router.commands())

    assert "/sync" in output
    assert "Sync content" in output


def test_render_rich_produces_ansi():
    def _render(console):
        console.print("hello", style="bold red")

    ansi = render_rich(_render)

    assert "\x1b[" in ansi  # contains ANSI escape sequence


def test_requires_ready_guard(tmp_path: Path):
    config = ConfigurationBundle(workspace_dir=tmp_path, status="invalid")
    router = CommandRouter(config)
    router.register(
        SlashCommand(
            name="needs_ready",
            description="Needs ready config",
            handler=lambda *_: "ok",
            requires_ready=True,
        )
    )

    result = router.handle("needs_ready", [])

    assert "requires a ready configuration" in result


def _notes_command() -> SlashCommand:
    return SlashCommand(
        name="notes",
        description="Manage notes",
        subcommands=[
            Subcommand("list", "List notes", lambda _ctx, _args: "listed"),
            Subcommand("add", "Add a note", lambda _ctx, args: "added:" + " ".join(args), args="<text>"),
        ],
        default_subcommand="list",
        usage_footer="Notes live in notes/.",
    )


def test_subcommands_dispatch_with_remaining_args(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(workspace_dir=tmp_path, status="ready"))
    router.register(_notes_command())

    assert router.handle("notes", []) == "listed"
    assert router.handle("notes", ["ADD", "buy", "milk"]) == "added:buy milk"
    assert "Unknown subcommand 'drop'" in router.handle("notes", ["drop"])


def test_subcommand_usage_lists_every_action(tmp_path: Path):
    usage = _notes_command().usage()

    assert usage.splitlines()[0] == "[notes] Usage:"
    assert "/notes add <text>" in usage
    assert "/notes help" in usage
    assert usage.endswith("Notes live in notes/.")
