"""Slash command registry and rendering helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from io import StringIO
import shlex
import shutil
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from .configuration import ConfigurationBundle

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], str]


@dataclass
class SlashCommandContext:
    """Context passed into each slash command handler."""

    config: ConfigurationBundle
    router: "CommandRouter"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Subcommand:
    """One ``/command <name>`` action; ``args`` documents what follows the name."""

    name: str
    summary: str
    handler: SlashCommandHandler
    args: str = ""


@dataclass
class SlashCommand:
    """A slash command with either a single handler or a set of subcommands."""

    name: str
    description: str
    handler: Optional[SlashCommandHandler] = None
    requires_ready: bool = False
    subcommands: List[Subcommand] = field(default_factory=list)
    default_subcommand: Optional[str] = None
    usage_footer: str = ""

    def subcommand(self, name: str) -> Optional[Subcommand]:
        for sub in self.subcommands:
            if sub.name == name.lower():
                return sub
        return None

    def dispatch(self, context: SlashCommandContext, args: List[str]) -> str:
        if self.handler is not None:
            return self.handler(context, args)

        name = args[0] if args else self.default_subcommand
        if name is None or name.lower() == "help":
            return self.usage()
        sub = self.subcommand(name)
        if sub is None:
            return (
                f"[{self.name}] Unknown subcommand '{name}'. "
                f"Use /{self.name} help for usage."
            )
        return sub.handler(context, args[1:])

    def usage(self) -> str:
        if not self.subcommands:
            return f"[{self.name}] {self.description}"

        rows: List[Tuple[str, str]] = []
        if self.default_subcommand:
            default = self.subcommand(self.default_subcommand)
            rows.append((f"/{self.name}", default.summary if default else ""))
        for sub in self.subcommands:
            rows.append((f"/{self.name} {sub.name} {sub.args}".rstrip(), sub.summary))
        rows.append((f"/{self.name} help", "Show this help"))

        width = max(len(usage) for usage, _ in rows) + 3
        lines = [f"[{self.name}] Usage:"]
        lines.extend(f"  {usage.ljust(width)}{summary}" for usage, summary in rows)
        if self.usage_footer:
            lines.extend(["", self.usage_footer])
        return "\n".join(lines)


class CommandRouter:
    """Registry + dispatcher for slash commands."""

    def __init__(
        self,
        config: ConfigurationBundle,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config = config
        self._commands: Dict[str, SlashCommand] = {}
        self.metadata = metadata or {}

    def register(self, command: SlashCommand) -> None:
        self._commands[command.name.lower()] = command

    def handle(self, command_name: str, args: List[str]) -> str:
        command = self.get(command_name)
        if command is None:
            return f"[router] Unknown command '/{command_name}'. Use /help to list commands."
        if command.requires_ready and self.config.status != "ready":
            return (
                f"[router] '/{command_name}' requires a ready configuration "
                f"(current status: {self.config.status})."
            )
        context = SlashCommandContext(config=self.config, router=self, metadata=self.metadata)
        return command.dispatch(context, args)

    def handle_line(self, line: str) -> Optional[str]:
        """Dispatch a raw ``/command arg ...`` line; blank lines return None."""
        parsed = parse_command_line(line)
        if parsed is None:
            return None
        name, args = parsed
        return self.handle(name, args)

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._commands.keys())

    def commands(self) -> Sequence[SlashCommand]:
        return [self._commands[name] for name in self.command_names]

    def get(self, command_name: str) -> Optional[SlashCommand]:
        return self._commands.get(command_name.lower().lstrip("/"))


def parse_command_line(line: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``/sync push "message"`` into ``("sync", ["push", "message"])``."""

    stripped = line.strip()
    if not stripped:
        return None
    try:
        parts = shlex.split(stripped)
    except ValueError:
        # Unbalanced quotes: fall back to whitespace splitting.
        parts = stripped.split()
    return parts[0].lstrip("/"), parts[1:]


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    """Render the ``/help`` table, listing subcommands under their command."""

    def _render(console: Console) -> None:
        table = Table(title="Slash Commands", show_header=True, header_style="bold cyan")
        table.add_column("Command", style="green", no_wrap=True)
        table.add_column("Description")
        for cmd in commands:
            table.add_row(f"/{cmd.name}", cmd.description)
            for sub in cmd.subcommands:
                table.add_row(f"  {sub.name}", f"[dim]{sub.summary}[/dim]")
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Render a Rich layout to an ANSI string without printing live."""

    terminal_size = shutil.get_terminal_size(fallback=(80, 24))
    # Rich wraps badly below these sizes.
    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        width=max(20, terminal_size.columns),
        height=max(10, terminal_size.lines),
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


__all__ = [
    "CommandRouter",
    "SlashCommand",
    "SlashCommandContext",
    "Subcommand",
    "parse_command_line",
    "render_help_table",
    "render_rich",
]
