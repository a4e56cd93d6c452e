"""
interfaces/cli.py — Chime CLI Interface

Interactive chat REPL with the proactive scheduler running alongside.
Uses rich for terminal rendering and aioconsole for async input, so the
scheduler's timers keep firing while the prompt waits for the user.

Every line typed counts as user activity (the scheduler's input signal),
commands included. Plain text is sent to the model as a chat turn;
proactive messages are printed as soon as the scheduler appends them.

Commands:
  /help, /status, /enable, /disable, /new, /switch <id>, /list,
  /set <key> <value>, /quit

Usage:
    python -m chime
    python -m chime --log-level DEBUG
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import aioconsole
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from chime.brain.openai_client import OpenAIGenerationService
from chime.config.settings import Settings
from chime.exceptions import ChimeError, ConversationError, GenerationError
from chime.host.base import HostAdapter
from chime.host.memory_store import InMemoryConversationStore
from chime.host.yaml_store import YamlConfigStore
from chime.observability.logger import get_logger
from chime.scheduler.coordinator import SchedulerCoordinator
from chime.types import ChatMessage, Sender

log = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

_HELP_TEXT = """
## Chime CLI Commands

| Command | Description |
|---------|-------------|
| *(any text)* | Chat with the model |
| `/status` | Show scheduler state, armed triggers and send counters |
| `/enable` / `/disable` | Turn proactive messages on or off |
| `/new` | Start a new conversation |
| `/switch <id>` | Switch to an existing conversation |
| `/list` | List conversations |
| `/set <key> <value>` | Change a setting, e.g. `/set random.enabled true` |
| `/help` | Show this help message |
| `/quit`, `exit` or Ctrl+D | Exit |

**Settings keys:** `enabled`, `min_message_gap_seconds`, `only_when_idle`,
`max_uses`, `prompts` (separate with `|`), `fixed.enabled`,
`fixed.times` (e.g. `08:30,18:00`), `fixed.idle_threshold_seconds`,
`random.enabled`, `random.min_interval_seconds`, `random.max_interval_seconds`,
`inactivity.enabled`, `inactivity.timeout_seconds`, `inactivity.recurring`.
"""

_STATE_COLOURS = {
    "armed": "green",
    "fired": "yellow",
    "idle": "dim",
    "stopped": "red",
}


def parse_set_command(key: str, raw: str) -> dict[str, Any]:
    """
    Turn `/set fixed.times 08:30,18:00` into a nested overrides dict.

    Values are parsed as YAML scalars (true/false, numbers, null), except
    for time lists and prompts, which are split on ',' and '|' respectively.
    """
    key = key.strip()
    if not key:
        raise ValueError("Usage: /set <key> <value>")

    leaf = key.rsplit(".", 1)[-1]
    value: Any
    if leaf == "times":
        value = [t.strip() for t in raw.split(",") if t.strip()]
    elif leaf == "prompts":
        value = [p.strip() for p in raw.split("|") if p.strip()]
    else:
        value = yaml.safe_load(raw) if raw.strip() else None

    overrides: dict[str, Any] = {}
    node = overrides
    parts = key.split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value
    return overrides


# ── CLI Runner ────────────────────────────────────────────────────────────────


class CLIInterface:
    """
    Interactive REPL for Chime.

    Wires together: Settings → conversation store → generation service →
    config store → SchedulerCoordinator, then runs a rich-powered async
    input loop.
    """

    def __init__(
        self,
        settings: Settings,
        conversations: Optional[InMemoryConversationStore] = None,
        generator: Optional[OpenAIGenerationService] = None,
        config_store: Optional[YamlConfigStore] = None,
        console: Optional[Console] = None,
    ) -> None:
        self.settings = settings
        self.console = console or Console()
        self.conversations = conversations or InMemoryConversationStore(model=settings.generation.model)
        self.generator = generator or OpenAIGenerationService.from_settings(settings)
        self.config_store = config_store or YamlConfigStore(
            settings.overrides_path, defaults=settings.proactive
        )
        self.host = HostAdapter(
            conversations=self.conversations,
            generator=self.generator,
            config_store=self.config_store,
        )
        self.coordinator = SchedulerCoordinator.from_settings(settings, self.host)
        self._shutdown = asyncio.Event()

    # ── Startup ───────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Prepare, then run the REPL loop until exit."""
        await self.prepare()
        self._print_banner()
        try:
            await self._repl_loop()
        finally:
            await self._cleanup()

    async def prepare(self) -> None:
        """Restore saved settings, check the model endpoint and start the scheduler."""
        await self.coordinator.restore_config()
        if not await self.generator.health_check():
            gen = self.settings.generation
            self.console.print(
                f"[yellow]⚠  Model endpoint {gen.base_url} is not reachable "
                f"(model {gen.model}). Replies and proactive messages will fail until it is.[/]"
            )
            log.warning("cli.generator_unreachable", base_url=gen.base_url, model=gen.model)
        self.conversations.add_listener(self._on_conversation_changed)
        self.conversations.add_message_listener(self._on_message)
        if self.conversations.get_current_conversation() is None:
            self.conversations.create()
        self.coordinator.start()
        log.info("cli.ready", conversation_id=self.conversations.current_id)

    async def _cleanup(self) -> None:
        self.conversations.remove_listener(self._on_conversation_changed)
        self.conversations.remove_message_listener(self._on_message)
        await self.coordinator.close()
        log.info("cli.stopped")

    # ── Banner & Help ─────────────────────────────────────────────────────────

    def _print_banner(self) -> None:
        cfg = self.coordinator.config
        state = "[green]on[/]" if cfg.enabled else "[red]off[/]"
        armed = ", ".join(sorted(self.coordinator.armed())) or "none"
        self.console.print(
            Panel(
                f"[bold]Chime[/]  ·  "
                f"Model: [cyan]{self.settings.generation.model}[/]  ·  "
                f"Proactive: {state}  ·  "
                f"Triggers: [cyan]{armed}[/]  ·  "
                f"Conversation: [dim]{self.conversations.current_id}[/]\n\n"
                f"Type your message or [bold]/help[/] for commands. "
                f"[bold]/quit[/] or Ctrl+D to quit.",
                border_style="cyan",
                padding=(0, 2),
            )
        )

    def _print_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    # ── REPL Loop ─────────────────────────────────────────────────────────────

    async def _repl_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                user_input = await aioconsole.ainput(self._build_prompt())
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break

            self.coordinator.on_user_input()

            user_input = user_input.strip()
            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit"):
                self.console.print("[dim]Goodbye.[/]")
                break

            await self.dispatch(user_input)

    def _build_prompt(self) -> str:
        flag = "on" if self.coordinator.config.enabled else "off"
        return f"chime[{self.conversations.current_id}][{flag}]> "

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def dispatch(self, raw: str) -> None:
        """Route input to the correct handler."""
        if not raw.startswith("/"):
            await self._cmd_chat(raw)
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/help":    lambda _: self._print_help(),
            "/status":  lambda _: self._cmd_status(),
            "/enable":  lambda _: self._cmd_enabled(True),
            "/disable": lambda _: self._cmd_enabled(False),
            "/new":     lambda _: self._cmd_new(),
            "/switch":  self._cmd_switch,
            "/list":    lambda _: self._cmd_list(),
            "/set":     self._cmd_set,
            "/quit":    lambda _: self._shutdown.set(),
        }

        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return
        result = handler(arg)
        if asyncio.iscoroutine(result):
            await result

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _cmd_chat(self, text: str) -> None:
        self.conversations.add_user_message(text)
        conversation = self.conversations.get_current_conversation()
        try:
            with self.console.status("[dim]Thinking...[/]"):
                result = await self.generator.reply(list(conversation.messages), conversation.model)
        except GenerationError as e:
            log.warning("cli.reply_failed", error=str(e), error_type=type(e).__name__)
            self.console.print(f"[red]Model error: {e}[/]")
            return
        # reply goes to the conversation it answers, even after a /switch
        self.conversations.append_message(conversation, ChatMessage.assistant(result.text))

    def _cmd_status(self) -> None:
        status = self.coordinator.status()

        table = Table(title="Triggers", box=box.ROUNDED, border_style="dim")
        table.add_column("Mode", style="cyan bold", no_wrap=True)
        table.add_column("State", no_wrap=True)
        table.add_column("Next fire", no_wrap=True)
        table.add_column("Fires", justify="right")
        now = self.coordinator.context.clock.time()
        for s in status["strategies"]:
            colour = _STATE_COLOURS.get(s["state"], "white")
            due = s["next_fire_at"]
            next_fire = f"in {max(due - now, 0):.0f}s" if due is not None else "-"
            if not s["sends_on_fire"] and due is not None:
                next_fire += " (recheck)"
            table.add_row(s["mode"], f"[{colour}]{s['state']}[/]", next_fire, str(s["fires"]))
        if not status["strategies"]:
            table.add_row("[dim]none[/]", "", "", "")
        self.console.print(table)

        gate = status["gate"]
        max_uses = status["max_uses"] or "∞"
        since_auto = status["seconds_since_auto"]
        rejections = ", ".join(f"{k}={v}" for k, v in sorted(gate["rejections"].items())) or "none"
        self.console.print(
            f"Enabled: [bold]{status['enabled']}[/]  ·  "
            f"Uses: {status['use_count']}/{max_uses}  ·  "
            f"Idle: {status['idle_seconds']:.0f}s  ·  "
            f"Last proactive: {f'{since_auto:.0f}s ago' if since_auto is not None else 'never'}\n"
            f"Sends: {gate['sends']}  ·  Attempts: {gate['attempts']}  ·  "
            f"Failures: {gate['failures']}  ·  Rejections: {rejections}"
        )
        if gate["last_error"]:
            self.console.print(f"[dim red]Last error: {gate['last_error']}[/]")

    def _cmd_enabled(self, enabled: bool) -> None:
        self.coordinator.set_enabled(enabled)
        armed = ", ".join(sorted(self.coordinator.armed())) or "none"
        word = "enabled" if enabled else "disabled"
        self.console.print(f"[green]Proactive messages {word}.[/] Armed: {armed}")

    def _cmd_new(self) -> None:
        conversation = self.conversations.create()
        self.console.print(f"[green]New conversation[/] [dim]{conversation.id}[/]")

    def _cmd_switch(self, arg: str) -> None:
        if not arg:
            self.console.print("[yellow]Usage: /switch <id>[/]")
            return
        try:
            self.conversations.switch(arg)
        except ConversationError as e:
            self.console.print(f"[yellow]{e}[/]")
            return
        self.console.print(f"[green]Switched to[/] [dim]{arg}[/]")

    def _cmd_list(self) -> None:
        for cid in self.conversations.list_conversations():
            conversation = self.conversations.get(cid)
            marker = "[bold green]*[/]" if cid == self.conversations.current_id else " "
            self.console.print(f"{marker} {cid}  [dim]{len(conversation.messages)} messages[/]")

    def _cmd_set(self, arg: str) -> None:
        key, _, raw = arg.partition(" ")
        try:
            overrides = parse_set_command(key, raw)
            self.coordinator.update_config(overrides)
        except (ValueError, yaml.YAMLError) as e:
            # pydantic's ValidationError is a ValueError
            detail = (
                "; ".join(err["msg"] for err in e.errors())
                if isinstance(e, ValidationError)
                else str(e)
            )
            self.console.print(f"[red]Could not set {key or '?'}: {detail}[/]")
            return
        self.console.print(f"[green]✓[/] {key} updated")

    # ── Host callbacks ────────────────────────────────────────────────────────

    def _on_conversation_changed(self, conversation_id: str) -> None:
        self.coordinator.on_conversation_changed()

    def _on_message(self, conversation_id: str, message: ChatMessage) -> None:
        if message.sender != Sender.ASSISTANT:
            return
        if conversation_id != self.conversations.current_id:
            return
        title = "[magenta]chime[/] [dim](proactive)[/]" if message.proactive else "[cyan]assistant[/]"
        self.console.print(
            Panel(
                message.text,
                title=title,
                title_align="left",
                border_style="magenta" if message.proactive else "cyan",
                padding=(0, 1),
            )
        )


async def run_cli(settings: Settings, log=None) -> None:
    """Entry point called from main.py."""
    cli = CLIInterface(settings)
    try:
        await cli.start()
    except ChimeError as e:
        if log is not None:
            log.error("cli.crashed", error=str(e), error_type=type(e).__name__, exc_info=True)
        raise
