"""
Clarify CLI Interactive Terminal

A small REPL for exercising the clarification intercept by hand. Set up
a clarifier with /options, then type replies the way a user would and
watch which lane settles each turn. Rich library for formatted output.

Run with:
    python -m interfaces.cli.terminal
"""

import asyncio
import logging
import uuid
from functools import partial

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clarify.arbitration import BoundedArbitrationLoop
from clarify.config import FeatureFlags, LLMSettings, Thresholds, get_config
from clarify.intercept import ClarificationInterceptHandler, InterceptContext
from clarify.llm_fallback import ClarificationLLMClient
from clarify.models import (
    ClarificationOption,
    LastClarificationState,
    Scope,
    SelectionContinuityState,
    empty_continuity_state,
    suspend_latch,
)
from clarify.routing_log import RoutingLog


# ---------------------------------------------------------------------------
# Logging: quiet for terminal use, the routing log is shown on demand
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("clarify.cli")


# ---------------------------------------------------------------------------
# ClarifyTerminal
# ---------------------------------------------------------------------------

class ClarifyTerminal:
    """Interactive REPL that plays the chat session for the intercept handler.

    The terminal itself is the ClarificationHost: every side effect the
    handler requests is applied to the session fields below and echoed
    to the console.
    """

    def __init__(self):
        self.config = get_config()
        self.console = Console()

        # ---- Session state (owned here, changed only through host callbacks)
        self.last_clarification: LastClarificationState | None = None
        self.continuity: SelectionContinuityState = empty_continuity_state()
        self.focus_latch = None

        # ---- Arbitration core ---------------------------------------------
        flags = FeatureFlags.from_config(self.config)
        self.routing_log = RoutingLog(max_events=int(self.config.routing_log.max_events))
        llm_client = ClarificationLLMClient(
            settings=LLMSettings.from_config(self.config),
            thresholds=Thresholds.from_config(self.config),
            flags=flags,
        )
        self.loop = BoundedArbitrationLoop(
            llm_client=llm_client,
            flags=flags,
            thresholds=Thresholds.from_config(self.config),
            routing_log=self.routing_log,
        )
        self.handler = ClarificationInterceptHandler(
            host=self, loop=self.loop, flags=flags, routing_log=self.routing_log,
        )

    # -----------------------------------------------------------------------
    # ClarificationHost
    # -----------------------------------------------------------------------

    def execute_action(self, option: ClarificationOption) -> bool:
        self.console.print(f"[green]Opening[/green] [bold]{option.label}[/bold] ({option.id})")
        return True

    def show_clarifier(self, message_id, content, options):
        lines = [content, ""]
        lines += [f"  {i}. {o.display_label()}" for i, o in enumerate(options, 1)]
        self.console.print(Panel("\n".join(lines), title=message_id, border_style="yellow"))

    def add_message(self, content: str) -> None:
        self.console.print(f"[cyan]{content}[/cyan]")

    def set_last_clarification(self, clarification):
        self.last_clarification = clarification

    def update_continuity(self, continuity):
        self.continuity = continuity

    def reset_continuity(self):
        self.continuity = empty_continuity_state()

    def clear_focus_latch(self):
        self.focus_latch = None

    def suspend_focus_latch(self):
        if self.focus_latch is not None:
            self.focus_latch = suspend_latch(self.focus_latch)

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def run(self):
        self._print_banner()
        try:
            await self._repl_loop()
        except (SystemExit, KeyboardInterrupt):
            pass
        self.console.print("[dim]Goodbye.[/dim]")

    async def _repl_loop(self):
        """Async input loop; reads stdin via executor to stay non-blocking."""
        loop = asyncio.get_event_loop()

        while True:
            try:
                line = await loop.run_in_executor(None, partial(input, "clarify> "))
            except KeyboardInterrupt:
                self.console.print("\n[dim]Use /quit to exit.[/dim]")
                continue
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                await self._dispatch_command(line)
            else:
                await self._submit_turn(line)

    # -----------------------------------------------------------------------
    # Slash commands
    # -----------------------------------------------------------------------

    async def _dispatch_command(self, line: str):
        parts = line.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        handlers = {
            "/options": self._cmd_options,
            "/state": self._cmd_state,
            "/log": self._cmd_log,
            "/reset": self._cmd_reset,
            "/help": self._cmd_help,
            "/quit": self._cmd_quit,
            "/exit": self._cmd_quit,
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[red]Unknown command: {cmd}[/red]  (try /help)")
            return
        await handler(arg)

    async def _cmd_options(self, arg: str):
        """/options A, B, C: show a new clarifier with these labels."""
        labels = [label.strip() for label in arg.split(",") if label.strip()]
        if not labels:
            self.console.print("[red]Usage: /options Links Panel A, Links Panel B[/red]")
            return
        options = tuple(
            ClarificationOption(id=f"opt-{i}", label=label, type="panel_drawer")
            for i, label in enumerate(labels)
        )
        message_id = f"assistant-{uuid.uuid4().hex[:12]}"
        self.last_clarification = LastClarificationState(
            message_id=message_id, options=options, original_intent=arg,
        )
        self.continuity = self.continuity.with_option_set(message_id, Scope.CHAT)
        self.loop.reset_guard()
        self.show_clarifier(message_id, "Which one do you mean?", options)

    async def _cmd_state(self, _arg: str):
        """/state: show the active clarifier and continuity."""
        table = Table(title="Session State")
        table.add_column("Field", style="bold cyan")
        table.add_column("Value")

        lc = self.last_clarification
        table.add_row("clarifier", lc.message_id if lc else "(none)")
        table.add_row("options", ", ".join(lc.labels) if lc else "")
        table.add_row("attempt", str(lc.attempt_count) if lc else "")
        table.add_row("active option set", str(self.continuity.active_option_set_id))
        table.add_row("active scope", self.continuity.active_scope.value)
        table.add_row("rejected", ", ".join(self.continuity.recent_rejected_choice_ids))
        last = self.continuity.last_resolved_action
        table.add_row("last action", f"{last.target_ref} ({last.outcome})" if last else "")
        self.console.print(table)

    async def _cmd_log(self, arg: str):
        """/log [N]: show the N most recent routing decisions."""
        count = int(arg) if arg.isdigit() else 15
        table = Table(title="Routing Log")
        table.add_column("Component", style="bold cyan")
        table.add_column("Action")
        table.add_column("Metadata", style="dim")
        for event in self.routing_log.get_recent(count):
            meta = ", ".join(f"{k}={v}" for k, v in event["metadata"].items())
            table.add_row(event["component"], event["action"], meta)
        self.console.print(table)

    async def _cmd_reset(self, _arg: str):
        """/reset: drop the clarifier and all continuity."""
        self.last_clarification = None
        self.reset_continuity()
        self.loop.reset_guard()
        self.console.print("[dim]Session reset.[/dim]")

    async def _cmd_help(self, _arg: str):
        table = Table(title="Commands")
        table.add_column("Command", style="bold cyan")
        table.add_column("Description")

        commands = [
            ("/options A, B, C", "Show a clarifier with these option labels"),
            ("/state", "Show the active clarifier and continuity state"),
            ("/log [N]", "Show the N most recent routing decisions"),
            ("/reset", "Drop the clarifier and continuity"),
            ("/help", "Show this help table"),
            ("/quit, /exit", "Exit the terminal"),
        ]
        for cmd, desc in commands:
            table.add_row(cmd, desc)
        self.console.print(table)

    async def _cmd_quit(self, _arg: str):
        raise SystemExit

    # -----------------------------------------------------------------------
    # Turns
    # -----------------------------------------------------------------------

    async def _submit_turn(self, text: str):
        result = await self.handler.handle(InterceptContext(
            text=text,
            last_clarification=self.last_clarification,
            continuity=self.continuity,
            focus_latch=self.focus_latch,
        ))
        if not result.handled:
            self.console.print("[dim](not a clarification reply, routed normally)[/dim]")
            return
        reason = result.arbitration.fallback_reason if result.arbitration else None
        detail = f"  reason={reason.value}" if reason else ""
        self.console.print(f"[dim]lane={result.lane}{detail}[/dim]")

    def _print_banner(self):
        features = self.config.features
        lines = [
            "[bold]Clarify: chat clarification arbitration[/bold]",
            "",
            f"LLM fallback: {'on' if features.llm_fallback_enabled else 'off'}  |  "
            f"Retry: {'on' if features.context_retry_enabled else 'off'}  |  "
            f"Continuity lane: {'on' if features.selection_continuity_lane_enabled else 'off'}",
            "",
            "[dim]Start with /options Links Panel A, Links Panel B, then reply naturally.[/dim]",
        ]
        self.console.print(Panel("\n".join(lines), border_style="bright_blue", padding=(1, 2)))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def main():
    """Launch the Clarify terminal."""
    terminal = ClarifyTerminal()
    await terminal.run()


if __name__ == "__main__":
    asyncio.run(main())
