"""Console reporter for live agent turn progress."""

from __future__ import annotations

import json
import os
import sys
from typing import Optional, TextIO

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from .events import UI_EVENT_WINDOW, EventLog, StreamEvent
from .output_config import OutputFormat

_TABLE_ROWS = 15

_STATUS_STYLES = {
    "passed": "green",
    "completed": "green",
    "failed": "red",
    "error": "red",
    "blocked": "yellow",
    "running": "cyan",
}


class ConsoleReporter:
    """
    Console reporter that adapts to environment.

    Interactive terminals get a live table of the most recent stream events;
    CI, pipes and redirects get one plain line per event; the json format
    emits one JSON document per event.
    """

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.AUTO,
        *,
        stream: TextIO | None = None,
        window: int = UI_EVENT_WINDOW,
    ) -> None:
        self.output_format = output_format
        self.stream = stream if stream is not None else sys.stdout
        self.events = EventLog(window)
        self._detect_environment()

        self.console: Optional[Console] = Console(file=self.stream) if self.use_rich else None
        self.live: Optional[Live] = None
        self.progress: Optional[Progress] = None
        self._label = ""

    def _detect_environment(self) -> None:
        """Detect if we should use rich output or plain text."""
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:  # AUTO
            is_terminal = hasattr(self.stream, "isatty") and self.stream.isatty()
            is_ci = any(
                name in os.environ for name in ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS", "GITHUB_ACTIONS")
            )
            self.use_rich = is_terminal and not is_ci

    def start_turn(self, action: str, label: str) -> None:
        """Begin displaying one agent turn."""
        self.events.clear()
        self._label = label
        if self.output_format == OutputFormat.JSON:
            self._emit_json({"type": "turn_started", "action": action, "label": label})
        elif self.use_rich:
            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=self.console,
            )
            self.progress.add_task(f"[cyan]{action}: {label}", total=None)
            self.live = Live(
                Group(self.progress, self._render_table()),
                console=self.console,
                refresh_per_second=4,
            )
            self.live.start()
        else:
            self._print(f"Running {action} turn: {label}")
            self._print("-" * 80)

    def report_event(self, event: StreamEvent) -> None:
        """Record an event and refresh the display."""
        self.events.append(event)
        if self.output_format == OutputFormat.JSON:
            self._emit_json({"type": "stream_event", **event.as_log_record()})
        elif self.use_rich:
            if self.live is not None and self.progress is not None:
                self.live.update(Group(self.progress, self._render_table()))
        else:
            parts = [f"[{event.event}]", event.phase]
            if event.scenario_id:
                parts.append(event.scenario_id)
            if event.status:
                parts.append(event.status)
            parts.append(event.message)
            self._print(" ".join(parts))

    def finish_turn(self, title: str, counts: dict[str, int], failed: bool) -> None:
        """Display the final turn summary."""
        self.stop()

        if self.output_format == OutputFormat.JSON:
            self._emit_json({"type": "turn_finished", "title": title, "counts": counts, "failed": failed})
            return

        if self.use_rich and self.console is not None:
            summary_text = Text()
            for key, value in counts.items():
                style = _STATUS_STYLES.get(key, "bold")
                summary_text.append(f"{key.capitalize()}: {value}  ", style=f"bold {style}")
            status = f"✗ {title}" if failed else f"✓ {title}"
            self.console.print()
            self.console.print(
                Panel(
                    summary_text,
                    title=Text(status, style="bold red" if failed else "bold green"),
                    border_style="red" if failed else "green",
                )
            )
        else:
            self._print("-" * 80)
            self._print(" | ".join(f"{key.capitalize()}: {value}" for key, value in counts.items()))
            self._print(f"✗ {title}" if failed else f"✓ {title}")

    def stop(self) -> None:
        """Stop the live display without a summary."""
        if self.live is not None:
            self.live.stop()
            self.live = None

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.output_format == OutputFormat.JSON:
            self._emit_json({"type": "info", "message": message})
        elif self.use_rich and self.console is not None:
            self.console.print(f"[cyan]{message}[/]")
        else:
            self._print(message)

    def _render_table(self) -> Table:
        table = Table(show_header=True, header_style="bold cyan", title=self._label or None)
        table.add_column("Event", style="dim", width=12)
        table.add_column("Phase", width=18)
        table.add_column("Scenario", width=12)
        table.add_column("Status", width=10)
        table.add_column("Message", overflow="fold")
        for event in self.events.snapshot()[-_TABLE_ROWS:]:
            status = Text(event.status or "", style=_STATUS_STYLES.get(event.status or "", "white"))
            table.add_row(event.event, event.phase, event.scenario_id or "", status, event.message)
        return table

    def _emit_json(self, record: dict) -> None:
        self._print(json.dumps(record, ensure_ascii=False))

    def _print(self, line: str) -> None:
        print(line, file=self.stream, flush=True)
