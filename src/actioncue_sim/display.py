"""Rich-based display for actioncue-sim.

This module renders simulation state. It is decoupled from the simulation
logic: the runner updates a SimulationState, the display draws it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


@dataclass
class WorkerStatus:
    """Per-worker counters for display."""

    name: str
    executing: int = 0
    succeeded: int = 0
    errors: int = 0
    start_time: float = 0.0

    @property
    def executions(self) -> int:
        return self.succeeded + self.errors

    @property
    def throughput(self) -> float:
        """Handler executions per second."""
        if self.start_time <= 0:
            return 0.0
        elapsed = time.time() - self.start_time
        if elapsed > 0:
            return self.executions / elapsed
        return 0.0


@dataclass
class EventRecord:
    """A recent event for display."""

    timestamp: datetime
    event_type: str
    key: int | None
    worker: str | None = None
    details: str = ""


@dataclass
class SimulationState:
    """Current state of the simulation.

    This is the data contract between the runner and the display. Handler
    wrappers call ``begin``/``end`` around every execution, which is how
    concurrent executions of the same action are detected.
    """

    # Counts read from the store
    submitted: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    canceled: int = 0

    # Handler-side accounting
    executions: int = 0
    retries: int = 0
    duplicates: int = 0
    in_flight: dict[int, str] = field(default_factory=dict)  # action key -> worker
    runs_per_action: dict[int, int] = field(default_factory=dict)

    # Timing
    start_time: float = 0.0
    elapsed: float = 0.0

    workers: dict[str, WorkerStatus] = field(default_factory=dict)

    # Recent events (most recent first)
    events: list[EventRecord] = field(default_factory=list)
    max_events: int = 10

    # Config display
    scenario_name: str = "burst"
    target_count: int = 0
    target_runs: int = 0
    latency_ms: int = 0
    error_rate: float = 0.0
    lease_duration: float = 0.0

    @property
    def throughput(self) -> float:
        """Handler executions per second."""
        if self.elapsed > 0:
            return self.executions / self.elapsed
        return 0.0

    @property
    def settled(self) -> int:
        return self.completed + self.failed + self.canceled

    @property
    def progress(self) -> float:
        """Fraction of submitted actions in a terminal status."""
        if self.submitted > 0:
            return self.settled / self.submitted
        return 0.0

    def begin(self, key: int, worker: str, recurring: bool = False) -> None:
        """A handler started executing action ``key`` on ``worker``.

        A repeat run of a one-shot action is a retry; a repeat run of a
        recurring action is just its next occurrence.
        """
        other = self.in_flight.get(key)
        if other is not None:
            self.duplicates += 1
            self.add_event("duplicate", key, worker, f"already running on {other}")
        self.in_flight[key] = worker
        self.runs_per_action[key] = self.runs_per_action.get(key, 0) + 1
        if not recurring and self.runs_per_action[key] > 1:
            self.retries += 1
        status = self.workers.get(worker)
        if status:
            status.executing += 1
        self.add_event("started", key, worker)

    def end(self, key: int, worker: str, error: BaseException | None = None) -> None:
        """A handler returned (or raised) for action ``key`` on ``worker``."""
        if self.in_flight.get(key) == worker:
            del self.in_flight[key]
        self.executions += 1
        status = self.workers.get(worker)
        if status:
            status.executing = max(0, status.executing - 1)
            if error is None:
                status.succeeded += 1
            else:
                status.errors += 1
        if error is None:
            self.add_event("completed", key, worker)
        else:
            self.add_event("error", key, worker, str(error))

    def add_event(self, event_type: str, key: int | None, worker: str | None = None, details: str = "") -> None:
        """Add an event to the display log."""
        self.events.insert(0, EventRecord(
            timestamp=datetime.now(),
            event_type=event_type,
            key=key,
            worker=worker,
            details=details,
        ))
        if len(self.events) > self.max_events:
            self.events = self.events[:self.max_events]


class SimulatorDisplay:
    """Rich TUI for the simulator.

    Panels: action counts, one row per worker, recent events, config footer.
    """

    def __init__(self, state: SimulationState, console: Console | None = None):
        self.state = state
        self.console = console or Console()
        self._live: Live | None = None

    def __enter__(self) -> SimulatorDisplay:
        self._live = Live(
            self._build_layout(),
            console=self.console,
            refresh_per_second=10,
            screen=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args) -> None:
        if self._live:
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        """Update the display with current state."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Panel:
        s = self.state

        layout = Layout()
        layout.split_column(
            Layout(name="actions", size=4),
            Layout(name="workers", size=3 + len(s.workers)),
            Layout(name="events", size=7),
            Layout(name="config", size=3),
        )
        layout["actions"].update(self._build_actions_section())
        layout["workers"].update(self._build_workers_section())
        layout["events"].update(self._build_events_section())
        layout["config"].update(self._build_config_section())

        return Panel(
            layout,
            title="[bold cyan]actioncue-sim[/bold cyan]",
            border_style="cyan",
        )

    def _build_actions_section(self) -> Panel:
        s = self.state

        stats = Table.grid(expand=True, padding=(0, 2))
        for _ in range(5):
            stats.add_column(justify="left")
        stats.add_row(
            f"[dim]Pending:[/dim] [bold]{s.pending:,}[/bold]",
            f"[dim]Running:[/dim] [bold yellow]{s.running}[/bold yellow]",
            f"[dim]Complete:[/dim] [bold green]{s.completed:,}[/bold green]",
            f"[dim]Failed:[/dim] [bold red]{s.failed}[/bold red]",
            f"[dim]Canceled:[/dim] [bold]{s.canceled}[/bold]",
        )

        stats2 = Table.grid(expand=True, padding=(0, 2))
        for _ in range(4):
            stats2.add_column(justify="left")
        dup_style = "bold red" if s.duplicates else "bold green"
        stats2.add_row(
            f"[dim]Duplicates:[/dim] [{dup_style}]{s.duplicates}[/{dup_style}]",
            f"[dim]Retries:[/dim] [bold magenta]{s.retries}[/bold magenta]",
            f"[dim]Progress:[/dim] [bold]{s.progress * 100:.0f}%[/bold]",
            f"[dim]Throughput:[/dim] [bold]{s.throughput:.1f}/s[/bold]",
        )

        content = Table.grid(expand=True)
        content.add_row(stats)
        content.add_row(stats2)
        return Panel(content, title="[bold]Actions[/bold]", border_style="blue")

    def _build_workers_section(self) -> Panel:
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Worker", width=12)
        table.add_column("Executing", width=14)
        table.add_column("Processed", width=14, justify="right")
        table.add_column("Throughput", width=10, justify="right")

        for name, worker in s.workers.items():
            executing = "[yellow]●[/yellow]" if worker.executing else "[dim]○[/dim]"
            processed = f"[green]{worker.succeeded}[/green]"
            if worker.errors:
                processed += f"/[red]{worker.errors}[/red]"
            table.add_row(
                f"[bold]{name}[/bold]",
                executing,
                processed,
                f"{worker.throughput:.1f}/s",
            )

        if not s.workers:
            table.add_row("[dim]No workers[/dim]", "", "", "")
        return Panel(table, title="[bold]Workers[/bold]", border_style="blue")

    def _build_events_section(self) -> Panel:
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Time", width=10, style="dim")
        table.add_column("Event", width=12)
        table.add_column("Action", width=8)
        table.add_column("Worker", width=10)
        table.add_column("Details")

        event_styles = {
            "completed": "green",
            "error": "red",
            "started": "yellow",
            "duplicate": "bold red",
            "queued": "dim",
            "canceled": "magenta",
        }
        for event in s.events[:5]:
            style = event_styles.get(event.event_type, "white")
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{event.event_type}[/{style}]",
                "" if event.key is None else str(event.key),
                event.worker or "",
                event.details[:30],
            )

        if not s.events:
            table.add_row("[dim]No events yet[/dim]", "", "", "", "")
        return Panel(table, title="[bold]Recent Events[/bold]", border_style="blue")

    def _build_config_section(self) -> Panel:
        s = self.state

        text = Text()
        text.append("Scenario: ", style="dim")
        text.append(s.scenario_name, style="bold")
        text.append("  Workers: ", style="dim")
        text.append(str(len(s.workers)), style="bold")
        text.append("  Latency: ", style="dim")
        text.append(f"{s.latency_ms}ms", style="bold")
        text.append("  Error: ", style="dim")
        text.append(f"{s.error_rate * 100:.0f}%", style="bold red" if s.error_rate > 0 else "bold")
        text.append("  Lease: ", style="dim")
        text.append(f"{s.lease_duration:g}s", style="bold")
        text.append("    Ctrl+C to stop", style="dim")
        return Panel(text, title="[bold]Config[/bold]", border_style="dim")


def print_simple_stats(state: SimulationState) -> None:
    """One-line progress for --no-tui mode."""
    s = state
    print(
        f"\r[{s.settled}/{s.submitted}] "
        f"P:{s.pending} R:{s.running} ✓:{s.completed} ✗:{s.failed} "
        f"dup:{s.duplicates} ({s.progress * 100:.0f}%) {s.throughput:.1f}/s",
        end="",
        flush=True,
    )
