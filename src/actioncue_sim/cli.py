#!/usr/bin/env python3
"""
actioncue-sim: race several workers over one database and watch the claims.

Usage:
    actioncue-sim --count 200 --workers 4
    actioncue-sim --scenario flaky --count 50 --error-rate 0.1
    actioncue-sim --scenario recurring --count 10 --interval 0.2 --runs 5
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime

from rich.console import Console
from rich.table import Table

from actioncue_sim.display import SimulationState, SimulatorDisplay, print_simple_stats
from actioncue_sim.runner import SimConfig, SimulationRunner
from actioncue_sim.scenarios import SCENARIOS, list_scenarios

EVENT_SYMBOLS = {
    "completed": "✓",
    "error": "✗",
    "started": "▶",
    "queued": "+",
    "duplicate": "!",
}


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the simulator."""
    actioncue_logger = logging.getLogger("actioncue")
    if verbose:
        actioncue_logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        actioncue_logger.addHandler(handler)
    else:
        # Silence library logs - simulator handles its own display
        actioncue_logger.setLevel(logging.CRITICAL)


async def run_with_display(config: SimConfig, use_tui: bool = True, verbose: bool = False) -> SimulationState:
    """Run a simulation with visual display.

    Args:
        config: Simulation configuration
        use_tui: Use the Rich live display
        verbose: Print every event instead of a status display
    """
    state = SimulationState()

    if verbose:
        original_add_event = state.add_event

        def logging_add_event(event_type: str, key: int | None, worker: str | None = None, details: str = "") -> None:
            ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            symbol = EVENT_SYMBOLS.get(event_type, "·")
            key_str = "" if key is None else str(key)
            print(f"{ts} {symbol} {event_type:<10} {worker or '':<10} {key_str:<8} {details}")
            original_add_event(event_type, key, worker, details)

        state.add_event = logging_add_event  # type: ignore

    runner = SimulationRunner(config, state)
    stall = StallWatch(config.stall_timeout)

    if verbose:
        print("\nactioncue-sim [verbose]")
        print(f"   Scenario: {config.scenario}, Count: {config.count}, Workers: {config.workers}")
        print()
        print(f"{'TIME':<12} {'':1} {'EVENT':<10} {'WORKER':<10} {'KEY':<8} DETAILS")
        print("-" * 72)

        async def update_loop():
            while True:
                if stall.check(state):
                    print(f"\nStalled for {config.stall_timeout}s. Stopping.")
                    runner.stop()
                    return
                await asyncio.sleep(0.5)

        await drive(runner, update_loop)
        print("-" * 72)

    elif use_tui:
        display = SimulatorDisplay(state)

        async def update_loop():
            while True:
                if stall.check(state):
                    state.add_event("timeout", None, None, f"Stalled for {config.stall_timeout}s")
                    runner.stop()
                    return
                display.refresh()
                await asyncio.sleep(0.1)

        with display:
            await drive(runner, update_loop)

    else:
        print("\nactioncue-sim")
        print(f"   Scenario: {config.scenario}, Count: {config.count}, Workers: {config.workers}")
        print()

        async def update_loop():
            while True:
                print_simple_stats(state)
                if stall.check(state):
                    print(f"\nStalled for {config.stall_timeout}s. Stopping.")
                    runner.stop()
                    return
                await asyncio.sleep(0.5)

        await drive(runner, update_loop)
        print()

    print_final_summary(state)
    return state


class StallWatch:
    """Detects a run where no handler has executed for ``timeout`` seconds."""

    def __init__(self, timeout: float | None):
        self.timeout = timeout
        self._last_executions = -1
        self._since = 0.0

    def check(self, state: SimulationState) -> bool:
        if not self.timeout:
            return False
        if state.executions != self._last_executions:
            self._last_executions = state.executions
            self._since = state.elapsed
            return False
        return state.elapsed - self._since >= self.timeout


async def drive(runner: SimulationRunner, update_loop) -> None:
    """Run the simulation alongside a display loop, cleaning up either way."""
    update_task = asyncio.create_task(update_loop())
    try:
        await runner.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        runner.stop()
    finally:
        update_task.cancel()
        try:
            await update_task
        except asyncio.CancelledError:
            pass
        await runner.cleanup()


def print_final_summary(state: SimulationState, console: Console | None = None) -> None:
    """Print the results table after a simulation."""
    console = console or Console()
    console.print()

    table = Table(title="Simulation Results", show_header=False, border_style="green")
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Scenario", state.scenario_name)
    table.add_row("Workers", str(len(state.workers)))
    table.add_row("Submitted", str(state.submitted))
    table.add_row("Complete", f"[green]{state.completed}[/green]")
    table.add_row("Failed", f"[red]{state.failed}[/red]" if state.failed else "0")
    table.add_row("Canceled", str(state.canceled))
    table.add_row("Executions", str(state.executions))
    table.add_row("Retries", str(state.retries))
    table.add_row(
        "Duplicate executions",
        f"[bold red]{state.duplicates}[/bold red]" if state.duplicates else "[green]0[/green]",
    )
    for name, worker in state.workers.items():
        table.add_row(f"  {name}", f"{worker.succeeded} ok / {worker.errors} errors")
    table.add_row("Duration", f"{state.elapsed:.2f}s")
    table.add_row("Throughput", f"{state.throughput:.2f}/s")

    console.print(table)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="actioncue-sim",
        description="actioncue simulator - several workers racing over one store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  actioncue-sim --count 500 --workers 8 --latency 5
  actioncue-sim --scenario flaky --count 50 --error-rate 0.1
  actioncue-sim --scenario recurring --count 10 --interval 0.2 --runs 5
  actioncue-sim --list-scenarios
        """,
    )
    parser.add_argument("--scenario", default="burst", help="Scenario to run (default: burst)")
    parser.add_argument("--list-scenarios", action="store_true", help="List available scenarios and exit")
    parser.add_argument("--count", "-n", type=int, default=100, help="Number of actions (default: 100)")
    parser.add_argument("--workers", "-w", type=int, default=3, help="Number of workers (default: 3)")
    parser.add_argument("--latency", "-l", type=int, default=20, help="Handler latency in ms (default: 20)")
    parser.add_argument(
        "--jitter", "-j", type=float, default=0.2,
        help="Latency variance as fraction, e.g. 0.2 = ±20%% (default: 0.2)",
    )
    parser.add_argument("--error-rate", "-e", type=float, default=0.0, help="Fraction of failing runs (default: 0)")
    parser.add_argument("--batch-size", "-b", type=int, default=10, help="Actions per claim (default: 10)")
    parser.add_argument("--lease", type=float, default=30.0, help="Claim lease in seconds (default: 30)")
    parser.add_argument("--retry-delay", type=float, default=0.1, help="Retry backoff in seconds (default: 0.1)")
    parser.add_argument("--interval", type=float, default=0.5, help="Recurring interval in seconds (default: 0.5)")
    parser.add_argument("--runs", type=int, default=3, help="Recurring runs per action (default: 3)")
    parser.add_argument("--duration", "-d", type=float, default=None, help="Maximum duration in seconds")
    parser.add_argument("--db", default=None, help="Database file to keep (default: temporary)")
    parser.add_argument("--no-tui", action="store_true", help="Disable the live display, use simple text output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print event log instead of status updates")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible behavior")
    parser.add_argument("--timeout", type=float, default=None, help="Auto-stop if stalled for N seconds")

    args = parser.parse_args(argv)

    if args.list_scenarios:
        print("\nAvailable scenarios:\n")
        for info in list_scenarios():
            print(f"  {info.name:<12} {info.description}")
        print()
        return 0

    if args.scenario not in SCENARIOS:
        parser.error(f"Unknown scenario: {args.scenario}. Available: {', '.join(SCENARIOS)}")
    if args.workers < 1:
        parser.error("--workers must be >= 1")

    configure_logging(verbose=args.verbose)

    config = SimConfig(
        scenario=args.scenario,
        count=args.count,
        workers=args.workers,
        latency_ms=args.latency,
        latency_jitter=args.jitter,
        error_rate=args.error_rate,
        duration=args.duration,
        db_path=args.db,
        batch_size=args.batch_size,
        lease_duration=args.lease,
        retry_delay=args.retry_delay,
        interval=args.interval,
        runs=args.runs,
        seed=args.seed,
        stall_timeout=args.timeout,
    )

    async def run_main() -> int:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        main_task = asyncio.create_task(run_with_display(config, use_tui=not args.no_tui, verbose=args.verbose))
        stop_task = asyncio.create_task(stop_event.wait())

        done, pending = await asyncio.wait([main_task, stop_task], return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if stop_task in done:
            print("\nInterrupted.")
            return 130
        state = main_task.result()
        return 1 if state.duplicates else 0

    try:
        return asyncio.run(run_main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
