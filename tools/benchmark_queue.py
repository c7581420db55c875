#!/usr/bin/env -S uv run
"""
Queue Benchmark Tool for docrqs

Measures send / receive / delete throughput of a docrqs queue on the local
document store adapters (InMemoryDocumentStore, LocalFileSystemDocumentStore).

Usage:
    uv run tools/benchmark_queue.py
    uv run tools/benchmark_queue.py --messages 2000 --consumers 8
    uv run tools/benchmark_queue.py --stores memory
    uv run tools/benchmark_queue.py --help
"""
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pydantic>=2.0",
#     "typer>=0.9.0",
#     "rich>=13.0",
# ]
# ///

from __future__ import annotations

import asyncio
import statistics
import sys
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from time import perf_counter

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Run against the working tree without installing it.
sys.path.insert(0, str(Path(__file__).parent.parent))

from docrqs import Queue, QueueService, RQSConfig, create_store

app = typer.Typer(help="Benchmark docrqs queues", add_completion=False)
console = Console()

VISIBILITY = timedelta(minutes=5)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ScenarioResult:
    """Timings of one scenario on one store."""

    store: str
    scenario: str
    messages: int
    elapsed: float
    latencies: list[float]  # seconds, one per call
    unfilled: int = 0

    @property
    def msgs_per_sec(self) -> float:
        return self.messages / self.elapsed if self.elapsed > 0 else 0.0

    def percentile(self, q: float) -> float:
        if not self.latencies:
            return 0.0
        ordered = sorted(self.latencies)
        return ordered[min(int(len(ordered) * q), len(ordered) - 1)]


def _ms(seconds: float) -> str:
    ms = seconds * 1000
    return f"{ms:.3f}ms" if ms < 1 else f"{ms:.2f}ms" if ms < 10 else f"{ms:.1f}ms"


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


async def send_all(queue: Queue, n: int, payload: bytes) -> list[float]:
    latencies = []
    for _ in range(n):
        start = perf_counter()
        await queue.send_message(payload)
        latencies.append(perf_counter() - start)
    return latencies


async def drain(queue: Queue, batch: int) -> tuple[int, list[float]]:
    """Receive and delete until the queue reports nothing pending."""
    handled = 0
    latencies = []
    while True:
        start = perf_counter()
        messages = await queue.receive_messages(batch, VISIBILITY)
        for message in messages:
            await queue.delete_message(message.message_id, message.receipt_token)
        latencies.append(perf_counter() - start)
        handled += len(messages)
        if not messages and await queue.number_of_messages_pending() == 0:
            return handled, latencies


async def run_store(
    store_name: str, messages: int, consumers: int, batch: int, root: Path
) -> list[ScenarioResult]:
    config = RQSConfig(backend=store_name, data_dir=str(root / store_name))
    service = QueueService(create_store(config), process_id="bench-producer")
    payload = b"x" * 1000
    results = []

    queue = await service.create_queue("bench-send")
    start = perf_counter()
    latencies = await send_all(queue, messages, payload)
    results.append(
        ScenarioResult(store_name, "send", messages, perf_counter() - start, latencies)
    )

    start = perf_counter()
    handled, latencies = await drain(queue, batch)
    results.append(
        ScenarioResult(
            store_name, f"drain-b{batch}", handled, perf_counter() - start, latencies
        )
    )

    # Competing consumers: lost CAS races show up as unfilled batch slots.
    queue = await service.create_queue("bench-compete")
    await send_all(queue, messages, payload)
    workers = [
        Queue(store=service.store, name=queue.name, process_id=f"bench-{i}")
        for i in range(consumers)
    ]
    start = perf_counter()
    outcomes = await asyncio.gather(*(drain(w, batch) for w in workers))
    elapsed = perf_counter() - start
    handled = sum(n for n, _ in outcomes)
    calls = [lat for _, lats in outcomes for lat in lats]
    results.append(
        ScenarioResult(
            store_name,
            f"compete-c{consumers}",
            handled,
            elapsed,
            calls,
            unfilled=len(calls) * batch - handled,
        )
    )

    for name in await service.list_queues():
        await service.delete_queue(name)
    return results


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def show(results: list[ScenarioResult]) -> None:
    console.print()
    console.print(Panel("[bold cyan]docrqs Queue Benchmark[/bold cyan]", expand=False))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Store", style="yellow")
    table.add_column("Scenario", style="cyan")
    table.add_column("Msgs/sec", justify="right", style="green")
    table.add_column("P50", justify="right")
    table.add_column("P95", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Unfilled slots", justify="right")

    for r in results:
        table.add_row(
            r.store,
            r.scenario,
            f"{r.msgs_per_sec:.1f}",
            _ms(statistics.median(r.latencies) if r.latencies else 0.0),
            _ms(r.percentile(0.95)),
            _ms(max(r.latencies, default=0.0)),
            str(r.unfilled),
        )
    console.print(table)
    console.print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@app.command()
def main(
    messages: int = typer.Option(500, "--messages", "-n", help="Messages per scenario"),
    consumers: int = typer.Option(4, "--consumers", "-c", help="Competing consumers"),
    batch: int = typer.Option(10, "--batch", "-b", help="Messages per receive call"),
    stores: str = typer.Option(
        "memory,filesystem", "--stores", "-s", help="Comma-separated store backends"
    ),
) -> None:
    """
    Benchmark docrqs queues.

    For each store: sequential sends, a single consumer draining the queue,
    and several consumers draining one queue concurrently.
    """
    results: list[ScenarioResult] = []
    with tempfile.TemporaryDirectory() as tmp:
        for store_name in (s.strip() for s in stores.split(",")):
            with console.status(f"Benchmarking {store_name}..."):
                results.extend(
                    asyncio.run(run_store(store_name, messages, consumers, batch, Path(tmp)))
                )

    if not results:
        console.print("[red]No benchmark results to display.[/red]")
        raise typer.Exit(code=1)
    show(results)


if __name__ == "__main__":
    app()
