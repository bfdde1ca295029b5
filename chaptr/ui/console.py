import threading
from typing import Optional
from rich.console import Console
from rich.table import Table
from rich.box import SIMPLE
from chaptr.infrastructure.event_bus import EventBus
from chaptr.domain.events import (
    CapabilityResolved,
    DiscoveryFinished,
    InterruptRequested,
    JobCompleted,
    JobFailed,
    JobSkipped,
    JobStarted,
)
from chaptr.domain.models import JobState
from chaptr.utils.formatting import format_duration, format_size


class ConsoleReporter:
    """Subscribes to EventBus and mirrors job outcomes to the terminal."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console()
        self._lock = threading.Lock()
        self.active = 0
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(CapabilityResolved, self.on_capability_resolved)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobSkipped, self.on_job_skipped)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(InterruptRequested, self.on_interrupt_requested)

    def _print(self, message: str):
        with self._lock:
            self.console.print(message, highlight=False)

    def on_capability_resolved(self, event: CapabilityResolved):
        if event.overridden:
            self._print(f"[cyan]Concurrency:[/] {event.budget} (manual override)")
        else:
            self._print(f"[cyan]Concurrency:[/] {event.budget} (GPU: {event.gpu_name})")

    def on_discovery_finished(self, event: DiscoveryFinished):
        self._print(
            f"[cyan]Discovery:[/] {event.files_found} found, {event.files_to_process} to process "
            f"(backups ignored: {event.ignored_backup}, in-progress ignored: {event.ignored_transient})"
        )
        if event.name_conflicts:
            self._print(
                f"[yellow]Name conflicts:[/] {event.name_conflicts} file(s) share an output name "
                f"with another source and will run one after another"
            )

    def on_job_started(self, event: JobStarted):
        with self._lock:
            self.active += 1

    def _finish(self):
        with self._lock:
            self.active = max(0, self.active - 1)

    def on_job_skipped(self, event: JobSkipped):
        self._finish()
        self._print(f"[dim]SKIP[/]  {event.job.source.path.name} ({event.reason})")

    def on_job_completed(self, event: JobCompleted):
        self._finish()
        job = event.job
        out_size = format_size(job.output_size_bytes) if job.output_size_bytes is not None else "?"
        chapters = f", {job.chapter_count} chapter(s)" if job.chapter_count else ""
        self._print(
            f"[green]DONE[/]  {job.source.path.name} -> {job.final_path.name} "
            f"({format_size(job.source.size_bytes)} -> {out_size}{chapters})"
        )

    def on_job_failed(self, event: JobFailed):
        self._finish()
        job = event.job
        style = "bold red" if job.state == JobState.COMMIT_FAILED else "red"
        label = "INTR" if job.state == JobState.INTERRUPTED else "FAIL"
        self._print(f"[{style}]{label}[/]  {job.source.path.name}: {event.error_message}")

    def on_interrupt_requested(self, event: InterruptRequested):
        self._print("[yellow]Interrupt - terminating active encoders...[/]")

    def print_summary(self, summary, elapsed_s: float):
        table = Table(title="Run summary", box=SIMPLE, show_header=True)
        table.add_column("Outcome")
        table.add_column("Files", justify="right")
        for state in (
            JobState.COMMITTED,
            JobState.SKIPPED,
            JobState.ROLLED_BACK,
            JobState.ABANDONED,
            JobState.COMMIT_FAILED,
            JobState.INTERRUPTED,
        ):
            count = summary.count(state)
            if count:
                table.add_row(state.value.lower().replace("_", " "), str(count))
        table.add_row("peak concurrency", f"{summary.peak_active}/{summary.budget}")
        table.add_row("elapsed", format_duration(elapsed_s))
        with self._lock:
            self.console.print(table)
            for path in summary.failed_files:
                self.console.print(f"  [red]✗[/] {path}", highlight=False)
