"""Pipeline orchestrator for a transcode run.

Coordinates file discovery, the naming filter, and the bounded execution of
JobPipeline runs. Uses the EventBus to report progress to the console layer.

Key responsibilities:
- Discover media files matching extensions and size filters
- Drop backup (OLD_) and transient (TMP_) names from the work set
- Serialize sources that would commit to the same final name
- Admit jobs FIFO, never running more than the concurrency budget at once
- Propagate Ctrl+C / SIGTERM to running encoders and wait for their cleanup
- Summarize outcomes for the run
"""

import threading
import concurrent.futures
import logging
from collections import Counter, deque
from pathlib import Path
from typing import Deque, Dict, List, Tuple

from pydantic import BaseModel, Field

from chaptr.config.models import AppConfig
from chaptr.domain.events import (
    DiscoveryFinished,
    DiscoveryStarted,
    InterruptRequested,
    ProcessingFinished,
)
from chaptr.domain.models import EncodeJob, JobState, MediaFile
from chaptr.infrastructure.event_bus import EventBus
from chaptr.infrastructure.file_scanner import FileScanner, naming_marker
from chaptr.pipeline.job import JobPipeline

FAILED_STATES = (
    JobState.ABANDONED,
    JobState.ROLLED_BACK,
    JobState.COMMIT_FAILED,
    JobState.INTERRUPTED,
)


class RunSummary(BaseModel):
    files_found: int = 0
    files_to_process: int = 0
    states: Dict[str, int] = Field(default_factory=dict)
    failed_files: List[str] = Field(default_factory=list)
    peak_active: int = 0
    budget: int = 1
    interrupted: bool = False

    def count(self, state: JobState) -> int:
        return self.states.get(state.value, 0)


class Orchestrator:
    """Transcode run orchestrator.

    Jobs are submitted in discovery order to a thread pool sized to the
    budget. Each worker additionally passes a Condition-guarded admission gate,
    so the number of jobs inside JobPipeline.run never exceeds the budget even
    if the pool is larger. A finished job frees exactly one slot.

    Args:
        config: AppConfig with general, encoder and naming settings.
        event_bus: EventBus for publishing discovery and run events.
        file_scanner: FileScanner for discovering media files.
        job_pipeline: JobPipeline executed once per admitted file.
        budget: Resolved concurrency budget (number of encoder sessions).
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        job_pipeline: JobPipeline,
        budget: int,
    ):
        if budget < 1:
            raise ValueError(f"budget must be >= 1, got {budget}")
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.job_pipeline = job_pipeline
        self.budget = budget
        self.logger = logging.getLogger(__name__)

        # Admission control
        self._active_jobs = 0
        self._peak_active = 0
        self._slot_lock = threading.Condition()
        self._shutdown_event = threading.Event()  # Signal workers to stop
        # final path -> sources waiting for it, only for names claimed more than once
        self._final_queues: Dict[Path, Deque[Path]] = {}
        self._turn_lock = threading.Condition()

        self.event_bus.subscribe(InterruptRequested, self._on_interrupt_requested)

    @property
    def active_jobs(self) -> int:
        return self._active_jobs

    @property
    def peak_active(self) -> int:
        return self._peak_active

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown_event

    def _on_interrupt_requested(self, event: InterruptRequested):
        """Handle Ctrl+C / SIGTERM: stop admitting and kill running encoders."""
        if not self._shutdown_event.is_set():
            self.logger.info("Interrupt requested - stopping orchestrator...")
        self._shutdown_event.set()
        with self._slot_lock:
            self._slot_lock.notify_all()

    def _perform_discovery(self, root_dir: Path) -> Tuple[List[MediaFile], Dict[str, int]]:
        naming = self.config.naming
        stats = {"files_found": 0, "ignored_backup": 0, "ignored_transient": 0, "name_conflicts": 0}
        files_to_process: List[MediaFile] = []
        seen = set()
        claimed: Dict[Path, MediaFile] = {}
        self._final_queues = {}

        for media_file in self.file_scanner.scan(root_dir):
            stats["files_found"] += 1
            marker = naming_marker(media_file.path.name, naming.backup_prefix, naming.transient_prefix)
            if marker == "backup":
                stats["ignored_backup"] += 1
                continue
            if marker == "transient":
                stats["ignored_transient"] += 1
                continue
            if media_file.path in seen:
                continue
            seen.add(media_file.path)
            files_to_process.append(media_file)

            final_path = self.job_pipeline.final_path_for(media_file)
            first = claimed.setdefault(final_path, media_file)
            if first is not media_file:
                stats["name_conflicts"] += 1
                turns = self._final_queues.setdefault(final_path, deque([first.path]))
                turns.append(media_file.path)
                self.logger.warning(
                    f"NAME_CONFLICT: {media_file.path.name} and {first.path.name} both map to "
                    f"{final_path.name}, running them one after another"
                )

        stats["files_to_process"] = len(files_to_process)
        return files_to_process, stats

    def _acquire_slot(self) -> bool:
        with self._slot_lock:
            while self._active_jobs >= self.budget and not self._shutdown_event.is_set():
                self._slot_lock.wait()
            if self._shutdown_event.is_set():
                return False
            self._active_jobs += 1
            self._peak_active = max(self._peak_active, self._active_jobs)
            return True

    def _release_slot(self):
        with self._slot_lock:
            self._active_jobs -= 1
            self._slot_lock.notify()

    def _process_file(self, media_file: MediaFile):
        """Runs one job inside an admission slot. Returns None if never admitted."""
        turns = self._final_queues.get(self.job_pipeline.final_path_for(media_file))
        if turns is None:
            return self._run_admitted(media_file)

        # Wait for our turn before taking a slot so a waiting sibling does not
        # hold an encoder session
        with self._turn_lock:
            while turns[0] != media_file.path:
                self._turn_lock.wait()
        try:
            return self._run_admitted(media_file)
        finally:
            with self._turn_lock:
                turns.popleft()
                self._turn_lock.notify_all()

    def _run_admitted(self, media_file: MediaFile):
        if not self._acquire_slot():
            self.logger.debug(f"PROCESS_SKIP: {media_file.path.name} (shutdown)")
            return None
        try:
            return self.job_pipeline.run(media_file, shutdown_event=self._shutdown_event)
        finally:
            self._release_slot()

    def _summarize(self, jobs: List[EncodeJob], stats: Dict[str, int]) -> RunSummary:
        states = Counter(job.state.value for job in jobs)
        return RunSummary(
            files_found=stats["files_found"],
            files_to_process=stats["files_to_process"],
            states=dict(states),
            failed_files=[str(job.source.path) for job in jobs if job.state in FAILED_STATES],
            peak_active=self._peak_active,
            budget=self.budget,
            interrupted=self._shutdown_event.is_set(),
        )

    def run(self, root_dir: Path) -> RunSummary:
        root_dir = Path(root_dir)
        self.logger.info(f"Discovery started: {root_dir}")
        self.event_bus.publish(DiscoveryStarted(directory=root_dir))
        files_to_process, stats = self._perform_discovery(root_dir)

        self.logger.info(
            f"Discovery finished: found={stats['files_found']}, "
            f"to_process={stats['files_to_process']}, "
            f"ignored_backup={stats['ignored_backup']}, "
            f"ignored_transient={stats['ignored_transient']}, "
            f"name_conflicts={stats['name_conflicts']}"
        )
        self.event_bus.publish(DiscoveryFinished(
            files_found=stats["files_found"],
            files_to_process=stats["files_to_process"],
            ignored_backup=stats["ignored_backup"],
            ignored_transient=stats["ignored_transient"],
            name_conflicts=stats["name_conflicts"],
        ))

        jobs: List[EncodeJob] = []
        if not files_to_process:
            self.logger.info("No files to process, exiting")
            summary = self._summarize(jobs, stats)
            self._publish_finished(summary)
            return summary

        self.logger.info(f"Processing {len(files_to_process)} file(s) with {self.budget} concurrent job(s)")
        # Siblings waiting for their turn on a shared final name park a worker
        # without holding a slot, so the pool gets one extra thread per conflict
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.budget + stats["name_conflicts"],
            thread_name_prefix="job",
        )
        # Submission order is the admission order
        futures = {executor.submit(self._process_file, mf): mf for mf in files_to_process}
        try:
            for future in concurrent.futures.as_completed(futures):
                try:
                    job = future.result()
                except Exception as e:
                    self.logger.error(f"Worker failed for {futures[future].path.name}: {e}")
                    continue
                if job is not None:
                    jobs.append(job)
        except KeyboardInterrupt:
            self.logger.info("Ctrl+C detected - stopping new jobs and terminating active encoders...")
            self.event_bus.publish(InterruptRequested())
            self._shutdown_event.set()
            for future in futures:
                future.cancel()

            # Running jobs see the shutdown event, kill ffmpeg and clean up
            self.logger.info("Waiting for active jobs to clean up...")
            for future, media_file in futures.items():
                if future.cancelled():
                    continue
                try:
                    job = future.result()
                except concurrent.futures.CancelledError:
                    continue
                except Exception as e:
                    self.logger.error(f"Worker failed for {media_file.path.name}: {e}")
                    continue
                if job is not None:
                    jobs.append(job)
            executor.shutdown(wait=True)
            self.logger.info("Shutdown complete")
            raise
        executor.shutdown(wait=True)

        summary = self._summarize(jobs, stats)
        self._publish_finished(summary)
        return summary

    def _publish_finished(self, summary: RunSummary):
        self.logger.info(
            f"Run finished: committed={summary.count(JobState.COMMITTED)}, "
            f"skipped={summary.count(JobState.SKIPPED)}, failed={len(summary.failed_files)}, "
            f"peak_active={summary.peak_active}/{summary.budget}"
        )
        self.event_bus.publish(ProcessingFinished(
            committed=summary.count(JobState.COMMITTED),
            skipped=summary.count(JobState.SKIPPED),
            failed=len(summary.failed_files),
            failed_files=summary.failed_files,
        ))
