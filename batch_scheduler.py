"""
Sequential batch analysis of catalog items.

Each pending item's cover is sent to the AI capability one at a time. Rate
limits are retried with exponential backoff (and a one-way downgrade from
turbo to safe pacing); any other failure marks the item as failed for the
run and moves on. A watchdog restarts a run that has gone silent.
"""

import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from retry_policy import BackoffPolicy, RetryAction, RetryController, is_rate_limit_error
from config import SchedulerSettings
from errors import AnalysisError, AnalysisTimeout
from field_protection import protect_for_item
from helpers import analysis_to_update
from models import BASIC_FIELDS, CatalogItem, ItemStatus, select_pending


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass
class BatchLogEntry:
    time: str
    message: str
    kind: str = "info"          # info | success | warning | error


@dataclass
class ItemOutcome:
    item_id: str
    title: str
    result: str                 # success | failed | skipped
    message: str = ""
    attempts: int = 1


@dataclass
class BatchJob:
    """State of one run. Lives until the run completes, stops or is superseded."""

    items: List[CatalogItem]
    controller: RetryController
    failed_ids: set
    quiet: bool = False
    index: int = 0
    outcomes: List[ItemOutcome] = field(default_factory=list)
    attempts: Dict[str, int] = field(default_factory=dict)

    @property
    def consecutive_retries(self) -> int:
        return self.controller.consecutive_retries

    @property
    def forced_safe_mode(self) -> bool:
        return self.controller.forced_safe_mode

    def count(self, result: str) -> int:
        return sum(1 for o in self.outcomes if o.result == result)


def print_log_entry(entry: BatchLogEntry):
    print(f"[{entry.time}] {entry.message}")


class BatchScheduler:
    """
    Drives batch runs against a catalog store and an AI analyzer.

    store must provide list(), update(id, fields) and file_url(item).
    analyzer must provide analyze_url(url, hint=None) -> dict and is_turbo.
    """

    def __init__(self, store, analyzer, settings: SchedulerSettings = None,
                 turbo: Optional[bool] = None,
                 on_update: Optional[Callable] = None,
                 on_complete: Optional[Callable] = None,
                 log_sink: Optional[Callable] = print_log_entry,
                 sleep: Callable = time.sleep,
                 clock: Callable = time.monotonic):
        self.store = store
        self.analyzer = analyzer
        self.settings = settings or SchedulerSettings()
        self.turbo = bool(getattr(analyzer, "is_turbo", False)) if turbo is None else turbo
        self.policy = BackoffPolicy.from_settings(self.settings)
        self.on_update = on_update
        self.on_complete = on_complete
        self.log_sink = log_sink
        self.sleep = sleep
        self.clock = clock

        self.state = SchedulerState.IDLE
        self.failed_ids = set()
        self.logs = deque(maxlen=self.settings.log_capacity)
        self.last_activity = clock()
        self.progress = 0
        self.is_retrying = False
        self.job: Optional[BatchJob] = None

        self._stop = threading.Event()
        self._skip = threading.Event()
        self._lock = threading.Lock()
        self._generation = 0

    # ---- control ----

    def log(self, message: str, kind: str = "info"):
        entry = BatchLogEntry(time.strftime("%H:%M:%S"), message, kind)
        self.last_activity = self.clock()
        self.logs.append(entry)
        if self.log_sink:
            self.log_sink(entry)

    def stop(self):
        """Cooperative stop: takes effect before the next item or during a backoff wait."""
        self._stop.set()
        self.log("Stopping...", "warning")

    def skip(self):
        """Give up on the item currently waiting out a rate limit."""
        self._skip.set()

    def force_reset(self):
        """Drop the current run (its late results are discarded) and go back to idle."""
        with self._lock:
            self._generation += 1
            self.state = SchedulerState.IDLE
            self.is_retrying = False
            self._stop.clear()

    def pending_items(self) -> List[CatalogItem]:
        return select_pending(self.store.list())

    def start(self, items=None, quiet: bool = False) -> threading.Thread:
        """Run in a background thread."""
        t = threading.Thread(target=self.run, args=(items, quiet), daemon=True, name="batch-analysis")
        t.start()
        return t

    # ---- run loop ----

    def run(self, items=None, quiet: bool = False) -> Optional[BatchJob]:
        """
        Analyze items in order (default: every pending item in the store).

        A quiet run (watchdog restart) skips items that already failed in this
        session; a manual run retries everything and clears the failure set.
        Returns the finished job, or None if nothing was started.
        """
        candidates = list(items) if items is not None else self.pending_items()
        to_process = [i for i in candidates if i.id not in self.failed_ids] if quiet else candidates

        if not to_process:
            if not quiet:
                self.log("No new items to process (some may have failed previously).", "warning")
            return None

        if not getattr(self.analyzer, "has_api_key", True):
            self.log("ERROR: API key not found. Set it in the environment or .env file.", "error")
            return None

        with self._lock:
            if self.state is SchedulerState.RUNNING:
                self.log("A batch run is already in progress.", "warning")
                return None
            self._generation += 1
            generation = self._generation
            self.state = SchedulerState.RUNNING
            self._stop.clear()
            self._skip.clear()
            if not quiet:
                self.failed_ids.clear()

        s = self.settings
        controller = RetryController(self.policy, turbo=self.turbo,
                                     turbo_delay=s.turbo_delay, safe_delay=s.safe_delay)
        job = BatchJob(items=to_process, controller=controller, failed_ids=self.failed_ids, quiet=quiet)
        self.job = job
        self.progress = 0
        total = len(to_process)
        self.log(f"Starting sequential analysis for {total} items...", "success")

        try:
            stopped = self._process_items(job, generation)
        except KeyboardInterrupt:
            # Ctrl+C
            self._stop.set()
            self.log("Batch analysis stopped by user.", "warning")
            stopped = True

        if generation != self._generation:
            return job
        self.state = SchedulerState.STOPPED if stopped else SchedulerState.COMPLETED
        self.is_retrying = False
        self.progress = 100
        self.log("Batch analysis finished!", "success")
        if self.on_complete:
            self.on_complete(job)
        return job

    def _process_items(self, job: BatchJob, generation: int) -> bool:
        """The item loop of one run. Returns True if it was stopped."""
        s = self.settings
        controller = job.controller
        total = len(job.items)
        i = 0
        while i < total:
            self.sleep(s.item_delay)
            if generation != self._generation:
                return False
            if self._stop.is_set():
                self.log("Batch analysis stopped by user.", "warning")
                return True

            item = job.items[i]
            job.index = i
            job.attempts[item.id] = job.attempts.get(item.id, 0) + 1
            self.progress = round(i / total * 100)
            self.log(f"Analyzing [{i + 1}/{total}]: {item.display_name}...")

            try:
                analysis = self._analyze_with_timeout(item)
                if generation != self._generation:
                    return False
                self._apply_analysis(job, item, analysis)
            except Exception as err:
                if generation != self._generation:
                    return False

                if not is_rate_limit_error(err):
                    self.log(f"Error: {err}", "error")
                    self._mark_failed(job, item, str(err))
                    controller.reset()
                    i += 1
                    continue

                decision = controller.on_rate_limit()
                if decision.action is RetryAction.GIVE_UP:
                    self.log(f"Critical: too many rate limit retries ({decision.reason}). Skipping item.", "error")
                    self._mark_failed(job, item, decision.reason)
                    controller.reset()
                    i += 1
                    continue

                if decision.action is RetryAction.DOWNGRADE:
                    self.log(f"Turbo limit reached. Auto-switching to safe mode ({s.safe_delay:g}s).", "warning")
                    continue

                waited = self._wait_backoff(decision.wait, decision.retry)
                if waited == "skipped":
                    self.log("Item skipped by user.", "error")
                    self._mark_failed(job, item, "Skipped by user", result="skipped")
                    controller.reset()
                    i += 1
                elif waited == "stopped":
                    return True
                continue

            self._notify_update(item, analysis)
            controller.reset()
            i += 1
            self.sleep(controller.pacing_delay())
        return False

    def _analyze_with_timeout(self, item: CatalogItem) -> dict:
        """
        Race the analysis against the timeout. A call that loses the race is
        abandoned, not cancelled.
        """
        if not item.image:
            raise AnalysisError("No cover image attached")
        url = self.store.file_url(item)
        timeout = self.settings.analysis_timeout

        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.analyzer.analyze_url, url)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise AnalysisTimeout(f"Timeout {timeout:g}s")
        finally:
            executor.shutdown(wait=False)

    def _apply_analysis(self, job: BatchJob, item: CatalogItem, analysis: dict):
        full = analysis_to_update(analysis)
        update = protect_for_item(full, item)
        protected = len(full) - len(update)
        if protected:
            self.log(f"Protected {protected} field(s) from AI update")
        update["status"] = ItemStatus.ANALYZED.value

        try:
            self.store.update(item.id, update)
        except Exception as e:
            self.log(f"Full update rejected ({e}). Retrying with basic fields.", "warning")
            basic = protect_for_item({k: full[k] for k in BASIC_FIELDS}, item)
            basic["status"] = ItemStatus.ANALYZED.value
            self.store.update(item.id, basic)

        self.log(f"Success: {analysis.get('artist')} - {analysis.get('title')}", "success")
        job.outcomes.append(ItemOutcome(item.id, item.display_name, "success",
                                        attempts=job.attempts.get(item.id, 1)))
        self.failed_ids.discard(item.id)

    def _notify_update(self, item: CatalogItem, analysis: dict):
        """on_update after a persisted success; its failure never touches the record."""
        if not self.on_update:
            return
        try:
            self.on_update(item.id, analysis)
        except Exception as e:
            self.log(f"Update callback failed for {item.id}: {e}", "warning")

    def _mark_failed(self, job: BatchJob, item: CatalogItem, note: str, result: str = "failed"):
        job.failed_ids.add(item.id)
        job.outcomes.append(ItemOutcome(item.id, item.display_name, result, note,
                                        attempts=job.attempts.get(item.id, 1)))
        update = protect_for_item({"notes": note}, item)
        update["status"] = ItemStatus.FAILED.value
        try:
            self.store.update(item.id, update)
        except Exception as e:
            self.log(f"Could not record failure for {item.id}: {e}", "error")

    def _wait_backoff(self, wait: int, retry: int) -> str:
        """Count down one second at a time. Returns 'resume', 'skipped' or 'stopped'."""
        self.is_retrying = True
        self._skip.clear()
        if retry > 4:
            self.log(f"Rate limit persistent (retry {retry}). Daily quota likely reached. Try skip / stop.", "error")
        else:
            self.log(f"Rate limit hit (retry {retry}). Waiting {wait}s...", "warning")

        for remaining in range(wait, 0, -1):
            if self._stop.is_set() or self._skip.is_set():
                break
            if remaining % 5 == 0 or remaining <= 3:
                self.log(f"Resuming in {remaining}s...")
            self.sleep(1)

        self.is_retrying = False
        if self._skip.is_set():
            self._skip.clear()
            return "skipped"
        if self._stop.is_set():
            return "stopped"
        return "resume"


class Watchdog:
    """
    Restarts a run that is marked running but has logged nothing for
    stall_after seconds. The restart is quiet: items that already failed in
    this session are left out.
    """

    def __init__(self, scheduler: BatchScheduler, interval: float = None, stall_after: float = None,
                 restart_delay: float = None, launch: Callable = None):
        s = scheduler.settings
        self.scheduler = scheduler
        self.interval = s.watchdog_interval if interval is None else interval
        self.stall_after = s.stall_after if stall_after is None else stall_after
        self.restart_delay = s.restart_delay if restart_delay is None else restart_delay
        self.launch = launch or _launch_thread
        self._stop = threading.Event()
        self._thread = None

    def check(self) -> bool:
        """One watchdog tick. Returns True if a restart was issued."""
        sched = self.scheduler
        if sched.state is not SchedulerState.RUNNING:
            return False
        silent = sched.clock() - sched.last_activity
        if silent <= self.stall_after:
            return False
        print(f"Watchdog: batch run silent for {silent:.0f}s. Force restarting...")
        sched.log(f"System hung (no activity for {self.stall_after / 60:g}m). Force restarting...", "warning")
        sched.force_reset()
        self.launch(self._restart)
        return True

    def _restart(self):
        self.scheduler.sleep(self.restart_delay)
        self.scheduler.run(None, quiet=True)

    def start(self):
        def loop():
            while not self._stop.wait(self.interval):
                self.check()
        self._stop.clear()
        self._thread = threading.Thread(target=loop, daemon=True, name="batch-watchdog")
        self._thread.start()

    def stop(self):
        self._stop.set()


def _launch_thread(fn):
    threading.Thread(target=fn, daemon=True, name="batch-restart").start()
