from __future__ import annotations

import time
from threading import Event, Thread

from . import db
from .models import APPLICATION_KIND, Application, ReconcileOutcome
from .reconciler import Reconciler
from .runtime import Key, RuntimeState, WorkQueue
from .settings import settings
from .store import ObjectStore, WatchEvent


class Controller:
    """Schedules reconcile passes.

    Passes are triggered by store watch events (an Application changing, or
    one of the objects it controls) and by a periodic resync of every
    Application. A failed pass is retried with exponential backoff.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconciler: Reconciler | None = None,
        runtime: RuntimeState | None = None,
        workers: int | None = None,
        resync_interval_s: float | None = None,
        pass_timeout_s: float | None = None,
    ):
        self.store = store
        self.reconciler = reconciler or Reconciler(store)
        self.runtime = runtime or RuntimeState(settings.backoff_base_s, settings.backoff_max_s)
        self.queue = WorkQueue()
        self.workers = max(1, int(workers if workers is not None else settings.workers))
        self.resync_interval_s = max(0.1, float(resync_interval_s or settings.resync_interval_s))
        self.pass_timeout_s = pass_timeout_s
        self._stop = Event()
        self._threads: list[Thread] = []
        self._watching = False

    def watch(self) -> None:
        """Subscribe to store events. Idempotent."""
        if self._watching:
            return
        self.store.watch(self._on_event)
        self._watching = True

    def start(self) -> None:
        if self._threads:
            return
        if self._stop.is_set():
            # Restart after stop(): the old queue was shut down.
            self._stop.clear()
            self.queue = WorkQueue()
        self.watch()
        self.resync()
        for i in range(self.workers):
            thr = Thread(target=self._worker, name=f"appop-worker-{i}", daemon=True)
            thr.start()
            self._threads.append(thr)
        thr = Thread(target=self._resync_loop, name="appop-resync", daemon=True)
        thr.start()
        self._threads.append(thr)
        db.log_event("INFO", f"Controller started with {self.workers} workers")

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop.set()
        self.queue.shutdown()
        for thr in self._threads:
            thr.join(timeout=timeout_s)
        self._threads = []
        db.log_event("INFO", "Controller stopped")

    def enqueue(self, namespace: str, name: str) -> None:
        self.queue.add((namespace, name))

    def resync(self) -> None:
        for app in self.store.list_applications():
            self.enqueue(app.namespace, app.name)
        orphans = self.store.collect_garbage()
        if orphans:
            db.log_event("INFO", f"Garbage collected {len(orphans)} orphaned objects")

    def _on_event(self, event: WatchEvent) -> None:
        obj = event.obj
        if isinstance(obj, Application):
            self.enqueue(obj.namespace, obj.name)
            return
        link = obj.controller_link()
        if link is not None and link.kind == APPLICATION_KIND:
            self.enqueue(link.namespace, link.name)

    def process_next(self, timeout: float | None = None) -> bool:
        """Run one queued pass. Returns False if nothing was queued in time."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self._run(key)
        finally:
            self.queue.done(key)
        return True

    def drain(self, timeout: float = 0.0) -> int:
        """Process queued keys until the queue stays empty for ``timeout`` seconds."""
        n = 0
        while self.process_next(timeout):
            n += 1
        return n

    def reconcile_now(self, namespace: str, name: str) -> ReconcileOutcome:
        """Run a pass immediately in the calling thread; errors are raised."""
        return self._run((namespace, name), raise_errors=True)

    def _run(self, key: Key, raise_errors: bool = False) -> ReconcileOutcome | None:
        deadline = time.monotonic() + self.pass_timeout_s if self.pass_timeout_s else None
        with self.runtime.key_lock(key):
            try:
                outcome = self.reconciler.reconcile_once(*key, deadline=deadline)
            except Exception as e:
                failures = self.runtime.record_failure(key, e)
                delay = self.runtime.backoff(failures)
                db.log_event(
                    "WARN",
                    f"Pass failed {failures} time(s) in a row; retrying in {delay:.1f}s",
                    application=f"{key[0]}/{key[1]}",
                )
                self.queue.retry_after(key, delay)
                if raise_errors:
                    raise
                return None
            self.runtime.record_success(key, outcome)
            return outcome

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                self.process_next(timeout=0.5)
            except Exception as e:
                db.log_event("ERROR", f"Worker failed: {type(e).__name__}: {e}")

    def _resync_loop(self) -> None:
        while not self._stop.wait(self.resync_interval_s):
            try:
                self.resync()
            except Exception as e:
                db.log_event("ERROR", f"Resync failed: {type(e).__name__}: {e}")
