"""Background runner for the reconciliation sweeps.

A ticker thread puts each job on a queue when its interval has elapsed; a single
worker thread takes jobs off the queue and runs them inside the application
context, so sweeps never overlap each other.
"""
import queue
import threading
import time

from washgate.services.reconciliation import ReconciliationService

_STOP = object()


class Job:
    def __init__(self, name, func, interval):
        self.name = name
        self.func = func
        self.interval = interval
        self.next_run = 0.0


class ReconciliationScheduler:

    def __init__(self, app, tick_seconds=1.0):
        self.app = app
        self.tick_seconds = tick_seconds
        self.jobs = []
        self.tasks = queue.Queue()
        self._stopping = threading.Event()
        self._ticker = None
        self._worker = None

    @classmethod
    def for_app(cls, app):
        """Scheduler with the standard sweeps registered at the configured intervals."""
        scheduler = cls(app)
        fast = app.config['SWEEP_FAST_SECONDS']
        slow = app.config['SWEEP_SLOW_SECONDS']
        scheduler.add_job('no-shows', ReconciliationService.sweep_no_shows, fast)
        scheduler.add_job('expired-sessions', ReconciliationService.sweep_expired_sessions, fast)
        scheduler.add_job('ending-soon', ReconciliationService.sweep_ending_soon, fast)
        scheduler.add_job('expired-offers', ReconciliationService.sweep_expired_offers, slow)
        scheduler.add_job('heartbeats', ReconciliationService.sweep_heartbeats, slow)
        return scheduler

    def add_job(self, name, func, interval):
        self.jobs.append(Job(name, func, interval))

    @property
    def running(self):
        return self._worker is not None and self._worker.is_alive()

    def start(self):
        if self.running:
            return
        self._stopping.clear()
        self._ticker = threading.Thread(target=self._tick_loop, name='washgate-ticker', daemon=True)
        self._worker = threading.Thread(target=self._work_loop, name='washgate-sweeper', daemon=True)
        self._worker.start()
        self._ticker.start()
        self.app.logger.info("Reconciliation scheduler started with %s jobs", len(self.jobs))

    def stop(self, timeout=5):
        self._stopping.set()
        self.tasks.put(_STOP)
        for thread in (self._ticker, self._worker):
            if thread is not None:
                thread.join(timeout)
        self._ticker = self._worker = None
        self.app.logger.info("Reconciliation scheduler stopped")

    def enqueue_due(self, now=None):
        """Queue every job whose interval has elapsed. Returns the queued names."""
        now = time.monotonic() if now is None else now
        queued = []
        for job in self.jobs:
            if now >= job.next_run:
                job.next_run = now + job.interval
                self.tasks.put(job)
                queued.append(job.name)
        return queued

    def run_pending(self):
        """Run everything currently queued on the calling thread."""
        while True:
            try:
                job = self.tasks.get_nowait()
            except queue.Empty:
                return
            if job is not _STOP:
                self._run(job)

    def _tick_loop(self):
        while not self._stopping.is_set():
            self.enqueue_due()
            self._stopping.wait(self.tick_seconds)

    def _work_loop(self):
        while True:
            job = self.tasks.get()
            if job is _STOP:
                return
            self._run(job)

    def _run(self, job):
        with self.app.app_context():
            try:
                job.func()
            except Exception:
                self.app.logger.exception("Sweep %s failed", job.name)
