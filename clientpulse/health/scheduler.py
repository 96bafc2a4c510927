"""
ClientPulse - Health Score Scheduling

Two job kinds:
- FullRecompute: sweep every client on a repeating interval
- SingleRecompute: one client, on demand (e.g. after a simulated outage)

Registering the repeating FullRecompute always replaces whatever was
registered before, so restarting a process never leaves two overlapping
periodic schedules.

Implementations:
- IntervalScheduler: in-process timer thread
- RQScheduler: Redis queue; a worker started with_scheduler=True runs the jobs
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional, Dict, List, Tuple

from redis import Redis
from rq import Queue, get_current_job
from rq.exceptions import NoSuchJobError

from .service import HealthScoreService, SweepResult, build_health_service
from .transaction import HealthScoreUpdate

logger = logging.getLogger(__name__)

FULL_RECOMPUTE_JOB = 'health-score:full-recompute'
SINGLE_RECOMPUTE_JOB = 'health-score:single-recompute'

# Redis key holding the token of the live FullRecompute schedule
SCHEDULE_TOKEN_KEY = 'health-score:schedule-token'

SWEEP_JOB_TIMEOUT = 3600
SINGLE_JOB_TIMEOUT = 120


class SchedulingPort(ABC):
    """Where the pipeline's repeating and on-demand triggers come from"""

    @abstractmethod
    def register_full_recompute(self, interval_seconds: int):
        """(Re)register the repeating sweep, replacing any earlier registration."""

    @abstractmethod
    def trigger_single_recompute(self, client_id: str):
        pass

    @abstractmethod
    def trigger_full_recompute(self):
        pass

    @abstractmethod
    def active_triggers(self) -> List[str]:
        """Identifiers of the repeating triggers currently registered."""

    @abstractmethod
    def shutdown(self) -> None:
        pass


# =============================================================================
# In-process scheduler
# =============================================================================

class IntervalScheduler(SchedulingPort):
    """
    Runs the sweep on a daemon thread every interval_seconds.

    On-demand triggers run synchronously in the caller's thread and return
    the result; SingleRecompute errors propagate.
    """

    def __init__(self, service: HealthScoreService, run_immediately: bool = False):
        self.service = service
        self.run_immediately = run_immediately
        self.last_result: Optional[SweepResult] = None
        self._triggers: Dict[str, Tuple[threading.Thread, threading.Event]] = {}
        self._lock = threading.Lock()

    def register_full_recompute(self, interval_seconds: int) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        with self._lock:
            self._cancel(FULL_RECOMPUTE_JOB)

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(interval_seconds, stop_event),
                name=FULL_RECOMPUTE_JOB,
                daemon=True,
            )
            self._triggers[FULL_RECOMPUTE_JOB] = (thread, stop_event)
            thread.start()

        logger.info(f"Registered {FULL_RECOMPUTE_JOB} every {interval_seconds}s")

    def trigger_single_recompute(self, client_id: str) -> HealthScoreUpdate:
        return self.service.recompute(client_id)

    def trigger_full_recompute(self) -> SweepResult:
        self.last_result = self.service.recompute_all()
        return self.last_result

    def active_triggers(self) -> List[str]:
        with self._lock:
            return [
                name for name, (thread, stop_event) in self._triggers.items()
                if thread.is_alive() and not stop_event.is_set()
            ]

    def shutdown(self) -> None:
        with self._lock:
            for name in list(self._triggers):
                self._cancel(name)
        logger.info("Interval scheduler stopped")

    def _cancel(self, name: str) -> None:
        # Caller holds self._lock
        trigger = self._triggers.pop(name, None)
        if trigger is None:
            return

        thread, stop_event = trigger
        stop_event.set()
        if thread is not threading.current_thread():
            # A running sweep stops before its next client
            thread.join()
        logger.info(f"Cancelled previous {name} trigger")

    def _run_loop(self, interval_seconds: int, stop_event: threading.Event) -> None:
        if self.run_immediately:
            self._sweep(stop_event)
        while not stop_event.wait(interval_seconds):
            self._sweep(stop_event)

    def _sweep(self, stop_event: threading.Event) -> None:
        try:
            self.last_result = self.service.recompute_all(stop_event=stop_event)
        except Exception as e:
            # e.g. the client list itself could not be read; next tick retries
            logger.error(f"Health score sweep failed: {e}")


# =============================================================================
# RQ scheduler
# =============================================================================

class RQScheduler(SchedulingPort):
    """
    Schedules sweeps as delayed rq jobs. Each sweep job re-enqueues the next
    one, carrying the schedule token it was registered with; a job whose
    token is no longer the live one does nothing.
    """

    def __init__(self, redis_conn: Redis, queue_name: str = 'health-scores',
                 queue: Optional[Queue] = None):
        self.redis = redis_conn
        self.queue = queue or Queue(queue_name, connection=redis_conn)

    def register_full_recompute(self, interval_seconds: int):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        token = uuid.uuid4().hex
        self.redis.set(SCHEDULE_TOKEN_KEY, token)
        removed = self._clear_scheduled()
        if removed:
            logger.info(f"Removed {removed} previously scheduled {FULL_RECOMPUTE_JOB} job(s)")

        job = schedule_next_sweep(self.queue, token, interval_seconds)
        logger.info(f"Registered {FULL_RECOMPUTE_JOB} every {interval_seconds}s (job {job.id})")
        return job

    def trigger_single_recompute(self, client_id: str):
        return self.queue.enqueue(
            run_single_recompute_job,
            client_id,
            job_id=f"{SINGLE_RECOMPUTE_JOB}:{client_id}:{uuid.uuid4().hex[:8]}",
            job_timeout=SINGLE_JOB_TIMEOUT,
        )

    def trigger_full_recompute(self):
        # One-off sweep: no token, so it does not reschedule itself
        return self.queue.enqueue(
            run_full_recompute_job,
            job_id=f"{FULL_RECOMPUTE_JOB}:manual:{uuid.uuid4().hex[:8]}",
            job_timeout=SWEEP_JOB_TIMEOUT,
        )

    def active_triggers(self) -> List[str]:
        registry = self.queue.scheduled_job_registry
        return [
            job_id for job_id in registry.get_job_ids()
            if job_id.startswith(FULL_RECOMPUTE_JOB)
        ]

    def shutdown(self) -> None:
        self.redis.delete(SCHEDULE_TOKEN_KEY)
        self._clear_scheduled()
        logger.info(f"Cancelled {FULL_RECOMPUTE_JOB} schedule")

    def _clear_scheduled(self) -> int:
        registry = self.queue.scheduled_job_registry
        removed = 0
        for job_id in self.active_triggers():
            try:
                registry.remove(job_id, delete_job=True)
            except NoSuchJobError:
                # Entry is dropped before the job hash is fetched
                pass
            removed += 1
        return removed


def schedule_next_sweep(queue: Queue, token: str, interval_seconds: int):
    """Enqueue the next repeating sweep interval_seconds from now."""
    return queue.enqueue_in(
        timedelta(seconds=interval_seconds),
        run_full_recompute_job,
        token,
        interval_seconds,
        job_id=f"{FULL_RECOMPUTE_JOB}:{uuid.uuid4().hex}",
        job_timeout=SWEEP_JOB_TIMEOUT,
    )


def _token_is_live(redis_conn, token: str) -> bool:
    live = redis_conn.get(SCHEDULE_TOKEN_KEY)
    if isinstance(live, bytes):
        live = live.decode()
    return live == token


# =============================================================================
# RQ job functions (run inside the worker process)
# =============================================================================

def run_full_recompute_job(token: Optional[str] = None,
                           interval_seconds: Optional[int] = None) -> dict:
    """Sweep every client; repeating sweeps then schedule their successor."""
    job = get_current_job()

    if token is not None and not _token_is_live(job.connection, token):
        logger.info(f"Skipping stale {FULL_RECOMPUTE_JOB} job {job.id}")
        return {'skipped': True}

    try:
        result = build_health_service().recompute_all()
        if result.failures:
            logger.warning(f"{len(result.failures)} client(s) failed and will be retried next sweep")
        return result.to_dict()
    finally:
        # Re-check: the schedule may have been replaced during the sweep
        if token is not None and interval_seconds and _token_is_live(job.connection, token):
            queue = Queue(job.origin, connection=job.connection)
            schedule_next_sweep(queue, token, interval_seconds)


def run_single_recompute_job(client_id: str) -> dict:
    """Recompute one client. Failures are not retried."""
    return build_health_service().recompute(client_id).to_dict()


def get_scheduler(app_config, service: Optional[HealthScoreService] = None) -> SchedulingPort:
    """Build the scheduler selected by SCHEDULER_BACKEND."""
    if app_config.SCHEDULER_BACKEND == 'rq':
        redis_conn = Redis.from_url(app_config.REDIS_URL)
        return RQScheduler(redis_conn, app_config.HEALTH_SCORE_QUEUE)
    return IntervalScheduler(service or build_health_service(app_config))
