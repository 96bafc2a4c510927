"""
ClientPulse - Health Score Service

Entry points used by the scheduler, the worker and the API:
- recompute(client_id): score one client and persist it
- recompute_all(): sweep the whole fleet, isolating per-client failures
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from .engine import HealthScoreEngine
from .transaction import ScoreUpdateTransaction, HealthScoreUpdate

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one full-fleet recompute"""
    updated: int = 0
    total: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    interrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'updated': self.updated, 'total': self.total}


class HealthScoreService:

    def __init__(self, engine: HealthScoreEngine, transaction: ScoreUpdateTransaction,
                 max_workers: int = 1):
        self.engine = engine
        self.transaction = transaction
        self.max_workers = max(1, max_workers)

    @classmethod
    def from_store(cls, store, cache=None, max_workers: int = 1) -> 'HealthScoreService':
        """Wire a service around one store that implements all three interfaces."""
        return cls(
            engine=HealthScoreEngine(store, store, store),
            transaction=ScoreUpdateTransaction(store, cache),
            max_workers=max_workers,
        )

    def recompute(self, client_id: str, as_of: Optional[datetime] = None) -> HealthScoreUpdate:
        """
        Recompute and persist one client's score.

        Errors (ClientNotFound, TransientStoreError) propagate to the caller.
        """
        new_score = self.engine.compute_score(client_id, as_of)
        return self.transaction.apply_score(client_id, new_score)

    def recompute_all(self, as_of: Optional[datetime] = None,
                      stop_event: Optional[threading.Event] = None) -> SweepResult:
        """
        Recompute every client. A failing client is logged and skipped.

        If stop_event is set the sweep stops before the next client; updates
        already applied stay committed.
        """
        client_ids = self.engine.client_store.list_client_ids()
        result = SweepResult(total=len(client_ids))
        logger.info(f"Starting health score sweep for {result.total} clients")

        if self.max_workers == 1:
            for client_id in client_ids:
                if stop_event is not None and stop_event.is_set():
                    result.interrupted = True
                    break
                self._record(result, client_id, self._recompute_isolated(client_id, as_of, stop_event))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers,
                                    thread_name_prefix='health-score') as pool:
                outcomes = pool.map(
                    lambda cid: (cid, self._recompute_isolated(cid, as_of, stop_event)),
                    client_ids,
                )
                for client_id, outcome in outcomes:
                    self._record(result, client_id, outcome)
            if stop_event is not None and stop_event.is_set():
                result.interrupted = True

        logger.info(f"Health score sweep finished: {result.updated}/{result.total} updated"
                    f"{', interrupted' if result.interrupted else ''}")
        return result

    def _recompute_isolated(self, client_id: str, as_of: Optional[datetime],
                            stop_event: Optional[threading.Event]):
        if stop_event is not None and stop_event.is_set():
            return None
        try:
            update = self.recompute(client_id, as_of)
        except Exception as e:
            logger.error(f"Error updating health score for client {client_id}: {e}")
            return e
        logger.info(f"  {client_id}: {update.previous_score} -> {update.new_score}")
        return update

    @staticmethod
    def _record(result: SweepResult, client_id: str, outcome) -> None:
        if isinstance(outcome, HealthScoreUpdate):
            result.updated += 1
        elif isinstance(outcome, Exception):
            result.failures[client_id] = str(outcome)


def build_health_service(app_config=None, store=None, cache=None) -> HealthScoreService:
    """Wire the service from configuration (store backend, cache, fan-out)."""
    from ..cache import get_cache
    from ..config import get_config
    from ..models import get_store

    if app_config is None:
        app_config = get_config()
    if store is None:
        store = get_store(app_config)
    if cache is None:
        cache = get_cache(app_config)
    return HealthScoreService.from_store(store, cache, max_workers=app_config.HEALTH_SCORE_WORKERS)
