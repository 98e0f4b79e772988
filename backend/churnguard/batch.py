"""
batch.py
========
Entry point for the periodic trigger run.

One call = one pass over every active trigger. Triggers are spread over a
small thread pool (each worker owns its own DB session) so external calls
stay under third-party rate limits. A failing trigger is logged and counted
as an error; it never stops the rest of the batch. Only failing to read the
trigger list at all propagates to the caller.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .config import settings
from .log import get_logger
from .processor import ProcessResult, TriggerProcessor
from .repository import TriggerRepository

logger = get_logger(__name__)


@dataclass
class BatchResult:
    total: int = 0        # active triggers found
    processed: int = 0    # triggers that finished without a processor-level error
    matches: int = 0      # matched customers (send attempts)
    errors: int = 0       # failed sends + failed triggers
    duration_ms: int = 0

    def to_response(self) -> dict:
        """JSON body returned to the scheduler that invokes the batch."""
        if self.total == 0:
            return {
                "success": True,
                "message": "No active triggers to process",
                "processed": 0,
            }
        return {
            "success": True,
            "message": f"Processed {self.processed} triggers",
            "processed": self.processed,
            "total": self.total,
            "duration_ms": self.duration_ms,
        }


class BatchRunner:
    def __init__(
        self,
        session_factory: Callable,
        sender,
        *,
        max_workers: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        send_workers: Optional[int] = None,
        send_timeout: Optional[float] = None,
        lease_seconds: Optional[float] = None,
        log=None,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.max_workers = max(1, min(5, max_workers or settings.batch_max_workers))
        self.clock = clock
        self.send_workers = send_workers
        self.send_timeout = send_timeout
        self.lease_seconds = lease_seconds
        self.log = log or logger

    def run(self) -> BatchResult:
        started = time.monotonic()
        self.log.info("trigger_batch_started")

        with self.session_factory() as db:
            trigger_ids = [t.id for t in TriggerRepository(db).list_active_triggers()]

        result = BatchResult(total=len(trigger_ids))
        if not trigger_ids:
            self.log.info("no_active_triggers")
            return result

        self.log.info("active_triggers_found", count=len(trigger_ids), workers=self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="trigger") as pool:
            futures = {pool.submit(self._run_trigger, trigger_id): trigger_id for trigger_id in trigger_ids}
            for future in as_completed(futures):
                trigger_id = futures[future]
                try:
                    outcome: ProcessResult = future.result()
                except Exception as e:
                    result.errors += 1
                    self.log.error("trigger_failed", trigger_id=trigger_id, error=str(e), exc_info=True)
                    continue
                result.processed += 1
                result.matches += outcome.attempted
                result.errors += outcome.failed

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            "trigger_batch_completed",
            processed=result.processed,
            total=result.total,
            matches=result.matches,
            errors=result.errors,
            duration_ms=result.duration_ms,
        )
        return result

    def _run_trigger(self, trigger_id: int) -> ProcessResult:
        with self.session_factory() as db:
            repository = TriggerRepository(db)
            trigger = repository.get_trigger(trigger_id)
            if trigger is None or not trigger.is_active:
                return ProcessResult()
            processor = TriggerProcessor(
                repository,
                self.sender,
                clock=self.clock,
                send_workers=self.send_workers,
                send_timeout=self.send_timeout,
                lease_seconds=self.lease_seconds,
                log=self.log,
            )
            return processor.process(trigger)
