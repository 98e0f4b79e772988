"""
processor.py
============
Run one trigger against its owner's customers.

process(trigger)
  1. due check against the execution log; not due -> zero counts, no side effects
  2. claim the trigger lease (another worker holding it -> zero counts)
  3. load the owner's snapshots; none -> zero counts, nothing logged
  4. deliver(): evaluate every customer, render + send for matches, log each attempt

Per-customer failures (send errors, timeouts, log-write errors) are recorded
and counted, never raised. Only an unreadable snapshot set or an unusable
trigger (no template) escapes as an exception.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .errors import TriggerConfigError
from .log import get_logger
from .repository import TriggerRepository
from .rules import evaluate_all
from .schedule import is_due
from .templating import render

logger = get_logger(__name__)


@dataclass
class ProcessResult:
    attempted: int = 0
    sent: int = 0
    failed: int = 0

    def __add__(self, other: "ProcessResult") -> "ProcessResult":
        return ProcessResult(
            attempted=self.attempted + other.attempted,
            sent=self.sent + other.sent,
            failed=self.failed + other.failed,
        )


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


class _SendJob:
    """One customer's send on its own daemon thread; `done` is set once it returns or raises."""

    def __init__(self, snapshot, email: RenderedEmail, wake: threading.Event):
        self.snapshot = snapshot
        self.customer_email = snapshot.customer_email
        self.email = email
        self.wake = wake
        self.done = threading.Event()
        self.started_at: Optional[float] = None
        self.timed_out = False
        self.email_id: Optional[str] = None
        self.error: Optional[str] = None

    def start(self, sender, *, template_name: str, trigger_name: str, thread_name: str) -> None:
        self.started_at = time.monotonic()
        threading.Thread(
            target=self._run,
            args=(sender, template_name, trigger_name),
            name=thread_name,
            daemon=True,
        ).start()

    def _run(self, sender, template_name: str, trigger_name: str) -> None:
        try:
            self.email_id = sender.send(
                self.customer_email,
                self.email.subject,
                self.email.html,
                self.email.text,
                template_name=template_name,
                trigger_name=trigger_name,
            )
        except Exception as e:
            self.error = str(e) or e.__class__.__name__
        finally:
            self.done.set()
            self.wake.set()


class TriggerProcessor:
    def __init__(
        self,
        repository: TriggerRepository,
        sender,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
        send_workers: Optional[int] = None,
        send_timeout: Optional[float] = None,
        lease_seconds: Optional[float] = None,
        log=None,
    ):
        self.repository = repository
        self.sender = sender
        self.clock = clock
        self.send_workers = send_workers or settings.send_max_workers
        self.send_timeout = send_timeout if send_timeout is not None else settings.send_timeout_seconds
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.lease_seconds
        self.log = log or logger

    # ---------- periodic path ----------

    def process(self, trigger) -> ProcessResult:
        log = self.log.bind(trigger_id=trigger.id, trigger_name=trigger.name)
        now = self.clock()

        if not is_due(trigger, self.repository.last_executed_at(trigger.id), now, log=log):
            log.info("trigger_not_due", frequency_type=trigger.frequency_type)
            return ProcessResult()

        token = uuid4().hex
        if not self.repository.claim(trigger.id, token, now, self.lease_seconds):
            log.info("trigger_lease_held")
            return ProcessResult()

        try:
            # another worker may have finished a run between the first check and the claim
            if not is_due(trigger, self.repository.last_executed_at(trigger.id), now, log=log):
                log.info("trigger_not_due_after_claim")
                return ProcessResult()

            snapshots = self.repository.list_snapshots(trigger.user_id)
            if not snapshots:
                log.info("no_usage_analytics", user_id=trigger.user_id)
                return ProcessResult()

            log.info("evaluating_customers", customers=len(snapshots))
            return self.deliver(trigger, snapshots, now=now, log=log)
        finally:
            self.repository.release(trigger.id, token)

    # ---------- shared match/render/send/log path ----------

    def deliver(self, trigger, snapshots: Sequence, *, now: Optional[datetime] = None, log=None) -> ProcessResult:
        log = log or self.log.bind(trigger_id=trigger.id, trigger_name=trigger.name)
        now = now or self.clock()

        template = trigger.template
        if template is None:
            raise TriggerConfigError(trigger.id, "email template is missing")

        conditions = list(trigger.conditions)
        matched = [s for s in snapshots if evaluate_all(conditions, s, now=now, log=log)]
        if not matched:
            log.info("no_customers_matched", evaluated=len(snapshots))
            return ProcessResult()

        outcomes = self._send_all(trigger, template, matched, log)

        result = ProcessResult()
        for snapshot, email, email_id, error in outcomes:
            result.attempted += 1
            if error is None:
                result.sent += 1
            else:
                result.failed += 1
                log.warning("email_send_failed", customer_email=snapshot.customer_email, error=error)
            self._record(trigger, template, conditions, snapshot, email, email_id, error, log)

        log.info("trigger_delivered", attempted=result.attempted, sent=result.sent, failed=result.failed)
        return result

    def render_email(self, template, snapshot) -> RenderedEmail:
        return RenderedEmail(
            subject=render(template.subject, snapshot),
            html=render(template.body_html, snapshot),
            text=render(template.body_text or "", snapshot),
        )

    def _send_all(self, trigger, template, matched: Sequence, log) -> List[Tuple]:
        """
        Run sends with at most `send_workers` in flight and settle every one of them.

        Each send's deadline counts from the moment it starts, so a customer
        waiting behind a slow send is never timed out before it ran. A send
        past its deadline gives its slot to the next customer.

        Returns (snapshot, email, email_id, error) per matched customer, in input order.
        """
        wake = threading.Event()
        jobs = [_SendJob(snapshot, self.render_email(template, snapshot), wake) for snapshot in matched]
        waiting = deque(jobs)
        in_flight: List[_SendJob] = []

        while waiting or in_flight:
            wake.clear()
            while waiting and len(in_flight) < self.send_workers:
                job = waiting.popleft()
                job.start(self.sender, template_name=template.name, trigger_name=trigger.name,
                          thread_name=f"send-{trigger.id}")
                in_flight.append(job)

            now = time.monotonic()
            for job in list(in_flight):
                if job.done.is_set():
                    in_flight.remove(job)
                elif now - job.started_at >= self.send_timeout:
                    # the thread is abandoned, not stopped; a late delivery is still logged as a timeout
                    job.timed_out = True
                    in_flight.remove(job)
                    log.warning("email_send_abandoned", customer_email=job.customer_email,
                                timeout=self.send_timeout)

            if in_flight:
                next_deadline = min(job.started_at for job in in_flight) + self.send_timeout
                wake.wait(timeout=max(0.0, next_deadline - time.monotonic()))

        outcomes = []
        for job in jobs:
            if job.timed_out:
                outcomes.append((job.snapshot, job.email, None, f"Email send timed out after {self.send_timeout}s"))
            else:
                outcomes.append((job.snapshot, job.email, job.email_id, job.error))
        return outcomes

    def _record(self, trigger, template, conditions, snapshot, email, email_id, error, log) -> None:
        execution_data = {
            "conditions_evaluated": len(conditions),
            "analytics_used": {
                "engagement_score": snapshot.engagement_score,
                "active_days": snapshot.active_days,
                "total_events": snapshot.total_events,
                "last_seen": snapshot.last_seen.isoformat() if snapshot.last_seen else None,
            },
            "email_template": template.name,
            "subject": email.subject,
            "email_id": email_id,
        }
        try:
            self.repository.append_execution(
                trigger_id=trigger.id,
                customer_email=snapshot.customer_email,
                email_sent=error is None,
                error_message=error,
                execution_data=execution_data,
                executed_at=self.clock(),
            )
        except SQLAlchemyError:
            log.exception("execution_log_failed", customer_email=snapshot.customer_email)
