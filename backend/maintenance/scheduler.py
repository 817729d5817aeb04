"""Cron scheduling of rule scans and the scan trigger path.

One scheduler thread per process holds a min-heap of
(next_fire, seq, rule_id). Re-registering a rule pushes a new entry with a
fresh seq; the old heap entry is dropped when it surfaces because its seq
no longer matches the registry. Scheduled fires and manual triggers both
go through trigger_scan(), which creates the PENDING scan row and its job
in one transaction under a process-wide lock.
"""

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from flask import current_app

from db.repositories.rules import RuleRepository
from db.repositories.scans import ScanRepository
from error_handler import (
    NotFoundError,
    PrunarrError,
    RuleDisabledError,
    RuleValidationError,
    ScanInProgressError,
)
from job_queue import PRIORITY_DEFAULT, PRIORITY_MANUAL
from maintenance import SCAN_JOB

logger = logging.getLogger(__name__)

# Upper bound on a single wait so clock jumps are noticed
MAX_SLEEP_SECONDS = 60

_scheduler = None
_scheduler_lock = threading.Lock()


def parse_schedule(expression: str, timezone=None) -> CronTrigger:
    """Build a trigger from a 5-field crontab expression.

    Raises:
        RuleValidationError: if the expression is not valid.
    """
    if not isinstance(expression, str) or len(expression.split()) != 5:
        raise RuleValidationError(
            "schedule must be a 5-field cron expression",
            errors=[{"loc": "schedule", "message": f"invalid cron expression {expression!r}"}],
        )
    try:
        return CronTrigger.from_crontab(expression.strip(), timezone=timezone)
    except ValueError as exc:
        raise RuleValidationError(
            "schedule must be a 5-field cron expression",
            errors=[{"loc": "schedule", "message": str(exc)}],
        ) from exc


@dataclass
class _Entry:
    schedule: str
    trigger: CronTrigger
    seq: int
    next_fire: datetime | None


class ScanScheduler:
    """Fires scan triggers for rules with a cron schedule."""

    def __init__(self, app=None, queue=None, timezone: str = "UTC"):
        self._app = app
        self._queue = queue
        self._tz = ZoneInfo(timezone)
        self._entries: dict[int, _Entry] = {}
        self._heap: list[tuple[datetime, int, int]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._trigger_lock = threading.Lock()
        self._thread = None
        self._running = False

    @property
    def queue(self):
        return self._queue or current_app.job_queue

    @property
    def running(self) -> bool:
        return self._running

    def now(self) -> datetime:
        return datetime.now(self._tz)

    # ---- Registry ----------------------------------------------------------

    def register(self, rule_id: int, schedule: str) -> datetime | None:
        """Register or update a rule's schedule. Same schedule again is a no-op.

        Returns:
            The next fire time.
        """
        with self._cond:
            entry = self._entries.get(rule_id)
            if entry is not None and entry.schedule == schedule:
                return entry.next_fire

            trigger = parse_schedule(schedule, self._tz)
            next_fire = trigger.get_next_fire_time(None, self.now())
            seq = next(self._seq)
            self._entries[rule_id] = _Entry(schedule, trigger, seq, next_fire)
            if next_fire is not None:
                heapq.heappush(self._heap, (next_fire, seq, rule_id))
            self._cond.notify_all()

        logger.info("Rule %d scheduled '%s', next run %s", rule_id, schedule,
                    next_fire.isoformat() if next_fire else "never")
        return next_fire

    def unregister(self, rule_id: int) -> bool:
        with self._cond:
            removed = self._entries.pop(rule_id, None) is not None
            if removed:
                self._cond.notify_all()
        if removed:
            logger.info("Rule %d unscheduled", rule_id)
        return removed

    def is_registered(self, rule_id: int) -> bool:
        with self._cond:
            return rule_id in self._entries

    def sync_rule(self, rule: dict) -> datetime | None:
        """Bring the registry in line with a rule's enabled flag and schedule."""
        rules = RuleRepository()
        if rule.get("enabled") and rule.get("schedule"):
            next_fire = self.register(rule["id"], rule["schedule"])
            rules.set_run_times(rule["id"],
                                next_run_at=next_fire.isoformat() if next_fire else None,
                                clear_next=next_fire is None)
            return next_fire
        self.unregister(rule["id"])
        rules.set_run_times(rule["id"], clear_next=True)
        return None

    def sync_all(self) -> int:
        """Register every enabled scheduled rule and drop everything else."""
        rules = RuleRepository().get_rules()
        known = {rule["id"] for rule in rules}
        with self._cond:
            stale = [rule_id for rule_id in self._entries if rule_id not in known]
        for rule_id in stale:
            self.unregister(rule_id)
        count = 0
        for rule in rules:
            if self.sync_rule(rule) is not None:
                count += 1
        logger.info("Scan scheduler synced: %d scheduled rule(s)", count)
        return count

    def get_active_schedules(self) -> list[dict]:
        with self._cond:
            entries = sorted(
                self._entries.items(),
                key=lambda kv: (kv[1].next_fire is None, kv[1].next_fire or self.now()),
            )
            return [
                {
                    "rule_id": rule_id,
                    "schedule": entry.schedule,
                    "next_run_at": entry.next_fire.isoformat() if entry.next_fire else None,
                }
                for rule_id, entry in entries
            ]

    # ---- Firing ------------------------------------------------------------

    def _pop_due(self, now: datetime) -> list[tuple[int, datetime | None]]:
        due = []
        with self._cond:
            while self._heap and self._heap[0][0] <= now:
                fire_at, seq, rule_id = heapq.heappop(self._heap)
                entry = self._entries.get(rule_id)
                if entry is None or entry.seq != seq:
                    continue
                # Skip fire times missed while the process was busy or asleep
                start = max(now, fire_at) + timedelta(microseconds=1)
                entry.next_fire = entry.trigger.get_next_fire_time(None, start)
                entry.seq = next(self._seq)
                if entry.next_fire is not None:
                    heapq.heappush(self._heap, (entry.next_fire, entry.seq, rule_id))
                due.append((rule_id, entry.next_fire))
        return due

    def run_due(self, now: datetime = None) -> list[int]:
        """Fire every rule whose next run time has passed. Needs an app context.

        Returns:
            Ids of rules for which a scan was enqueued.
        """
        fired = []
        for rule_id, next_fire in self._pop_due(now or self.now()):
            RuleRepository().set_run_times(
                rule_id, next_run_at=next_fire.isoformat() if next_fire else None,
                clear_next=next_fire is None,
            )
            try:
                self.trigger_scan(rule_id, manual=False)
            except (NotFoundError, RuleDisabledError, ScanInProgressError) as exc:
                logger.info("Skipping scheduled scan for rule %d: %s", rule_id, exc)
            else:
                fired.append(rule_id)
        return fired

    def trigger_scan(self, rule_id: int, manual: bool = True) -> dict:
        """Create a PENDING scan and its job.

        Raises:
            NotFoundError: the rule does not exist.
            RuleDisabledError: the rule is disabled.
            ScanInProgressError: the rule already has a PENDING or RUNNING scan.
        """
        with self._trigger_lock:
            rule = RuleRepository().get_rule(rule_id)
            if rule is None:
                raise NotFoundError(f"Rule {rule_id} not found", context={"rule_id": rule_id})
            if not rule["enabled"]:
                raise RuleDisabledError(context={"rule_id": rule_id})

            scans = ScanRepository()
            active = scans.get_active_scan(rule_id)
            if active is not None:
                raise ScanInProgressError(context={"rule_id": rule_id, "scan_id": active["id"],
                                                   "status": active["status"]})

            with scans.batch():
                scan = scans.create_scan(rule_id, manual_trigger=manual)
                job_id = self.queue.enqueue(
                    SCAN_JOB,
                    {"rule_id": rule_id, "scan_id": scan["id"], "manual_trigger": manual},
                    priority=PRIORITY_MANUAL if manual else PRIORITY_DEFAULT,
                )

        logger.info("%s scan %d queued for rule '%s' (job %s)",
                    "Manual" if manual else "Scheduled", scan["id"], rule["name"], job_id)
        return {
            "scan_id": scan["id"],
            "job_id": job_id,
            "rule_id": rule_id,
            "manual_trigger": manual,
            "status": scan["status"],
        }

    # ---- Thread ------------------------------------------------------------

    def start(self) -> None:
        if self._app is None:
            raise RuntimeError("ScanScheduler.start() needs the Flask app")
        with self._cond:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._loop, name="prunarr-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scan scheduler started (%d rule(s), tz=%s)", len(self._entries), self._tz)

    def stop(self) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Scan scheduler stopped")

    def _seconds_until_next(self) -> float:
        while self._heap:
            fire_at, seq, rule_id = self._heap[0]
            entry = self._entries.get(rule_id)
            if entry is None or entry.seq != seq:
                heapq.heappop(self._heap)
                continue
            return max(0.0, (fire_at - self.now()).total_seconds())
        return MAX_SLEEP_SECONDS

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
                delay = self._seconds_until_next()
                if delay > 0:
                    self._cond.wait(min(delay, MAX_SLEEP_SECONDS))
                    continue
            with self._app.app_context():
                try:
                    self.run_due()
                except PrunarrError as exc:
                    logger.error("Scheduled scan trigger failed: %s", exc)
                except Exception:
                    logger.exception("Scan scheduler error")


def init_scan_scheduler(app, queue=None, timezone: str = "UTC") -> ScanScheduler:
    """Create the process-wide scheduler (not started)."""
    global _scheduler
    with _scheduler_lock:
        if _scheduler is not None:
            _scheduler.stop()
        _scheduler = ScanScheduler(app=app, queue=queue, timezone=timezone)
        return _scheduler


def get_scan_scheduler() -> ScanScheduler:
    global _scheduler
    with _scheduler_lock:
        if _scheduler is None:
            from config import get_settings

            _scheduler = ScanScheduler(timezone=get_settings().scheduler_timezone)
        return _scheduler


def start_scan_scheduler(app) -> None:
    """Register all scheduled rules and start the scheduler thread."""
    scheduler = get_scan_scheduler()
    with app.app_context():
        scheduler.sync_all()
    scheduler.start()


def stop_scan_scheduler() -> None:
    global _scheduler
    with _scheduler_lock:
        if _scheduler is not None:
            _scheduler.stop()
            _scheduler = None


def trigger_scan(rule_id: int, manual: bool = True) -> dict:
    return get_scan_scheduler().trigger_scan(rule_id, manual=manual)
