"""
Job Scheduler - periodic batch jobs plus manual and emergency runs

Jobs fire at fixed local times in settings.TIMEZONE. Database work runs in a
worker thread with its own session, so a long batch never blocks the event
loop. Each job is guarded by an in-flight lock: a trigger that fires while
the previous run is still going is skipped and logged. The emergency sweep
shares the daily overdue check's lock, and a run that hits its deadline keeps
the lock until its worker thread has seen the cancellation and returned.
"""
import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from condohub.core.clock import Clock, SystemClock, to_naive
from condohub.core.config import Settings, settings as default_settings
from condohub.core.database import SessionLocal, session_scope, unit_of_work
from condohub.models import FinancialTransaction, TransactionStatus
from condohub.services.audit_service import AuditService
from condohub.services.auto_billing_service import AutoBillingService
from condohub.services.late_fee_service import LateFeeService, BatchItemError
from condohub.services.maintenance_financial_service import MaintenanceFinancialService

logger = logging.getLogger(__name__)

SUNDAY = 6


# ==================== TRIGGERS ====================

@dataclass(frozen=True)
class DailyAt:
    hour: int
    minute: int = 0

    def next_fire(self, after: datetime) -> datetime:
        candidate = datetime.combine(after.date(), time(self.hour, self.minute), tzinfo=after.tzinfo)
        if candidate <= after:
            candidate = datetime.combine(after.date() + timedelta(days=1), time(self.hour, self.minute),
                                         tzinfo=after.tzinfo)
        return candidate

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class WeeklyAt:
    weekday: int  # Monday == 0
    hour: int
    minute: int = 0

    def next_fire(self, after: datetime) -> datetime:
        days_ahead = (self.weekday - after.weekday()) % 7
        day = after.date() + timedelta(days=days_ahead)
        candidate = datetime.combine(day, time(self.hour, self.minute), tzinfo=after.tzinfo)
        if candidate <= after:
            candidate = datetime.combine(day + timedelta(days=7), time(self.hour, self.minute),
                                         tzinfo=after.tzinfo)
        return candidate

    def describe(self) -> str:
        return f"weekly on day {self.weekday} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class Every:
    hours: int = 0
    minutes: int = 0

    def next_fire(self, after: datetime) -> datetime:
        return after + timedelta(hours=self.hours, minutes=self.minutes)

    def describe(self) -> str:
        return f"every {self.hours}h{self.minutes:02d}m"


Trigger = Union[DailyAt, WeeklyAt, Every]


def seconds_until(fire_at: datetime, now: datetime) -> float:
    """Real seconds between two aware datetimes, across UTC offset changes"""
    delta = fire_at.astimezone(timezone.utc) - now.astimezone(timezone.utc)
    return max(delta.total_seconds(), 0.0)


# ==================== REGISTRY ====================

class CancellationToken:
    """Checked between items by long batches; safe to set from any thread"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


JobFunc = Callable[..., Union[Dict, Awaitable[Dict]]]


@dataclass
class ScheduledJob:
    name: str
    trigger: Optional[Trigger]  # None: manual runs only
    func: JobFunc
    description: str = ""
    lock: Optional[str] = None  # jobs sharing a lock never run together

    @property
    def lock_key(self) -> str:
        return self.lock or self.name


@dataclass
class JobState:
    job: ScheduledJob
    running: bool = False
    runs: int = 0
    skipped: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_result: Optional[Dict] = None
    last_error: Optional[str] = None
    next_run_at: Optional[datetime] = None
    token: Optional[CancellationToken] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.job.name,
            "description": self.job.description,
            "schedule": self.job.trigger.describe() if self.job.trigger else "manual",
            "running": self.running,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "next_run_at": self.next_run_at,
        }


class JobRegistry:
    """Named jobs and their run state, owned by one Scheduler"""

    def __init__(self):
        self._states: Dict[str, JobState] = {}
        self._held: Dict[str, str] = {}

    def register(self, job: ScheduledJob) -> JobState:
        if job.name in self._states:
            raise ValueError(f"Job '{job.name}' already registered")
        state = JobState(job=job)
        self._states[job.name] = state
        return state

    def get(self, name: str) -> JobState:
        try:
            return self._states[name]
        except KeyError:
            raise KeyError(f"Unknown job '{name}'") from None

    def states(self) -> List[JobState]:
        return list(self._states.values())

    def holder(self, name: str) -> Optional[str]:
        """Name of the job currently holding this job's lock"""
        return self._held.get(self.get(name).job.lock_key)

    def try_acquire(self, name: str, started_at: datetime) -> Optional[CancellationToken]:
        """Mark the job running; None if it or a job sharing its lock already is"""
        state = self.get(name)
        key = state.job.lock_key
        if state.running or key in self._held:
            state.skipped += 1
            return None
        self._held[key] = name
        state.running = True
        state.runs += 1
        state.last_started_at = started_at
        state.token = CancellationToken()
        return state.token

    def release(self, name: str, finished_at: datetime, result: Optional[Dict] = None,
                error: Optional[str] = None):
        state = self.get(name)
        if self._held.get(state.job.lock_key) == name:
            del self._held[state.job.lock_key]
        state.running = False
        state.token = None
        state.last_finished_at = finished_at
        state.last_result = result
        state.last_error = error

    def cancel_all(self):
        for state in self._states.values():
            if state.token is not None:
                state.token.cancel()


# ==================== SCHEDULER ====================

class Scheduler:
    def __init__(self, session_factory=None, clock: Optional[Clock] = None,
                 config: Optional[Settings] = None):
        self.settings = config or default_settings
        self.session_factory = session_factory or SessionLocal
        self.clock = clock or SystemClock(self.settings.TIMEZONE)
        self.tz = ZoneInfo(self.settings.TIMEZONE)
        self.registry = JobRegistry()
        self._timers: List[asyncio.Task] = []
        self._runs: set = set()
        self._running = False
        self._register_jobs()

    def _register_jobs(self):
        jobs = [
            ScheduledJob("overdue_check", DailyAt(9, 0), self._overdue_check,
                         "Apply late fees to past-due pending transactions"),
            ScheduledJob("upcoming_dues", DailyAt(8, 0), self._upcoming_dues,
                         "Remind users of payments due soon"),
            ScheduledJob("payment_sync", Every(hours=6), self._payment_sync,
                         "Propagate recent payments to maintenance requests"),
            ScheduledJob("audit_cleanup", WeeklyAt(SUNDAY, 2, 0), self._audit_cleanup,
                         "Prune old automated audit entries"),
            ScheduledJob("auto_billing", DailyAt(6, 0), self._auto_billing,
                         "Create monthly fee charges for opted-in units"),
            ScheduledJob("emergency_overdue", None, self._emergency_overdue,
                         "Overdue sweep paced condominium by condominium", lock="overdue_check"),
        ]
        for job in jobs:
            self.registry.register(job)

    @property
    def running(self) -> bool:
        return self._running

    def _local_now(self) -> datetime:
        return self.clock.now().astimezone(self.tz)

    # ---------- lifecycle ----------

    def start(self):
        """Start one timer per scheduled job; requires a running event loop"""
        if self._running:
            return
        self._running = True
        for state in self.registry.states():
            if state.job.trigger is not None:
                self._timers.append(asyncio.create_task(self._timer(state), name=f"timer:{state.job.name}"))
        logger.info(f"Scheduler started with {len(self._timers)} jobs ({self.settings.TIMEZONE})")

    async def shutdown(self):
        """Cancel timers, ask running batches to stop and wait for them"""
        self._running = False
        self.registry.cancel_all()
        tasks = self._timers + list(self._runs)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._runs.clear()
        logger.info("Scheduler stopped")

    async def _timer(self, state: JobState):
        while self._running:
            now = self._local_now()
            state.next_run_at = state.job.trigger.next_fire(now)
            await asyncio.sleep(seconds_until(state.next_run_at, now))
            # Fire without awaiting so an overrunning job is skipped next time
            task = asyncio.create_task(self._execute(state.job.name, raise_errors=False))
            self._runs.add(task)
            task.add_done_callback(self._runs.discard)

    async def _execute(self, name: str, raise_errors: bool = True, **kwargs) -> Dict:
        state = self.registry.get(name)
        token = self.registry.try_acquire(name, self._local_now())
        if token is None:
            holder = self.registry.holder(name)
            logger.warning(f"Job '{name}' skipped, '{holder}' is still running")
            return {"skipped": True, "reason": "already_running", "job": name, "held_by": holder}

        logger.info(f"Job '{name}' started")
        func = state.job.func
        threaded = not inspect.iscoroutinefunction(func)
        if threaded:
            work = asyncio.get_running_loop().run_in_executor(None, partial(func, token, **kwargs))
        else:
            work = asyncio.ensure_future(func(token, **kwargs))

        try:
            # Shielded: on timeout the work keeps its slot until it notices the token
            result = await asyncio.wait_for(asyncio.shield(work), timeout=self.settings.JOB_DEADLINE_SECONDS)
        except asyncio.TimeoutError:
            message = f"deadline of {self.settings.JOB_DEADLINE_SECONDS}s exceeded"
            logger.error(f"Job '{name}' aborted: {message}")
            self._stop(name, token, work, threaded, message)
            if raise_errors:
                raise
            return {"job": name, "error": message}
        except asyncio.CancelledError:
            self._stop(name, token, work, threaded, "cancelled")
            raise
        except Exception as e:
            logger.error(f"Job '{name}' failed: {e}", exc_info=True)
            self.registry.release(name, self._local_now(), error=str(e))
            if raise_errors:
                raise
            return {"job": name, "error": str(e)}

        self.registry.release(name, self._local_now(), result=result)
        logger.info(f"Job '{name}' finished")
        return result

    def _stop(self, name: str, token: CancellationToken, work: asyncio.Future, threaded: bool, error: str):
        """Cancel a run; the job stays running until its work has really ended"""
        token.cancel()
        if not threaded:
            # a worker thread cannot be interrupted, cancelling its future would only hide it
            work.cancel()
        work.add_done_callback(partial(self._release_stopped, name, error))

    def _release_stopped(self, name: str, error: str, work: asyncio.Future):
        if not work.cancelled() and work.exception() is not None:
            logger.error(f"Job '{name}' failed after being stopped: {work.exception()}")
        self.registry.release(name, self._local_now(), error=error)
        logger.info(f"Job '{name}' stopped")

    # ---------- job bodies (worker thread, own session) ----------

    def _overdue_check(self, token: CancellationToken, condominium_id: Optional[int] = None) -> Dict:
        with session_scope(self.session_factory) as db:
            return LateFeeService(db, self.clock).check_and_apply_late_fees(condominium_id, token=token).to_dict()

    def _upcoming_dues(self, token: CancellationToken, days_ahead: Optional[int] = None,
                       condominium_id: Optional[int] = None) -> Dict:
        if days_ahead is None:
            days_ahead = self.settings.UPCOMING_DUE_DAYS_AHEAD
        with session_scope(self.session_factory) as db:
            return LateFeeService(db, self.clock).check_upcoming_due_dates(
                condominium_id, days_ahead, token=token
            ).to_dict()

    def _payment_sync(self, token: CancellationToken) -> Dict:
        since = to_naive(self.clock.now()) - timedelta(hours=self.settings.PAYMENT_SYNC_WINDOW_HOURS)
        with session_scope(self.session_factory) as db:
            transaction_ids = [row[0] for row in db.query(FinancialTransaction.id).filter(
                FinancialTransaction.status == TransactionStatus.PAID.value,
                FinancialTransaction.maintenance_request_id.isnot(None),
                FinancialTransaction.updated_at >= since
            ).order_by(FinancialTransaction.updated_at).limit(self.settings.PAYMENT_SYNC_BATCH_LIMIT).all()]

            bridge = MaintenanceFinancialService(db, self.clock)
            synced: List[int] = []
            errors: List[BatchItemError] = []
            for transaction_id in transaction_ids:
                if token.cancelled:
                    logger.warning("Payment sync cancelled before finishing the batch")
                    break
                try:
                    with unit_of_work(db):
                        bridge.sync_maintenance_payment_status(transaction_id)
                    synced.append(transaction_id)
                except Exception as e:
                    logger.error(f"Payment sync failed for transaction {transaction_id}: {e}", exc_info=True)
                    errors.append(BatchItemError(transaction_id, str(e)))

        logger.info(f"Payment sync: {len(synced)}/{len(transaction_ids)} transactions synced")
        return {
            "synced": len(synced),
            "total": len(transaction_ids),
            "transaction_ids": synced,
            "errors": [e.to_dict() for e in errors],
        }

    def _audit_cleanup(self, token: CancellationToken) -> Dict:
        retention_days = self.settings.AUDIT_RETENTION_DAYS
        if token.cancelled:
            return {"deleted": 0, "retention_days": retention_days, "cancelled": True}
        with session_scope(self.session_factory) as db:
            with unit_of_work(db):
                deleted = AuditService(db).cleanup_old_logs(retention_days, self.clock.now())
        return {"deleted": deleted, "retention_days": retention_days}

    def _auto_billing(self, token: CancellationToken) -> Dict:
        with session_scope(self.session_factory) as db:
            return AutoBillingService(db, self.clock).process_auto_billing(token=token)

    def _overdue_backlog(self):
        with session_scope(self.session_factory) as db:
            service = LateFeeService(db, self.clock)
            return service.condominiums_with_pending_overdue(), service.count_pending_overdue()

    async def _emergency_overdue(self, token: CancellationToken) -> Dict:
        condominium_ids, total = await asyncio.to_thread(self._overdue_backlog)
        logger.warning(
            f"Emergency overdue processing: {total} pending-overdue transactions "
            f"across {len(condominium_ids)} condominiums"
        )

        result = {"processed": 0, "total": total, "condominiums": [], "errors": []}
        for index, condominium_id in enumerate(condominium_ids):
            if token.cancelled:
                logger.warning("Emergency overdue processing cancelled")
                result["cancelled"] = True
                break
            if index:
                await asyncio.sleep(self.settings.EMERGENCY_PAUSE_SECONDS)

            sweep = asyncio.ensure_future(asyncio.to_thread(self._overdue_check, token, condominium_id))
            try:
                run = await asyncio.shield(sweep)
            except asyncio.CancelledError:
                # the sweep thread stops at its next token check; hold the lock until then
                await asyncio.wait({sweep})
                raise
            except Exception as e:
                logger.error(f"Emergency processing failed for condominium {condominium_id}: {e}", exc_info=True)
                result["errors"].append({"condominium_id": condominium_id, "error": str(e)})
                continue

            result["processed"] += run["processed"]
            result["condominiums"].append({
                "condominium_id": condominium_id,
                "processed": run["processed"],
                "total": run["total"],
            })
            for error in run["errors"]:
                result["errors"].append({"condominium_id": condominium_id, **error})

        logger.info(f"Emergency overdue processing finished: {result['processed']}/{total}")
        return result

    # ---------- manual operations ----------

    async def run_overdue_check_now(self, condominium_id: Optional[int] = None) -> Dict:
        return await self._execute("overdue_check", condominium_id=condominium_id)

    async def run_upcoming_dues_now(self, days_ahead: Optional[int] = None,
                                    condominium_id: Optional[int] = None) -> Dict:
        return await self._execute("upcoming_dues", days_ahead=days_ahead, condominium_id=condominium_id)

    async def run_payment_sync_now(self) -> Dict:
        return await self._execute("payment_sync")

    async def run_cleanup_now(self) -> Dict:
        return await self._execute("audit_cleanup")

    async def run_auto_billing_now(self) -> Dict:
        return await self._execute("auto_billing")

    async def run_emergency_overdue_processing(self) -> Dict:
        return await self._execute("emergency_overdue")

    def get_jobs_status(self) -> Dict:
        return {
            "scheduler_running": self._running,
            "timezone": self.settings.TIMEZONE,
            "jobs": [state.snapshot() for state in self.registry.states()],
        }
