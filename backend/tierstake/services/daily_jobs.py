"""
Daily background jobs: ranking recalculation, pool rate decay and
approval-transaction expiry.

Each job runs in its own session and its own try block; a failure is logged,
counted and reported to the on_failure callback, and the remaining jobs and
future ticks still run.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tierstake.core.config import GovernanceConfig, Settings, get_settings
from tierstake.core.logging_config import LoggingConfig
from tierstake.core.metrics import daily_job_runs_total
from tierstake.services.account_store import AccountStore
from tierstake.services.decay_scheduler import DecayScheduler
from tierstake.services.governance_gate import GovernanceGate
from tierstake.services.parameter_store import ParameterStore
from tierstake.services.ranking_engine import RankingEngine

logger = LoggingConfig.get_logger(__name__)

FailureCallback = Callable[[str, Exception], None]


@dataclass
class JobResult:
    job: str
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class DailyRunReport:
    started_at: datetime
    results: List[JobResult] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return all(result.success for result in self.results)

    def result_for(self, job: str) -> Optional[JobResult]:
        return next((result for result in self.results if result.job == job), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "succeeded": self.succeeded,
            "results": [
                {"job": r.job, "success": r.success, "error": r.error}
                for r in self.results
            ],
        }


class DailyJobRunner:
    """Runs the daily jobs once, in order, isolating failures"""

    JOB_RANKING = "ranking_recalculation"
    JOB_DECAY = "decay_pass"
    JOB_EXPIRY = "approval_expiry"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        on_failure: Optional[FailureCallback] = None,
        settings: Optional[Settings] = None,
        governance_config: Optional[GovernanceConfig] = None,
    ):
        self.session_factory = session_factory
        self.on_failure = on_failure
        self.settings = settings or get_settings()
        self.governance_config = governance_config

    def _recalculate_rankings(self, db: Session) -> Dict[str, int]:
        return RankingEngine(AccountStore(db)).recalculate_all()

    def _run_decay(self, db: Session) -> List[dict]:
        total_staked = AccountStore(db).total_staked()
        scheduler = DecayScheduler.from_settings(ParameterStore(db), self.settings)
        return [change.to_dict() for change in scheduler.run_decay_pass(total_staked)]

    def _expire_approvals(self, db: Session) -> int:
        return GovernanceGate(db, self.governance_config).expire_stale()

    def _run_job(self, name: str, job: Callable[[Session], Any]) -> JobResult:
        db = None
        try:
            db = self.session_factory()
            result = job(db)
            daily_job_runs_total.labels(job=name, status="success").inc()
            logger.info(f"Daily job {name} completed", extra={"job": name})
            return JobResult(job=name, success=True, result=result)
        except Exception as e:
            daily_job_runs_total.labels(job=name, status="failed").inc()
            logger.error(f"Daily job {name} failed: {e}", exc_info=True, extra={"job": name})
            self._notify_failure(name, e)
            return JobResult(job=name, success=False, error=str(e))
        finally:
            if db is not None:
                self._close(db)

    @staticmethod
    def _close(db: Session) -> None:
        try:
            db.rollback()
            db.close()
        except SQLAlchemyError:
            logger.warning("Could not close job session cleanly", exc_info=True)

    def _notify_failure(self, name: str, error: Exception) -> None:
        if self.on_failure is None:
            return
        try:
            self.on_failure(name, error)
        except Exception:
            logger.error(f"Failure callback raised for job {name}", exc_info=True)

    def run_once(self) -> DailyRunReport:
        """Ranking recalculation first, then the decay pass, then expiry"""
        report = DailyRunReport(started_at=datetime.now(timezone.utc))
        report.results.append(self._run_job(self.JOB_RANKING, self._recalculate_rankings))
        report.results.append(self._run_job(self.JOB_DECAY, self._run_decay))
        if self.governance_config is not None:
            report.results.append(self._run_job(self.JOB_EXPIRY, self._expire_approvals))
        report.finished_at = datetime.now(timezone.utc)
        logger.info("Daily jobs finished", extra={"report": report.to_dict()})
        return report


class DailyJobScheduler:
    """Background loop firing the runner once per UTC day at the configured hour"""

    def __init__(
        self,
        runner: DailyJobRunner,
        hour: int = 0,
        check_interval_seconds: int = 300,
    ):
        self.runner = runner
        self.hour = hour
        self.check_interval_seconds = check_interval_seconds
        self.running = False
        self.last_run_date: Optional[date] = None
        self.last_report: Optional[DailyRunReport] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the scheduler loop"""
        if self.running:
            logger.warning("Daily job scheduler is already running")
            return
        self.running = True
        logger.info(f"Starting daily job scheduler (hour={self.hour} UTC)")
        self._task = asyncio.create_task(self._scheduler_loop())

    async def stop(self):
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Daily job scheduler stopped")

    def is_due(self, now: datetime) -> bool:
        return now.hour == self.hour and self.last_run_date != now.date()

    async def tick(self, now: Optional[datetime] = None) -> Optional[DailyRunReport]:
        """Run the daily jobs if due; at most once per calendar day"""
        now = now or datetime.now(timezone.utc)
        if not self.is_due(now):
            return None
        self.last_run_date = now.date()
        # Store access is synchronous; keep the event loop free
        self.last_report = await asyncio.to_thread(self.runner.run_once)
        return self.last_report

    async def _scheduler_loop(self):
        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in daily job scheduler loop: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval_seconds)
