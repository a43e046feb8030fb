"""
app/services/migration_service.py

Service wiring for catalog migrations: builds the delivery step, session
store and orchestrator from settings, and tracks background migration jobs.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path

import requests

from app.config import (
    BrowserSettings,
    DeliveryMode,
    DestinationSettings,
    MigrationSettings,
    SessionStoreBackend,
    SessionStoreSettings,
    WebhookSettings,
    get_browser_settings,
    get_destination_settings,
    get_migration_settings,
    get_session_store_settings,
    get_webhook_settings,
)
from app.domain.migration import DestinationCredentials, MigrationSummary, Product, ProgressEvent
from app.migration.cancellation import CancellationToken
from app.migration.config.loader import load_destination_config
from app.migration.failures import MigrationSetupError
from app.migration.locks import AccountLocks
from app.migration.logging_utils import log_event
from app.migration.orchestrator import DeliveryStep, MigrationOrchestrator
from app.migration.page_control import PlaywrightPageFactory
from app.migration.retry import DelayScaling, RetryPolicy
from app.migration.session import FileSessionStore, SessionStore, SQLAlchemySessionStore
from app.migration.sinks import LoggingProgressSink, ProgressSink
from app.migration.step_runner import AutomationStepRunner, DelayPolicy, StepTimeouts
from app.migration.webhook import WebhookDeliveryStep
from db.config import project_root

logger = logging.getLogger(__name__)


class MigrationJobStatus:
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    FINISHED = frozenset({COMPLETED, FAILED})


@dataclass
class MigrationJob:
    """
    In-memory record of one background migration batch.
    """

    job_id: str
    mode: str
    total: int
    status: str = MigrationJobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    events: list[ProgressEvent] = field(default_factory=list)
    summary: MigrationSummary | None = None
    error_message: str | None = None


class MigrationJobTracker:
    """
    Thread-safe registry of migration jobs for the API process.

    Pending and running jobs are always kept; beyond `max_finished_jobs`
    the oldest finished jobs are dropped together with their events.
    """

    def __init__(self, *, max_finished_jobs: int = 100) -> None:
        if max_finished_jobs < 1:
            raise ValueError("max_finished_jobs must be at least 1.")
        self._jobs: dict[str, MigrationJob] = {}
        self._lock = threading.Lock()
        self._max_finished_jobs = max_finished_jobs

    def create(self, *, mode: str, total: int) -> MigrationJob:
        job = MigrationJob(job_id=uuid.uuid4().hex, mode=mode, total=total)
        with self._lock:
            self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> MigrationJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def record_event(self, job_id: str, event: ProgressEvent) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.events.append(event)

    def mark_running(self, job_id: str) -> None:
        with self._lock:
            self._jobs[job_id].status = MigrationJobStatus.RUNNING

    def mark_completed(self, job_id: str, summary: MigrationSummary) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.status = MigrationJobStatus.COMPLETED
            job.summary = summary
            job.finished_at = datetime.now(timezone.utc)
            self._evict_finished()

    def mark_failed(self, job_id: str, error_message: str) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.status = MigrationJobStatus.FAILED
            job.error_message = error_message
            job.finished_at = datetime.now(timezone.utc)
            self._evict_finished()

    def _evict_finished(self) -> None:
        # Caller holds self._lock. Dict order is creation order.
        finished = [job_id for job_id, job in self._jobs.items() if job.status in MigrationJobStatus.FINISHED]
        for job_id in finished[: max(0, len(finished) - self._max_finished_jobs)]:
            del self._jobs[job_id]


class MigrationService:
    """
    Builds orchestrators from settings and runs migrations.
    """

    def __init__(
        self,
        *,
        migration_settings: MigrationSettings | None = None,
        browser_settings: BrowserSettings | None = None,
        destination_settings: DestinationSettings | None = None,
        webhook_settings: WebhookSettings | None = None,
        store_settings: SessionStoreSettings | None = None,
        session_store: SessionStore | None = None,
        page_factory: PlaywrightPageFactory | None = None,
        http_session: requests.Session | None = None,
        tracker: MigrationJobTracker | None = None,
    ) -> None:
        self._migration = migration_settings or get_migration_settings()
        self._browser = browser_settings or get_browser_settings()
        self._destination = destination_settings or get_destination_settings()
        self._webhook = webhook_settings or get_webhook_settings()
        self._store_settings = store_settings or get_session_store_settings()
        self._session_store = session_store
        self._page_factory = page_factory
        self._http_session = http_session
        self._locks = AccountLocks()
        self.tracker = tracker or MigrationJobTracker(max_finished_jobs=self._migration.job_history_limit)

    def credentials(self, *, account_key: str | None = None) -> DestinationCredentials:
        key = (account_key or self._destination.account_key or "").strip()
        if not key:
            raise MigrationSetupError(
                "No destination account configured. Set DESTINATION_ACCOUNT_KEY or DESTINATION_EMAIL."
            )
        return DestinationCredentials(
            account_key=key,
            email=self._destination.email,
            password=self._destination.password,
        )

    def session_store(self) -> SessionStore:
        if self._session_store is None:
            if self._store_settings.backend == SessionStoreBackend.DATABASE:
                from db.session import get_session_factory

                self._session_store = SQLAlchemySessionStore(session_factory=get_session_factory())
            else:
                directory = Path(self._store_settings.directory)
                if not directory.is_absolute():
                    directory = project_root() / directory
                self._session_store = FileSessionStore(directory=directory)
        return self._session_store

    def build_webhook_step(self) -> WebhookDeliveryStep:
        if not self._webhook.url:
            raise MigrationSetupError("WEBHOOK_URL must be set for webhook delivery.")
        return WebhookDeliveryStep(
            url=self._webhook.url,
            session_store=self.session_store(),
            account_locks=self._locks,
            session=self._http_session,
            timeout_seconds=self._webhook.timeout_seconds,
        )

    def build_step(self, mode: str) -> DeliveryStep:
        if mode == DeliveryMode.WEBHOOK:
            return self.build_webhook_step()
        if mode != DeliveryMode.BROWSER:
            raise MigrationSetupError(f"Unsupported delivery mode '{mode}'.")
        self._require_login_credentials()

        try:
            site = load_destination_config(
                name=self._destination.name,
                config_path=self._destination.config_path,
            )
        except (FileNotFoundError, ValueError) as exc:
            raise MigrationSetupError(str(exc)) from exc

        browser = self._browser
        return AutomationStepRunner(
            site=site,
            page_factory=self._get_page_factory().open_page,
            session_store=self.session_store(),
            account_locks=self._locks,
            timeouts=StepTimeouts(
                navigation=browser.navigation_timeout_seconds,
                login_probe=browser.login_probe_timeout_seconds,
                authentication=browser.auth_timeout_seconds,
                fill=browser.fill_timeout_seconds,
                upload=browser.upload_timeout_seconds,
                submit=browser.submit_timeout_seconds,
            ),
            delays=DelayPolicy(
                settle_seconds=browser.settle_delay_seconds,
                navigation_seconds=browser.navigation_delay_seconds,
                upload_seconds=browser.upload_delay_seconds,
                use_readiness_checks=browser.use_readiness_checks,
            ),
        )

    def build_orchestrator(self, mode: str) -> MigrationOrchestrator:
        # Webhook retries back off linearly by attempt; browser retries use a fixed delay.
        scaling = DelayScaling.LINEAR if mode == DeliveryMode.WEBHOOK else DelayScaling.FIXED
        return MigrationOrchestrator(
            step=self.build_step(mode),
            policy=RetryPolicy(
                max_attempts=self._migration.max_attempts,
                delay_seconds=self._migration.retry_delay_seconds,
                scaling=scaling,
            ),
            batch_width=self._migration.batch_width,
            inter_batch_delay_seconds=self._migration.inter_batch_delay_seconds,
            unit_deadline_seconds=self._migration.unit_deadline_seconds,
        )

    async def migrate(
        self,
        products: Sequence[Product],
        *,
        mode: str | None = None,
        account_key: str | None = None,
        sink: ProgressSink | None = None,
        token: CancellationToken | None = None,
    ) -> MigrationSummary:
        selected_mode = (mode or self._migration.delivery_mode).strip().lower()
        credentials = self.credentials(account_key=account_key)
        orchestrator = self.build_orchestrator(selected_mode)
        return await orchestrator.migrate_batch(
            products,
            credentials,
            sink or LoggingProgressSink(),
            token=token,
        )

    def create_job(self, products: Sequence[Product], *, mode: str | None = None) -> MigrationJob:
        selected_mode = (mode or self._migration.delivery_mode).strip().lower()
        if selected_mode not in DeliveryMode.ALL:
            raise MigrationSetupError(f"Unsupported delivery mode '{selected_mode}'.")
        if not products:
            raise MigrationSetupError("No products to migrate.")
        if selected_mode == DeliveryMode.BROWSER:
            self._require_login_credentials()
        elif not self._webhook.url:
            raise MigrationSetupError("WEBHOOK_URL must be set for webhook delivery.")
        return self.tracker.create(mode=selected_mode, total=len(products))

    async def run_job(
        self,
        job_id: str,
        products: Sequence[Product],
        account_key: str | None = None,
    ) -> None:
        job = self.tracker.get(job_id)
        if job is None:
            raise RuntimeError(f"Migration job not found: {job_id}")

        logging_sink = LoggingProgressSink()

        def record(event: ProgressEvent) -> None:
            self.tracker.record_event(job_id, event)
            logging_sink(event)

        self.tracker.mark_running(job_id)
        log_event(logger, logging.INFO, "migration_job_started", job_id=job_id, mode=job.mode, total=job.total)
        try:
            summary = await self.migrate(products, mode=job.mode, account_key=account_key, sink=record)
        except MigrationSetupError as exc:
            self.tracker.mark_failed(job_id, str(exc))
            log_event(logger, logging.ERROR, "migration_job_failed", job_id=job_id, error=str(exc))
            return
        except Exception:
            logger.exception("Migration job crashed job_id=%s", job_id)
            self.tracker.mark_failed(job_id, "Migration job failed unexpectedly.")
            return

        self.tracker.mark_completed(job_id, summary)
        log_event(
            logger,
            logging.INFO,
            "migration_job_completed",
            job_id=job_id,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )

    def _require_login_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("DESTINATION_EMAIL", self._destination.email),
                ("DESTINATION_PASSWORD", self._destination.password),
            )
            if not value
        ]
        if missing:
            names = ", ".join(missing)
            raise MigrationSetupError(f"Browser delivery needs destination login credentials: set {names}.")

    async def close(self) -> None:
        if self._page_factory is not None:
            await self._page_factory.close()

    def _get_page_factory(self) -> PlaywrightPageFactory:
        if self._page_factory is None:
            self._page_factory = PlaywrightPageFactory(
                headless=self._browser.headless,
                viewport_width=self._browser.viewport_width,
                viewport_height=self._browser.viewport_height,
                user_agent=self._browser.user_agent,
            )
        return self._page_factory


@lru_cache(maxsize=1)
def get_migration_service() -> MigrationService:
    """
    Build and cache the migration service.
    """

    return MigrationService()
