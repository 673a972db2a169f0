"""Main orchestrator that coordinates planning and execution of reconciliation runs."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional
import uuid

from reconciler.config.models import ExecutorSettings, ReconcilerConfig, RetrySettings
from reconciler.orchestrator.executor import PlanExecutor, ProgressCallback, RunReport, RunStatus
from reconciler.orchestrator.planner import Plan, Planner
from reconciler.providers.base import ProviderRegistry
from reconciler.providers.memory import build_simulated_registry
from reconciler.state.models import ResourceSpec
from reconciler.state.store import FileStateStore, StateStore
from reconciler.utils.errors import PlanError, ReconcileError, StoreUnavailable, error_handler
from reconciler.utils.logging import LogContext, get_logger, setup_logging

logger = get_logger(__name__)


class Reconciler:
    """Coordinates state loading, planning and plan execution."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        executor_settings: Optional[ExecutorSettings] = None,
        retry_settings: Optional[RetrySettings] = None,
        lock_timeout: float = 30.0
    ):
        """Initialize reconciler.

        Args:
            registry: Providers by resource type
            store: Applied state store
            executor_settings: Worker pool settings
            retry_settings: Backoff settings for transient provider errors
            lock_timeout: Seconds to wait for the state directory lock
        """
        executor_settings = executor_settings or ExecutorSettings()
        retry_settings = retry_settings or RetrySettings()

        self.registry = registry
        self.store = store
        self.lock_timeout = lock_timeout

        self.planner = Planner(immutable_attributes=registry.immutable_attributes)
        self.executor = PlanExecutor(
            registry=registry,
            store=store,
            max_workers=executor_settings.max_workers,
            retry_strategy=retry_settings.to_strategy()
        )

        self.logger = get_logger(__name__)

    @classmethod
    def from_config(cls, config: ReconcilerConfig) -> "Reconciler":
        """Build a reconciler with a file state store and the simulated providers.

        Also installs the configured log handlers.
        """
        setup_logging(config.logging.level, config.logging.log_dir)

        store = FileStateStore(config.state.path)
        store.initialize()
        return cls(
            registry=build_simulated_registry(config.provider),
            store=store,
            executor_settings=config.executor,
            retry_settings=config.retry,
            lock_timeout=config.state.lock_timeout
        )

    def plan(self, specs: Iterable[ResourceSpec]) -> Plan:
        """Plan a desired resource set against the stored state.

        Args:
            specs: Desired resources

        Returns:
            Plan with waves of actions

        Raises:
            PlanError: If the desired set is invalid
            StoreUnavailable: If the state cannot be loaded
        """
        self.logger.info("Planning...")
        applied = self.store.load()
        return self.planner.create_plan(specs, applied)

    def apply(
        self,
        specs: Iterable[ResourceSpec],
        progress_callback: Optional[ProgressCallback] = None
    ) -> RunReport:
        """Reconcile the infrastructure with a desired resource set.

        Never raises for invalid input or an unavailable store: those end
        the run before any provider call with a fatal report.

        Args:
            specs: Desired resources
            progress_callback: Optional callback for terminal statuses

        Returns:
            RunReport for the run
        """
        run_id = uuid.uuid4().hex[:12]
        self.executor.cancel_event.clear()

        with LogContext(run_id=run_id):
            self.logger.info("Starting reconciliation run")
            try:
                with self._locked():
                    applied = self.store.load()
                    plan = self.planner.create_plan(specs, applied)

                    if not plan.has_changes():
                        self.logger.info("No changes to apply")

                    return self.executor.execute(plan, applied, progress_callback, run_id=run_id)

            except (PlanError, StoreUnavailable) as e:
                self.logger.error("Run aborted before execution")
                error_handler.log_error(e)
                return self._fatal_report(run_id, e)

    def destroy(self, progress_callback: Optional[ProgressCallback] = None) -> RunReport:
        """Delete every applied resource, dependents first."""
        self.logger.info("Destroying all applied resources...")
        return self.apply([], progress_callback)

    def cancel(self) -> None:
        """Cancel the current run. Provider calls already in flight finish."""
        self.executor.cancel()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the state directory lock for the duration of a run."""
        if not isinstance(self.store, FileStateStore):
            yield
            return

        self.store.lock(timeout=self.lock_timeout)
        try:
            yield
        finally:
            self.store.unlock()

    @staticmethod
    def _fatal_report(run_id: str, error: ReconcileError) -> RunReport:
        now = datetime.now(timezone.utc)
        return RunReport(
            status=RunStatus.FATAL,
            run_id=run_id,
            start_time=now,
            end_time=now,
            error=error
        )
