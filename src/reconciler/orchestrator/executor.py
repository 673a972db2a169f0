"""Plan executor with bounded parallel waves, retries and partial-failure containment."""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
import threading
import time
import uuid

from reconciler.orchestrator.planner import Action, Plan, PlanEntry, PlanWave
from reconciler.orchestrator.references import ResolvedValues
from reconciler.providers.base import ProviderRegistry, ResourceProvider
from reconciler.state.models import AppliedState
from reconciler.state.store import StateStore
from reconciler.utils.errors import (
    ErrorContext,
    ReconcileError,
    StoreUnavailable,
    error_handler,
)
from reconciler.utils.logging import get_logger
from reconciler.utils.retry import RetryStrategy

logger = get_logger(__name__)


class NodeStatus(Enum):
    """Terminal status of a plan entry."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NO_OP = "no_op"
    CANCELLED = "cancelled"


class RunStatus(Enum):
    """Overall status of a run."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    CANCELLED = "cancelled"
    FATAL = "fatal"

    @property
    def exit_code(self) -> int:
        return {
            RunStatus.SUCCESS: 0,
            RunStatus.PARTIAL_FAILURE: 1,
            RunStatus.FATAL: 2,
            RunStatus.CANCELLED: 130,
        }[self]


# Prerequisite statuses that keep an entry from running
BLOCKING_STATUSES = (NodeStatus.FAILED, NodeStatus.SKIPPED, NodeStatus.CANCELLED)


@dataclass
class NodeResult:
    """Result of executing a single plan entry."""

    resource_id: str
    resource_type: str
    action: Action
    status: NodeStatus
    wave_number: int
    error: Optional[ReconcileError] = None
    detail: Optional[str] = None
    attempts: int = 0
    provider_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        """Check if the entry reached a successful terminal state."""
        return self.status in (NodeStatus.SUCCEEDED, NodeStatus.NO_OP)

    def is_failed(self) -> bool:
        return self.status == NodeStatus.FAILED

    @property
    def message(self) -> Optional[str]:
        """Error message or status detail, if any."""
        if self.error:
            return self.error.message
        return self.detail

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_id': self.resource_id,
            'resource_type': self.resource_type,
            'action': self.action.value,
            'status': self.status.value,
            'wave': self.wave_number,
            'attempts': self.attempts,
            'provider_id': self.provider_id,
            'duration': self.duration,
            'error': self.error.to_dict() if self.error else None,
            'detail': self.detail,
        }


@dataclass
class WaveResult:
    """Result of executing one wave."""

    wave_number: int
    results: List[NodeResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def count(self, status: NodeStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def has_failures(self) -> bool:
        return self.count(NodeStatus.FAILED) > 0


@dataclass
class RunReport:
    """Per-entry outcome of a run, ordered by wave."""

    status: RunStatus
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    wave_results: List[WaveResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds
    error: Optional[ReconcileError] = None  # Set for fatal runs

    @property
    def exit_code(self) -> int:
        return self.status.exit_code

    def is_success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def results(self) -> List[NodeResult]:
        """All entry results in wave order."""
        return [result for wave in self.wave_results for result in wave.results]

    def get_result(self, resource_id: str) -> Optional[NodeResult]:
        for result in self.results():
            if result.resource_id == resource_id:
                return result
        return None

    def statuses(self) -> Dict[str, NodeStatus]:
        return {result.resource_id: result.status for result in self.results()}

    def count(self, status: NodeStatus) -> int:
        return sum(wave.count(status) for wave in self.wave_results)

    def get_summary(self) -> Dict[str, int]:
        return {status.value: self.count(status) for status in NodeStatus}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'status': self.status.value,
            'exit_code': self.exit_code,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration': self.duration,
            'summary': self.get_summary(),
            'error': self.error.to_dict() if self.error else None,
            'results': [result.to_dict() for result in self.results()],
        }


# Type alias for progress callback: (resource_id, status, message)
ProgressCallback = Callable[[str, NodeStatus, Optional[str]], None]


class PlanExecutor:
    """Executes plans wave by wave against resource providers."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        max_workers: int = 4,
        retry_strategy: Optional[RetryStrategy] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        """Initialize plan executor.

        Args:
            registry: Providers by resource type
            store: State store written after every successful provider call
            max_workers: Maximum concurrent provider calls within a wave
            retry_strategy: Backoff for transient provider errors
            cancel_event: External cancellation signal
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.registry = registry
        self.store = store
        self.max_workers = max_workers
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.cancel_event = cancel_event or threading.Event()
        self._halt = threading.Event()
        self._fatal_error: Optional[StoreUnavailable] = None
        self.logger = get_logger(__name__)

    def cancel(self) -> None:
        """Stop dispatching new provider calls. In-flight calls finish."""
        self.logger.warning("Cancellation requested, waiting for in-flight operations")
        self.cancel_event.set()

    def _stop_requested(self) -> bool:
        return self.cancel_event.is_set() or self._halt.is_set()

    def execute(
        self,
        plan: Plan,
        applied: Dict[str, AppliedState],
        progress_callback: Optional[ProgressCallback] = None,
        run_id: Optional[str] = None
    ) -> RunReport:
        """Execute a plan.

        Node failures never raise out of this method; they are recorded in
        the report and skip every entry that depends on them.

        Args:
            plan: Plan to execute
            applied: Applied state the plan was built from, used to resolve
                references to unchanged resources
            progress_callback: Optional callback for terminal statuses
            run_id: Identifier for the report

        Returns:
            RunReport with every entry's terminal status
        """
        self.logger.info(f"Starting execution of {len(plan.waves)} waves (max_workers={self.max_workers})...")

        self._halt.clear()
        self._fatal_error = None
        report = RunReport(status=RunStatus.SUCCESS, start_time=datetime.now(timezone.utc))
        if run_id:
            report.run_id = run_id
        started = time.monotonic()

        values = ResolvedValues(applied)
        statuses: Dict[str, NodeStatus] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reconciler") as pool:
            for wave in plan.waves:
                wave_result = self._execute_wave(pool, wave, values, statuses, progress_callback)
                report.wave_results.append(wave_result)

                if wave_result.has_failures():
                    self.logger.error(
                        f"Wave {wave.wave_number} completed with "
                        f"{wave_result.count(NodeStatus.FAILED)} failures"
                    )
                else:
                    self.logger.info(f"Wave {wave.wave_number} completed in {wave_result.duration:.1f}s")

        report.end_time = datetime.now(timezone.utc)
        report.duration = time.monotonic() - started
        report.status = self._run_status(report)
        report.error = self._fatal_error

        summary = report.get_summary()
        log = self.logger.info if report.is_success() else self.logger.error
        log(
            f"Run {report.status.value}: {summary['succeeded']} succeeded, "
            f"{summary['no_op']} unchanged, {summary['failed']} failed, "
            f"{summary['skipped']} skipped, {summary['cancelled']} cancelled "
            f"in {report.duration:.1f}s"
        )
        return report

    def _run_status(self, report: RunReport) -> RunStatus:
        if self._fatal_error is not None:
            return RunStatus.FATAL
        if report.count(NodeStatus.CANCELLED):
            return RunStatus.CANCELLED
        if report.count(NodeStatus.FAILED) or report.count(NodeStatus.SKIPPED):
            return RunStatus.PARTIAL_FAILURE
        return RunStatus.SUCCESS

    def _execute_wave(
        self,
        pool: ThreadPoolExecutor,
        wave: PlanWave,
        values: ResolvedValues,
        statuses: Dict[str, NodeStatus],
        progress_callback: Optional[ProgressCallback]
    ) -> WaveResult:
        """Run one wave and wait for every entry to reach a terminal state."""
        wave_result = WaveResult(wave_number=wave.wave_number, start_time=datetime.now(timezone.utc))
        started = time.monotonic()
        results: Dict[str, NodeResult] = {}
        futures = {}

        for entry in wave.entries:
            blocked = sorted(
                prerequisite for prerequisite in entry.prerequisites
                if statuses.get(prerequisite) in BLOCKING_STATUSES
            )

            if self._stop_requested():
                results[entry.resource_id] = self._unstarted(entry, wave.wave_number)
            elif blocked:
                results[entry.resource_id] = self._result(
                    entry, wave.wave_number, NodeStatus.SKIPPED,
                    detail=f"Skipped: prerequisite {', '.join(blocked)} did not succeed"
                )
            elif entry.action == Action.NO_OP:
                results[entry.resource_id] = self._result(entry, wave.wave_number, NodeStatus.NO_OP)
            else:
                future = pool.submit(self._run_entry, entry, values, wave.wave_number)
                futures[future] = entry

        for future in as_completed(futures):
            entry = futures[future]
            try:
                result = future.result()
            except Exception as e:
                self.logger.error(f"Unexpected error executing {entry.resource_id}: {str(e)}")
                result = self._result(
                    entry, wave.wave_number, NodeStatus.FAILED,
                    error=error_handler.classify(e, ErrorContext(resource_id=entry.resource_id))
                )
            results[entry.resource_id] = result

        for entry in wave.entries:
            result = results[entry.resource_id]
            statuses[entry.resource_id] = result.status
            wave_result.results.append(result)
            if progress_callback:
                progress_callback(entry.resource_id, result.status, result.message)

        wave_result.end_time = datetime.now(timezone.utc)
        wave_result.duration = time.monotonic() - started
        return wave_result

    def _result(self, entry: PlanEntry, wave_number: int, status: NodeStatus, **kwargs) -> NodeResult:
        return NodeResult(
            resource_id=entry.resource_id,
            resource_type=entry.resource_type,
            action=entry.action,
            status=status,
            wave_number=wave_number,
            **kwargs
        )

    def _unstarted(self, entry: PlanEntry, wave_number: int) -> NodeResult:
        if self._halt.is_set():
            detail = "Not started: run halted after a state store failure"
        else:
            detail = "Not started: run cancelled"
        return self._result(entry, wave_number, NodeStatus.CANCELLED, detail=detail)

    def _run_entry(self, entry: PlanEntry, values: ResolvedValues, wave_number: int) -> NodeResult:
        """Execute one entry on a worker thread."""
        # Cancellation may arrive while the entry waits for a free worker
        if self._stop_requested():
            return self._unstarted(entry, wave_number)

        resource_id = entry.resource_id
        extra = {'resource_id': resource_id, 'action': entry.action.value}
        attempts = [0]
        start_time = datetime.now(timezone.utc)
        started = time.monotonic()

        def count_attempt(attempt: int) -> None:
            attempts[0] += 1
            if attempt > 1:
                self.logger.info(f"Retrying {entry.action.value}", extra={**extra, 'attempt': attempt})

        status = NodeStatus.SUCCEEDED
        error: Optional[ReconcileError] = None
        provider_id: Optional[str] = None

        try:
            provider = self.registry.get(entry.resource_type)
            self.logger.info(f"Applying {entry.action.value} ({entry.reason})", extra=extra)

            if entry.action == Action.CREATE:
                provider_id = self._create(provider, entry, values, count_attempt)
            elif entry.action == Action.UPDATE:
                provider_id = self._update(provider, entry, values, count_attempt)
            elif entry.action == Action.REPLACE:
                self._delete(provider, entry, values, count_attempt)
                provider_id = self._create(provider, entry, values, count_attempt)
            elif entry.action == Action.DELETE:
                self._delete(provider, entry, values, count_attempt)
            else:
                raise ValueError(f"Unsupported action: {entry.action}")

        except StoreUnavailable as e:
            # Remote state changed but was not recorded: stop dispatching
            status = NodeStatus.FAILED
            error = e
            self._fatal_error = e
            self._halt.set()
            self.logger.critical(f"State store failure, halting run: {e.message}", extra=extra)

        except Exception as e:
            status = NodeStatus.FAILED
            error = error_handler.classify(
                e, ErrorContext(resource_id=resource_id, resource_type=entry.resource_type,
                                operation=entry.action.value)
            )
            self.logger.error(f"Failed to {entry.action.value}: {error.message}", extra=extra)

        duration = time.monotonic() - started
        if status == NodeStatus.SUCCEEDED:
            self.logger.info(
                f"Completed {entry.action.value} in {duration:.1f}s",
                extra={**extra, 'attempt': attempts[0], 'duration': round(duration, 3)}
            )

        return self._result(
            entry, wave_number, status,
            error=error,
            attempts=attempts[0],
            provider_id=provider_id,
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            duration=duration
        )

    def _call(self, func: Callable[..., Any], *args, on_attempt: Callable[[int], None]) -> Any:
        """Invoke a provider operation with retries on transient errors."""
        return self.retry_strategy.execute_with_retry(
            func,
            *args,
            wait=lambda delay: not self.cancel_event.wait(delay),
            on_attempt=on_attempt
        )

    def _create(
        self,
        provider: ResourceProvider,
        entry: PlanEntry,
        values: ResolvedValues,
        on_attempt: Callable[[int], None]
    ) -> str:
        spec = entry.desired
        attributes = values.resolve_attributes(spec.attributes, source=entry.resource_id)
        references = values.resolve_references(spec.attributes, source=entry.resource_id)
        result = self._call(provider.create, attributes, on_attempt=on_attempt)

        self._record(entry, result.provider_id, result.outputs, references, values)
        return result.provider_id

    def _update(
        self,
        provider: ResourceProvider,
        entry: PlanEntry,
        values: ResolvedValues,
        on_attempt: Callable[[int], None]
    ) -> str:
        spec = entry.desired
        provider_id = entry.current.provider_id
        attributes = values.resolve_attributes(spec.attributes, source=entry.resource_id)
        references = values.resolve_references(spec.attributes, source=entry.resource_id)
        outputs = self._call(provider.update, provider_id, attributes, on_attempt=on_attempt)

        self._record(entry, provider_id, outputs or {}, references, values)
        return provider_id

    def _delete(
        self,
        provider: ResourceProvider,
        entry: PlanEntry,
        values: ResolvedValues,
        on_attempt: Callable[[int], None]
    ) -> None:
        provider_id = entry.current.provider_id
        try:
            self._call(provider.delete, provider_id, on_attempt=on_attempt)
        except Exception as e:
            if error_handler.classify(e).code != 'notFound':
                raise
            self.logger.warning(
                f"{provider_id} is already gone, forgetting it",
                extra={'resource_id': entry.resource_id}
            )

        self.store.delete(entry.resource_id)
        values.forget(entry.resource_id)

    def _record(
        self,
        entry: PlanEntry,
        provider_id: str,
        outputs: Dict[str, Any],
        references: Dict[str, Any],
        values: ResolvedValues
    ) -> None:
        """Persist applied state right after a successful provider call."""
        state = AppliedState(
            id=entry.resource_id,
            type=entry.resource_type,
            provider_id=provider_id,
            attributes=entry.desired.attributes,
            outputs=dict(outputs),
            resolved_references=references,
            dependencies=sorted(entry.prerequisites),
        )
        self.store.save(entry.resource_id, state)
        values.record(entry.resource_id, provider_id, state.outputs)
