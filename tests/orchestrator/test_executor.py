"""Tests for the plan executor."""

import threading

import pytest

from conftest import spec
from reconciler.orchestrator.executor import NodeStatus, PlanExecutor, RunStatus
from reconciler.orchestrator.planner import Action, Planner
from reconciler.providers.memory import build_simulated_registry
from reconciler.state.models import ref
from reconciler.state.store import InMemoryStateStore
from reconciler.utils.errors import PermanentProviderError, StoreUnavailable, TransientProviderError


class FailingStore(InMemoryStateStore):
    """Store whose save fails for one identity."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    def save(self, identity, state):
        if identity == self.fail_on:
            raise StoreUnavailable(f"Disk full while saving {identity}")
        super().save(identity, state)


class ClientError(Exception):
    """Error shaped like a cloud client library's HTTP error."""

    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.code = code
        self.status = status


def run(desired, registry, store, retry, max_workers=4, cancel_event=None, progress_callback=None):
    applied = store.load()
    plan = Planner(immutable_attributes=registry.immutable_attributes).create_plan(desired, applied)
    executor = PlanExecutor(
        registry, store, max_workers=max_workers, retry_strategy=retry, cancel_event=cancel_event
    )
    return executor.execute(plan, applied, progress_callback=progress_callback)


def vpc_and_web():
    return [
        spec("network", "vpc", auto_create_subnetworks=False),
        spec("subnetwork", "web", network=ref("network.vpc", "self_link"),
             ip_cidr_range="10.0.1.0/24", depends_on=["network.vpc"]),
    ]


class TestApply:
    def test_creates_in_dependency_order(self, registry, store, fast_retry):
        report = run(vpc_and_web(), registry, store, fast_retry)

        assert report.status == RunStatus.SUCCESS
        assert report.exit_code == 0
        assert [r.resource_id for r in report.results()] == ["network.vpc", "subnetwork.web"]
        assert [r.wave_number for r in report.results()] == [0, 1]

        state = store.load()
        assert set(state) == {"network.vpc", "subnetwork.web"}
        assert state["network.vpc"].provider_id
        assert state["subnetwork.web"].provider_id
        assert state["subnetwork.web"].dependencies == ["network.vpc"]
        assert state["subnetwork.web"].outputs["gateway_address"] == "10.0.1.1"

    def test_references_are_resolved_before_the_call(self, registry, store, fast_retry):
        run(vpc_and_web(), registry, store, fast_retry)
        state = store.load()

        subnet = registry.get("subnetwork").resources[state["subnetwork.web"].provider_id]
        assert subnet["network"] == state["network.vpc"].outputs["self_link"]
        # The snapshot keeps the expression, not the resolved value
        assert state["subnetwork.web"].attributes["network"] == "${network.vpc.self_link}"

    def test_second_run_is_no_op(self, registry, store, fast_retry):
        run(vpc_and_web(), registry, store, fast_retry)
        calls = len(registry.get("network").calls) + len(registry.get("subnetwork").calls)

        report = run(vpc_and_web(), registry, store, fast_retry)

        assert report.status == RunStatus.SUCCESS
        assert report.count(NodeStatus.NO_OP) == 2
        assert len(registry.get("network").calls) + len(registry.get("subnetwork").calls) == calls

    def test_update_keeps_provider_id(self, registry, store, fast_retry):
        run([spec("firewall", "fw", priority=1000)], registry, store, fast_retry)
        before = store.load()["firewall.fw"]

        report = run([spec("firewall", "fw", priority=900)], registry, store, fast_retry)
        after = store.load()["firewall.fw"]

        assert report.get_result("firewall.fw").action == Action.UPDATE
        assert after.provider_id == before.provider_id
        assert after.attributes["priority"] == 900

    def test_replace_updates_referencing_dependents(self, registry, store, fast_retry):
        desired = [
            spec("health_check", "hc", port=80),
            spec("backend_service", "api", health_checks=[ref("health_check.hc", "self_link")]),
        ]
        run(desired, registry, store, fast_retry)
        old_id = store.load()["health_check.hc"].provider_id

        desired[0] = spec("health_check", "hc", port=80, name="hc-v2")
        report = run(desired, registry, store, fast_retry)
        state = store.load()

        assert report.status == RunStatus.SUCCESS
        assert report.get_result("health_check.hc").action == Action.REPLACE
        assert report.get_result("backend_service.api").action == Action.UPDATE
        assert state["health_check.hc"].provider_id != old_id
        assert old_id not in registry.get("health_check").resources

        backend = registry.get("backend_service").resources[state["backend_service.api"].provider_id]
        assert backend["health_checks"] == [state["health_check.hc"].outputs["self_link"]]
        assert backend["health_checks"][0].endswith("/healthChecks/hc-v2")

    def test_delete_removes_state(self, registry, store, fast_retry):
        run(vpc_and_web(), registry, store, fast_retry)

        report = run(vpc_and_web()[:1], registry, store, fast_retry)

        deleted = report.get_result("subnetwork.web")
        assert deleted.action == Action.DELETE
        assert deleted.status == NodeStatus.SUCCEEDED
        assert set(store.load()) == {"network.vpc"}
        assert registry.get("subnetwork").resources == {}

    def test_delete_of_missing_remote_resource_succeeds(self, registry, fast_retry):
        store = InMemoryStateStore()
        run([spec("health_check", "hc")], registry, store, fast_retry)
        registry.get("health_check").resources.clear()

        report = run([], registry, store, fast_retry)

        assert report.status == RunStatus.SUCCESS
        assert store.load() == {}


class TestPartialFailure:
    def test_failure_skips_dependents_only(self, registry, store, fast_retry):
        registry.get("subnetwork").fail("create", PermanentProviderError("bad range", code="invalid"))
        desired = vpc_and_web() + [
            spec("firewall", "allow-web", source_ranges=["${subnetwork.web.gateway_address}"]),
            spec("health_check", "hc"),
        ]

        report = run(desired, registry, store, fast_retry)
        statuses = report.statuses()

        assert statuses["network.vpc"] == NodeStatus.SUCCEEDED
        assert statuses["health_check.hc"] == NodeStatus.SUCCEEDED
        assert statuses["subnetwork.web"] == NodeStatus.FAILED
        assert statuses["firewall.allow-web"] == NodeStatus.SKIPPED
        assert report.status == RunStatus.PARTIAL_FAILURE
        assert report.exit_code == 1

        failed = report.get_result("subnetwork.web")
        assert failed.error.code == "invalid"
        assert failed.attempts == 1
        assert "subnetwork.web" in report.get_result("firewall.allow-web").message

        assert set(store.load()) == {"network.vpc", "health_check.hc"}
        assert ("create", "allow-web") not in registry.get("firewall").calls

    def test_skip_is_transitive(self, registry, store, fast_retry):
        registry.get("network").fail("create", PermanentProviderError("denied", code="forbidden"))
        desired = vpc_and_web() + [
            spec("firewall", "fw", source_ranges=["${subnetwork.web.gateway_address}"]),
        ]

        statuses = run(desired, registry, store, fast_retry).statuses()

        assert statuses["network.vpc"] == NodeStatus.FAILED
        assert statuses["subnetwork.web"] == NodeStatus.SKIPPED
        assert statuses["firewall.fw"] == NodeStatus.SKIPPED

    def test_transient_error_is_retried(self, registry, store, fast_retry):
        registry.get("network").fail(
            "create", TransientProviderError("slow down", code="rateLimitExceeded"), times=2
        )

        report = run(vpc_and_web(), registry, store, fast_retry)

        assert report.status == RunStatus.SUCCESS
        assert report.get_result("network.vpc").attempts == 3

    def test_client_error_with_retryable_status_is_retried(self, registry, store, fast_retry):
        registry.get("network").fail("create", ClientError("Too Many Requests", status=429), times=2)

        report = run(vpc_and_web(), registry, store, fast_retry)

        assert report.status == RunStatus.SUCCESS
        assert report.get_result("network.vpc").attempts == 3

    def test_client_error_with_permanent_code_is_not_retried(self, registry, store, fast_retry):
        registry.get("network").fail("create", ClientError("Bad request", code="invalid", status=400))

        report = run(vpc_and_web(), registry, store, fast_retry)
        result = report.get_result("network.vpc")

        assert result.status == NodeStatus.FAILED
        assert result.attempts == 1
        assert result.error.code == "invalid"
        assert not result.error.transient

    def test_transient_error_exhausts_attempts(self, registry, store, fast_retry):
        registry.get("network").fail("create", TransientProviderError("timed out", code="timeout"), times=5)

        report = run(vpc_and_web(), registry, store, fast_retry)
        result = report.get_result("network.vpc")

        assert result.status == NodeStatus.FAILED
        assert result.attempts == fast_retry.max_attempts
        assert result.error.transient

    def test_unexpected_exception_is_contained(self, registry, store, fast_retry):
        registry.get("health_check").fail("create", PermanentProviderError("boom"))
        registry.get("network").create = lambda attributes: 1 / 0

        report = run([spec("network", "vpc"), spec("health_check", "hc")], registry, store, fast_retry)

        assert report.get_result("network.vpc").status == NodeStatus.FAILED
        assert report.get_result("network.vpc").error.code == "ZeroDivisionError"
        assert report.get_result("health_check.hc").status == NodeStatus.FAILED

    def test_store_failure_is_fatal(self, registry, fast_retry):
        store = FailingStore(fail_on="network.vpc")

        report = run(vpc_and_web(), registry, store, fast_retry)

        assert report.status == RunStatus.FATAL
        assert report.exit_code == 2
        assert isinstance(report.error, StoreUnavailable)
        assert report.get_result("network.vpc").status == NodeStatus.FAILED
        assert report.get_result("subnetwork.web").status == NodeStatus.CANCELLED
        assert registry.get("subnetwork").calls == []


class TestCancellation:
    def test_cancel_before_start(self, registry, store, fast_retry):
        cancel_event = threading.Event()
        cancel_event.set()

        report = run(vpc_and_web(), registry, store, fast_retry, cancel_event=cancel_event)

        assert report.status == RunStatus.CANCELLED
        assert report.exit_code == 130
        assert report.count(NodeStatus.CANCELLED) == 2
        assert registry.get("network").calls == []

    def test_cancel_between_waves(self, registry, store, fast_retry):
        cancel_event = threading.Event()

        def on_progress(resource_id, status, message):
            if resource_id == "network.vpc":
                cancel_event.set()

        report = run(
            vpc_and_web(), registry, store, fast_retry,
            cancel_event=cancel_event, progress_callback=on_progress
        )

        assert report.get_result("network.vpc").status == NodeStatus.SUCCEEDED
        assert report.get_result("subnetwork.web").status == NodeStatus.CANCELLED
        assert report.status == RunStatus.CANCELLED
        assert set(store.load()) == {"network.vpc"}

    def test_cancel_interrupts_backoff(self, registry, store):
        from reconciler.utils.retry import RetryStrategy

        cancel_event = threading.Event()
        slow_retry = RetryStrategy(max_attempts=5, base_delay=30, max_delay=30, jitter=False)
        registry.get("network").fail("create", TransientProviderError("busy", code="backendError"), times=5)

        timer = threading.Timer(0.1, cancel_event.set)
        timer.start()
        try:
            report = run(vpc_and_web(), registry, store, slow_retry, cancel_event=cancel_event)
        finally:
            timer.cancel()

        assert report.get_result("network.vpc").status == NodeStatus.FAILED
        assert report.get_result("network.vpc").attempts == 1
        assert report.get_result("subnetwork.web").status == NodeStatus.CANCELLED
        assert report.status == RunStatus.CANCELLED


class TestConcurrency:
    def test_worker_pool_is_bounded(self, settings, store, fast_retry):
        registry = build_simulated_registry(settings, latency=0.05)
        desired = [spec("health_check", f"hc-{index}") for index in range(8)]

        report = run(desired, registry, store, fast_retry, max_workers=2)

        assert report.status == RunStatus.SUCCESS
        assert 1 <= registry.get("health_check").peak_in_flight <= 2

    def test_invalid_worker_count(self, registry, store):
        with pytest.raises(ValueError):
            PlanExecutor(registry, store, max_workers=0)


class TestRunReport:
    def test_summary_and_dict(self, registry, store, fast_retry):
        report = run(vpc_and_web(), registry, store, fast_retry)
        data = report.to_dict()

        assert report.get_summary()["succeeded"] == 2
        assert data["status"] == "success"
        assert data["exit_code"] == 0
        assert [r["resource_id"] for r in data["results"]] == ["network.vpc", "subnetwork.web"]
        assert report.start_time <= report.end_time
