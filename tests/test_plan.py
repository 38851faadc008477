"""Tests for plan execution against in-process registries and fake tools."""

import pytest
import structlog

from cranberry.config import CranberrySettings
from cranberry.exceptions import (
    AuditFailedError,
    DigestMismatchError,
    PlanCancelledError,
    PlanStateError,
    ResourceExecutionError,
    ScanError,
    ScanThresholdError,
    SyncError,
)
from cranberry.sdk import ExecutionContext, Plan, Platform
from cranberry.tools.trivy import ScanReport, ScanTarget, Vulnerability
from tests.helpers import FakeAuditor, FakeRuntime, FakeScanner

DIGEST = "sha256:" + "a" * 64


def _report(*severities):
    return ScanReport(
        results=(
            ScanTarget(
                target="app (debian 12)",
                vulnerabilities=tuple(
                    Vulnerability(
                        id=f"CVE-2024-{i:04d}",
                        package="openssl",
                        installed_version="3.0.0",
                        fixed_version="3.0.1",
                        severity=severity,
                        title="test finding",
                    )
                    for i, severity in enumerate(severities)
                ),
            ),
        )
    )


def new_pinned_image(plan):
    return plan.image("ghcr.io/org/app").version("1.0").digest(DIGEST).build()


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def plan(settings, runtime):
    return Plan("test", runtime=runtime, settings=settings)


def test_stage_order(plan):
    """Test that stages run version checks first and audits last."""
    assert [stage.name for stage in plan.stages()] == [
        "version_checks",
        "syncs",
        "builds",
        "scans",
        "audits",
    ]
    assert [stage.kind for stage in plan.stages()] == [
        "version_check",
        "sync",
        "build",
        "scan",
        "audit",
    ]


@pytest.mark.integration
@pytest.mark.asyncio
class TestPipeline:
    """Test the full version check, sync and scan pipeline."""

    async def test_sync_feeds_digest_to_later_scan(
        self, plan, runtime, source_registry, dest_registry, captured_logs
    ):
        pinned = source_registry.add_image("org/vector", "0.50.0", layers=[b"0.50.0"])
        source_registry.add_image("org/vector", "0.51.0", layers=[b"0.51.0"])

        mirror = plan.registry(dest_registry.host).username("user").password("secret").build()
        source = (
            plan.image(source_registry.name("org/vector")).version("0.50.0").digest(pinned).build()
        )
        plan.version_check("vector").source(source).build()
        source_scan = plan.scan("vector-source").source(source).build()
        mirrored = (
            plan.sync("vector")
            .source(source, source_scan)
            .destination(
                plan.image(dest_registry.name("mirror/vector")).version("0.50.0").build(),
                mirror,
            )
            .build()
        )
        plan.scan("vector-mirror").source(mirrored, mirror).build()
        assert mirrored.is_pending

        await plan.execute()

        assert mirrored.digest == pinned
        assert plan.syncs[0].dest_digest == pinned
        assert dest_registry.tags("mirror/vector") == ["0.50.0"]

        scanned = [call[0] for call in runtime.fake_scanner.calls]
        assert scanned == [
            f"{source.name}@{pinned}",
            f"{mirrored.name}@{pinned}",
        ]
        assert runtime.fake_scanner.calls[1][2].host == dest_registry.host

        updates = [e for e in captured_logs if e["event"] == "update available"]
        assert len(updates) == 1
        assert updates[0]["latest"] == "0.51.0"
        assert updates[0]["version_check"] == "vector"

    async def test_sync_failure_stops_plan(self, plan, runtime, source_registry, dest_registry):
        mirror = plan.registry(dest_registry.host).username("user").password("secret").build()
        source = plan.image(source_registry.name("org/none")).version("1.0").digest(DIGEST).build()
        plan.sync("none").source(source).destination(
            plan.image(dest_registry.name("mirror/none")).version("1.0").build(), mirror
        ).build()
        plan.scan("later").source(new_pinned_image(plan)).build()

        with pytest.raises(ResourceExecutionError) as excinfo:
            await plan.execute()

        assert excinfo.value.stage == "syncs"
        assert excinfo.value.kind == "sync"
        assert excinfo.value.name == "none"
        assert isinstance(excinfo.value.__cause__, SyncError)
        assert runtime.fake_scanner.calls == []

    async def test_digest_pin_mismatch(self, plan, source_registry):
        source_registry.add_image("org/app", "1.0")
        source_registry.add_image("org/app", "1.1")
        image = plan.image(source_registry.name("org/app")).version("1.0").digest(DIGEST).build()
        plan.version_check("app").source(image).build()

        with pytest.raises(ResourceExecutionError) as excinfo:
            await plan.execute()

        cause = excinfo.value.__cause__
        assert isinstance(cause, DigestMismatchError)
        assert "DIGEST MISMATCH" in str(cause)
        # The update check never ran
        assert not any("tags/list" in path for _, path in source_registry.requests)

    async def test_unpinned_version_check_suggests_digest(
        self, plan, source_registry, captured_logs
    ):
        current = source_registry.add_image("org/app", "1.0")
        image = plan.image(source_registry.name("org/app")).version("1.0").build()
        plan.version_check("app").source(image).build()

        await plan.execute()

        warnings = [e["event"] for e in captured_logs if e["log_level"] == "warning"]
        assert any(f'.digest("{current}")' in event for event in warnings)
        assert any(e["event"] == "up to date" for e in captured_logs)


@pytest.mark.asyncio
class TestScanExecution:
    """Test scan digest enforcement and severity actions."""

    async def test_undigested_image_fails_at_execution(self, plan, runtime):
        image = plan.image("ghcr.io/org/app").version("1.0").build()
        plan.scan("app").source(image).build()

        with pytest.raises(ResourceExecutionError) as excinfo:
            await plan.execute()

        assert excinfo.value.stage == "scans"
        assert isinstance(excinfo.value.__cause__, ScanError)
        assert "MUST have digest" in str(excinfo.value.__cause__)
        assert runtime.fake_scanner.calls == []

    async def test_error_threshold(self, settings):
        runtime = FakeRuntime(scanner=FakeScanner(_report("HIGH", "LOW")))
        plan = Plan("scan", runtime=runtime, settings=settings)
        plan.scan("app").source(new_pinned_image(plan)).build()

        with pytest.raises(ResourceExecutionError) as excinfo:
            await plan.execute()

        assert isinstance(excinfo.value.__cause__, ScanThresholdError)
        assert runtime.fake_scanner.calls[0][0] == f"ghcr.io/org/app@{DIGEST}"

    async def test_warn_continues(self, settings, captured_logs):
        runtime = FakeRuntime(scanner=FakeScanner(_report("MEDIUM", "HIGH")))
        plan = Plan("scan", runtime=runtime, settings=settings)
        (
            plan.scan("app")
            .source(new_pinned_image(plan))
            .severity("MEDIUM", "warn")
            .severity("CRITICAL", "error")
            .build()
        )

        await plan.execute()

        matches = [
            e for e in captured_logs if e["event"] == "vulnerabilities found at or above threshold"
        ]
        assert len(matches) == 1
        assert matches[0]["log_level"] == "warning"
        assert matches[0]["count"] == 2
        assert any(e["event"] == "scan complete" for e in captured_logs)

    async def test_info_action_logs_report(self, settings, captured_logs):
        runtime = FakeRuntime(scanner=FakeScanner(_report("LOW")))
        plan = Plan("scan", runtime=runtime, settings=settings)
        plan.scan("app").source(new_pinned_image(plan)).severity("LOW", "info").format(
            "json"
        ).build()

        await plan.execute()

        assert any("CVE-2024-0000" in e["event"] for e in captured_logs if e["log_level"] == "info")


@pytest.mark.asyncio
class TestBuildAndAudit:
    """Test build and audit resources with fake tools."""

    async def test_build_runs_on_first_node(self, plan, runtime):
        registry = plan.registry("ghcr.io").username("user").password("token").build()
        amd = plan.build_node("amd").endpoint("amd-host").platform(Platform.AMD64).build()
        arm = plan.build_node("arm").endpoint("arm-host").platform(Platform.ARM64).build()
        (
            plan.build("app")
            .context("./app")
            .node(amd)
            .node(arm)
            .registry(registry)
            .tag("ghcr.io/org/app:1.0")
            .build()
        )

        await plan.execute()

        assert runtime.build_calls == [
            ("upload", "amd-host", "./app", "/tmp/cranberry-build-app"),
            (
                "build",
                "/tmp/cranberry-build-app",
                "/tmp/cranberry-build-app/Dockerfile",
                ["linux/amd64", "linux/arm64"],
                "ghcr.io/org/app:1.0",
            ),
        ]

    async def test_audit_passes(self, plan, runtime):
        image = new_pinned_image(plan)
        plan.audit("app").dockerfile("Dockerfile").source(image).rule_set("minimal").ignore_checks(
            "CIS-DI-0001"
        ).build()

        await plan.execute()

        assert runtime.fake_auditor.calls == [
            ("dockerfile", "Dockerfile"),
            ("image", f"ghcr.io/org/app@{DIGEST}", "minimal", ("CIS-DI-0001",), None),
        ]

    async def test_audit_failure(self, settings):
        runtime = FakeRuntime(auditor=FakeAuditor(image_passed=False))
        plan = Plan("audit", runtime=runtime, settings=settings)
        plan.audit("app").dockerfile("Dockerfile").source(new_pinned_image(plan)).build()

        with pytest.raises(ResourceExecutionError) as excinfo:
            await plan.execute()

        assert excinfo.value.stage == "audits"
        assert isinstance(excinfo.value.__cause__, AuditFailedError)
        # Both targets are audited before failing
        assert len(runtime.fake_auditor.calls) == 2


class CancellingScanner(FakeScanner):
    def __init__(self, context: ExecutionContext) -> None:
        super().__init__(ScanReport())
        self.context = context

    async def scan_image(self, image_ref, severities=(), registry=None):
        self.context.cancel()
        return await super().scan_image(image_ref, severities, registry)


@pytest.mark.asyncio
class TestPlanLifecycle:
    """Test cancellation, dry runs and plan state."""

    async def test_cancel_before_start(self, plan, runtime):
        plan.scan("app").source(new_pinned_image(plan)).build()
        context = ExecutionContext()
        context.cancel()

        with pytest.raises(PlanCancelledError):
            await plan.execute(context)
        assert runtime.fake_scanner.calls == []

    async def test_cancel_between_resources(self, settings):
        context = ExecutionContext()
        runtime = FakeRuntime(scanner=CancellingScanner(context))
        plan = Plan("cancel", runtime=runtime, settings=settings)
        image = new_pinned_image(plan)
        plan.scan("first").source(image).build()
        plan.scan("second").source(image).build()

        with pytest.raises(PlanCancelledError):
            await plan.execute(context)

        # The running resource finished; the next one never started
        assert len(runtime.fake_scanner.calls) == 1

    async def test_plan_is_frozen_after_execute(self, plan):
        await plan.execute()

        with pytest.raises(PlanStateError):
            plan.image("nginx").build()
        with pytest.raises(PlanStateError):
            await plan.execute()

    async def test_dry_run(self, plan, runtime, source_registry, dest_registry):
        mirror = plan.registry(dest_registry.host).username("user").password("secret").build()
        source = plan.image(source_registry.name("org/app")).version("1.0").digest(DIGEST).build()
        mirrored = (
            plan.sync("app")
            .source(source)
            .destination(plan.image(dest_registry.name("mirror/app")).version("1.0").build(), mirror)
            .platforms(Platform.AMD64)
            .build()
        )
        plan.scan("mirror").source(mirrored).build()

        actions = await plan.dry_run()

        assert actions == [
            f"sync {source.name}@{DIGEST} -> {mirrored.name}:1.0 [linux/amd64]",
            f"scan {mirrored.name}:1.0@<pending> (table)",
        ]
        assert source_registry.requests == []
        assert dest_registry.requests == []
        assert runtime.fake_scanner.calls == []
        assert mirrored.is_pending

    async def test_dry_run_from_settings(self, runtime, source_registry, settings):
        plan = Plan(
            "dry", runtime=runtime, settings=CranberrySettings(dry_run=True, registry_timeout=5)
        )
        image = plan.image(source_registry.name("org/app")).version("1.0").build()
        plan.version_check("app").source(image).build()

        await plan.execute()

        assert source_registry.requests == []
        # A dry run does not consume the plan
        plan.image("nginx").build()

    async def test_injected_logger(self, settings, runtime, captured_logs):
        logger = structlog.get_logger("custom").bind(team="infra")
        plan = Plan("logged", logger=logger, runtime=runtime, settings=settings)

        await plan.execute()

        events = [e for e in captured_logs if e["event"] == "executing plan"]
        assert events[0]["team"] == "infra"
        assert events[0]["plan"] == "logged"
