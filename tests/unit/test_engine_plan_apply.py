from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from infra_provisioner.core.errors import ProviderPermanentError, ProviderTransientError
from infra_provisioner.core.provider import LocalProvider
from infra_provisioner.core.state import State
from infra_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    LockHeldError,
    StalePlanError,
    StateStackMismatchError,
)
from infra_provisioner.engine.lock import StateLock
from infra_provisioner.engine.types import Action, Plan
from infra_provisioner.resources import (
    Lifecycle,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)


class RecordingProvider(LocalProvider):
    """Local provider that logs calls and can be told to fail."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls: list[tuple[str, str, str]] = []
        self.fail_create: dict[str, Exception] = {}
        self.transient_failures: dict[str, int] = {}
        self._calls_lock = threading.Lock()

    def _log(self, op: str, resource_type: str, ident: str) -> None:
        with self._calls_lock:
            self.calls.append((op, resource_type, ident))

    def create(self, resource_type: str, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        name = attributes["name"]
        key = f"{resource_type}.{name}"
        if key in self.fail_create:
            raise self.fail_create[key]
        if self.transient_failures.get(key, 0) > 0:
            self.transient_failures[key] -= 1
            raise ProviderTransientError(f"throttled creating {key}")
        id, attrs = super().create(resource_type, attributes)
        self._log("create", resource_type, id)
        return id, attrs

    def delete(self, resource_type: str, id: str) -> None:
        super().delete(resource_type, id)
        self._log("delete", resource_type, id)


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


def _index(calls: list[tuple[str, str, str]], op: str, ident: str) -> int:
    return next(i for i, c in enumerate(calls) if c[0] == op and c[2] == ident)


class TestApply:
    def test_creates_resources_and_resolves_references(
        self, make_engine, provider, network_stack
    ) -> None:
        engine = make_engine()
        result = engine.apply(engine.plan(network_stack()))

        assert result.ok
        assert [c.address for c in result.applied][0] == "aws_vpc.main"
        state = State.load(engine.state_path)
        assert set(state.resources) == {
            "aws_vpc.main",
            "aws_subnet.public_a",
            "aws_security_group.web",
            "aws_instance.web",
        }
        subnet = state.resources["aws_subnet.public_a"]
        instance = state.resources["aws_instance.web"]
        assert subnet.attributes["vpc_id"] == state.resources["aws_vpc.main"].id
        assert instance.attributes["subnet_id"] == subnet.id
        assert instance.attributes["security_group_ids"] == [
            state.resources["aws_security_group.web"].id
        ]
        assert instance.dependencies == ["aws_subnet.public_a", "aws_security_group.web"]
        assert instance.attributes["private_ip"].startswith("10.0.")

    def test_second_plan_is_empty(self, make_engine, network_stack) -> None:
        engine = make_engine()
        engine.apply(engine.plan(network_stack()))

        again = engine.plan(network_stack())
        assert not again.has_changes()
        assert {c.action for c in again.changes} == {Action.NOOP}

    def test_update_in_place_keeps_id(self, make_engine, network_stack) -> None:
        engine = make_engine()
        engine.apply(engine.plan(network_stack()))
        before = State.load(engine.state_path).resources["aws_instance.web"].id

        plan = engine.plan(network_stack(instance_type="t3.large"))
        assert plan.summary()["update"] == 1
        engine.apply(plan)

        record = State.load(engine.state_path).resources["aws_instance.web"]
        assert record.id == before
        assert record.attributes["instance_type"] == "t3.large"

    def test_destroy_removes_dependents_first(self, make_engine, provider, network_stack) -> None:
        engine = make_engine()
        engine.apply(engine.plan(network_stack()))
        state = State.load(engine.state_path)
        ids = {addr: r.id for addr, r in state.resources.items()}

        engine.apply(engine.plan(network_stack(), destroy=True))

        assert State.load(engine.state_path).resources == {}
        assert provider.ids() == []
        calls = provider.calls
        assert _index(calls, "delete", ids["aws_instance.web"]) < _index(
            calls, "delete", ids["aws_subnet.public_a"]
        )
        assert _index(calls, "delete", ids["aws_subnet.public_a"]) < _index(
            calls, "delete", ids["aws_vpc.main"]
        )
        assert _index(calls, "delete", ids["aws_security_group.web"]) < _index(
            calls, "delete", ids["aws_vpc.main"]
        )

    def test_saved_plan_round_trip(self, make_engine, network_stack, tmp_path) -> None:
        engine = make_engine()
        plan_file = tmp_path / "plan.json"
        engine.plan(network_stack()).save(plan_file)

        result = engine.apply(Plan.load(plan_file))
        assert result.ok
        assert len(State.load(engine.state_path).resources) == 4

    def test_ready_after_waits_for_available(self, make_engine, clock, network_stack) -> None:
        engine = make_engine(provider=LocalProvider(ready_after=2))
        engine.apply(engine.plan(network_stack()))

        state = State.load(engine.state_path)
        assert {r.attributes["status"] for r in state.resources.values()} == {"available"}
        assert clock.sleeps


class TestReplace:
    def test_destroy_before_create_by_default(self, make_engine, provider) -> None:
        engine = make_engine()
        engine.apply(engine.plan([VpcResource(name="main", cidr_block="10.0.0.0/16")]))
        old_id = State.load(engine.state_path).resources["aws_vpc.main"].id

        engine.apply(engine.plan([VpcResource(name="main", cidr_block="10.1.0.0/16")]))

        record = State.load(engine.state_path).resources["aws_vpc.main"]
        assert record.id != old_id
        assert record.attributes["cidr_block"] == "10.1.0.0/16"
        assert provider.ids() == [record.id]
        assert _index(provider.calls, "delete", old_id) < _index(
            provider.calls, "create", record.id
        )

    def test_create_before_destroy(self, make_engine, tmp_path) -> None:
        state_path = tmp_path / "state.json"
        recorded_at_delete: list[str] = []

        class StateCheckingProvider(RecordingProvider):
            def delete(self, resource_type: str, id: str) -> None:
                recorded_at_delete.append(State.load(state_path).resources["aws_vpc.main"].id)
                super().delete(resource_type, id)

        provider = StateCheckingProvider()
        cbd = Lifecycle(create_before_destroy=True)
        engine = make_engine(provider=provider, state_path=state_path)
        engine.apply(
            engine.plan([VpcResource(name="main", cidr_block="10.0.0.0/16", lifecycle=cbd)])
        )
        old_id = State.load(engine.state_path).resources["aws_vpc.main"].id

        result = engine.apply(
            engine.plan([VpcResource(name="main", cidr_block="10.1.0.0/16", lifecycle=cbd)])
        )

        assert result.ok
        record = State.load(engine.state_path).resources["aws_vpc.main"]
        assert record.deposed == []
        assert provider.ids() == [record.id]
        # The new id was already committed when the old object was deleted.
        assert record.id != old_id
        assert recorded_at_delete == [record.id]
        assert _index(provider.calls, "create", record.id) < _index(
            provider.calls, "delete", old_id
        )

    def test_create_before_destroy_waits_for_repointed_dependents(
        self, make_engine, provider
    ) -> None:
        cbd = Lifecycle(create_before_destroy=True)

        def stack(cidr: str) -> list:
            vpc = VpcResource(name="main", cidr_block=cidr, lifecycle=cbd)
            subnet = SubnetResource(name="a", vpc_id=vpc.ref(), cidr_block="10.0.1.0/24")
            return [vpc, subnet]

        engine = make_engine()
        engine.apply(engine.plan(stack("10.0.0.0/16")))
        old_vpc = State.load(engine.state_path).resources["aws_vpc.main"].id

        engine.apply(engine.plan(stack("10.1.0.0/16")))

        state = State.load(engine.state_path)
        new_vpc = state.resources["aws_vpc.main"].id
        new_subnet = state.resources["aws_subnet.a"].id
        assert state.resources["aws_subnet.a"].attributes["vpc_id"] == new_vpc
        calls = provider.calls
        assert _index(calls, "create", new_vpc) < _index(calls, "create", new_subnet)
        assert _index(calls, "create", new_subnet) < _index(calls, "delete", old_vpc)

    def test_leftover_deposed_object_is_cleaned_up(self, make_engine, provider) -> None:
        engine = make_engine()
        vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
        engine.apply(engine.plan([vpc]))
        orphan, _ = provider.create("aws_vpc", {"name": "main", "cidr_block": "10.0.0.0/16"})

        state = State.load(engine.state_path)
        state.resources["aws_vpc.main"].deposed = [orphan]
        state.save(engine.state_path)

        plan = engine.plan([vpc])
        assert [c.key for c in plan.changes if c.deposed_id] == [f"aws_vpc.main#{orphan}"]
        engine.apply(plan)

        assert orphan not in provider.ids()
        assert State.load(engine.state_path).resources["aws_vpc.main"].deposed == []


def _security_groups(*, a_after_b: bool, revision: str = "") -> list:
    """VPC plus two security groups ordered against each other with ``depends_on``."""
    vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
    a = SecurityGroupResource(
        name="a",
        vpc_id=vpc.ref(),
        depends_on=["aws_security_group.b"] if a_after_b else [],
    )
    b = SecurityGroupResource(
        name="b",
        vpc_id=vpc.ref(),
        depends_on=[] if a_after_b else ["aws_security_group.a"],
        tags={"revision": revision} if revision else {},
    )
    return [vpc, a, b]


class TestRecordedDependencies:
    def test_flipped_depends_on_keeps_state_acyclic(self, make_engine, provider) -> None:
        engine = make_engine()
        engine.apply(engine.plan(_security_groups(a_after_b=True)))

        plan = engine.plan(_security_groups(a_after_b=False, revision="2"))
        actions = {c.address: c.action for c in plan.changes}
        assert actions["aws_security_group.a"] == Action.NOOP
        assert actions["aws_security_group.b"] == Action.UPDATE
        result = engine.apply(plan)
        assert [c.address for c in result.applied] == ["aws_security_group.b"]

        records = State.load(engine.state_path).resources
        assert set(records["aws_security_group.a"].dependencies) == {"aws_vpc.main"}
        assert set(records["aws_security_group.b"].dependencies) == {
            "aws_vpc.main",
            "aws_security_group.a",
        }

        ids = {addr: r.id for addr, r in records.items()}
        assert engine.apply(engine.plan([], destroy=True)).ok
        assert provider.ids() == []
        assert _index(provider.calls, "delete", ids["aws_security_group.b"]) < _index(
            provider.calls, "delete", ids["aws_security_group.a"]
        )

    def test_dependency_only_change_skips_provider(self, make_engine, provider) -> None:
        engine = make_engine()
        engine.apply(engine.plan(_security_groups(a_after_b=True)))
        calls_before = list(provider.calls)

        plan = engine.plan(_security_groups(a_after_b=False))
        assert not plan.has_changes()
        result = engine.apply(plan)

        assert result.ok
        assert result.applied == []
        assert provider.calls == calls_before
        records = State.load(engine.state_path).resources
        assert "aws_security_group.b" not in records["aws_security_group.a"].dependencies
        assert "aws_security_group.a" in records["aws_security_group.b"].dependencies
        assert engine.apply(engine.plan([], destroy=True)).ok


class TestParallelism:
    class SlowProvider(LocalProvider):
        """Counts creates running at the same time."""

        def __init__(self) -> None:
            super().__init__()
            self.in_flight = 0
            self.peak = 0
            self._gauge = threading.Lock()

        def create(
            self, resource_type: str, attributes: dict[str, Any]
        ) -> tuple[str, dict[str, Any]]:
            with self._gauge:
                self.in_flight += 1
                self.peak = max(self.peak, self.in_flight)
            try:
                time.sleep(0.1)
                return super().create(resource_type, attributes)
            finally:
                with self._gauge:
                    self.in_flight -= 1

    @staticmethod
    def _vpcs(count: int) -> list:
        return [VpcResource(name=f"v{i}", cidr_block=f"10.{i}.0.0/16") for i in range(count)]

    def test_independent_branches_overlap_up_to_parallelism(self, make_engine) -> None:
        provider = self.SlowProvider()
        engine = make_engine(provider=provider, parallelism=3)

        assert engine.apply(engine.plan(self._vpcs(6))).ok
        assert provider.peak == 3
        assert len(provider.ids()) == 6

    def test_parallelism_one_runs_sequentially(self, make_engine) -> None:
        provider = self.SlowProvider()
        engine = make_engine(provider=provider, parallelism=1)

        assert engine.apply(engine.plan(self._vpcs(3))).ok
        assert provider.peak == 1


class TestFailures:
    def test_failure_blocks_only_dependents(self, make_engine, provider, network_stack) -> None:
        provider.fail_create["aws_subnet.public_a"] = ProviderPermanentError("quota exceeded")
        engine = make_engine()

        with pytest.raises(ApplyError) as exc_info:
            engine.apply(engine.plan(network_stack()))

        result = exc_info.value.result
        assert [f.address for f in result.failed] == ["aws_subnet.public_a"]
        assert "quota exceeded" in result.failed[0].error
        assert [(b.address, b.cause) for b in result.blocked] == [
            ("aws_instance.web", "aws_subnet.public_a")
        ]
        applied = {c.address for c in result.applied}
        assert applied == {"aws_vpc.main", "aws_security_group.web"}
        assert set(State.load(engine.state_path).resources) == applied

    def test_rerun_after_failure_converges(self, make_engine, provider, network_stack) -> None:
        provider.fail_create["aws_subnet.public_a"] = ProviderPermanentError("quota exceeded")
        engine = make_engine()
        with pytest.raises(ApplyError):
            engine.apply(engine.plan(network_stack()))

        del provider.fail_create["aws_subnet.public_a"]
        plan = engine.plan(network_stack())
        assert plan.summary()["create"] == 2
        assert engine.apply(plan).ok

    def test_transient_errors_are_retried(
        self, make_engine, provider, clock, network_stack
    ) -> None:
        provider.transient_failures["aws_vpc.main"] = 2
        engine = make_engine()

        result = engine.apply(engine.plan(network_stack()))

        assert result.ok
        assert clock.sleeps[:2] == [1.0, 2.0]

    def test_retry_exhaustion_reports_attempts(self, make_engine, provider) -> None:
        provider.transient_failures["aws_vpc.main"] = 99
        engine = make_engine()

        with pytest.raises(ApplyError) as exc_info:
            engine.apply(engine.plan([VpcResource(name="main", cidr_block="10.0.0.0/16")]))

        failure = exc_info.value.result.failed[0]
        assert failure.attempts == 3
        assert "gave up after 3 attempts" in failure.error

    def test_readiness_timeout_keeps_created_record(self, make_engine, clock) -> None:
        class NeverReady(LocalProvider):
            def is_ready(self, resource_type: str, attributes: dict[str, Any]) -> bool:
                return False

        engine = make_engine(provider=NeverReady(), ready_timeout=10.0)
        with pytest.raises(ApplyError) as exc_info:
            engine.apply(engine.plan([VpcResource(name="main", cidr_block="10.0.0.0/16")]))

        assert "not ready after 10s" in exc_info.value.result.failed[0].error
        assert "aws_vpc.main" in State.load(engine.state_path).resources
        assert clock.now >= 10.0

    def test_cancel_before_start(self, make_engine, provider, network_stack) -> None:
        engine = make_engine()
        plan = engine.plan(network_stack())
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ApplyCanceled) as exc_info:
            engine.apply(plan, cancel=cancel)

        result = exc_info.value.result
        assert result is not None
        assert len(result.canceled) == 4
        assert provider.ids() == []


class TestStaleAndLocking:
    def test_stale_plan_is_rejected(self, make_engine, network_stack) -> None:
        engine = make_engine()
        first = engine.plan(network_stack())
        engine.apply(engine.plan(network_stack()))

        with pytest.raises(StalePlanError):
            engine.apply(first)

    def test_stack_mismatch(self, make_engine, tmp_path) -> None:
        State(stack="other").save(tmp_path / "state.json")
        engine = make_engine()
        with pytest.raises(StateStackMismatchError):
            engine.plan([])

    def test_held_lock_blocks_plan_with_refresh(self, make_engine, tmp_path) -> None:
        engine = make_engine()
        with StateLock(tmp_path / "state.json", operation="apply", heartbeat_interval=0):
            with pytest.raises(LockHeldError) as exc_info:
                engine.plan([])
        assert exc_info.value.stale is False

    def test_plan_without_refresh_does_not_lock(self, make_engine, tmp_path) -> None:
        engine = make_engine()
        with StateLock(tmp_path / "state.json", operation="apply", heartbeat_interval=0):
            plan = engine.plan([], refresh=False)
        assert plan.changes == []

    def test_lock_released_after_apply(self, make_engine, network_stack, tmp_path) -> None:
        engine = make_engine()
        engine.apply(engine.plan(network_stack()))
        assert not (tmp_path / "state.json.lock").exists()
