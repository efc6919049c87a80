from __future__ import annotations

from infra_provisioner.core.state import State
from infra_provisioner.engine.types import Action


def _applied(make_engine, network_stack):
    engine = make_engine()
    engine.apply(engine.plan(network_stack()))
    return engine, State.load(engine.state_path)


class TestDrift:
    def test_no_drift_after_apply(self, make_engine, network_stack) -> None:
        engine, _ = _applied(make_engine, network_stack)
        assert engine.drift() == []

    def test_modified_attribute(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        instance_id = state.resources["aws_instance.web"].id
        provider.tamper(instance_id, instance_type="t3.large")

        report = engine.drift()

        assert len(report) == 1
        assert report[0].address == "aws_instance.web"
        assert report[0].status == "modified"
        assert report[0].diff == {"instance_type": {"from": "t3.micro", "to": "t3.large"}}

    def test_deleted_object(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        provider.forget(state.resources["aws_security_group.web"].id)

        report = engine.drift()
        assert [(d.address, d.status) for d in report] == [("aws_security_group.web", "deleted")]

    def test_drift_never_writes(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        provider.tamper(state.resources["aws_vpc.main"].id, cidr_block="10.9.0.0/16")

        engine.drift()
        assert State.load(engine.state_path).serial == state.serial


class TestRefresh:
    def test_without_persist_leaves_file(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        provider.tamper(state.resources["aws_instance.web"].id, instance_type="t3.large")

        before, after = engine.refresh()

        assert before.resources["aws_instance.web"].attributes["instance_type"] == "t3.micro"
        assert after.resources["aws_instance.web"].attributes["instance_type"] == "t3.large"
        assert State.load(engine.state_path).serial == state.serial

    def test_persist_updates_record_and_hash(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        old = state.resources["aws_instance.web"]
        provider.tamper(old.id, instance_type="t3.large")

        engine.refresh(persist=True)

        saved = State.load(engine.state_path)
        record = saved.resources["aws_instance.web"]
        assert saved.serial == state.serial + 1
        assert record.attributes["instance_type"] == "t3.large"
        assert record.attributes_hash != old.attributes_hash
        assert engine.drift() == []

    def test_unchanged_state_is_not_rewritten(self, make_engine, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        engine.refresh(persist=True)
        assert State.load(engine.state_path).serial == state.serial

    def test_vanished_object_is_dropped(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        provider.forget(state.resources["aws_instance.web"].id)

        _, after = engine.refresh(persist=True)

        assert "aws_instance.web" not in after.resources
        assert "aws_instance.web" not in State.load(engine.state_path).resources


class TestPlanAfterDrift:
    def test_drifted_attribute_is_corrected(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        instance_id = state.resources["aws_instance.web"].id
        provider.tamper(instance_id, instance_type="t3.large")

        plan = engine.plan(network_stack())
        change = next(c for c in plan.changes if c.address == "aws_instance.web")
        assert change.action == Action.UPDATE
        assert change.diff == {"instance_type": {"from": "t3.large", "to": "t3.micro"}}

        engine.apply(plan)
        assert provider.describe("aws_instance", instance_id)["instance_type"] == "t3.micro"

    def test_vanished_object_is_recreated(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        old_id = state.resources["aws_security_group.web"].id
        provider.forget(old_id)

        plan = engine.plan(network_stack())
        actions = {c.address: c.action for c in plan.changes}
        assert actions["aws_security_group.web"] == Action.CREATE

        engine.apply(plan)
        new_id = State.load(engine.state_path).resources["aws_security_group.web"].id
        assert new_id != old_id
        assert new_id in provider.ids("aws_security_group")

    def test_no_refresh_plan_ignores_drift(self, make_engine, provider, network_stack) -> None:
        engine, state = _applied(make_engine, network_stack)
        provider.tamper(state.resources["aws_instance.web"].id, instance_type="t3.large")

        plan = engine.plan(network_stack(), refresh=False)
        assert not plan.has_changes()
