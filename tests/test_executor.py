import io
import json

import pytest

from fleet_reconciler.core.errors import PlanBindingError, PlanStateError, ServiceExecutionFailed
from fleet_reconciler.core.types import InstanceRecord, PlanAction, PlanEntry
from fleet_reconciler.execution.audit import AuditLogger, MemoryCollector
from fleet_reconciler.execution.base import ExecutorConfig
from fleet_reconciler.execution.executor import ExecutorState, PlanExecutor
from fleet_reconciler.execution.mock import InMemoryProvisioner, ProvisionError
from fleet_reconciler.intent.desired import parse_desired_config
from fleet_reconciler.inventory.services import default_catalog
from fleet_reconciler.inventory.store import DeployedInventory
from fleet_reconciler.planner.generator import PlanGenerator
from fleet_reconciler.planner.plan import Plan

CATALOG = default_catalog()


def make_records() -> list[InstanceRecord]:
    records = [
        InstanceRecord(service="moray", instance_id=f"m{i}", node="cn001", image="img002", shard="2")
        for i in range(3)
    ]
    records.append(InstanceRecord(service="medusa", instance_id="md0", node="cn001", image="img004"))
    return records


def make_plan(desired: dict, records: list[InstanceRecord] | None = None) -> Plan:
    inventory = DeployedInventory.from_instances(records if records is not None else make_records(), CATALOG)
    return PlanGenerator(CATALOG).generate(parse_desired_config(desired, CATALOG), inventory)


@pytest.mark.asyncio
async def test_dry_run_renders_every_action():
    plan = make_plan(
        {
            "cn001": {
                "moray": {"2": {"img003": 1, "img002": 1}},
                "medusa": {"img004": 1, "img005": 1},
            }
        }
    )
    out = io.StringIO()
    executor = PlanExecutor(CATALOG, config=ExecutorConfig(dry_run=True), out=out)

    report = await executor.execute(plan)

    assert report.lines == [
        'service "moray"',
        '  node "cn001":',
        "    shard 2: reprovision instance m0",
        "        (old image: img002)",
        "        (new image: img003)",
        "    shard 2: deprovision instance m1",
        "        (image: img002)",
        'service "medusa"',
        '  node "cn001":',
        "    provision (image img005)",
    ]
    assert out.getvalue().splitlines() == report.lines
    assert report.services_touched == 2
    assert report.outcomes == []
    assert executor.state == ExecutorState.done


@pytest.mark.asyncio
async def test_dry_run_of_empty_plan():
    executor = PlanExecutor(CATALOG, config=ExecutorConfig(dry_run=True))

    report = await executor.execute(Plan())

    assert report.lines == ["nothing to do"]
    assert report.services_touched == 0


@pytest.mark.asyncio
async def test_apply_reaches_desired_state():
    records = make_records()
    desired = {
        "cn001": {
            "moray": {"2": {"img003": 2}},
            "medusa": {"img004": 2},
        },
        "cn002": {"webapi": {"img010": 1}},
    }
    prov = InMemoryProvisioner.seeded(records)
    collector = MemoryCollector()
    executor = PlanExecutor(CATALOG, provisioner=prov, collector=collector)

    report = await executor.execute(make_plan(desired, records))

    assert report.ok
    assert report.services_touched == 3
    assert len(collector.outcomes) == len(report.outcomes)
    assert [c[0] for c in prov.calls if c[0] == "reprovision"] == ["reprovision", "reprovision"]

    again = PlanGenerator(CATALOG).generate(parse_desired_config(desired, CATALOG), prov.inventory(CATALOG))
    assert again.is_empty()


@pytest.mark.asyncio
async def test_failing_node_halts_before_next_service():
    desired = {
        "cn1": {"webapi": {"img1": 2}, "loadbalancer": {"img2": 1}},
        "cn2": {"webapi": {"img1": 1}, "loadbalancer": {"img2": 1}},
    }
    prov = InMemoryProvisioner(fail_nodes={"cn1"})
    executor = PlanExecutor(CATALOG, provisioner=prov)

    with pytest.raises(ServiceExecutionFailed) as excinfo:
        await executor.execute(make_plan(desired, []))

    err = excinfo.value
    assert err.service == "webapi"
    assert [e.node for e in err.errors] == ["cn1"]
    assert err.errors[0].action == "provision"
    assert isinstance(err.errors[0].__cause__, ProvisionError)

    assert [c[1:3] for c in prov.calls] == [("webapi", "cn1"), ("webapi", "cn2")]

    report = executor.report()
    assert not report.ok
    assert sorted((o.node, o.ok) for o in report.outcomes) == [("cn1", False), ("cn2", True)]
    assert executor.state == ExecutorState.done


@pytest.mark.asyncio
async def test_failures_on_several_nodes_are_aggregated():
    desired = {
        f"cn{i}": {"webapi": {"img1": 1}, "loadbalancer": {"img2": 1}}
        for i in (1, 2, 3)
    }
    prov = InMemoryProvisioner(fail_nodes={"cn1", "cn3"})
    executor = PlanExecutor(CATALOG, provisioner=prov)

    with pytest.raises(ServiceExecutionFailed) as excinfo:
        await executor.execute(make_plan(desired, []))

    err = excinfo.value
    assert err.service == "webapi"
    assert sorted(e.node for e in err.errors) == ["cn1", "cn3"]
    assert "2 node(s) failed" in str(err)

    outcomes = {o.node: o.ok for o in executor.report().outcomes}
    assert outcomes == {"cn1": False, "cn2": True, "cn3": False}
    assert all(c[1] == "webapi" for c in prov.calls)


@pytest.mark.asyncio
async def test_unbound_deprovision_fails_its_node():
    plan = Plan()
    plan.add(
        PlanEntry(
            node="cn1",
            service="medusa",
            fields=("image",),
            key=("img004",),
            action=PlanAction.deprovision,
            reason="fewer wanted",
        )
    )
    prov = InMemoryProvisioner()

    with pytest.raises(ServiceExecutionFailed) as excinfo:
        await PlanExecutor(CATALOG, provisioner=prov).execute(plan)

    assert isinstance(excinfo.value.errors[0].__cause__, PlanBindingError)
    assert prov.calls == []


@pytest.mark.asyncio
async def test_serial_service_runs_one_node_at_a_time():
    desired = {f"cn{i}": {"storage": {"img1": 1}, "webapi": {"img1": 1}} for i in range(3)}
    prov = InMemoryProvisioner(delay=0.01)

    await PlanExecutor(CATALOG, provisioner=prov).execute(make_plan(desired, []))

    assert prov.peak_concurrency["storage"] == 1
    assert prov.peak_concurrency["webapi"] == 3


@pytest.mark.asyncio
async def test_executor_is_single_use():
    executor = PlanExecutor(CATALOG, config=ExecutorConfig(dry_run=True))
    await executor.execute(Plan())

    with pytest.raises(PlanStateError):
        await executor.execute(Plan())


@pytest.mark.asyncio
async def test_apply_requires_provisioner():
    executor = PlanExecutor(CATALOG)

    with pytest.raises(PlanStateError):
        await executor.execute(Plan())
    assert executor.state == ExecutorState.idle


@pytest.mark.asyncio
async def test_audit_logger_writes_json_lines(tmp_path):
    path = tmp_path / "audit" / "actions.jsonl"
    prov = InMemoryProvisioner()
    executor = PlanExecutor(CATALOG, provisioner=prov, collector=AuditLogger(path))

    await executor.execute(make_plan({"cn1": {"medusa": {"img004": 2}}}, []))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    payload = json.loads(lines[0])
    assert payload["action"] == PlanAction.provision.value
    assert payload["service"] == "medusa"
    assert payload["ok"] is True
    assert payload["instance_id"].startswith("medusa-")
    assert "ts_unix" in payload
