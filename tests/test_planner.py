import copy

import pytest

from fleet_reconciler.core.errors import PolicyRejected, UnknownService
from fleet_reconciler.core.serialization import plan_to_json
from fleet_reconciler.core.types import ANY_NODE, InstanceRecord, PlanAction
from fleet_reconciler.intent.desired import parse_desired_config
from fleet_reconciler.inventory.services import ServiceSpec, default_catalog
from fleet_reconciler.inventory.store import DeployedInventory
from fleet_reconciler.planner.generator import PlanGenerator, PlannerConfig

CATALOG = default_catalog()

LAYOUT = {
    "cn001": {
        "marlin": {"img001": 10},
        "moray": {"1": {"img002": 3}, "2": {"img002": 3}, "3": {"img002": 3}},
        "medusa": {"img004": 2},
    },
    "cn002": {
        "marlin": {"img001": 10},
        "moray": {"1": {"img002": 3}, "2": {"img002": 3}, "3": {"img002": 3}},
    },
    "cn003": {
        "marlin": {"img001": 10},
        "postgres": {"1": {"img003": 3}, "2": {"img003": 3}, "3": {"img003": 3}},
    },
    "cn004": {
        "marlin": {"img001": 2},
        "postgres": {"1": {"img003": 1}, "2": {"img003": 1}},
    },
}


def _records(layout: dict) -> list[InstanceRecord]:
    """Expand a node, service, shard, image layout into instance records."""
    out: list[InstanceRecord] = []
    for node, services in layout.items():
        for service, body in services.items():
            if CATALOG.is_sharded(service):
                rows = [(shard, img, n) for shard, imgs in body.items() for img, n in imgs.items()]
            else:
                rows = [(None, img, n) for img, n in body.items()]
            for shard, img, n in rows:
                for i in range(n):
                    sh = shard or "x"
                    out.append(
                        InstanceRecord(
                            service=service,
                            instance_id=f"{node}-{service}-{sh}-{img}-{i}",
                            node=node,
                            image=img,
                            shard=shard,
                        )
                    )
    return out


def _inventory(layout: dict = LAYOUT) -> DeployedInventory:
    return DeployedInventory.from_instances(_records(layout), CATALOG)


def _plan(desired: dict, inventory: DeployedInventory | None = None, **config):
    generator = PlanGenerator(CATALOG, PlannerConfig(**config))
    if inventory is None:
        inventory = _inventory()
    return generator.generate(parse_desired_config(desired, CATALOG), inventory)


def _summary(plan, props=("node", "service", "action", "image", "shard")):
    return [{k: row[k] for k in props} for row in plan.dump(CATALOG)]


def _changed(change) -> dict:
    desired = copy.deepcopy(LAYOUT)
    change(desired)
    return desired


def test_no_change_gives_empty_plan():
    plan = _plan(copy.deepcopy(LAYOUT))

    assert plan.is_empty()
    assert plan.dump(CATALOG) == []


def test_remove_one_instance_binds_first_sorted_instance():
    def change(d):
        d["cn001"]["medusa"]["img004"] = 1

    rows = _plan(_changed(change)).dump(CATALOG)

    assert rows == [
        {
            "node": "cn001",
            "service": "medusa",
            "action": "deprovision",
            "instance_id": "cn001-medusa-x-img004-0",
            "image": "img004",
            "shard": None,
        }
    ]


def test_deploy_two_instances():
    def change(d):
        d["cn001"]["medusa"]["img004"] = 4

    plan = _plan(_changed(change))

    assert _summary(plan, ("node", "service", "action", "image")) == [
        {"node": "cn001", "service": "medusa", "action": "provision", "image": "img004"},
        {"node": "cn001", "service": "medusa", "action": "provision", "image": "img004"},
    ]
    assert all(e.reason == "more wanted" for e in plan)


def test_remove_a_service():
    def change(d):
        del d["cn001"]["medusa"]

    plan = _plan(_changed(change))

    assert [(e.service, e.action, e.reason) for e in plan] == [
        ("medusa", PlanAction.deprovision, "service no longer used"),
        ("medusa", PlanAction.deprovision, "service no longer used"),
    ]


def test_remove_a_node_follows_catalog_order():
    def change(d):
        del d["cn004"]

    plan = _plan(_changed(change))

    assert _summary(plan) == [
        {"node": "cn004", "service": "postgres", "action": "deprovision", "image": "img003", "shard": "1"},
        {"node": "cn004", "service": "postgres", "action": "deprovision", "image": "img003", "shard": "2"},
        {"node": "cn004", "service": "marlin", "action": "deprovision", "image": "img001", "shard": None},
        {"node": "cn004", "service": "marlin", "action": "deprovision", "image": "img001", "shard": None},
    ]
    assert {e.reason for e in plan} == {"node no longer used"}


def test_add_a_service_and_a_node():
    def change(d):
        d["cn004"]["medusa"] = {"img004": 2}
        d["cn005"] = {"medusa": {"img004": 1}}

    plan = _plan(_changed(change))

    assert [(e.node, e.action) for e in plan] == [
        ("cn004", PlanAction.provision),
        ("cn004", PlanAction.provision),
        ("cn005", PlanAction.provision),
    ]


def test_upgrade_fuses_into_reprovision():
    def change(d):
        d["cn001"]["medusa"] = {"img004": 1, "img005": 2}

    plan = _plan(_changed(change))
    entries = list(plan)

    assert [(e.action, e.image) for e in entries] == [
        (PlanAction.reprovision, "img005"),
        (PlanAction.provision, "img005"),
    ]
    reprov = entries[0]
    assert reprov.old_image == "img004"
    assert reprov.instance_id == "cn001-medusa-x-img004-0"
    assert reprov.reason == "more wanted"
    assert reprov.old_reason == "fewer wanted"


def test_marlin_never_reprovisions_and_is_staggered():
    def change(d):
        d["cn001"]["marlin"] = {"img001": 8, "img002": 2}

    plan = _plan(_changed(change))

    assert [(e.action, e.image) for e in plan] == [
        (PlanAction.provision, "img002"),
        (PlanAction.deprovision, "img001"),
        (PlanAction.provision, "img002"),
        (PlanAction.deprovision, "img001"),
    ]


def test_operator_override_disables_reprovision():
    def change(d):
        d["cn001"]["medusa"] = {"img005": 2}

    plan = _plan(_changed(change), allow_reprovision=False)

    assert [e.action for e in plan] == [
        PlanAction.provision,
        PlanAction.deprovision,
        PlanAction.provision,
        PlanAction.deprovision,
    ]


def test_upgrade_within_a_shard():
    def change(d):
        d["cn001"]["moray"]["2"] = {"img003": 1, "img002": 1}

    plan = _plan(_changed(change))

    assert _summary(plan, ("service", "shard", "action", "image")) == [
        {"service": "moray", "shard": "2", "action": "reprovision", "image": "img003"},
        {"service": "moray", "shard": "2", "action": "deprovision", "image": "img002"},
    ]


def test_different_shards_are_never_fused():
    def change(d):
        d["cn001"]["moray"]["2"]["img003"] = 1
        d["cn001"]["moray"]["1"]["img002"] = 2

    plan = _plan(_changed(change))

    assert _summary(plan, ("shard", "action", "image")) == [
        {"shard": "1", "action": "deprovision", "image": "img002"},
        {"shard": "2", "action": "provision", "image": "img003"},
    ]


def test_any_node_compares_against_global_counts():
    inventory = _inventory({"cn1": {"webapi": {"imgA": 1}}})

    plan = _plan({ANY_NODE: {"webapi": {"imgA": 3}}}, inventory)
    entries = list(plan)

    assert len(entries) == 2
    assert all(e.action == PlanAction.provision for e in entries)
    assert all(e.node == ANY_NODE and e.image == "imgA" for e in entries)
    assert all(e.reason == "more wanted" for e in entries)


def test_unlisted_node_is_emptied_when_any_node_is_unused():
    inventory = _inventory(
        {
            "cn1": {"authcache": {"imgX": 2}},
            "cn2": {"webapi": {"img1": 1}},
        }
    )

    plan = _plan({"cn2": {"webapi": {"img1": 1}}}, inventory)

    assert [(e.node, e.service, e.image, e.action, e.reason) for e in plan] == [
        ("cn1", "authcache", "imgX", PlanAction.deprovision, "node no longer used"),
        ("cn1", "authcache", "imgX", PlanAction.deprovision, "node no longer used"),
    ]


def test_unused_image_is_removed_next_to_new_provision():
    inventory = _inventory({"cn1": {"moray": {"shard1": {"imgA": 1, "imgB": 1}}}})
    desired = {"cn1": {"moray": {"shard1": {"imgA": 2}}}}

    staggered = list(_plan(desired, inventory, allow_reprovision=False))
    assert [(e.action, e.image, e.reason) for e in staggered] == [
        (PlanAction.provision, "imgA", "more wanted"),
        (PlanAction.deprovision, "imgB", "image no longer used"),
    ]

    fused = list(_plan(desired, inventory))
    assert len(fused) == 1
    assert fused[0].action == PlanAction.reprovision
    assert (fused[0].old_image, fused[0].image) == ("imgB", "imgA")
    assert fused[0].old_reason == "image no longer used"


def test_any_node_bindings_never_repeat():
    plan = _plan({ANY_NODE: {"marlin": {"img001": 0}}})
    ids = [e.instance_id for e in plan]

    assert len(ids) == 32
    assert None not in ids
    assert len(set(ids)) == len(ids)


def test_planning_is_deterministic():
    def change(d):
        d["cn001"]["moray"]["1"] = {"img009": 3}
        del d["cn003"]

    desired = _changed(change)

    first = _plan(desired).dump(CATALOG)
    second = _plan(desired).dump(CATALOG)

    assert first == second
    assert first


def test_service_filter_limits_the_plan():
    def change(d):
        del d["cn001"]

    plan = _plan(_changed(change), service_filter="medusa")

    assert {e.service for e in plan} == {"medusa"}
    assert len(plan) == 2


def test_unknown_service_filter_is_rejected():
    with pytest.raises(UnknownService):
        _plan(copy.deepcopy(LAYOUT), service_filter="nosuchservice")


def test_new_experimental_instances_require_opt_in():
    desired = _changed(lambda d: d["cn001"].update({"propeller": {"img100": 1}}))

    with pytest.raises(PolicyRejected) as excinfo:
        _plan(desired)
    assert excinfo.value.services == ["propeller"]

    plan = _plan(desired, allow_experimental=True)
    assert [e.service for e in plan] == ["propeller"]


def test_existing_experimental_instances_pass_the_gate():
    layout = copy.deepcopy(LAYOUT)
    layout["cn001"]["propeller"] = {"img100": 2}
    desired = copy.deepcopy(layout)
    desired["cn001"]["propeller"] = {"img100": 1}

    plan = _plan(desired, _inventory(layout))

    assert [e.action for e in plan] == [PlanAction.deprovision]


def test_plan_to_json_groups_by_service_and_node():
    def change(d):
        d["cn001"]["medusa"]["img004"] = 3

    payload = plan_to_json(_plan(_changed(change)))

    entry = payload["services"]["medusa"]["cn001"][0]
    assert entry["action"] == "provision"
    assert entry["reason"] == "more wanted"
    assert entry["image"] == "img004"


def test_policy_rejection_names_every_blocked_service():
    catalog = default_catalog(extra=[ServiceSpec("exp2", experimental=True)])
    raw = {"cn001": {"exp2": {"img200": 1}, "propeller": {"img100": 2}, "webapi": {"img1": 1}}}
    generator = PlanGenerator(catalog)
    want = parse_desired_config(raw, catalog)
    inventory = DeployedInventory.from_instances([], catalog)
    plans = []

    with pytest.raises(PolicyRejected) as excinfo:
        plans.append(generator.generate(want, inventory))

    assert excinfo.value.services == ["propeller", "exp2"]
    assert "propeller, exp2" in str(excinfo.value)
    assert plans == []
