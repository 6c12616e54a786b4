import pytest

from alr.changes import classify
from alr.models import ChangeTier, RouteConfigLegacy, RouteConfigSet, RouteEntry, ServiceBinding


def test_identical_specs_have_no_changes(make_spec):
    cs = classify(make_spec(), make_spec())
    assert cs.empty
    assert cs.tier == ChangeTier.NONE
    assert cs.delta == {}


@pytest.mark.parametrize(
    "field,value,tier",
    [
        ("instances", 3, ChangeTier.IN_PLACE_UPDATE),
        ("enable_ssh", True, ChangeTier.IN_PLACE_UPDATE),
        ("name", "web-2", ChangeTier.IN_PLACE_UPDATE),
        ("memory", 512, ChangeTier.RESTART),
        ("ports", [8080], ChangeTier.RESTART),
        ("command", "./run", ChangeTier.RESTART),
        ("health_check_type", "http", ChangeTier.RESTART),
        ("buildpack", "python_buildpack", ChangeTier.RESTAGE),
        ("stack", "cflinuxfs4", ChangeTier.RESTAGE),
        ("environment", {"MODE": "prod"}, ChangeTier.RESTAGE),
    ],
)
def test_field_tiers(make_spec, field, value, tier):
    cs = classify(make_spec(), make_spec(**{field: value}))
    assert cs.tier == tier
    assert cs.delta == {field: value}
    assert not cs.force_new


def test_highest_tier_wins(make_spec):
    cs = classify(make_spec(), make_spec(instances=2, memory=256, buildpack="go_buildpack"))
    assert cs.tier == ChangeTier.RESTAGE
    assert set(cs.delta) == {"instances", "memory", "buildpack"}
    assert cs.update and cs.restart and cs.restage


def test_source_kind_switch_forces_new(make_spec):
    cs = classify(make_spec(), make_spec(url=None, docker_image="nginx:1.25"))
    assert cs.force_new


def test_same_kind_new_source_is_binary_change(make_spec):
    cs = classify(make_spec(), make_spec(url="https://example.org/app-2.zip"))
    assert cs.binary_changed
    assert not cs.force_new
    assert cs.tier == ChangeTier.NONE


def test_computed_ids_are_not_changes(make_spec):
    old = make_spec(
        service_bindings=[ServiceBinding(service_instance="db", binding_id="binding-1")],
        route=RouteConfigSet(routes=[RouteEntry(route="r-1", port=8080, mapping_id="mapping-1")]),
    )
    new = make_spec(
        service_bindings=[ServiceBinding(service_instance="db")],
        route=RouteConfigSet(routes=[RouteEntry(route="r-1")]),
    )
    assert classify(old, new).empty


def test_binding_params_change(make_spec):
    old = make_spec(service_bindings=[ServiceBinding(service_instance="db", params={"role": "ro"})])
    new = make_spec(service_bindings=[ServiceBinding(service_instance="db", params={"role": "rw"})])
    cs = classify(old, new)
    assert cs.bindings_changed
    assert cs.tier == ChangeTier.NONE


def test_legacy_route_change(make_spec):
    old = make_spec(route=RouteConfigLegacy(default_route="r-1", default_route_mapping_id="mapping-1"))
    new = make_spec(route=RouteConfigLegacy(default_route="r-2"))
    cs = classify(old, new)
    assert cs.routes_changed
    assert not cs.empty


def test_stopped_flag(make_spec):
    cs = classify(make_spec(), make_spec(stopped=True))
    assert cs.stopped_changed
    assert cs.tier == ChangeTier.NONE
