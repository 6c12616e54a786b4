import pytest

from alr.errors import ConflictingBinding
from alr.models import RouteConfigLegacy, RouteConfigSet, RouteEntry
from alr.routes import RouteReconciler


@pytest.fixture
def routes(platform):
    return RouteReconciler(platform)


def test_validate_unmapped_route(routes):
    assert routes.validate_route("r-1") == "r-1"
    assert routes.validate_route("") == ""


def test_validate_route_mapped_to_excluded_app(platform, routes):
    platform.create_route_mapping("r-1", "app-a")
    assert routes.validate_route("r-1", "app-a") == "r-1"


def test_validate_route_mapped_elsewhere(platform, routes):
    platform.create_route_mapping("r-1", "app-a")
    with pytest.raises(ConflictingBinding) as exc:
        routes.validate_route("r-1", "app-b")
    assert exc.value.route_id == "r-1"
    with pytest.raises(ConflictingBinding):
        routes.validate_route("r-1")


def test_validate_route_with_several_mappings(platform, routes):
    platform.create_route_mapping("r-1", "app-a")
    platform.create_route_mapping("r-1", "app-b")
    with pytest.raises(ConflictingBinding):
        routes.validate_route("r-1", "app-a")


def test_unmap_tolerates_missing_mapping(platform, routes):
    routes.unmap("mapping-gone")
    routes.unmap("")
    assert platform.calls_to("delete_route_mapping") == [("mapping-gone",)]


def test_reconcile_set_is_idempotent(platform, routes):
    desired = RouteConfigSet(routes=[RouteEntry(route="r-1"), RouteEntry(route="r-2", port=9000)])

    first = routes.reconcile_set(None, desired, "app-a")
    assert [e.port for e in first.routes] == [8080, 9000]
    assert all(e.mapping_id for e in first.routes)

    seen = len(platform.calls)
    second = routes.reconcile_set(first, desired, "app-a")
    assert second == first
    assert platform.calls[seen:] == []


def test_reconcile_set_removes_dropped_routes(platform, routes):
    desired = RouteConfigSet(routes=[RouteEntry(route="r-1"), RouteEntry(route="r-2")])
    first = routes.reconcile_set(None, desired, "app-a")

    second = routes.reconcile_set(first, RouteConfigSet(routes=[RouteEntry(route="r-2")]), "app-a")
    assert second.route_ids() == {"r-2"}
    assert platform.routes_of("r-1") == []
    assert platform.routes_of("r-2") == ["app-a"]


def test_reconcile_legacy_moves_slot(platform, routes):
    old = routes.reconcile_legacy(None, RouteConfigLegacy(default_route="r-1"), "app-a")
    assert old.default_route_mapping_id

    new = routes.reconcile_legacy(old, RouteConfigLegacy(default_route="r-2"), "app-a")
    assert new.default_route_mapping_id != old.default_route_mapping_id
    assert platform.routes_of("r-1") == []
    assert platform.routes_of("r-2") == ["app-a"]


def test_reconcile_legacy_keeps_unchanged_slot(platform, routes):
    old = routes.reconcile_legacy(None, RouteConfigLegacy(default_route="r-1"), "app-a")
    new = routes.reconcile_legacy(old, RouteConfigLegacy(default_route="r-1"), "app-a")
    assert new.default_route_mapping_id == old.default_route_mapping_id
    assert len(platform.calls_to("create_route_mapping")) == 1


def test_reconcile_legacy_conflict(platform, routes):
    platform.create_route_mapping("r-1", "app-other")
    with pytest.raises(ConflictingBinding):
        routes.reconcile_legacy(None, RouteConfigLegacy(default_route="r-1"), "app-a")


def test_migrate_inherits_legacy_mappings(platform, routes):
    legacy = routes.reconcile_legacy(None, RouteConfigLegacy(default_route="r-1", stage_route="r-2"), "app-a")

    migrated = routes.migrate(
        legacy, RouteConfigSet(routes=[RouteEntry(route="r-1"), RouteEntry(route="r-9")]), "app-a"
    )

    by_route = {e.route: e for e in migrated.routes}
    assert by_route["r-1"].mapping_id == legacy.default_route_mapping_id
    assert by_route["r-9"].mapping_id
    assert platform.routes_of("r-2") == []
    created = [args[0] for args in platform.calls_to("create_route_mapping")]
    assert created.count("r-1") == 1


def test_refresh_drops_vanished_mappings(platform, routes):
    cfg = routes.reconcile_set(None, RouteConfigSet(routes=[RouteEntry(route="r-1"), RouteEntry(route="r-2")]), "app-a")
    platform.mappings.pop(cfg.routes[0].mapping_id)

    refreshed = routes.refresh(cfg, "app-a")
    assert refreshed.route_ids() == {"r-2"}


def test_unmap_all_legacy(platform, routes):
    cfg = routes.reconcile_legacy(None, RouteConfigLegacy(default_route="r-1", live_route="r-3"), "app-a")
    routes.unmap_all(cfg)
    assert platform.mappings == {}
