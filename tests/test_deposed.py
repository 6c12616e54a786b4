import pytest

from alr import db
from alr.deposed import DEPOSED_APPLICATION, DeposedTracker
from alr.errors import PlatformError


@pytest.fixture
def tracker(platform):
    return DeposedTracker(platform)


def test_record_and_forget_return_new_mappings():
    original: dict[str, str] = {}
    recorded = DeposedTracker.record(original, "app-1")
    assert recorded == {"app-1": DEPOSED_APPLICATION}
    assert original == {}

    # Recording twice is a no-op.
    assert DeposedTracker.record(recorded, "app-1") == recorded

    forgotten = DeposedTracker.forget(recorded, "app-1")
    assert forgotten == {}
    assert recorded == {"app-1": DEPOSED_APPLICATION}


def test_reconcile_on_read_drops_only_missing(platform, tracker):
    existing = platform.create_app({"name": "old", "space": "space-1"})
    deposed = {existing.id: DEPOSED_APPLICATION, "app-gone": DEPOSED_APPLICATION}

    assert tracker.reconcile_on_read(deposed) == {existing.id: DEPOSED_APPLICATION}


def test_reconcile_on_read_keeps_on_transient_error(platform, tracker):
    platform.fail_on("read_app", PlatformError(503))
    deposed = {"app-1": DEPOSED_APPLICATION}

    assert tracker.reconcile_on_read(deposed) == deposed
    levels = [e["level"] for e in db.latest_events()]
    assert "WARN" in levels


def test_finish_cleanup(platform, tracker):
    existing = platform.create_app({"name": "old", "space": "space-1"})
    deposed = {existing.id: DEPOSED_APPLICATION, "app-gone": DEPOSED_APPLICATION}

    assert tracker.finish_cleanup(deposed) == {}
    assert existing.id not in platform.apps
    assert platform.calls_to("delete_app")[0] == (existing.id, True)


def test_finish_cleanup_keeps_failed_deletions(platform, tracker):
    existing = platform.create_app({"name": "old", "space": "space-1"})
    platform.fail_on("delete_app", PlatformError(500))

    assert tracker.finish_cleanup({existing.id: DEPOSED_APPLICATION}) == {existing.id: DEPOSED_APPLICATION}
    assert existing.id in platform.apps
