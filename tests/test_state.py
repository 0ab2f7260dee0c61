import pytest

from printshop_erp.errors import NETWORK_MESSAGE, StoreError
from printshop_erp.state import SLICES, AppState


def test_reload_all_loads_every_slice(data):
    data.add_job({"clientName": "Acme", "title": "Flyers"})
    state = AppState(data)
    assert state.reload_all({"id": "u1"}) is True
    assert state.error is None
    assert len(state.get("jobs")) == 1
    assert all(state.get(kind) == [] for kind in SLICES if kind != "jobs")


def test_invalidate_reloads_lazily(data):
    state = AppState(data)
    state.reload_all()
    data.create("customers", {"customerName": "Acme"})
    assert state.get("customers") == []
    state.invalidate("customers")
    assert [c["customerName"] for c in state.get("customers")] == ["Acme"]


def test_apply_helpers_patch_slices(data):
    state = AppState(data)
    state.reload_all()
    state.apply_created("jobs", {"id": "j1", "title": "Flyers"})
    state.apply_created("jobs", {"id": "j2", "title": "Posters"})
    state.apply_updated("jobs", {"id": "j1", "status": "completed"})
    assert state.get("jobs")[1] == {"id": "j1", "title": "Flyers", "status": "completed"}
    state.apply_removed("jobs", "j2")
    assert [j["id"] for j in state.get("jobs")] == ["j1"]


@pytest.mark.parametrize(
    "error, message",
    [
        (StoreError("Loading jobs failed: fetch failed", unavailable=True), NETWORK_MESSAGE),
        (StoreError("Loading jobs failed: permission denied"), "Could not load data: Loading jobs failed: permission denied"),
    ],
)
def test_reload_failure_sets_user_message(data, monkeypatch, error, message):
    state = AppState(data)
    state.reload_all()
    state.apply_created("jobs", {"id": "kept"})

    def boom(kind):
        raise error

    monkeypatch.setattr(data, "list", boom)
    assert state.reload_all() is False
    assert state.error == message
    assert state.get("jobs") == [{"id": "kept"}]
