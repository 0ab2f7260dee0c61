import pytest

from printshop_erp.errors import (
    StoreError,
    ValidationError,
    is_unavailable_error,
    require_fields,
)


@pytest.mark.parametrize(
    "error",
    [
        "TypeError: Failed to fetch",
        "fetch failed",
        {"message": "Network request failed"},
        ConnectionError("network is unreachable"),
    ],
)
def test_connectivity_failures_are_recognised(error):
    assert is_unavailable_error(error) is True


@pytest.mark.parametrize(
    "error",
    [None, "", "duplicate key value violates unique constraint", {"details": "permission denied"}, ValueError("bad")],
)
def test_other_failures_are_not_connectivity(error):
    assert is_unavailable_error(error) is False


def test_payload_fallback_fields():
    assert is_unavailable_error({"error_description": "NETWORK down"}) is True


def test_store_error_from_exception():
    err = StoreError.from_exception("Loading jobs", OSError("fetch failed"))
    assert err.unavailable is True
    assert "Loading jobs failed" in str(err)
    assert StoreError.from_exception("Loading jobs", OSError("disk full")).unavailable is False


def test_require_fields_lists_every_blank_field():
    with pytest.raises(ValidationError) as excinfo:
        require_fields({"clientName": " ", "title": None, "price": 0}, "clientName", "title", "price")
    assert set(excinfo.value.fields) == {"clientName", "title"}
    require_fields({"title": "ok"}, "title")
