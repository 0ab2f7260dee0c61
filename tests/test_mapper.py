"""
Tests for the field mapping between camelCase records and snake_case rows.
"""

import pytest

from printshop_erp.errors import NotFoundError
from printshop_erp.mapper import MAPPINGS, get_mapping, kinds, to_camel, to_snake


def _sample_row(mapping):
    return {column: f"value-{column}" for _, column in mapping.fields}


@pytest.mark.parametrize("kind", sorted(MAPPINGS))
def test_round_trip_every_declared_field(kind):
    mapping = get_mapping(kind)
    row = _sample_row(mapping)
    if kind == "approval_routes":
        row["route_data"] = {"steps": [{"approver_id": "a"}, {"approver_id": "b"}]}
    if kind == "estimates":
        # totals are derived from items, so the row must be self-consistent
        row.update(
            items=[{"qty": 1, "unitPrice": 100, "taxRate": 0.1, "subtotal": 100, "taxAmount": 10, "total": 110}],
            tax_inclusive=False,
            subtotal=100,
            tax_total=10,
            grand_total=110,
        )
    assert mapping.to_store(mapping.from_store(row)) == row


def test_customer_address_columns_use_bespoke_names():
    mapping = get_mapping("customers")
    row = mapping.to_store({"customerName": "Acme", "address1": "1-2-3 Chiyoda", "address2": "5F"})
    assert row == {"customer_name": "Acme", "address_1": "1-2-3 Chiyoda", "address_2": "5F"}
    # the generic rule alone would have produced "address1"
    assert to_snake("address1") == "address1"


def test_undeclared_keys_are_dropped():
    mapping = get_mapping("jobs")
    assert mapping.to_store({"title": "Flyers", "somethingElse": 1}) == {"title": "Flyers"}
    assert mapping.from_store({"title": "Flyers", "legacy_column": 1}) == {"title": "Flyers"}


def test_nested_json_passes_through_untouched():
    mapping = get_mapping("inbox_items")
    extracted = {"vendorName": "Paper Co", "totalAmount": 1100}
    assert mapping.to_store({"extractedData": extracted}) == {"extracted_data": extracted}


def test_approval_route_steps_are_renamed_both_ways():
    mapping = get_mapping("approval_routes")
    record = mapping.from_store({"id": "r1", "name": "Two step", "route_data": {"steps": [{"approver_id": "u1"}]}})
    assert record["routeData"] == {"steps": [{"approverId": "u1"}]}
    assert mapping.to_store(record)["route_data"] == {"steps": [{"approver_id": "u1"}]}


def test_file_url_is_computed_from_path():
    mapping = get_mapping("inbox_items")
    record = mapping.from_store(
        {"id": "i1", "file_path": "abc.pdf"}, lambda bucket, path: f"https://cdn/{bucket}/{path}"
    )
    assert record["fileUrl"] == "https://cdn/inbox/abc.pdf"
    assert "fileUrl" not in mapping.from_store({"id": "i1", "file_path": "abc.pdf"})


def test_estimate_totals_are_recomputed_from_items():
    mapping = get_mapping("estimates")
    row = mapping.to_store({"items": [{"qty": 2, "unitPrice": 1000}], "grandTotal": 1})
    assert row["subtotal"] == 2000
    assert row["tax_total"] == 200
    assert row["grand_total"] == 2200
    assert mapping.to_store({"title": "x", "grandTotal": 99}) == {"title": "x"}


def test_writable_drops_read_only_columns():
    mapping = get_mapping("jobs")
    assert mapping.writable({"id": "x", "job_number": 5, "title": "t", "created_at": None}) == {"title": "t"}


def test_unknown_kind():
    with pytest.raises(NotFoundError):
        get_mapping("nope")
    assert "jobs" in kinds()


def test_case_helpers():
    assert to_snake("invoiceStatus") == "invoice_status"
    assert to_camel("invoice_status") == "invoiceStatus"
