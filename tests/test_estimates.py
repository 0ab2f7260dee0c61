from printshop_erp.estimates import calc_totals, render_postal_label_svg, round_half_up


def test_tax_exclusive_totals():
    result = calc_totals(
        [
            {"name": "名刺", "qty": 100, "unitPrice": 25, "taxRate": 0.1},
            {"name": "チラシ", "qty": 1, "unitPrice": 12345},
        ]
    )
    first, second = result["items"]
    assert first["subtotal"] == 2500
    assert first["taxAmount"] == 250
    assert first["total"] == 2750
    # default rate applies when taxRate is missing; 1234.5 rounds up
    assert second["taxAmount"] == 1235
    assert result["subtotal"] == 14845
    assert result["taxTotal"] == 1485
    assert result["grandTotal"] == 16330


def test_tax_inclusive_totals():
    result = calc_totals([{"qty": 1, "unitPrice": 1100, "taxRate": 0.1}], tax_inclusive=True)
    item = result["items"][0]
    assert item["taxAmount"] == 100
    assert item["total"] == 1100
    assert result["grandTotal"] == 1100


def test_totals_are_idempotent():
    items = [{"qty": 3, "unitPrice": 333.3, "taxRate": 0.08}, {"qty": 7, "unitPrice": 15}]
    once = calc_totals(items)
    twice = calc_totals(once["items"])
    assert twice == once


def test_empty_items():
    assert calc_totals(None) == {"items": [], "subtotal": 0, "taxTotal": 0, "grandTotal": 0}


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.4999) == 2


def test_postal_label_escapes_names():
    svg = render_postal_label_svg("山田 <太郎>", "A&B 株式会社")
    assert "山田 &lt;太郎&gt;様" in svg
    assert "A&amp;B 株式会社" in svg
    assert svg.startswith("<svg")
