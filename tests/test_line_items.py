import pytest

from billing import errors
from billing.services.line_items import (
    amount_cent,
    clean_decimal,
    normalize_item,
    normalize_items,
    qty_to_float,
    to_cents,
)


def test_price_in_units_becomes_cents_and_name_is_trimmed():
    item = normalize_item({"name": "  Boiler service ", "price": "10.50", "quantity": 2})
    assert item.name == "Boiler service"
    assert item.unit_price_cent == 1050
    assert item.qty == 2.0
    assert item.total_cent == 2100


def test_cents_keys_win_over_unit_keys():
    item = normalize_item({"name": "x", "unit_price_cent": 999, "price": 50})
    assert item.unit_price_cent == 999


def test_empty_name_is_kept_and_counted():
    items = normalize_items([{"name": "   ", "price": 1}, {"price": 2}])
    assert [i.name for i in items] == ["", ""]
    assert len(items) == 2


@pytest.mark.parametrize("raw, expected", [
    (None, 1.0),
    ("", 1.0),
    ("3", 3.0),
    (0, 0.0),
    ("abc", 0.0),
    (-2, 0.0),
    (float("nan"), 0.0),
    (float("inf"), 0.0),
    ("2e0", 2.0),
    ("1.5e2", 150.0),
])
def test_quantity_default_rules(raw, expected):
    assert qty_to_float(raw) == expected


def test_missing_quantity_defaults_to_one_for_every_group():
    items = normalize_items([{"name": "Labour", "price": 40}], role="materials")
    assert items[0].qty == 1.0


@pytest.mark.parametrize("raw, expected", [
    (10, 1000),
    ("£1,234.5", 0),  # deux séparateurs : illisible
    ("12,50 £", 1250),
    ("-3", 0),
    ("n/a", 0),
    (None, 0),
    ("1e3", 100000),
    ("1.5e2", 15000),
    ("1e40", 0),  # hors précision
])
def test_to_cents(raw, expected):
    assert to_cents(raw) == expected


def test_clean_decimal_rejects_non_finite_and_bools():
    assert clean_decimal(float("inf")) is None
    assert clean_decimal(True) is None
    assert clean_decimal("7") == 7


def test_amount_cent_prefers_cents():
    assert amount_cent(250, 99) == 250
    assert amount_cent(None, 2.5) == 250
    assert amount_cent("", "3") == 300


def test_required_group_cannot_be_empty():
    with pytest.raises(errors.ValidationError):
        normalize_items([], role="services", required=True)
    with pytest.raises(errors.ValidationError):
        normalize_items(None, role="services", required=True)


def test_non_list_payload_is_rejected():
    with pytest.raises(errors.ValidationError):
        normalize_items({"name": "x"})
    with pytest.raises(errors.ValidationError):
        normalize_items(["not an item"])


def test_exponent_notation_is_read_as_a_number():
    item = normalize_item({"name": "Cable", "price": "1e3", "quantity": "2e0"})
    assert item.unit_price_cent == 100000
    assert item.qty == 2.0
    assert clean_decimal(" 1.5e2 ") == 150
