import pytest

from modules.checkout.orchestrator import (
    CheckoutTotals, build_line_items, compute_final_totals, enforce_discount_ceiling,
    normalize_email, validate_redirect_url, ValidatedCartLine,
)
from common.exceptions import ValidationError


def test_promo_clamped_first_and_credit_gets_nothing():
    result = enforce_discount_ceiling(10000, 8000, 3000, 0.5)
    assert (result.final_promo, result.final_credit, result.total_discount) == (5000, 0, 5000)


def test_credit_gets_remaining_budget():
    result = enforce_discount_ceiling(10000, 2000, 5000, 0.5)
    assert (result.final_promo, result.final_credit) == (2000, 3000)


def test_under_ceiling_untouched():
    result = enforce_discount_ceiling(10000, 1000, 1000, 0.5)
    assert (result.final_promo, result.final_credit, result.total_discount) == (1000, 1000, 2000)


def test_ceiling_floors_odd_subtotal():
    assert enforce_discount_ceiling(999, 999, 0, 0.5).final_promo == 499


def test_full_fraction_allows_whole_subtotal():
    result = enforce_discount_ceiling(2000, 200, 1800, 1.0)
    assert result.total_discount == 2000


@pytest.mark.parametrize("subtotal, promo, credit", [
    (0, 100, 100), (500, 0, 0), (1, 5, 5), (12345, 12345, 12345),
])
def test_ceiling_never_exceeds_budget(subtotal, promo, credit):
    result = enforce_discount_ceiling(subtotal, promo, credit, 0.5)
    assert 0 <= result.final_promo <= promo
    assert 0 <= result.final_credit <= credit
    assert result.total_discount <= subtotal // 2


def test_final_totals():
    totals = compute_final_totals(2000, 200, 0.0875)
    assert totals == CheckoutTotals(
        subtotal_cents=2000, discount_cents=200, discounted_subtotal_cents=1800, tax_cents=158, total_cents=1958,
    )


def test_final_totals_never_negative():
    totals = compute_final_totals(1000, 5000, 0.0875)
    assert totals.discounted_subtotal_cents == 0
    assert totals.discount_cents == 1000
    assert totals.total_cents == 0


def test_line_items_without_discount():
    lines = [ValidatedCartLine(1, "Plate", 1000, 2, 2000)]
    items = build_line_items(lines, compute_final_totals(2000, 0, 0.0875))
    assert [(i.name, i.unit_amount_cents, i.quantity) for i in items] == [("Plate", 1000, 2), ("Tax", 175, 1)]


def test_line_items_with_discount_collapse_to_one_line():
    lines = [ValidatedCartLine(1, "Plate", 1000, 2, 2000)]
    items = build_line_items(lines, compute_final_totals(2000, 200, 0.0875))
    assert [(i.name, i.unit_amount_cents, i.quantity) for i in items] == [
        ("Order (after discounts)", 1800, 1), ("Tax", 158, 1),
    ]


def test_line_items_skip_zero_tax():
    lines = [ValidatedCartLine(1, "Plate", 1000, 1, 1000)]
    items = build_line_items(lines, compute_final_totals(1000, 0, 0))
    assert [i.name for i in items] == ["Plate"]


def test_redirect_url_checks():
    allowed = ["http://localhost:3000"]
    assert validate_redirect_url("http://localhost:3000/done?x=1", allowed) == "http://localhost:3000/done?x=1"
    with pytest.raises(ValidationError, match="Invalid redirect origin"):
        validate_redirect_url("https://evil.example/done", allowed)
    with pytest.raises(ValidationError, match="Invalid redirect URL"):
        validate_redirect_url("javascript:alert(1)", allowed)
    with pytest.raises(ValidationError, match="Invalid redirect URL"):
        validate_redirect_url("", allowed)


def test_email_checks():
    assert normalize_email("  Diner@Example.com ") == "diner@example.com"
    for bad in ("", "a@b", "no-at-sign", None):
        with pytest.raises(ValidationError, match="Invalid email address"):
            normalize_email(bad)
