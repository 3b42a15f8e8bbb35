from decimal import Decimal

import pytest

from order_service.billing import (
    PaymentMethod, PaymentStatus, calculate_bill, line_total, money,
    order_subtotal, resolve_payment_status, settle,
)
from pos_common.errors import InsufficientPaymentError, ValidationError


def test_bill_with_service_charge_and_discount():
    subtotal = order_subtotal([(500, 2), (300, 1)])
    assert subtotal == Decimal("1300.00")

    bill = calculate_bill(subtotal, 100, 10)
    assert bill.discount_amount == Decimal("140.00")
    assert bill.grand_total == Decimal("1260.00")


def test_cash_change():
    settlement = settle(Decimal("1260"), PaymentMethod.CASH, 1500)
    assert settlement.cash_received == Decimal("1500.00")
    assert settlement.change == Decimal("240.00")


def test_cash_short_is_rejected():
    with pytest.raises(InsufficientPaymentError):
        settle(Decimal("1260"), PaymentMethod.CASH, 1000)


def test_exact_cash_gives_no_change():
    assert settle(1260, "Cash", 1260).change == Decimal("0.00")


def test_cash_amount_required():
    with pytest.raises(ValidationError):
        settle(1260, PaymentMethod.CASH, None)


@pytest.mark.parametrize("method", [PaymentMethod.CARD, PaymentMethod.ONLINE])
def test_card_and_online_settle_exact(method):
    settlement = settle(99.99, method)
    assert settlement.cash_received == Decimal("99.99")
    assert settlement.change == Decimal("0.00")


def test_credit_cannot_be_paid():
    with pytest.raises(ValidationError):
        settle(100, PaymentMethod.CREDIT)


@pytest.mark.parametrize("pct", [0, 12.5, 33, 50, 99.99, 100])
def test_grand_total_formula(pct):
    subtotal, sc = Decimal("847.30"), Decimal("42.70")
    bill = calculate_bill(subtotal, sc, pct)
    expected_discount = money((subtotal + sc) * Decimal(str(pct)) / 100)
    assert bill.discount_amount == expected_discount
    assert bill.grand_total == subtotal + sc - expected_discount
    assert bill.grand_total >= 0


def test_full_discount_is_free():
    assert calculate_bill(1300, 100, 100).grand_total == Decimal("0.00")


@pytest.mark.parametrize("sc,pct", [(-1, 0), (0, -0.1), (0, 100.5)])
def test_out_of_range_inputs(sc, pct):
    with pytest.raises(ValidationError):
        calculate_bill(100, sc, pct)


def test_rounds_half_up_to_cents():
    assert money("0.125") == Decimal("0.13")
    assert money(2.675) == Decimal("2.68")
    assert line_total("19.995", 1) == Decimal("20.00")
    # 33.33% of 10.00 = 3.333 -> 3.33
    assert calculate_bill(10, 0, "33.33").discount_amount == Decimal("3.33")


def test_float_noise_does_not_leak():
    assert order_subtotal([(0.1, 3), (0.2, 1)]) == Decimal("0.50")


def test_credit_needs_customer():
    assert resolve_payment_status(PaymentMethod.CREDIT, 42) == PaymentStatus.CREDIT
    with pytest.raises(ValidationError):
        resolve_payment_status(PaymentMethod.CREDIT, None)


@pytest.mark.parametrize("method", ["Cash", "Card", "Online"])
def test_other_methods_start_unpaid(method):
    assert resolve_payment_status(method, None) == PaymentStatus.UNPAID
