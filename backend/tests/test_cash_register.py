from decimal import Decimal

import pytest

from backend.app.cash_register import (
    apply_movement,
    apply_order_effect,
    assert_sufficient_balance,
    close_register,
    open_register,
    order_effect,
    reconcile,
)
from backend.app.errors import InsufficientFunds, PdvError, RegisterClosed
from backend.app.ledger import Order, OrderItem


def _order(total, type_="purchase"):
    item = OrderItem(material_id="m1", material_name="Cobre", quantity=1.0, price=total, total=total)
    return Order(id="o1", customer_id="c1", type=type_, items=(item,), total=total)


@pytest.mark.parametrize(
    "expected,counted,status,display",
    [
        (100.0, 100.0, "balanced", Decimal("0.00")),
        (100.0, 105.0, "surplus", Decimal("5.00")),
        (100.0, 95.0, "shortage", Decimal("5.00")),
        (100.0, 100.0005, "balanced", Decimal("0.00")),
    ],
)
def test_reconcile(expected, counted, status, display):
    result = reconcile(expected, counted)
    assert result.status == status
    assert result.display_amount == display


def test_close_register_records_difference_and_rejects_second_close():
    register = open_register(100.0)
    closed, result = close_register(register, 95.0)
    assert closed.status == "closed"
    assert closed.final_amount == 95.0
    assert closed.difference == -5.0
    assert closed.closed_at is not None
    assert result.status == "shortage"
    # Original value is untouched.
    assert register.status == "open"

    with pytest.raises(RegisterClosed):
        close_register(closed, 95.0)


def test_open_register_rejects_negative_amount():
    with pytest.raises(PdvError):
        open_register(-1)


def test_movements_adjust_balance():
    register = open_register(50.0)
    register = apply_movement(register, 20.0, "add_funds", "troco")
    register = apply_movement(register, 30.0, "expense", "cafe")
    assert register.current_amount == 40.0
    assert [m.amount for m in register.movements] == [20.0, -30.0]


def test_expense_larger_than_balance_is_rejected():
    register = open_register(10.0)
    with pytest.raises(InsufficientFunds):
        apply_movement(register, 10.5, "expense")
    with pytest.raises(PdvError):
        apply_movement(register, 5.0, "withdrawal")
    with pytest.raises(PdvError):
        apply_movement(register, 0, "add_funds")


def test_movement_on_closed_register_raises():
    closed, _ = close_register(open_register(10.0), 10.0)
    with pytest.raises(RegisterClosed):
        apply_movement(closed, 5.0, "add_funds")


def test_order_effect_sign_follows_order_type():
    assert order_effect(_order(30.0, "purchase")) == -30.0
    assert order_effect(_order(30.0, "sale")) == 30.0

    register = apply_order_effect(open_register(100.0), _order(30.0, "purchase"))
    assert register.current_amount == 70.0
    assert register.movements[-1].order_id == "o1"


def test_assert_sufficient_balance_uses_tolerance():
    register = open_register(100.0)
    assert_sufficient_balance(register, 100.0005)
    with pytest.raises(InsufficientFunds):
        assert_sufficient_balance(register, 100.01)
