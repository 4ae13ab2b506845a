from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from .errors import InsufficientFunds, PdvError, RegisterClosed
from .ledger import Order
from .numeric import is_equal, is_greater_or_equal, is_greater_than, money, round3

ReconciliationStatus = Literal["balanced", "surplus", "shortage"]
MovementKind = Literal["add_funds", "expense", "order"]

_MOVEMENT_SIGN = {"add_funds": 1, "expense": -1}


@dataclass(frozen=True)
class CashMovement:
    kind: MovementKind
    amount: float
    description: Optional[str] = None
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CashRegister:
    id: str
    initial_amount: float
    current_amount: float
    status: Literal["open", "closed"] = "open"
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    final_amount: Optional[float] = None
    difference: Optional[float] = None
    movements: tuple[CashMovement, ...] = ()


@dataclass(frozen=True)
class Reconciliation:
    difference: float
    status: ReconciliationStatus

    @property
    def display_amount(self) -> Decimal:
        return money(abs(self.difference))


def reconcile(expected_amount: float, counted_amount: float) -> Reconciliation:
    difference = counted_amount - expected_amount
    if is_equal(difference, 0):
        status: ReconciliationStatus = "balanced"
    elif is_greater_than(difference, 0):
        status = "surplus"
    else:
        status = "shortage"
    return Reconciliation(difference=difference, status=status)


def _assert_non_negative(amount: float, context: str) -> None:
    if amount is None or amount < 0:
        raise PdvError(f"{context} amount must be >= 0")


def _assert_open(register: CashRegister) -> None:
    if register.status != "open":
        raise RegisterClosed()


def open_register(initial_amount: float, register_id: Optional[str] = None) -> CashRegister:
    _assert_non_negative(initial_amount, "opening")
    return CashRegister(
        id=register_id or str(uuid.uuid4()),
        initial_amount=initial_amount,
        current_amount=initial_amount,
        opened_at=datetime.now(timezone.utc),
    )


def apply_movement(register: CashRegister, amount: float, kind: MovementKind, description: Optional[str] = None) -> CashRegister:
    """Manual drawer entries: funds added by the manager, or expenses paid out of the drawer."""
    _assert_open(register)
    if kind not in _MOVEMENT_SIGN:
        raise PdvError(f"invalid movement kind: {kind}")
    _assert_non_negative(amount, kind)
    if amount == 0:
        raise PdvError("amount is required")
    signed = _MOVEMENT_SIGN[kind] * amount
    if signed < 0:
        assert_sufficient_balance(register, amount)
    movement = CashMovement(kind=kind, amount=signed, description=description, created_at=datetime.now(timezone.utc))
    return replace(
        register,
        current_amount=register.current_amount + signed,
        movements=register.movements + (movement,),
    )


def order_effect(order: Order) -> float:
    # Buying scrap pays cash out of the drawer; selling brings it in.
    return order.total if order.type == "sale" else -order.total


def apply_order_effect(register: CashRegister, order: Order) -> CashRegister:
    _assert_open(register)
    signed = order_effect(order)
    movement = CashMovement(kind="order", amount=signed, order_id=order.id, created_at=datetime.now(timezone.utc))
    return replace(
        register,
        current_amount=register.current_amount + signed,
        movements=register.movements + (movement,),
    )


def assert_sufficient_balance(register: CashRegister, amount: float) -> None:
    if not is_greater_or_equal(register.current_amount, amount):
        raise InsufficientFunds(
            f"insufficient cash in register (balance {money(register.current_amount)}, needed {money(amount)})"
        )


def close_register(register: CashRegister, counted_amount: float) -> tuple[CashRegister, Reconciliation]:
    _assert_open(register)
    _assert_non_negative(counted_amount, "closing")
    result = reconcile(register.current_amount, counted_amount)
    closed = replace(
        register,
        status="closed",
        closed_at=datetime.now(timezone.utc),
        final_amount=counted_amount,
        difference=round3(result.difference),
    )
    return closed, result
