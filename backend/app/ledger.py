"""
In-memory order ledger for the cashier screen.

Every mutation builds new values (order -> customer -> customer tuple) and swaps
them in one assignment, so a reader never observes a half-applied change and
identity comparison is enough to detect that something changed.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal, Optional

from .errors import IndexOutOfRange, NoActiveCustomer, NoActiveOrder, OrderTypeMismatch, PaymentInProgress, PdvError
from .materials import clean_material_name

OrderStatus = Literal["open", "completed"]
OrderType = Literal["purchase", "sale"]


@dataclass(frozen=True)
class Material:
    id: str
    name: str
    price: float
    sale_price: float


@dataclass(frozen=True)
class OrderItem:
    material_id: str
    material_name: str
    quantity: float  # net weight, never negative
    price: float
    total: float
    tare: Optional[float] = None
    gross_quantity: Optional[float] = None


@dataclass(frozen=True)
class Order:
    id: str
    customer_id: str
    status: OrderStatus = "open"
    type: OrderType = "purchase"
    items: tuple[OrderItem, ...] = ()
    total: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    orders: tuple[Order, ...] = ()

    def open_order(self) -> Optional[Order]:
        return next((o for o in self.orders if o.status == "open"), None)


@dataclass(frozen=True)
class LedgerStats:
    total_customers: int
    total_items: int
    order_total: float
    has_active_order: bool


def net_weight(gross_quantity: float, tare: float = 0) -> float:
    return max(0.0, gross_quantity - (tare or 0))


def build_item(material: Material, gross_quantity: float, tare: float, price: float) -> OrderItem:
    if not all(math.isfinite(v) for v in (gross_quantity, tare or 0, price)):
        raise PdvError("weight, tare and price must be finite numbers")
    qty = net_weight(gross_quantity, tare)
    return OrderItem(
        material_id=material.id,
        material_name=clean_material_name(material.name),
        quantity=qty,
        price=price,
        total=price * qty,
        tare=tare if tare and tare > 0 else None,
        gross_quantity=gross_quantity,
    )


class OrderLedger:
    def __init__(self, customers: tuple[Customer, ...] = ()):
        self.customers: tuple[Customer, ...] = tuple(customers)
        self.current_customer: Optional[Customer] = None
        self.active_order: Optional[Order] = None
        self.is_sale_mode = False
        # Orders with an external payment in flight; their items are frozen.
        self._locked_orders: set[str] = set()

    # -- customers -----------------------------------------------------------

    def load_customers(self, customers) -> None:
        """Replace the whole collection (e.g. after a reload from persistence)."""
        self.customers = tuple(customers)
        if self.current_customer is not None:
            fresh = self.find_customer(self.current_customer.id)
            self.select_customer(fresh)

    def find_customer(self, customer_id: str) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    def add_customer(self, name: str, customer_id: Optional[str] = None) -> Customer:
        customer = Customer(id=customer_id or str(uuid.uuid4()), name=(name or "").strip())
        self.customers = self.customers + (customer,)
        return customer

    def select_customer(self, customer: Optional[Customer]) -> None:
        self.current_customer = customer
        self.active_order = customer.open_order() if customer else None

    def set_sale_mode(self, is_sale: bool) -> None:
        self.is_sale_mode = bool(is_sale)

    @property
    def mode(self) -> OrderType:
        return "sale" if self.is_sale_mode else "purchase"

    # -- orders --------------------------------------------------------------

    def open_order(self) -> Order:
        if self.current_customer is None:
            raise NoActiveCustomer()
        existing = self.current_customer.open_order()
        if existing is not None:
            self.active_order = existing
            return existing
        order = Order(id=str(uuid.uuid4()), customer_id=self.current_customer.id, type=self.mode)
        customer = replace(self.current_customer, orders=self.current_customer.orders + (order,))
        self._commit(customer, order)
        return order

    def add_item(
        self,
        material: Material,
        gross_quantity: float,
        tare: float = 0,
        override_price: Optional[float] = None,
    ) -> OrderItem:
        if self.current_customer is None or self.active_order is None:
            raise NoActiveOrder()
        order = self.active_order
        self._assert_unlocked(order)
        if order.items and order.type != self.mode:
            raise OrderTypeMismatch(f"order is a {order.type}; switch mode back before adding items")

        if override_price is not None:
            price = override_price
        else:
            price = material.sale_price if self.is_sale_mode else material.price
        item = build_item(material, gross_quantity, tare, price)

        updated = replace(
            order,
            items=order.items + (item,),
            total=order.total + item.total,
            type=self.mode,
        )
        self._commit(self._customer_with(updated), updated)
        return item

    def remove_item(self, index: int) -> OrderItem:
        if self.current_customer is None or self.active_order is None:
            raise NoActiveOrder()
        order = self.active_order
        self._assert_unlocked(order)
        if index < 0 or index >= len(order.items):
            raise IndexOutOfRange(f"item index {index} out of range (0..{len(order.items) - 1})")

        removed = order.items[index]
        items = order.items[:index] + order.items[index + 1:]
        # Subtracting can leave a residue like 1e-14; an empty order is exactly zero.
        total = order.total - removed.total if items else 0.0
        updated = replace(order, items=items, total=total)
        self._commit(self._customer_with(updated), updated)
        return removed

    def complete_order(self, order_id: str) -> Optional[Order]:
        """open -> completed. Completing an already completed order is a no-op."""
        for customer in self.customers:
            for o in customer.orders:
                if o.id != order_id:
                    continue
                if o.status == "completed":
                    return o
                done = replace(o, status="completed")
                updated_customer = replace(
                    customer,
                    orders=tuple(done if x.id == order_id else x for x in customer.orders),
                )
                self.customers = tuple(updated_customer if c.id == customer.id else c for c in self.customers)
                if self.current_customer is not None and self.current_customer.id == customer.id:
                    self.current_customer = updated_customer
                if self.active_order is not None and self.active_order.id == order_id:
                    self.active_order = None
                self._locked_orders.discard(order_id)
                return done
        return None

    def find_order(self, order_id: str) -> Optional[Order]:
        for customer in self.customers:
            for o in customer.orders:
                if o.id == order_id:
                    return o
        return None

    @property
    def stats(self) -> LedgerStats:
        order = self.active_order
        return LedgerStats(
            total_customers=len(self.customers),
            total_items=len(order.items) if order else 0,
            order_total=order.total if order else 0.0,
            has_active_order=bool(order and order.items),
        )

    # -- payment locks -------------------------------------------------------

    def lock_order(self, order_id: str) -> None:
        if order_id in self._locked_orders:
            raise PaymentInProgress()
        self._locked_orders.add(order_id)

    def unlock_order(self, order_id: str) -> None:
        self._locked_orders.discard(order_id)

    def is_locked(self, order_id: str) -> bool:
        return order_id in self._locked_orders

    # -- internals -----------------------------------------------------------

    def _assert_unlocked(self, order: Order) -> None:
        if order.id in self._locked_orders:
            raise PaymentInProgress()

    def _customer_with(self, order: Order) -> Customer:
        current = self.current_customer
        return replace(current, orders=tuple(order if o.id == order.id else o for o in current.orders))

    def _commit(self, customer: Customer, order: Order) -> None:
        if self.find_customer(customer.id) is None:
            customers = self.customers + (customer,)
        else:
            customers = tuple(customer if c.id == customer.id else c for c in self.customers)
        self.active_order = order
        self.current_customer = customer
        self.customers = customers
