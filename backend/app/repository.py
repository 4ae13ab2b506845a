"""
Persistence collaborator: orders, payment mirror records and cash registers.

Every psycopg error is surfaced as `PersistenceFailure` so callers can show a
"try again" message instead of crashing; the in-memory ledger is left as is and
gets reconciled on the next full reload.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

import psycopg

from .cash_register import CashRegister
from .db import get_conn
from .errors import PersistenceFailure
from .ledger import Customer, Order, OrderItem
from .logs import json_log
from .numeric import money, round3


@contextmanager
def _cursor(op: str):
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                yield cur
    except psycopg.Error as exc:
        json_log("error", "persistence.failed", op=op, error=str(exc))
        raise PersistenceFailure(f"{op} failed") from exc


def _insert_items(cur, order: Order) -> None:
    for position, it in enumerate(order.items):
        cur.execute(
            """
            INSERT INTO order_items
              (id, order_id, position, material_id, material_name, quantity, price, total, tara)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                order.id,
                position,
                it.material_id,
                it.material_name,
                round3(it.quantity),
                it.price,
                money(it.total),
                it.tare,
            ),
        )


def create_customer(customer: Customer) -> dict:
    with _cursor("create_customer") as cur:
        cur.execute(
            """
            INSERT INTO customers (id, name, created_at)
            VALUES (%s, %s, now())
            ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name
            RETURNING id, name
            """,
            (customer.id, customer.name),
        )
        return cur.fetchone()


def read_customers() -> list[dict]:
    with _cursor("read_customers") as cur:
        cur.execute("SELECT id, name FROM customers ORDER BY name ASC")
        return list(cur.fetchall() or [])


def create_order(order: Order) -> dict:
    with _cursor("create_order") as cur:
        cur.execute(
            """
            INSERT INTO orders (id, customer_id, status, type, total, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id, status, total
            """,
            (order.id, order.customer_id, order.status, order.type, money(order.total), order.created_at),
        )
        row = cur.fetchone()
        _insert_items(cur, order)
        return row


def update_order(order: Order) -> dict:
    with _cursor("update_order") as cur:
        cur.execute(
            """
            UPDATE orders
            SET status = %s, type = %s, total = %s, updated_at = now()
            WHERE id = %s
            RETURNING id, status, total
            """,
            (order.status, order.type, money(order.total), order.id),
        )
        row = cur.fetchone()
        if not row:
            raise PersistenceFailure(f"order {order.id} not found")
        # Items are replaced wholesale, mirroring the copy-on-write ledger.
        cur.execute("DELETE FROM order_items WHERE order_id = %s", (order.id,))
        _insert_items(cur, order)
        return row


def read_orders_for_customer(customer_id: str) -> list[Order]:
    with _cursor("read_orders_for_customer") as cur:
        cur.execute(
            """
            SELECT id, customer_id, status, type, total, created_at
            FROM orders
            WHERE customer_id = %s
            ORDER BY created_at ASC
            """,
            (customer_id,),
        )
        order_rows = cur.fetchall() or []
        if not order_rows:
            return []
        cur.execute(
            """
            SELECT order_id, material_id, material_name, quantity, price, total, tara
            FROM order_items
            WHERE order_id = ANY(%s)
            ORDER BY order_id, position ASC
            """,
            ([str(r["id"]) for r in order_rows],),
        )
        items_by_order: dict[str, list[OrderItem]] = {}
        for r in cur.fetchall() or []:
            tara = r.get("tara")
            items_by_order.setdefault(str(r["order_id"]), []).append(
                OrderItem(
                    material_id=str(r["material_id"]),
                    material_name=r["material_name"],
                    quantity=float(r["quantity"] or 0),
                    price=float(r["price"] or 0),
                    total=float(r["total"] or 0),
                    tare=float(tara) if tara is not None else None,
                )
            )

    orders = []
    for r in order_rows:
        oid = str(r["id"])
        items = tuple(items_by_order.get(oid, []))
        orders.append(
            Order(
                id=oid,
                customer_id=str(r["customer_id"]),
                status=r["status"],
                type=r["type"],
                items=items,
                # Re-summed on load so a stale header total never leaks into the ledger.
                total=sum(i.total for i in items),
                created_at=r["created_at"],
            )
        )
    return orders


def create_settlement_record(
    payment_id: str,
    order_id: Optional[str],
    amount: float,
    external_reference: Optional[str] = None,
) -> dict:
    with _cursor("create_settlement_record") as cur:
        cur.execute(
            """
            INSERT INTO mercado_pago_payments
              (payment_id, order_id, status, transaction_amount, external_reference, created_at)
            VALUES
              (%s, %s, 'pending', %s, %s, now())
            ON CONFLICT (payment_id) DO NOTHING
            RETURNING payment_id, status
            """,
            (payment_id, order_id, money(amount), external_reference),
        )
        return cur.fetchone() or {"payment_id": payment_id, "status": "pending"}


def read_settlement_record(payment_id: str) -> Optional[dict]:
    with _cursor("read_settlement_record") as cur:
        cur.execute(
            """
            SELECT payment_id, order_id, status, status_detail, transaction_amount
            FROM mercado_pago_payments
            WHERE payment_id = %s
            """,
            (payment_id,),
        )
        return cur.fetchone()


def read_settlement_status(payment_id: str) -> Optional[str]:
    row = read_settlement_record(payment_id)
    if not row:
        return None
    return str(row.get("status") or "").strip().lower() or None


def upsert_settlement_status(payment_id: str, status: str, status_detail: Optional[str] = None) -> dict:
    with _cursor("upsert_settlement_status") as cur:
        cur.execute(
            """
            INSERT INTO mercado_pago_payments (payment_id, status, status_detail, created_at, updated_at)
            VALUES (%s, %s, %s, now(), now())
            ON CONFLICT (payment_id)
            DO UPDATE SET status = EXCLUDED.status,
                          status_detail = EXCLUDED.status_detail,
                          updated_at = now()
            RETURNING payment_id, order_id, status, transaction_amount
            """,
            (payment_id, status, status_detail),
        )
        return cur.fetchone()


def list_pending_settlements(limit: int = 50) -> list[dict]:
    with _cursor("list_pending_settlements") as cur:
        cur.execute(
            """
            SELECT p.payment_id, p.order_id, p.status
            FROM mercado_pago_payments p
            JOIN orders o ON o.id = p.order_id
            WHERE o.status = 'open'
              AND p.status NOT IN ('rejected', 'cancelled')
            ORDER BY p.created_at ASC
            LIMIT %s
            """,
            (limit,),
        )
        return list(cur.fetchall() or [])


def mark_order_completed(order_id: str) -> bool:
    """Returns False when the order was already completed (idempotent)."""
    with _cursor("mark_order_completed") as cur:
        cur.execute(
            """
            UPDATE orders
            SET status = 'completed', updated_at = now()
            WHERE id = %s AND status = 'open'
            RETURNING id
            """,
            (order_id,),
        )
        return cur.fetchone() is not None


def update_cash_register(register: CashRegister) -> dict:
    with _cursor("update_cash_register") as cur:
        cur.execute(
            """
            INSERT INTO cash_registers
              (id, initial_amount, current_amount, status, opening_timestamp, closing_timestamp, final_amount, difference)
            VALUES
              (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id)
            DO UPDATE SET current_amount = EXCLUDED.current_amount,
                          status = EXCLUDED.status,
                          closing_timestamp = EXCLUDED.closing_timestamp,
                          final_amount = EXCLUDED.final_amount,
                          difference = EXCLUDED.difference
            WHERE cash_registers.status = 'open'
            RETURNING id, status, current_amount
            """,
            (
                register.id,
                money(register.initial_amount),
                money(register.current_amount),
                register.status,
                register.opened_at,
                register.closed_at,
                money(register.final_amount) if register.final_amount is not None else None,
                money(register.difference) if register.difference is not None else None,
            ),
        )
        row = cur.fetchone()
        if not row:
            raise PersistenceFailure(f"cash register {register.id} is already closed")
        return row


def read_completed_order_items() -> list[dict]:
    with _cursor("read_completed_order_items") as cur:
        cur.execute(
            """
            SELECT oi.material_name, oi.quantity, o.type
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id
            WHERE o.status = 'completed'
            """
        )
        return list(cur.fetchall() or [])
