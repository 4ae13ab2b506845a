"""
Process-wide engine state, built once at startup and injected into routes.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from . import repository
from .cash_register import CashRegister
from .completion import OrderCompletionOrchestrator
from .config import Settings
from .ledger import Customer, Order, OrderLedger
from .logs import json_log
from .notifications import Notifier
from .payments import PaymentStatusClient
from .settlement import SettlementPoller
from .stock import StockCalculator
from .ttl_cache import TTLCache


class EnginePersistence:
    """
    Maps engine values onto the repository.

    Orders are created on first save and updated afterwards; the set of known
    ids lives here so the orchestrator never needs to know which applies.
    """

    def __init__(self, repo=repository):
        self.repo = repo
        self._known_orders: set[str] = set()

    def mark_known(self, order_ids) -> None:
        self._known_orders.update(order_ids)

    def save_customer(self, customer: Customer) -> dict:
        return self.repo.create_customer(customer)

    def save_order(self, order: Order) -> dict:
        if order.id in self._known_orders:
            return self.repo.update_order(order)
        row = self.repo.create_order(order)
        self._known_orders.add(order.id)
        return row

    def save_register(self, register: CashRegister) -> dict:
        return self.repo.update_cash_register(register)

    def create_settlement_record(self, payment_id: str, order_id: str, amount: float) -> dict:
        return self.repo.create_settlement_record(payment_id, order_id, amount)

    def persist_completion(self, order: Order, register: Optional[CashRegister]) -> dict:
        row = self.save_order(order)
        if register is not None:
            self.save_register(register)
        return row


class EngineState:
    def __init__(self, settings: Settings, repo=repository, payment_client: Optional[PaymentStatusClient] = None):
        self.settings = settings
        self.repo = repo
        self.ledger = OrderLedger()
        self.notifier = Notifier()
        self.persistence = EnginePersistence(repo)
        self.payment_client = payment_client or PaymentStatusClient.from_settings(settings)
        self.orchestrator = OrderCompletionOrchestrator(
            self.ledger,
            self.notifier,
            self.persistence,
            print_fn=self._request_print,
            completions=TTLCache(settings.completion_retention_seconds),
        )
        self.stock = StockCalculator(repo.read_completed_order_items, TTLCache(settings.stock_cache_ttl_seconds))
        self.poll_tasks: dict[str, asyncio.Task] = {}
        self.poll_cancel: dict[str, asyncio.Event] = {}
        # Finished polls stay answerable for a while, then drop out.
        self.finished_polls = TTLCache(settings.poll_result_retention_seconds)
        self.notifier.subscribe(self._on_notification)

    def _request_print(self, order: Order) -> dict:
        # Receipt rendering happens client-side; we only signal the request.
        self.notifier.emit("receipt.print_requested", order_id=order.id)
        return {"order_id": order.id, "print": "requested"}

    def _on_notification(self, event: str, payload: dict) -> None:
        if event == "order.completed":
            self.stock.invalidate()

    def reload_customers(self) -> int:
        """
        Rebuilds the ledger from storage. Optimistic in-memory updates that
        never reached the database are dropped here.
        """
        customers = []
        for row in self.repo.read_customers():
            cid = str(row["id"])
            orders = tuple(self.repo.read_orders_for_customer(cid))
            customers.append(Customer(id=cid, name=row["name"], orders=orders))
            self.persistence.mark_known(o.id for o in orders)
        self.ledger.load_customers(customers)
        self.stock.invalidate()
        json_log("info", "ledger.reloaded", customers=len(customers))
        return len(customers)

    def poll_finished(self, payment_id: str, task: asyncio.Task) -> None:
        if self.poll_tasks.get(payment_id) is task:
            del self.poll_tasks[payment_id]
        self.poll_cancel.pop(payment_id, None)
        self.finished_polls.set(payment_id, task)

    def find_poll(self, payment_id: str) -> Optional[asyncio.Task]:
        return self.poll_tasks.get(payment_id) or self.finished_polls.get(payment_id)

    async def read_mirror(self, payment_id: str) -> Optional[str]:
        return await asyncio.to_thread(self.repo.read_settlement_status, payment_id)

    def new_poller(self) -> SettlementPoller:
        return SettlementPoller.from_settings(self.read_mirror, self.payment_client.acheck_status, self.settings)

    def cancel_polls(self) -> None:
        for event in self.poll_cancel.values():
            event.set()
