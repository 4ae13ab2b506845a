"""
Order completion: the only place that finalizes an order and moves register money.

A completion is keyed by order id and happens at most once. A late `approved`
(webhook after the poll already finished, or the other way round) gets the
existing handle back and leaves the register alone.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from .cash_register import CashRegister, apply_order_effect, assert_sufficient_balance
from .errors import NoActiveOrder, PdvError, RegisterClosed, SettledAmountMismatch, SettlementUndetermined
from .ledger import Order, OrderLedger
from .logs import json_log
from .notifications import ORDER_COMPLETED, PAYMENT_STATUS_CHANGED, Notifier
from .numeric import is_equal
from .settlement import SettlementPoller, SettlementResult
from .ttl_cache import TTLCache

_UNSET = object()

DEFAULT_COMPLETION_RETENTION_SECONDS = 3600.0


@dataclass(frozen=True)
class Settlement:
    method: Literal["cash", "external"]
    status: str
    payment_id: Optional[str] = None
    terminal: bool = True
    # Order total the payment was requested for; None for cash.
    amount: Optional[float] = None

    @classmethod
    def cash(cls) -> "Settlement":
        return cls(method="cash", status="approved")

    @classmethod
    def external(cls, result: SettlementResult, amount: Optional[float] = None) -> "Settlement":
        return cls(
            method="external",
            status=result.status,
            payment_id=result.payment_id,
            terminal=result.terminal,
            amount=amount,
        )

    @property
    def approved(self) -> bool:
        return self.terminal and self.status == "approved"


class Completion:
    """
    Handle for a completed order with its two intents.

    `print_receipt` may run any number of times; `persist` reaches the store
    once and replays the first outcome (result or error) afterwards.
    """

    def __init__(
        self,
        order: Order,
        settlement: Settlement,
        register: Optional[CashRegister],
        persist_fn: Callable[[Order, Optional[CashRegister]], Any],
        print_fn: Callable[[Order], Any],
    ):
        self.order = order
        self.settlement = settlement
        self.register = register
        self._persist_fn = persist_fn
        self._print_fn = print_fn
        self._persist_outcome: Any = _UNSET
        self._persist_error: Optional[BaseException] = None
        self.print_count = 0

    @property
    def persisted(self) -> bool:
        return self._persist_outcome is not _UNSET

    def print_receipt(self):
        self.print_count += 1
        return self._print_fn(self.order)

    def persist(self):
        if self._persist_error is not None:
            raise self._persist_error
        if self._persist_outcome is not _UNSET:
            return self._persist_outcome
        try:
            outcome = self._persist_fn(self.order, self.register)
        except Exception as exc:
            self._persist_error = exc
            self._persist_outcome = None
            json_log("error", "order.persist_failed", order_id=self.order.id, error=str(exc))
            raise
        self._persist_outcome = outcome
        return outcome


@dataclass(frozen=True)
class CheckoutOutcome:
    status: str
    settlement: Optional[SettlementResult] = None
    completion: Optional[Completion] = None

    @property
    def undetermined(self) -> bool:
        return self.settlement is not None and not self.settlement.terminal


class OrderCompletionOrchestrator:
    def __init__(
        self,
        ledger: OrderLedger,
        notifier: Notifier,
        persistence,
        print_fn: Callable[[Order], Any],
        register: Optional[CashRegister] = None,
        completions: Optional[TTLCache] = None,
    ):
        self.ledger = ledger
        self.notifier = notifier
        self.persistence = persistence
        self.print_fn = print_fn
        self.register = register
        # Handles expire after the retention window; a later `complete` for the
        # same order then sees status "completed" in the ledger and moves no money.
        self._completions = completions if completions is not None else TTLCache(DEFAULT_COMPLETION_RETENTION_SECONDS)

    def completion_for(self, order_id: str) -> Optional[Completion]:
        return self._completions.get(order_id)

    def complete(self, order_id: str, settlement: Settlement) -> Completion:
        existing = self._completions.get(order_id)
        if existing is not None:
            json_log("info", "order.completion_repeated", order_id=order_id, method=settlement.method)
            return existing

        if not settlement.terminal:
            raise SettlementUndetermined(payment_id=settlement.payment_id, last_status=settlement.status)
        if not settlement.approved:
            raise PdvError(f"payment {settlement.status}")

        order = self.ledger.find_order(order_id)
        if order is None:
            raise NoActiveOrder(f"order {order_id} not found")
        if order.status == "completed":
            # Finalized elsewhere (e.g. reloaded from storage); nothing left to apply.
            completion = Completion(order, settlement, self.register, self.persistence.persist_completion, self.print_fn)
            self._completions.set(order_id, completion)
            return completion
        if not order.items:
            raise PdvError("order has no items")
        if settlement.amount is not None and not is_equal(settlement.amount, order.total):
            json_log(
                "error",
                "order.settled_amount_mismatch",
                order_id=order_id,
                payment_id=settlement.payment_id,
                settled=settlement.amount,
                total=order.total,
            )
            raise SettledAmountMismatch()

        register = self.register
        if register is None or register.status != "open":
            raise RegisterClosed("no open cash register")
        if settlement.method == "cash" and order.type == "purchase":
            assert_sufficient_balance(register, order.total)

        done = self.ledger.complete_order(order_id)
        self.register = apply_order_effect(register, done)
        completion = Completion(done, settlement, self.register, self.persistence.persist_completion, self.print_fn)
        self._completions.set(order_id, completion)

        json_log(
            "info",
            "order.completed",
            order_id=order_id,
            order_type=done.type,
            total=done.total,
            method=settlement.method,
            register_amount=self.register.current_amount,
        )
        self.notifier.emit(
            ORDER_COMPLETED,
            order_id=order_id,
            customer_id=done.customer_id,
            total=done.total,
            order_type=done.type,
            method=settlement.method,
        )
        return completion

    def complete_cash(self, order_id: str) -> Completion:
        return self.complete(order_id, Settlement.cash())

    async def checkout_external(
        self,
        order_id: str,
        payment_id: str,
        poller: SettlementPoller,
        *,
        on_status_change: Optional[Callable[[str], Any]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> CheckoutOutcome:
        order = self.ledger.find_order(order_id)
        if order is None:
            raise NoActiveOrder(f"order {order_id} not found")
        if not order.items:
            raise PdvError("order has no items")

        # Items stay frozen while the payment is in flight; the settled amount is
        # what the customer was asked to pay.
        self.ledger.lock_order(order_id)
        amount = order.total
        completed = False
        try:
            await asyncio.to_thread(self.persistence.save_order, order)
            await asyncio.to_thread(self.persistence.create_settlement_record, payment_id, order_id, amount)

            def _status_changed(status: str) -> None:
                self.notifier.emit(PAYMENT_STATUS_CHANGED, payment_id=payment_id, order_id=order_id, status=status)
                if on_status_change is not None:
                    on_status_change(status)

            result = await poller.poll(payment_id, order_id=order_id, on_status_change=_status_changed, cancel=cancel)
            if result.approved:
                completion = self.complete(order_id, Settlement.external(result, amount=amount))
                completed = True
                return CheckoutOutcome(status="completed", settlement=result, completion=completion)
            if not result.terminal:
                return CheckoutOutcome(status="pending", settlement=result)
            json_log("info", "order.payment_not_approved", order_id=order_id, payment_id=payment_id, status=result.status)
            return CheckoutOutcome(status=result.status, settlement=result)
        finally:
            if not completed:
                self.ledger.unlock_order(order_id)
