import asyncio

import pytest

from backend.app.cash_register import open_register
from backend.app.completion import OrderCompletionOrchestrator, Settlement
from backend.app.errors import (
    InsufficientFunds,
    PaymentInProgress,
    PdvError,
    PersistenceFailure,
    RegisterClosed,
    SettledAmountMismatch,
    SettlementUndetermined,
)
from backend.app.ledger import Material, OrderLedger
from backend.app.notifications import ORDER_COMPLETED, PAYMENT_STATUS_CHANGED, Notifier
from backend.app.settlement import PaymentStatus, SettlementPoller, SettlementResult
from backend.app.ttl_cache import TTLCache

COPPER = Material(id="m-cu", name="Cobre", price=30.0, sale_price=35.0)


class _FakePersistence:
    def __init__(self, fail=False):
        self.fail = fail
        self.persist_calls = 0
        self.saved_orders = []
        self.settlement_records = []

    def save_order(self, order):
        self.saved_orders.append(order)
        return {"id": order.id}

    def create_settlement_record(self, payment_id, order_id, amount):
        self.settlement_records.append((payment_id, order_id, amount))
        return {"payment_id": payment_id, "status": "pending"}

    def persist_completion(self, order, register):
        self.persist_calls += 1
        if self.fail:
            raise PersistenceFailure("db down")
        return {"id": order.id, "status": order.status}


def _setup(initial=1000.0, sale=False, fail=False):
    ledger = OrderLedger()
    ledger.set_sale_mode(sale)
    ledger.select_customer(ledger.add_customer("Ana"))
    ledger.open_order()
    ledger.add_item(COPPER, 10.0, tare=0.5)
    notifier = Notifier()
    events = []
    notifier.subscribe(lambda event, payload: events.append((event, payload)))
    persistence = _FakePersistence(fail=fail)
    printed = []
    orchestrator = OrderCompletionOrchestrator(
        ledger,
        notifier,
        persistence,
        print_fn=lambda order: printed.append(order.id) or {"print": "ok"},
        register=open_register(initial),
    )
    return orchestrator, ledger.active_order.id, events, persistence, printed


def test_cash_purchase_completes_and_pays_out_of_drawer():
    orch, order_id, events, _, _ = _setup()
    completion = orch.complete_cash(order_id)
    assert completion.order.status == "completed"
    assert orch.register.current_amount == 1000.0 - 285.0
    assert orch.ledger.active_order is None
    assert [e for e, _ in events] == [ORDER_COMPLETED]


def test_sale_adds_to_drawer():
    orch, order_id, _, _, _ = _setup(initial=0.0, sale=True)
    orch.complete_cash(order_id)
    assert orch.register.current_amount == 35.0 * 9.5


def test_completion_is_idempotent_per_order():
    orch, order_id, events, _, _ = _setup()
    first = orch.complete_cash(order_id)
    result = SettlementResult(payment_id="p1", status="approved", attempts=1, terminal=True, source="mirror")
    second = orch.complete(order_id, Settlement.external(result))
    assert second is first
    assert orch.register.current_amount == 715.0
    assert len([e for e, _ in events if e == ORDER_COMPLETED]) == 1


def test_cash_purchase_needs_enough_cash():
    orch, order_id, _, _, _ = _setup(initial=100.0)
    with pytest.raises(InsufficientFunds):
        orch.complete_cash(order_id)
    assert orch.ledger.find_order(order_id).status == "open"
    assert orch.register.current_amount == 100.0


def test_complete_requires_open_register():
    orch, order_id, _, _, _ = _setup()
    orch.register = None
    with pytest.raises(RegisterClosed):
        orch.complete_cash(order_id)


def test_non_terminal_or_rejected_settlement_does_not_complete():
    orch, order_id, _, _, _ = _setup()
    pending = SettlementResult(payment_id="p1", status="pending", attempts=3, terminal=False, source="remote")
    with pytest.raises(SettlementUndetermined):
        orch.complete(order_id, Settlement.external(pending))
    rejected = SettlementResult(payment_id="p1", status="rejected", attempts=3, terminal=True, source="remote")
    with pytest.raises(PdvError) as exc_info:
        orch.complete(order_id, Settlement.external(rejected))
    assert "rejected" in exc_info.value.detail
    assert orch.ledger.find_order(order_id).status == "open"


def test_print_repeats_and_persist_runs_once():
    orch, order_id, _, persistence, printed = _setup()
    completion = orch.complete_cash(order_id)
    completion.print_receipt()
    completion.print_receipt()
    assert printed == [order_id, order_id]
    assert completion.print_count == 2

    assert completion.persisted is False
    first = completion.persist()
    second = completion.persist()
    assert first == second == {"id": order_id, "status": "completed"}
    assert persistence.persist_calls == 1
    assert completion.persisted is True


def test_failed_persist_is_not_retried():
    orch, order_id, _, persistence, _ = _setup(fail=True)
    completion = orch.complete_cash(order_id)
    with pytest.raises(PersistenceFailure):
        completion.persist()
    with pytest.raises(PersistenceFailure):
        completion.persist()
    assert persistence.persist_calls == 1


def _poller(statuses, mirror=None):
    remaining = list(statuses)

    async def read_mirror(_payment_id):
        return mirror

    async def check_remote(_payment_id):
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return PaymentStatus(status=status)

    return SettlementPoller(read_mirror, check_remote, max_attempts=3, interval_seconds=0, retry_backoff_seconds=0)


def test_external_checkout_approved_completes_order():
    orch, order_id, events, persistence, _ = _setup()
    seen = []
    outcome = asyncio.run(
        orch.checkout_external(order_id, "p1", _poller(["pending", "approved"]), on_status_change=seen.append)
    )
    assert outcome.status == "completed"
    assert outcome.completion.order.status == "completed"
    assert seen == ["pending", "approved"]
    assert persistence.settlement_records == [("p1", order_id, 285.0)]
    assert len(persistence.saved_orders) == 1
    assert orch.register.current_amount == 715.0
    names = [e for e, _ in events]
    assert names.count(PAYMENT_STATUS_CHANGED) == 2
    assert names[-1] == ORDER_COMPLETED


def test_external_checkout_timeout_leaves_order_pending():
    orch, order_id, _, _, _ = _setup()
    outcome = asyncio.run(orch.checkout_external(order_id, "p1", _poller(["pending"])))
    assert outcome.status == "pending"
    assert outcome.undetermined
    assert outcome.completion is None
    assert orch.ledger.find_order(order_id).status == "open"
    assert orch.register.current_amount == 1000.0


def test_external_checkout_rejected_keeps_order_open():
    orch, order_id, _, _, _ = _setup()
    outcome = asyncio.run(orch.checkout_external(order_id, "p1", _poller(["rejected"])))
    assert outcome.status == "rejected"
    assert orch.ledger.find_order(order_id).status == "open"


def test_items_are_frozen_while_external_payment_is_polled():
    orch, order_id, _, persistence, _ = _setup()
    edit_errors = []
    calls = []

    async def read_mirror(_payment_id):
        return None

    async def check_remote(_payment_id):
        calls.append(1)
        if len(calls) == 1:
            try:
                orch.ledger.add_item(COPPER, 100.0)
            except PaymentInProgress as exc:
                edit_errors.append(exc)
            try:
                orch.ledger.remove_item(0)
            except PaymentInProgress as exc:
                edit_errors.append(exc)
            return PaymentStatus(status="pending")
        return PaymentStatus(status="approved")

    poller = SettlementPoller(read_mirror, check_remote, max_attempts=3, interval_seconds=0, retry_backoff_seconds=0)
    outcome = asyncio.run(orch.checkout_external(order_id, "p1", poller))

    assert len(edit_errors) == 2
    assert outcome.status == "completed"
    assert outcome.completion.order.total == 285.0
    assert len(outcome.completion.order.items) == 1
    assert persistence.settlement_records == [("p1", order_id, 285.0)]
    assert orch.register.current_amount == 715.0
    assert not orch.ledger.is_locked(order_id)


def test_lock_is_released_when_payment_is_not_approved():
    orch, order_id, _, _, _ = _setup()
    asyncio.run(orch.checkout_external(order_id, "p1", _poller(["rejected"])))
    assert not orch.ledger.is_locked(order_id)
    orch.ledger.add_item(COPPER, 1.0)
    assert len(orch.ledger.active_order.items) == 2


def test_second_checkout_for_same_order_is_refused_while_polling():
    orch, order_id, _, _, _ = _setup()
    orch.ledger.lock_order(order_id)
    with pytest.raises(PaymentInProgress):
        asyncio.run(orch.checkout_external(order_id, "p2", _poller(["approved"])))
    assert orch.ledger.is_locked(order_id)


def test_approval_for_a_different_amount_is_rejected():
    orch, order_id, events, _, _ = _setup()
    result = SettlementResult(payment_id="p1", status="approved", attempts=1, terminal=True, source="mirror")
    with pytest.raises(SettledAmountMismatch):
        orch.complete(order_id, Settlement.external(result, amount=100.0))
    assert orch.ledger.find_order(order_id).status == "open"
    assert orch.register.current_amount == 1000.0
    assert events == []

    orch.complete(order_id, Settlement.external(result, amount=285.0005))
    assert orch.register.current_amount == 715.0


def test_expired_completion_handle_does_not_move_money_again():
    clock = _Clock()
    orch, order_id, events, _, _ = _setup()
    orch._completions = TTLCache(10, clock=clock)
    first = orch.complete_cash(order_id)
    assert orch.completion_for(order_id) is first

    clock.now = 10.0
    assert orch.completion_for(order_id) is None
    again = orch.complete_cash(order_id)
    assert again is not first
    assert again.order.status == "completed"
    assert orch.register.current_amount == 715.0
    assert len([e for e, _ in events if e == ORDER_COMPLETED]) == 1


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now
