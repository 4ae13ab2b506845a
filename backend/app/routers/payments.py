import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..completion import CheckoutOutcome, Settlement
from ..deps import get_state, require_open_register, require_webhook_signature
from ..errors import PdvError, SettlementUndetermined
from ..logs import json_log
from ..numeric import money
from ..settlement import SettlementResult
from ..state import EngineState

router = APIRouter(prefix="/payments", tags=["payments"])


class ExternalCheckoutIn(BaseModel):
    order_id: str
    payment_id: str = Field(min_length=1, max_length=64)


def _outcome_out(outcome: CheckoutOutcome) -> dict:
    res = outcome.settlement
    return {
        "status": outcome.status,
        "payment_status": res.status if res else None,
        "attempts": res.attempts if res else None,
        "source": res.source if res else None,
        "order_id": outcome.completion.order.id if outcome.completion else None,
    }


def _on_poll_done(payment_id: str, state: EngineState):
    def _done(task: asyncio.Task) -> None:
        state.poll_finished(payment_id, task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            json_log("warning", "payments.poll_failed", payment_id=payment_id, error=str(exc))
            return
        json_log("info", "payments.poll_finished", payment_id=payment_id, status=task.result().status)

    return _done


@router.post("/checkout")
async def start_external_checkout(data: ExternalCheckoutIn, state: EngineState = Depends(get_state)):
    require_open_register(state)
    running = state.poll_tasks.get(data.payment_id)
    if running is not None and not running.done():
        raise HTTPException(status_code=409, detail="payment already being checked")
    if state.ledger.is_locked(data.order_id):
        raise HTTPException(status_code=409, detail="payment in progress for this order")

    cancel = asyncio.Event()
    poller = state.new_poller()
    task = asyncio.create_task(
        state.orchestrator.checkout_external(data.order_id, data.payment_id, poller, cancel=cancel)
    )
    task.add_done_callback(_on_poll_done(data.payment_id, state))
    state.poll_tasks[data.payment_id] = task
    state.poll_cancel[data.payment_id] = cancel
    return JSONResponse(status_code=202, content={"payment_id": data.payment_id, "status": "pending"})


@router.get("/{payment_id}")
def payment_status(payment_id: str, state: EngineState = Depends(get_state)):
    task = state.find_poll(payment_id)
    if task is None:
        raise HTTPException(status_code=404, detail="payment not tracked")
    if not task.done():
        return {"payment_id": payment_id, "status": "pending", "polling": True}
    if task.cancelled():
        return {"payment_id": payment_id, "status": "pending", "polling": False}
    exc = task.exception()
    if isinstance(exc, SettlementUndetermined):
        # Not a failure: the payment may still settle; the worker keeps checking.
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "payment_id": payment_id,
                "status": "pending",
                "last_status": exc.last_status,
                "polling": False,
                "detail": exc.detail,
            },
        )
    if isinstance(exc, PdvError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"payment_id": payment_id, "status": "error", "detail": exc.detail},
        )
    if exc is not None:
        raise exc
    return {"payment_id": payment_id, "polling": False, **_outcome_out(task.result())}


@router.post("/{payment_id}/cancel")
def cancel_polling(payment_id: str, state: EngineState = Depends(get_state)):
    cancel = state.poll_cancel.get(payment_id)
    if cancel is None:
        raise HTTPException(status_code=404, detail="payment not being polled")
    cancel.set()
    return {"payment_id": payment_id, "cancelled": True}


class WebhookIn(BaseModel):
    payment_id: str
    status: str
    status_detail: Optional[str] = None


@router.post("/webhook")
def payment_webhook(
    body: bytes = Depends(require_webhook_signature),
    state: EngineState = Depends(get_state),
):
    try:
        data = WebhookIn.model_validate(json.loads(body or b"{}"))
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid payload")

    status = data.status.strip().lower()
    row = state.repo.upsert_settlement_status(data.payment_id, status, data.status_detail) or {}
    order_id = row.get("order_id")
    json_log("info", "payments.webhook", payment_id=data.payment_id, status=status, order_id=order_id)

    completed = False
    if status == "approved" and order_id:
        order = state.ledger.find_order(str(order_id))
        register = state.orchestrator.register
        if order is not None and register is not None and register.status == "open":
            amount = row.get("transaction_amount")
            result = SettlementResult(payment_id=data.payment_id, status="approved", attempts=0, terminal=True, source="mirror")
            settlement = Settlement.external(result, amount=float(amount) if amount is not None else None)
            completion = state.orchestrator.complete(order.id, settlement)
            completed = completion.order.status == "completed"
    return {
        "payment_id": data.payment_id,
        "status": status,
        "order_completed": completed,
        "register_amount": money(state.orchestrator.register.current_amount) if state.orchestrator.register else None,
    }
