from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..cash_register import CashRegister, apply_movement, close_register, open_register, reconcile
from ..deps import get_state, require_open_register
from ..logs import json_log
from ..numeric import money
from ..state import EngineState

router = APIRouter(prefix="/cash-register", tags=["cash-register"])


class RegisterOpenIn(BaseModel):
    initial_amount: float = Field(ge=0, allow_inf_nan=False)


class CashMovementIn(BaseModel):
    kind: Literal["add_funds", "expense"]
    amount: float = Field(gt=0, allow_inf_nan=False)
    description: Optional[str] = None


class RegisterCloseIn(BaseModel):
    final_amount: float = Field(ge=0, allow_inf_nan=False)


def _register_out(register: Optional[CashRegister]) -> Optional[dict]:
    if register is None:
        return None
    return {
        "id": register.id,
        "status": register.status,
        "initial_amount": money(register.initial_amount),
        "current_amount": money(register.current_amount),
        "opened_at": register.opened_at,
        "closed_at": register.closed_at,
        "final_amount": money(register.final_amount) if register.final_amount is not None else None,
        "difference": money(register.difference) if register.difference is not None else None,
        "movements": len(register.movements),
    }


@router.get("")
def get_register(state: EngineState = Depends(get_state)):
    return {"register": _register_out(state.orchestrator.register)}


@router.post("/open")
def open_cash_register(data: RegisterOpenIn, state: EngineState = Depends(get_state)):
    current = state.orchestrator.register
    if current is not None and current.status == "open":
        raise HTTPException(status_code=400, detail="cash register already open")
    register = open_register(data.initial_amount)
    state.persistence.save_register(register)
    state.orchestrator.register = register
    json_log("info", "cash_register.opened", register_id=register.id, initial_amount=register.initial_amount)
    return {"register": _register_out(register)}


@router.post("/movements")
def add_movement(data: CashMovementIn, state: EngineState = Depends(get_state)):
    register = require_open_register(state)
    updated = apply_movement(register, data.amount, data.kind, data.description)
    state.persistence.save_register(updated)
    state.orchestrator.register = updated
    return {"register": _register_out(updated)}


@router.get("/reconciliation")
def preview_reconciliation(
    counted: float = Query(..., ge=0, allow_inf_nan=False),
    state: EngineState = Depends(get_state),
):
    register = require_open_register(state)
    result = reconcile(register.current_amount, counted)
    return {
        "expected": money(register.current_amount),
        "counted": money(counted),
        "difference": money(result.difference),
        "status": result.status,
        "display_amount": result.display_amount,
    }


@router.post("/close")
def close_cash_register(data: RegisterCloseIn, state: EngineState = Depends(get_state)):
    register = require_open_register(state)
    closed, result = close_register(register, data.final_amount)
    # Persist first: a failed write leaves the register open locally as well.
    state.persistence.save_register(closed)
    state.orchestrator.register = closed
    json_log(
        "info",
        "cash_register.closed",
        register_id=closed.id,
        expected=register.current_amount,
        counted=data.final_amount,
        status=result.status,
    )
    return {
        "register": _register_out(closed),
        "status": result.status,
        "difference": money(result.difference),
        "display_amount": result.display_amount,
    }
