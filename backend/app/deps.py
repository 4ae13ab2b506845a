from typing import Optional

from fastapi import Header, HTTPException, Request

from .cash_register import CashRegister
from .security import verify_webhook_signature
from .state import EngineState


def get_state(request: Request) -> EngineState:
    return request.app.state.engine


def require_open_register(state: EngineState) -> CashRegister:
    register = state.orchestrator.register
    if register is None or register.status != "open":
        raise HTTPException(status_code=400, detail="no open cash register")
    return register


async def require_webhook_signature(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
) -> bytes:
    body = await request.body()
    secret = request.app.state.engine.settings.payment_webhook_secret
    if not secret:
        raise HTTPException(status_code=503, detail="webhook secret not configured")
    if not verify_webhook_signature(body, x_signature, secret):
        raise HTTPException(status_code=401, detail="invalid signature")
    return body
