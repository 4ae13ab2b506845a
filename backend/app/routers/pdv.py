from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..deps import get_state, require_open_register
from ..ledger import Customer, Material, Order
from ..numeric import format_weight, money
from ..state import EngineState

router = APIRouter(prefix="/pdv", tags=["pdv"])


class CustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class SelectCustomerIn(BaseModel):
    customer_id: Optional[str] = None


class ModeIn(BaseModel):
    sale: bool = False


class MaterialIn(BaseModel):
    id: str
    name: str
    price: float = Field(default=0, ge=0, allow_inf_nan=False)
    sale_price: float = Field(default=0, ge=0, allow_inf_nan=False)


class AddItemIn(BaseModel):
    material: MaterialIn
    quantity: float = Field(gt=0, allow_inf_nan=False)
    tare: float = Field(default=0, ge=0, allow_inf_nan=False)
    price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)


def _order_out(order: Optional[Order]) -> Optional[dict]:
    if order is None:
        return None
    return {
        "id": order.id,
        "customer_id": order.customer_id,
        "status": order.status,
        "type": order.type,
        "total": money(order.total),
        "items": [
            {
                "material_id": it.material_id,
                "material_name": it.material_name,
                "quantity": format_weight(it.quantity),
                "tare": format_weight(it.tare) if it.tare is not None else None,
                "price": it.price,
                "total": money(it.total),
            }
            for it in order.items
        ],
    }


def _customer_out(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "orders": len(customer.orders),
        "open_order_id": (customer.open_order().id if customer.open_order() else None),
    }


@router.get("/customers")
def list_customers(state: EngineState = Depends(get_state)):
    return {"customers": [_customer_out(c) for c in state.ledger.customers]}


@router.post("/customers")
def create_customer(data: CustomerIn, state: EngineState = Depends(get_state)):
    customer = state.ledger.add_customer(data.name)
    state.persistence.save_customer(customer)
    return {"customer": _customer_out(customer)}


@router.post("/reload")
def reload_ledger(state: EngineState = Depends(get_state)):
    count = state.reload_customers()
    return {"customers": count, "active_order": _order_out(state.ledger.active_order)}


@router.post("/customers/select")
def select_customer(data: SelectCustomerIn, state: EngineState = Depends(get_state)):
    customer = None
    if data.customer_id:
        customer = state.ledger.find_customer(data.customer_id)
        if customer is None:
            raise HTTPException(status_code=404, detail="customer not found")
    state.ledger.select_customer(customer)
    return {"customer_id": data.customer_id, "active_order": _order_out(state.ledger.active_order)}


@router.post("/mode")
def set_mode(data: ModeIn, state: EngineState = Depends(get_state)):
    state.ledger.set_sale_mode(data.sale)
    return {"mode": state.ledger.mode}


@router.post("/orders")
def open_order(state: EngineState = Depends(get_state)):
    order = state.ledger.open_order()
    return {"order": _order_out(order)}


@router.get("/orders/active")
def active_order(state: EngineState = Depends(get_state)):
    return {"order": _order_out(state.ledger.active_order)}


@router.post("/orders/active/items")
def add_item(data: AddItemIn, state: EngineState = Depends(get_state)):
    material = Material(
        id=data.material.id,
        name=data.material.name,
        price=data.material.price,
        sale_price=data.material.sale_price,
    )
    state.ledger.add_item(material, data.quantity, data.tare, data.price)
    return {"order": _order_out(state.ledger.active_order)}


@router.delete("/orders/active/items/{index}")
def remove_item(index: int, state: EngineState = Depends(get_state)):
    state.ledger.remove_item(index)
    return {"order": _order_out(state.ledger.active_order)}


@router.get("/stats")
def stats(state: EngineState = Depends(get_state)):
    s = state.ledger.stats
    return {
        "total_customers": s.total_customers,
        "total_items": s.total_items,
        "order_total": money(s.order_total),
        "has_active_order": s.has_active_order,
    }


@router.post("/orders/{order_id}/checkout/cash")
def checkout_cash(order_id: str, state: EngineState = Depends(get_state)):
    require_open_register(state)
    completion = state.orchestrator.complete_cash(order_id)
    return {
        "order": _order_out(completion.order),
        "register_amount": money(state.orchestrator.register.current_amount),
    }


@router.post("/orders/{order_id}/print")
def print_receipt(order_id: str, state: EngineState = Depends(get_state)):
    completion = state.orchestrator.completion_for(order_id)
    if completion is None:
        raise HTTPException(status_code=404, detail="order not completed")
    return {"print": completion.print_receipt(), "print_count": completion.print_count}


@router.post("/orders/{order_id}/save")
def save_order(order_id: str, state: EngineState = Depends(get_state)):
    completion = state.orchestrator.completion_for(order_id)
    if completion is None:
        raise HTTPException(status_code=404, detail="order not completed")
    completion.persist()
    return {"order_id": order_id, "persisted": completion.persisted}


@router.get("/stock")
def material_stock(material: str, state: EngineState = Depends(get_state)):
    return {"material": material, "stock": format_weight(state.stock.material_stock(material))}
