from typing import Optional


class PdvError(Exception):
    """
    Base for engine errors.

    `detail` is short and safe to show to the cashier; `status_code` is what the
    HTTP layer answers with (see `main.py`).
    """

    status_code = 400
    detail = "pdv error"

    def __init__(self, detail: Optional[str] = None):
        if detail:
            self.detail = detail
        super().__init__(self.detail)


class NoActiveCustomer(PdvError):
    detail = "no customer selected"


class NoActiveOrder(PdvError):
    detail = "customer or order not selected"


class IndexOutOfRange(PdvError):
    status_code = 404
    detail = "item index out of range"


class OrderTypeMismatch(PdvError):
    status_code = 409
    detail = "order type is fixed once it has items"


class InsufficientFunds(PdvError):
    status_code = 409
    detail = "insufficient cash in register"


class RegisterClosed(PdvError):
    status_code = 409
    detail = "cash register is closed"


class PersistenceFailure(PdvError):
    status_code = 503
    detail = "persistence unavailable"


class SettlementError(PdvError):
    detail = "settlement error"


class TransientSettlementError(SettlementError):
    status_code = 502
    detail = "payment status check failed"


class SettlementUndetermined(SettlementError):
    status_code = 202
    detail = "payment pending - please wait or refresh"

    def __init__(self, detail: Optional[str] = None, *, payment_id: Optional[str] = None, last_status: Optional[str] = None):
        super().__init__(detail)
        self.payment_id = payment_id
        self.last_status = last_status


class SettlementCancelled(SettlementError):
    status_code = 409
    detail = "payment polling cancelled"


class PaymentInProgress(PdvError):
    status_code = 409
    detail = "payment in progress for this order"


class SettledAmountMismatch(PdvError):
    status_code = 409
    detail = "order changed after payment started"
