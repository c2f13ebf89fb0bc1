"""
Typed errors raised by the billing core.

Routers let these propagate; ``install_error_handlers`` maps every
``BillingError`` to a JSON response ``{"detail": ..., "error": ...}``
carrying the class' HTTP status.
"""
from decimal import Decimal
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


class BillingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra(self) -> dict:
        return {}


class ValidationError(BillingError):
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def extra(self) -> dict:
        return {"field": self.field}


class OverpaymentError(BillingError):
    status_code = 409

    def __init__(self, amount: Decimal, remaining: Decimal):
        super().__init__(f"amount {amount:.2f} exceeds remaining balance {remaining:.2f}")
        self.amount = amount
        self.remaining = remaining

    def extra(self) -> dict:
        return {"amount": f"{self.amount:.2f}", "remaining": f"{self.remaining:.2f}"}


class NotFoundError(BillingError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id

    def extra(self) -> dict:
        return {"entity": self.entity, "entity_id": self.entity_id}


class ConcurrencyConflict(BillingError):
    status_code = 409


class InvalidTransition(BillingError):
    status_code = 409


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BillingError)
    async def _billing_error(request: Request, exc: BillingError):
        log.info("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
        body = {"detail": exc.message, "error": type(exc).__name__, **exc.extra()}
        return JSONResponse(status_code=exc.status_code, content=body)
