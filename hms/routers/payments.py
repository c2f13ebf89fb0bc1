from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hms.db import get_db
from hms.deps import get_ledger, require_auth, require_perm
from hms.models.core import Payment, Reservation, RestaurantBill
from hms.routers.helpers import get_or_404, m, payment_out, summary_out
from hms.schemas.payments import PaymentIn, PaymentStatusIn
from hms.services.ledger import PaymentLedger

router = APIRouter(tags=["payments"])


def _listing(ledger: PaymentLedger, entity) -> dict:
    return {
        "items": [payment_out(p) for p in ledger.records(entity)],
        "summary": summary_out(ledger.summary(entity)),
    }


def _record(ledger: PaymentLedger, entity, body: PaymentIn, sub: str) -> dict:
    p = ledger.record_payment(
        entity,
        body.amount,
        body.payment_type,
        body.payment_method,
        reference=body.transaction_reference,
        notes=body.notes,
        due_date=body.due_date,
        processed_by=sub,
        expected_remaining=body.expected_remaining,
        status=body.status,
    )
    out = {"payment": payment_out(p), "summary": summary_out(ledger.summary(entity)),
           "paid_amount": m(entity.paid_amount), "payment_status": entity.payment_status.value}
    if isinstance(entity, Reservation):
        out["reservation_status"] = entity.status.value
    return out


@router.get("/reservations/{reservation_id}/payments")
def list_reservation_payments(reservation_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                              ledger: PaymentLedger = Depends(get_ledger)):
    return _listing(ledger, get_or_404(db, Reservation, reservation_id, "reservation"))


@router.post("/reservations/{reservation_id}/payments")
def pay_reservation(reservation_id: str, body: PaymentIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_auth), ledger: PaymentLedger = Depends(get_ledger)):
    return _record(ledger, get_or_404(db, Reservation, reservation_id, "reservation"), body, sub)


@router.get("/restaurant/bills/{bill_id}/payments")
def list_bill_payments(bill_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                       ledger: PaymentLedger = Depends(get_ledger)):
    return _listing(ledger, get_or_404(db, RestaurantBill, bill_id, "bill"))


@router.post("/restaurant/bills/{bill_id}/payments")
def pay_bill(bill_id: str, body: PaymentIn, db: Session = Depends(get_db),
             sub: str = Depends(require_auth), ledger: PaymentLedger = Depends(get_ledger)):
    return _record(ledger, get_or_404(db, RestaurantBill, bill_id, "bill"), body, sub)


@router.patch("/payments/{payment_id}/status")
def set_payment_status(payment_id: str, body: PaymentStatusIn, db: Session = Depends(get_db),
                       sub: str = Depends(require_perm("PAYMENT_STATUS")),
                       ledger: PaymentLedger = Depends(get_ledger)):
    p = ledger.set_status(get_or_404(db, Payment, payment_id, "payment"), body.status, actor=sub)
    entity = ledger.entity_for(p)
    return {"payment": payment_out(p), "summary": summary_out(ledger.summary(entity))}
