from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.db import get_db
from hms.deps import get_discount_sessions, get_ledger, require_auth, require_perm
from hms.errors import InvalidTransition
from hms.models.core import BillableKind, Guest, Reservation, ReservationLine, ReservationStatus
from hms.routers.helpers import (
    active_rules, billing_out, discount_from, get_or_404, lines_from, m, new_number, normalized_lines,
    page_args, save_discount,
)
from hms.schemas.billing import DiscountIn
from hms.schemas.reservations import LinesIn, ReservationIn, ReservationStatusIn
from hms.services.billing import SCOPE_RESERVATION, compute_charges, line_amount
from hms.services.discounts import DiscountSessionRegistry
from hms.services.ledger import PaymentLedger
from hms.services.snapshots import refresh, reservation_lines, stored_discount, stored_rules
from hms.util.audit import audit

router = APIRouter(prefix="/reservations", tags=["reservations"])

ALLOWED = {
    ReservationStatus.PENDING: {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW},
    ReservationStatus.CONFIRMED: {ReservationStatus.CHECKED_IN, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW},
    ReservationStatus.CHECKED_IN: {ReservationStatus.CHECKED_OUT},
}


def _add_lines(db: Session, r: Reservation, lines) -> None:
    for pos, line in enumerate(normalized_lines(lines)):
        db.add(ReservationLine(reservation_id=r.id, position=pos, description=line.description,
                               quantity=line.quantity, unit_amount=line.unit_amount))


def _brief(r: Reservation) -> dict:
    return {
        "id": r.id,
        "confirmation_number": r.confirmation_number,
        "guest_id": r.guest_id,
        "branch_id": r.branch_id,
        "status": r.status.value,
        "total_amount": m(r.total_amount),
        "paid_amount": m(r.paid_amount),
        "payment_status": r.payment_status.value,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


def _detail(db: Session, ledger: PaymentLedger, r: Reservation) -> dict:
    lines = reservation_lines(db, r)
    return {
        **_brief(r),
        "notes": r.notes,
        "lines": [
            {"description": l.description, "quantity": m(l.quantity), "unit_amount": m(l.unit_amount),
             "amount": m(line_amount(l, i))}
            for i, l in enumerate(lines)
        ],
        "billing": billing_out(db, ledger, r),
    }


@router.post("")
def create_reservation(body: ReservationIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                       ledger: PaymentLedger = Depends(get_ledger)):
    get_or_404(db, Guest, body.guest_id, "guest")
    r = Reservation(
        guest_id=body.guest_id,
        branch_id=body.branch_id,
        confirmation_number=new_number("RES"),
        status=ReservationStatus(body.status),
        notes=body.notes,
        created_by_id=sub,
    )
    db.add(r)
    db.flush()
    _add_lines(db, r, lines_from(body.lines))
    db.flush()
    refresh(db, r, rules=active_rules(db, SCOPE_RESERVATION), discount=discount_from(body.discount))
    audit(db, sub, "reservation", r.id, "CREATE", after={"total": m(r.total_amount)})
    db.commit()
    return _detail(db, ledger, r)


@router.get("")
def list_reservations(
    status: str | None = None,
    page: int = 1,
    size: int = 20,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
):
    q = db.query(Reservation).filter(Reservation.deleted_at.is_(None))
    if status:
        try:
            q = q.filter(Reservation.status == ReservationStatus(status))
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid status")
    page, size, offset = page_args(page, size)
    total = q.with_entities(func.count(Reservation.id)).scalar() or 0
    rows = q.order_by(Reservation.created_at.desc()).offset(offset).limit(size).all()
    return {"items": [_brief(r) for r in rows], "total": total}


@router.get("/{reservation_id}")
def get_reservation(reservation_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                    ledger: PaymentLedger = Depends(get_ledger)):
    return _detail(db, ledger, get_or_404(db, Reservation, reservation_id, "reservation"))


@router.put("/{reservation_id}/lines")
def replace_lines(reservation_id: str, body: LinesIn, db: Session = Depends(get_db),
                  sub: str = Depends(require_auth), ledger: PaymentLedger = Depends(get_ledger)):
    r = get_or_404(db, Reservation, reservation_id, "reservation")
    lines = lines_from(body.lines)
    with ledger.locks.hold(BillableKind.RESERVATION, r.id):
        try:
            db.refresh(r)
            before = m(r.total_amount)
            db.query(ReservationLine).filter(ReservationLine.reservation_id == r.id).delete()
            _add_lines(db, r, lines)
            db.flush()
            refresh(db, r)
            ledger.checkout_if_settled(r)
            audit(db, sub, "reservation", r.id, "LINES", before={"total": before}, after={"total": m(r.total_amount)})
            db.commit()
        except Exception:
            db.rollback()
            raise
    return _detail(db, ledger, r)


@router.patch("/{reservation_id}/status")
def set_status(reservation_id: str, body: ReservationStatusIn, db: Session = Depends(get_db),
               sub: str = Depends(require_auth), ledger: PaymentLedger = Depends(get_ledger)):
    r = get_or_404(db, Reservation, reservation_id, "reservation")
    new = ReservationStatus(body.status)
    if new != r.status and new not in ALLOWED.get(r.status, set()):
        raise InvalidTransition(f"reservation cannot go from {r.status.value} to {new.value}")
    before = r.status.value
    r.status = new
    audit(db, sub, "reservation", r.id, "STATUS", before={"status": before}, after={"status": new.value})
    db.commit()
    return _brief(r)


@router.put("/{reservation_id}/discount")
def set_discount(reservation_id: str, body: DiscountIn,
                 db: Session = Depends(get_db), sub: str = Depends(require_perm("DISCOUNT")),
                 ledger: PaymentLedger = Depends(get_ledger)):
    r = get_or_404(db, Reservation, reservation_id, "reservation")
    save_discount(db, ledger, r, discount_from(body), sub)
    return _detail(db, ledger, r)


@router.post("/{reservation_id}/discount/session")
def open_discount_session(reservation_id: str, db: Session = Depends(get_db),
                          sub: str = Depends(require_perm("DISCOUNT")),
                          sessions: DiscountSessionRegistry = Depends(get_discount_sessions)):
    r = get_or_404(db, Reservation, reservation_id, "reservation")
    lines, rules = reservation_lines(db, r), stored_rules(r)
    session = sessions.open(BillableKind.RESERVATION.value, r.id, stored_discount(r),
                            lambda d: compute_charges(lines, rules, d))
    return session.as_dict()
