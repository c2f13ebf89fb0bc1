from contextlib import nullcontext

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from hms.config import settings
from hms.db import get_db
from hms.deps import get_ledger, require_auth
from hms.errors import InvalidTransition, ValidationError
from hms.models.common import utcnow
from hms.models.core import (
    BillableKind, Branch, OrderStatus, OrderType, PaymentMethod, PaymentType, Reservation, ReservationStatus,
    RestaurantBill, RestaurantOrder, RestaurantOrderItem,
)
from hms.routers.helpers import (
    active_rules, billing_out, discount_from, get_or_404, m, new_number, normalized_lines, page_args,
)
from hms.schemas.restaurant import BillIn, OrderIn, OrderItemsIn, OrderStatusIn
from hms.services.billing import SCOPE_ORDER, ChargeLine, line_amount, money, parse_amount
from hms.services.ledger import PaymentLedger
from hms.services.printing import render_bill_html
from hms.services.snapshots import order_lines, refresh
from hms.util.audit import audit

router = APIRouter(prefix="/restaurant", tags=["restaurant"])

CLOSED_STAYS = (ReservationStatus.CHECKED_OUT, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW)


def _add_items(db: Session, order: RestaurantOrder, items) -> None:
    notes = [i.special_instructions for i in items]
    lines = normalized_lines([ChargeLine(i.dish_name, i.quantity, i.unit_price) for i in items])
    for line, note in zip(lines, notes):
        db.add(RestaurantOrderItem(order_id=order.id, dish_name=line.description, quantity=line.quantity,
                                   unit_price=line.unit_amount, special_instructions=note))


def _room_lock(ledger: PaymentLedger, order: RestaurantOrder):
    # room service changes the stay's charges, so it shares the reservation's lock
    if order.order_type == OrderType.ROOM and order.reservation_id:
        return ledger.locks.hold(BillableKind.RESERVATION, order.reservation_id)
    return nullcontext()


def _refresh_stay(db: Session, ledger: PaymentLedger, order: RestaurantOrder, actor: str) -> None:
    if order.order_type != OrderType.ROOM or not order.reservation_id:
        return
    res = db.get(Reservation, order.reservation_id)
    db.refresh(res)
    before = m(res.total_amount)
    refresh(db, res)
    ledger.checkout_if_settled(res)
    audit(db, actor, "reservation", res.id, "ROOM_SERVICE", before={"total": before},
          after={"total": m(res.total_amount), "order_id": order.id})


def _order_out(db: Session, o: RestaurantOrder) -> dict:
    items = (
        db.query(RestaurantOrderItem)
        .filter(RestaurantOrderItem.order_id == o.id)
        .order_by(RestaurantOrderItem.created_at.asc(), RestaurantOrderItem.id.asc())
        .all()
    )
    lines = order_lines(db, o.id)
    return {
        "id": o.id,
        "order_number": o.order_number,
        "order_type": o.order_type.value,
        "status": o.status.value,
        "table_code": o.table_code,
        "reservation_id": o.reservation_id,
        "customer_name": o.customer_name,
        "notes": o.notes,
        "items": [
            {"id": i.id, "dish_name": i.dish_name, "quantity": m(i.quantity), "unit_price": m(i.unit_price),
             "amount": m(line_amount(l, n)), "special_instructions": i.special_instructions}
            for n, (i, l) in enumerate(zip(items, lines))
        ],
        "items_total": m(sum((line_amount(l, n) for n, l in enumerate(lines)), money(0))),
    }


@router.post("/orders")
def create_order(body: OrderIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                 ledger: PaymentLedger = Depends(get_ledger)):
    otype = OrderType(body.order_type)
    if otype == OrderType.ROOM:
        if not body.reservation_id:
            raise ValidationError("reservation_id", "is required for room service")
        res = get_or_404(db, Reservation, body.reservation_id, "reservation")
        if res.status in CLOSED_STAYS:
            raise InvalidTransition(f"reservation is {res.status.value}; room service is closed")
    elif body.reservation_id:
        raise ValidationError("reservation_id", "only room-service orders are charged to a reservation")

    o = RestaurantOrder(
        branch_id=body.branch_id,
        order_number=new_number("ORD"),
        order_type=otype,
        status=OrderStatus.PENDING,
        table_code=body.table_code,
        reservation_id=body.reservation_id,
        customer_name=body.customer_name,
        notes=body.notes,
        created_by_id=sub,
    )
    with _room_lock(ledger, o):
        try:
            db.add(o)
            db.flush()
            _add_items(db, o, body.items)
            db.flush()
            _refresh_stay(db, ledger, o, sub)
            db.commit()
        except Exception:
            db.rollback()
            raise
    return _order_out(db, o)


@router.get("/orders/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _order_out(db, get_or_404(db, RestaurantOrder, order_id, "order"))


@router.post("/orders/{order_id}/items")
def add_items(order_id: str, body: OrderItemsIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
              ledger: PaymentLedger = Depends(get_ledger)):
    o = get_or_404(db, RestaurantOrder, order_id, "order")
    if o.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
        raise InvalidTransition(f"order is {o.status.value}")
    if db.query(RestaurantBill).filter(RestaurantBill.order_id == o.id).first():
        raise InvalidTransition("order is already billed")
    with _room_lock(ledger, o):
        try:
            _add_items(db, o, body.items)
            db.flush()
            _refresh_stay(db, ledger, o, sub)
            db.commit()
        except Exception:
            db.rollback()
            raise
    return _order_out(db, o)


@router.patch("/orders/{order_id}/status")
def set_order_status(order_id: str, body: OrderStatusIn, db: Session = Depends(get_db),
                     sub: str = Depends(require_auth), ledger: PaymentLedger = Depends(get_ledger)):
    o = get_or_404(db, RestaurantOrder, order_id, "order")
    new = OrderStatus(body.status)
    if o.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED) and new != o.status:
        raise InvalidTransition(f"order is {o.status.value}")
    with _room_lock(ledger, o):
        try:
            o.status = new
            if new == OrderStatus.COMPLETED:
                o.completed_at = utcnow()
            db.flush()
            # a cancelled room-service order drops out of the stay's lines
            _refresh_stay(db, ledger, o, sub)
            db.commit()
        except Exception:
            db.rollback()
            raise
    return _order_out(db, o)


# ── Bills ───────────────────────────────────────────────────────────────────

def _bill_out(db: Session, ledger: PaymentLedger, b: RestaurantBill) -> dict:
    return {
        "id": b.id,
        "bill_number": b.bill_number,
        "order_id": b.order_id,
        "branch_id": b.branch_id,
        "customer_name": b.customer_name,
        "customer_phone": b.customer_phone,
        "payment_method": b.payment_method.value if b.payment_method else None,
        "change_amount": m(b.change_amount),
        "total_amount": m(b.total_amount),
        "paid_amount": m(b.paid_amount),
        "payment_status": b.payment_status.value,
        "is_printed": b.is_printed,
        "created_at": b.created_at.isoformat() if b.created_at else None,
        "billing": billing_out(db, ledger, b),
    }


@router.post("/bills")
def create_bill(body: BillIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                ledger: PaymentLedger = Depends(get_ledger)):
    """Bill a dine-in order; with ``payment_method`` it is settled in the same transaction."""
    o = get_or_404(db, RestaurantOrder, body.order_id, "order")
    if o.order_type != OrderType.DINE_IN:
        raise ValidationError("order_id", f"only dine-in orders are billed here, this one is {o.order_type.value}")
    if o.status == OrderStatus.CANCELLED:
        raise InvalidTransition("order is cancelled")
    if db.query(RestaurantBill).filter(RestaurantBill.order_id == o.id).first():
        raise InvalidTransition("order is already billed")
    if not order_lines(db, o.id):
        raise ValidationError("order_id", "order has no items")
    discount = discount_from(body.discount)
    tendered = None
    if body.tendered_amount is not None:
        if body.payment_method is None:
            raise ValidationError("payment_method", "is required with tendered_amount")
        tendered = money(parse_amount(body.tendered_amount, "tendered_amount"))

    b = RestaurantBill(
        bill_number=new_number("BILL"),
        order_id=o.id,
        branch_id=o.branch_id,
        customer_name=body.customer_name or o.customer_name,
        customer_phone=body.customer_phone,
        created_by_id=sub,
    )
    db.add(b)
    db.flush()
    refresh(db, b, rules=active_rules(db, SCOPE_ORDER), discount=discount)
    total = money(b.total_amount)
    if tendered is not None:
        if tendered < total:
            db.rollback()
            raise ValidationError("tendered_amount", f"{tendered:.2f} is less than the bill total {total:.2f}")
        b.change_amount = tendered - total
    o.status = OrderStatus.COMPLETED
    o.completed_at = utcnow()
    audit(db, sub, "bill", b.id, "CREATE", after={"order_id": o.id, "total": m(total)})

    if body.payment_method and total > 0:
        method = PaymentMethod(body.payment_method)
        b.payment_method = method
        # commits the bill together with its payment
        ledger.record_payment(b, total, PaymentType.FULL, method,
                              reference=body.transaction_reference, processed_by=sub)
    else:
        db.commit()
    return _bill_out(db, ledger, b)


@router.get("/bills")
def list_bills(page: int = 1, size: int = 20, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    q = db.query(RestaurantBill).filter(RestaurantBill.deleted_at.is_(None))
    page, size, offset = page_args(page, size)
    total = q.with_entities(func.count(RestaurantBill.id)).scalar() or 0
    rows = q.order_by(RestaurantBill.created_at.desc()).offset(offset).limit(size).all()
    return {
        "items": [
            {"id": b.id, "bill_number": b.bill_number, "order_id": b.order_id,
             "total_amount": m(b.total_amount), "paid_amount": m(b.paid_amount),
             "payment_status": b.payment_status.value, "is_printed": b.is_printed,
             "created_at": b.created_at.isoformat() if b.created_at else None}
            for b in rows
        ],
        "total": total,
    }


@router.get("/bills/{bill_id}")
def get_bill(bill_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth),
             ledger: PaymentLedger = Depends(get_ledger)):
    return _bill_out(db, ledger, get_or_404(db, RestaurantBill, bill_id, "bill"))


@router.get("/bills/{bill_id}/print", response_class=HTMLResponse)
def print_bill(bill_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    b = get_or_404(db, RestaurantBill, bill_id, "bill")
    branch = db.get(Branch, b.branch_id) if b.branch_id else None
    html = render_bill_html(b, order_lines(db, b.order_id), settings.CURRENCY_SYMBOL,
                            branch_name=branch.name if branch else None)
    if not b.is_printed:
        b.is_printed = True
        b.printed_at = utcnow()
        db.commit()
    return HTMLResponse(html)
