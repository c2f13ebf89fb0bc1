"""
Persisted billing snapshot of a reservation or restaurant bill.

``apply_breakdown`` is the only writer of the derived columns (subtotal,
taxes, discount, total). The rules that were applied are stored with the
snapshot so that re-running the calculator later on the same lines
reproduces the stored total, even after the charge-rule registry changes.
Callers hold the entity lock and commit.
"""
import json
import logging

from sqlalchemy.orm import Session

from hms.models.core import (
    OrderStatus, OrderType, Reservation, ReservationLine,
    RestaurantBill, RestaurantOrder, RestaurantOrderItem,
)
from hms.services.billing import (
    ChargeBreakdown, ChargeLine, DiscountSpec, compute_charges, money, rules_from_breakdown,
)
from hms.services.ledger import payment_status_for

log = logging.getLogger(__name__)


def stored_discount(entity) -> DiscountSpec:
    return DiscountSpec.from_fields(entity.discount_type, entity.discount_value, entity.discount_reason)


def stored_tax_breakdown(entity) -> list[dict]:
    return json.loads(entity.applied_taxes) if entity.applied_taxes else []


def stored_rules(entity):
    return rules_from_breakdown(stored_tax_breakdown(entity))


def stored_breakdown(entity) -> dict:
    """The snapshot as the API reports it, with 2-decimal strings."""
    return {
        "subtotal": f"{money(entity.subtotal):.2f}",
        "tax_breakdown": stored_tax_breakdown(entity),
        "tax_total": f"{money(entity.tax_amount):.2f}",
        "discount_amount": f"{money(entity.discount_amount):.2f}",
        "total": f"{money(entity.total_amount):.2f}",
    }


def apply_breakdown(entity, breakdown: ChargeBreakdown, discount: DiscountSpec) -> None:
    entity.subtotal = breakdown.subtotal
    entity.tax_amount = breakdown.tax_total
    entity.applied_taxes = json.dumps([t.as_dict() for t in breakdown.tax_breakdown])
    if discount.is_none:
        entity.discount_type = None
        entity.discount_value = 0
        entity.discount_reason = None
    else:
        entity.discount_type = discount.type
        entity.discount_value = money(discount.value)
        entity.discount_reason = discount.reason
    entity.discount_amount = breakdown.discount_amount
    entity.total_amount = breakdown.total
    # a new total can move the entity between partial and paid
    entity.payment_status = payment_status_for(breakdown.total, entity.paid_amount or 0)
    entity.version = (entity.version or 1) + 1


# ── Lines ───────────────────────────────────────────────────────────────────

def order_item_lines(items) -> list[ChargeLine]:
    return [ChargeLine(description=i.dish_name, quantity=i.quantity, unit_amount=i.unit_price) for i in items]


def order_lines(db: Session, order_id: str) -> list[ChargeLine]:
    items = (
        db.query(RestaurantOrderItem)
        .filter(RestaurantOrderItem.order_id == order_id)
        .order_by(RestaurantOrderItem.created_at.asc(), RestaurantOrderItem.id.asc())
        .all()
    )
    return order_item_lines(items)


def reservation_lines(db: Session, reservation: Reservation) -> list[ChargeLine]:
    """Room lines in position order, then items of room-service orders charged to the stay."""
    rows = (
        db.query(ReservationLine)
        .filter(ReservationLine.reservation_id == reservation.id)
        .order_by(ReservationLine.position.asc())
        .all()
    )
    lines = [ChargeLine(description=r.description, quantity=r.quantity, unit_amount=r.unit_amount) for r in rows]
    orders = (
        db.query(RestaurantOrder)
        .filter(
            RestaurantOrder.reservation_id == reservation.id,
            RestaurantOrder.order_type == OrderType.ROOM,
            RestaurantOrder.status != OrderStatus.CANCELLED,
        )
        .order_by(RestaurantOrder.created_at.asc(), RestaurantOrder.id.asc())
        .all()
    )
    for o in orders:
        lines.extend(order_lines(db, o.id))
    return lines


def lines_for(db: Session, entity) -> list[ChargeLine]:
    if isinstance(entity, Reservation):
        return reservation_lines(db, entity)
    if isinstance(entity, RestaurantBill):
        return order_lines(db, entity.order_id)
    raise TypeError(f"not a billable entity: {type(entity).__name__}")


# ── Recompute ───────────────────────────────────────────────────────────────

def recompute(db: Session, entity, rules=None, discount: DiscountSpec | None = None) -> ChargeBreakdown:
    """Run the calculator over the entity's current lines. Reads only."""
    return compute_charges(
        lines_for(db, entity),
        stored_rules(entity) if rules is None else rules,
        stored_discount(entity) if discount is None else discount,
    )


def refresh(db: Session, entity, rules=None, discount: DiscountSpec | None = None) -> ChargeBreakdown:
    """Recompute and rewrite the snapshot; ``None`` keeps the stored rules or discount."""
    discount = stored_discount(entity) if discount is None else discount
    breakdown = recompute(db, entity, rules, discount)
    apply_breakdown(entity, breakdown, discount)
    log.debug("snapshot %s %s -> total %s", entity.billable_kind.value, entity.id, breakdown.total)
    return breakdown


def snapshot_matches(db: Session, entity) -> bool:
    return recompute(db, entity).total == money(entity.total_amount)
