"""Glue shared by the routers: lookups, payload conversion, response shapes."""
from datetime import datetime, timezone
import secrets

from sqlalchemy.orm import Session

from hms.errors import NotFoundError
from hms.models.core import ChargeRule as ChargeRuleRow, Payment
from hms.services.billing import (
    DISCOUNT_NONE, NO_DISCOUNT, ChargeLine, ChargeRule, DiscountSpec,
    applicable_rules, money, parse_non_negative, validate_discount,
)
from hms.services.ledger import PaymentLedger
from hms.services.snapshots import recompute, refresh, stored_breakdown, stored_discount
from hms.util.audit import audit


def get_or_404(db: Session, model, entity_id: str, name: str):
    obj = db.get(model, entity_id)
    if obj is None or getattr(obj, "deleted_at", None) is not None:
        raise NotFoundError(name, entity_id)
    return obj


def new_number(prefix: str) -> str:
    return f"{prefix}-{datetime.now(timezone.utc):%y%m%d}-{secrets.token_hex(3).upper()}"


def m(x) -> str:
    return f"{money(x):.2f}"


def lines_from(payload) -> list[ChargeLine]:
    return [ChargeLine(description=l.description, quantity=l.quantity, unit_amount=l.unit_amount) for l in payload]


def normalized_lines(lines) -> list[ChargeLine]:
    """Validated lines at the 2-decimal precision the columns store."""
    out = []
    for i, line in enumerate(lines):
        qty = parse_non_negative(line.quantity, f"lines[{i}].quantity")
        unit = parse_non_negative(line.unit_amount, f"lines[{i}].unit_amount")
        out.append(ChargeLine(description=line.description, quantity=money(qty), unit_amount=money(unit)))
    return out


def rules_from(payload) -> list[ChargeRule]:
    return [ChargeRule(name=r.name, rate=r.rate, active=r.active) for r in payload]


def normalized_discount(d: DiscountSpec) -> DiscountSpec:
    dtype, value = validate_discount(d)
    if dtype == DISCOUNT_NONE:
        return NO_DISCOUNT
    return DiscountSpec(type=dtype, value=money(value), reason=d.reason)


def discount_from(payload) -> DiscountSpec:
    if payload is None:
        return NO_DISCOUNT
    return normalized_discount(DiscountSpec(type=payload.type, value=payload.value, reason=payload.reason))


def active_rules(db: Session, scope: str) -> list[ChargeRule]:
    rows = db.query(ChargeRuleRow).filter(ChargeRuleRow.deleted_at.is_(None)).order_by(ChargeRuleRow.name.asc()).all()
    return applicable_rules(rows, scope)


def discount_out(d: DiscountSpec) -> dict:
    return {"type": d.type, "value": m(d.value), "reason": d.reason}


def summary_out(summary: dict) -> dict:
    out = {k: m(v) for k, v in summary.items() if k not in ("payment_status", "suggestions")}
    out["payment_status"] = summary["payment_status"]
    out["suggestions"] = {k: m(v) for k, v in summary["suggestions"].items()}
    return out


def billing_out(db: Session, ledger: PaymentLedger, entity) -> dict:
    """Stored snapshot next to a live recomputation and the ledger balances."""
    live = recompute(db, entity)
    return {
        "snapshot": stored_breakdown(entity),
        "discount": discount_out(stored_discount(entity)),
        "live": live.as_dict(),
        "snapshot_matches": live.total == money(entity.total_amount),
        "ledger": summary_out(ledger.summary(entity)),
        "payment_status": entity.payment_status.value,
        "version": entity.version,
    }


def payment_out(p: Payment) -> dict:
    return {
        "id": p.id,
        "entity_kind": p.entity_kind.value,
        "entity_id": p.entity_id,
        "payment_type": p.payment_type.value,
        "payment_method": p.payment_method.value,
        "amount": m(p.amount),
        "status": p.status.value,
        "transaction_reference": p.transaction_reference,
        "notes": p.notes,
        "due_date": p.due_date.isoformat() if p.due_date else None,
        "processed_by_id": p.processed_by_id,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def save_discount(db: Session, ledger: PaymentLedger, entity, discount: DiscountSpec, actor: str | None) -> DiscountSpec:
    """Rewrite the snapshot with a new discount and return what was stored."""
    discount = normalized_discount(discount)
    with ledger.locks.hold(entity.billable_kind, entity.id):
        try:
            db.refresh(entity)
            before = discount_out(stored_discount(entity))
            refresh(db, entity, discount=discount)
            ledger.checkout_if_settled(entity)
            audit(db, actor, entity.billable_kind.value, entity.id, "DISCOUNT",
                  before=before, after=discount_out(stored_discount(entity)), reason=discount.reason)
            db.commit()
        except Exception:
            db.rollback()
            raise
    return stored_discount(entity)


def page_args(page: int, size: int) -> tuple[int, int, int]:
    if page < 1:
        page = 1
    if size < 1 or size > 200:
        size = 20
    return page, size, (page - 1) * size
