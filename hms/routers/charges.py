from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from hms.db import get_db
from hms.deps import require_auth, require_perm
from hms.errors import ValidationError
from hms.models.core import ChargeRule, RuleStatus
from hms.models.common import utcnow
from hms.routers.helpers import active_rules, get_or_404, m
from hms.schemas.billing import ChargeRuleIn, ChargeRulePatch, ScopeLiteral
from hms.services.billing import money, parse_non_negative
from hms.util.audit import audit

router = APIRouter(prefix="/charges", tags=["charges"])


def _out(r: ChargeRule) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "rate": m(r.rate),
        "status": r.status.value,
        "apply_to_reservations": r.apply_to_reservations,
        "apply_to_orders": r.apply_to_orders,
        "notes": r.notes,
    }


@router.get("")
def list_charges(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    rows = db.query(ChargeRule).filter(ChargeRule.deleted_at.is_(None)).order_by(ChargeRule.name.asc()).all()
    return [_out(r) for r in rows]


@router.get("/active")
def list_active(scope: ScopeLiteral, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [{"name": r.name, "rate": m(r.rate)} for r in active_rules(db, scope)]


@router.post("")
def create_charge(body: ChargeRuleIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    r = ChargeRule(
        name=body.name.strip(),
        rate=money(parse_non_negative(body.rate, "rate")),
        status=RuleStatus(body.status),
        apply_to_reservations=body.apply_to_reservations,
        apply_to_orders=body.apply_to_orders,
        notes=body.notes,
    )
    db.add(r)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError("name", f"a charge named {body.name!r} already exists")
    audit(db, sub, "ChargeRule", r.id, "CREATE", after=_out(r))
    db.commit()
    return _out(r)


@router.patch("/{rule_id}")
def update_charge(rule_id: str, body: ChargeRulePatch, db: Session = Depends(get_db),
                  sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    r = get_or_404(db, ChargeRule, rule_id, "charge rule")
    before = _out(r)
    data = body.model_dump(exclude_unset=True)
    if "rate" in data:
        data["rate"] = money(parse_non_negative(data["rate"], "rate"))
    if "status" in data:
        data["status"] = RuleStatus(data["status"])
    for k, v in data.items():
        setattr(r, k, v)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError("name", "a charge with that name already exists")
    audit(db, sub, "ChargeRule", r.id, "UPDATE", before=before, after=_out(r))
    db.commit()
    return _out(r)


@router.delete("/{rule_id}")
def delete_charge(rule_id: str, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    # existing snapshots keep the rules they were computed with
    r = get_or_404(db, ChargeRule, rule_id, "charge rule")
    r.deleted_at = utcnow()
    r.status = RuleStatus.INACTIVE
    r.name = f"{r.name} (deleted {r.id[:8]})"
    audit(db, sub, "ChargeRule", r.id, "DELETE")
    db.commit()
    return {"deleted": True}
