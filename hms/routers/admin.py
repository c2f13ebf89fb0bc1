from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from hms.db import get_db
from hms.config import settings
from hms.util.security import hash_pw
from hms.models.core import (
    Branch, User, ChargeRule, RuleStatus,
    Role, Permission, RolePermission, UserRole,
)

router = APIRouter(prefix="/admin", tags=["admin"])

PERMISSIONS = {
    "DISCOUNT": "Apply or change a discount",
    "SETTINGS_EDIT": "Edit charge rules and stock items",
    "PAYMENT_STATUS": "Settle or fail a pending payment",
}

# name, rate, reservations, orders
DEFAULT_RULES = [
    ("VAT", Decimal("13.00"), True, True),
    ("Service Charge", Decimal("10.00"), False, True),
]

@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    b = db.query(Branch).first()
    if not b:
        b = Branch(name="Main Branch", phone="014000000", address="Thamel, Kathmandu")
        db.add(b); db.flush()

    u = db.query(User).filter(User.mobile == "9999999999").first()
    if not u:
        u = User(
            branch_id=b.id,
            name="Admin",
            mobile="9999999999",
            email="admin@example.com",
            pass_hash=hash_pw("admin"),
            active=True,
        )
        db.add(u); db.flush()

    for name, rate, res, orders in DEFAULT_RULES:
        if not db.query(ChargeRule).filter(ChargeRule.name == name).first():
            db.add(ChargeRule(name=name, rate=rate, status=RuleStatus.ACTIVE,
                              apply_to_reservations=res, apply_to_orders=orders))

    admin_role = db.query(Role).filter(Role.code == "ADMIN").first()
    if not admin_role:
        admin_role = Role(code="ADMIN")
        db.add(admin_role); db.flush()

    existing = {p.code: p for p in db.query(Permission).filter(Permission.code.in_(PERMISSIONS)).all()}
    for code, description in PERMISSIONS.items():
        perm = existing.get(code)
        if not perm:
            perm = Permission(code=code, description=description)
            db.add(perm); db.flush()
        if not db.query(RolePermission).filter_by(role_id=admin_role.id, permission_id=perm.id).first():
            db.add(RolePermission(role_id=admin_role.id, permission_id=perm.id))

    if not db.query(UserRole).filter_by(user_id=u.id, role_id=admin_role.id).first():
        db.add(UserRole(user_id=u.id, role_id=admin_role.id))

    db.commit()
    return {
        "branch_id": b.id,
        "admin_mobile": u.mobile,
        "admin_password": "admin",
    }
