from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.orm import Session
from hms.config import settings
from hms.db import get_db
from hms.models.core import Role, RolePermission, Permission, UserRole
from hms.services.discounts import DiscountSessionRegistry
from hms.services.ledger import PaymentLedger
from hms.services.low_stock import LowStockChecker
from hms.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return decode_token(creds.credentials)["sub"]
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def _user_permissions(db: Session, user_id: str) -> set[str]:
    q = (db.query(Permission.code)
         .join(RolePermission, RolePermission.permission_id == Permission.id)
         .join(Role, Role.id == RolePermission.role_id)
         .join(UserRole, UserRole.role_id == Role.id)
         .filter(UserRole.user_id == user_id))
    return {row[0] for row in q.all()}

def _is_admin(db: Session, user_id: str) -> bool:
    return (
        db.query(Role)
          .join(UserRole, UserRole.role_id == Role.id)
          .filter(UserRole.user_id == user_id, Role.code == "ADMIN")
          .first()
    ) is not None

def has_perm(db: Session, user_id: str, code: str) -> bool:
    return _is_admin(db, user_id) or code in _user_permissions(db, user_id)

def require_perm(code: str):
    def _dep(sub: str = Depends(require_auth), db: Session = Depends(get_db)):
        if not has_perm(db, sub, code):
            raise HTTPException(status_code=403, detail=f"Missing permission: {code}")
        return sub
    return _dep

# Process-wide services are built once in hms.main and kept on app.state

def get_ledger(request: Request, db: Session = Depends(get_db)) -> PaymentLedger:
    return PaymentLedger(
        db, request.app.state.entity_locks,
        overpayment_policy=settings.OVERPAYMENT_POLICY,
        require_credit_due_date=settings.REQUIRE_CREDIT_DUE_DATE,
    )

def get_discount_sessions(request: Request) -> DiscountSessionRegistry:
    return request.app.state.discount_sessions

def get_low_stock_checker(request: Request) -> LowStockChecker:
    return request.app.state.low_stock_checker
