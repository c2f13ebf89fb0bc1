from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hms.db import get_db
from hms.deps import require_auth
from hms.models.core import Guest
from hms.routers.helpers import get_or_404, m
from hms.schemas.reservations import GuestIn

router = APIRouter(prefix="/guests", tags=["guests"])


def _out(g: Guest) -> dict:
    return {"id": g.id, "name": g.name, "phone": g.phone, "email": g.email,
            "branch_id": g.branch_id, "credit_balance": m(g.credit_balance)}


@router.post("")
def create_guest(body: GuestIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    g = Guest(name=body.name, phone=body.phone, email=body.email, branch_id=body.branch_id, credit_balance=0)
    db.add(g)
    db.commit()
    return _out(g)


@router.get("/{guest_id}")
def get_guest(guest_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _out(get_or_404(db, Guest, guest_id, "guest"))
