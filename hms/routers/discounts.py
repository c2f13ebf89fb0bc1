from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hms.db import get_db
from hms.deps import get_discount_sessions, get_ledger, require_perm
from hms.models.core import BillableKind
from hms.routers.helpers import discount_out, get_or_404, m, save_discount
from hms.schemas.reservations import DraftIn
from hms.services.discounts import DiscountSessionRegistry
from hms.services.ledger import ENTITY_MODELS, PaymentLedger

router = APIRouter(prefix="/discount-sessions", tags=["discounts"])


@router.get("/{token}")
def get_session(token: str, sub: str = Depends(require_perm("DISCOUNT")),
                sessions: DiscountSessionRegistry = Depends(get_discount_sessions)):
    return sessions.get(token).as_dict()


@router.patch("/{token}")
def update_draft(token: str, body: DraftIn, sub: str = Depends(require_perm("DISCOUNT")),
                 sessions: DiscountSessionRegistry = Depends(get_discount_sessions)):
    session = sessions.get(token)
    session.update_draft(type=body.type, value=body.value, reason=body.reason)
    return session.as_dict()


@router.post("/{token}/apply")
def apply(token: str, db: Session = Depends(get_db), sub: str = Depends(require_perm("DISCOUNT")),
          sessions: DiscountSessionRegistry = Depends(get_discount_sessions),
          ledger: PaymentLedger = Depends(get_ledger)):
    session = sessions.get(token)
    kind = BillableKind(session.entity_kind)
    entity = get_or_404(db, ENTITY_MODELS[kind], session.entity_id, kind.value)
    # a failed apply leaves the session open in editing for another try
    confirmed = session.apply(lambda d: save_discount(db, ledger, entity, d, sub))
    sessions.close(token)
    return {**session.as_dict(), "applied": discount_out(confirmed), "total_amount": m(entity.total_amount)}


@router.post("/{token}/cancel")
def cancel(token: str, sub: str = Depends(require_perm("DISCOUNT")),
           sessions: DiscountSessionRegistry = Depends(get_discount_sessions)):
    session = sessions.get(token)
    session.cancel()
    sessions.close(token)
    return session.as_dict()
