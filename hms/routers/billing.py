from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hms.db import get_db
from hms.deps import require_auth
from hms.routers.helpers import active_rules, discount_from, lines_from, normalized_lines, rules_from
from hms.schemas.billing import PreviewIn
from hms.services.billing import compute_charges

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/preview")
def preview(body: PreviewIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    """Stateless live preview for billing forms; persists nothing."""
    if body.rules is not None:
        rules = rules_from(body.rules)
    elif body.scope:
        rules = active_rules(db, body.scope)
    else:
        rules = []
    # same 2-decimal lines the saved snapshots are computed from
    lines = normalized_lines(lines_from(body.lines))
    return compute_charges(lines, rules, discount_from(body.discount)).as_dict()
