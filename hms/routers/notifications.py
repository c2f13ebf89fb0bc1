import json
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hms.db import get_db
from hms.deps import require_auth
from hms.models.core import Notification

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("")
def list_notifications(tag: str | None = None, unread: bool = False, limit: int = 50,
                       db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    q = db.query(Notification)
    if tag:
        q = q.filter(Notification.tag == tag)
    if unread:
        q = q.filter(Notification.read.is_(False))
    rows = q.order_by(Notification.created_at.desc()).limit(max(1, min(limit, 200))).all()
    return [
        {"id": n.id, "tag": n.tag, "title": n.title, "body": n.body, "branch_id": n.branch_id,
         "data": json.loads(n.data) if n.data else None, "read": n.read,
         "created_at": n.created_at.isoformat() if n.created_at else None}
        for n in rows
    ]
