from decimal import Decimal
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from hms.db import get_db
from hms.deps import get_low_stock_checker, require_auth, require_perm
from hms.errors import ValidationError
from hms.models.core import StockItem
from hms.routers.helpers import get_or_404
from hms.schemas.inventory import StockAdjustIn, StockItemIn
from hms.services.billing import parse_amount, parse_non_negative
from hms.services.low_stock import LowStockChecker, is_low
from hms.util.audit import audit

router = APIRouter(prefix="/inventory", tags=["inventory"])

Q3 = Decimal("0.001")

def _q3(x: Decimal) -> Decimal:
    return x.quantize(Q3)

def _out(i: StockItem) -> dict:
    return {
        "id": i.id, "name": i.name, "sku": i.sku, "unit": i.unit, "branch_id": i.branch_id,
        "current_stock": str(_q3(Decimal(str(i.current_stock or 0)))),
        "reorder_level": str(_q3(Decimal(str(i.reorder_level or 0)))),
        "reorder_quantity": str(_q3(Decimal(str(i.reorder_quantity or 0)))),
        "is_active": i.is_active,
        "low": is_low(i),
    }

@router.post("/items")
def add_item(body: StockItemIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT")),
             checker: LowStockChecker = Depends(get_low_stock_checker)):
    i = StockItem(
        name=body.name, branch_id=body.branch_id, sku=body.sku, unit=body.unit,
        current_stock=_q3(parse_non_negative(body.current_stock, "current_stock")),
        reorder_level=_q3(parse_non_negative(body.reorder_level, "reorder_level")),
        reorder_quantity=_q3(parse_non_negative(body.reorder_quantity, "reorder_quantity")),
        is_active=True,
    )
    db.add(i)
    db.commit()
    checker.on_inventory_update(i.id)
    return _out(i)

@router.post("/items/{item_id}/adjust")
def adjust(item_id: str, body: StockAdjustIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
           checker: LowStockChecker = Depends(get_low_stock_checker)):
    i = get_or_404(db, StockItem, item_id, "stock item")
    delta = _q3(parse_amount(body.delta, "delta"))
    before = _q3(Decimal(str(i.current_stock or 0)))
    after = before + delta
    if after < 0:
        raise ValidationError("delta", f"stock would go negative ({before} {delta:+})")
    i.current_stock = after
    audit(db, sub, "StockItem", i.id, "ADJUST", before={"current_stock": str(before)},
          after={"current_stock": str(after)}, reason=body.reason)
    db.commit()
    alert = checker.on_inventory_update(i.id)
    return {**_out(i), "notified": alert is not None}

@router.get("/low_stock")
def low_stock(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    rows = (db.query(StockItem)
              .filter(StockItem.is_active.is_(True), StockItem.current_stock <= StockItem.reorder_level)
              .order_by(StockItem.name.asc())
              .all())
    return [_out(i) for i in rows]

@router.post("/low_stock/check")
def check_now(sub: str = Depends(require_auth), checker: LowStockChecker = Depends(get_low_stock_checker)):
    sent = checker.check()
    return {"notified": len(sent), "items": [a.data["stock_item_id"] for a in sent]}
