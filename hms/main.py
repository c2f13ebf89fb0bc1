from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from hms.config import settings
from hms.db import Base, SessionLocal, engine
from hms.errors import install_error_handlers
from hms.middleware import RequestIdMiddleware
from hms.services.discounts import DiscountSessionRegistry
from hms.services.ledger import EntityLocks
from hms.services.low_stock import LowStockChecker
from hms.services.notify import build_notifier
from hms.util.logs import setup_logging
import hms.models  # noqa: F401  registers tables

from hms.routers import (
    admin, auth, billing, charges, discounts, guests, inventory,
    notifications, payments, reservations, restaurant,
)

log = logging.getLogger(__name__)

app = FastAPI(title="HMS Billing API", version="0.1.0")

# Services shared by all requests; built here so tests can swap them
app.state.entity_locks = EntityLocks()
app.state.discount_sessions = DiscountSessionRegistry()
app.state.low_stock_checker = LowStockChecker(
    SessionLocal,
    build_notifier(SessionLocal, settings.NOTIFY_WEBHOOK_URL),
    interval_minutes=settings.LOW_STOCK_INTERVAL_MIN,
)

@app.on_event("startup")
def init_db():
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    Base.metadata.create_all(bind=engine)
    log.info("HMS billing started (env=%s, overpayment=%s)", settings.APP_ENV, settings.OVERPAYMENT_POLICY)

@app.on_event("startup")
async def start_low_stock():
    if settings.LOW_STOCK_CHECK_ENABLED:
        app.state.low_stock_checker.start()

@app.on_event("shutdown")
async def stop_low_stock():
    await app.state.low_stock_checker.stop()

install_error_handlers(app)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(charges.router)
app.include_router(billing.router)
app.include_router(guests.router)
app.include_router(reservations.router)
app.include_router(discounts.router)
app.include_router(payments.router)
app.include_router(restaurant.router)
app.include_router(inventory.router)
app.include_router(notifications.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
