from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, Date, Integer
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from hms.db import Base
from hms.models.common import IdMixin, TSMMixin

# ── Enums ───────────────────────────────────────────────────────────────────
class ReservationStatus(PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

class PaymentStatus(PyEnum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"

class PaymentType(PyEnum):
    ADVANCE = "advance"
    PARTIAL = "partial"
    FULL = "full"
    CREDIT = "credit"   # guest debt, never counted as paid

class PaymentMethod(PyEnum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    DIGITAL = "digital"
    BANK_TRANSFER = "bank-transfer"

class RecordStatus(PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class BillableKind(PyEnum):
    RESERVATION = "reservation"
    BILL = "bill"

class RuleStatus(PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class OrderType(PyEnum):
    DINE_IN = "dine-in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"
    ROOM = "room"       # room service, billed through the reservation

class OrderStatus(PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ── Identity ────────────────────────────────────────────────────────────────
class Branch(Base, IdMixin, TSMMixin):
    __tablename__ = "branch"
    name: Mapped[str] = mapped_column(String(160))
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(20))

class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(160))
    mobile: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(160))
    pass_hash: Mapped[str] = mapped_column(String(200))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class Role(Base, IdMixin, TSMMixin):
    __tablename__ = "role"
    code: Mapped[str] = mapped_column(String(50), unique=True)

class Permission(Base, IdMixin, TSMMixin):
    __tablename__ = "permission"
    code: Mapped[str] = mapped_column(String(60), unique=True)  # e.g. DISCOUNT, SETTINGS_EDIT, PAYMENT_STATUS
    description: Mapped[str | None] = mapped_column(Text)

class RolePermission(Base, TSMMixin):
    __tablename__ = "role_permission"
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("role.id"), primary_key=True)
    permission_id: Mapped[str] = mapped_column(String(36), ForeignKey("permission.id"), primary_key=True)

class UserRole(Base, TSMMixin):
    __tablename__ = "user_role"
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"), primary_key=True)
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("role.id"), primary_key=True)

# ── Guests ──────────────────────────────────────────────────────────────────
class Guest(Base, IdMixin, TSMMixin):
    __tablename__ = "guest"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))
    email: Mapped[str | None] = mapped_column(String(160))
    # amount the guest has promised to pay later (credit payments)
    credit_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)

# ── Charge rules (taxes / service charges) ──────────────────────────────────
class ChargeRule(Base, IdMixin, TSMMixin):
    __tablename__ = "charge_rule"
    name: Mapped[str] = mapped_column(String(100), unique=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2))  # percent, 13 means 13%
    status: Mapped[RuleStatus] = mapped_column(Enum(RuleStatus), default=RuleStatus.ACTIVE)
    apply_to_reservations: Mapped[bool] = mapped_column(Boolean, default=False)
    apply_to_orders: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

# ── Billing snapshot shared by reservations and restaurant bills ───────────
class BillingSnapshotMixin:
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    applied_taxes: Mapped[str | None] = mapped_column(Text)  # JSON list of {name, rate, amount}
    discount_type: Mapped[str | None] = mapped_column(String(20))  # percentage | fixed | None
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    discount_reason: Mapped[str | None] = mapped_column(Text)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    # cache of the ledger, refreshed by PaymentLedger only
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING)

# ── Reservations ────────────────────────────────────────────────────────────
class Reservation(Base, IdMixin, TSMMixin, BillingSnapshotMixin):
    __tablename__ = "reservation"
    billable_kind = BillableKind.RESERVATION
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    guest_id: Mapped[str] = mapped_column(String(36), ForeignKey("guest.id"))
    confirmation_number: Mapped[str] = mapped_column(String(20), unique=True)
    status: Mapped[ReservationStatus] = mapped_column(Enum(ReservationStatus), default=ReservationStatus.PENDING)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))

class ReservationLine(Base, IdMixin, TSMMixin):
    __tablename__ = "reservation_line"
    reservation_id: Mapped[str] = mapped_column(String(36), ForeignKey("reservation.id"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(String(200))  # e.g. "Room 101 - Deluxe"
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # nights
    unit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # rate per night

# ── Restaurant ──────────────────────────────────────────────────────────────
class RestaurantOrder(Base, IdMixin, TSMMixin):
    __tablename__ = "restaurant_order"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    order_number: Mapped[str] = mapped_column(String(20), unique=True)
    order_type: Mapped[OrderType] = mapped_column(Enum(OrderType), default=OrderType.DINE_IN)
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.PENDING)
    table_code: Mapped[str | None] = mapped_column(String(30))
    reservation_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("reservation.id"))
    customer_name: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    completed_at: Mapped[datetime | None]

class RestaurantOrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "restaurant_order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant_order.id"))
    dish_name: Mapped[str] = mapped_column(String(160))
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    special_instructions: Mapped[str | None] = mapped_column(Text)

class RestaurantBill(Base, IdMixin, TSMMixin, BillingSnapshotMixin):
    __tablename__ = "restaurant_bill"
    billable_kind = BillableKind.BILL
    bill_number: Mapped[str] = mapped_column(String(20), unique=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("restaurant_order.id"), unique=True)
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    customer_name: Mapped[str | None] = mapped_column(String(100))
    customer_phone: Mapped[str | None] = mapped_column(String(20))
    change_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod))
    is_printed: Mapped[bool] = mapped_column(Boolean, default=False)
    printed_at: Mapped[datetime | None]
    created_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))

# ── Payment ledger ──────────────────────────────────────────────────────────
class Payment(Base, IdMixin, TSMMixin):
    __tablename__ = "payment"
    entity_kind: Mapped[BillableKind] = mapped_column(Enum(BillableKind))
    entity_id: Mapped[str] = mapped_column(String(36), index=True)
    payment_type: Mapped[PaymentType] = mapped_column(Enum(PaymentType))
    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    status: Mapped[RecordStatus] = mapped_column(Enum(RecordStatus), default=RecordStatus.COMPLETED)
    transaction_reference: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    due_date: Mapped[date | None] = mapped_column(Date)
    processed_by_id: Mapped[str | None] = mapped_column(String(36))
    processed_at: Mapped[datetime | None]

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str | None] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)

# ── Inventory & notifications ───────────────────────────────────────────────
class StockItem(Base, IdMixin, TSMMixin):
    __tablename__ = "stock_item"
    branch_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(160))
    sku: Mapped[str | None] = mapped_column(String(60))
    unit: Mapped[str | None] = mapped_column(String(20))  # e.g. kg, l, pcs
    current_stock: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    reorder_level: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    reorder_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class Notification(Base, IdMixin, TSMMixin):
    __tablename__ = "notification"
    branch_id: Mapped[str | None] = mapped_column(String(36))
    tag: Mapped[str] = mapped_column(String(40))  # e.g. low-stock
    title: Mapped[str] = mapped_column(String(200))
    body: Mapped[str] = mapped_column(Text)
    data: Mapped[str | None] = mapped_column(Text)  # JSON
    read: Mapped[bool] = mapped_column(Boolean, default=False)
