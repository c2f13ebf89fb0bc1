# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    ReservationStatus, PaymentStatus, PaymentType, PaymentMethod, RecordStatus,
    BillableKind, RuleStatus, OrderType, OrderStatus,

    # Identity & RBAC
    Branch, User, Role, Permission, RolePermission, UserRole,

    # Guests & charge rules
    Guest, ChargeRule,

    # Billable entities
    BillingSnapshotMixin, Reservation, ReservationLine,
    RestaurantOrder, RestaurantOrderItem, RestaurantBill,

    # Ledger & audit
    Payment, AuditLog,

    # Inventory & notifications
    StockItem, Notification,
)

__all__ = [
    "ReservationStatus", "PaymentStatus", "PaymentType", "PaymentMethod", "RecordStatus",
    "BillableKind", "RuleStatus", "OrderType", "OrderStatus",
    "Branch", "User", "Role", "Permission", "RolePermission", "UserRole",
    "Guest", "ChargeRule",
    "BillingSnapshotMixin", "Reservation", "ReservationLine",
    "RestaurantOrder", "RestaurantOrderItem", "RestaurantBill",
    "Payment", "AuditLog",
    "StockItem", "Notification",
]
