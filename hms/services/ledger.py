"""
Payment ledger: the append-only settlement history of a billable entity
(reservation or restaurant bill) and the balances derived from it.

The entity's ``paid_amount``/``payment_status`` columns are a cache of
this ledger. They are only written here, inside the same transaction
that appends the payment, while holding the entity's lock.
"""
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
import logging
import threading

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hms.errors import ConcurrencyConflict, InvalidTransition, NotFoundError, OverpaymentError, ValidationError
from hms.models.core import (
    BillableKind, Guest, Payment, PaymentMethod, PaymentStatus, PaymentType,
    RecordStatus, Reservation, ReservationStatus, RestaurantBill,
)
from hms.services.billing import ZERO, money, parse_amount
from hms.util.audit import audit

log = logging.getLogger(__name__)

ADVANCE_RATE = Decimal("0.30")
PARTIAL_RATE = Decimal("0.50")

ENTITY_MODELS = {
    BillableKind.RESERVATION: Reservation,
    BillableKind.BILL: RestaurantBill,
}

AUTO_CHECKOUT_FROM = (ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN)


# ── Pure balance helpers ────────────────────────────────────────────────────

def _value(x):
    return getattr(x, "value", x)


def _settles(record) -> bool:
    return _value(record.status) == "completed" and _value(record.payment_type) != "credit"


def paid_from_records(records: Iterable, fallback=0) -> Decimal:
    """
    Completed, non-credit payments. ``fallback`` (the entity's stored
    ``paid_amount``) is used only while the ledger has no records at all.
    """
    records = list(records)
    if not records:
        return money(fallback)
    return money(sum((Decimal(str(r.amount)) for r in records if _settles(r)), ZERO))


def credit_from_records(records: Iterable) -> Decimal:
    return money(sum(
        (Decimal(str(r.amount)) for r in records
         if _value(r.status) == "completed" and _value(r.payment_type) == "credit"),
        ZERO,
    ))


def remaining_balance(total, paid) -> Decimal:
    return max(ZERO, money(total) - money(paid))


def _round_whole(x: Decimal) -> Decimal:
    return x.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def suggest_amount(payment_type, total, remaining) -> Decimal:
    """Amount to pre-fill in a payment form. A hint, not a constraint."""
    ptype = _value(payment_type)
    if ptype == "advance":
        return money(_round_whole(money(total) * ADVANCE_RATE))
    if ptype == "partial":
        return money(_round_whole(money(remaining) * PARTIAL_RATE))
    if ptype in ("full", "credit"):
        return money(remaining)
    raise ValidationError("payment_type", f"unknown payment type {ptype!r}")


def suggestions(total, remaining) -> dict[str, Decimal]:
    return {t.value: suggest_amount(t, total, remaining) for t in PaymentType}


def payment_status_for(total, paid) -> PaymentStatus:
    """A zero total owes nothing, so it is paid from the start."""
    paid = money(paid)
    if paid >= money(total):
        return PaymentStatus.PAID
    if paid <= 0:
        return PaymentStatus.PENDING
    return PaymentStatus.PARTIAL


def _enum(cls, value, field_name: str):
    if isinstance(value, cls):
        return value
    try:
        return cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(field_name, f"must be one of {allowed}, got {value!r}")


# ── Per-entity serialization ────────────────────────────────────────────────

class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class EntityLocks:
    """
    One lock per billable entity, shared by every request in the process.
    An entity's slot exists only while someone holds or waits for it.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._slots: dict[tuple[str, str], _Slot] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    @contextmanager
    def hold(self, kind: BillableKind, entity_id: str):
        key = (_value(kind), entity_id)
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
        try:
            if not slot.lock.acquire(timeout=self.timeout):
                raise ConcurrencyConflict(f"another payment for {_value(kind)} {entity_id} is in progress")
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[key]


# ── Ledger service ──────────────────────────────────────────────────────────

class PaymentLedger:
    def __init__(self, db: Session, locks: EntityLocks, *,
                 overpayment_policy: str = "reject", require_credit_due_date: bool = True):
        self.db = db
        self.locks = locks
        self.overpayment_policy = overpayment_policy
        self.require_credit_due_date = require_credit_due_date

    # -- reads ---------------------------------------------------------------

    def records(self, entity) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.entity_kind == entity.billable_kind, Payment.entity_id == entity.id)
            .order_by(Payment.created_at.asc())
            .all()
        )

    def paid_amount(self, entity) -> Decimal:
        return paid_from_records(self.records(entity), entity.paid_amount)

    def remaining_amount(self, entity, total=None) -> Decimal:
        return remaining_balance(entity.total_amount if total is None else total, self.paid_amount(entity))

    def summary(self, entity) -> dict:
        records = self.records(entity)
        total = money(entity.total_amount)
        paid = paid_from_records(records, entity.paid_amount)
        credit = credit_from_records(records)
        remaining = remaining_balance(total, paid)
        return {
            "total": total,
            "paid": paid,
            "credit": credit,
            "settled": money(paid + credit),
            "remaining": remaining,
            "payment_status": payment_status_for(total, paid).value,
            "suggestions": suggestions(total, remaining),
        }

    def entity_for(self, payment: Payment):
        model = ENTITY_MODELS[payment.entity_kind]
        entity = self.db.get(model, payment.entity_id)
        if entity is None:
            raise NotFoundError(payment.entity_kind.value, payment.entity_id)
        return entity

    # -- writes --------------------------------------------------------------

    def _lock_row(self, entity):
        # pending changes would be overwritten by populate_existing
        self.db.flush()
        model = type(entity)
        row = self.db.execute(
            select(model)
            .where(model.id == entity.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(entity.billable_kind.value, entity.id)
        return row

    def _check_overpayment(self, row, amount: Decimal, remaining: Decimal) -> None:
        if amount <= remaining:
            return
        if self.overpayment_policy == "reject":
            log.warning("rejected overpayment on %s %s: %s > %s",
                        row.billable_kind.value, row.id, amount, remaining)
            raise OverpaymentError(amount, remaining)
        log.warning("overpayment accepted on %s %s: %s > %s",
                    row.billable_kind.value, row.id, amount, remaining)

    def _refresh_snapshot(self, row, seen_version: int) -> Decimal:
        """Write the cached balance and bump ``version``; lost race -> conflict."""
        paid = paid_from_records(self.records(row), row.paid_amount)
        model = type(row)
        res = self.db.execute(
            update(model)
            .where(model.id == row.id, model.version == seen_version)
            .values(version=seen_version + 1, paid_amount=paid,
                    payment_status=payment_status_for(row.total_amount, paid))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ConcurrencyConflict(
                f"{row.billable_kind.value} {row.id} was modified by another request; reload and retry")
        self.db.refresh(row, ["version", "paid_amount", "payment_status"])
        return paid

    def _apply_guest_credit(self, row, payment: Payment) -> None:
        if not isinstance(row, Reservation) or payment.status != RecordStatus.COMPLETED:
            return
        guest = self.db.get(Guest, row.guest_id)
        if guest is None:
            return
        balance = money(guest.credit_balance)
        if payment.payment_type == PaymentType.CREDIT:
            guest.credit_balance = balance + money(payment.amount)
        elif balance > 0:
            guest.credit_balance = balance - min(balance, money(payment.amount))

    def checkout_if_settled(self, row) -> bool:
        """
        Check a confirmed or checked-in stay out once paid + credit covers
        its total. Runs after payments and after a discount or line change
        lowers the total. The caller holds the lock and commits.
        """
        if not isinstance(row, Reservation) or row.status not in AUTO_CHECKOUT_FROM:
            return False
        records = self.records(row)
        settled = paid_from_records(records, row.paid_amount) + credit_from_records(records)
        if settled < money(row.total_amount):
            return False
        log.info("reservation %s settled (%s >= %s), checking out", row.id, settled, money(row.total_amount))
        row.status = ReservationStatus.CHECKED_OUT
        return True

    def record_payment(
        self,
        entity,
        amount,
        payment_type,
        method,
        reference: str | None = None,
        notes: str | None = None,
        due_date: date | None = None,
        processed_by: str | None = None,
        expected_remaining=None,
        status=RecordStatus.COMPLETED,
    ) -> Payment:
        """
        Append a payment and refresh the entity's cached balance, as one
        atomic unit per entity. Commits the session.

        ``expected_remaining`` is the balance the caller showed the user;
        if it no longer matches, the payment was based on a stale read.
        """
        amt = parse_amount(amount, "amount")
        if amt <= 0:
            raise ValidationError("amount", "must be greater than zero")
        amt = money(amt)
        ptype = _enum(PaymentType, payment_type, "payment_type")
        pmethod = _enum(PaymentMethod, method, "payment_method")
        pstatus = _enum(RecordStatus, status, "status")
        if pstatus == RecordStatus.FAILED:
            raise ValidationError("status", "a new payment must be pending or completed")
        if ptype == PaymentType.CREDIT and due_date is None:
            if self.require_credit_due_date:
                raise ValidationError("due_date", "is required for credit payments")
            log.warning("credit payment without due date on %s %s", entity.billable_kind.value, entity.id)

        kind = entity.billable_kind
        with self.locks.hold(kind, entity.id):
            try:
                row = self._lock_row(entity)
                seen_version = row.version
                remaining = remaining_balance(row.total_amount, paid_from_records(self.records(row), row.paid_amount))
                if expected_remaining is not None and money(parse_amount(expected_remaining, "expected_remaining")) != remaining:
                    raise ConcurrencyConflict(
                        f"remaining balance changed to {remaining:.2f}; reload before paying")
                self._check_overpayment(row, amt, remaining)

                p = Payment(
                    entity_kind=kind,
                    entity_id=row.id,
                    payment_type=ptype,
                    payment_method=pmethod,
                    amount=amt,
                    status=pstatus,
                    transaction_reference=reference,
                    notes=notes,
                    due_date=due_date,
                    processed_by_id=processed_by,
                    processed_at=datetime.now(timezone.utc),
                )
                self.db.add(p)
                self.db.flush()

                self._apply_guest_credit(row, p)
                paid = self._refresh_snapshot(row, seen_version)
                self.checkout_if_settled(row)
                audit(self.db, processed_by, kind.value, row.id, "PAYMENT",
                      after={"payment_id": p.id, "type": ptype.value, "amount": f"{amt:.2f}",
                             "paid": f"{paid:.2f}"})
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        log.info("payment %s recorded on %s %s: %s %s via %s (paid now %s)",
                 p.id, kind.value, row.id, ptype.value, amt, pmethod.value, paid)
        return p

    def set_status(self, payment: Payment, status, actor: str | None = None) -> Payment:
        """Settle or fail a pending record. Completed records never change."""
        new_status = _enum(RecordStatus, status, "status")
        entity = self.entity_for(payment)
        with self.locks.hold(payment.entity_kind, entity.id):
            try:
                row = self._lock_row(entity)
                self.db.refresh(payment)
                if payment.status != RecordStatus.PENDING:
                    raise InvalidTransition(f"payment {payment.id} is {payment.status.value} and cannot change")
                if new_status == RecordStatus.PENDING:
                    return payment
                seen_version = row.version
                if new_status == RecordStatus.COMPLETED:
                    remaining = remaining_balance(row.total_amount, paid_from_records(self.records(row), row.paid_amount))
                    if payment.payment_type != PaymentType.CREDIT:
                        self._check_overpayment(row, money(payment.amount), remaining)
                payment.status = new_status
                self.db.flush()
                self._apply_guest_credit(row, payment)
                self._refresh_snapshot(row, seen_version)
                self.checkout_if_settled(row)
                audit(self.db, actor, payment.entity_kind.value, row.id, "PAYMENT_STATUS",
                      before={"payment_id": payment.id, "status": "pending"},
                      after={"payment_id": payment.id, "status": new_status.value})
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        log.info("payment %s on %s %s -> %s", payment.id, payment.entity_kind.value, entity.id, new_status.value)
        return payment
