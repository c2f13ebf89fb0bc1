"""
Discount edit workflow.

    viewing --begin--> editing --apply--> applying --ok--> viewing
                          |                   `--error--> editing
                          `--cancel--> cancelled --> viewing

A session never writes to the database itself: ``apply`` hands the draft
to a ``persist`` callable and adopts whatever that returns, so the server
stays the source of truth.
"""
from collections import OrderedDict
from enum import Enum as PyEnum
from typing import Callable
import logging
import threading
import uuid

from hms.errors import ConcurrencyConflict, InvalidTransition, NotFoundError
from hms.services.billing import ChargeBreakdown, DiscountSpec, validate_discount

log = logging.getLogger(__name__)


class EditState(PyEnum):
    VIEWING = "viewing"
    EDITING = "editing"
    APPLYING = "applying"
    CANCELLED = "cancelled"


class DiscountEditSession:
    def __init__(self, entity_kind: str, entity_id: str, persisted: DiscountSpec,
                 calculate: Callable[[DiscountSpec], ChargeBreakdown]):
        self.token = uuid.uuid4().hex
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.persisted = persisted
        self.calculate = calculate
        self.draft: DiscountSpec | None = None
        self.state = EditState.VIEWING

    def _move(self, to: EditState) -> None:
        log.debug("discount session %s (%s %s): %s -> %s",
                  self.token, self.entity_kind, self.entity_id, self.state.value, to.value)
        self.state = to

    def _expect(self, *states: EditState) -> None:
        if self.state not in states:
            raise InvalidTransition(f"discount session is {self.state.value}")

    @property
    def current(self) -> DiscountSpec:
        """Draft while editing, the persisted discount otherwise."""
        return self.draft if self.draft is not None else self.persisted

    def preview(self) -> ChargeBreakdown:
        return self.calculate(self.current)

    def begin(self) -> None:
        self._expect(EditState.VIEWING)
        self.draft = self.persisted
        self._move(EditState.EDITING)

    def update_draft(self, type: str | None = None, value=None, reason: str | None = None) -> ChargeBreakdown:
        """Replace the draft. An invalid draft raises and leaves the previous one in place."""
        self._expect(EditState.EDITING)
        base = self.draft or self.persisted
        candidate = DiscountSpec(
            type=base.type if type is None else type,
            value=base.value if value is None else value,
            reason=base.reason if reason is None else reason,
        )
        validate_discount(candidate)
        breakdown = self.calculate(candidate)
        self.draft = candidate
        return breakdown

    def apply(self, persist: Callable[[DiscountSpec], DiscountSpec]) -> DiscountSpec:
        self._expect(EditState.EDITING)
        draft = self.draft or self.persisted
        self._move(EditState.APPLYING)
        try:
            confirmed = persist(draft)
        except Exception:
            self._move(EditState.EDITING)
            raise
        self.persisted = confirmed
        self.draft = None
        self._move(EditState.VIEWING)
        return confirmed

    def cancel(self) -> DiscountSpec:
        self._expect(EditState.EDITING)
        self.draft = None
        self._move(EditState.CANCELLED)
        self._move(EditState.VIEWING)
        return self.persisted

    def as_dict(self) -> dict:
        cur = self.current
        return {
            "token": self.token,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "state": self.state.value,
            "persisted": {"type": self.persisted.type, "value": str(self.persisted.value),
                          "reason": self.persisted.reason},
            "draft": None if self.draft is None else {"type": cur.type, "value": str(cur.value), "reason": cur.reason},
            "preview": self.preview().as_dict(),
        }


class DiscountSessionRegistry:
    """
    At most one open session per entity; opening another supersedes it.

    Sessions leave the registry when they are closed or superseded. The
    last ``superseded_limit`` superseded tokens are remembered so that a
    stale editor gets a conflict instead of a plain 404.
    """

    def __init__(self, superseded_limit: int = 1024):
        self.superseded_limit = superseded_limit
        self._guard = threading.Lock()
        self._by_entity: dict[tuple[str, str], DiscountEditSession] = {}
        self._by_token: dict[str, DiscountEditSession] = {}
        self._superseded: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        with self._guard:
            return len(self._by_token)

    def open(self, entity_kind: str, entity_id: str, persisted: DiscountSpec,
             calculate: Callable[[DiscountSpec], ChargeBreakdown]) -> DiscountEditSession:
        session = DiscountEditSession(entity_kind, entity_id, persisted, calculate)
        session.begin()
        key = (entity_kind, entity_id)
        with self._guard:
            old = self._by_entity.get(key)
            if old is not None:
                log.info("discount session %s on %s %s superseded by %s", old.token, entity_kind, entity_id, session.token)
                del self._by_token[old.token]
                self._superseded[old.token] = None
                while len(self._superseded) > self.superseded_limit:
                    self._superseded.popitem(last=False)
            self._by_entity[key] = session
            self._by_token[session.token] = session
        return session

    def get(self, token: str) -> DiscountEditSession:
        with self._guard:
            session = self._by_token.get(token)
            if session is not None:
                return session
            if token in self._superseded:
                raise ConcurrencyConflict("discount session was superseded by a newer edit")
        raise NotFoundError("discount session", token)

    def close(self, token: str) -> None:
        with self._guard:
            session = self._by_token.pop(token, None)
            if session is not None:
                del self._by_entity[(session.entity_kind, session.entity_id)]
