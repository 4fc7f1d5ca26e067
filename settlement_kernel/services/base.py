"""
BaseService -- abstract base for all settlement services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service: row loading under ``SELECT ... FOR UPDATE``,
    flush with optimistic-lock translation, UUID parsing of caller input,
    and the audit-then-notify step every transition ends with.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (``session_scope()``, a webhook handler, or the test harness) owns
      commit/rollback.
    - Preconditions are checked against the row as loaded under lock,
      never against a caller-supplied snapshot.
    - Every transition writes its audit event before any notification is
      queued; the notification key embeds the audit ``seq``.

Failure modes:
    - InvalidUUIDError when an identifier is not a UUID.
    - OptimisticLockError when the version column shows a concurrent
      writer got there first (StaleDataError on flush).
"""

from abc import ABC
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from settlement_kernel.db.base import Base
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy
from settlement_kernel.exceptions import (
    InvalidUUIDError,
    MissingReasonError,
    NotFoundError,
    OptimisticLockError,
)
from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.outbox_service import OutboxWriter

ModelType = TypeVar("ModelType", bound=Base)
M = TypeVar("M", bound=Base)

# Actor recorded for scheduled jobs that act without a user
SYSTEM_ACTOR_ID = UUID(int=0)


def parse_uuid(value: object, field: str) -> UUID:
    """Accept a UUID or its string form; anything else is a caller error."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise InvalidUUIDError(field, value) from e


def require_reason(value: str | None, action: str, field: str = "reason") -> str:
    reason = (value or "").strip()
    if not reason:
        raise MissingReasonError(action, field)
    return reason


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all settlement services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.  Audit and outbox writers share that session.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT deliver notifications; ``OutboxDispatcher`` does.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        outbox: OutboxWriter | None = None,
        clock: Clock | None = None,
        policy: SettlementPolicy | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY
        self._auditor = auditor or AuditorService(session, self._clock)
        self._outbox = outbox or OutboxWriter(session, self._clock)

    @property
    def policy(self) -> SettlementPolicy:
        return self._policy

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def auditor(self) -> AuditorService:
        return self._auditor

    @property
    def outbox(self) -> OutboxWriter:
        return self._outbox

    def _now(self) -> datetime:
        return self._clock.now()

    def _lock(
        self,
        model: type[M],
        entity_id: object,
        not_found: type[NotFoundError],
        field: str = "id",
    ) -> M:
        """Load ``model`` by id under a row lock, refreshing any cached copy."""
        row_id = parse_uuid(entity_id, field)
        row = self.session.execute(
            select(model)
            .where(model.id == row_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise not_found(str(row_id))
        return row

    def _flush(self, entity_type: str, entity_id: object) -> None:
        try:
            self.session.flush()
        except StaleDataError as e:
            raise OptimisticLockError(entity_type, str(entity_id)) from e

    def _record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        *,
        before: Any = None,
        after: Any = None,
        reason: str | None = None,
        notify: Iterable[UUID | None] = (),
        template: str | None = None,
        **details: Any,
    ) -> AuditEvent:
        """Flush the row, audit the transition, then queue its notifications."""
        self._flush(entity_type, entity_id)
        event = self._auditor.record_transition(
            entity_type,
            entity_id,
            action,
            actor_id,
            before=before,
            after=after,
            reason=reason,
            **details,
        )
        recipients = list(notify)
        if recipients:
            data: dict[str, Any] = {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "before": before,
                "after": after,
            }
            if reason is not None:
                data["reason"] = reason
            data.update(details)
            self._outbox.notify(
                recipients,
                template or action.value,
                data,
                entity_type=entity_type,
                entity_id=entity_id,
                discriminator=event.seq,
            )
        return event
