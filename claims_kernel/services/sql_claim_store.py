"""
claims_kernel.services.sql_claim_store -- SQLAlchemy-backed ClaimStore.

Responsibility:
    Persists claims, approval steps and the approval history through the
    SQLAlchemy ORM.  Works on any dialect; SQLite for tests and development,
    PostgreSQL in production.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.

Invariants enforced:
    - Lock CAS is one conditional UPDATE on ``claims`` (``WHERE lock_token
      IS NULL`` or ``= :expected``); success iff exactly one row changed.
    - ``save`` is one transaction: conditional UPDATE of the claim
      (``WHERE version = :expected AND lock_token = :held``), step rows and
      the history row.  Any failure rolls back all three.
    - History rows are chained per claim.  Each append first takes a row
      lock on the claim (``SELECT ... FOR UPDATE``), so the next sequence
      is read by one writer at a time; UNIQUE(claim_id, sequence) catches
      anything that slips past, and failure appends retry on it.

Failure modes:
    - StoreConflictError when the version or lock token changed.
    - AuditWriteError when the history row cannot be written.
"""

from __future__ import annotations

from sqlalchemy import Select, and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from claims_kernel.db.engine import session_scope
from claims_kernel.domain.claim import (
    ApprovalHistoryEntry,
    Claim,
    ClaimFilter,
    ClaimLock,
)
from claims_kernel.exceptions import AuditWriteError, StoreConflictError
from claims_kernel.logging_config import get_logger
from claims_kernel.models.approval_history import ApprovalHistoryModel
from claims_kernel.models.claim import ApprovalStepModel, ClaimModel
from claims_kernel.utils.hashing import chain_entry

logger = get_logger("services.sql_claim_store")

APPEND_ATTEMPTS = 3


def claim_row_lock(claim_id: str) -> Select:
    """SELECT ... FOR UPDATE on one claim row.

    Serializes history appends for the claim against save() and against
    other failure appends.  SQLite renders no FOR UPDATE; BEGIN IMMEDIATE
    already serializes its writers.
    """
    return select(ClaimModel.id).where(ClaimModel.claim_id == claim_id).with_for_update()


class SqlAlchemyClaimStore:
    """ClaimStore over a SQLAlchemy session factory.

    Each public method runs in its own short transaction
    (``session_scope``); no session outlives a call.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # History helpers
    # ------------------------------------------------------------------

    def _history_models(self, session: Session, claim_id: str) -> list[ApprovalHistoryModel]:
        return list(
            session.scalars(
                select(ApprovalHistoryModel)
                .where(ApprovalHistoryModel.claim_id == claim_id)
                .order_by(ApprovalHistoryModel.sequence)
            )
        )

    def _last_entry(self, session: Session, claim_id: str) -> ApprovalHistoryEntry | None:
        row = session.scalars(
            select(ApprovalHistoryModel)
            .where(ApprovalHistoryModel.claim_id == claim_id)
            .order_by(ApprovalHistoryModel.sequence.desc())
            .limit(1)
        ).first()
        return row.to_dto() if row is not None else None

    def _append(self, session: Session, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        session.execute(claim_row_lock(entry.claim_id))
        chained = chain_entry(entry, self._last_entry(session, entry.claim_id))
        session.add(ApprovalHistoryModel.from_dto(chained))
        session.flush()
        return chained

    def _load(self, session: Session, claim_id: str) -> Claim | None:
        model = session.scalars(
            select(ClaimModel)
            .where(ClaimModel.claim_id == claim_id)
            .execution_options(populate_existing=True)
        ).first()
        if model is None:
            return None
        history = [h.to_dto() for h in self._history_models(session, claim_id)]
        return model.to_dto(history)

    # ------------------------------------------------------------------
    # ClaimStore protocol
    # ------------------------------------------------------------------

    def insert(self, claim: Claim, history_entry: ApprovalHistoryEntry) -> Claim:
        try:
            with session_scope(self._session_factory) as session:
                session.add(ClaimModel.from_dto(claim))
                for step in claim.workflow.steps:
                    session.add(ApprovalStepModel.from_dto(claim.claim_id, step))
                session.flush()
                self._append(session, history_entry)
                stored = self._load(session, claim.claim_id)
        except IntegrityError as exc:
            raise ValueError(f"Claim already exists: {claim.claim_id}") from exc
        return stored

    def get(self, claim_id: str) -> Claim | None:
        with session_scope(self._session_factory) as session:
            return self._load(session, claim_id)

    def compare_and_swap_lock(
        self,
        claim_id: str,
        expected: ClaimLock | None,
        new_lock: ClaimLock | None,
    ) -> bool:
        if expected is None:
            token_matches = ClaimModel.lock_token.is_(None)
        else:
            token_matches = ClaimModel.lock_token == expected.token

        values = {
            "lock_holder_id": new_lock.holder_id if new_lock else None,
            "lock_token": new_lock.token if new_lock else None,
            "lock_acquired_at": new_lock.acquired_at if new_lock else None,
            "lock_expires_at": new_lock.expires_at if new_lock else None,
        }
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(ClaimModel)
                .where(and_(ClaimModel.claim_id == claim_id, token_matches))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            swapped = result.rowcount == 1

        logger.debug(
            "lock_cas",
            extra={"claim_id": claim_id, "swapped": swapped},
        )
        return swapped

    def save(
        self,
        claim: Claim,
        *,
        expected_version: int,
        lock_token: object,
        history_entry: ApprovalHistoryEntry,
    ) -> Claim:
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(
                    update(ClaimModel)
                    .where(
                        and_(
                            ClaimModel.claim_id == claim.claim_id,
                            ClaimModel.version == expected_version,
                            ClaimModel.lock_token == lock_token,
                        )
                    )
                    .values(
                        current_step_index=claim.workflow.current_step_index,
                        version=expected_version + 1,
                        lock_holder_id=None,
                        lock_token=None,
                        lock_acquired_at=None,
                        lock_expires_at=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StoreConflictError(
                        claim.claim_id,
                        expected_version,
                        "version or lock changed",
                    )

                existing = set(
                    session.scalars(
                        select(ApprovalStepModel.step_number).where(
                            ApprovalStepModel.claim_id == claim.claim_id
                        )
                    )
                )
                for step in claim.workflow.steps:
                    if step.step_number in existing:
                        session.execute(
                            update(ApprovalStepModel)
                            .where(
                                and_(
                                    ApprovalStepModel.claim_id == claim.claim_id,
                                    ApprovalStepModel.step_number == step.step_number,
                                )
                            )
                            .values(**ApprovalStepModel.column_values(step))
                            .execution_options(synchronize_session=False)
                        )
                    else:
                        session.add(ApprovalStepModel.from_dto(claim.claim_id, step))

                try:
                    self._append(session, history_entry)
                except SQLAlchemyError as exc:
                    raise AuditWriteError(claim.claim_id, str(exc)) from exc

                stored = self._load(session, claim.claim_id)
        except IntegrityError as exc:
            raise StoreConflictError(claim.claim_id, expected_version, str(exc)) from exc
        return stored

    def query(self, claim_filter: ClaimFilter) -> list[Claim]:
        stmt = select(ClaimModel)
        if claim_filter.claim_ids is not None:
            stmt = stmt.where(ClaimModel.claim_id.in_(claim_filter.claim_ids))
        if claim_filter.employee_id is not None:
            stmt = stmt.where(ClaimModel.employee_id == claim_filter.employee_id)
        if claim_filter.department is not None:
            stmt = stmt.where(ClaimModel.department == claim_filter.department)
        if claim_filter.submitted_from is not None:
            stmt = stmt.where(ClaimModel.submitted_at >= claim_filter.submitted_from)
        if claim_filter.submitted_to is not None:
            stmt = stmt.where(ClaimModel.submitted_at <= claim_filter.submitted_to)
        if claim_filter.expense_date_from is not None:
            stmt = stmt.where(ClaimModel.expense_date >= claim_filter.expense_date_from)
        stmt = stmt.order_by(ClaimModel.submitted_at, ClaimModel.claim_id)

        with session_scope(self._session_factory) as session:
            models = list(session.scalars(stmt))
            claims = [
                m.to_dto([h.to_dto() for h in self._history_models(session, m.claim_id)])
                for m in models
            ]
        # Status is derived, so status constraints are applied on the DTOs.
        return [c for c in claims if claim_filter.matches(c)]

    def append_history(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        """Append a failure entry.

        Entries for unknown claim ids have no claim row to lock, so a
        sequence collision is retried inside a savepoint.
        """
        try:
            with session_scope(self._session_factory) as session:
                for attempt in range(1, APPEND_ATTEMPTS + 1):
                    savepoint = session.begin_nested()
                    try:
                        chained = self._append(session, entry)
                    except IntegrityError:
                        savepoint.rollback()
                        if attempt == APPEND_ATTEMPTS:
                            raise
                        logger.debug(
                            "history_append_race_retry",
                            extra={"claim_id": entry.claim_id, "attempt": attempt},
                        )
                        continue
                    savepoint.commit()
                    return chained
        except SQLAlchemyError as exc:
            raise AuditWriteError(entry.claim_id, str(exc)) from exc

    def history(self, claim_id: str) -> list[ApprovalHistoryEntry]:
        with session_scope(self._session_factory) as session:
            return [h.to_dto() for h in self._history_models(session, claim_id)]

    def count_history(self, claim_id: str) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count())
                .select_from(ApprovalHistoryModel)
                .where(ApprovalHistoryModel.claim_id == claim_id)
            )
