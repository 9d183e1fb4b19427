"""Collection gateway over SQLAlchemy.

One gateway is bound to one mapped model (one "collection"). Every operation
either runs in its own short transaction or joins the session passed as
``db=`` so several calls can compose inside :meth:`CollectionGateway.transaction`.
Each operation emits exactly one ``store_op`` log record on ``peopleflow.store``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

from sqlalchemy import Index, delete, func, inspect, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from peopleflow.db import Base, is_object_id, utc_now
from peopleflow.errors import (
    ApiError,
    DuplicateKeyError,
    InvalidIdError,
    NotFoundError,
    StoreError,
    StoreTimeoutError,
    ValidationError,
)
from peopleflow.settings import get_store_deadline_seconds

logger = logging.getLogger("peopleflow.store")

ModelT = TypeVar("ModelT", bound=Base)
T = TypeVar("T")

ASCENDING = 1
DESCENDING = -1

_UNIQUE_VIOLATION_SQLSTATE = "23505"
_QUERY_CANCELED_SQLSTATE = "57014"

_OUTCOME_BY_KIND = {
    "notFound": "notFound",
    "duplicate": "duplicate",
    "timeout": "timeout",
}


@dataclass(frozen=True, slots=True)
class UpdateResult:
    matched_count: int
    modified_count: int
    upserted_id: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteResult:
    deleted_count: int


@dataclass(slots=True)
class BulkWriteResult:
    inserted_ids: list[str] = field(default_factory=list)
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    upserted_ids: list[str] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)

    @property
    def upserted_count(self) -> int:
        return len(self.upserted_ids)


@dataclass(frozen=True, slots=True)
class InsertOne:
    document: dict[str, Any]


@dataclass(frozen=True, slots=True)
class UpdateOne:
    criteria: tuple[Any, ...]
    values: dict[str, Any]
    upsert: bool = False
    insert_values: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class UpdateMany:
    criteria: tuple[Any, ...]
    values: dict[str, Any]


@dataclass(frozen=True, slots=True)
class DeleteOne:
    criteria: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class DeleteMany:
    criteria: tuple[Any, ...]


WriteOp = InsertOne | UpdateOne | UpdateMany | DeleteOne | DeleteMany


@dataclass(frozen=True, slots=True)
class RetentionPolicy:
    column: str
    expire_after: timedelta


def validate_object_id(value: object, *, field_name: str = "id") -> str:
    if not is_object_id(value):
        raise InvalidIdError(f"invalid {field_name}: {value!r}", field=field_name)
    return str(value).lower()


def _sqlstate(exc: SQLAlchemyError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def classify_store_error(exc: SQLAlchemyError) -> ApiError:
    raw = str(getattr(exc, "orig", None) or exc).strip()
    message = raw.splitlines()[0] if raw else exc.__class__.__name__
    state = _sqlstate(exc)
    if isinstance(exc, IntegrityError):
        if state == _UNIQUE_VIOLATION_SQLSTATE or "unique" in message.lower():
            return DuplicateKeyError(f"Duplicate key: {message}")
        return ValidationError(f"Constraint violated: {message}")
    if isinstance(exc, PoolTimeoutError):
        return StoreTimeoutError(f"Connection pool timeout: {message}")
    if isinstance(exc, OperationalError) and (
        state == _QUERY_CANCELED_SQLSTATE or "statement timeout" in message.lower()
    ):
        return StoreTimeoutError(f"Statement timeout: {message}")
    return StoreError(f"Store operation failed: {message}")


class CollectionGateway(Generic[ModelT]):
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        model: type[ModelT],
        *,
        deadline_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self.model = model
        self.collection = model.__tablename__
        self._deadline_seconds = deadline_seconds
        self._retention: RetentionPolicy | None = None

    # -- plumbing ---------------------------------------------------------

    @property
    def deadline_seconds(self) -> float:
        if self._deadline_seconds is not None and self._deadline_seconds > 0:
            return self._deadline_seconds
        return get_store_deadline_seconds()

    def with_timeout(self, deadline: float | timedelta) -> CollectionGateway[ModelT]:
        seconds = deadline.total_seconds() if isinstance(deadline, timedelta) else float(deadline)
        clone: CollectionGateway[ModelT] = CollectionGateway(
            self._session_factory,
            self.model,
            deadline_seconds=seconds,
        )
        clone._retention = self._retention
        return clone

    @property
    def retention_policy(self) -> RetentionPolicy | None:
        return self._retention

    def _apply_statement_timeout(self, session: Session, deadline: float) -> None:
        if session.get_bind().dialect.name != "postgresql":
            return
        session.execute(
            text("SELECT set_config('statement_timeout', :value, true)"),
            {"value": f"{max(1, int(deadline * 1000))}ms"},
        )

    def _observe(
        self,
        operation: str,
        started: float,
        *,
        outcome: str,
        error_message: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        logger.log(
            level,
            "store_op",
            extra={
                "operation": operation,
                "collection": self.collection,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "outcome": outcome,
                "error_message": error_message,
            },
        )

    def _run(
        self,
        operation: str,
        work: Callable[[Session], T],
        *,
        db: Session | None = None,
        timeout: float | None = None,
        none_is_not_found: bool = False,
    ) -> T:
        deadline = float(timeout) if timeout else self.deadline_seconds
        started = time.perf_counter()
        try:
            if db is not None:
                result = work(db)
                db.flush()
            else:
                with self._session_factory() as session:
                    with session.begin():
                        self._apply_statement_timeout(session, deadline)
                        result = work(session)
                        session.flush()
                        if time.perf_counter() - started > deadline:
                            raise StoreTimeoutError(
                                f"{operation} on {self.collection} exceeded {deadline:g}s deadline."
                            )
        except ApiError as exc:
            self._observe(
                operation,
                started,
                outcome=_OUTCOME_BY_KIND.get(exc.kind, "error"),
                error_message=exc.message,
                level=logging.INFO if exc.kind in _OUTCOME_BY_KIND else logging.WARNING,
            )
            raise
        except SQLAlchemyError as exc:
            classified = classify_store_error(exc)
            outcome = _OUTCOME_BY_KIND.get(classified.kind, "error")
            self._observe(
                operation,
                started,
                outcome=outcome,
                error_message=classified.message,
                level=logging.ERROR if outcome == "error" else logging.WARNING,
            )
            raise classified from exc
        except Exception as exc:
            self._observe(
                operation,
                started,
                outcome="error",
                error_message=f"{exc.__class__.__name__}: {exc}",
                level=logging.ERROR,
            )
            raise

        self._observe(
            operation,
            started,
            outcome="notFound" if none_is_not_found and result is None else "ok",
        )
        return result

    def _select(self, criteria: Iterable[Any], order_by: Sequence[Any] = ()):  # type: ignore[no-untyped-def]
        stmt = select(self.model)
        criteria = tuple(criteria)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        return stmt

    def _first(self, session: Session, criteria: Iterable[Any], *, for_update: bool = False) -> ModelT | None:
        stmt = self._select(criteria, order_by=(self.model.id.asc(),)).limit(1)  # type: ignore[attr-defined]
        if for_update:
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    @staticmethod
    def _assign(record: ModelT, values: dict[str, Any]) -> bool:
        changed = False
        for key, value in values.items():
            if getattr(record, key) != value:
                setattr(record, key, value)
                changed = True
        return changed

    def _build(self, document: dict[str, Any] | ModelT) -> ModelT:
        if isinstance(document, self.model):
            return document
        return self.model(**document)

    # -- reads ------------------------------------------------------------

    def find_by_id(
        self,
        record_id: str,
        *,
        for_update: bool = False,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> ModelT | None:
        normalized = validate_object_id(record_id)

        def work(session: Session) -> ModelT | None:
            return session.get(self.model, normalized, with_for_update=for_update or None)

        return self._run("find_by_id", work, db=db, timeout=timeout, none_is_not_found=True)

    def find_one(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        for_update: bool = False,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> ModelT | None:
        def work(session: Session) -> ModelT | None:
            if not order_by:
                return self._first(session, criteria, for_update=for_update)
            stmt = self._select(criteria, order_by).limit(1)
            if for_update:
                stmt = stmt.with_for_update()
            return session.scalars(stmt).first()

        return self._run("find_one", work, db=db, timeout=timeout, none_is_not_found=True)

    def find_all(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
        skip: int = 0,
        limit: int | None = None,
        for_update: bool = False,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> list[ModelT]:
        def work(session: Session) -> list[ModelT]:
            stmt = self._select(criteria, order_by)
            if skip > 0:
                stmt = stmt.offset(skip)
            if limit is not None and limit > 0:
                stmt = stmt.limit(limit)
            if for_update:
                stmt = stmt.with_for_update()
            return list(session.scalars(stmt).all())

        return self._run("find_all", work, db=db, timeout=timeout)

    def count(self, *criteria: Any, db: Session | None = None, timeout: float | None = None) -> int:
        def work(session: Session) -> int:
            stmt = select(func.count()).select_from(self.model)
            if criteria:
                stmt = stmt.where(*criteria)
            return int(session.scalar(stmt) or 0)

        return self._run("count", work, db=db, timeout=timeout)

    def exists(self, *criteria: Any, db: Session | None = None, timeout: float | None = None) -> bool:
        def work(session: Session) -> bool:
            stmt = select(self.model.id).limit(1)  # type: ignore[attr-defined]
            if criteria:
                stmt = stmt.where(*criteria)
            return session.scalar(stmt) is not None

        return self._run("exists", work, db=db, timeout=timeout)

    def aggregate(self, statement: Any, *, db: Session | None = None, timeout: float | None = None) -> list[dict[str, Any]]:
        def work(session: Session) -> list[dict[str, Any]]:
            return [dict(row) for row in session.execute(statement).mappings().all()]

        return self._run("aggregate", work, db=db, timeout=timeout)

    # -- writes -----------------------------------------------------------

    def insert_one(
        self,
        document: dict[str, Any] | ModelT,
        *,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> str:
        def work(session: Session) -> str:
            record = self._build(document)
            session.add(record)
            session.flush()
            return str(record.id)  # type: ignore[attr-defined]

        return self._run("insert_one", work, db=db, timeout=timeout)

    def insert_many(
        self,
        documents: Sequence[dict[str, Any] | ModelT],
        *,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> list[str]:
        def work(session: Session) -> list[str]:
            records = [self._build(item) for item in documents]
            session.add_all(records)
            session.flush()
            return [str(record.id) for record in records]  # type: ignore[attr-defined]

        return self._run("insert_many", work, db=db, timeout=timeout)

    def update_by_id(
        self,
        record_id: str,
        values: dict[str, Any],
        *,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> UpdateResult:
        normalized = validate_object_id(record_id)

        def work(session: Session) -> UpdateResult:
            record = session.get(self.model, normalized)
            if record is None:
                raise NotFoundError(f"{self.collection} document not found: {normalized}")
            changed = self._assign(record, values)
            return UpdateResult(matched_count=1, modified_count=1 if changed else 0)

        return self._run("update_by_id", work, db=db, timeout=timeout)

    def _update_one(
        self,
        session: Session,
        criteria: tuple[Any, ...],
        values: dict[str, Any],
        *,
        upsert: bool,
        insert_values: dict[str, Any] | None,
    ) -> UpdateResult:
        record = self._first(session, criteria, for_update=True)
        if record is not None:
            changed = self._assign(record, values)
            return UpdateResult(matched_count=1, modified_count=1 if changed else 0)
        if not upsert:
            return UpdateResult(matched_count=0, modified_count=0)

        document = dict(insert_values or {})
        document.update(values)
        created = self._build(document)
        session.add(created)
        session.flush()
        return UpdateResult(matched_count=0, modified_count=0, upserted_id=str(created.id))  # type: ignore[attr-defined]

    def update_one(
        self,
        *criteria: Any,
        values: dict[str, Any],
        upsert: bool = False,
        insert_values: dict[str, Any] | None = None,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> UpdateResult:
        """Update the first matching row.

        With ``upsert`` a missing row is inserted from ``values`` merged over
        ``insert_values``; the latter only apply on insert.
        """

        def work(session: Session) -> UpdateResult:
            return self._update_one(session, criteria, values, upsert=upsert, insert_values=insert_values)

        return self._run("update_one", work, db=db, timeout=timeout)

    def update_many(
        self,
        *criteria: Any,
        values: dict[str, Any],
        db: Session | None = None,
        timeout: float | None = None,
    ) -> UpdateResult:
        def work(session: Session) -> UpdateResult:
            session.flush()
            stmt = update(self.model).values(**values).execution_options(synchronize_session=False)
            if criteria:
                stmt = stmt.where(*criteria)
            rowcount = int(session.execute(stmt).rowcount or 0)
            return UpdateResult(matched_count=rowcount, modified_count=rowcount)

        return self._run("update_many", work, db=db, timeout=timeout)

    def delete_by_id(self, record_id: str, *, db: Session | None = None, timeout: float | None = None) -> DeleteResult:
        normalized = validate_object_id(record_id)

        def work(session: Session) -> DeleteResult:
            stmt = delete(self.model).where(self.model.id == normalized)  # type: ignore[attr-defined]
            deleted = int(session.execute(stmt.execution_options(synchronize_session=False)).rowcount or 0)
            if deleted == 0:
                raise NotFoundError(f"{self.collection} document not found: {normalized}")
            return DeleteResult(deleted_count=deleted)

        return self._run("delete_by_id", work, db=db, timeout=timeout)

    def _delete_one(self, session: Session, criteria: tuple[Any, ...]) -> int:
        record = self._first(session, criteria, for_update=True)
        if record is None:
            return 0
        session.delete(record)
        return 1

    def delete_one(self, *criteria: Any, db: Session | None = None, timeout: float | None = None) -> DeleteResult:
        def work(session: Session) -> DeleteResult:
            return DeleteResult(deleted_count=self._delete_one(session, criteria))

        return self._run("delete_one", work, db=db, timeout=timeout)

    def _delete_many(self, session: Session, criteria: tuple[Any, ...]) -> int:
        stmt = delete(self.model).execution_options(synchronize_session=False)
        if criteria:
            stmt = stmt.where(*criteria)
        return int(session.execute(stmt).rowcount or 0)

    def delete_many(self, *criteria: Any, db: Session | None = None, timeout: float | None = None) -> DeleteResult:
        def work(session: Session) -> DeleteResult:
            return DeleteResult(deleted_count=self._delete_many(session, criteria))

        return self._run("delete_many", work, db=db, timeout=timeout)

    def bulk_write(
        self,
        operations: Sequence[WriteOp],
        *,
        db: Session | None = None,
        timeout: float | None = None,
    ) -> BulkWriteResult:
        """Apply ``operations`` in order inside one transaction."""

        def work(session: Session) -> BulkWriteResult:
            result = BulkWriteResult()
            for op in operations:
                if isinstance(op, InsertOne):
                    record = self._build(op.document)
                    session.add(record)
                    session.flush()
                    result.inserted_ids.append(str(record.id))  # type: ignore[attr-defined]
                elif isinstance(op, UpdateOne):
                    outcome = self._update_one(
                        session,
                        op.criteria,
                        op.values,
                        upsert=op.upsert,
                        insert_values=op.insert_values,
                    )
                    result.matched_count += outcome.matched_count
                    result.modified_count += outcome.modified_count
                    if outcome.upserted_id is not None:
                        result.upserted_ids.append(outcome.upserted_id)
                elif isinstance(op, UpdateMany):
                    session.flush()
                    stmt = update(self.model).values(**op.values).execution_options(synchronize_session=False)
                    if op.criteria:
                        stmt = stmt.where(*op.criteria)
                    rowcount = int(session.execute(stmt).rowcount or 0)
                    result.matched_count += rowcount
                    result.modified_count += rowcount
                elif isinstance(op, DeleteOne):
                    session.flush()
                    result.deleted_count += self._delete_one(session, op.criteria)
                elif isinstance(op, DeleteMany):
                    session.flush()
                    result.deleted_count += self._delete_many(session, op.criteria)
                else:
                    raise ValidationError(f"unsupported bulk operation: {op!r}", field="operations")
            return result

        return self._run("bulk_write", work, db=db, timeout=timeout)

    # -- transactions -----------------------------------------------------

    def transaction(
        self,
        body: Callable[[Session], T],
        *,
        timeout: float | None = None,
        operation: str = "transaction",
    ) -> T:
        """Run ``body`` in one transaction; any error rolls everything back.

        Gateway calls inside ``body`` must pass the session as ``db=``.
        Retries are left to the caller.
        """
        return self._run(operation, body, timeout=timeout)

    # -- indexes and retention -------------------------------------------

    def create_index(
        self,
        keys: Sequence[str | tuple[str, int]],
        *,
        unique: bool = False,
        name: str | None = None,
        expire_after: timedelta | None = None,
        timeout: float | None = None,
    ) -> str:
        """Create an index unless one with the same name exists.

        ``expire_after`` has no native counterpart in a relational store. It
        registers a retention policy on the first key which
        :meth:`purge_expired` applies.
        """
        pairs = [(item, ASCENDING) if isinstance(item, str) else item for item in keys]
        if not pairs:
            raise ValidationError("index needs at least one key", field="keys")

        table = self.model.__table__  # type: ignore[attr-defined]
        expressions = []
        parts = []
        for column_name, direction in pairs:
            column = table.c[column_name]
            expressions.append(column.desc() if direction == DESCENDING else column)
            parts.append(f"{column_name}_desc" if direction == DESCENDING else column_name)
        if name is None:
            prefix = "ux" if unique else "ix"
            suffix = "_ttl" if expire_after is not None else ""
            name = f"{prefix}_{self.collection}_{'_'.join(parts)}{suffix}"

        if expire_after is not None:
            self._retention = RetentionPolicy(column=pairs[0][0], expire_after=expire_after)

        index = next((item for item in table.indexes if item.name == name), None)
        if index is None:
            index = Index(name, *expressions, unique=unique)

        def work(session: Session) -> str:
            connection = session.connection()
            existing = {item.get("name") for item in inspect(connection).get_indexes(self.collection)}
            if name not in existing:
                index.create(bind=connection)
            return name

        return self._run("create_index", work, timeout=timeout)

    def purge_expired(self, *, now: datetime | None = None, timeout: float | None = None) -> int:
        policy = self._retention
        if policy is None:
            return 0
        cutoff = (now or utc_now()) - policy.expire_after
        column = getattr(self.model, policy.column)

        def work(session: Session) -> int:
            return self._delete_many(session, (column < cutoff,))

        return self._run("purge_expired", work, timeout=timeout)
