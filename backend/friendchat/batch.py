"""
Atomic write batches.

A ``WriteBatch`` is a plain list of mutations that is committed as one
SQLAlchemy transaction: either every mutation is applied or, on any error,
the transaction is rolled back and the store is left as it was.

Field values may be ``SERVER_TIMESTAMP``; every occurrence in a batch is
resolved to the same server clock reading at commit time.

An update may carry ``only_if`` preconditions (column -> allowed values).
They are part of the UPDATE's WHERE clause, so a row changed by another
writer since it was read makes the whole batch fail instead of overwriting.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import update as sql_update
from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError


SERVER_TIMESTAMP = object()


class PreconditionFailed(ConflictError):
    default_code = "PreconditionFailed"


def server_now() -> datetime:
    # Naive UTC, the way SQLite hands DateTime columns back.
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Mutation:
    kind: Literal["set", "merge", "update", "create"]
    model: type
    key: Any
    fields: dict = field(default_factory=dict)
    only_if: dict = field(default_factory=dict)


class WriteBatch:
    def __init__(self):
        self.mutations: list[Mutation] = []

    def set(self, model, key, **fields) -> "WriteBatch":
        """Create the row, or replace every given field of an existing one."""
        self.mutations.append(Mutation("set", model, key, fields))
        return self

    def merge(self, model, key, **fields) -> "WriteBatch":
        """Create the row or update only the given fields."""
        self.mutations.append(Mutation("merge", model, key, fields))
        return self

    def create(self, model, key, **fields) -> "WriteBatch":
        """Create the row if it is missing; an existing row is left untouched."""
        self.mutations.append(Mutation("create", model, key, fields))
        return self

    def update(self, model, key, only_if=None, **fields) -> "WriteBatch":
        """Update an existing row; the whole batch fails if it is missing
        or if any ``only_if`` column holds a value outside its allowed set."""
        self.mutations.append(Mutation("update", model, key, fields, dict(only_if or {})))
        return self

    def __len__(self):
        return len(self.mutations)

    def commit(self, db: Session) -> datetime:
        """Apply all mutations in one transaction and return the commit time."""
        now = server_now()
        try:
            for mutation in self.mutations:
                _apply(db, mutation, now)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return now


def _apply(db: Session, mutation: Mutation, now: datetime) -> None:
    values = {
        name: now if value is SERVER_TIMESTAMP else value
        for name, value in mutation.fields.items()
    }
    if mutation.only_if:
        _apply_guarded(db, mutation, values)
        return
    row = db.get(mutation.model, mutation.key)
    if row is None:
        if mutation.kind == "update":
            raise NotFoundError(
                f"No {mutation.model.__tablename__} row {mutation.key!r}",
                code="NotFound",
            )
        row = mutation.model(**_primary_key(mutation.model, mutation.key), **values)
        db.add(row)
        db.flush()
        return
    if mutation.kind == "create":
        return
    for name, value in values.items():
        setattr(row, name, value)
    db.flush()


def _apply_guarded(db: Session, mutation: Mutation, values: dict) -> None:
    model = mutation.model
    stmt = sql_update(model).where(
        *(getattr(model, name) == value for name, value in _primary_key(model, mutation.key).items())
    )
    for name, allowed in mutation.only_if.items():
        stmt = stmt.where(getattr(model, name).in_(tuple(allowed)))
    result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    # rows already loaded in this session now hold stale values
    db.expire_all()
    if result.rowcount == 1:
        return
    if db.get(model, mutation.key, populate_existing=True) is None:
        raise NotFoundError(f"No {model.__tablename__} row {mutation.key!r}", code="NotFound")
    raise PreconditionFailed(f"{model.__tablename__} row {mutation.key!r} changed concurrently")


def _primary_key(model, key) -> dict:
    columns = [column.name for column in model.__table__.primary_key.columns]
    if not isinstance(key, tuple):
        key = (key,)
    return dict(zip(columns, key))
