"""Ledger Store: the single writer of truth for every entity.

All reads and writes go through ``LedgerStore``. Calls made inside
``store.transaction()`` share one session and commit or roll back together;
calls made outside it run in a short transaction of their own. Every call
takes a ``timeout=`` deadline in seconds; inside an open transaction the
outer deadline applies.

Filters are plain dicts::

    {"user_id": 1, "amount": {"gte": 10}, "OR": [{"type": "EXPENSE"}, {"bill_id": None}]}
"""
import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import UniqueConstraint, and_, delete, exc, func, not_, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

import config
from database import Base
from errors import ConstraintViolation, Conflict, DependencyExists, LedgerError, NotFound, Timeout

logger = logging.getLogger(__name__)

_OPERATORS = {
    "eq":         lambda col, v: col.is_(None) if v is None else col == v,
    "ne":         lambda col, v: col.is_not(None) if v is None else col != v,
    "in":         lambda col, v: col.in_(list(v)),
    "not_in":     lambda col, v: col.not_in(list(v)),
    "lt":         lambda col, v: col < v,
    "lte":        lambda col, v: col <= v,
    "gt":         lambda col, v: col > v,
    "gte":        lambda col, v: col >= v,
    "contains":   lambda col, v: col.ilike(f"%{v}%"),
    "startswith": lambda col, v: col.ilike(f"{v}%"),
}

_AGGREGATES = {"sum": func.sum, "avg": func.avg, "min": func.min, "max": func.max}


def _column(model, name: str):
    try:
        return model.__table__.columns[name]
    except KeyError:
        raise ValueError(f"{model.__name__} has no field {name!r}") from None


def build_filter(model, where: Optional[dict]):
    """Compile a filter tree into a SQLAlchemy boolean clause."""
    if not where:
        return None

    clauses = []
    for key, value in where.items():
        if key == "AND":
            parts = [build_filter(model, w) for w in value]
            clauses.append(and_(*[p for p in parts if p is not None]))
        elif key == "OR":
            parts = [build_filter(model, w) for w in value]
            clauses.append(or_(*[p for p in parts if p is not None]))
        elif key == "NOT":
            items = value if isinstance(value, (list, tuple)) else [value]
            parts = [build_filter(model, w) for w in items]
            clauses.append(not_(and_(*[p for p in parts if p is not None])))
        else:
            col = _column(model, key)
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op not in _OPERATORS:
                        raise ValueError(f"Unknown filter operator {op!r}")
                    clauses.append(_OPERATORS[op](col, operand))
            else:
                clauses.append(_OPERATORS["eq"](col, value))

    return and_(*clauses) if len(clauses) > 1 else clauses[0]


def _order_clauses(model, order_by) -> list:
    if not order_by:
        return []
    if isinstance(order_by, str):
        order_by = [order_by]
    result = []
    for name in order_by:
        if name.startswith("-"):
            result.append(_column(model, name[1:]).desc())
        else:
            result.append(_column(model, name).asc())
    return result


def _mapped_class(table):
    for mapper in Base.registry.mappers:
        if mapper.local_table is table:
            return mapper.class_
    return None


def _is_timeout(error: exc.DBAPIError) -> bool:
    text = str(error.orig).lower()
    return "locked" in text or "timeout" in text or "timed out" in text


class LedgerStore:
    def __init__(self, session_factory: sessionmaker, timeout: Optional[float] = config.DB_TIMEOUT_SECONDS):
        self._session_factory = session_factory
        self.timeout = timeout
        self._active: ContextVar[Optional[Session]] = ContextVar(f"ledger_session_{id(self)}", default=None)

    def close(self) -> None:
        self._session_factory.kw["bind"].dispose()

    # ── transactions ──

    @contextmanager
    def transaction(self, timeout: Optional[float] = None):
        """Run the enclosed store calls atomically. Nested use joins the outer transaction."""
        current = self._active.get()
        if current is not None:
            yield current
            return

        limit = timeout if timeout is not None else self.timeout
        deadline = time.monotonic() + limit if limit else None
        db = self._session_factory()
        token = self._active.set(db)
        try:
            yield db
            db.flush()
            if deadline is not None and time.monotonic() > deadline:
                raise Timeout(
                    f"Transaction exceeded its {limit:g}s deadline",
                    constraint="deadline", timeout=limit,
                )
            db.commit()
        except LedgerError:
            db.rollback()
            raise
        except exc.IntegrityError as e:
            db.rollback()
            logger.warning("Integrity error: %s", e.orig)
            raise ConstraintViolation(str(e.orig), constraint="integrity") from e
        except exc.TimeoutError as e:
            db.rollback()
            raise Timeout("Timed out waiting for a database connection", constraint="pool") from e
        except exc.OperationalError as e:
            db.rollback()
            if _is_timeout(e):
                raise Timeout(str(e.orig), constraint="lock") from e
            raise
        except BaseException:
            db.rollback()
            raise
        finally:
            self._active.reset(token)
            db.close()

    # ── reads ──

    def find_unique(self, model, id: Any, *, for_update: bool = False, timeout: Optional[float] = None):
        with self.transaction(timeout) as db:
            if for_update:
                stmt = (
                    select(model)
                    .where(model.id == id)
                    .with_for_update(of=model)
                    .execution_options(populate_existing=True)
                )
                return db.execute(stmt).unique().scalar_one_or_none()
            return db.get(model, id)

    def get(self, model, id: Any, *, for_update: bool = False, timeout: Optional[float] = None):
        obj = self.find_unique(model, id, for_update=for_update, timeout=timeout)
        if obj is None:
            raise NotFound(model.__name__, id)
        return obj

    def find_first(self, model, where: Optional[dict] = None, order_by=None, *, timeout: Optional[float] = None):
        rows = self.find_many(model, where=where, order_by=order_by, take=1, timeout=timeout)
        return rows[0] if rows else None

    def find_many(
        self,
        model,
        where: Optional[dict] = None,
        order_by=None,
        skip: int = 0,
        take: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> list:
        stmt = select(model)
        clause = build_filter(model, where)
        if clause is not None:
            stmt = stmt.where(clause)
        stmt = stmt.order_by(*_order_clauses(model, order_by))
        if skip:
            stmt = stmt.offset(skip)
        if take is not None:
            stmt = stmt.limit(take)
        with self.transaction(timeout) as db:
            return list(db.execute(stmt).unique().scalars().all())

    def count(self, model, where: Optional[dict] = None, *, timeout: Optional[float] = None) -> int:
        return self.aggregate(model, where=where, timeout=timeout)["count"]

    def aggregate(
        self,
        model,
        where: Optional[dict] = None,
        *,
        sum: Iterable[str] = (),
        avg: Iterable[str] = (),
        min: Iterable[str] = (),
        max: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return ``{"count": n, "sum": {field: value}, "avg": {...}, ...}``.

        Sums over no rows are 0; avg/min/max over no rows are None.
        """
        requested = {"sum": list(sum), "avg": list(avg), "min": list(min), "max": list(max)}
        columns = [func.count().label("count")]
        for op, fields in requested.items():
            for name in fields:
                columns.append(_AGGREGATES[op](_column(model, name)).label(f"{op}__{name}"))

        stmt = select(*columns).select_from(model)
        clause = build_filter(model, where)
        if clause is not None:
            stmt = stmt.where(clause)

        with self.transaction(timeout) as db:
            row = db.execute(stmt).one()._mapping

        result: Dict[str, Any] = {"count": row["count"]}
        for op, fields in requested.items():
            if fields:
                result[op] = {}
                for name in fields:
                    value = row[f"{op}__{name}"]
                    if op == "sum" and value is None:
                        value = 0
                    result[op][name] = value
        return result

    def group_by(
        self,
        model,
        by: Sequence[str],
        where: Optional[dict] = None,
        *,
        sum: Iterable[str] = (),
        avg: Iterable[str] = (),
        min: Iterable[str] = (),
        max: Iterable[str] = (),
        order_by=None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Group rows by ``by`` fields; each result row is a flat dict like
        ``{"category_id": 3, "count": 2, "sum_amount": 40.0}``."""
        keys = [_column(model, name) for name in by]
        columns = list(keys) + [func.count().label("count")]
        for op, fields in (("sum", sum), ("avg", avg), ("min", min), ("max", max)):
            for name in fields:
                columns.append(_AGGREGATES[op](_column(model, name)).label(f"{op}_{name}"))

        stmt = select(*columns).select_from(model)
        clause = build_filter(model, where)
        if clause is not None:
            stmt = stmt.where(clause)
        stmt = stmt.group_by(*keys)

        with self.transaction(timeout) as db:
            rows = [dict(r._mapping) for r in db.execute(stmt).all()]

        for key in reversed(_as_list(order_by)):
            name, reverse = (key[1:], True) if key.startswith("-") else (key, False)
            rows.sort(key=lambda r: (r[name] is None, r[name]), reverse=reverse)
        return rows

    # ── writes ──

    def create(self, model, *, timeout: Optional[float] = None, **fields):
        with self.transaction(timeout) as db:
            self._check_references(db, model, fields, creating=True)
            self._check_unique(db, model, fields)
            obj = model(**fields)
            db.add(obj)
            db.flush()
            obj = db.get(model, obj.id, populate_existing=True)
            logger.debug("Created %s #%s", model.__name__, obj.id)
            return obj

    def update(self, model, id: Any, *, timeout: Optional[float] = None, **fields):
        with self.transaction(timeout) as db:
            obj = db.get(model, id)
            if obj is None:
                raise NotFound(model.__name__, id)
            self._check_references(db, model, fields, creating=False)
            self._check_unique(db, model, fields, current=obj)
            for field, value in fields.items():
                _column(model, field)
                setattr(obj, field, value)
            db.flush()
            return db.get(model, id, populate_existing=True)

    def delete(self, model, id: Any, *, timeout: Optional[float] = None) -> None:
        """Delete a row. Relations listed in ``__restrict_delete__`` block the
        delete; other dependents follow the foreign keys' ON DELETE rules."""
        with self.transaction(timeout) as db:
            obj = db.get(model, id)
            if obj is None:
                raise NotFound(model.__name__, id)

            dependents = {}
            for name in getattr(model, "__restrict_delete__", ()):
                stmt = (
                    select(func.count())
                    .select_from(model)
                    .join(getattr(model, name))
                    .where(model.id == id)
                )
                n = db.execute(stmt).scalar_one()
                if n:
                    dependents[name] = n
            if dependents:
                raise DependencyExists(
                    f"{model.__name__} is still referenced by " + ", ".join(sorted(dependents)),
                    entity=model.__name__, field="id", constraint="restrict", dependents=dependents,
                )

            db.expunge(obj)
            db.execute(delete(model).where(model.id == id))
            logger.debug("Deleted %s #%s", model.__name__, id)

    def delete_many(self, model, where: dict, *, timeout: Optional[float] = None) -> int:
        clause = build_filter(model, where)
        with self.transaction(timeout) as db:
            result = db.execute(delete(model).where(clause), execution_options={"synchronize_session": False})
            return result.rowcount

    def update_many(self, model, where: dict, *, timeout: Optional[float] = None, **fields) -> int:
        clause = build_filter(model, where)
        with self.transaction(timeout) as db:
            self._check_references(db, model, fields, creating=False)
            result = db.execute(
                update(model).where(clause).values(**fields),
                execution_options={"synchronize_session": False},
            )
            return result.rowcount

    def compare_and_swap(self, model, id: Any, expected_version: int, *, timeout: Optional[float] = None, **fields) -> int:
        """``UPDATE ... SET version = expected + 1 WHERE id = :id AND version = :expected``.

        Raises Conflict when another writer got there first. Returns the new version.
        """
        with self.transaction(timeout) as db:
            stmt = (
                update(model)
                .where(model.id == id, model.version == expected_version)
                .values(version=expected_version + 1, **fields)
                .execution_options(synchronize_session=False)
            )
            if db.execute(stmt).rowcount != 1:
                raise Conflict(
                    f"{model.__name__} #{id} was modified concurrently",
                    entity=model.__name__, field="version", constraint="optimistic_lock",
                    id=id, expected_version=expected_version,
                )
            cached = db.identity_map.get(db.identity_key(model, id))
            if cached is not None:
                db.refresh(cached)
            return expected_version + 1

    # ── constraint checks ──

    def _check_references(self, db: Session, model, fields: dict, *, creating: bool) -> None:
        for col in model.__table__.columns:
            if not col.foreign_keys:
                continue
            if col.key not in fields:
                if creating and not col.nullable:
                    raise ConstraintViolation(
                        f"{model.__name__}.{col.key} is required",
                        entity=model.__name__, field=col.key, constraint="required",
                    )
                continue
            value = fields[col.key]
            if value is None:
                if not col.nullable:
                    raise ConstraintViolation(
                        f"{model.__name__}.{col.key} is required",
                        entity=model.__name__, field=col.key, constraint="required",
                    )
                continue
            target = _mapped_class(next(iter(col.foreign_keys)).column.table)
            if target is not None and db.get(target, value) is None:
                raise ConstraintViolation(
                    f"{model.__name__}.{col.key} references a missing {target.__name__}",
                    entity=model.__name__, field=col.key, constraint="foreign_key", value=value,
                )

    def _check_unique(self, db: Session, model, fields: dict, current=None) -> None:
        groups = [(col.key,) for col in model.__table__.columns if col.unique]
        for constraint in model.__table__.constraints:
            if isinstance(constraint, UniqueConstraint):
                groups.append(tuple(c.key for c in constraint.columns))

        for group in groups:
            if not any(name in fields for name in group):
                continue
            values = {
                name: fields[name] if name in fields else getattr(current, name, None)
                for name in group
            }
            if any(v is None for v in values.values()):
                continue
            stmt = select(model.id).where(*[model.__table__.columns[n] == v for n, v in values.items()])
            if current is not None:
                stmt = stmt.where(model.id != current.id)
            if db.execute(stmt.limit(1)).first() is not None:
                raise ConstraintViolation(
                    f"{model.__name__} with this {', '.join(group)} already exists",
                    entity=model.__name__, field=",".join(group), constraint="unique", values=values,
                )


def _as_list(value) -> list:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)
