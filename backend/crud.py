import enum
import time
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import DB_MAX_RETRIES
from exceptions import ConstraintViolationError, DuplicateKeyError, PersistenceError
from logger import get_logger
from models import Expense

logger = get_logger("crud")


class SortOrder(enum.Enum):
    ASC = "asc"
    DESC = "desc"


class ExpenseStore:
    """Persistence of Expense rows over a single SQLAlchemy session.

    Every write is committed (or rolled back) on its own, so a failed call never
    leaves a partial change visible. Nothing is cached between calls.
    """

    def __init__(self, db: Session, max_retries: int = DB_MAX_RETRIES):
        self.db = db
        self.max_retries = max(1, max_retries)

    def find_by_id(self, expense_id: int) -> Optional[Expense]:
        with self._reading(f"expense {expense_id}"):
            return self.db.get(Expense, expense_id)

    def find_by_idempotency_key(self, key: str) -> Optional[Expense]:
        """Return the expense created with `key`, or None.

        Raises ConstraintViolationError if several rows share the key, which the
        unique index should make impossible.
        """
        with self._reading(f"idempotency key {key!r}"):
            try:
                return (
                    self.db.query(Expense)
                    .filter(Expense.idempotency_key == key)
                    .one_or_none()
                )
            except MultipleResultsFound:
                logger.error("More than one expense has idempotency key %r", key)
                raise ConstraintViolationError()

    def find_by_category(self, category: str, sort_order: SortOrder) -> list[Expense]:
        with self._reading(f"category {category!r}"):
            query = self.db.query(Expense).filter(Expense.category == category)
            rows = self._ordered(query, sort_order).all()
        # MySQL's default collation compares case-insensitively
        return [row for row in rows if row.category == category]

    def find_all(self, sort_order: SortOrder) -> list[Expense]:
        with self._reading("all expenses"):
            return self._ordered(self.db.query(Expense), sort_order).all()

    def find_categories(self) -> list[str]:
        """Return distinct categories for the filter dropdown."""
        with self._reading("categories"):
            rows = self.db.query(Expense.category).distinct().order_by(Expense.category).all()
        return [r[0] for r in rows]

    def save(self, expense: Expense) -> Expense:
        """Insert a new expense or persist changes to an existing one.

        id and created_at are assigned by the database on first insert.
        Transient connection errors are retried with exponential backoff.

        Raises:
            DuplicateKeyError: the insert collided with an existing idempotency key.
            PersistenceError: any other storage failure.
        """
        snapshot = self._snapshot(expense)
        for attempt in range(self.max_retries):
            try:
                self.db.add(expense)
                self.db.commit()
                self.db.refresh(expense)
                return expense
            except IntegrityError as e:
                self.db.rollback()
                logger.info("Insert rejected by a unique constraint: %s", e.orig)
                raise DuplicateKeyError() from e
            except OperationalError as e:
                self.db.rollback()
                if attempt == self.max_retries - 1:
                    logger.error("Giving up on save after %d attempts: %s", self.max_retries, e)
                    raise PersistenceError() from e
                delay = 2 ** attempt
                logger.warning("Transient database error on save, retrying in %ss: %s", delay, e)
                time.sleep(delay)
                # Rollback expires pending changes on rows that were already stored
                for key, value in snapshot.items():
                    setattr(expense, key, value)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Failed to save expense: %s", e)
                raise PersistenceError() from e

    def delete_by_id(self, expense_id: int) -> None:
        """Remove the expense if it exists; a missing id is not an error here."""
        try:
            self.db.query(Expense).filter(Expense.id == expense_id).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to delete expense %s: %s", expense_id, e)
            raise PersistenceError() from e

    @contextmanager
    def _reading(self, what: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to read %s: %s", what, e)
            raise PersistenceError() from e

    @staticmethod
    def _ordered(query, sort_order: SortOrder):
        # Same-day expenses always come back in id order
        if sort_order is SortOrder.DESC:
            return query.order_by(Expense.date.desc(), Expense.id.asc())
        return query.order_by(Expense.date.asc(), Expense.id.asc())

    @staticmethod
    def _snapshot(expense: Expense) -> dict:
        state = inspect(expense)
        if not state.persistent:
            return {}
        return {
            attr.key: getattr(expense, attr.key)
            for attr in state.mapper.column_attrs
            if not attr.columns[0].primary_key
        }
