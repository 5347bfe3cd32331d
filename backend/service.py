from typing import Optional

from crud import ExpenseStore, SortOrder
from exceptions import DuplicateKeyError, PersistenceError
from logger import get_logger
from models import Expense
from schemas import ExpenseCreate, ExpenseUpdate

logger = get_logger("service")

SORT_DATE_DESC = "date_desc"


def resolve_sort_order(sort: Optional[str]) -> SortOrder:
    """Only "date_desc" sorts newest first; any other value is ascending.

    A missing or empty value means the default, "date_desc".
    """
    if not sort:
        sort = SORT_DATE_DESC
    return SortOrder.DESC if sort == SORT_DATE_DESC else SortOrder.ASC


class ExpenseService:
    """Business rules for expenses, on top of an ExpenseStore."""

    def __init__(self, store: ExpenseStore):
        self.store = store

    def create_expense(self, expense_in: ExpenseCreate) -> tuple[Expense, bool]:
        """
        Create a new expense. If idempotency_key already exists, return the existing
        record without creating a duplicate. Returns (expense, was_created).
        """
        key = expense_in.idempotency_key
        if key:
            existing = self.store.find_by_idempotency_key(key)
            if existing is not None:
                logger.info("Replaying expense %s for idempotency key %r", existing.id, key)
                return existing, False

        new_expense = Expense(
            idempotency_key=key,
            amount=expense_in.amount,
            category=expense_in.category,
            description=expense_in.description,
            date=expense_in.date,
        )

        try:
            saved = self.store.save(new_expense)
        except DuplicateKeyError:
            # A concurrent request with the same key committed first
            existing = self.store.find_by_idempotency_key(key) if key else None
            if existing is None:
                raise PersistenceError("Expense was rejected by a database constraint")
            logger.info("Lost insert race for idempotency key %r to expense %s", key, existing.id)
            return existing, False

        logger.info("Created expense %s (%s %s on %s)", saved.id, saved.category, saved.amount, saved.date)
        return saved, True

    def list_expenses(
        self,
        category: Optional[str] = None,
        sort: Optional[str] = SORT_DATE_DESC,
    ) -> list[Expense]:
        """
        Fetch expenses sorted by date, restricted to an exact category match
        when one is given.
        """
        sort_order = resolve_sort_order(sort)
        if category:
            return self.store.find_by_category(category, sort_order)
        return self.store.find_all(sort_order)

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        return self.store.find_by_id(expense_id)

    def update_expense(self, expense_id: int, patch: ExpenseUpdate) -> Optional[Expense]:
        """
        Overwrite amount, category, description and date. id, created_at and
        idempotency_key are never touched. Returns None for an unknown id.
        """
        expense = self.store.find_by_id(expense_id)
        if expense is None:
            return None

        expense.amount = patch.amount
        expense.category = patch.category
        expense.description = patch.description
        expense.date = patch.date

        saved = self.store.save(expense)
        logger.info("Updated expense %s", expense_id)
        return saved

    def delete_expense(self, expense_id: int) -> bool:
        if self.store.find_by_id(expense_id) is None:
            return False
        self.store.delete_by_id(expense_id)
        logger.info("Deleted expense %s", expense_id)
        return True

    def list_categories(self) -> list[str]:
        return self.store.find_categories()
