from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import MultipleResultsFound, OperationalError

import crud
from crud import ExpenseStore, SortOrder
from exceptions import ConstraintViolationError, DuplicateKeyError, PersistenceError
from models import Expense


def make_expense(day, category="Food", amount="10.00", key=None, description=None):
    return Expense(
        amount=Decimal(amount),
        category=category,
        description=description,
        date=day,
        idempotency_key=key,
    )


class TestExpenseStore:
    """Tests for ExpenseStore against an in-memory database."""

    def test_save_assigns_id_and_created_at(self, store):
        expense = store.save(make_expense(date(2024, 1, 15), key="abc"))

        assert expense.id is not None
        assert expense.created_at is not None
        assert expense.idempotency_key == "abc"

    def test_find_by_id_miss_returns_none(self, store):
        assert store.find_by_id(12345) is None

    def test_find_by_idempotency_key(self, store):
        saved = store.save(make_expense(date(2024, 1, 15), key="abc"))

        assert store.find_by_idempotency_key("abc").id == saved.id
        assert store.find_by_idempotency_key("other") is None

    def test_duplicate_key_insert_raises(self, store):
        store.save(make_expense(date(2024, 1, 15), key="abc"))

        with pytest.raises(DuplicateKeyError):
            store.save(make_expense(date(2024, 1, 16), key="abc"))

        # The failed insert left nothing behind
        assert len(store.find_all(SortOrder.ASC)) == 1

    def test_many_expenses_without_key(self, store):
        store.save(make_expense(date(2024, 1, 15)))
        store.save(make_expense(date(2024, 1, 15)))

        assert len(store.find_all(SortOrder.ASC)) == 2

    def test_find_all_sorted_both_ways(self, store):
        for day in (date(2024, 3, 1), date(2024, 1, 1), date(2024, 2, 1)):
            store.save(make_expense(day))

        ascending = [e.date for e in store.find_all(SortOrder.ASC)]
        descending = [e.date for e in store.find_all(SortOrder.DESC)]

        assert ascending == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        assert descending == [date(2024, 3, 1), date(2024, 2, 1), date(2024, 1, 1)]

    def test_same_day_ties_break_by_id(self, store):
        ids = [store.save(make_expense(date(2024, 1, 1))).id for _ in range(3)]

        assert [e.id for e in store.find_all(SortOrder.ASC)] == ids
        assert [e.id for e in store.find_all(SortOrder.DESC)] == ids

    def test_find_by_category_is_exact_match(self, store):
        store.save(make_expense(date(2024, 1, 2), category="Food"))
        store.save(make_expense(date(2024, 1, 1), category="Food"))
        store.save(make_expense(date(2024, 1, 3), category="food"))
        store.save(make_expense(date(2024, 1, 4), category="Fast Food"))

        found = store.find_by_category("Food", SortOrder.ASC)

        assert [e.category for e in found] == ["Food", "Food"]
        assert [e.date for e in found] == [date(2024, 1, 1), date(2024, 1, 2)]

    def test_update_existing(self, store):
        expense = store.save(make_expense(date(2024, 1, 1), key="abc"))
        expense.amount = Decimal("50.00")

        store.save(expense)

        assert store.find_by_id(expense.id).amount == Decimal("50.00")

    def test_delete_by_id(self, store):
        expense = store.save(make_expense(date(2024, 1, 1)))

        store.delete_by_id(expense.id)

        assert store.find_by_id(expense.id) is None

    def test_delete_missing_is_noop(self, store):
        store.delete_by_id(999)

    def test_ids_are_not_reused_after_delete(self, store):
        first = store.save(make_expense(date(2024, 1, 1)))
        store.delete_by_id(first.id)

        second = store.save(make_expense(date(2024, 1, 1)))

        assert second.id != first.id

    def test_find_categories(self, store):
        for category in ("Transport", "Food", "Food"):
            store.save(make_expense(date(2024, 1, 1), category=category))

        assert store.find_categories() == ["Food", "Transport"]


class TestExpenseStoreFailures:
    """Storage failures, simulated on the session."""

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        monkeypatch.setattr(crud.time, "sleep", lambda seconds: None)

    def test_transient_error_is_retried(self):
        db = MagicMock()
        db.commit.side_effect = [OperationalError("INSERT", {}, Exception("gone away")), None]
        store = ExpenseStore(db, max_retries=3)

        store.save(make_expense(date(2024, 1, 1)))

        assert db.commit.call_count == 2
        db.rollback.assert_called_once()

    def test_gives_up_after_max_retries(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("gone away"))
        store = ExpenseStore(db, max_retries=3)

        with pytest.raises(PersistenceError):
            store.save(make_expense(date(2024, 1, 1)))

        assert db.commit.call_count == 3

    def test_delete_failure_raises_persistence_error(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("DELETE", {}, Exception("gone away"))
        store = ExpenseStore(db)

        with pytest.raises(PersistenceError):
            store.delete_by_id(1)

        db.rollback.assert_called_once()

    def test_duplicate_rows_for_key_raise_constraint_violation(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.one_or_none.side_effect = MultipleResultsFound()
        store = ExpenseStore(db)

        with pytest.raises(ConstraintViolationError):
            store.find_by_idempotency_key("abc")

    def test_read_failures_raise_persistence_error(self):
        db = MagicMock()
        error = OperationalError("SELECT", {}, Exception("gone away"))
        db.get.side_effect = error
        db.query.side_effect = error
        store = ExpenseStore(db)

        for read in (
            lambda: store.find_by_id(1),
            lambda: store.find_by_idempotency_key("abc"),
            lambda: store.find_by_category("Food", SortOrder.ASC),
            lambda: store.find_all(SortOrder.DESC),
            lambda: store.find_categories(),
        ):
            with pytest.raises(PersistenceError):
                read()

        assert db.rollback.call_count == 5

    def test_update_survives_transient_error(self, store, db, session_factory, monkeypatch):
        expense = store.save(make_expense(date(2024, 1, 1), key="abc", description="lunch"))
        created_at = expense.created_at

        real_commit = db.commit
        commits = []

        def commit_fails_once():
            commits.append(1)
            if len(commits) == 1:
                # The UPDATE reaches the database, then the connection drops
                db.flush()
                raise OperationalError("UPDATE", {}, Exception("gone away"))
            real_commit()

        monkeypatch.setattr(db, "commit", commit_fails_once)

        expense.amount = Decimal("50.00")
        expense.category = "Dining"
        expense.description = None
        store.save(expense)

        assert len(commits) == 2
        fresh = session_factory()
        try:
            stored = fresh.get(Expense, expense.id)
            assert stored.amount == Decimal("50.00")
            assert stored.category == "Dining"
            assert stored.description is None
            assert stored.idempotency_key == "abc"
            assert stored.created_at == created_at
        finally:
            fresh.close()
