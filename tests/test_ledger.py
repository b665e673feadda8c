import time
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import exc

import ledger
import models
from database import make_session_factory
from errors import Conflict, ConstraintViolation, DependencyExists, NotFound, Timeout
from ledger import LedgerStore
from models import TransactionType
from tests.conftest import category


def _tx(store, user, cat, amount, day, type=TransactionType.EXPENSE, **extra):
    return store.create(
        models.Transaction, user_id=user.id, category_id=cat.id,
        amount=amount, type=type, date=day, **extra,
    )


def test_find_many_with_filter_tree(store, user):
    groceries = category(store, user, "Groceries")
    salary = category(store, user, "Salary")
    _tx(store, user, groceries, 12.5, date(2024, 5, 1), description="Bread and milk")
    _tx(store, user, groceries, 80, date(2024, 5, 3), description="Weekly shop")
    _tx(store, user, salary, 2000, date(2024, 5, 2), type=TransactionType.INCOME)

    big = store.find_many(models.Transaction, where={"amount": {"gte": 50}}, order_by="amount")
    assert [t.amount for t in big] == [80, 2000]

    either = store.find_many(
        models.Transaction,
        where={"OR": [{"type": "INCOME"}, {"description": {"contains": "bread"}}]},
        order_by="-date",
    )
    assert [t.amount for t in either] == [2000, 12.5]

    not_groceries = store.find_many(models.Transaction, where={"NOT": {"category_id": groceries.id}})
    assert [t.category.name for t in not_groceries] == ["Salary"]

    page = store.find_many(models.Transaction, order_by=["-date", "-id"], skip=1, take=1)
    assert [t.date for t in page] == [date(2024, 5, 2)]


def test_unknown_field_or_operator_is_rejected(store):
    with pytest.raises(ValueError):
        store.find_many(models.Transaction, where={"nope": 1})
    with pytest.raises(ValueError):
        store.find_many(models.Transaction, where={"amount": {"between": 1}})


def test_aggregate_and_group_by(store, user):
    groceries = category(store, user, "Groceries")
    dining = category(store, user, "Dining Out")

    empty = store.aggregate(models.Transaction, where={"user_id": user.id}, sum=["amount"], max=["amount"])
    assert empty == {"count": 0, "sum": {"amount": 0}, "max": {"amount": None}}

    _tx(store, user, groceries, 10, date(2024, 5, 1))
    _tx(store, user, groceries, 30, date(2024, 5, 2))
    _tx(store, user, dining, 25, date(2024, 5, 2))

    total = store.aggregate(models.Transaction, where={"user_id": user.id}, sum=["amount"], avg=["amount"])
    assert total["count"] == 3
    assert total["sum"]["amount"] == pytest.approx(65)
    assert total["avg"]["amount"] == pytest.approx(65 / 3)

    rows = store.group_by(models.Transaction, by=["category_id"], sum=["amount"], order_by="-sum_amount")
    assert [(r["category_id"], r["count"], r["sum_amount"]) for r in rows] == [
        (groceries.id, 2, 40), (dining.id, 1, 25),
    ]
    assert store.count(models.Transaction, where={"category_id": dining.id}) == 1


def test_create_checks_foreign_keys_and_required_fields(store, user):
    with pytest.raises(ConstraintViolation) as e:
        store.create(models.Transaction, user_id=user.id, category_id=9999, amount=1, date=date(2024, 5, 1))
    assert e.value.constraint == "foreign_key"
    assert e.value.field == "category_id"

    with pytest.raises(ConstraintViolation) as e:
        store.create(models.Transaction, user_id=user.id, amount=1, date=date(2024, 5, 1))
    assert e.value.constraint == "required"


def test_unique_constraints(store, user, budget):
    groceries = category(store, user, "Groceries")
    store.create(models.CategoryAllocation, budget_id=budget.id, category_id=groceries.id, amount=10)
    with pytest.raises(ConstraintViolation) as e:
        store.create(models.CategoryAllocation, budget_id=budget.id, category_id=groceries.id, amount=20)
    assert e.value.constraint == "unique"

    with pytest.raises(ConstraintViolation):
        store.create(models.User, email=user.email, password_hash="x")


def test_check_constraint_violation_is_mapped(store, user):
    groceries = category(store, user, "Groceries")
    with pytest.raises(ConstraintViolation) as e:
        _tx(store, user, groceries, -5, date(2024, 5, 1))
    assert e.value.constraint == "integrity"


def test_transaction_rolls_back_everything(store, user):
    groceries = category(store, user, "Groceries")
    with pytest.raises(ConstraintViolation):
        with store.transaction():
            _tx(store, user, groceries, 10, date(2024, 5, 1))
            _tx(store, user, groceries, 20, date(2024, 5, 1))
            store.create(models.Transaction, user_id=user.id, category_id=12345, amount=1, date=date(2024, 5, 1))
    assert store.count(models.Transaction) == 0


def test_nested_transactions_join_the_outer_one(store, user):
    groceries = category(store, user, "Groceries")
    with pytest.raises(RuntimeError):
        with store.transaction() as outer:
            with store.transaction() as inner:
                assert inner is outer
                _tx(store, user, groceries, 10, date(2024, 5, 1))
            raise RuntimeError("abort")
    assert store.count(models.Transaction) == 0


def test_update_and_get(store, user):
    groceries = category(store, user, "Groceries")
    tx = _tx(store, user, groceries, 10, date(2024, 5, 1))
    updated = store.update(models.Transaction, tx.id, amount=12, description="fixed")
    assert (updated.amount, updated.description) == (12, "fixed")
    assert store.get(models.Transaction, tx.id).amount == 12

    with pytest.raises(NotFound):
        store.update(models.Transaction, 9999, amount=1)
    with pytest.raises(NotFound):
        store.get(models.Transaction, 9999)
    assert store.find_unique(models.Transaction, 9999) is None


def test_restricted_delete(store, user):
    groceries = category(store, user, "Groceries")
    tx = _tx(store, user, groceries, 10, date(2024, 5, 1))

    with pytest.raises(DependencyExists) as e:
        store.delete(models.Category, groceries.id)
    assert e.value.details["dependents"] == {"transactions": 1}

    store.delete(models.Transaction, tx.id)
    store.delete(models.Category, groceries.id)
    assert store.find_unique(models.Category, groceries.id) is None

    with pytest.raises(NotFound):
        store.delete(models.Category, groceries.id)


def test_bulk_update_and_delete(store, user):
    groceries = category(store, user, "Groceries")
    dining = category(store, user, "Dining Out")
    for amount in (5, 6, 7):
        _tx(store, user, groceries, amount, date(2024, 5, 1))

    assert store.update_many(models.Transaction, {"category_id": groceries.id}, category_id=dining.id) == 3
    assert store.count(models.Transaction, where={"category_id": dining.id}) == 3
    assert store.delete_many(models.Transaction, {"amount": {"lt": 7}}) == 2
    assert store.count(models.Transaction) == 1


def test_compare_and_swap(store, budget):
    assert store.compare_and_swap(models.Budget, budget.id, budget.version, name="June") == budget.version + 1
    fresh = store.get(models.Budget, budget.id)
    assert (fresh.name, fresh.version) == ("June", budget.version + 1)

    with pytest.raises(Conflict):
        store.compare_and_swap(models.Budget, budget.id, budget.version, name="stale")
    assert store.get(models.Budget, budget.id).name == "June"


# ── deadlines ──

def test_transaction_past_its_deadline_is_rolled_back(engine, user):
    store = LedgerStore(make_session_factory(engine), timeout=0.05)
    groceries = category(store, user, "Groceries")

    with pytest.raises(Timeout) as e:
        with store.transaction():
            _tx(store, user, groceries, 10, date(2024, 5, 1))
            time.sleep(0.1)
    assert e.value.constraint == "deadline"
    assert e.value.status_code == 504
    assert store.count(models.Transaction) == 0


@pytest.fixture
def ticking_clock(monkeypatch):
    """Every reading of the clock is one second after the previous one."""
    ticks = iter(range(1000))
    monkeypatch.setattr(ledger, "time", SimpleNamespace(monotonic=lambda: float(next(ticks))))


def test_single_calls_take_their_own_deadline(engine, user, ticking_clock):
    store = LedgerStore(make_session_factory(engine), timeout=None)
    groceries = category(store, user, "Groceries")

    with pytest.raises(Timeout):
        _tx(store, user, groceries, 10, date(2024, 5, 1), timeout=0.5)
    with pytest.raises(Timeout):
        store.update(models.Category, groceries.id, color="#000000", timeout=0.5)
    assert store.count(models.Transaction) == 0
    assert store.get(models.Category, groceries.id).color != "#000000"

    # No deadline on the store and none on the call.
    _tx(store, user, groceries, 10, date(2024, 5, 1))
    assert store.count(models.Transaction, timeout=5) == 1


def test_call_deadline_overrides_the_store_default(engine, user, ticking_clock):
    store = LedgerStore(make_session_factory(engine), timeout=0.5)
    groceries = store.find_first(models.Category, where={"user_id": user.id, "name": "Groceries"}, timeout=5)

    _tx(store, user, groceries, 10, date(2024, 5, 1), timeout=5)
    with pytest.raises(Timeout):
        _tx(store, user, groceries, 20, date(2024, 5, 1))
    assert [t.amount for t in store.find_many(models.Transaction, timeout=5)] == [10]


def test_driver_timeouts_are_mapped(store, user):
    with pytest.raises(Timeout) as e:
        with store.transaction():
            raise exc.OperationalError("UPDATE budgets", {}, Exception("database is locked"))
    assert e.value.constraint == "lock"

    with pytest.raises(Timeout) as e:
        with store.transaction():
            raise exc.TimeoutError("QueuePool limit reached")
    assert e.value.constraint == "pool"

    with pytest.raises(exc.OperationalError):
        with store.transaction():
            raise exc.OperationalError("SELECT 1", {}, Exception("no such table: budgets"))
