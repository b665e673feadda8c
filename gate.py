"""Consistency Gate: validation shared by every write path.

Validation happens before anything is written; the write itself is delegated
to the Ledger Store inside one transaction. Ownership of referenced rows is
checked here so the store only ever sees consistent foreign keys.
"""
import logging
from datetime import date
from typing import List, NamedTuple, Optional

import models
from allocations import AllocationEngine
from errors import (
    CategoryMismatch, ConstraintViolation, Forbidden, InvalidAmount,
    NotFound, OverAllocation, OwnershipMismatch,
)
from formatting import is_finite_number, round_money
from ledger import LedgerStore
from models import BillStatus, CategoryType, TransactionType
from projector import BalanceProjector

logger = logging.getLogger(__name__)

BILL_ALREADY_PAID = "bill_already_paid"

DEFAULT_CATEGORIES = [
    ("Housing",        "#4B89DC", "home",        CategoryType.EXPENSE),
    ("Utilities",      "#5D9CEC", "flash",       CategoryType.EXPENSE),
    ("Groceries",      "#48CFAD", "cart",        CategoryType.EXPENSE),
    ("Dining Out",     "#A0D468", "restaurant",  CategoryType.EXPENSE),
    ("Transportation", "#FFCE54", "car",         CategoryType.EXPENSE),
    ("Entertainment",  "#FC6E51", "film",        CategoryType.EXPENSE),
    ("Healthcare",     "#ED5565", "medkit",      CategoryType.EXPENSE),
    ("Salary",         "#3BAFDA", "cash",        CategoryType.INCOME),
    ("Freelance",      "#4FC1E9", "laptop",      CategoryType.INCOME),
]


class GateResult(NamedTuple):
    record: object
    warnings: List[str]


def _positive(value, entity: str, field: str = "amount") -> float:
    """Round to cents first; an amount that rounds to zero is rejected."""
    amount = round_money(value) if is_finite_number(value) else None
    if amount is None or amount <= 0:
        raise InvalidAmount(
            f"{entity}.{field} must be a positive number",
            entity=entity, field=field, constraint="positive",
        )
    return amount


def _non_negative(value, entity: str, field: str = "amount") -> float:
    amount = round_money(value) if is_finite_number(value) else None
    if amount is None or amount < 0:
        raise InvalidAmount(
            f"{entity}.{field} must not be negative",
            entity=entity, field=field, constraint="non_negative",
        )
    return amount


class ConsistencyGate:
    def __init__(self, store: LedgerStore):
        self.store = store
        self.allocations = AllocationEngine(store)
        self.projector = BalanceProjector(store)

    # ── ownership ──

    def owned(self, model, id: int, user_id: int):
        """Fetch a row the user owns. Other users' rows look absent."""
        obj = self.store.find_unique(model, id)
        if obj is None or obj.user_id != user_id:
            raise NotFound(model.__name__, id)
        return obj

    def _category_for(self, entity: str, user_id: int, category_id: int) -> models.Category:
        category = self.store.find_unique(models.Category, category_id)
        if category is None:
            raise NotFound("Category", category_id)
        if category.user_id != user_id:
            raise CategoryMismatch(
                "Category does not belong to this user",
                entity=entity, field="category_id", constraint="same_owner", category_id=category_id,
            )
        return category

    def _bill_for(self, entity: str, user_id: int, bill_id: int) -> models.Bill:
        bill = self.store.find_unique(models.Bill, bill_id)
        if bill is None:
            raise NotFound("Bill", bill_id)
        if bill.user_id != user_id:
            raise OwnershipMismatch(
                "Bill does not belong to this user",
                entity=entity, field="bill_id", constraint="same_owner", bill_id=bill_id,
            )
        return bill

    # ── users ──

    def register_user(self, email: str, password_hash: str, **fields) -> models.User:
        """Create the user together with the default category set."""
        with self.store.transaction():
            user = self.store.create(models.User, email=email, password_hash=password_hash, **fields)
            for name, color, icon, kind in DEFAULT_CATEGORIES:
                self.store.create(
                    models.Category, user_id=user.id, name=name, color=color, icon=icon,
                    type=kind, is_default=True,
                )
        logger.info("Registered user #%s", user.id)
        return user

    def delete_user(self, user_id: int) -> None:
        """Deleting a user removes everything the user owns."""
        self.store.delete(models.User, user_id)
        logger.info("Deleted user #%s and all owned records", user_id)

    # ── categories ──

    def create_category(self, user_id: int, **fields) -> models.Category:
        fields.pop("is_default", None)
        return self.store.create(models.Category, user_id=user_id, is_default=False, **fields)

    def update_category(self, user_id: int, category_id: int, **fields) -> models.Category:
        with self.store.transaction():
            category = self.owned(models.Category, category_id, user_id)
            if category.is_default:
                raise Forbidden(
                    "Default categories cannot be edited",
                    entity="Category", field="is_default", constraint="default_locked",
                )
            new_type = fields.get("type")
            if new_type is not None and CategoryType(new_type) != category.type:
                if self.store.count(models.CategoryAllocation, where={"category_id": category_id}):
                    raise ConstraintViolation(
                        "Category type cannot change while budget allocations use it",
                        entity="Category", field="type", constraint="immutable_with_allocations",
                    )
            fields.pop("is_default", None)
            return self.store.update(models.Category, category_id, **fields)

    def delete_category(self, user_id: int, category_id: int, reassign_to: Optional[int] = None) -> None:
        """Delete a category.

        Without ``reassign_to`` this fails with DependencyExists while any
        transaction, bill or allocation references the category. With it, the
        transactions and bills move to the target category and the category's
        allocations are dropped.
        """
        with self.store.transaction():
            category = self.owned(models.Category, category_id, user_id)
            if category.is_default:
                raise Forbidden(
                    "Default categories cannot be deleted",
                    entity="Category", field="is_default", constraint="default_locked",
                )
            if reassign_to is not None:
                if reassign_to == category_id:
                    raise ConstraintViolation(
                        "Cannot reassign a category to itself",
                        entity="Category", field="reassign_to", constraint="distinct",
                    )
                target = self._category_for("Category", user_id, reassign_to)
                if target.type != category.type:
                    raise ConstraintViolation(
                        "Replacement category must have the same type",
                        entity="Category", field="reassign_to", constraint="same_type",
                    )
                moved = self.store.update_many(models.Transaction, {"category_id": category_id}, category_id=target.id)
                moved += self.store.update_many(models.Bill, {"category_id": category_id}, category_id=target.id)
                dropped = self.store.delete_many(models.CategoryAllocation, {"category_id": category_id})
                logger.info(
                    "Category #%s: moved %s records to #%s, dropped %s allocations",
                    category_id, moved, target.id, dropped,
                )
            self.store.delete(models.Category, category_id)

    # ── budgets ──

    def create_budget(self, user_id: int, allocations=(), **fields) -> models.Budget:
        fields["amount"] = _non_negative(fields.get("amount"), "Budget")
        self._check_period(fields["start_date"], fields["end_date"])
        with self.store.transaction():
            budget = self.store.create(models.Budget, user_id=user_id, version=0, **fields)
            for item in allocations:
                self.allocations.upsert_allocation(budget.id, item["category_id"], item["amount"])
            return self.store.get(models.Budget, budget.id)

    def update_budget(self, user_id: int, budget_id: int, **fields) -> models.Budget:
        if "amount" in fields:
            fields["amount"] = _non_negative(fields["amount"], "Budget")
        with self.store.transaction():
            budget = self.owned(models.Budget, budget_id, user_id)
            self._check_period(fields.get("start_date", budget.start_date), fields.get("end_date", budget.end_date))
            if "amount" in fields:
                allocated = self.allocations.total_allocated(budget_id)
                if allocated > fields["amount"]:
                    raise OverAllocation(
                        "Budget amount cannot drop below what is already allocated",
                        entity="Budget", field="amount", constraint="allocated_lte_amount",
                        budget_id=budget_id, allocated=allocated, requested=fields["amount"],
                    )
            fields.pop("version", None)
            self.store.compare_and_swap(models.Budget, budget_id, budget.version, **fields)
            return self.store.get(models.Budget, budget_id)

    @staticmethod
    def _check_period(start: date, end: date) -> None:
        if end <= start:
            raise ConstraintViolation(
                "Budget end date must be after its start date",
                entity="Budget", field="end_date", constraint="end_after_start",
            )

    # ── transactions ──

    def create_transaction(self, user_id: int, **fields) -> GateResult:
        fields["amount"] = _positive(fields.get("amount"), "Transaction")
        with self.store.transaction():
            self._category_for("Transaction", user_id, fields["category_id"])
            warnings = self._bill_warnings(user_id, fields)
            record = self.store.create(models.Transaction, user_id=user_id, **fields)
        return GateResult(record, warnings)

    def update_transaction(self, user_id: int, transaction_id: int, **fields) -> GateResult:
        if "amount" in fields:
            fields["amount"] = _positive(fields["amount"], "Transaction")
        with self.store.transaction():
            current = self.owned(models.Transaction, transaction_id, user_id)
            if fields.get("category_id") is not None:
                self._category_for("Transaction", user_id, fields["category_id"])
            merged = {
                "bill_id": fields.get("bill_id", current.bill_id),
                "date":    fields.get("date") or current.date,
            }
            warnings = self._bill_warnings(user_id, merged, exclude_transaction_id=transaction_id)
            record = self.store.update(models.Transaction, transaction_id, **fields)
        return GateResult(record, warnings)

    def delete_transaction(self, user_id: int, transaction_id: int) -> None:
        with self.store.transaction():
            self.owned(models.Transaction, transaction_id, user_id)
            self.store.delete(models.Transaction, transaction_id)

    def _bill_warnings(self, user_id: int, fields: dict, exclude_transaction_id: Optional[int] = None) -> List[str]:
        """Flag a second payment inside a cycle that is already paid.

        Duplicates are allowed (corrections are legitimate) but reported,
        unless the bill is on autopay.
        """
        bill_id = fields.get("bill_id")
        if bill_id is None:
            return []
        bill = self._bill_for("Transaction", user_id, bill_id)
        if bill.autopay:
            return []
        status = self.projector.bill_status(bill.id, fields["date"], exclude_transaction_id=exclude_transaction_id)
        if status.status == BillStatus.PAID:
            logger.warning("Bill #%s is already paid for the cycle due %s", bill.id, status.due_date)
            return [BILL_ALREADY_PAID]
        return []

    # ── bills ──

    def create_bill(self, user_id: int, **fields) -> models.Bill:
        fields["amount"] = _positive(fields.get("amount"), "Bill")
        with self.store.transaction():
            self._category_for("Bill", user_id, fields["category_id"])
            return self.store.create(models.Bill, user_id=user_id, **fields)

    def update_bill(self, user_id: int, bill_id: int, **fields) -> models.Bill:
        if "amount" in fields:
            fields["amount"] = _positive(fields["amount"], "Bill")
        with self.store.transaction():
            self.owned(models.Bill, bill_id, user_id)
            if fields.get("category_id") is not None:
                self._category_for("Bill", user_id, fields["category_id"])
            return self.store.update(models.Bill, bill_id, **fields)

    def delete_bill(self, user_id: int, bill_id: int) -> None:
        """Linked transactions stay in the ledger with ``bill_id`` cleared."""
        with self.store.transaction():
            self.owned(models.Bill, bill_id, user_id)
            self.store.delete(models.Bill, bill_id)

    def pay_bill(
        self,
        user_id: int,
        bill_id: int,
        payment_date: Optional[date] = None,
        amount: Optional[float] = None,
    ) -> GateResult:
        """Record a payment transaction for the bill."""
        with self.store.transaction():
            bill = self.owned(models.Bill, bill_id, user_id)
            return self.create_transaction(
                user_id,
                amount=bill.amount if amount is None else amount,
                type=TransactionType.EXPENSE,
                date=payment_date or date.today(),
                description=f"Payment for {bill.name}",
                category_id=bill.category_id,
                bill_id=bill.id,
            )

    # ── savings goals ──

    def create_goal(self, user_id: int, **fields) -> models.SavingsGoal:
        fields.pop("completed", None)
        target = _positive(fields.get("target_amount"), "SavingsGoal", "target_amount")
        current = _non_negative(fields.get("current_amount") or 0, "SavingsGoal", "current_amount")
        fields.update(target_amount=target, current_amount=current)
        return self.store.create(
            models.SavingsGoal, user_id=user_id, version=0, completed=current >= target, **fields,
        )

    def update_goal(self, user_id: int, goal_id: int, **fields) -> models.SavingsGoal:
        """Update a goal. ``completed`` is derived and is rewritten together
        with the amounts in one conditional update."""
        if "completed" in fields:
            raise ConstraintViolation(
                "completed is derived from the saved amount and cannot be set",
                entity="SavingsGoal", field="completed", constraint="derived",
            )
        if "target_amount" in fields:
            fields["target_amount"] = _positive(fields["target_amount"], "SavingsGoal", "target_amount")
        if "current_amount" in fields:
            fields["current_amount"] = _non_negative(fields["current_amount"], "SavingsGoal", "current_amount")

        with self.store.transaction():
            goal = self.owned(models.SavingsGoal, goal_id, user_id)
            current = fields.get("current_amount", goal.current_amount)
            target = fields.get("target_amount", goal.target_amount)
            fields.pop("version", None)
            self.store.compare_and_swap(
                models.SavingsGoal, goal_id, goal.version, completed=current >= target, **fields,
            )
            return self.store.get(models.SavingsGoal, goal_id)

    def add_funds(self, user_id: int, goal_id: int, amount: float) -> models.SavingsGoal:
        amount = _positive(amount, "SavingsGoal", "amount")
        with self.store.transaction():
            goal = self.owned(models.SavingsGoal, goal_id, user_id)
            if goal.completed:
                raise Forbidden(
                    "Cannot add funds to a completed goal",
                    entity="SavingsGoal", field="completed", constraint="completed",
                )
            current = round_money(goal.current_amount + amount)
            self.store.compare_and_swap(
                models.SavingsGoal, goal_id, goal.version,
                current_amount=current, completed=current >= goal.target_amount,
            )
            return self.store.get(models.SavingsGoal, goal_id)

    def delete_goal(self, user_id: int, goal_id: int) -> None:
        with self.store.transaction():
            self.owned(models.SavingsGoal, goal_id, user_id)
            self.store.delete(models.SavingsGoal, goal_id)
