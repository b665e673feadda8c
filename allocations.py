import logging
from typing import Optional

import models
from errors import CategoryMismatch, InvalidAmount, OverAllocation
from formatting import is_finite_number, round_money
from ledger import LedgerStore

logger = logging.getLogger(__name__)


class AllocationEngine:
    """Keeps a budget's category allocations within the budget total.

    Each write locks the budget row, recomputes the allocated sum and advances
    the budget's version with a conditional update before touching the
    allocation, so concurrent writers cannot jointly over-allocate: the loser
    sees either the new sum (OverAllocation) or a stale version (Conflict).
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def total_allocated(self, budget_id: int) -> float:
        result = self.store.aggregate(
            models.CategoryAllocation, where={"budget_id": budget_id}, sum=["amount"],
        )
        return round_money(result["sum"]["amount"])

    def upsert_allocation(self, budget_id: int, category_id: int, amount: float) -> models.CategoryAllocation:
        amount = round_money(amount) if is_finite_number(amount) else None
        if amount is None or amount < 0:
            raise InvalidAmount(
                "Allocation amount must be a non-negative number",
                entity="CategoryAllocation", field="amount", constraint="non_negative",
            )

        with self.store.transaction():
            budget = self.store.get(models.Budget, budget_id, for_update=True)
            category = self.store.get(models.Category, category_id)
            if category.user_id != budget.user_id:
                raise CategoryMismatch(
                    "Category does not belong to the budget's owner",
                    entity="CategoryAllocation", field="category_id", constraint="same_owner",
                    budget_id=budget_id, category_id=category_id,
                )

            others = self._allocated_excluding(budget_id, category_id)
            if round_money(others + amount) > round_money(budget.amount):
                raise OverAllocation(
                    "Allocations would exceed the budget amount",
                    entity="Budget", field="amount", constraint="allocated_lte_amount",
                    budget_id=budget_id, budget_amount=budget.amount,
                    allocated=others, requested=amount,
                )

            self.store.compare_and_swap(models.Budget, budget_id, budget.version)

            existing = self._find(budget_id, category_id)
            if existing is not None:
                allocation = self.store.update(models.CategoryAllocation, existing.id, amount=amount)
            else:
                allocation = self.store.create(
                    models.CategoryAllocation,
                    budget_id=budget_id, category_id=category_id, amount=amount,
                )

        logger.info("Allocated %.2f to category %s in budget %s", amount, category_id, budget_id)
        return allocation

    def remove_allocation(self, budget_id: int, category_id: int) -> bool:
        """Remove the allocation if there is one. Removing twice is a no-op."""
        with self.store.transaction():
            existing = self._find(budget_id, category_id)
            if existing is None:
                return False
            budget = self.store.get(models.Budget, budget_id, for_update=True)
            self.store.compare_and_swap(models.Budget, budget_id, budget.version)
            self.store.delete(models.CategoryAllocation, existing.id)
        logger.info("Removed allocation for category %s from budget %s", category_id, budget_id)
        return True

    def _find(self, budget_id: int, category_id: int) -> Optional[models.CategoryAllocation]:
        return self.store.find_first(
            models.CategoryAllocation, where={"budget_id": budget_id, "category_id": category_id},
        )

    def _allocated_excluding(self, budget_id: int, category_id: int) -> float:
        result = self.store.aggregate(
            models.CategoryAllocation,
            where={"budget_id": budget_id, "category_id": {"ne": category_id}},
            sum=["amount"],
        )
        return round_money(result["sum"]["amount"])
