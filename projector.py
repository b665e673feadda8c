"""Balance Projector: read-only views derived from the ledger.

Nothing here writes. Every call re-reads current rows, so results are never
staler than the last committed write.
"""
import calendar
import logging
import math
from datetime import date, timedelta
from typing import List, Optional

import models
import schemas
from formatting import round_money
from ledger import LedgerStore
from models import BillFrequency, BillStatus, BudgetTimeframe, TransactionType

logger = logging.getLogger(__name__)

_DAY_STEPS   = {BillFrequency.DAILY: 1, BillFrequency.WEEKLY: 7, BillFrequency.BIWEEKLY: 14}
_MONTH_STEPS = {
    BillFrequency.MONTHLY:    1,
    BillFrequency.QUARTERLY:  3,
    BillFrequency.BIANNUALLY: 6,
    BillFrequency.ANNUALLY:   12,
}


# ─────────────────────────── BILL SCHEDULE ───────────────────────────

def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping to the last day of the target month."""
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def nth_due_date(anchor: date, frequency, n: int) -> date:
    """The n-th due date of a schedule starting at ``anchor`` (n may be negative).

    Always computed from the anchor so month-end clamping never drifts.
    """
    frequency = BillFrequency(frequency)
    if frequency in _DAY_STEPS:
        return anchor + timedelta(days=_DAY_STEPS[frequency] * n)
    return add_months(anchor, _MONTH_STEPS[frequency] * n)


def cycles_due(anchor: date, frequency, as_of: date) -> int:
    """Number of scheduled due dates strictly before ``as_of``."""
    if as_of <= anchor:
        return 0
    frequency = BillFrequency(frequency)
    if frequency in _DAY_STEPS:
        return math.ceil((as_of - anchor).days / _DAY_STEPS[frequency])
    n = 0
    while nth_due_date(anchor, frequency, n) < as_of:
        n += 1
    return n


class BalanceProjector:
    def __init__(self, store: LedgerStore):
        self.store = store

    # ── spending ──

    def category_spent(self, user_id: int, category_id: int, period_start: date, period_end: date) -> float:
        """Sum of EXPENSE amounts in the category with date in [period_start, period_end)."""
        result = self.store.aggregate(
            models.Transaction,
            where={
                "user_id":     user_id,
                "category_id": category_id,
                "type":        TransactionType.EXPENSE,
                "date":        {"gte": period_start, "lt": period_end},
            },
            sum=["amount"],
        )
        return round_money(result["sum"]["amount"])

    def budget_utilization(self, budget_id: int) -> schemas.BudgetUtilization:
        """Allocated vs. spent per category. The budget period includes its end date.

        A negative ``remaining`` means the category is over budget; that is
        reported, not rejected.
        """
        with self.store.transaction():
            budget = self.store.get(models.Budget, budget_id)
            allocations = self.store.find_many(
                models.CategoryAllocation, where={"budget_id": budget_id}, order_by="id",
            )
            period_end = budget.end_date + timedelta(days=1)

            lines = []
            for allocation in allocations:
                spent = self.category_spent(budget.user_id, allocation.category_id, budget.start_date, period_end)
                remaining = round_money(allocation.amount - spent)
                lines.append(schemas.CategoryUtilization(
                    category_id=allocation.category_id,
                    category_name=allocation.category.name,
                    allocated=round_money(allocation.amount),
                    spent=spent,
                    remaining=remaining,
                    over_budget=remaining < 0,
                ))

        allocated = round_money(sum(line.allocated for line in lines))
        spent = round_money(sum(line.spent for line in lines))
        return schemas.BudgetUtilization(
            budget_id=budget.id,
            name=budget.name,
            amount=round_money(budget.amount),
            period_start=budget.start_date,
            period_end=budget.end_date,
            allocated=allocated,
            unallocated=round_money(budget.amount - allocated),
            spent=spent,
            remaining=round_money(allocated - spent),
            categories=lines,
        )

    def transaction_stats(
        self,
        user_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> schemas.TransactionStats:
        where = {"user_id": user_id}
        if date_from or date_to:
            where["date"] = {}
            if date_from:
                where["date"]["gte"] = date_from
            if date_to:
                where["date"]["lte"] = date_to

        with self.store.transaction():
            rows = self.store.group_by(
                models.Transaction, by=["category_id", "type"], where=where, sum=["amount"],
            )
            categories = {
                c.id: c for c in self.store.find_many(
                    models.Category, where={"id": {"in": [r["category_id"] for r in rows]}},
                )
            }

        income = round_money(sum(r["sum_amount"] for r in rows if r["type"] == TransactionType.INCOME))
        expenses = round_money(sum(r["sum_amount"] for r in rows if r["type"] == TransactionType.EXPENSE))

        breakdown = {}
        for r in rows:
            category = categories[r["category_id"]]
            entry = breakdown.setdefault(category.id, {
                "id": category.id, "name": category.name, "type": category.type,
                "color": category.color, "icon": category.icon, "amount": 0.0, "count": 0,
            })
            entry["amount"] = round_money(entry["amount"] + r["sum_amount"])
            entry["count"] += r["count"]

        return schemas.TransactionStats(
            summary=schemas.StatsSummary(
                total_income=income,
                total_expenses=expenses,
                balance=round_money(income - expenses),
                transaction_count=sum(r["count"] for r in rows),
            ),
            categories=sorted(
                (schemas.CategoryBreakdown(**e) for e in breakdown.values()),
                key=lambda c: c.amount, reverse=True,
            ),
        )

    # ── bills ──

    def bill_status(
        self,
        bill_id: int,
        as_of: Optional[date] = None,
        exclude_transaction_id: Optional[int] = None,
    ) -> schemas.BillStatusOut:
        """Where the bill stands on ``as_of``.

        Payments are transactions linked to the bill, dated after the cycle
        origin (one period before the first due date) and not after ``as_of``.
        With n due dates already passed and p payments: p < n is OVERDUE;
        p > n, or p == n with a payment on or after the latest passed due
        date, is PAID; anything else is UPCOMING.
        """
        as_of = as_of or date.today()
        with self.store.transaction():
            bill = self.store.get(models.Bill, bill_id)
            origin = nth_due_date(bill.due_date, bill.frequency, -1)
            where = {"bill_id": bill.id, "date": {"gt": origin, "lte": as_of}}
            if exclude_transaction_id is not None:
                where["id"] = {"ne": exclude_transaction_id}
            payments = [t.date for t in self.store.find_many(models.Transaction, where=where, order_by="date")]

        n = cycles_due(bill.due_date, bill.frequency, as_of)
        p = len(payments)
        next_due = nth_due_date(bill.due_date, bill.frequency, n)

        if p < n:
            status, due = BillStatus.OVERDUE, nth_due_date(bill.due_date, bill.frequency, p)
        elif p > n:
            status, due = BillStatus.PAID, next_due
        elif n > 0 and payments[-1] >= nth_due_date(bill.due_date, bill.frequency, n - 1):
            status, due = BillStatus.PAID, nth_due_date(bill.due_date, bill.frequency, n - 1)
        else:
            status, due = BillStatus.UPCOMING, next_due

        return schemas.BillStatusOut(
            bill_id=bill.id,
            status=status,
            due_date=due,
            next_due_date=next_due,
            days_until_due=(due - as_of).days,
            last_payment_date=payments[-1] if payments else None,
            cycles_due=n,
            payments=p,
        )

    def bill_reminders(self, user_id: int, days: int = 7, as_of: Optional[date] = None) -> List[schemas.BillOut]:
        """Unpaid bills due within ``days`` of ``as_of``, overdue ones included."""
        as_of = as_of or date.today()
        horizon = as_of + timedelta(days=days)
        result = []
        for bill in self.store.find_many(models.Bill, where={"user_id": user_id}, order_by="due_date"):
            status = self.bill_status(bill.id, as_of)
            if status.status == BillStatus.PAID:
                continue
            if status.status == BillStatus.OVERDUE or status.due_date <= horizon:
                out = schemas.BillOut.model_validate(bill)
                out.status = status
                result.append(out)
        result.sort(key=lambda b: b.status.due_date)
        return result

    # ── savings ──

    def savings_progress(self, goal_id: int) -> float:
        """current / target, clamped to [0, 1]."""
        goal = self.store.get(models.SavingsGoal, goal_id)
        return _progress(goal)

    def goal_view(self, goal: models.SavingsGoal, today: Optional[date] = None) -> schemas.SavingsGoalOut:
        today = today or date.today()
        progress = _progress(goal)
        out = schemas.SavingsGoalOut.model_validate(goal)
        out.progress = progress
        out.progress_percentage = round(progress * 100, 2)
        out.remaining_amount = round_money(max(0.0, goal.target_amount - goal.current_amount))
        out.days_remaining = max(0, (goal.target_date - today).days) if goal.target_date else None
        return out

    def savings_overview(self, user_id: int, completed: Optional[bool] = None) -> schemas.SavingsOverview:
        where = {"user_id": user_id}
        if completed is not None:
            where["completed"] = completed
        goals = [self.goal_view(g) for g in self.store.find_many(models.SavingsGoal, where=where, order_by="-created_at")]
        return schemas.SavingsOverview(
            goals=goals,
            total_saved=round_money(sum(g.current_amount for g in goals)),
            total_target=round_money(sum(g.target_amount for g in goals)),
            average_progress=round(sum(g.progress_percentage for g in goals) / len(goals), 2) if goals else 0.0,
        )


    # ── dashboard ──

    def _expense_total(self, user_id: int, start: date, end: date):
        """(sum, count) of EXPENSE transactions dated in [start, end]."""
        result = self.store.aggregate(
            models.Transaction,
            where={"user_id": user_id, "type": TransactionType.EXPENSE, "date": {"gte": start, "lte": end}},
            sum=["amount"],
        )
        return round_money(result["sum"]["amount"]), result["count"]

    def _budget_covering(self, user_id: int, timeframe: BudgetTimeframe, day: date):
        return self.store.find_first(
            models.Budget,
            where={
                "user_id":    user_id,
                "timeframe":  timeframe,
                "start_date": {"lte": day},
                "end_date":   {"gte": day},
            },
            order_by=["-start_date", "id"],
        )

    def financial_summary(
        self,
        user_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> schemas.FinancialSummary:
        """Income and expenses over a range, the current month by default.

        ``savings_total`` is what the user's goals currently hold. Goal funds
        are not ledger transactions, so they are reported next to the balance
        and do not reduce ``remaining_amount``.
        """
        today = date.today()
        start, end = month_bounds(today)
        start = date_from or start
        end = date_to or end

        with self.store.transaction():
            rows = self.store.group_by(
                models.Transaction, by=["type"], sum=["amount"],
                where={"user_id": user_id, "date": {"gte": start, "lte": end}},
            )
            saved = self.store.aggregate(models.SavingsGoal, where={"user_id": user_id}, sum=["current_amount"])

        totals = {r["type"]: r["sum_amount"] for r in rows}
        income = round_money(totals.get(TransactionType.INCOME, 0))
        expenses = round_money(totals.get(TransactionType.EXPENSE, 0))
        return schemas.FinancialSummary(
            income_total=income,
            expense_total=expenses,
            savings_total=round_money(saved["sum"]["current_amount"]),
            remaining_amount=round_money(income - expenses),
            start_date=start,
            end_date=end,
        )

    def today_spending(self, user_id: int, as_of: Optional[date] = None) -> schemas.TodaySpending:
        """Spending on one day against a daily share of the MONTHLY budget covering it."""
        day = as_of or date.today()
        with self.store.transaction():
            spent, count = self._expense_total(user_id, day, day)
            budget = self._budget_covering(user_id, BudgetTimeframe.MONTHLY, day)

        days_in_month = calendar.monthrange(day.year, day.month)[1]
        daily = round_money(budget.amount / days_in_month) if budget else 0.0
        return schemas.TodaySpending(
            day=day,
            total_spent=spent,
            transaction_count=count,
            daily_budget=daily,
            remaining_budget=round_money(max(0.0, daily - spent)),
        )

    def budget_progress(
        self,
        user_id: int,
        timeframe: BudgetTimeframe = BudgetTimeframe.MONTHLY,
        as_of: Optional[date] = None,
    ) -> schemas.BudgetProgress:
        """Spending in the calendar week (from Sunday), month or year containing
        ``as_of``, against the budget of that timeframe covering ``as_of``."""
        timeframe = BudgetTimeframe(timeframe)
        day = as_of or date.today()
        if timeframe == BudgetTimeframe.WEEKLY:
            start = day - timedelta(days=(day.weekday() + 1) % 7)
            end = start + timedelta(days=6)
        elif timeframe == BudgetTimeframe.YEARLY:
            start, end = date(day.year, 1, 1), date(day.year, 12, 31)
        else:
            start, end = month_bounds(day)

        with self.store.transaction():
            spent, _ = self._expense_total(user_id, start, end)
            budget = self._budget_covering(user_id, timeframe, day)

        target = round_money(budget.amount) if budget else 0.0
        return schemas.BudgetProgress(
            timeframe=timeframe,
            start_date=start,
            end_date=end,
            budget_id=budget.id if budget else None,
            current_spending=spent,
            target_budget=target,
            percentage_used=round(spent / target * 100, 2) if target > 0 else 0.0,
            remaining_amount=round_money(max(0.0, target - spent)),
        )

    def budget_comparison(self, user_id: int, as_of: Optional[date] = None) -> schemas.BudgetComparison:
        """Budgeted vs. actual spending for each month of the year up to ``as_of``.

        A month's budget is the first MONTHLY budget starting in it; spending
        after ``as_of`` is not counted.
        """
        day = as_of or date.today()
        with self.store.transaction():
            budgets = self.store.find_many(
                models.Budget,
                where={
                    "user_id":    user_id,
                    "timeframe":  BudgetTimeframe.MONTHLY,
                    "start_date": {"gte": date(day.year, 1, 1), "lte": date(day.year, 12, 31)},
                },
                order_by=["start_date", "id"],
            )
            items = []
            for month in range(1, day.month + 1):
                start, end = month_bounds(date(day.year, month, 1))
                budget = next((b for b in budgets if b.start_date.month == month), None)
                planned = round_money(budget.amount) if budget else 0.0
                actual, _ = self._expense_total(user_id, start, min(end, day))
                items.append(_comparison_item(f"{calendar.month_name[month]} {day.year}", start, planned, actual))

        total = _comparison_item(
            "", date(day.year, 1, 1),
            round_money(sum(i.budget_amount for i in items)),
            round_money(sum(i.actual_amount for i in items)),
        )
        return schemas.BudgetComparison(
            year=day.year,
            items=items,
            total_budget=total.budget_amount,
            total_actual=total.actual_amount,
            total_variance=total.variance,
            total_variance_percentage=total.variance_percentage,
        )


def month_bounds(day: date):
    """First and last day of the month containing ``day``."""
    return day.replace(day=1), day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _comparison_item(label: str, month_start: date, planned: float, actual: float) -> schemas.BudgetComparisonItem:
    variance = round_money(actual - planned)
    return schemas.BudgetComparisonItem(
        label=label,
        month_start=month_start,
        budget_amount=planned,
        actual_amount=actual,
        variance=variance,
        variance_percentage=round(variance / planned * 100, 2) if planned > 0 else 0.0,
    )


def _progress(goal: models.SavingsGoal) -> float:
    if goal.target_amount <= 0:
        return 1.0
    return min(1.0, max(0.0, goal.current_amount / goal.target_amount))
