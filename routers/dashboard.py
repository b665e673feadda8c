from datetime import date
from fastapi import APIRouter, Depends, Query
from typing import Optional
from database import get_store
from ledger import LedgerStore
from models import BudgetTimeframe
from projector import BalanceProjector
import models, schemas, auth

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/summary", response_model=schemas.FinancialSummary)
def financial_summary(
    date_from: Optional[date] = Query(None, description="Start date YYYY-MM-DD, defaults to the first of this month"),
    date_to:   Optional[date] = Query(None, description="End date YYYY-MM-DD, defaults to the end of this month"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    return BalanceProjector(store).financial_summary(current_user.id, date_from, date_to)


@router.get("/today", response_model=schemas.TodaySpending)
def today_spending(
    as_of: Optional[date] = Query(None, description="Day to report, defaults to today"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    return BalanceProjector(store).today_spending(current_user.id, as_of)


@router.get("/budget-progress", response_model=schemas.BudgetProgress)
def budget_progress(
    period: BudgetTimeframe = Query(BudgetTimeframe.MONTHLY, description="WEEKLY, MONTHLY or YEARLY"),
    as_of:  Optional[date]  = Query(None, description="Reference date, defaults to today"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Spending in the current week, month or year against the matching budget."""
    return BalanceProjector(store).budget_progress(current_user.id, period, as_of)


@router.get("/budget-comparison", response_model=schemas.BudgetComparison)
def budget_comparison(
    as_of: Optional[date] = Query(None, description="Compare January up to this date's month"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    return BalanceProjector(store).budget_comparison(current_user.id, as_of)
