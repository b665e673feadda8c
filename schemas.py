from __future__ import annotations
import datetime as dt
from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import BillFrequency, BillStatus, BudgetTimeframe, CategoryType, TransactionType


# ─────────────────────────── AUTH ───────────────────────────

class UserRegister(BaseModel):
    email:      EmailStr
    password:   str = Field(min_length=6)
    first_name: Optional[str] = None
    last_name:  Optional[str] = None


class UserLogin(BaseModel):
    email:    str
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:         int
    email:      str
    first_name: Optional[str] = None
    last_name:  Optional[str] = None
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type:   str = "bearer"
    user:         UserOut


# ─────────────────────────── SETTINGS ───────────────────────────

class SettingsUpdate(BaseModel):
    first_name:          Optional[str] = None
    last_name:           Optional[str] = None
    currency_symbol:     Optional[str] = None
    symbol_position:     Optional[str] = Field(None, pattern="^(before|after)$")
    decimal_places:      Optional[int] = Field(None, ge=0, le=4)
    thousands_separator: Optional[str] = Field(None, max_length=1)
    decimal_separator:   Optional[str] = Field(None, min_length=1, max_length=1)
    rounding:            Optional[str] = Field(None, pattern="^(half_up|half_even|down|up)$")
    email_notifications: Optional[bool] = None
    bill_reminders:      Optional[bool] = None
    theme:               Optional[str] = None


class SettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    currency_symbol:     str
    symbol_position:     str
    decimal_places:      int
    thousands_separator: str
    decimal_separator:   str
    rounding:            str
    email_notifications: bool
    bill_reminders:      bool
    theme:               str


# ─────────────────────────── CATEGORIES ───────────────────────────

class CategoryCreate(BaseModel):
    name:        str = Field(min_length=1)
    type:        CategoryType = CategoryType.EXPENSE
    icon:        str = "tag"
    color:       str = "#6366f1"
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name:        Optional[str] = Field(None, min_length=1)
    type:        Optional[CategoryType] = None
    icon:        Optional[str] = None
    color:       Optional[str] = None
    description: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          int
    user_id:     int
    name:        str
    type:        CategoryType
    icon:        Optional[str] = None
    color:       Optional[str] = None
    description: Optional[str] = None
    is_default:  bool
    created_at:  datetime


class CategoryInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:    int
    name:  str
    icon:  Optional[str] = None
    color: Optional[str] = None


# ─────────────────────────── BUDGETS ───────────────────────────

class AllocationIn(BaseModel):
    category_id: int
    amount:      float


class BudgetCreate(BaseModel):
    name:        str = Field(min_length=1)
    amount:      float
    start_date:  date
    end_date:    date
    timeframe:   BudgetTimeframe = BudgetTimeframe.MONTHLY
    allocations: List[AllocationIn] = []


class BudgetUpdate(BaseModel):
    name:       Optional[str] = Field(None, min_length=1)
    amount:     Optional[float] = None
    start_date: Optional[date] = None
    end_date:   Optional[date] = None
    timeframe:  Optional[BudgetTimeframe] = None


class AllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          int
    budget_id:   int
    category_id: int
    amount:      float
    category:    Optional[CategoryInfo] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:         int
    user_id:    int
    name:       str
    amount:     float
    start_date: date
    end_date:   date
    timeframe:  BudgetTimeframe
    version:    int
    created_at: datetime


class CategoryUtilization(BaseModel):
    category_id:   int
    category_name: str
    allocated:     float
    spent:         float
    remaining:     float
    over_budget:   bool


class BudgetUtilization(BaseModel):
    budget_id:    int
    name:         str
    amount:       float
    period_start: date
    period_end:   date
    allocated:    float
    unallocated:  float
    spent:        float
    remaining:    float
    categories:   List[CategoryUtilization]


# ─────────────────────────── TRANSACTIONS ───────────────────────────

class TransactionCreate(BaseModel):
    amount:      float
    type:        TransactionType = TransactionType.EXPENSE
    date:        dt.date
    category_id: int
    description: Optional[str] = None
    notes:       Optional[str] = None
    bill_id:     Optional[int] = None


class TransactionUpdate(BaseModel):
    amount:      Optional[float] = None
    type:        Optional[TransactionType] = None
    date:        Optional[dt.date] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    notes:       Optional[str] = None
    bill_id:     Optional[int] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          int
    user_id:     int
    amount:      float
    type:        TransactionType
    date:        dt.date
    category_id: int
    bill_id:     Optional[int] = None
    description: Optional[str] = None
    notes:       Optional[str] = None
    created_at:  datetime
    category:    Optional[CategoryInfo] = None
    warnings:    List[str] = []


class StatsSummary(BaseModel):
    total_income:      float
    total_expenses:    float
    balance:           float
    transaction_count: int


class CategoryBreakdown(BaseModel):
    id:     int
    name:   str
    type:   CategoryType
    color:  Optional[str] = None
    icon:   Optional[str] = None
    amount: float
    count:  int


class TransactionStats(BaseModel):
    summary:    StatsSummary
    categories: List[CategoryBreakdown]


# ─────────────────────────── BILLS ───────────────────────────

class BillCreate(BaseModel):
    name:        str = Field(min_length=1)
    amount:      float
    due_date:    date
    frequency:   BillFrequency = BillFrequency.MONTHLY
    category_id: int
    autopay:     bool = False
    notes:       Optional[str] = None


class BillUpdate(BaseModel):
    name:        Optional[str] = Field(None, min_length=1)
    amount:      Optional[float] = None
    due_date:    Optional[date] = None
    frequency:   Optional[BillFrequency] = None
    category_id: Optional[int] = None
    autopay:     Optional[bool] = None
    notes:       Optional[str] = None


class BillPay(BaseModel):
    payment_date: Optional[date] = None
    amount:       Optional[float] = None


class BillStatusOut(BaseModel):
    bill_id:           int
    status:            BillStatus
    due_date:          date
    next_due_date:     date
    days_until_due:    int
    last_payment_date: Optional[date] = None
    cycles_due:        int
    payments:          int


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:          int
    user_id:     int
    name:        str
    amount:      float
    due_date:    date
    frequency:   BillFrequency
    autopay:     bool
    notes:       Optional[str] = None
    category_id: int
    created_at:  datetime
    category:    Optional[CategoryInfo] = None
    status:      Optional[BillStatusOut] = None


# ─────────────────────────── SAVINGS GOALS ───────────────────────────

class SavingsGoalCreate(BaseModel):
    name:           str = Field(min_length=2)
    target_amount:  float
    current_amount: float = 0
    target_date:    Optional[date] = None
    notes:          Optional[str] = None


class SavingsGoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name:           Optional[str] = Field(None, min_length=2)
    target_amount:  Optional[float] = None
    current_amount: Optional[float] = None
    target_date:    Optional[date] = None
    notes:          Optional[str] = None


class AddFunds(BaseModel):
    amount: float

    @field_validator("amount")
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("amount must be positive")
        return v


class SavingsGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id:                  int
    user_id:             int
    name:                str
    target_amount:       float
    current_amount:      float
    target_date:         Optional[date] = None
    notes:               Optional[str] = None
    completed:           bool
    version:             int
    created_at:          datetime
    progress:            float = 0
    progress_percentage: float = 0
    remaining_amount:    float = 0
    days_remaining:      Optional[int] = None


class SavingsOverview(BaseModel):
    goals:            List[SavingsGoalOut]
    total_saved:      float
    total_target:     float
    average_progress: float


# ─────────────────────────── DASHBOARD ───────────────────────────

class FinancialSummary(BaseModel):
    income_total:     float
    expense_total:    float
    savings_total:    float
    remaining_amount: float
    start_date:       date
    end_date:         date


class TodaySpending(BaseModel):
    day:                date
    total_spent:        float
    transaction_count:  int
    daily_budget:       float
    remaining_budget:   float


class BudgetProgress(BaseModel):
    timeframe:        BudgetTimeframe
    start_date:       date
    end_date:         date
    budget_id:        Optional[int] = None
    current_spending: float
    target_budget:    float
    percentage_used:  float
    remaining_amount: float


class BudgetComparisonItem(BaseModel):
    label:               str
    month_start:         date
    budget_amount:       float
    actual_amount:       float
    variance:            float
    variance_percentage: float


class BudgetComparison(BaseModel):
    year:                      int
    items:                     List[BudgetComparisonItem]
    total_budget:              float
    total_actual:              float
    total_variance:            float
    total_variance_percentage: float
