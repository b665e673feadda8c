import enum
from datetime import datetime
from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Enum, Float, ForeignKey,
    Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from database import Base


class CategoryType(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INCOME  = "INCOME"


class TransactionType(str, enum.Enum):
    EXPENSE = "EXPENSE"
    INCOME  = "INCOME"


class BudgetTimeframe(str, enum.Enum):
    WEEKLY  = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY  = "YEARLY"


class BillFrequency(str, enum.Enum):
    DAILY      = "DAILY"
    WEEKLY     = "WEEKLY"
    BIWEEKLY   = "BIWEEKLY"
    MONTHLY    = "MONTHLY"
    QUARTERLY  = "QUARTERLY"
    BIANNUALLY = "BIANNUALLY"
    ANNUALLY   = "ANNUALLY"


class BillStatus(str, enum.Enum):
    UPCOMING = "UPCOMING"
    PAID     = "PAID"
    OVERDUE  = "OVERDUE"


class User(Base):
    __tablename__ = "users"

    id            = Column(Integer, primary_key=True, index=True)
    email         = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    first_name    = Column(String, nullable=True)
    last_name     = Column(String, nullable=True)

    # currency formatting
    currency_symbol     = Column(String,  nullable=False, default="$")
    symbol_position     = Column(String,  nullable=False, default="before")   # before | after
    decimal_places      = Column(Integer, nullable=False, default=2)
    thousands_separator = Column(String,  nullable=False, default=",")
    decimal_separator   = Column(String,  nullable=False, default=".")
    rounding            = Column(String,  nullable=False, default="half_up")  # half_up | half_even | down | up

    email_notifications = Column(Boolean, nullable=False, default=True)
    bill_reminders      = Column(Boolean, nullable=False, default=True)
    theme               = Column(String,  nullable=False, default="light")
    created_at          = Column(DateTime, default=datetime.utcnow)

    categories    = relationship("Category",    back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    budgets       = relationship("Budget",      back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    transactions  = relationship("Transaction", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    bills         = relationship("Bill",        back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    savings_goals = relationship("SavingsGoal", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class Category(Base):
    __tablename__ = "categories"
    __restrict_delete__ = ("transactions", "bills", "allocations")

    id          = Column(Integer, primary_key=True, index=True)
    user_id     = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name        = Column(String, nullable=False)
    color       = Column(String, default="#6366f1")
    icon        = Column(String, default="tag")
    description = Column(String, nullable=True)
    type        = Column(Enum(CategoryType), nullable=False, default=CategoryType.EXPENSE)
    is_default  = Column(Boolean, nullable=False, default=False)
    created_at  = Column(DateTime, default=datetime.utcnow)

    user         = relationship("User", back_populates="categories")
    transactions = relationship("Transaction",        back_populates="category", passive_deletes="all")
    bills        = relationship("Bill",               back_populates="category", passive_deletes="all")
    allocations  = relationship("CategoryAllocation", back_populates="category", passive_deletes="all")


class Budget(Base):
    __tablename__ = "budgets"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_budget_period"),
        CheckConstraint("amount >= 0", name="ck_budget_amount"),
    )

    id         = Column(Integer, primary_key=True, index=True)
    user_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name       = Column(String, nullable=False)
    amount     = Column(Float, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date   = Column(Date, nullable=False)
    timeframe  = Column(Enum(BudgetTimeframe), nullable=False, default=BudgetTimeframe.MONTHLY)
    version    = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    user        = relationship("User", back_populates="budgets")
    allocations = relationship(
        "CategoryAllocation", back_populates="budget",
        cascade="all, delete-orphan", passive_deletes=True,
    )


class CategoryAllocation(Base):
    __tablename__ = "category_allocations"
    __table_args__ = (
        UniqueConstraint("budget_id", "category_id", name="uq_allocation_budget_category"),
        CheckConstraint("amount >= 0", name="ck_allocation_amount"),
    )

    id          = Column(Integer, primary_key=True, index=True)
    budget_id   = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    amount      = Column(Float, nullable=False)

    budget   = relationship("Budget",   back_populates="allocations")
    category = relationship("Category", back_populates="allocations", lazy="joined")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount"),
    )

    id          = Column(Integer, primary_key=True, index=True)
    user_id     = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    bill_id     = Column(Integer, ForeignKey("bills.id", ondelete="SET NULL"), nullable=True, index=True)
    amount      = Column(Float, nullable=False)
    type        = Column(Enum(TransactionType), nullable=False, default=TransactionType.EXPENSE)
    description = Column(String, nullable=True)
    notes       = Column(Text, nullable=True)
    date        = Column(Date, nullable=False, index=True)
    created_at  = Column(DateTime, default=datetime.utcnow)

    user     = relationship("User",     back_populates="transactions")
    category = relationship("Category", back_populates="transactions", lazy="joined")
    bill     = relationship("Bill",     back_populates="transactions")


class Bill(Base):
    __tablename__ = "bills"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bill_amount"),
    )

    id          = Column(Integer, primary_key=True, index=True)
    user_id     = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    name        = Column(String, nullable=False)
    amount      = Column(Float, nullable=False)
    due_date    = Column(Date, nullable=False)      # first due date of the schedule
    frequency   = Column(Enum(BillFrequency), nullable=False, default=BillFrequency.MONTHLY)
    autopay     = Column(Boolean, nullable=False, default=False)
    notes       = Column(Text, nullable=True)
    created_at  = Column(DateTime, default=datetime.utcnow)

    user         = relationship("User",     back_populates="bills")
    category     = relationship("Category", back_populates="bills", lazy="joined")
    transactions = relationship("Transaction", back_populates="bill", passive_deletes=True)


class SavingsGoal(Base):
    __tablename__ = "savings_goals"
    __table_args__ = (
        CheckConstraint("current_amount >= 0", name="ck_goal_current_amount"),
        CheckConstraint("target_amount > 0", name="ck_goal_target_amount"),
        CheckConstraint("completed = (current_amount >= target_amount)", name="ck_goal_completed"),
    )

    id             = Column(Integer, primary_key=True, index=True)
    user_id        = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name           = Column(String, nullable=False)
    target_amount  = Column(Float, nullable=False)
    current_amount = Column(Float, nullable=False, default=0)
    target_date    = Column(Date, nullable=True)
    notes          = Column(Text, nullable=True)
    completed      = Column(Boolean, nullable=False, default=False)
    version        = Column(Integer, nullable=False, default=0)
    created_at     = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="savings_goals")
