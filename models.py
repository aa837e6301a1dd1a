from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


MONEY = Numeric(18, 2)
RATE = Numeric(9, 6)


class AccountType(str, Enum):
    credit_card = "credit_card"
    bank = "bank"
    cash = "cash"
    savings = "savings"
    other = "other"


class TransactionType(str, Enum):
    expense = "expense"
    debt = "debt"
    income = "income"
    transfer = "transfer"
    repayment = "repayment"


class TransactionStatus(str, Enum):
    posted = "posted"
    void = "void"


class CashbackPreference(str, Enum):
    none_back = "none_back"
    real_fixed = "real_fixed"
    real_percent = "real_percent"
    voluntary = "voluntary"


class CashbackMode(str, Enum):
    real = "real"
    virtual = "virtual"
    voluntary = "voluntary"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    # null, a JSON string (possibly double encoded) or an object
    cashback_config: Mapped[Optional[Any]] = mapped_column(JSON(none_as_null=True))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )
    cycles: Mapped[list["CashbackCycle"]] = relationship(
        "CashbackCycle", back_populates="account"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.posted
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    persisted_cycle_tag: Mapped[Optional[str]] = mapped_column(String(7))
    cashback_mode: Mapped[CashbackPreference] = mapped_column(
        SAEnum(CashbackPreference),
        nullable=False,
        default=CashbackPreference.none_back,
    )
    cashback_share_percent: Mapped[Optional[Decimal]] = mapped_column(RATE)
    cashback_share_fixed: Mapped[Optional[Decimal]] = mapped_column(MONEY)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_account_cycle", "account_id", "persisted_cycle_tag"),
        Index("ix_transactions_account_occurred", "account_id", "occurred_at"),
    )


class CashbackCycle(Base, TimestampMixin):
    __tablename__ = "cashback_cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    cycle_tag: Mapped[str] = mapped_column(String(7), nullable=False)
    max_budget: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    min_spend_target: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    spent_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    real_awarded: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    virtual_profit: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    overflow_loss: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_exhausted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    met_min_spend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    account: Mapped["Account"] = relationship("Account", back_populates="cycles")
    entries: Mapped[list["CashbackEntry"]] = relationship(
        "CashbackEntry", back_populates="cycle"
    )

    __table_args__ = (
        UniqueConstraint("account_id", "cycle_tag", name="uq_cycle_account_tag"),
        CheckConstraint("spent_amount >= 0", name="ck_cycle_spent_positive"),
    )


class CashbackEntry(Base, TimestampMixin):
    __tablename__ = "cashback_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[int] = mapped_column(
        ForeignKey("cashback_cycles.id"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False
    )
    mode: Mapped[CashbackMode] = mapped_column(SAEnum(CashbackMode), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    counts_to_budget: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    # "metadata" is reserved on declarative classes
    policy_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON(none_as_null=True)
    )
    note: Mapped[Optional[str]] = mapped_column(Text)

    cycle: Mapped["CashbackCycle"] = relationship(
        "CashbackCycle", back_populates="entries"
    )
    transaction: Mapped["Transaction"] = relationship("Transaction")

    __table_args__ = (
        UniqueConstraint(
            "account_id", "transaction_id", name="uq_entry_account_transaction"
        ),
        Index("ix_cashback_entries_cycle", "cycle_id"),
    )
