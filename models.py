from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import MAX_CENTS, cents_to_decimal


class AccountType(str, Enum):
    checking = "checking"
    savings = "savings"
    credit_card = "credit_card"
    cash = "cash"


ACCOUNT_TYPE_ENUM = SAEnum(
    AccountType,
    name="accounttype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


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
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    opening_balance_cents: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("ix_accounts_user_created", "user_id", "created_at"),
        CheckConstraint(
            f"balance_cents BETWEEN {-MAX_CENTS} AND {MAX_CENTS}",
            name="ck_accounts_balance_range",
        ),
    )

    @property
    def balance(self) -> Decimal:
        return cents_to_decimal(self.balance_cents)

    @property
    def opening_balance(self) -> Decimal:
        return cents_to_decimal(self.opening_balance_cents)


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#3b82f6")

    __table_args__ = (Index("ix_tags_user_name", "user_id", "name"),)


# Rows are written only through tag_links.TagLinkManager.
transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column(
        "transaction_id",
        Integer,
        ForeignKey("transactions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("ix_transaction_tags_tag", "tag_id"),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    tags: Mapped[list["Tag"]] = relationship(
        "Tag",
        secondary="transaction_tags",
        order_by="Tag.name",
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
        Index(
            "ix_transactions_user_account_date",
            "user_id",
            "account_id",
            "transaction_date",
        ),
        CheckConstraint(
            f"amount_cents BETWEEN {-MAX_CENTS} AND {MAX_CENTS}",
            name="ck_transactions_amount_range",
        ),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)
