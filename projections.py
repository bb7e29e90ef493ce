from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from errors import NotFound
from identity import IdentityContext
from models import Account, Tag, Transaction
from money import cents_to_decimal
from periods import Period
from schemas import (
    AccountOut,
    LedgerSummary,
    TagOut,
    TagUsage,
    TransactionOut,
)


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    period: Optional[Period] = None
    tag_id: Optional[int] = None


class LedgerQueryService:
    """Read views over the acting user's ledger.

    Transactions are always projected together with their tags; the tags are
    fetched with one ``selectinload`` query per listing.
    """

    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def accounts(self) -> list[AccountOut]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
            .execution_options(populate_existing=True)
        )
        return [AccountOut.model_validate(a) for a in self.session.scalars(stmt)]

    def account(self, account_id: int) -> AccountOut:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        account = self.session.scalar(stmt)
        if not account:
            raise NotFound("Account not found")
        return AccountOut.model_validate(account)

    def tags(self) -> list[TagOut]:
        stmt = (
            select(Tag)
            .where(Tag.user_id == self.user_id)
            .order_by(Tag.name, Tag.id)
            .execution_options(populate_existing=True)
        )
        return [TagOut.model_validate(t) for t in self.session.scalars(stmt)]

    def tag(self, tag_id: int) -> TagOut:
        stmt = (
            select(Tag)
            .where(Tag.user_id == self.user_id, Tag.id == tag_id)
            .execution_options(populate_existing=True)
        )
        tag = self.session.scalar(stmt)
        if not tag:
            raise NotFound("Tag not found")
        return TagOut.model_validate(tag)

    def _transactions_stmt(self):
        return (
            select(Transaction)
            .options(selectinload(Transaction.tags))
            .where(Transaction.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )

    def transaction(self, transaction_id: int) -> TransactionOut:
        stmt = self._transactions_stmt().where(Transaction.id == transaction_id)
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return TransactionOut.model_validate(txn)

    def transactions(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TransactionOut]:
        filters = filters or TransactionFilters()
        if filters.account_id is not None:
            self.account(filters.account_id)
        if filters.tag_id is not None:
            self.tag(filters.tag_id)
        stmt = self._transactions_stmt().order_by(
            Transaction.transaction_date.desc(),
            Transaction.created_at.desc(),
            Transaction.id.desc(),
        )
        if filters.account_id is not None:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.period is not None:
            stmt = stmt.where(
                Transaction.transaction_date.between(
                    filters.period.start, filters.period.end
                )
            )
        if filters.tag_id is not None:
            stmt = stmt.where(Transaction.tags.any(Tag.id == filters.tag_id))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [TransactionOut.model_validate(t) for t in self.session.scalars(stmt)]

    def summary(self, filters: Optional[TransactionFilters] = None) -> LedgerSummary:
        return summarize(self.transactions(filters), self.tags())

    def net_worth(self) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.user_id == self.user_id
            )
        ).scalar_one()
        return cents_to_decimal(int(total or 0))


def summarize(
    transactions: Sequence[TransactionOut], tags: Iterable[TagOut] = ()
) -> LedgerSummary:
    """Aggregate a projected transaction list.

    Zero-amount transactions count as neither income nor expense. Tag usage
    lists every known tag (zero included) plus any tag seen on a transaction.
    """
    income_cents = 0
    expense_cents = 0
    income_count = 0
    expense_count = 0
    usage: dict[int, TagUsage] = {
        t.id: TagUsage(id=t.id, name=t.name, color=t.color, count=0) for t in tags
    }

    for txn in transactions:
        cents = int(txn.amount * 100)
        if cents > 0:
            income_cents += cents
            income_count += 1
        elif cents < 0:
            expense_cents += -cents
            expense_count += 1
        for ref in txn.tags:
            entry = usage.get(ref.id)
            if entry is None:
                entry = TagUsage(id=ref.id, name=ref.name, color=ref.color, count=0)
                usage[ref.id] = entry
            entry.count += 1

    return LedgerSummary(
        income=cents_to_decimal(income_cents),
        expenses=cents_to_decimal(expense_cents),
        net=cents_to_decimal(income_cents - expense_cents),
        income_count=income_count,
        expense_count=expense_count,
        tag_usage=sorted(usage.values(), key=lambda u: (-u.count, u.name.lower(), u.id)),
    )
