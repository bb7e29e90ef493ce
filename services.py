from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from errors import ConsistencyError, NotFound
from identity import IdentityContext
from models import Account, AccountType, Tag, Transaction, transaction_tags

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        account = self.session.scalar(stmt)
        if not account:
            raise NotFound("Account not found")
        return account

    def create(self, name: str, type: AccountType, opening_cents: int) -> Account:
        account = Account(
            user_id=self.user_id,
            name=name,
            type=type,
            opening_balance_cents=opening_cents,
            balance_cents=opening_cents,
        )
        self.session.add(account)
        self.session.flush()
        return account

    def update(
        self,
        account: Account,
        name: Optional[str] = None,
        type: Optional[AccountType] = None,
    ) -> Account:
        if name is not None:
            account.name = name
        if type is not None:
            account.type = type
        self.session.flush()
        return account

    def delete(self, account: Account) -> int:
        """Delete the account with its transactions and their tag links.

        Returns the number of transactions removed.
        """
        txn_ids = select(Transaction.id).where(
            Transaction.user_id == self.user_id,
            Transaction.account_id == account.id,
        )
        self.session.execute(
            delete(transaction_tags)
            .where(transaction_tags.c.transaction_id.in_(txn_ids))
            .execution_options(synchronize_session=False)
        )
        removed = self.session.execute(
            delete(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account.id,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        result = self.session.execute(
            delete(Account)
            .where(Account.user_id == self.user_id, Account.id == account.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Account was modified concurrently")
        self.session.expunge(account)
        return int(removed or 0)


class TagService:
    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def list_all(self) -> list[Tag]:
        stmt = (
            select(Tag)
            .where(Tag.user_id == self.user_id)
            .order_by(Tag.name, Tag.id)
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, tag_id: int) -> Tag:
        stmt = select(Tag).where(Tag.user_id == self.user_id, Tag.id == tag_id)
        tag = self.session.scalar(stmt)
        if not tag:
            raise NotFound("Tag not found")
        return tag

    def ensure_owned(self, tag_ids: Iterable[int]) -> set[int]:
        wanted = set(tag_ids)
        if not wanted:
            return wanted
        stmt = select(Tag.id).where(Tag.user_id == self.user_id, Tag.id.in_(wanted))
        found = set(self.session.scalars(stmt).all())
        if found != wanted:
            raise NotFound("Tag not found")
        return wanted

    def create(self, name: str, color: str) -> Tag:
        stmt = select(func.count(Tag.id)).where(
            Tag.user_id == self.user_id, func.lower(Tag.name) == name.lower()
        )
        if self.session.execute(stmt).scalar_one():
            logger.info(f"tag_duplicate_name: user={self.user_id} name={name!r}")

        tag = Tag(user_id=self.user_id, name=name, color=color)
        self.session.add(tag)
        self.session.flush()
        return tag

    def update(
        self, tag: Tag, name: Optional[str] = None, color: Optional[str] = None
    ) -> Tag:
        if name is not None:
            tag.name = name
        if color is not None:
            tag.color = color
        self.session.flush()
        return tag

    def delete(self, tag: Tag) -> int:
        """Delete the tag and every link to it. Returns the number of links removed."""
        unlinked = self.session.execute(
            delete(transaction_tags)
            .where(transaction_tags.c.tag_id == tag.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        result = self.session.execute(
            delete(Tag)
            .where(Tag.user_id == self.user_id, Tag.id == tag.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Tag was modified concurrently")
        self.session.expunge(tag)
        return int(unlinked or 0)


class TransactionService:
    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .execution_options(populate_existing=True)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def insert(
        self,
        account_id: int,
        amount_cents: int,
        description: str,
        transaction_date: date,
    ) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            account_id=account_id,
            amount_cents=amount_cents,
            description=description,
            transaction_date=transaction_date,
            version=1,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    def guarded_update(self, txn: Transaction, **values: object) -> None:
        """Write ``values`` only if the row still carries the version we read."""
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.id == txn.id,
                Transaction.version == txn.version,
            )
            .values(version=Transaction.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Transaction was modified concurrently")
        self.session.expire(txn)

    def guarded_delete(self, txn: Transaction) -> None:
        self.session.execute(
            delete(transaction_tags)
            .where(transaction_tags.c.transaction_id == txn.id)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(
            delete(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.id == txn.id,
                Transaction.version == txn.version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Transaction was modified concurrently")
        self.session.expunge(txn)
