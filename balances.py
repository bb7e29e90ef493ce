"""Balance accounting.

An account's ``balance_cents`` is a materialized aggregate:

    balance_cents == opening_balance_cents + sum(amount_cents of its transactions)

Every transaction write moves the stored balance by a delta computed inside
the database (``balance_cents = balance_cents + :delta``), in the same
database transaction as the write that caused it. Nothing here reads a
balance into Python and writes it back.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from errors import ConsistencyError, NotFound
from identity import IdentityContext
from models import Account, Transaction
from money import cents_to_decimal
from schemas import BalanceDrift

logger = logging.getLogger(__name__)


class BalanceService:
    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def apply_delta(self, account_id: int, delta_cents: int) -> None:
        if delta_cents == 0:
            return
        result = self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id, Account.id == account_id)
            .values(balance_cents=Account.balance_cents + delta_cents)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Account balance could not be updated")
        logger.debug(
            f"balance_delta: user={self.user_id} account={account_id} delta_cents={delta_cents}"
        )

    def on_transaction_created(self, account_id: int, amount_cents: int) -> None:
        self.apply_delta(account_id, amount_cents)

    def on_transaction_updated(
        self,
        old_account_id: int,
        old_amount_cents: int,
        new_account_id: int,
        new_amount_cents: int,
    ) -> None:
        if old_account_id == new_account_id:
            self.apply_delta(new_account_id, new_amount_cents - old_amount_cents)
            return
        self.apply_delta(old_account_id, -old_amount_cents)
        self.apply_delta(new_account_id, new_amount_cents)

    def on_transaction_deleted(self, account_id: int, amount_cents: int) -> None:
        self.apply_delta(account_id, -amount_cents)

    def adjust_to(self, account_id: int, target_cents: int) -> None:
        """Set the balance to ``target_cents`` by moving the opening balance.

        The shift is computed against the stored balance inside the UPDATE,
        so the invariant still holds and no transaction is invented.
        """
        result = self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id, Account.id == account_id)
            .values(
                opening_balance_cents=Account.opening_balance_cents
                + (target_cents - Account.balance_cents),
                balance_cents=target_cents,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Account balance could not be updated")
        logger.info(
            f"balance_adjusted: user={self.user_id} account={account_id} target_cents={target_cents}"
        )

    def derived_cents(self, account_id: int) -> int:
        account = self.session.scalar(
            select(Account.opening_balance_cents).where(
                Account.user_id == self.user_id, Account.id == account_id
            )
        )
        if account is None:
            raise NotFound("Account not found")
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
        ).scalar_one()
        return int(account) + int(total or 0)

    def audit(self) -> list[BalanceDrift]:
        """Accounts whose stored balance disagrees with their transaction history."""
        totals = (
            select(
                Transaction.account_id.label("account_id"),
                func.sum(Transaction.amount_cents).label("total"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.account_id)
            .subquery()
        )
        stmt = (
            select(
                Account.id,
                Account.name,
                Account.balance_cents,
                (
                    Account.opening_balance_cents
                    + func.coalesce(totals.c.total, 0)
                ).label("derived"),
            )
            .outerjoin(totals, totals.c.account_id == Account.id)
            .where(Account.user_id == self.user_id)
            .order_by(Account.id)
        )
        drifts: list[BalanceDrift] = []
        for row in self.session.execute(stmt):
            if int(row.balance_cents) != int(row.derived):
                drifts.append(
                    BalanceDrift(
                        account_id=row.id,
                        name=row.name,
                        stored=cents_to_decimal(int(row.balance_cents)),
                        derived=cents_to_decimal(int(row.derived)),
                    )
                )
        return drifts

    def rebuild(self, account_id: int) -> int:
        """Rewrite the stored balance from the opening balance and history."""
        derived = self.derived_cents(account_id)
        totals = (
            select(func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
            )
            .scalar_subquery()
        )
        result = self.session.execute(
            update(Account)
            .where(Account.user_id == self.user_id, Account.id == account_id)
            .values(balance_cents=Account.opening_balance_cents + totals)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConsistencyError("Account balance could not be rebuilt")
        logger.info(
            f"balance_rebuilt: user={self.user_id} account={account_id} balance_cents={derived}"
        )
        return derived
