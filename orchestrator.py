"""Write use cases over the ledger.

Each public method is one logical unit: validate the payload, resolve the
referenced rows for the acting user, write the row, apply its balance delta
and tag edits, then commit once. Any failure rolls the whole unit back and
comes back as a failed ``Outcome``; nothing is retried here.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Optional, TypeVar, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

from balances import BalanceService
from config import get_settings
from errors import (
    ConsistencyError,
    InfrastructureError,
    LedgerError,
    invalid_input_from,
)
from identity import IdentityContext
from money import to_cents
from projections import LedgerQueryService
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    Outcome,
    TagIn,
    TagOut,
    TagSetIn,
    TagUpdate,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)
from services import AccountService, TagService, TransactionService
from tag_links import TagLinkManager

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
Payload = Union[BaseModel, dict[str, Any]]


def _parse(model: type[M], payload: Payload) -> M:
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    return model.model_validate(payload)


def _today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


class LedgerOrchestrator:
    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.identity = identity
        self.accounts = AccountService(session, identity)
        self.tags = TagService(session, identity)
        self.transactions = TransactionService(session, identity)
        self.balances = BalanceService(session, identity)
        self.links = TagLinkManager(session, identity)
        self.queries = LedgerQueryService(session, identity)

    # -- unit of work -----------------------------------------------------

    def _execute(
        self, use_case: str, operation: Callable[[], Any], *, write: bool = True
    ) -> Outcome:
        try:
            entity = operation()
            if write:
                self.session.commit()
        except ValidationError as exc:
            return self._failed(use_case, invalid_input_from(exc))
        except LedgerError as exc:
            return self._failed(use_case, exc)
        except IntegrityError as exc:
            return self._failed(
                use_case, ConsistencyError(f"Conflicting ledger state: {exc}")
            )
        except (OperationalError, PoolTimeoutError) as exc:
            return self._failed(
                use_case, InfrastructureError(f"Ledger store unavailable: {exc}")
            )
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                self.session.rollback()
                logger.exception(f"ledger_mutation: use_case={use_case} outcome=error")
                raise
            return self._failed(
                use_case, InfrastructureError(f"Ledger store unavailable: {exc}")
            )
        except Exception:
            self.session.rollback()
            logger.exception(f"ledger_mutation: use_case={use_case} outcome=error")
            raise

        if write:
            logger.info(
                f"ledger_mutation: use_case={use_case} user={self.identity.user_id} outcome=ok"
            )
        return Outcome.ok(entity)

    def _failed(self, use_case: str, exc: LedgerError) -> Outcome:
        self.session.rollback()
        logger.warning(
            f"ledger_mutation: use_case={use_case} user={self.identity.user_id} "
            f"outcome={exc.kind} message={exc.message!r}"
        )
        return Outcome.fail(exc.kind, exc.message)

    def query(self, use_case: str, read: Callable[[], Any]) -> Outcome:
        """Run a read through the same error translation as the writes."""
        return self._execute(use_case, read, write=False)

    # -- accounts ---------------------------------------------------------

    def create_account(self, payload: Payload) -> Outcome:
        def run() -> AccountOut:
            data = _parse(AccountIn, payload)
            account = self.accounts.create(data.name, data.type, to_cents(data.balance))
            return self.queries.account(account.id)

        return self._execute("create_account", run)

    def update_account(self, account_id: int, payload: Payload) -> Outcome:
        def run() -> AccountOut:
            data = _parse(AccountUpdate, payload)
            account = self.accounts.get(account_id)
            self.accounts.update(account, name=data.name, type=data.type)
            if data.balance is not None:
                self.balances.adjust_to(account_id, to_cents(data.balance))
            return self.queries.account(account_id)

        return self._execute("update_account", run)

    def delete_account(self, account_id: int) -> Outcome:
        def run() -> AccountOut:
            account = self.accounts.get(account_id)
            snapshot = AccountOut.model_validate(account)
            removed = self.accounts.delete(account)
            logger.info(
                f"account_deleted: user={self.identity.user_id} account={account_id} "
                f"transactions_removed={removed}"
            )
            return snapshot

        return self._execute("delete_account", run)

    def rebuild_balance(self, account_id: int) -> Outcome:
        def run() -> AccountOut:
            self.balances.rebuild(account_id)
            return self.queries.account(account_id)

        return self._execute("rebuild_balance", run)

    # -- transactions -----------------------------------------------------

    def create_transaction(self, payload: Payload) -> Outcome:
        def run() -> TransactionOut:
            data = _parse(TransactionIn, payload)
            account = self.accounts.get(data.account_id)
            tag_ids = self.tags.ensure_owned(data.tag_ids)
            amount_cents = to_cents(data.amount)

            txn = self.transactions.insert(
                account_id=account.id,
                amount_cents=amount_cents,
                description=data.description,
                transaction_date=data.transaction_date or _today(),
            )
            txn_id = txn.id
            self.balances.on_transaction_created(account.id, amount_cents)
            if tag_ids:
                self.links.replace_all(txn_id, tag_ids)
            return self.queries.transaction(txn_id)

        return self._execute("create_transaction", run)

    def update_transaction(self, transaction_id: int, payload: Payload) -> Outcome:
        def run() -> TransactionOut:
            data = _parse(TransactionUpdate, payload)
            txn = self.transactions.get(transaction_id)
            old_account_id = txn.account_id
            old_amount_cents = txn.amount_cents

            new_account_id = old_account_id
            if data.account_id is not None and data.account_id != old_account_id:
                new_account_id = self.accounts.get(data.account_id).id
            tag_ids: Optional[set[int]] = None
            if data.tag_ids is not None:
                tag_ids = self.tags.ensure_owned(data.tag_ids)
            new_amount_cents = (
                to_cents(data.amount) if data.amount is not None else old_amount_cents
            )

            values: dict[str, object] = {}
            if new_account_id != old_account_id:
                values["account_id"] = new_account_id
            if new_amount_cents != old_amount_cents:
                values["amount_cents"] = new_amount_cents
            if data.description is not None:
                values["description"] = data.description
            if data.transaction_date is not None:
                values["transaction_date"] = data.transaction_date

            if values:
                self.transactions.guarded_update(txn, **values)
                self.balances.on_transaction_updated(
                    old_account_id, old_amount_cents, new_account_id, new_amount_cents
                )
            if tag_ids is not None:
                self.links.replace_all(transaction_id, tag_ids)
            return self.queries.transaction(transaction_id)

        return self._execute("update_transaction", run)

    def delete_transaction(self, transaction_id: int) -> Outcome:
        def run() -> TransactionOut:
            snapshot = self.queries.transaction(transaction_id)
            txn = self.transactions.get(transaction_id)
            account_id = txn.account_id
            amount_cents = txn.amount_cents
            self.transactions.guarded_delete(txn)
            self.balances.on_transaction_deleted(account_id, amount_cents)
            return snapshot

        return self._execute("delete_transaction", run)

    def set_transaction_tags(self, transaction_id: int, payload: Payload) -> Outcome:
        def run() -> TransactionOut:
            data = _parse(TagSetIn, payload)
            self.links.replace_all(transaction_id, data.tag_ids)
            return self.queries.transaction(transaction_id)

        return self._execute("set_transaction_tags", run)

    # -- tags -------------------------------------------------------------

    def create_tag(self, payload: Payload) -> Outcome:
        def run() -> TagOut:
            data = _parse(TagIn, payload)
            tag = self.tags.create(data.name, data.color)
            return self.queries.tag(tag.id)

        return self._execute("create_tag", run)

    def update_tag(self, tag_id: int, payload: Payload) -> Outcome:
        def run() -> TagOut:
            data = _parse(TagUpdate, payload)
            tag = self.tags.get(tag_id)
            self.tags.update(tag, name=data.name, color=data.color)
            return self.queries.tag(tag_id)

        return self._execute("update_tag", run)

    def delete_tag(self, tag_id: int) -> Outcome:
        def run() -> TagOut:
            tag = self.tags.get(tag_id)
            snapshot = TagOut.model_validate(tag)
            unlinked = self.tags.delete(tag)
            logger.info(
                f"tag_deleted: user={self.identity.user_id} tag={tag_id} links_removed={unlinked}"
            )
            return snapshot

        return self._execute("delete_tag", run)
