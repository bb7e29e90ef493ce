from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from database import Base, create_ledger_engine
from identity import IdentityContext
from models import Transaction
from orchestrator import LedgerOrchestrator
from projections import TransactionFilters


def make_session():
    engine = create_ledger_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_other_users_rows_look_missing() -> None:
    session = make_session()
    alice = LedgerOrchestrator(session, IdentityContext(user_id="alice"))
    bob = LedgerOrchestrator(session, IdentityContext(user_id="bob"))

    account = alice.create_account(
        {"name": "Private", "type": "savings", "balance": "300"}
    ).entity
    tag = alice.create_tag({"name": "Secret"}).entity
    txn = alice.create_transaction(
        {
            "account_id": account.id,
            "amount": "-20",
            "description": "Books",
            "tag_ids": [tag.id],
        }
    ).entity

    missing_account = bob.update_account(account.id, {"name": "Mine now"})
    really_missing = bob.update_account(account.id + 1000, {"name": "Mine now"})
    assert missing_account.error_kind == "not_found"
    assert missing_account.message == really_missing.message

    assert bob.delete_account(account.id).error_kind == "not_found"
    assert bob.update_transaction(txn.id, {"amount": "-1"}).error_kind == "not_found"
    assert bob.delete_transaction(txn.id).error_kind == "not_found"
    assert bob.update_tag(tag.id, {"name": "Stolen"}).error_kind == "not_found"
    assert bob.delete_tag(tag.id).error_kind == "not_found"
    assert bob.set_transaction_tags(txn.id, {"tag_ids": []}).error_kind == "not_found"
    assert bob.query("get", lambda: bob.queries.account(account.id)).error_kind == (
        "not_found"
    )

    assert bob.queries.accounts() == []
    assert bob.queries.tags() == []
    assert bob.queries.transactions() == []

    unchanged = alice.queries.transaction(txn.id)
    assert unchanged.amount == Decimal("-20.00")
    assert [t.name for t in unchanged.tags] == ["Secret"]
    assert alice.queries.account(account.id).balance == Decimal("280.00")


def test_cannot_book_into_another_users_account() -> None:
    session = make_session()
    alice = LedgerOrchestrator(session, IdentityContext(user_id="alice"))
    bob = LedgerOrchestrator(session, IdentityContext(user_id="bob"))
    account = alice.create_account(
        {"name": "Private", "type": "checking", "balance": "10"}
    ).entity
    bob_account = bob.create_account(
        {"name": "Bob", "type": "checking", "balance": "0"}
    ).entity
    bob_txn = bob.create_transaction(
        {"account_id": bob_account.id, "amount": "1", "description": "Coins"}
    ).entity

    created = bob.create_transaction(
        {"account_id": account.id, "amount": "-10", "description": "Sneaky"}
    )
    moved = bob.update_transaction(bob_txn.id, {"account_id": account.id})

    assert created.error_kind == "not_found"
    assert moved.error_kind == "not_found"
    assert alice.queries.account(account.id).balance == Decimal("10.00")
    assert bob.queries.account(bob_account.id).balance == Decimal("1.00")
    assert session.scalar(select(func.count(Transaction.id))) == 1


def test_filtering_on_foreign_or_missing_account_is_not_found() -> None:
    session = make_session()
    alice = LedgerOrchestrator(session, IdentityContext(user_id="alice"))
    bob = LedgerOrchestrator(session, IdentityContext(user_id="bob"))
    account = alice.create_account(
        {"name": "Private", "type": "savings", "balance": "300"}
    ).entity
    alice.create_transaction(
        {"account_id": account.id, "amount": "-20", "description": "Books"}
    )
    tag = alice.create_tag({"name": "Secret"}).entity

    for account_id in (account.id, account.id + 999):
        filters = TransactionFilters(account_id=account_id)
        listed = bob.query("list", lambda: bob.queries.transactions(filters))
        summed = bob.query("summary", lambda: bob.queries.summary(filters))
        assert listed.error_kind == "not_found"
        assert listed.message == "Account not found"
        assert summed.error_kind == "not_found"

    by_tag = bob.query(
        "list", lambda: bob.queries.transactions(TransactionFilters(tag_id=tag.id))
    )
    assert by_tag.error_kind == "not_found"
    assert by_tag.message == "Tag not found"

    own = alice.query(
        "list",
        lambda: alice.queries.transactions(TransactionFilters(account_id=account.id)),
    )
    assert own.success
    assert [t.description for t in own.entity] == ["Books"]
