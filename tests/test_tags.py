from sqlalchemy import event, func, select
from sqlalchemy.orm import sessionmaker

import pytest

from database import Base, create_ledger_engine
from errors import NotFound
from identity import IdentityContext
from models import Tag, Transaction, transaction_tags
from orchestrator import LedgerOrchestrator


def make_session():
    engine = create_ledger_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_ledger(session, user_id: str = "user-a") -> LedgerOrchestrator:
    return LedgerOrchestrator(session, IdentityContext(user_id=user_id))


def link_count(session, **where) -> int:
    stmt = select(func.count()).select_from(transaction_tags)
    for column, value in where.items():
        stmt = stmt.where(transaction_tags.c[column] == value)
    return session.execute(stmt).scalar_one()


def seed(ledger: LedgerOrchestrator):
    account = ledger.create_account(
        {"name": "Checking", "type": "checking", "balance": "0"}
    ).entity
    tags = {
        name: ledger.create_tag({"name": name, "color": color}).entity
        for name, color in [
            ("Food", "#f97316"),
            ("Travel", "#0ea5e9"),
            ("Business", "#22c55e"),
        ]
    }
    return account, tags


def test_attach_twice_is_same_as_once() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {"account_id": account.id, "amount": "-9.90", "description": "Lunch"}
    ).entity

    ledger.links.attach(txn.id, tags["Food"].id)
    ledger.links.attach(txn.id, tags["Food"].id)
    session.commit()

    assert link_count(session, transaction_id=txn.id) == 1
    assert [t.name for t in ledger.queries.transaction(txn.id).tags] == ["Food"]


def test_detach_missing_pair_is_a_noop() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-9.90",
            "description": "Lunch",
            "tag_ids": [tags["Food"].id],
        }
    ).entity

    ledger.links.detach(txn.id, tags["Travel"].id)
    ledger.links.detach(txn.id, tags["Food"].id)
    ledger.links.detach(txn.id, tags["Food"].id)
    session.commit()

    assert link_count(session, transaction_id=txn.id) == 0


def test_replace_all_applies_symmetric_difference() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-420",
            "description": "Conference trip",
            "tag_ids": [tags["Food"].id, tags["Travel"].id],
        }
    ).entity

    diff = ledger.links.replace_all(
        txn.id, [tags["Travel"].id, tags["Business"].id]
    )
    session.commit()

    assert diff.added == {tags["Business"].id}
    assert diff.removed == {tags["Food"].id}
    names = {t.name for t in ledger.queries.transaction(txn.id).tags}
    assert names == {"Travel", "Business"}


def test_replace_all_with_same_set_changes_nothing() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-3",
            "description": "Coffee",
            "tag_ids": [tags["Food"].id],
        }
    ).entity

    diff = ledger.links.replace_all(txn.id, [tags["Food"].id, tags["Food"].id])

    assert not diff.changed


def test_update_transaction_edits_tags_in_same_unit() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-15",
            "description": "Taxi",
            "tag_ids": [tags["Food"].id],
        }
    ).entity

    outcome = ledger.update_transaction(
        txn.id, {"description": "Airport taxi", "tag_ids": [tags["Travel"].id]}
    )

    assert outcome.success
    assert outcome.entity.description == "Airport taxi"
    assert [t.name for t in outcome.entity.tags] == ["Travel"]


def test_update_without_tag_ids_keeps_tags() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-15",
            "description": "Taxi",
            "tag_ids": [tags["Travel"].id],
        }
    ).entity

    outcome = ledger.update_transaction(txn.id, {"amount": "-18"})

    assert [t.name for t in outcome.entity.tags] == ["Travel"]


def test_set_transaction_tags_clears_with_empty_list() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-15",
            "description": "Taxi",
            "tag_ids": [tags["Travel"].id, tags["Business"].id],
        }
    ).entity

    outcome = ledger.set_transaction_tags(txn.id, {"tag_ids": []})

    assert outcome.success
    assert outcome.entity.tags == []
    assert link_count(session, transaction_id=txn.id) == 0


def test_deleting_transaction_removes_links_but_keeps_tags() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-64",
            "description": "Hotel",
            "tag_ids": [tags["Travel"].id, tags["Business"].id],
        }
    ).entity

    assert ledger.delete_transaction(txn.id).success

    assert link_count(session, transaction_id=txn.id) == 0
    assert session.scalar(select(func.count(Tag.id))) == 3


def test_deleting_tag_removes_its_links_only() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-64",
            "description": "Hotel",
            "tag_ids": [tags["Travel"].id, tags["Business"].id],
        }
    ).entity

    outcome = ledger.delete_tag(tags["Travel"].id)

    assert outcome.success
    assert outcome.entity.name == "Travel"
    assert link_count(session, tag_id=tags["Travel"].id) == 0
    assert [t.name for t in ledger.queries.transaction(txn.id).tags] == ["Business"]


def test_deleting_account_cascades_transactions_and_links() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    other = ledger.create_account(
        {"name": "Cash", "type": "cash", "balance": "0"}
    ).entity
    for desc in ("Hotel", "Flight"):
        ledger.create_transaction(
            {
                "account_id": account.id,
                "amount": "-100",
                "description": desc,
                "tag_ids": [tags["Travel"].id],
            }
        )
    kept = ledger.create_transaction(
        {
            "account_id": other.id,
            "amount": "-5",
            "description": "Snack",
            "tag_ids": [tags["Food"].id],
        }
    ).entity

    outcome = ledger.delete_account(account.id)

    assert outcome.success
    remaining = session.scalars(select(Transaction.id)).all()
    assert remaining == [kept.id]
    assert link_count(session) == 1
    orphans = session.execute(
        select(func.count())
        .select_from(transaction_tags)
        .where(transaction_tags.c.transaction_id.not_in(select(Transaction.id)))
    ).scalar_one()
    assert orphans == 0
    assert session.scalar(select(func.count(Tag.id))) == 3


def test_duplicate_tag_names_are_allowed() -> None:
    session = make_session()
    ledger = make_ledger(session)

    first = ledger.create_tag({"name": "Food"})
    second = ledger.create_tag({"name": "food"})

    assert first.success and second.success
    assert first.entity.id != second.entity.id
    assert first.entity.color == "#3b82f6"


def test_tag_validation_rejects_bad_color_and_long_name() -> None:
    session = make_session()
    ledger = make_ledger(session)

    bad_color = ledger.create_tag({"name": "Food", "color": "orange"})
    too_long = ledger.create_tag({"name": "x" * 51})

    assert bad_color.error_kind == "validation"
    assert "color" in bad_color.message
    assert too_long.error_kind == "validation"
    assert "name" in too_long.message
    assert session.scalar(select(func.count(Tag.id))) == 0


def test_cannot_attach_another_users_tag() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, _ = seed(ledger)
    txn = ledger.create_transaction(
        {"account_id": account.id, "amount": "-1", "description": "Gum"}
    ).entity
    foreign_tag = make_ledger(session, "user-b").create_tag({"name": "Mine"}).entity

    with pytest.raises(NotFound):
        ledger.links.attach(txn.id, foreign_tag.id)

    outcome = ledger.set_transaction_tags(txn.id, {"tag_ids": [foreign_tag.id]})
    assert outcome.error_kind == "not_found"
    assert link_count(session) == 0


def test_replace_all_adds_before_it_removes() -> None:
    session = make_session()
    ledger = make_ledger(session)
    account, tags = seed(ledger)
    txn = ledger.create_transaction(
        {
            "account_id": account.id,
            "amount": "-420",
            "description": "Conference trip",
            "tag_ids": [tags["Food"].id, tags["Travel"].id],
        }
    ).entity
    engine = session.get_bind()
    writes: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany):
        verb = statement.lstrip().split(None, 1)[0].upper()
        if verb in ("INSERT", "DELETE") and "transaction_tags" in statement:
            writes.append(verb)

    event.listen(engine, "before_cursor_execute", record)
    try:
        ledger.links.replace_all(txn.id, [tags["Travel"].id, tags["Business"].id])
    finally:
        event.remove(engine, "before_cursor_execute", record)
    session.commit()

    assert writes == ["INSERT", "DELETE"]
