from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import NotFound
from identity import IdentityContext
from models import Tag, Transaction, transaction_tags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TagDiff:
    added: frozenset[int] = field(default_factory=frozenset)
    removed: frozenset[int] = field(default_factory=frozenset)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class TagLinkManager:
    """Set-membership between one transaction and the acting user's tags.

    ``attach`` and ``detach`` are idempotent. ``replace_all`` attaches before
    it detaches, so a reader outside the unit of work sees a superset of the
    final set, never a subset.
    """

    def __init__(self, session: Session, identity: IdentityContext) -> None:
        self.session = session
        self.user_id = identity.user_id

    def _require_transaction(self, transaction_id: int) -> None:
        found = self.session.scalar(
            select(Transaction.id).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if found is None:
            raise NotFound("Transaction not found")

    def _require_tags(self, tag_ids: Iterable[int]) -> set[int]:
        wanted = set(tag_ids)
        if not wanted:
            return wanted
        found = set(
            self.session.scalars(
                select(Tag.id).where(Tag.user_id == self.user_id, Tag.id.in_(wanted))
            ).all()
        )
        if found != wanted:
            raise NotFound("Tag not found")
        return wanted

    def current(self, transaction_id: int) -> set[int]:
        return set(
            self.session.scalars(
                select(transaction_tags.c.tag_id).where(
                    transaction_tags.c.transaction_id == transaction_id
                )
            ).all()
        )

    def _insert_ignoring_duplicates(self, transaction_id: int, tag_id: int) -> None:
        values = {"transaction_id": transaction_id, "tag_id": tag_id}
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            stmt = sqlite_insert(transaction_tags).values(**values)
            self.session.execute(stmt.on_conflict_do_nothing())
            return
        if dialect == "postgresql":
            stmt = pg_insert(transaction_tags).values(**values)
            self.session.execute(stmt.on_conflict_do_nothing())
            return
        try:
            with self.session.begin_nested():
                self.session.execute(insert(transaction_tags).values(**values))
        except IntegrityError:
            # Pair already present; the savepoint has been rolled back.
            pass

    def attach(self, transaction_id: int, tag_id: int) -> None:
        self._require_transaction(transaction_id)
        self._require_tags([tag_id])
        self._insert_ignoring_duplicates(transaction_id, tag_id)

    def detach(self, transaction_id: int, tag_id: int) -> None:
        self._require_transaction(transaction_id)
        self.session.execute(
            delete(transaction_tags).where(
                transaction_tags.c.transaction_id == transaction_id,
                transaction_tags.c.tag_id == tag_id,
            )
        )

    def replace_all(self, transaction_id: int, tag_ids: Iterable[int]) -> TagDiff:
        self._require_transaction(transaction_id)
        desired = self._require_tags(tag_ids)
        current = self.current(transaction_id)

        added = desired - current
        removed = current - desired
        for tag_id in sorted(added):
            self._insert_ignoring_duplicates(transaction_id, tag_id)
        if removed:
            self.session.execute(
                delete(transaction_tags).where(
                    transaction_tags.c.transaction_id == transaction_id,
                    transaction_tags.c.tag_id.in_(removed),
                )
            )

        diff = TagDiff(added=frozenset(added), removed=frozenset(removed))
        if diff.changed:
            logger.info(
                f"tags_replaced: user={self.user_id} transaction={transaction_id} "
                f"added={sorted(added)} removed={sorted(removed)}"
            )
        return diff
